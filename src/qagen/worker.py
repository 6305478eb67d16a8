from __future__ import annotations

import logging
import sqlite3
from typing import Any, Callable, Protocol

from .config import Config
from .errors import ExternalServiceError, NotFoundError
from .models import (
    ChangedFile,
    ExternalReference,
    FileResult,
    GeneratedArtifact,
    ItemOutcome,
    ItemResult,
    PassOutcome,
    SourceFile,
    WorkItem,
)
from .llm import AnthropicGenerator
from .notify import notify_test_runner
from .publish import artifact_dir, write_artifact
from .services.github_client import GitHubClient, filter_testable_files
from .services.jira_client import JiraClient, extract_reference, is_target_repo
from .storage import append_artifact_log, has_seen, init_db, upsert_seen
from .utils import log_event, run_stamp, utc_now

COMMENT_TEMPLATE = "Automated tests generated: {count} test files created for PR #{number}"


class Tracker(Protocol):
    def fetch_candidates(self) -> list[WorkItem]: ...

    def append_comment(self, ticket_key: str, text: str) -> bool: ...


class CodeHost(Protocol):
    def list_changed_files(self, reference: ExternalReference) -> list[ChangedFile]: ...

    def fetch_file_content(self, path: str, reference: ExternalReference) -> str: ...


class Generator(Protocol):
    def generate(self, source: SourceFile, context: str) -> list[GeneratedArtifact]: ...


Notifier = Callable[[str, int, int, str], bool]


class PipelineWorker:
    """Runs one batch pass over the tracker's candidate tickets.

    Each ticket is isolated: an exception escaping its workflow marks that
    ticket failed and the pass moves on. The idempotency record is always
    written before any downstream notification.
    """

    def __init__(
        self,
        config: Config,
        tracker: Tracker,
        code_host: CodeHost,
        generator: Generator,
        notifier: Notifier | None = None,
        connect: Callable[[], Any] | None = None,
        logger: logging.Logger | None = None,
        clock: Callable[[], Any] = utc_now,
    ) -> None:
        self.config = config
        self.tracker = tracker
        self.code_host = code_host
        self.generator = generator
        self.logger = logger or logging.getLogger("qagen.worker")
        self.notifier = notifier or self._default_notifier
        self._connect = connect or (lambda: init_db(config.paths.state_db))
        self._clock = clock

    def _default_notifier(
        self, ticket_key: str, pr_number: int, artifact_count: int, output_path: str
    ) -> bool:
        return notify_test_runner(
            self.config.webhook,
            ticket_key,
            pr_number,
            artifact_count,
            output_path,
            self.logger,
        )

    def run_pass(self, owner: str) -> PassOutcome:
        started_at = self._clock()
        stamp = run_stamp(started_at)
        log_event(self.logger, logging.INFO, "pass_started", owner=owner, stamp=stamp)
        results: list[ItemResult] = []
        conn = self._connect()
        try:
            items = self.tracker.fetch_candidates()
            log_event(self.logger, logging.INFO, "pass_candidates", owner=owner, count=len(items))
            for item in items:
                try:
                    result = self.process_ticket(conn, item, stamp)
                except Exception as exc:  # noqa: BLE001
                    log_event(
                        self.logger,
                        logging.ERROR,
                        "ticket_failed",
                        ticket=item.key,
                        error=str(exc),
                    )
                    result = ItemResult(key=item.key, outcome=ItemOutcome.FAILED, error=str(exc))
                results.append(result)
        finally:
            conn.close()
        outcome = PassOutcome(
            owner=owner,
            started_at=started_at,
            finished_at=self._clock(),
            items=results,
        )
        summary = outcome.summary()
        summary.pop("owner")
        log_event(self.logger, logging.INFO, "pass_completed", owner=owner, **summary)
        return outcome

    def process_ticket(self, conn: sqlite3.Connection, item: WorkItem, stamp: str) -> ItemResult:
        key = item.key
        if has_seen(conn, key):
            log_event(self.logger, logging.DEBUG, "ticket_already_seen", ticket=key)
            return ItemResult(key=key, outcome=ItemOutcome.ALREADY_SEEN)

        reference = extract_reference(item)
        github = self.config.github
        if reference is None or not is_target_repo(reference, github.repo, github.owner):
            upsert_seen(
                conn,
                key,
                reference.number if reference else None,
                0,
                ItemOutcome.NOT_ACTIONABLE,
            )
            log_event(
                self.logger,
                logging.INFO,
                "ticket_not_actionable",
                ticket=key,
                reason="no_reference" if reference is None else "repo_mismatch",
                owner=reference.owner if reference else None,
                repo=reference.repo if reference else None,
            )
            return ItemResult(key=key, outcome=ItemOutcome.NOT_ACTIONABLE)

        changed = self.code_host.list_changed_files(reference)
        testable = filter_testable_files(changed)
        if not testable:
            upsert_seen(conn, key, reference.number, 0, ItemOutcome.NO_CHANGES)
            log_event(
                self.logger,
                logging.INFO,
                "ticket_no_changes",
                ticket=key,
                pr=reference.number,
                changed=len(changed),
            )
            return ItemResult(key=key, outcome=ItemOutcome.NO_CHANGES)

        directory = artifact_dir(self.config.generated_dir, stamp, key)
        file_results = [
            self._process_file(conn, item, reference, changed_file, directory)
            for changed_file in testable
        ]
        count = sum(len(result.artifact_paths) for result in file_results)
        files_failed = sum(1 for result in file_results if result.status == "failed")
        outcome = ItemOutcome.ACTIONED if count > 0 else ItemOutcome.NO_ARTIFACTS
        upsert_seen(conn, key, reference.number, count, outcome)
        log_event(
            self.logger,
            logging.INFO,
            "ticket_processed",
            ticket=key,
            pr=reference.number,
            outcome=outcome.value,
            files=len(testable),
            files_failed=files_failed,
            artifacts=count,
        )

        if count > 0:
            self._notify(key, reference.number, count, directory)
            self._comment(key, COMMENT_TEMPLATE.format(count=count, number=reference.number))

        return ItemResult(
            key=key,
            outcome=outcome,
            artifact_count=count,
            files_failed=files_failed,
        )

    def _process_file(
        self,
        conn: sqlite3.Connection,
        item: WorkItem,
        reference: ExternalReference,
        changed: ChangedFile,
        directory: str,
    ) -> FileResult:
        path = changed.path
        try:
            content = self.code_host.fetch_file_content(path, reference)
        except NotFoundError:
            log_event(self.logger, logging.DEBUG, "file_not_found", ticket=item.key, path=path)
            return FileResult(path=path, status="skipped", artifact_paths=[])
        except ExternalServiceError as exc:
            log_event(
                self.logger,
                logging.WARNING,
                "file_fetch_failed",
                ticket=item.key,
                path=path,
                error=str(exc),
            )
            return FileResult(path=path, status="skipped", artifact_paths=[], error=str(exc))

        source = SourceFile(path=path, content=content, patch=changed.patch)
        try:
            artifacts = self.generator.generate(source, item.context)
        except Exception as exc:  # noqa: BLE001
            log_event(
                self.logger,
                logging.WARNING,
                "generation_failed",
                ticket=item.key,
                path=path,
                error=str(exc),
            )
            return FileResult(path=path, status="failed", artifact_paths=[], error=str(exc))

        if not artifacts:
            log_event(self.logger, logging.INFO, "generation_empty", ticket=item.key, path=path)
            return FileResult(path=path, status="empty", artifact_paths=[])

        written: list[str] = []
        try:
            for artifact in artifacts:
                artifact_path = write_artifact(directory, artifact)
                append_artifact_log(conn, item.key, path, artifact_path)
                written.append(artifact_path)
        except OSError as exc:
            log_event(
                self.logger,
                logging.ERROR,
                "artifact_write_failed",
                ticket=item.key,
                path=path,
                written=len(written),
                error=str(exc),
            )
            return FileResult(path=path, status="failed", artifact_paths=written, error=str(exc))
        log_event(
            self.logger,
            logging.INFO,
            "artifacts_written",
            ticket=item.key,
            path=path,
            count=len(written),
        )
        return FileResult(path=path, status="generated", artifact_paths=written)

    def _notify(self, key: str, pr_number: int, count: int, directory: str) -> None:
        try:
            self.notifier(key, pr_number, count, directory)
        except Exception as exc:  # noqa: BLE001
            log_event(self.logger, logging.ERROR, "webhook_failed", ticket=key, error=str(exc))

    def _comment(self, key: str, text: str) -> None:
        try:
            self.tracker.append_comment(key, text)
        except Exception as exc:  # noqa: BLE001
            log_event(self.logger, logging.WARNING, "jira_comment_failed", ticket=key, error=str(exc))


def build_worker(config: Config, logger: logging.Logger | None = None) -> PipelineWorker:
    return PipelineWorker(
        config,
        tracker=JiraClient(config.jira),
        code_host=GitHubClient(config.github),
        generator=AnthropicGenerator(config.anthropic, config.paths.test_patterns_path),
        logger=logger,
    )
