from __future__ import annotations

import copy
import threading
from datetime import datetime, timedelta, timezone

from qagen.config import DEFAULT_CONFIG, build_config
from qagen.errors import GenerationError
from qagen.llm import derive_test_filename, detect_language, parse_response
from qagen.models import ChangedFile, GeneratedArtifact, PassOutcome, WorkItem
from qagen.storage import get_seen, init_db

TARGET_OWNER = "org"
TARGET_REPO = "target-repo"


def make_config(tmp_path, **sections):
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    cfg["paths"].update(
        data_dir=str(tmp_path / "data"),
        state_db=str(tmp_path / "data" / "tickets.db"),
        output_dir=str(tmp_path / "output"),
        test_patterns_path=str(tmp_path / "test-patterns.md"),
    )
    cfg["github"]["owner"] = TARGET_OWNER
    cfg["github"]["repo"] = TARGET_REPO
    for section, values in sections.items():
        cfg[section].update(values)
    return build_config(cfg)


def work_item(key, text="", summary=""):
    return WorkItem(key=key, summary=summary, description=text)


def pr_item(key, number, repo=TARGET_REPO, owner=TARGET_OWNER):
    return work_item(key, f"fixes https://host/{owner}/{repo}/pull/{number}")


def changed(path, status="modified", patch="@@ -1 +1 @@"):
    return ChangedFile(path=path, status=status, patch=patch)


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2024, 5, 6, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class FakeTracker:
    def __init__(self, items=None, error=None):
        self.items = list(items or [])
        self.error = error
        self.fetches = 0
        self.comments = []

    def fetch_candidates(self):
        self.fetches += 1
        if self.error is not None:
            raise self.error
        return list(self.items)

    def append_comment(self, ticket_key, text):
        self.comments.append((ticket_key, text))
        return True


class FakeCodeHost:
    def __init__(self, files=None, contents=None, errors=None, list_errors=None):
        self.files = files or {}
        self.contents = contents or {}
        self.errors = errors or {}
        self.list_errors = list_errors or {}
        self.listed = []
        self.fetched = []

    def list_changed_files(self, reference):
        self.listed.append(reference.number)
        if reference.number in self.list_errors:
            raise self.list_errors[reference.number]
        return list(self.files.get(reference.number, []))

    def fetch_file_content(self, path, reference):
        self.fetched.append(path)
        if path in self.errors:
            raise self.errors[path]
        return self.contents.get(path, f"export const value = '{path}';")


class FakeGenerator:
    def __init__(self, failures=(), empty=(), per_file=1, replies=None):
        self.failures = set(failures)
        self.empty = set(empty)
        self.per_file = per_file
        self.replies = replies or {}
        self.calls = []

    def generate(self, source, context):
        self.calls.append(source.path)
        if source.path in self.failures:
            raise GenerationError(f"generation failed for {source.path}")
        if source.path in self.empty:
            return []
        if source.path in self.replies:
            return parse_response(self.replies[source.path], source.path)
        language = detect_language(source.path)
        return [
            GeneratedArtifact(
                language=language,
                code=f"// generated test {index} for {source.path}",
                filename=derive_test_filename(source.path, language),
            )
            for index in range(self.per_file)
        ]


class RecordingNotifier:
    """Captures each call along with the idempotency record visible at that moment."""

    def __init__(self, db_path, error=None):
        self.db_path = db_path
        self.error = error
        self.calls = []
        self.records_at_call = []

    def __call__(self, ticket_key, pr_number, artifact_count, output_path):
        conn = init_db(self.db_path)
        try:
            self.records_at_call.append(get_seen(conn, ticket_key))
        finally:
            conn.close()
        self.calls.append((ticket_key, pr_number, artifact_count, output_path))
        if self.error is not None:
            raise self.error
        return True


class BlockingWorker:
    """Worker stand-in whose pass blocks until released by the test."""

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.runs = []
        self._lock = threading.Lock()

    def run_pass(self, owner):
        with self._lock:
            self.runs.append(owner)
        self.started.set()
        self.release.wait(timeout=5)
        now = datetime.now(timezone.utc)
        return PassOutcome(owner=owner, started_at=now, finished_at=now, items=[])
