import os

import pytest

from fakes import (
    FakeCodeHost,
    FakeGenerator,
    FakeTracker,
    RecordingNotifier,
    changed,
    pr_item,
    work_item,
)
from qagen.errors import ExternalServiceError, NotFoundError
from qagen.models import ItemOutcome
from qagen.storage import count_table, get_seen, has_seen, init_db, list_artifacts
from qagen.worker import PipelineWorker


def _build(config, tracker, code_host=None, generator=None, notifier=None):
    notifier = notifier or RecordingNotifier(config.paths.state_db)
    worker = PipelineWorker(
        config,
        tracker=tracker,
        code_host=code_host or FakeCodeHost(),
        generator=generator or FakeGenerator(),
        notifier=notifier,
    )
    return worker, notifier


def _conn(config):
    return init_db(config.paths.state_db)


def test_actioned_ticket_records_artifacts_and_notifies(config):
    tracker = FakeTracker([pr_item("T-1", 42)])
    code_host = FakeCodeHost(files={42: [changed("src/a.ts")]})
    worker, notifier = _build(config, tracker, code_host)

    outcome = worker.run_pass("workHours")

    conn = _conn(config)
    record = get_seen(conn, "T-1")
    assert record.files_generated == 1
    assert record.pr_number == 42
    assert record.outcome == "actioned"
    artifacts = list_artifacts(conn, "T-1")
    assert len(artifacts) == 1
    assert artifacts[0].file_path == "src/a.ts"
    assert os.path.isfile(artifacts[0].test_file_path)
    assert artifacts[0].test_file_path.startswith(config.generated_dir)

    assert len(notifier.calls) == 1
    key, pr_number, count, output_path = notifier.calls[0]
    assert (key, pr_number, count) == ("T-1", 42, 1)
    assert output_path.endswith("T-1")
    assert tracker.comments == [
        ("T-1", "Automated tests generated: 1 test files created for PR #42")
    ]

    assert outcome.owner == "workHours"
    assert outcome.items_seen == 1
    assert outcome.items_advanced == 1
    assert outcome.artifacts_generated == 1
    assert outcome.items[0].outcome is ItemOutcome.ACTIONED


def test_ticket_without_reference_is_recorded_not_actionable(config):
    tracker = FakeTracker([work_item("T-2", "no links here")])
    code_host = FakeCodeHost()
    worker, notifier = _build(config, tracker, code_host)

    outcome = worker.run_pass("offHours")

    conn = _conn(config)
    record = get_seen(conn, "T-2")
    assert record.files_generated == 0
    assert record.pr_number is None
    assert record.outcome == "not_actionable"
    assert count_table(conn, "generated_tests") == 0
    assert notifier.calls == []
    assert code_host.listed == []
    assert outcome.items[0].outcome is ItemOutcome.NOT_ACTIONABLE


def test_reference_to_other_repo_is_not_actionable(config):
    tracker = FakeTracker([pr_item("T-3", 7, repo="some-other-repo")])
    code_host = FakeCodeHost(files={7: [changed("src/a.ts")]})
    worker, notifier = _build(config, tracker, code_host)

    worker.run_pass("workHours")

    record = get_seen(_conn(config), "T-3")
    assert record.outcome == "not_actionable"
    assert record.pr_number == 7
    assert code_host.listed == []
    assert notifier.calls == []


def test_reference_to_other_owner_is_not_actionable(config):
    tracker = FakeTracker([pr_item("T-12", 5, owner="other-org")])
    code_host = FakeCodeHost(files={5: [changed("src/a.ts")]})
    worker, notifier = _build(config, tracker, code_host)

    worker.run_pass("workHours")

    assert get_seen(_conn(config), "T-12").outcome == "not_actionable"
    assert code_host.listed == []
    assert notifier.calls == []


def test_repo_match_is_case_insensitive(config):
    tracker = FakeTracker([pr_item("T-4", 8, repo="Target-Repo")])
    code_host = FakeCodeHost(files={8: [changed("src/a.ts")]})
    worker, _ = _build(config, tracker, code_host)

    worker.run_pass("workHours")

    assert get_seen(_conn(config), "T-4").outcome == "actioned"


def test_second_pass_skips_seen_tickets_without_writes(config):
    tracker = FakeTracker([pr_item("T-1", 42)])
    code_host = FakeCodeHost(files={42: [changed("src/a.ts")]})
    generator = FakeGenerator()
    worker, notifier = _build(config, tracker, code_host, generator)

    worker.run_pass("workHours")
    conn = _conn(config)
    first = get_seen(conn, "T-1")
    artifact_rows = count_table(conn, "generated_tests")

    outcome = worker.run_pass("offHours")

    assert get_seen(conn, "T-1") == first
    assert count_table(conn, "generated_tests") == artifact_rows
    assert generator.calls == ["src/a.ts"]
    assert code_host.listed == [42]
    assert len(notifier.calls) == 1
    assert outcome.items_skipped == 1
    assert outcome.items_advanced == 0


def test_no_testable_files_records_no_changes(config):
    files = [
        changed("README.md"),
        changed("src/a.test.ts"),
        changed("src/widget.spec.js"),
        changed("config/app.config.js"),
        changed("src/b.ts", status="removed"),
        changed("styles/main.css"),
    ]
    tracker = FakeTracker([pr_item("T-5", 5)])
    generator = FakeGenerator()
    worker, notifier = _build(config, tracker, FakeCodeHost(files={5: files}), generator)

    outcome = worker.run_pass("workHours")

    record = get_seen(_conn(config), "T-5")
    assert record.outcome == "no_changes"
    assert record.files_generated == 0
    assert record.pr_number == 5
    assert generator.calls == []
    assert notifier.calls == []
    assert outcome.items[0].outcome is ItemOutcome.NO_CHANGES


def test_generation_failure_is_isolated_per_file(config):
    files = [changed("src/a.ts"), changed("src/b.ts"), changed("src/c.ts")]
    tracker = FakeTracker([pr_item("T-6", 6)])
    generator = FakeGenerator(failures={"src/b.ts"})
    worker, notifier = _build(config, tracker, FakeCodeHost(files={6: files}), generator)

    outcome = worker.run_pass("workHours")

    conn = _conn(config)
    assert generator.calls == ["src/a.ts", "src/b.ts", "src/c.ts"]
    record = get_seen(conn, "T-6")
    assert record.files_generated == 2
    assert record.outcome == "actioned"
    assert [entry.file_path for entry in list_artifacts(conn, "T-6")] == ["src/a.ts", "src/c.ts"]
    assert outcome.items[0].files_failed == 1
    assert notifier.calls[0][2] == 2


def test_multiple_code_blocks_are_all_persisted(config):
    reply = "```ts\nunit();\n```\nand\n```ts\nintegration();\n```"
    tracker = FakeTracker([pr_item("T-10", 10)])
    code_host = FakeCodeHost(files={10: [changed("src/a.ts")]})
    generator = FakeGenerator(replies={"src/a.ts": reply})
    worker, notifier = _build(config, tracker, code_host, generator)

    worker.run_pass("workHours")

    conn = _conn(config)
    paths = [entry.test_file_path for entry in list_artifacts(conn, "T-10")]
    assert [os.path.basename(path) for path in paths] == ["a.test.ts", "a-1.test.ts"]
    contents = []
    for path in paths:
        with open(path, encoding="utf-8") as handle:
            contents.append(handle.read())
    assert contents == ["unit();", "integration();"]
    assert get_seen(conn, "T-10").files_generated == 2
    assert notifier.calls[0][2] == 2


def test_same_basename_sources_do_not_overwrite(config):
    files = [changed("src/a/util.ts"), changed("src/b/util.ts")]
    tracker = FakeTracker([pr_item("T-11", 11)])
    worker, _ = _build(config, tracker, FakeCodeHost(files={11: files}))

    worker.run_pass("workHours")

    conn = _conn(config)
    entries = list_artifacts(conn, "T-11")
    paths = {entry.test_file_path for entry in entries}
    assert len(paths) == 2
    assert all(os.path.isfile(path) for path in paths)
    directory = os.path.dirname(entries[0].test_file_path)
    assert len(os.listdir(directory)) == get_seen(conn, "T-11").files_generated == 2


def test_missing_file_content_is_skipped(config):
    files = [changed("src/gone.ts"), changed("src/a.ts")]
    code_host = FakeCodeHost(
        files={9: files},
        errors={"src/gone.ts": NotFoundError("not_found", status=404)},
    )
    generator = FakeGenerator()
    worker, _ = _build(config, FakeTracker([pr_item("T-9", 9)]), code_host, generator)

    outcome = worker.run_pass("workHours")

    assert generator.calls == ["src/a.ts"]
    assert get_seen(_conn(config), "T-9").files_generated == 1
    assert outcome.items[0].files_failed == 0


def test_all_generation_failing_records_no_artifacts(config):
    files = [changed("src/a.ts"), changed("src/b.py")]
    tracker = FakeTracker([pr_item("T-7", 7)])
    generator = FakeGenerator(failures={"src/a.ts", "src/b.py"})
    worker, notifier = _build(config, tracker, FakeCodeHost(files={7: files}), generator)

    outcome = worker.run_pass("workHours")

    record = get_seen(_conn(config), "T-7")
    assert record.outcome == "no_artifacts"
    assert record.files_generated == 0
    assert notifier.calls == []
    assert tracker.comments == []
    assert outcome.items[0].outcome is ItemOutcome.NO_ARTIFACTS


def test_insufficient_disk_space_is_a_file_failure(config, monkeypatch):
    monkeypatch.setattr(
        "qagen.publish.check_disk_space",
        lambda path: {"available_mb": 12.0, "sufficient": False},
    )
    tracker = FakeTracker([pr_item("T-8", 8)])
    worker, notifier = _build(config, tracker, FakeCodeHost(files={8: [changed("src/a.ts")]}))

    outcome = worker.run_pass("workHours")

    record = get_seen(_conn(config), "T-8")
    assert record.outcome == "no_artifacts"
    assert outcome.items[0].files_failed == 1
    assert notifier.calls == []


def test_item_failure_does_not_stop_the_pass(config):
    tracker = FakeTracker([pr_item("T-1", 1), pr_item("T-2", 2)])
    code_host = FakeCodeHost(
        files={2: [changed("src/b.ts")]},
        list_errors={1: ExternalServiceError("http_error 502", status=502, transient=True)},
    )
    worker, _ = _build(config, tracker, code_host)

    outcome = worker.run_pass("workHours")

    conn = _conn(config)
    assert not has_seen(conn, "T-1")
    assert get_seen(conn, "T-2").outcome == "actioned"
    assert [item.outcome for item in outcome.items] == [ItemOutcome.FAILED, ItemOutcome.ACTIONED]
    assert "502" in outcome.items[0].error
    assert outcome.items_failed == 1

    code_host.list_errors.clear()
    code_host.files[1] = [changed("src/a.ts")]
    worker.run_pass("offHours")
    assert get_seen(conn, "T-1").outcome == "actioned"


def test_record_is_written_before_notification(config):
    tracker = FakeTracker([pr_item("T-1", 42)])
    worker, notifier = _build(config, tracker, FakeCodeHost(files={42: [changed("src/a.ts")]}))

    worker.run_pass("workHours")

    seen_then = notifier.records_at_call[0]
    assert seen_then is not None
    assert seen_then.files_generated == 1
    assert seen_then.outcome == "actioned"


def test_notification_failure_keeps_item_actioned(config):
    notifier = RecordingNotifier(config.paths.state_db, error=RuntimeError("runner down"))
    tracker = FakeTracker([pr_item("T-1", 42)])
    worker, _ = _build(
        config, tracker, FakeCodeHost(files={42: [changed("src/a.ts")]}), notifier=notifier
    )

    outcome = worker.run_pass("workHours")

    assert outcome.items[0].outcome is ItemOutcome.ACTIONED
    assert len(tracker.comments) == 1


def test_candidate_fetch_failure_propagates(config):
    tracker = FakeTracker(error=ExternalServiceError("network_error: refused", transient=True))
    worker, _ = _build(config, tracker)

    with pytest.raises(ExternalServiceError):
        worker.run_pass("workHours")
