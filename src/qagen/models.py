from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ItemOutcome(str, Enum):
    ALREADY_SEEN = "already_seen"
    NOT_ACTIONABLE = "not_actionable"
    NO_CHANGES = "no_changes"
    NO_ARTIFACTS = "no_artifacts"
    ACTIONED = "actioned"
    FAILED = "failed"

    @property
    def recorded(self) -> bool:
        return self not in (ItemOutcome.ALREADY_SEEN, ItemOutcome.FAILED)


@dataclass(frozen=True)
class WorkItem:
    key: str
    summary: str
    description: str

    @property
    def context(self) -> str:
        return f"{self.summary}\n{self.description}".strip()


@dataclass(frozen=True)
class ExternalReference:
    repo: str
    number: int
    url: str
    owner: str = ""


@dataclass(frozen=True)
class ChangedFile:
    path: str
    status: str
    patch: str | None
    additions: int = 0
    deletions: int = 0

    @property
    def filename(self) -> str:
        return self.path


@dataclass(frozen=True)
class SourceFile:
    path: str
    content: str
    patch: str | None


@dataclass(frozen=True)
class GeneratedArtifact:
    language: str
    code: str
    filename: str


@dataclass(frozen=True)
class SeenRecord:
    ticket_key: str
    pr_number: int | None
    processed_at: str
    files_generated: int
    outcome: str | None


@dataclass(frozen=True)
class ArtifactLogEntry:
    id: int
    ticket_key: str
    file_path: str
    test_file_path: str
    generated_at: str


@dataclass(frozen=True)
class FileResult:
    path: str
    status: str
    artifact_paths: list[str]
    error: str | None = None


@dataclass(frozen=True)
class ItemResult:
    key: str
    outcome: ItemOutcome
    artifact_count: int = 0
    files_failed: int = 0
    error: str | None = None


@dataclass(frozen=True)
class PassOutcome:
    owner: str
    started_at: datetime
    finished_at: datetime
    items: list[ItemResult] = field(default_factory=list)

    @property
    def items_seen(self) -> int:
        return len(self.items)

    @property
    def items_advanced(self) -> int:
        return sum(1 for item in self.items if item.outcome.recorded)

    @property
    def items_skipped(self) -> int:
        return sum(1 for item in self.items if item.outcome is ItemOutcome.ALREADY_SEEN)

    @property
    def items_failed(self) -> int:
        return sum(1 for item in self.items if item.outcome is ItemOutcome.FAILED)

    @property
    def artifacts_generated(self) -> int:
        return sum(item.artifact_count for item in self.items)

    def summary(self) -> dict[str, object]:
        return {
            "owner": self.owner,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "items_seen": self.items_seen,
            "items_advanced": self.items_advanced,
            "items_skipped": self.items_skipped,
            "items_failed": self.items_failed,
            "artifacts_generated": self.artifacts_generated,
        }


@dataclass(frozen=True)
class LockStatus:
    holder: str | None
    acquired_at: datetime | None
    elapsed_seconds: float | None

    def to_dict(self) -> dict[str, object]:
        return {
            "holder": self.holder,
            "acquired_at": self.acquired_at.isoformat() if self.acquired_at else None,
            "elapsed_seconds": self.elapsed_seconds,
        }


@dataclass(frozen=True)
class TriggerResult:
    accepted: bool
    reason: str | None = None
    holder: str | None = None
