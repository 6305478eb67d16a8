from __future__ import annotations

import os
import re
from typing import Iterable

from .errors import InsufficientDiskSpaceError
from .models import GeneratedArtifact
from .validators import MIN_FREE_MB, check_disk_space

_UNSAFE_NAME_RE = re.compile(r"[^\w.\-]+")


def _safe_component(value: str) -> str:
    cleaned = _UNSAFE_NAME_RE.sub("_", value).strip("._")
    return cleaned or "unnamed"


def artifact_dir(generated_dir: str, stamp: str, ticket_key: str) -> str:
    return os.path.join(generated_dir, _safe_component(stamp), _safe_component(ticket_key))


def ensure_disk_space(path: str) -> None:
    existing = path
    while existing and not os.path.exists(existing):
        parent = os.path.dirname(existing)
        if parent == existing:
            break
        existing = parent
    result = check_disk_space(existing or ".")
    if not result["sufficient"]:
        raise InsufficientDiskSpaceError(
            f"insufficient disk space: {result['available_mb']}MB available, "
            f"{MIN_FREE_MB}MB required"
        )


def _numbered(filename: str, index: int) -> str:
    stem, dot, rest = filename.partition(".")
    return f"{stem}-{index}{dot}{rest}"


def write_artifact(directory: str, artifact: GeneratedArtifact) -> str:
    """Write one artifact and return its path.

    Never replaces an existing file: a taken name gets a numeric suffix
    (``a.test.ts``, ``a-1.test.ts``, ``a-2.test.ts``).
    """
    ensure_disk_space(directory)
    os.makedirs(directory, exist_ok=True)
    filename = _safe_component(artifact.filename)
    index = 0
    while True:
        name = _numbered(filename, index) if index else filename
        path = os.path.join(directory, name)
        try:
            with open(path, "x", encoding="utf-8") as handle:
                handle.write(artifact.code)
        except FileExistsError:
            index += 1
            continue
        return path


def write_artifacts(
    generated_dir: str,
    stamp: str,
    ticket_key: str,
    artifacts: Iterable[GeneratedArtifact],
) -> list[str]:
    directory = artifact_dir(generated_dir, stamp, ticket_key)
    return [write_artifact(directory, artifact) for artifact in artifacts]
