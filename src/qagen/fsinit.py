from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Iterable

from .utils import log_event

logger = logging.getLogger("qagen.cleanup")


def set_umask_from_env() -> None:
    _apply_umask()


def ensure_runtime_dirs(paths: Iterable[str]) -> None:
    for path in paths:
        if not path:
            continue
        _ensure_dir(Path(path))


def build_default_paths(data_dir: str, output_dir: str) -> list[str]:
    return [
        data_dir,
        output_dir,
        os.path.join(output_dir, "generated"),
    ]


def clean_old_files(
    root: str, retention_days: int, now: float | None = None
) -> dict[str, int]:
    """Remove files under ``root`` older than ``retention_days``.

    Expired directories are descended into and removed once empty; recent
    directories are still scanned for expired files. The root itself is kept.
    """
    now = time.time() if now is None else now
    max_age = retention_days * 24 * 60 * 60
    log_event(logger, logging.INFO, "cleanup_started", root=root, retention_days=retention_days)
    result = _clean_directory(root, now, max_age)
    log_event(logger, logging.INFO, "cleanup_completed", root=root, **result)
    return result


def _clean_directory(path: str, now: float, max_age: float) -> dict[str, int]:
    removed = {"files": 0, "directories": 0}
    try:
        with os.scandir(path) as iterator:
            entries = list(iterator)
    except OSError as exc:
        log_event(logger, logging.WARNING, "cleanup_read_failed", path=path, error=str(exc))
        return removed
    for entry in entries:
        try:
            expired = now - entry.stat(follow_symlinks=False).st_mtime > max_age
            if entry.is_dir(follow_symlinks=False):
                nested = _clean_directory(entry.path, now, max_age)
                removed["files"] += nested["files"]
                removed["directories"] += nested["directories"]
                if expired and _is_empty(entry.path):
                    os.rmdir(entry.path)
                    removed["directories"] += 1
                    log_event(logger, logging.DEBUG, "cleanup_removed_dir", path=entry.path)
            elif expired:
                os.unlink(entry.path)
                removed["files"] += 1
                log_event(logger, logging.DEBUG, "cleanup_removed_file", path=entry.path)
        except OSError as exc:
            log_event(logger, logging.WARNING, "cleanup_entry_failed", path=entry.path, error=str(exc))
    return removed


def _is_empty(path: str) -> bool:
    with os.scandir(path) as iterator:
        return next(iterator, None) is None


def _apply_umask() -> None:
    umask_value = os.environ.get("QG_UMASK", "002")
    try:
        os.umask(int(umask_value, 8))
    except (ValueError, TypeError):
        os.umask(0o002)


def _ensure_dir(path: Path) -> None:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        return
    _safe_chmod(path, 0o775)


def _safe_chmod(path: Path, mode: int) -> None:
    try:
        path.chmod(mode)
    except PermissionError:
        return
