from __future__ import annotations

import logging
import threading

from .config import Config
from .fsinit import build_default_paths, clean_old_files, ensure_runtime_dirs, set_umask_from_env
from .lock import SingleFlightLock
from .models import LockStatus, PassOutcome, SeenRecord, TriggerResult
from .scheduler import TRIGGER_MANUAL, TriggerScheduler
from .storage import init_db, list_recent
from .utils import log_event
from .worker import PipelineWorker, build_worker


class GenerationService:
    """Control surface shared by the scheduler, the HTTP API and the CLI.

    Every pass goes through ``run_guarded`` (or the manual trigger), so at
    most one pass runs at a time within the process.
    """

    def __init__(
        self,
        config: Config,
        worker: PipelineWorker | None = None,
        lock: SingleFlightLock | None = None,
        scheduler: TriggerScheduler | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.config = config
        self.logger = logger or logging.getLogger("qagen.service")
        self.lock = lock or SingleFlightLock(config.lock.max_hold_seconds)
        self.worker = worker or build_worker(config)
        self.scheduler = scheduler or TriggerScheduler(config, self.run_guarded, self.run_cleanup)
        self._state_lock = threading.Lock()
        self._last_outcome: PassOutcome | None = None
        self._last_error: dict[str, str] | None = None
        self._manual_thread: threading.Thread | None = None

    def start(self) -> None:
        set_umask_from_env()
        ensure_runtime_dirs(build_default_paths(self.config.paths.data_dir, self.config.paths.output_dir))
        init_db(self.config.paths.state_db).close()
        self.scheduler.start()
        log_event(self.logger, logging.INFO, "service_started", db=self.config.paths.state_db)

    def shutdown(self) -> None:
        self.scheduler.stop()
        log_event(self.logger, logging.INFO, "service_stopped")

    def run_guarded(self, owner: str) -> PassOutcome | None:
        if not self.lock.try_acquire(owner):
            self._log_skip(owner)
            return None
        return self._run_locked(owner)

    def run_pass_blocking(self, owner: str = TRIGGER_MANUAL) -> PassOutcome | None:
        return self.run_guarded(owner)

    def trigger_pass_now(self) -> TriggerResult:
        if not self.lock.try_acquire(TRIGGER_MANUAL):
            holder = self._log_skip(TRIGGER_MANUAL)
            return TriggerResult(accepted=False, reason="already_running", holder=holder)
        thread = threading.Thread(
            target=self._run_locked,
            args=(TRIGGER_MANUAL,),
            name="qagen-manual-pass",
            daemon=True,
        )
        self._manual_thread = thread
        thread.start()
        log_event(self.logger, logging.INFO, "pass_triggered", owner=TRIGGER_MANUAL)
        return TriggerResult(accepted=True)

    def wait_for_manual(self, timeout: float | None = None) -> None:
        thread = self._manual_thread
        if thread is not None:
            thread.join(timeout)

    def get_lock_status(self) -> LockStatus:
        return self.lock.status()

    def get_schedule_summary(self) -> dict[str, object]:
        return self.scheduler.job_status()

    def last_outcome(self) -> PassOutcome | None:
        with self._state_lock:
            return self._last_outcome

    def last_error(self) -> dict[str, str] | None:
        with self._state_lock:
            return self._last_error

    def list_recent(self, limit: int = 50) -> list[SeenRecord]:
        conn = init_db(self.config.paths.state_db)
        try:
            return list_recent(conn, limit)
        finally:
            conn.close()

    def run_cleanup(self) -> dict[str, int]:
        return clean_old_files(self.config.generated_dir, self.config.cleanup.retention_days)

    def _run_locked(self, owner: str) -> PassOutcome | None:
        try:
            outcome = self.worker.run_pass(owner)
        except Exception as exc:  # noqa: BLE001
            log_event(self.logger, logging.ERROR, "pass_failed", owner=owner, error=str(exc))
            with self._state_lock:
                self._last_error = {"owner": owner, "error": str(exc)}
            return None
        finally:
            self.lock.release(owner)
        with self._state_lock:
            self._last_outcome = outcome
            self._last_error = None
        return outcome

    def _log_skip(self, owner: str) -> str | None:
        status = self.lock.status()
        log_event(
            self.logger,
            logging.INFO,
            "pass_skipped",
            owner=owner,
            holder=status.holder,
            elapsed_seconds=round(status.elapsed_seconds or 0.0, 3),
        )
        return status.holder
