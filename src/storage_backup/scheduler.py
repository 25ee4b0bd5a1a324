from __future__ import annotations

import logging
import signal
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from croniter import croniter
from zoneinfo import ZoneInfo

from .config import ConfigurationError, CoreConfig, load_config
from .job_engine import JobResult

LOG = logging.getLogger(__name__)

# Upper bound on one idle wait so a stop request is noticed promptly.
MAX_IDLE_SECONDS = 60.0

RunCallback = Callable[[CoreConfig], List[JobResult]]


class BackupScheduler:
    """Runs the configured backup jobs on the cron schedule from the config file.

    The file is re-read before every run; removing its ``scheduler`` section
    ends the loop after the current wait.
    """

    def __init__(
        self,
        config_path: Path,
        config: CoreConfig,
        run_backups: RunCallback,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        if config.scheduler is None:
            raise ConfigurationError("Configuration has no scheduler section")
        self._config_path = config_path
        self._config = config
        self._run_backups = run_backups
        self._stop = stop_event or threading.Event()
        self.completed_runs = 0
        self.failed_runs = 0

    def stop(self) -> None:
        self._stop.set()

    def install_signal_handlers(self) -> None:
        def _handle(signum: int, _frame: Optional[object]) -> None:
            LOG.info("Received signal %s; stopping after the current backup", signum)
            self.stop()

        signal.signal(signal.SIGTERM, _handle)
        signal.signal(signal.SIGINT, _handle)

    def next_run_after(self, reference: datetime) -> datetime:
        return croniter(self._config.scheduler.cron, reference).get_next(datetime)

    def run_forever(self) -> int:
        settings = self._config.scheduler
        now = datetime.now(ZoneInfo(settings.timezone))
        next_run = now if settings.run_on_startup else self.next_run_after(now)
        LOG.info("First backup run at %s (cron '%s')", next_run.isoformat(), settings.cron)

        while not self._stop.is_set():
            now = datetime.now(ZoneInfo(self._config.scheduler.timezone))
            if now < next_run:
                self._stop.wait(min((next_run - now).total_seconds(), MAX_IDLE_SECONDS))
                continue

            if not self._reload():
                LOG.info("Scheduler section removed from %s; exiting", self._config_path)
                break

            self._run_once()
            next_run = self.next_run_after(datetime.now(ZoneInfo(self._config.scheduler.timezone)))
            LOG.info("Next backup run at %s", next_run.isoformat())

        LOG.info(
            "Scheduler stopped after %d run(s), %d with failures",
            self.completed_runs,
            self.failed_runs,
        )
        return 0

    def _reload(self) -> bool:
        try:
            config = load_config(self._config_path)
        except ConfigurationError as exc:
            LOG.error("Keeping previous configuration, reload of %s failed: %s", self._config_path, exc)
            return True
        if config.scheduler is None:
            return False
        self._config = config
        return True

    def _run_once(self) -> None:
        try:
            results = self._run_backups(self._config)
        except ConfigurationError as exc:
            LOG.error("Backup run skipped: %s", exc)
            self.failed_runs += 1
            return

        self.completed_runs += 1
        failed = [result for result in results if not result.success]
        if failed:
            self.failed_runs += 1
            for result in failed:
                LOG.error("Job %s failed: %s", result.job_name, "; ".join(result.errors))
        LOG.info("Backup run %d finished: %d of %d job(s) failed", self.completed_runs, len(failed), len(results))
