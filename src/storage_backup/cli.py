from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from .config import ConfigurationError, CoreConfig, load_config
from .job_engine import JobResult
from .logger import configure_logging
from .orchestrator import BackupOrchestrator
from .scheduler import BackupScheduler
from .services import create_service

LOG = logging.getLogger("storage_backup")

DEFAULT_CONFIG_PATH = "/opt/storage-backup/config/storage-backup.yaml"

EXIT_OK = 0
EXIT_JOB_FAILED = 1
EXIT_BAD_REQUEST = 2


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="storage-backup",
        description="Back up Azure tables and blob containers into a blob container with azcopy.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=Path(os.getenv("STORAGE_BACKUP_CONFIG", DEFAULT_CONFIG_PATH)),
        help="YAML file with accounts, azcopy settings and backup jobs.",
    )
    parser.add_argument(
        "--job",
        action="append",
        metavar="NAME",
        help="Backup job to run; repeat for several. Runs every job when omitted.",
    )
    parser.add_argument("--list-jobs", action="store_true", help="Print the configured jobs and exit.")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"), help="Log level (default INFO).")
    return parser.parse_args(argv)


def print_jobs(config: CoreConfig) -> None:
    for job in config.jobs:
        print(f"{job.name}\t{job.service}\t{', '.join(job.sources)}")


def run_backups(config: CoreConfig, job_names: Optional[List[str]]) -> List[JobResult]:
    orchestrator = BackupOrchestrator(config=config, service_factory=create_service)
    return orchestrator.run(job_names)


def exit_code_for(results: List[JobResult]) -> int:
    code = EXIT_OK
    for result in results:
        if result.success:
            LOG.info("Job %s finished in %.2fs", result.job_name, result.duration_seconds)
        else:
            LOG.error("Job %s failed: %s", result.job_name, "; ".join(result.errors))
            code = EXIT_JOB_FAILED
    return code


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    config_path = args.config.expanduser()
    try:
        config = load_config(config_path)
    except ConfigurationError as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    if args.list_jobs:
        print_jobs(config)
        return EXIT_OK

    if config.scheduler:
        scheduler = BackupScheduler(
            config_path,
            config,
            run_backups=lambda current: run_backups(current, args.job),
        )
        scheduler.install_signal_handlers()
        return scheduler.run_forever()

    try:
        results = run_backups(config, args.job)
    except ConfigurationError as exc:
        LOG.error("%s", exc)
        return EXIT_BAD_REQUEST
    return exit_code_for(results)


if __name__ == "__main__":
    sys.exit(main())
