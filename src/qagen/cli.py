from __future__ import annotations

import argparse
import json
import logging

from .config import ConfigError, load_config
from .fsinit import clean_old_files
from .scheduler import TRIGGER_MANUAL
from .service import GenerationService
from .storage import delete_seen, init_db, list_recent
from .utils import configure_logging, json_dumps, log_event
from .validators import sanitize_limit


def _setup_logging() -> logging.Logger:
    return configure_logging("qagen")


def _load(args: argparse.Namespace, logger: logging.Logger):
    try:
        return load_config(args.config)
    except ConfigError as exc:
        log_event(logger, logging.ERROR, "config_error", error=str(exc))
        return None


def _cmd_serve(args: argparse.Namespace, logger: logging.Logger) -> int:
    import uvicorn

    from . import admin

    config = _load(args, logger)
    if config is None:
        return 1
    admin.set_service(GenerationService(config))
    host = args.host or config.server.host
    port = args.port or config.server.port
    log_event(logger, logging.INFO, "server_starting", host=host, port=port)
    uvicorn.run(admin.app, host=host, port=port)
    return 0


def _cmd_run(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    service = GenerationService(config)
    outcome = service.run_pass_blocking(args.owner)
    if outcome is None:
        return 1
    print(json_dumps(outcome.summary()))
    return 1 if outcome.items_failed else 0


def _cmd_tickets_list(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    conn = init_db(config.paths.state_db)
    try:
        records = list_recent(conn, sanitize_limit(args.limit))
    finally:
        conn.close()
    for record in records:
        print(
            f"{record.ticket_key}\t{record.outcome or '-'}\t"
            f"pr={record.pr_number if record.pr_number is not None else '-'}\t"
            f"files={record.files_generated}\t{record.processed_at}"
        )
    return 0


def _cmd_tickets_forget(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    conn = init_db(config.paths.state_db)
    try:
        removed = delete_seen(conn, args.ticket_key)
    finally:
        conn.close()
    if not removed:
        log_event(logger, logging.WARNING, "ticket_not_found", ticket=args.ticket_key)
        return 1
    log_event(logger, logging.INFO, "ticket_forgotten", ticket=args.ticket_key)
    return 0


def _cmd_db_migrate(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    init_db(config.paths.state_db).close()
    log_event(logger, logging.INFO, "db_migrated", path=config.paths.state_db)
    return 0


def _cmd_config_check(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    service = GenerationService(config)
    print(json.dumps(service.get_schedule_summary(), indent=2, sort_keys=True))
    log_event(logger, logging.INFO, "config_ok")
    return 0


def _cmd_cleanup(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = _load(args, logger)
    if config is None:
        return 1
    retention_days = args.days if args.days is not None else config.cleanup.retention_days
    result = clean_old_files(config.generated_dir, retention_days)
    print(json_dumps(result))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="qagen", description="Ticket-driven unit test generator")
    parser.add_argument(
        "--config",
        dest="config",
        default=None,
        help="Path to config.yml (defaults to QG_CONFIG, then built-in defaults)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the scheduler and HTTP API")
    serve_parser.add_argument("--host", default=None, help="Bind address")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port")
    serve_parser.set_defaults(func=_cmd_serve)

    run_parser = subparsers.add_parser("run", help="Run one pipeline pass now")
    run_parser.add_argument("--owner", default=TRIGGER_MANUAL, help="Trigger id recorded in logs")
    run_parser.set_defaults(func=_cmd_run)

    tickets_parser = subparsers.add_parser("tickets", help="Inspect processed tickets")
    tickets_subparsers = tickets_parser.add_subparsers(dest="tickets_command", required=True)

    tickets_list = tickets_subparsers.add_parser("list", help="List recently processed tickets")
    tickets_list.add_argument("--limit", type=int, default=50, help="Number of tickets to show")
    tickets_list.set_defaults(func=_cmd_tickets_list)

    tickets_forget = tickets_subparsers.add_parser(
        "forget", help="Drop a ticket's record so the next pass reprocesses it"
    )
    tickets_forget.add_argument("ticket_key", help="Ticket key, e.g. QA-123")
    tickets_forget.set_defaults(func=_cmd_tickets_forget)

    db_parser = subparsers.add_parser("db", help="Database maintenance")
    db_subparsers = db_parser.add_subparsers(dest="db_command", required=True)

    db_migrate = db_subparsers.add_parser("migrate", help="Apply database migrations")
    db_migrate.set_defaults(func=_cmd_db_migrate)

    config_parser = subparsers.add_parser("config", help="Configuration helpers")
    config_subparsers = config_parser.add_subparsers(dest="config_command", required=True)

    config_check = config_subparsers.add_parser(
        "check", help="Validate configuration and print the effective schedule"
    )
    config_check.set_defaults(func=_cmd_config_check)

    cleanup_parser = subparsers.add_parser("cleanup", help="Delete expired generated files")
    cleanup_parser.add_argument("--days", type=int, default=None, help="Override retention days")
    cleanup_parser.set_defaults(func=_cmd_cleanup)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logger = _setup_logging()
    return args.func(args, logger)


if __name__ == "__main__":
    raise SystemExit(main())
