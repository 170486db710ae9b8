from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

from ledger_import.config.loader import DEFAULT_CONFIG_PATH, ConfigError, ImportConfig, load_config
from ledger_import.db.gateway import InMemoryGateway, PersistenceGateway, PostgresGateway
from ledger_import.logging.error_log import ErrorLogBuffer
from ledger_import.logging.init import log_summary, set_debug, setup_logging
from ledger_import.models.error_record import ErrorRecord
from ledger_import.models.import_options import DEFAULT_BATCH_SIZE, ImportOptions
from ledger_import.models.results import ExecutionResponse
from ledger_import.services.registry import ImportRegistry
from ledger_import.services.summary import render_summary_line

"""CLI entrypoint.

    ledger-import list
    ledger-import validate -p accpac_room_rev --year 2024 --month 7 --ou H001 file.csv
    ledger-import import   -p accpac_room_rev --year 2024 --month 7 --ou H001 file.csv
    ledger-import preview  -p test_import --rows 5 file.csv

Exit codes: 0 success, 1 fatal (config / connection / rejected request),
2 validation or import failure (including partial row failures).
DISABLE_DB_CONNECT=1 runs against the in-memory gateway.
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_FAILURE = 2


def _load_env_file(path: Path, override: bool = True) -> None:
    """.env の値で既存環境変数を上書きし、PostgreSQL 接続情報を最優先化."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _add_run_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("file", help="CSV / Excel file to import")
    p.add_argument("-p", "--processor", required=True, help="Processor id (see `list`)")
    p.add_argument("--year", type=int)
    p.add_argument("--month", type=int)
    p.add_argument("--ou", help="Organizational unit (hotel/property)")
    p.add_argument("--location-code", help="Expected location code (skips the OU lookup)")
    p.add_argument("--scenario", help="Scenario override (default from config)")
    p.add_argument("--sheet", help="Spreadsheet sheet name (default first sheet)")
    p.add_argument("--delimiter", help="CSV delimiter (default ',')")
    p.add_argument("--encoding", help="CSV encoding (default utf-8)")
    p.add_argument("--no-headers", action="store_true", help="First row is data, not headers")


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="ledger-import", description="CSV / Excel -> ledger staging importer")
    p.add_argument("--config", type=Path, help=f"YAML config (default {DEFAULT_CONFIG_PATH} when present)")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("list", help="List registered processors")

    v = sub.add_parser("validate", help="Validate a file without importing")
    _add_run_options(v)

    i = sub.add_parser("import", help="Validate and import a file into staging")
    _add_run_options(i)
    i.add_argument("--skip-validation", action="store_true")
    i.add_argument("--stop-on-error", action="store_true", help="Abort on the first row failure")
    i.add_argument("--batch-size", type=int, default=None, help=f"Staging chunk size (default {DEFAULT_BATCH_SIZE})")
    i.add_argument("--test-mode", action="store_true", help="Count rows only, no staging writes")

    pv = sub.add_parser("preview", help="Show the first rows of a file")
    _add_run_options(pv)
    pv.add_argument("--rows", type=int, default=10)

    return p.parse_args(argv)


def _load(args: argparse.Namespace) -> ImportConfig:
    if args.config is not None:
        return load_config(args.config)
    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return ImportConfig()


def _options(args: argparse.Namespace, cfg: ImportConfig) -> ImportOptions:
    return ImportOptions(
        skip_validation=getattr(args, "skip_validation", False),
        test_mode=getattr(args, "test_mode", False),
        delimiter=args.delimiter,
        encoding=args.encoding,
        sheet_name=args.sheet,
        has_headers=not args.no_headers,
        batch_size=getattr(args, "batch_size", None) or cfg.staging.batch_size,
        stop_on_error=getattr(args, "stop_on_error", False),
        year=args.year,
        month=args.month,
        ou=args.ou,
        location_code=args.location_code,
        scenario=args.scenario,
    )


@contextmanager
def _gateway(cfg: ImportConfig, logger: logging.Logger) -> Iterator[PersistenceGateway]:
    """Live PostgresGateway, or the in-memory one when DISABLE_DB_CONNECT=1.

    接続情報の優先順位: .env -> DATABASE_URL / PGDSN -> PG* -> config database セクション
    """
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> in-memory gateway")
        yield InMemoryGateway()
        return
    conn = psycopg2.connect(cfg.database.resolve_dsn())
    try:
        conn.autocommit = False
        yield PostgresGateway(conn, cfg.staging)
    finally:
        conn.close()


def _write_error_log(cfg: ImportConfig, response: ExecutionResponse, logger: logging.Logger) -> None:
    buffer = ErrorLogBuffer(Path(cfg.error_log_dir))
    file_name = Path(response.file_path).name if response.file_path else ""
    result = response.result
    if result is not None:
        for item in result.metadata.get("row_errors", []):
            buffer.append(
                ErrorRecord.create(file_name, response.processor_id, item["row"], "ROW_ERROR", item["message"])
            )
    if not response.success and response.error:
        error_type = result.metadata.get("error_type", "IMPORT_ERROR") if result else "REQUEST_ERROR"
        buffer.append(ErrorRecord.create(file_name, response.processor_id, -1, error_type, response.error))
    path = buffer.flush()
    if path is not None:
        logger.info(f"error log written: {path}")


def _report(response: ExecutionResponse, logger: logging.Logger) -> None:
    if response.validation is not None:
        for w in response.validation.warnings:
            logger.info(w)
    if response.result is not None:
        for w in response.result.warnings:
            logger.warning(w)
    if response.error:
        logger.error(response.error)
    log_summary(render_summary_line(response)[len("SUMMARY ") :])


def _exit_code(response: ExecutionResponse) -> int:
    if response.result is None and response.validation is None:
        return EXIT_FATAL
    if not response.success:
        return EXIT_FAILURE
    if response.result is not None and response.result.failed_rows > 0:
        return EXIT_FAILURE
    return EXIT_SUCCESS


async def _run(args: argparse.Namespace, cfg: ImportConfig, gateway: PersistenceGateway | None) -> ExecutionResponse:
    registry = ImportRegistry(gateway, cfg)
    registry.initialize()
    options = _options(args, cfg)
    try:
        if args.command == "validate":
            return await registry.validate_file(args.processor, args.file, options)
        if args.command == "preview":
            return await registry.preview(args.processor, args.file, options, rows=args.rows)
        return await registry.execute(args.processor, args.file, options)
    finally:
        await registry.cleanup()


def _list(cfg: ImportConfig, logger: logging.Logger) -> int:
    registry = ImportRegistry(None, cfg)
    registry.initialize()
    for meta in registry.all_metadata():
        logger.info(
            f"processor id={meta.id} order={meta.order} category={meta.category} "
            f"formats={','.join(meta.supported_formats)} required={str(meta.required).lower()} name=\"{meta.name}\""
        )
    stats = registry.statistics()
    log_summary(f"processors={stats['total']} required={stats['required']}")
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # None のときのみ sys.argv を読む (テストで main([...]) を呼ぶため)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug(logger)
        logger.debug("debug mode enabled")

    try:
        cfg = _load(args)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.command == "list":
        return _list(cfg, logger)

    if args.command == "preview":
        response = asyncio.run(_run(args, cfg, None))
    else:
        try:
            with _gateway(cfg, logger) as gateway:
                response = asyncio.run(_run(args, cfg, gateway))
        except psycopg2.Error as e:
            logger.error(f"database connection failed: {e}")
            return EXIT_FATAL
        _write_error_log(cfg, response, logger)

    if args.command == "preview" and response.result is not None:
        logger.info(f"columns={response.result.metadata.get('columns')}")
        for row in response.result.data or []:
            logger.info(json.dumps(row, ensure_ascii=False, default=str))

    _report(response, logger)
    return _exit_code(response)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
