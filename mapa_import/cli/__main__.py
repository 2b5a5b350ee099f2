from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from ..config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from ..db.version_store import InMemoryVersionStore, PostgresVersionStore, VersionStore
from ..errors import PublishError, StructuralError, UnknownSheetError
from ..excel.detect import classify_headers
from ..excel.reader import read_workbook
from ..logging.init import log_summary, set_debug, setup_logging
from ..models.config_models import ImportConfig
from ..models.sheet import SheetModel
from ..services.pipeline import run_import
from ..services.summary import render_summary_line

"""CLI entrypoint.

    python -m mapa_import.cli FILE [--config PATH] [--model SHEET=MODEL ...]
        [--validate-only] [--apply-corrections] [--min-confidence X]
        [--inspect-data] [--debug]

Exit codes: 0 every row valid, 2 run completed with row errors, 1 fatal.
DISABLE_DB_CONNECT=1 runs against the in-memory store. Otherwise a failed
database connection is fatal; --validate-only never connects.
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1


def _resolve_dsn(cfg: ImportConfig) -> str:
    """Connection string, environment first.

    Priority: DATABASE_URL / PGDSN, then PGHOST/PGPORT/PGUSER/PGPASSWORD/
    PGDATABASE, then the database section of the config file.
    """
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


def _connect(cfg: ImportConfig) -> Any:  # pragma: no cover (needs a live database)
    conn = psycopg2.connect(_resolve_dsn(cfg))
    conn.autocommit = False
    return conn


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv; its values win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="mapa_import",
        description="Processo/testemunha spreadsheet -> versioned dataset importer",
    )
    p.add_argument("file", type=Path, help="Workbook to import (.xlsx, .xls or .csv)")
    p.add_argument("--config", type=Path, default=None, help=f"Config file (default {DEFAULT_CONFIG_PATH})")
    p.add_argument(
        "--model",
        action="append",
        default=[],
        metavar="SHEET=MODEL",
        help="Resolve a sheet's model manually (processo or testemunha); repeatable",
    )
    p.add_argument("--validate-only", action="store_true", help="Validate and write the issue log, do not publish")
    p.add_argument("--apply-corrections", action="store_true", help="Apply correction suggestions and revalidate")
    p.add_argument("--min-confidence", type=float, default=0.0, help="Minimum confidence of applied corrections")
    p.add_argument("--inspect-data", action="store_true", help="Print sheet headers & first rows then exit")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def _parse_overrides(values: list[str]) -> dict[str, SheetModel]:
    overrides: dict[str, SheetModel] = {}
    for item in values:
        sheet, sep, model = item.rpartition("=")
        if not sep or not sheet:
            raise ValueError(f"expected SHEET=MODEL, got '{item}'")
        try:
            resolved = SheetModel(model.strip().lower())
        except ValueError:
            raise ValueError(f"unknown model '{model}' for sheet '{sheet}'") from None
        if resolved is SheetModel.AMBIGUOUS:
            raise ValueError(f"sheet '{sheet}' must be mapped to processo or testemunha")
        overrides[sheet] = resolved
    return overrides


def _load(args: argparse.Namespace) -> ImportConfig:
    if args.config is not None:
        return load_config(args.config)
    if DEFAULT_CONFIG_PATH.exists():
        return load_config(DEFAULT_CONFIG_PATH)
    return ImportConfig()


def _inspect_data(path: Path) -> int:
    try:
        _, sheets = read_workbook(path)
    except StructuralError as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    print(f"FILE: {path.name}")
    for name, raw in sheets.items():
        model = classify_headers(raw.headers)
        print(f"  SHEET: {name} model={model.value} rows={len(raw.rows)} cols={raw.headers}")
        safe_rows = [
            [v.isoformat() if hasattr(v, "isoformat") else v for v in row]
            for row in raw.rows[:3]
        ]
        print("    sample_rows=", safe_rows)
    return EXIT_SUCCESS_ALL


def _execute(args, cfg, overrides, store: VersionStore) -> int:
    logger = setup_logging()
    try:
        outcome = run_import(
            args.file,
            cfg,
            store,
            overrides=overrides,
            apply_suggestions=args.apply_corrections,
            min_confidence=args.min_confidence,
            validate_only=args.validate_only,
        )
    except StructuralError as e:
        logger.error(f"structure: {e}")
        return EXIT_FATAL
    except PublishError as e:
        logger.error(f"publish: {e}")
        return EXIT_FATAL
    except UnknownSheetError as e:
        logger.error(f"model: {e}")
        return EXIT_FATAL

    for suggestion in outcome.validation.corrections:
        logger.debug(
            f"suggestion {suggestion.row_ref} {suggestion.field}: "
            f"{suggestion.original_value!r} -> {suggestion.corrected_value!r} "
            f"({suggestion.correction_type.value}, {suggestion.confidence:.2f})"
        )
    summary_line = render_summary_line(outcome.validation.summary, outcome.publish)
    # log_summary adds the "SUMMARY " label itself
    log_summary(summary_line[len("SUMMARY "):])

    if outcome.validation.summary.errors > 0:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # only read sys.argv when argv is None, so main([]) under pytest stays isolated
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    if args.debug:
        set_debug(True)
        logger.debug("debug mode enabled")

    if args.inspect_data:
        return _inspect_data(args.file)

    try:
        cfg = _load(args)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL
    try:
        overrides = _parse_overrides(args.model)
    except ValueError as e:
        logger.error(f"model: {e}")
        return EXIT_FATAL
    if not 0.0 <= args.min_confidence <= 1.0:
        logger.error(f"--min-confidence must be within [0, 1], got {args.min_confidence}")
        return EXIT_FATAL

    logger.info(f"Importing {args.file}")

    # DISABLE_DB_CONNECT=1 keeps everything in memory (tests, dry runs)
    if os.getenv("DISABLE_DB_CONNECT") == "1" or args.validate_only:
        logger.debug("database disabled -> mock mode")
        return _execute(args, cfg, overrides, InMemoryVersionStore())

    try:
        conn = _connect(cfg)
    except psycopg2.Error as db_e:
        logger.error(f"database: connection failed: {db_e}")
        return EXIT_FATAL

    try:
        store = PostgresVersionStore(conn, page_size=cfg.publisher.chunk_size)
        try:
            store.ensure_schema()
        except PublishError as e:
            logger.error(f"schema: {e}")
            return EXIT_FATAL
        logger.info("mode=live")
        return _execute(args, cfg, overrides, store)
    finally:
        conn.close()


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
