"""
dbencrypttool: one-shot in-place encryption of configured columns.

Reads ``dbencrypttool.properties``, loads the certificate from the keystore,
then rewrites every configured ``table.column`` inside a single transaction.
Back up the database before running: per-target failures do not undo earlier
targets, and whatever succeeded is committed at the end.
"""

import argparse
import logging
import sys
from typing import Optional, Sequence

from sqlalchemy.engine import RootTransaction
from sqlalchemy.exc import SQLAlchemyError

from dbencrypttool.config import DEFAULT_CONFIG_PATH, ToolSettings, load_settings
from dbencrypttool.db import create_tool_engine, open_connection, scrub_url, to_sqlalchemy_url
from dbencrypttool.errors import CommitError, ConfigError, KeystoreError, ToolError
from dbencrypttool.logging import LOGGER_NAME, configure_logging
from dbencrypttool.services.column_migrate import TargetReport, process_target
from dbencrypttool.services.envelope import EnvelopeBuilder
from dbencrypttool.services.keystore import load_keystore

log = logging.getLogger(LOGGER_NAME)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _commit(trans: RootTransaction) -> None:
    try:
        trans.commit()
    except SQLAlchemyError as e:
        log.error("Commit failed: %s", e)
        try:
            trans.rollback()
        except SQLAlchemyError as rb:
            log.error("Rollback after failed commit also failed: %s", rb)
        raise CommitError(f"commit failed: {e}") from e


def run(settings: ToolSettings, *, strict: Optional[bool] = None, dry_run: bool = False) -> list[TargetReport]:
    """Encrypt every configured target in one transaction and commit it.

    Raises ``KeystoreError``/``ConfigError`` before the database is touched,
    ``DbConnectError`` if no connection can be made, and ``CommitError`` if the
    final commit fails (after attempting a rollback).
    """
    strict = settings.strict if strict is None else strict

    entry = load_keystore(
        settings.keystore_path,
        settings.keystore_password,
        settings.keystore_alias,
        settings.keystore_type,
    )
    thumbprint = entry.thumbprint
    log.info("Loaded keystore. Cert thumbprint (SHA-1): %s", thumbprint)

    builder = EnvelopeBuilder(entry.public_key, thumbprint, settings.encryption_algorithm)

    targets = settings.target_list
    if not targets:
        log.warning("No usable targets in %r; nothing to do", settings.targets)

    url = to_sqlalchemy_url(settings.db_url, settings.db_user, settings.db_password, settings.db_driver)
    log.info("Connecting to %s", scrub_url(url))
    engine = create_tool_engine(url)
    reports: list[TargetReport] = []
    try:
        with open_connection(engine) as conn:
            trans = conn.begin()
            try:
                for target in targets:
                    reports.append(process_target(conn, target, builder, strict=strict))
            except BaseException:
                trans.rollback()
                raise
            if dry_run:
                log.info("Dry run: rolling back all changes")
                trans.rollback()
            else:
                _commit(trans)
    finally:
        engine.dispose()

    for r in reports:
        log.info("%s: %s", r.target, r.as_dict())
    return reports


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="dbencrypttool", description=__doc__.strip().splitlines()[0])
    p.add_argument("--config", default=DEFAULT_CONFIG_PATH, help=f"properties file (default: {DEFAULT_CONFIG_PATH})")
    p.add_argument("--strict", action="store_true", default=None, help="skip targets without a discoverable primary key")
    p.add_argument("--dry-run", action="store_true", help="process everything, then roll back instead of committing")
    p.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="overrides log.level")
    p.add_argument("--log-format", choices=["text", "json"], help="overrides log.format")
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level or "INFO", args.log_format or "text")
    log.info("DBEncryptTool starting...")

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        log.error("ERROR: %s", e)
        return EXIT_CONFIG
    configure_logging(args.log_level or settings.log_level, args.log_format or settings.log_format)

    try:
        run(settings, strict=args.strict, dry_run=args.dry_run)
    except (ConfigError, KeystoreError) as e:
        log.error("ERROR: %s", e)
        return EXIT_CONFIG
    except ToolError as e:
        log.error("ERROR: %s", e)
        return EXIT_FAILED
    except Exception:
        log.exception("Unexpected error; transaction rolled back")
        return EXIT_FAILED

    log.info("DBEncryptTool finished.")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
