"""
Encrypt one (table, column) target in place.

For every row whose value is non-empty and does not already look like an
envelope, the value is replaced with ``EnvelopeBuilder.build(value)``. Rows are
addressed by primary key when one can be found; otherwise the UPDATE matches on
the old value, which rewrites every row sharing that value.

Nothing here commits. All targets share the caller's transaction, so a target
that fails half way leaves its earlier updates pending in that transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection, Dialect, Inspector
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.sql.elements import TextClause

from dbencrypttool.config import Target
from dbencrypttool.db import quote_identifier
from dbencrypttool.errors import EnvelopeError, RowSqlError, TargetMetadataError, UnsafeIdentifier
from dbencrypttool.services.envelope import EnvelopeBuilder, looks_like_envelope

log = logging.getLogger(__name__)

# Key columns of the product's token/consumer tables, tried when no PK is declared
PK_CANDIDATES = ("TOKEN_ID", "CONSUMER_KEY", "AUTH_CODE_KEY", "ID", "ID_", "AUTH_REQ_ID", "ACCESS_TOKEN")


@dataclass
class TargetReport:
    target: Target
    status: str = "skipped"  # skipped | updated | failed
    pk_column: Optional[str] = None
    value_match: bool = False
    updated: int = 0
    skipped_rows: int = 0
    failed_rows: int = 0
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            "target": str(self.target),
            "status": self.status,
            "pk": self.pk_column,
            "value_match": self.value_match,
            "updated": self.updated,
            "skipped_rows": self.skipped_rows,
            "failed_rows": self.failed_rows,
            "error": self.error,
        }


def _match(names: Sequence[str], wanted: str) -> Optional[str]:
    if wanted in names:
        return wanted
    low = wanted.lower()
    for n in names:
        if n.lower() == low:
            return n
    return None


def _resolve_table(insp: Inspector, table: str) -> Optional[str]:
    """The database spelling of ``table``; views and other schemas only by exact name."""
    found = _match(insp.get_table_names(), table)
    if found is not None:
        return found
    return table if insp.has_table(table) else None


def guess_primary_key(insp: Inspector, table: str, columns: Sequence[str]) -> Optional[str]:
    """First declared PK column, else the first well-known key column present."""
    pk = insp.get_pk_constraint(table).get("constrained_columns") or []
    if pk:
        return pk[0]
    for cand in PK_CANDIDATES:
        found = _match(columns, cand)
        if found:
            return found
    return None


def locate_target(conn: Connection, target: Target) -> Optional[tuple[str, str, Optional[str]]]:
    """Return ``(table, column, pk)`` as the database spells them, or None if absent."""
    try:
        insp = inspect(conn)
        table = _resolve_table(insp, target.table)
        if table is None:
            return None
        columns = [c["name"] for c in insp.get_columns(table)]
        column = _match(columns, target.column)
        if column is None:
            return None
    except SQLAlchemyError as e:
        raise TargetMetadataError(f"column lookup failed: {e}") from e
    try:
        pk = guess_primary_key(insp, table, columns)
    except SQLAlchemyError as e:
        raise TargetMetadataError(f"primary key lookup failed: {e}") from e
    return table, column, pk


def build_statements(dialect: Dialect, table: str, column: str, pk: Optional[str]) -> tuple[TextClause, TextClause]:
    def q(name: str) -> str:
        # text() would read ":name" inside an identifier as a bind parameter
        return quote_identifier(dialect, name).replace(":", r"\:")

    if pk is not None:
        select = text(f"SELECT {q(pk)}, {q(column)} FROM {q(table)}")
        update = text(f"UPDATE {q(table)} SET {q(column)} = :value WHERE {q(pk)} = :key")
    else:
        select = text(f"SELECT {q(column)} FROM {q(table)}")
        update = text(f"UPDATE {q(table)} SET {q(column)} = :value WHERE {q(column)} = :key")
    return select, update


def _transform_rows(
    conn: Connection,
    select: TextClause,
    update: TextClause,
    keyed: bool,
    builder: EnvelopeBuilder,
    report: TargetReport,
) -> None:
    try:
        result = conn.execute(select)
        for row in result:
            if keyed:
                key, value = row[0], row[1]
            else:
                key, value = None, row[0]
            pk_text = None if key is None else str(key)

            if value is None:
                continue
            if isinstance(value, (bytes, bytearray, memoryview)):
                log.info("  Skipping row (not a text value): pk=%s", pk_text)
                report.skipped_rows += 1
                continue
            plain = value if isinstance(value, str) else str(value)
            if not plain.strip():
                continue
            if looks_like_envelope(plain):
                log.info("  Skipping row (already looks encrypted): pk=%s", pk_text)
                report.skipped_rows += 1
                continue

            try:
                stored = builder.build(plain)
            except EnvelopeError as e:
                log.error("  Could not encrypt row pk=%s: %s", pk_text, e)
                report.failed_rows += 1
                continue

            res = conn.execute(update, {"value": stored, "key": key if keyed else value})
            report.updated += res.rowcount
            log.debug("  Encrypted row pk=%s (%d affected)", pk_text, res.rowcount)
    except SQLAlchemyError as e:
        raise RowSqlError(str(e.orig) if getattr(e, "orig", None) is not None else str(e)) from e


def process_target(
    conn: Connection,
    target: Target,
    builder: EnvelopeBuilder,
    *,
    strict: bool = False,
) -> TargetReport:
    """Encrypt ``target`` row by row; failures are logged and reported, never raised."""
    report = TargetReport(target=target)
    log.info("Processing %s.%s ...", target.table, target.column)

    try:
        located = locate_target(conn, target)
    except TargetMetadataError as e:
        log.error("  Error checking column %s in %s: %s", target.column, target.table, e)
        report.status, report.error = "failed", str(e)
        return report
    if located is None:
        log.info("  Skipping: column %s not found in table %s", target.column, target.table)
        return report

    table, column, pk = located
    if pk is None:
        if strict:
            log.warning("  Skipping: no primary key for table %s and strict mode forbids value matching", table)
            report.error = "no primary key"
            return report
        log.warning(
            "  Warning: could not find a primary key for table %s. Trying fallback update by matching column value.",
            table,
        )
        log.warning("  Rows sharing the same value in %s.%s will all be rewritten by one update.", table, column)
        report.value_match = True
    else:
        log.info("  Using primary key column: %s", pk)
    report.pk_column = pk

    try:
        select, update = build_statements(conn.dialect, table, column, pk)
    except UnsafeIdentifier as e:
        log.error("  Skipping %s.%s: %s", target.table, target.column, e)
        report.status, report.error = "failed", str(e)
        return report

    try:
        _transform_rows(conn, select, update, pk is not None, builder, report)
    except RowSqlError as e:
        log.error("  SQL error while processing %s.%s : %s", target.table, target.column, e)
        report.status, report.error = "failed", str(e)
        return report

    report.status = "updated"
    log.info("  Updated %d rows in %s.%s", report.updated, target.table, target.column)
    return report
