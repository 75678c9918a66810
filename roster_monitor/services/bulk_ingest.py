from __future__ import annotations

import logging
import zipfile
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from io import BytesIO
from typing import Any, Union

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from roster_monitor.errors import ValidationError
from roster_monitor.models import EntitlementTier, MonitoringRecord
from roster_monitor.services.date_normalizer import (
    DateParseError,
    format_period,
    normalize_date,
    normalize_period,
    serial_to_date,
)
from roster_monitor.services.monitoring_store import find_monitoring, rederive
from roster_monitor.services.status_engine import local_today
from roster_monitor.settings import get_settings

logger = logging.getLogger("roster_monitor.ingest")

RawRow = Union[Sequence[Any], Mapping[str, Any]]

ROSTER_COLUMNS: tuple[str, ...] = (
    "worker_id",
    "display_name",
    "unit_tag",
    "reporting_period",
    "anchor_date",
    "entitlement_tier",
    "on_site",
    "group_tag",
)

HEADER_ALIASES: dict[str, str] = {
    "nik": "worker_id",
    "worker_id": "worker_id",
    "nama": "display_name",
    "name": "display_name",
    "display_name": "display_name",
    "nomor lambung": "unit_tag",
    "unit_tag": "unit_tag",
    "bulan": "reporting_period",
    "month": "reporting_period",
    "reporting_period": "reporting_period",
    "tanggal terakhir cuti": "anchor_date",
    "last_leave_date": "anchor_date",
    "anchor_date": "anchor_date",
    "pilihan cuti": "entitlement_tier",
    "leave_option": "entitlement_tier",
    "entitlement_tier": "entitlement_tier",
    "onsite": "on_site",
    "on site": "on_site",
    "on_site": "on_site",
    "investor group": "group_tag",
    "investor_group": "group_tag",
    "group_tag": "group_tag",
}

ON_SITE_SERIAL_THRESHOLD = 40000


@dataclass(frozen=True, slots=True)
class RowError:
    row_number: int
    reason: str
    worker_id: str | None = None


@dataclass(slots=True)
class IngestSummary:
    accepted: int = 0
    created: int = 0
    updated: int = 0
    skipped_blank: int = 0
    rejected: list[RowError] = field(default_factory=list)
    warnings: list[RowError] = field(default_factory=list)

    def describe(self) -> str:
        return f"{self.accepted} succeeded, {len(self.rejected)} failed"


@dataclass(frozen=True, slots=True)
class ParsedRosterRow:
    row_number: int
    worker_id: str
    display_name: str
    unit_tag: str | None
    reporting_period: str
    anchor_date: date | None
    entitlement_tier: EntitlementTier
    on_site_tag: str | None
    group_tag: str
    anchor_error: DateParseError | None = None


def cell_text(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = " ".join(str(value).strip().split())
    return text or None


def _row_values(raw_row: RawRow) -> dict[str, Any]:
    if isinstance(raw_row, Mapping):
        values: dict[str, Any] = {}
        for key, value in raw_row.items():
            column = HEADER_ALIASES.get(str(key).strip().lower())
            if column is not None:
                values[column] = value
        return values
    return {column: value for column, value in zip(ROSTER_COLUMNS, raw_row)}


def _is_blank(raw_row: RawRow) -> bool:
    cells = raw_row.values() if isinstance(raw_row, Mapping) else raw_row
    return all(cell_text(value) is None for value in cells)


def parse_entitlement_tier(value: Any) -> EntitlementTier:
    text = cell_text(value)
    if text is None:
        return EntitlementTier.TIER_70
    if text.endswith(".0"):
        text = text[:-2]
    try:
        return EntitlementTier(text)
    except ValueError:
        raise ValidationError(f'Invalid leave option "{text}" (expected 70 or 35)') from None


def parse_on_site(value: Any) -> str | None:
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.strftime("%d/%m/%Y")
    text = cell_text(value)
    if text is None:
        return None
    try:
        numeric = float(text)
    except ValueError:
        return text
    if numeric > ON_SITE_SERIAL_THRESHOLD:
        converted = serial_to_date(numeric)
        if converted is not None:
            return converted.strftime("%d/%m/%Y")
    return text


def _resolve_period(value: Any, *, row_number: int, today: date) -> str:
    if cell_text(value) is None:
        return format_period(today)
    resolved = normalize_period(value, row_number=row_number, today=today)
    if isinstance(resolved, DateParseError):
        logger.info(
            "roster_period_fallback",
            extra={"row_number": row_number, "raw_value": str(value), "reason": resolved.reason},
        )
        return format_period(today)
    return resolved


def parse_roster_row(raw_row: RawRow, *, row_number: int, today: date) -> ParsedRosterRow:
    values = _row_values(raw_row)
    worker_id = cell_text(values.get("worker_id"))
    display_name = cell_text(values.get("display_name"))
    if not worker_id or not display_name:
        raise ValidationError("Worker id (NIK) and name are required")

    entitlement_tier = parse_entitlement_tier(values.get("entitlement_tier"))

    anchor_date: date | None = None
    anchor_error: DateParseError | None = None
    raw_anchor = values.get("anchor_date")
    if cell_text(raw_anchor) is not None:
        resolved = normalize_date(raw_anchor, row_number=row_number, today=today)
        if isinstance(resolved, DateParseError):
            anchor_error = resolved
        else:
            anchor_date = resolved

    return ParsedRosterRow(
        row_number=row_number,
        worker_id=worker_id,
        display_name=display_name,
        unit_tag=cell_text(values.get("unit_tag")),
        reporting_period=_resolve_period(values.get("reporting_period"), row_number=row_number, today=today),
        anchor_date=anchor_date,
        entitlement_tier=entitlement_tier,
        on_site_tag=parse_on_site(values.get("on_site")),
        group_tag=cell_text(values.get("group_tag")) or get_settings().default_group_tag,
        anchor_error=anchor_error,
    )


def _upsert_row(db: Session, parsed: ParsedRosterRow, *, today: date) -> bool:
    record = find_monitoring(db, worker_id=parsed.worker_id, reporting_period=parsed.reporting_period)
    created = record is None
    if record is None:
        record = MonitoringRecord(worker_id=parsed.worker_id, reporting_period=parsed.reporting_period)
        db.add(record)
    elif record.anchor_date != parsed.anchor_date:
        record.rejected_anchor_date = None

    record.display_name = parsed.display_name
    record.unit_tag = parsed.unit_tag
    record.group_tag = parsed.group_tag
    record.anchor_date = parsed.anchor_date
    record.entitlement_tier = parsed.entitlement_tier
    record.on_site_tag = parsed.on_site_tag
    rederive(record, today)
    return created


def _count(summary: IngestSummary, created: bool) -> None:
    summary.accepted += 1
    if created:
        summary.created += 1
    else:
        summary.updated += 1


def _write_rows_individually(
    db: Session,
    parsed_rows: list[ParsedRosterRow],
    *,
    today: date,
    summary: IngestSummary,
) -> None:
    for parsed in parsed_rows:
        try:
            created = _upsert_row(db, parsed, today=today)
            db.commit()
        except (IntegrityError, StaleDataError) as exc:
            db.rollback()
            logger.warning(
                "roster_row_write_failed",
                extra={"row_number": parsed.row_number, "worker_id": parsed.worker_id, "error": str(exc)[:500]},
            )
            summary.rejected.append(
                RowError(
                    row_number=parsed.row_number,
                    reason="Row could not be stored (conflicting record)",
                    worker_id=parsed.worker_id,
                )
            )
            continue
        _count(summary, created)


def ingest_roster(
    db: Session,
    rows: Sequence[RawRow],
    *,
    today: date | None = None,
    row_offset: int = 0,
) -> IngestSummary:
    """Validate and store roster rows.

    Row numbers are 1-based positions in ``rows`` plus ``row_offset`` (pass 1
    for a sheet whose header row was stripped). Rows are written in chunks;
    when a chunk fails to commit its rows are retried one by one so only the
    offending rows are reported.
    """
    settings = get_settings()
    if len(rows) > settings.ingest_max_rows:
        raise ValidationError(
            f"Upload has {len(rows)} rows; the maximum per batch is {settings.ingest_max_rows}",
            code="BATCH_TOO_LARGE",
        )

    reference_day = today or local_today()
    chunk_size = max(1, int(settings.ingest_chunk_size))
    summary = IngestSummary()

    for chunk_start in range(0, len(rows), chunk_size):
        parsed_rows: list[ParsedRosterRow] = []
        chunk = rows[chunk_start : chunk_start + chunk_size]
        for position, raw_row in enumerate(chunk, start=chunk_start + 1):
            row_number = position + row_offset
            if _is_blank(raw_row):
                summary.skipped_blank += 1
                continue
            try:
                parsed = parse_roster_row(raw_row, row_number=row_number, today=reference_day)
            except ValidationError as exc:
                worker_id = cell_text(_row_values(raw_row).get("worker_id"))
                summary.rejected.append(
                    RowError(row_number=row_number, reason=exc.message, worker_id=worker_id)
                )
                continue
            if parsed.anchor_error is not None:
                summary.warnings.append(
                    RowError(
                        row_number=row_number,
                        reason=f"{parsed.anchor_error.reason}; record kept without anchor date",
                        worker_id=parsed.worker_id,
                    )
                )
            parsed_rows.append(parsed)

        if not parsed_rows:
            continue

        try:
            outcomes = [_upsert_row(db, parsed, today=reference_day) for parsed in parsed_rows]
            db.commit()
        except (IntegrityError, StaleDataError):
            db.rollback()
            logger.warning(
                "roster_chunk_write_failed",
                extra={"chunk_start": chunk_start + 1 + row_offset, "row_count": len(parsed_rows)},
            )
            _write_rows_individually(db, parsed_rows, today=reference_day, summary=summary)
            continue

        for created in outcomes:
            _count(summary, created)

    summary.rejected.sort(key=lambda item: item.row_number)
    logger.info(
        "roster_ingest_completed",
        extra={
            "accepted": summary.accepted,
            "records_created": summary.created,
            "records_updated": summary.updated,
            "rejected": len(summary.rejected),
            "warnings": len(summary.warnings),
            "skipped_blank": summary.skipped_blank,
        },
    )
    return summary


def read_roster_workbook(content: bytes) -> list[list[Any]]:
    """Return the data rows of the first worksheet, header row removed."""
    try:
        workbook = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as exc:
        raise ValidationError("Uploaded file is not a readable .xlsx workbook", code="INVALID_WORKBOOK") from exc

    try:
        if not workbook.worksheets:
            raise ValidationError("Workbook has no worksheets", code="INVALID_WORKBOOK")
        rows: list[list[Any]] = []
        for index, values in enumerate(workbook.worksheets[0].iter_rows(values_only=True)):
            if index == 0:
                continue
            rows.append(list(values))
    finally:
        workbook.close()

    while rows and all(cell_text(value) is None for value in rows[-1]):
        rows.pop()
    return rows
