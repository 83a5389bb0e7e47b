"""
Export Rendering - CSV (RFC 4180) and JSON for activity logs and visitor
profiles.

Pure functions; the routes fetch rows through ActivityLogService or
AnalyticsService and hand them here.
"""

import csv
import io
import json
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

from openstream.config import settings
from openstream.exceptions import InvalidInputError
from openstream.models.api import ExportFormat, UserProfile, UsersResponse
from openstream.models.domain import LogEntry

CSV_HEADERS = [
    "ID",
    "Code",
    "Action",
    "Timestamp",
    "Details",
    "IP Address",
    "User Agent",
    "Success",
    "Duration (ms)",
]

USER_CSV_HEADERS = [
    "IP Address",
    "Browser",
    "Device Type",
    "First Seen",
    "Last Seen",
    "Total Sessions",
    "Codes Used",
    "Success Rate (%)",
    "Active Status",
    "User Agent",
]

MEDIA_TYPES = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.JSON: "application/json",
}

# Rough per-row sizes used for preview size estimates
ESTIMATED_ROW_BYTES = {
    ExportFormat.CSV: 150,
    ExportFormat.JSON: 300,
}


@dataclass(frozen=True)
class ExportResult:
    """Rendered export file."""

    content: str
    media_type: str
    filename: str
    total_records: int
    format: ExportFormat


def parse_format(value: str | None) -> ExportFormat:
    """Accept csv/json (any case); anything else is an input error."""
    try:
        return ExportFormat((value or "csv").lower())
    except ValueError:
        raise InvalidInputError("Invalid format. Supported formats: csv, json") from None


def row_cap(max_rows: int | None) -> int:
    """Requested row limit clamped to [1, export_max_rows]."""
    if max_rows is None:
        return settings.export_max_rows
    return max(1, min(max_rows, settings.export_max_rows))


def as_utc(moment: datetime) -> datetime:
    """Aware UTC datetime; naive values are stored UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


def iso_utc(moment: datetime) -> str:
    """Millisecond ISO-8601 in UTC with a Z suffix."""
    return as_utc(moment).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def time_ago(moment: datetime, now: datetime) -> str:
    """Human relative time: Just now, N minutes/hours/days ago."""
    seconds = (now - as_utc(moment)).total_seconds()
    minutes = int(seconds // 60)
    hours = int(seconds // 3600)
    days = int(seconds // 86400)

    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes > 1 else ''} ago"
    if hours < 24:
        return f"{hours} hour{'s' if hours > 1 else ''} ago"
    return f"{days} day{'s' if days > 1 else ''} ago"


def entry_to_json(entry: LogEntry) -> dict[str, Any]:
    """JSON-safe row with the usage_logs column names."""
    return {
        "id": str(entry.id),
        "code": entry.code,
        "action": entry.action.value,
        "timestamp": iso_utc(entry.timestamp),
        "details": entry.details,
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "success": entry.success,
        "outcome": entry.outcome.value if entry.outcome else None,
        "duration_ms": entry.duration_ms,
        "metadata": entry.metadata,
    }


def to_csv(entries: list[LogEntry]) -> str:
    """
    RFC 4180 CSV with CRLF line endings.

    An empty set still yields the header row.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow(CSV_HEADERS)
    for entry in entries:
        writer.writerow(
            [
                str(entry.id),
                entry.code,
                entry.action.value,
                iso_utc(entry.timestamp),
                entry.details or "",
                entry.ip_address or "",
                entry.user_agent or "",
                "N/A" if entry.success is None else str(entry.success).lower(),
                "" if entry.duration_ms is None else entry.duration_ms,
            ]
        )
    return buffer.getvalue()


def to_json(entries: list[LogEntry], include_metadata: bool, now: datetime) -> str:
    """{exportedAt, totalRecords, data}; metadata adds formatted_timestamp and time_ago."""
    rows = []
    for entry in entries:
        row = entry_to_json(entry)
        if include_metadata:
            stamp = as_utc(entry.timestamp)
            row["formatted_timestamp"] = stamp.strftime("%m/%d/%Y, %I:%M:%S %p")
            row["time_ago"] = time_ago(entry.timestamp, now)
        rows.append(row)

    return json.dumps(
        {"exportedAt": iso_utc(now), "totalRecords": len(rows), "data": rows},
        indent=2,
    )


def content_disposition(filename: str) -> str:
    """
    Attachment header value for a download name (RFC 6266).

    Non-ASCII names get an ASCII fallback plus a UTF-8 `filename*`, since
    header values are sent as latin-1.
    """
    if filename.isascii():
        return f'attachment; filename="{filename}"'
    fallback = "".join(ch if ch.isascii() else "_" for ch in filename)
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def default_filename(export_format: ExportFormat, now: datetime) -> str:
    """activity-logs-YYYY-MM-DD.<ext>"""
    return f"activity-logs-{now.astimezone(UTC).date().isoformat()}.{export_format.value}"


def render_export(
    entries: list[LogEntry],
    export_format: ExportFormat,
    now: datetime,
    include_metadata: bool = False,
    filename: str | None = None,
) -> ExportResult:
    """Render rows into the requested format."""
    if export_format == ExportFormat.CSV:
        content = to_csv(entries)
    else:
        content = to_json(entries, include_metadata, now)

    return ExportResult(
        content=content,
        media_type=MEDIA_TYPES[export_format],
        filename=filename or default_filename(export_format, now),
        total_records=len(entries),
        format=export_format,
    )


def estimated_size(total: int, export_format: ExportFormat) -> str:
    """Approximate file size label for previews."""
    return f"{round(total * ESTIMATED_ROW_BYTES[export_format] / 1024)} KB"


# ============================================================================
# Visitor profiles
# ============================================================================


def users_to_csv(users: Sequence[UserProfile]) -> str:
    """One RFC 4180 row per visitor profile, header row always present."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow(USER_CSV_HEADERS)
    for user in users:
        writer.writerow(
            [
                user.ip_address,
                user.browser,
                user.device_type,
                iso_utc(user.first_seen),
                iso_utc(user.last_seen),
                user.total_sessions,
                user.total_codes_used,
                user.success_rate,
                "Active" if user.is_active else "Inactive",
                user.user_agent,
            ]
        )
    return buffer.getvalue()


def users_to_json(response: UsersResponse, now: datetime) -> str:
    """{exportedAt, totalUsers, stats, users}"""
    return json.dumps(
        {
            "exportedAt": iso_utc(now),
            "totalUsers": len(response.users),
            "stats": response.stats.model_dump(mode="json", by_alias=True),
            "users": [user.model_dump(mode="json") for user in response.users],
        },
        indent=2,
    )


def render_users_export(
    response: UsersResponse, export_format: ExportFormat, now: datetime
) -> ExportResult:
    """Visitor profiles as users-export-YYYY-MM-DD.<ext>."""
    if export_format == ExportFormat.CSV:
        content = users_to_csv(response.users)
    else:
        content = users_to_json(response, now)

    return ExportResult(
        content=content,
        media_type=MEDIA_TYPES[export_format],
        filename=f"users-export-{as_utc(now).date().isoformat()}.{export_format.value}",
        total_records=len(response.users),
        format=export_format,
    )
