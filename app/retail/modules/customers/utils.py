from __future__ import annotations

import io
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.retail.audit import LogMessage

LOG_CSV_HEADER = "MessageId, InsertionTime, MessageText"
LOG_CSV_TIME_FORMAT = "%Y/%m/%d %H:%M:%S"
# Year, month, hour, minute, second (no day) to stay compatible with existing archives.
LOG_FILENAME_TIME_FORMAT = "%Y%m%H%M%S"

IMAGE_EXTENSIONS = frozenset({"jpg", "jpeg", "png", "gif", "webp", "bmp"})


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc)


def csv_quote(value: object) -> str:
    """Wrap in double quotes, doubling any embedded double quote."""
    text = "" if value is None else str(value)
    return '"' + text.replace('"', '""') + '"'


def format_insertion_time(value: datetime | None) -> str:
    if value is None:
        return ""
    return _as_utc(value).strftime(LOG_CSV_TIME_FORMAT)


def log_csv_lines(messages: Iterable["LogMessage"]) -> list[str]:
    lines = [LOG_CSV_HEADER]
    for m in messages:
        lines.append(
            ", ".join(
                [
                    csv_quote(m.message_id),
                    csv_quote(format_insertion_time(m.insertion_time)),
                    csv_quote(m.message_text),
                ]
            )
        )
    return lines


def build_log_csv(messages: Iterable["LogMessage"]) -> io.BytesIO:
    """
    Render the audit log as UTF-8 CSV, rewound and ready to upload.

    The header and separator are ", " (comma + space), which the csv module cannot produce,
    so rows are assembled by hand.
    """
    bio = io.BytesIO()
    for line in log_csv_lines(messages):
        bio.write((line + "\r\n").encode("utf-8"))
    bio.seek(0)
    return bio


def log_export_filename(now: datetime) -> str:
    return f"Log_{_as_utc(now).strftime(LOG_FILENAME_TIME_FORMAT)}.csv"


def is_image_filename(filename: str | None) -> bool:
    if not filename or "." not in filename:
        return False
    return filename.rsplit(".", 1)[1].lower() in IMAGE_EXTENSIONS
