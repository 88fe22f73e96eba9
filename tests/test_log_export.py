"""
Tests for the activity log CSV export.

Covers:
- CSV layout (header, quoting, line endings, timestamp format)
- Archive filename
- Export route against in-memory stores (success and archive failure)
"""

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from app.retail import create_app
from app.retail.audit import LogMessage, MemoryAuditQueue
from app.retail.modules.customers.repository import MemoryCustomerRepository
from app.retail.modules.customers.service import export_log
from app.retail.modules.customers.utils import (
    LOG_CSV_HEADER,
    build_log_csv,
    csv_quote,
    format_insertion_time,
    is_image_filename,
    log_csv_lines,
    log_export_filename,
)
from app.retail.storage import LogArchive, MemoryStorage, PhotoStore
from app.retail.stores import Stores

FIXED_NOW = datetime(2026, 3, 5, 14, 7, 9, tzinfo=timezone.utc)


class TestCsvLayout:
    def test_quote_doubles_embedded_quotes(self):
        assert csv_quote('say "hi"') == '"say ""hi"""'
        assert csv_quote("") == '""'
        assert csv_quote(None) == '""'

    def test_header_only_for_empty_log(self):
        data = build_log_csv([]).read()
        assert data == b"MessageId, InsertionTime, MessageText\r\n"

    def test_one_line_per_message(self):
        msgs = [
            LogMessage("m1", FIXED_NOW, '{"Action": "Customer Updated"}'),
            LogMessage("m2", FIXED_NOW + timedelta(seconds=1), "plain, with comma"),
        ]
        lines = log_csv_lines(msgs)
        assert lines[0] == LOG_CSV_HEADER
        assert lines[1] == '"m1", "2026/03/05 14:07:09", "{""Action"": ""Customer Updated""}"'
        assert lines[2] == '"m2", "2026/03/05 14:07:10", "plain, with comma"'

    def test_bytes_are_utf8_crlf_and_rewound(self):
        bio = build_log_csv([LogMessage("m1", FIXED_NOW, "café")])
        assert bio.tell() == 0
        raw = bio.read()
        assert raw.endswith(b"\r\n")
        assert raw.count(b"\r\n") == 2
        assert "café".encode("utf-8") in raw

    def test_insertion_time_converted_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        assert format_insertion_time(datetime(2026, 1, 1, 2, 0, 0, tzinfo=plus_two)) == "2026/01/01 00:00:00"
        assert format_insertion_time(datetime(2026, 1, 1, 2, 0, 0)) == "2026/01/01 02:00:00"
        assert format_insertion_time(None) == ""


class TestFilename:
    def test_pattern_has_no_day(self):
        assert log_export_filename(FIXED_NOW) == "Log_202603140709.csv"

    def test_aware_times_use_utc(self):
        minus_five = timezone(timedelta(hours=-5))
        assert log_export_filename(datetime(2026, 3, 5, 9, 7, 9, tzinfo=minus_five)) == "Log_202603140709.csv"


@pytest.mark.parametrize(
    "name,expected",
    [("a.png", True), ("A.JPG", True), ("x.jpeg", True), ("doc.pdf", False), ("noext", False), ("", False), (None, False)],
)
def test_is_image_filename(name, expected):
    assert is_image_filename(name) is expected


class FailingArchive(LogArchive):
    def upload_file(self, name, stream):
        raise RuntimeError("file share unavailable")


def _stores(archive=None):
    ids = itertools.count(1)
    queue = MemoryAuditQueue()
    queue.send('{"Action": "New Product Added"}')
    queue.send('{"Action": "Customer Deleted"}')
    return Stores(
        customers=MemoryCustomerRepository(),
        photos=PhotoStore(MemoryStorage()),
        audit=queue,
        archive=archive or LogArchive(MemoryStorage(), prefix="logs/"),
        new_id=lambda: f"id-{next(ids)}",
        clock=lambda: FIXED_NOW,
    )


def test_export_log_writes_archive():
    stores = _stores()
    result = export_log(stores)
    assert result.ok is True
    assert result.filename == "Log_202603140709.csv"
    assert result.message_count == 2

    raw = stores.archive.storage.objects["logs/Log_202603140709.csv"]
    assert stores.archive.storage.content_types["logs/Log_202603140709.csv"] == "text/csv"
    lines = raw.decode("utf-8").split("\r\n")
    assert lines[0] == LOG_CSV_HEADER
    assert len([ln for ln in lines if ln]) == 3
    # Exporting leaves the queue untouched.
    assert len(stores.audit.list()) == 2


def test_export_log_reports_upload_failure():
    stores = _stores(archive=FailingArchive(MemoryStorage()))
    result = export_log(stores)
    assert result.ok is False
    assert "file share unavailable" in result.error


@pytest.fixture()
def client(monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "memory")

    def _make(stores):
        c = create_app(stores=stores).test_client()
        with c.session_transaction() as sess:
            sess["csrf_token"] = "tok"
        return c

    return _make


def test_log_page_lists_messages(client):
    stores = _stores()
    r = client(stores).get("/customers/log")
    assert r.status_code == 200
    for m in stores.audit.list():
        assert m.message_id.encode() in r.data


def test_export_route_redirects_to_index(client):
    stores = _stores()
    r = client(stores).post("/customers/log/export", data={"csrf_token": "tok"})
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/customers/")
    assert "logs/Log_202603140709.csv" in stores.archive.storage.objects


def test_export_route_redirects_even_when_archive_fails(client):
    stores = _stores(archive=FailingArchive(MemoryStorage()))
    r = client(stores).post("/customers/log/export", data={"csrf_token": "tok"}, follow_redirects=True)
    assert r.status_code == 200
    assert r.request.path == "/customers/"
    assert b"flash" not in r.data
    assert b"Export" not in r.data.split(b"<main>")[1]


def test_export_route_needs_csrf(client):
    stores = _stores()
    r = client(stores).post("/customers/log/export")
    assert r.status_code == 400
    assert stores.archive.storage.objects == {}
