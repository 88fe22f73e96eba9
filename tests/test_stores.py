"""
Store-level tests: SQL repository and queue on sqlite, local/memory/S3/Azure storage URL
handling, and the Azure wrappers against mocked SDK clients.
"""

import base64
import io
import json
import logging
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest import mock
from urllib.parse import parse_qs, urlparse

import pytest
from azure.core.exceptions import ResourceNotFoundError

from app.retail.audit import (
    AzureAuditQueue,
    MemoryAuditQueue,
    SqlAuditQueue,
    build_audit_message,
    record_event,
)
from app.retail.db import create_db_engine, make_sessionmaker
from app.retail.modules.customers.models import Customer
from app.retail.modules.customers.repository import (
    CustomerNotFound,
    MemoryCustomerRepository,
    SqlCustomerRepository,
    TableCustomerRepository,
)
from app.retail.storage import (
    AzureBlobStorage,
    LocalStorage,
    LogArchive,
    MemoryStorage,
    PhotoStore,
    S3Storage,
    StorageError,
)

NOW = datetime(2026, 3, 5, 14, 7, 9, tzinfo=timezone.utc)


def _customer(row_key="r1", **overrides):
    fields = dict(
        partition_key="customer",
        row_key=row_key,
        customer_id="c1",
        first_name="Ann",
        last_name="Lee",
        email="a@x.com",
        phone_number="555-1111",
        photo_url=None,
    )
    fields.update(overrides)
    return Customer(**fields)


@pytest.fixture()
def sm(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path/'stores.db'}")
    return make_sessionmaker(engine)


# ---------- Customer repositories ----------
class TestSqlCustomerRepository:
    def test_insert_get_list(self, sm):
        repo = SqlCustomerRepository(sm)
        repo.ensure_ready()
        repo.insert(_customer("r1"))
        repo.insert(_customer("r2", first_name="Bob"))

        assert repo.get("customer", "r1") == _customer("r1")
        assert repo.get("customer", "missing") is None
        assert repo.get("other", "r1") is None
        assert [c.row_key for c in repo.list()] == ["r1", "r2"]

    def test_update_replaces_fields(self, sm):
        repo = SqlCustomerRepository(sm)
        repo.ensure_ready()
        repo.insert(_customer())
        repo.update(_customer(phone_number="555-2222", photo_url="/media/photos/p"))
        got = repo.get("customer", "r1")
        assert got.phone_number == "555-2222"
        assert got.photo_url == "/media/photos/p"

    def test_update_missing_raises(self, sm):
        repo = SqlCustomerRepository(sm)
        repo.ensure_ready()
        with pytest.raises(CustomerNotFound):
            repo.update(_customer("ghost"))

    def test_delete(self, sm):
        repo = SqlCustomerRepository(sm)
        repo.ensure_ready()
        repo.insert(_customer())
        repo.delete("customer", "r1")
        assert repo.list() == []
        # Deleting again is a no-op.
        repo.delete("customer", "r1")

    def test_ensure_ready_is_idempotent(self, sm):
        repo = SqlCustomerRepository(sm)
        repo.ensure_ready()
        repo.ensure_ready()


class TestMemoryCustomerRepository:
    def test_get_returns_copy(self):
        repo = MemoryCustomerRepository()
        repo.insert(_customer())
        c = repo.get("customer", "r1")
        c.first_name = "Changed"
        assert repo.get("customer", "r1").first_name == "Ann"

    def test_duplicate_insert_rejected(self):
        repo = MemoryCustomerRepository()
        repo.insert(_customer())
        with pytest.raises(ValueError):
            repo.insert(_customer())


class TestTableCustomerRepository:
    def _repo(self, table):
        repo = TableCustomerRepository("Customers", connection_string="UseDevelopmentStorage=true")
        repo._table = lambda: table
        return repo

    def test_insert_uses_pascal_case_entity(self):
        table = mock.Mock()
        self._repo(table).insert(_customer(photo_url=None))
        entity = table.create_entity.call_args.kwargs["entity"]
        assert entity == {
            "PartitionKey": "customer",
            "RowKey": "r1",
            "CustomerId": "c1",
            "FirstName": "Ann",
            "LastName": "Lee",
            "Email": "a@x.com",
            "PhoneNumber": "555-1111",
            "PhotoUrl": "",
        }

    def test_get_missing_returns_none(self):
        table = mock.Mock()
        table.get_entity.side_effect = ResourceNotFoundError("nope")
        assert self._repo(table).get("customer", "r1") is None

    def test_get_maps_entity(self):
        table = mock.Mock()
        table.get_entity.return_value = {
            "PartitionKey": "customer",
            "RowKey": "r1",
            "CustomerId": "c1",
            "FirstName": "Ann",
            "LastName": "Lee",
            "Email": "a@x.com",
            "PhoneNumber": "555-1111",
            "PhotoUrl": "https://acct.blob.core.windows.net/customer-photos/p",
        }
        c = self._repo(table).get("customer", "r1")
        assert c.full_name == "Ann Lee"
        assert c.photo_url.endswith("/customer-photos/p")

    def test_update_replaces_entity(self):
        from azure.data.tables import UpdateMode

        table = mock.Mock()
        self._repo(table).update(_customer(phone_number="555-2222"))
        kwargs = table.update_entity.call_args.kwargs
        assert kwargs["mode"] == UpdateMode.REPLACE
        assert kwargs["entity"]["PhoneNumber"] == "555-2222"

    def test_delete_by_keys(self):
        table = mock.Mock()
        self._repo(table).delete("customer", "r1")
        table.delete_entity.assert_called_once_with(partition_key="customer", row_key="r1")


# ---------- Audit queue ----------
class TestAuditMessages:
    def test_message_shape(self):
        body = json.loads(build_audit_message("Customer Updated", _customer(), NOW))
        assert body["Action"] == "Customer Updated"
        assert body["TimeStamp"] == "2026-03-05T14:07:09Z"
        assert set(body["Details"]) == {"PartitionKey", "RowKey", "FirstName", "LastName", "Email", "PhoneNumber"}

    def test_record_event_swallows_queue_failure(self):
        queue = mock.Mock()
        queue.send.side_effect = RuntimeError("down")
        result = record_event(queue, action="Customer Deleted", customer=_customer(), now=NOW)
        assert result.ok is False
        assert result.error == "down"
        assert json.loads(result.message_text)["Action"] == "Customer Deleted"

    def test_record_event_sends_once(self):
        queue = MemoryAuditQueue()
        result = record_event(queue, action="Customer Deleted", customer=_customer(), now=NOW)
        assert result.ok is True
        [m] = queue.list()
        assert m.message_text == result.message_text


def test_sql_audit_queue_keeps_order(sm):
    q = SqlAuditQueue(sm)
    q.ensure_ready()
    q.send("first")
    q.send("second")
    msgs = q.list()
    assert [m.message_text for m in msgs] == ["first", "second"]
    assert msgs[0].message_id != msgs[1].message_id
    assert all(m.insertion_time is not None for m in msgs)


class TestAzureAuditQueue:
    def _queue(self, client):
        q = AzureAuditQueue("customer-log", connection_string="UseDevelopmentStorage=true")
        q._client = lambda: client
        return q

    def test_client_encodes_bodies_as_base64_text(self):
        from azure.storage.queue import TextBase64DecodePolicy, TextBase64EncodePolicy

        q = AzureAuditQueue("customer-log", connection_string="UseDevelopmentStorage=true")
        with mock.patch("azure.storage.queue.QueueClient.from_connection_string") as factory:
            q._client()
        kwargs = factory.call_args.kwargs
        assert kwargs["queue_name"] == "customer-log"
        assert isinstance(kwargs["message_encode_policy"], TextBase64EncodePolicy)
        assert isinstance(kwargs["message_decode_policy"], TextBase64DecodePolicy)

    def test_base64_policies_keep_text_verbatim(self):
        from azure.storage.queue import TextBase64DecodePolicy, TextBase64EncodePolicy

        # "test" is itself valid base64; it must still come back as "test".
        for text in ("test", '{"Action": "x"}', "café"):
            encoded = TextBase64EncodePolicy().encode(text)
            assert base64.b64decode(encoded).decode("utf-8") == text
            assert TextBase64DecodePolicy().decode(encoded, None) == text

    def test_send_hands_plain_text_to_client(self):
        client = mock.Mock()
        client.send_message.return_value = {"id": "m1"}
        self._queue(client).send('{"Action": "x"}')
        client.send_message.assert_called_once_with('{"Action": "x"}')

    def test_list_peeks_without_reinterpreting_content(self):
        client = mock.Mock()
        client.peek_messages.return_value = [SimpleNamespace(id="m1", inserted_on=NOW, content="test")]
        [m] = self._queue(client).list()
        assert (m.message_id, m.insertion_time, m.message_text) == ("m1", NOW, "test")
        client.peek_messages.assert_called_once_with(max_messages=32)
        client.receive_messages.assert_not_called()

    def test_list_warns_when_peek_limit_reached(self, caplog):
        client = mock.Mock()
        client.peek_messages.return_value = [
            SimpleNamespace(id=f"m{i}", inserted_on=NOW, content="x") for i in range(32)
        ]
        with caplog.at_level(logging.WARNING, logger="app.retail.audit"):
            assert len(self._queue(client).list()) == 32
        assert any("peek limit" in r.getMessage() for r in caplog.records)

    def test_list_below_limit_does_not_warn(self, caplog):
        client = mock.Mock()
        client.peek_messages.return_value = [SimpleNamespace(id="m1", inserted_on=NOW, content="x")]
        with caplog.at_level(logging.WARNING, logger="app.retail.audit"):
            self._queue(client).list()
        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


# ---------- Photo / archive storage ----------
class TestLocalStorage:
    def test_url_round_trips_to_key(self, tmp_path):
        s = LocalStorage(root=tmp_path, public_base_url="https://shop.example/")
        url = s.url("photos/a b")
        assert url == "https://shop.example/media/photos/a%20b"
        assert s.key_from_url(url) == "photos/a b"
        assert s.key_from_url("https://elsewhere.example/img.png") is None

    def test_rejects_path_escape(self, tmp_path):
        s = LocalStorage(root=tmp_path / "root")
        with pytest.raises(StorageError):
            s.put_bytes("../outside", b"x")

    def test_put_open_delete(self, tmp_path):
        s = LocalStorage(root=tmp_path)
        s.put_bytes("photos/p1", b"img")
        with s.open("photos/p1") as f:
            assert f.read() == b"img"
        s.delete("photos/p1")
        assert not s.exists("photos/p1")


class TestPhotoStore:
    def test_upload_returns_url(self):
        photos = PhotoStore(MemoryStorage())
        url = photos.upload("p1", io.BytesIO(b"img"), "image/png")
        assert url == "memory://photos/p1"
        assert photos.storage.content_types["photos/p1"] == "image/png"

    def test_delete_by_url(self):
        photos = PhotoStore(MemoryStorage())
        url = photos.upload("p1", io.BytesIO(b"img"))
        photos.delete(url)
        assert not photos.storage.exists("photos/p1")

    def test_delete_foreign_url_raises(self):
        photos = PhotoStore(MemoryStorage())
        with pytest.raises(StorageError):
            photos.delete("https://elsewhere.example/p1.png")


def test_log_archive_prefixes_key():
    archive = LogArchive(MemoryStorage(), prefix="logs/")
    archive.upload_file("Log_1.csv", io.BytesIO(b"x"))
    assert archive.storage.objects == {"logs/Log_1.csv": b"x"}


class TestS3Storage:
    def _storage(self, endpoint=""):
        return S3Storage(endpoint=endpoint, region="us-east-1", bucket="photos-bucket", access_key_id="k", secret_access_key="s")

    def test_url_is_presigned_get(self):
        s = self._storage()
        client = mock.Mock()
        client.generate_presigned_url.return_value = "https://photos-bucket.s3.amazonaws.com/photos/p1?X-Amz-Signature=abc"
        with mock.patch.object(S3Storage, "_client", return_value=client):
            url = s.url("photos/p1")
        client.generate_presigned_url.assert_called_once_with(
            "get_object",
            Params={"Bucket": "photos-bucket", "Key": "photos/p1"},
            ExpiresIn=7 * 24 * 3600,
        )
        assert s.key_from_url(url) == "photos/p1"

    def test_real_client_signs_virtual_hosted_url(self):
        s = self._storage("nyc3.digitaloceanspaces.com")
        url = s.url("photos/p1")
        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert parsed.netloc == "photos-bucket.nyc3.digitaloceanspaces.com"
        assert "X-Amz-Signature" in query
        assert query["X-Amz-Expires"] == ["604800"]
        assert s.key_from_url(url) == "photos/p1"

    def test_shorter_url_lifetime_is_kept(self):
        s = S3Storage(endpoint="", region="us-east-1", bucket="b", access_key_id="k", secret_access_key="s", url_hours=2)
        client = mock.Mock()
        with mock.patch.object(S3Storage, "_client", return_value=client):
            s.url("photos/p1")
        assert client.generate_presigned_url.call_args.kwargs["ExpiresIn"] == 7200

    def test_key_from_url_ignores_other_buckets(self):
        s = self._storage()
        assert s.key_from_url("https://other-bucket.s3.amazonaws.com/photos/p1?X-Amz-Signature=x") is None

    def test_put_and_delete_call_client(self):
        s = self._storage()
        client = mock.Mock()
        with mock.patch.object(S3Storage, "_client", return_value=client):
            s.put_bytes("photos/p1", b"img", content_type="image/png")
            s.delete("photos/p1")
        client.put_object.assert_called_once_with(Bucket="photos-bucket", Key="photos/p1", Body=b"img", ContentType="image/png")
        client.delete_object.assert_called_once_with(Bucket="photos-bucket", Key="photos/p1")


def test_azure_blob_key_from_sas_url():
    s = AzureBlobStorage(container="customer-photos", account="acct")
    url = "https://acct.blob.core.windows.net/customer-photos/photos/p1?sv=2024&sig=abc"
    assert s.key_from_url(url) == "photos/p1"
    assert s.key_from_url("https://acct.blob.core.windows.net/other/photos/p1") is None


def test_azure_blob_delete_tolerates_missing_blob():
    s = AzureBlobStorage(container="customer-photos", account="acct")
    blob = mock.Mock()
    blob.delete_blob.side_effect = ResourceNotFoundError("gone")
    with mock.patch.object(AzureBlobStorage, "_blob", return_value=blob):
        s.delete("photos/p1")
    blob.delete_blob.assert_called_once_with()
