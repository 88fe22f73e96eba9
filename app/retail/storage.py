from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import BinaryIO
from urllib.parse import quote, unquote, urlparse

logger = logging.getLogger(__name__)

# User delegation SAS tokens cannot outlive the delegation key (7 days).
_MAX_DELEGATION_HOURS = 7 * 24
# SigV4 presigned URLs are valid for at most 7 days.
_MAX_PRESIGN_HOURS = 7 * 24


class StorageError(RuntimeError):
    pass


class Storage:
    """Flat key -> bytes store. Keys use forward slashes."""

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def url(self, key: str) -> str:
        raise NotImplementedError

    def key_from_url(self, url: str) -> str | None:
        raise NotImplementedError

    def ensure_ready(self) -> None:
        return None


@dataclass
class MemoryStorage(Storage):
    objects: dict[str, bytes] = field(default_factory=dict)
    content_types: dict[str, str] = field(default_factory=dict)

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        self.objects[key] = data
        if content_type:
            self.content_types[key] = content_type

    def open(self, key: str) -> BinaryIO:
        if key not in self.objects:
            raise FileNotFoundError(key)
        return io.BytesIO(self.objects[key])

    def exists(self, key: str) -> bool:
        return key in self.objects

    def delete(self, key: str) -> None:
        self.objects.pop(key, None)
        self.content_types.pop(key, None)

    def url(self, key: str) -> str:
        return f"memory://{key}"

    def key_from_url(self, url: str) -> str | None:
        if not url.startswith("memory://"):
            return None
        return url[len("memory://"):]


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path
    # Photos written here are served back by routes.media.
    public_base_url: str = ""

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        p = (self.root / safe_key).resolve()
        if self.root.resolve() not in p.parents:
            raise StorageError(f"Key escapes storage root: {key!r}")
        return p

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        return p.open("rb")

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def url(self, key: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/media/{quote(key.lstrip('/'))}"

    def key_from_url(self, url: str) -> str | None:
        path = urlparse(url).path
        marker = "/media/"
        idx = path.find(marker)
        if idx < 0:
            return None
        return unquote(path[idx + len(marker):]) or None

    def ensure_ready(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class S3Storage(Storage):
    """S3 / Spaces bucket; url() hands out presigned GET links (objects stay private)."""

    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    url_hours: int = _MAX_PRESIGN_HOURS

    def _client(self):
        try:
            import boto3  # type: ignore
            from botocore.config import Config  # type: ignore
        except Exception as e:  # pragma: no cover
            raise StorageError("boto3 required for S3 storage. Install boto3.") from e
        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            # Virtual-hosted URLs keep the bucket in the host, which key_from_url relies on.
            config=Config(signature_version="s3v4", s3={"addressing_style": "virtual"}),
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)

    def open(self, key: str) -> BinaryIO:
        obj = self._client().get_object(Bucket=self.bucket, Key=key)
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
            return True
        except Exception:
            return False

    def delete(self, key: str) -> None:
        self._client().delete_object(Bucket=self.bucket, Key=key)

    def url(self, key: str) -> str:
        return self._client().generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=min(self.url_hours, _MAX_PRESIGN_HOURS) * 3600,
        )

    def key_from_url(self, url: str) -> str | None:
        parsed = urlparse(url)
        if not parsed.netloc.startswith(f"{self.bucket}."):
            return None
        return unquote(parsed.path.lstrip("/")) or None


def azure_credential():
    try:
        from azure.identity import DefaultAzureCredential  # type: ignore
    except Exception as e:  # pragma: no cover
        raise StorageError("azure-identity required when no connection string is set.") from e
    return DefaultAzureCredential()


@dataclass(frozen=True)
class AzureBlobStorage(Storage):
    """Blob container; url() hands out read-only SAS links."""

    container: str
    connection_string: str = ""
    account: str = ""
    sas_hours: int = 24 * 365

    def _service(self):
        try:
            from azure.storage.blob import BlobServiceClient  # type: ignore
        except Exception as e:  # pragma: no cover
            raise StorageError("azure-storage-blob required for Azure storage.") from e
        if self.connection_string:
            return BlobServiceClient.from_connection_string(self.connection_string)
        if not self.account:
            raise StorageError("AZURE_STORAGE_CONNECTION_STRING or AZURE_STORAGE_ACCOUNT must be set.")
        return BlobServiceClient(
            account_url=f"https://{self.account}.blob.core.windows.net",
            credential=azure_credential(),
        )

    def _blob(self, key: str):
        return self._service().get_blob_client(container=self.container, blob=key)

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        from azure.storage.blob import ContentSettings  # type: ignore

        self._blob(key).upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type or "application/octet-stream"),
        )
        logger.info("Wrote blob %s/%s (%s bytes)", self.container, key, len(data))

    def open(self, key: str) -> BinaryIO:
        return io.BytesIO(self._blob(key).download_blob().readall())

    def exists(self, key: str) -> bool:
        return bool(self._blob(key).exists())

    def delete(self, key: str) -> None:
        from azure.core.exceptions import ResourceNotFoundError  # type: ignore

        try:
            self._blob(key).delete_blob()
        except ResourceNotFoundError:
            logger.warning("Blob not found for deletion: %s/%s", self.container, key)

    def url(self, key: str) -> str:
        from azure.storage.blob import BlobSasPermissions, generate_blob_sas  # type: ignore

        service = self._service()
        blob_client = service.get_blob_client(container=self.container, blob=key)
        start = datetime.now(timezone.utc)
        account_key = getattr(service.credential, "account_key", None)
        if account_key:
            sas = generate_blob_sas(
                account_name=service.account_name,
                container_name=self.container,
                blob_name=key,
                account_key=account_key,
                permission=BlobSasPermissions(read=True),
                expiry=start + timedelta(hours=self.sas_hours),
            )
        else:
            expiry = start + timedelta(hours=min(self.sas_hours, _MAX_DELEGATION_HOURS))
            delegation_key = service.get_user_delegation_key(key_start_time=start, key_expiry_time=expiry)
            sas = generate_blob_sas(
                account_name=service.account_name,
                container_name=self.container,
                blob_name=key,
                user_delegation_key=delegation_key,
                permission=BlobSasPermissions(read=True),
                expiry=expiry,
                start=start,
            )
        return f"{blob_client.url}?{sas}"

    def key_from_url(self, url: str) -> str | None:
        path = urlparse(url).path.lstrip("/")
        prefix = f"{self.container}/"
        if not path.startswith(prefix):
            return None
        return unquote(path[len(prefix):]) or None

    def ensure_ready(self) -> None:
        from azure.core.exceptions import ResourceExistsError  # type: ignore

        try:
            self._service().create_container(self.container)
            logger.info("Created blob container: %s", self.container)
        except ResourceExistsError:
            logger.debug("Blob container already exists: %s", self.container)


@dataclass(frozen=True)
class AzureFileShareStorage(Storage):
    """Azure Files share, flat directory. Used for log archives, never linked publicly."""

    share: str
    connection_string: str = ""
    account: str = ""

    def _share(self):
        try:
            from azure.storage.fileshare import ShareClient  # type: ignore
        except Exception as e:  # pragma: no cover
            raise StorageError("azure-storage-file-share required for Azure storage.") from e
        if self.connection_string:
            return ShareClient.from_connection_string(self.connection_string, share_name=self.share)
        if not self.account:
            raise StorageError("AZURE_STORAGE_CONNECTION_STRING or AZURE_STORAGE_ACCOUNT must be set.")
        return ShareClient(
            account_url=f"https://{self.account}.file.core.windows.net",
            share_name=self.share,
            credential=azure_credential(),
            token_intent="backup",
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        self._share().get_file_client(key).upload_file(data)
        logger.info("Wrote file %s/%s (%s bytes)", self.share, key, len(data))

    def open(self, key: str) -> BinaryIO:
        return io.BytesIO(self._share().get_file_client(key).download_file().readall())

    def exists(self, key: str) -> bool:
        from azure.core.exceptions import ResourceNotFoundError  # type: ignore

        try:
            self._share().get_file_client(key).get_file_properties()
            return True
        except ResourceNotFoundError:
            return False

    def delete(self, key: str) -> None:
        self._share().get_file_client(key).delete_file()

    def url(self, key: str) -> str:
        return self._share().get_file_client(key).url

    def key_from_url(self, url: str) -> str | None:
        path = urlparse(url).path.lstrip("/")
        prefix = f"{self.share}/"
        if not path.startswith(prefix):
            return None
        return unquote(path[len(prefix):]) or None

    def ensure_ready(self) -> None:
        from azure.core.exceptions import ResourceExistsError  # type: ignore

        try:
            self._share().create_share()
            logger.info("Created file share: %s", self.share)
        except ResourceExistsError:
            logger.debug("File share already exists: %s", self.share)


class PhotoStore:
    """Customer photos: upload returns the URL stored on the record, delete takes that URL back."""

    def __init__(self, storage: Storage, *, prefix: str = "photos/") -> None:
        self.storage = storage
        self.prefix = prefix

    def upload(self, photo_id: str, stream: BinaryIO, content_type: str | None = None) -> str:
        key = f"{self.prefix}{photo_id}"
        self.storage.put_bytes(key, stream.read(), content_type=content_type)
        logger.info("Uploaded photo %s", key)
        return self.storage.url(key)

    def delete(self, url: str) -> None:
        key = self.storage.key_from_url(url)
        if not key:
            raise StorageError(f"Photo URL does not belong to this store: {url}")
        self.storage.delete(key)
        logger.info("Deleted photo %s", key)

    def ensure_ready(self) -> None:
        self.storage.ensure_ready()


class LogArchive:
    """Write-only archive for exported audit logs."""

    def __init__(self, storage: Storage, *, prefix: str = "") -> None:
        self.storage = storage
        self.prefix = prefix

    def upload_file(self, name: str, stream: BinaryIO) -> None:
        key = f"{self.prefix}{name}"
        self.storage.put_bytes(key, stream.read(), content_type="text/csv")
        logger.info("Archived %s", key)

    def ensure_ready(self) -> None:
        self.storage.ensure_ready()


def storage_from_config(config: dict, *, area: str = "photos") -> Storage:
    """
    area: "photos" (customer photos) or "logs" (exported audit logs).
    Azure keeps them in different services: blobs for photos, a file share for logs.
    """
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "memory":
        return MemoryStorage()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
            url_hours=int(config.get("PHOTO_SAS_HOURS") or 24 * 365),
        )
    if backend == "azure":
        conn = (config.get("AZURE_STORAGE_CONNECTION_STRING") or "").strip()
        account = (config.get("AZURE_STORAGE_ACCOUNT") or "").strip()
        if area == "logs":
            return AzureFileShareStorage(
                share=config.get("AZURE_LOG_SHARE") or "customer-logs",
                connection_string=conn,
                account=account,
            )
        return AzureBlobStorage(
            container=config.get("AZURE_PHOTO_CONTAINER") or "customer-photos",
            connection_string=conn,
            account=account,
            sas_hours=int(config.get("PHOTO_SAS_HOURS") or 24 * 365),
        )
    # default local
    root = Path(config.get("STORAGE_ROOT") or (Path.cwd() / "storage"))
    return LocalStorage(root=root, public_base_url=(config.get("PUBLIC_BASE_URL") or "").strip())
