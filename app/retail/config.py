import os
from dataclasses import dataclass

VALID_STORAGE_BACKENDS = ("memory", "local", "s3", "azure")
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    log_level: str
    database_url: str

    storage_backend: str
    storage_root: str
    public_base_url: str

    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    azure_connection_string: str
    azure_account: str
    azure_customer_table: str
    azure_photo_container: str
    azure_audit_queue: str
    azure_log_share: str
    photo_sas_hours: int

    max_content_length: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from None


def load_settings() -> Settings:
    storage_backend = _getenv("STORAGE_BACKEND", "local").lower()
    if storage_backend not in VALID_STORAGE_BACKENDS:
        raise ValueError(f"STORAGE_BACKEND must be one of {VALID_STORAGE_BACKENDS}, got: {storage_backend}")

    log_level = _getenv("LOG_LEVEL", "INFO").upper()
    if log_level not in VALID_LOG_LEVELS:
        raise ValueError(f"LOG_LEVEL must be one of {VALID_LOG_LEVELS}, got: {log_level}")

    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        log_level=log_level,
        database_url=_getenv("DATABASE_URL", "sqlite:///retail.db"),
        storage_backend=storage_backend,
        storage_root=_getenv("STORAGE_ROOT", os.path.join(os.getcwd(), "storage")),
        public_base_url=_getenv("PUBLIC_BASE_URL", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        azure_connection_string=_getenv("AZURE_STORAGE_CONNECTION_STRING", ""),
        azure_account=_getenv("AZURE_STORAGE_ACCOUNT", ""),
        azure_customer_table=_getenv("AZURE_CUSTOMER_TABLE", "Customers"),
        azure_photo_container=_getenv("AZURE_PHOTO_CONTAINER", "customer-photos"),
        azure_audit_queue=_getenv("AZURE_AUDIT_QUEUE", "customer-log"),
        azure_log_share=_getenv("AZURE_LOG_SHARE", "customer-logs"),
        photo_sas_hours=_getint("PHOTO_SAS_HOURS", 24 * 365),
        max_content_length=_getint("MAX_CONTENT_LENGTH", 10 * 1024 * 1024),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "LOG_LEVEL": s.log_level,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_ROOT": s.storage_root,
        "PUBLIC_BASE_URL": s.public_base_url,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "AZURE_STORAGE_CONNECTION_STRING": s.azure_connection_string,
        "AZURE_STORAGE_ACCOUNT": s.azure_account,
        "AZURE_CUSTOMER_TABLE": s.azure_customer_table,
        "AZURE_PHOTO_CONTAINER": s.azure_photo_container,
        "AZURE_AUDIT_QUEUE": s.azure_audit_queue,
        "AZURE_LOG_SHARE": s.azure_log_share,
        "PHOTO_SAS_HOURS": s.photo_sas_hours,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        "MAX_CONTENT_LENGTH": s.max_content_length,
    }
