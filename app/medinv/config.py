import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    storage_backend: str
    storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    # SMTP fallbacks; an EmailConfig row in the database takes precedence.
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    smtp_secure: bool
    email_from: str
    email_from_name: str

    photo_max_width: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///medinv.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_root=_getenv("STORAGE_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "ams3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        smtp_host=_getenv("SMTP_HOST", ""),
        smtp_port=_getenv_int("SMTP_PORT", 587),
        smtp_user=_getenv("SMTP_USER", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        smtp_secure=_getenv_bool("SMTP_SECURE", True),
        email_from=_getenv("EMAIL_FROM", ""),
        email_from_name=_getenv("EMAIL_FROM_NAME", "Medische Inventaris"),
        photo_max_width=_getenv_int("PHOTO_MAX_WIDTH", 1200),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_ROOT": s.storage_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "SMTP_HOST": s.smtp_host,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USER": s.smtp_user,
        "SMTP_PASSWORD": s.smtp_password,
        "SMTP_SECURE": s.smtp_secure,
        "EMAIL_FROM": s.email_from,
        "EMAIL_FROM_NAME": s.email_from_name,
        "PHOTO_MAX_WIDTH": s.photo_max_width,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # raw photos may be up to 20MB before preprocessing
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
