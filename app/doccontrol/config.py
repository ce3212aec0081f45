import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    storage_backend: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    smtp_server: str
    smtp_port: str
    smtp_use_tls: bool
    smtp_username: str
    smtp_password: str
    email_from: str

    virustotal_api_key: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getbool(name: str, default: bool) -> bool:
    raw = _getenv(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///doccontrol.db"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        smtp_server=_getenv("SMTP_SERVER", ""),
        smtp_port=_getenv("SMTP_PORT", ""),
        smtp_use_tls=_getbool("SMTP_USE_TLS", True),
        smtp_username=_getenv("SMTP_USERNAME", ""),
        smtp_password=_getenv("SMTP_PASSWORD", ""),
        email_from=_getenv("EMAIL_FROM", ""),
        virustotal_api_key=_getenv("VIRUSTOTAL_API_KEY", ""),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "STORAGE_BACKEND": s.storage_backend,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "SMTP_SERVER": s.smtp_server,
        "SMTP_PORT": s.smtp_port,
        "SMTP_USE_TLS": s.smtp_use_tls,
        "SMTP_USERNAME": s.smtp_username,
        "SMTP_PASSWORD": s.smtp_password,
        "EMAIL_FROM": s.email_from,
        "VIRUSTOTAL_API_KEY": s.virustotal_api_key,
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,
        # attachments are capped at 50MB each
        "MAX_CONTENT_LENGTH": 50 * 1024 * 1024,
    }
