"""Environment-driven configuration for the service."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

_TRUTHY = {"1", "true", "yes", "on"}


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


@dataclass
class Settings:
    """Runtime settings; defaults match the production deployment."""

    api2pdf_api_key: str = ""
    api2pdf_endpoint: str = "https://v2.api2pdf.com"
    data_dir: Path = Path("./data")
    workers: int = 4
    batch_size: int = 5
    batch_delay_sec: float = 2.0
    convert_timeout_sec: float = 60.0
    download_timeout_sec: float = 120.0
    max_bundle_mb: int = 25
    max_upload_mb: int = 5
    max_jobs: int = 1000
    job_ttl_sec: float = 24 * 60 * 60
    keep_artifacts: bool = False
    google_credentials_path: Path = Path("./credentials.json")
    drive_parent_folder_id: str | None = None
    email_service: str | None = None
    email_host: str = "smtp.gmail.com"
    email_port: int = 587
    email_user: str = ""
    email_password: str = field(default="", repr=False)
    email_from: str = ""
    log_level: str = "INFO"

    @property
    def jobs_dir(self) -> Path:
        return self.data_dir / "jobs"

    @property
    def max_bundle_bytes(self) -> int:
        return self.max_bundle_mb * 1024 * 1024

    @classmethod
    def from_env(cls) -> "Settings":
        email_user = os.getenv("EMAIL_USER", "")
        return cls(
            api2pdf_api_key=os.getenv("API2PDF_API_KEY", ""),
            api2pdf_endpoint=os.getenv("API2PDF_ENDPOINT", "https://v2.api2pdf.com").rstrip("/"),
            data_dir=Path(os.getenv("DATA_DIR", "./data")).resolve(),
            workers=_env_int("WORKERS", 4),
            batch_size=_env_int("BATCH_SIZE", 5),
            batch_delay_sec=_env_float("BATCH_DELAY_SEC", 2.0),
            convert_timeout_sec=_env_float("CONVERT_TIMEOUT_SEC", 60.0),
            download_timeout_sec=_env_float("DOWNLOAD_TIMEOUT_SEC", 120.0),
            max_bundle_mb=_env_int("MAX_BUNDLE_MB", 25),
            max_upload_mb=_env_int("MAX_UPLOAD_MB", 5),
            max_jobs=_env_int("MAX_JOBS", 1000),
            job_ttl_sec=_env_float("JOB_TTL_SEC", 24 * 60 * 60),
            keep_artifacts=_env_bool("KEEP_ARTIFACTS"),
            google_credentials_path=Path(os.getenv("GOOGLE_CREDENTIALS_PATH", "./credentials.json")),
            drive_parent_folder_id=os.getenv("DRIVE_PARENT_FOLDER_ID") or None,
            email_service=os.getenv("EMAIL_SERVICE") or None,
            email_host=os.getenv("EMAIL_HOST", "smtp.gmail.com"),
            email_port=_env_int("EMAIL_PORT", 587),
            email_user=email_user,
            email_password=os.getenv("EMAIL_PASSWORD", ""),
            email_from=os.getenv("EMAIL_FROM", email_user),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
