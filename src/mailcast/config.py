"""Summary: Application configuration for Mailcast.

Importance: Batch sizes, error limits, and delivery credentials all come from one place.
Alternatives: Read settings ad hoc with os.getenv where they are used.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for storage, batching, and delivery.

    Importance: Services receive plain typed values and never parse strings themselves.
    Alternatives: Pass the raw environment mapping around.
    """

    db_path: str
    api_host: str
    api_port: int
    api_key: str
    site_url: str
    from_address: str
    support_address: str
    chunk_size: int
    error_max_length: int
    recipient_limit: int
    job_workers: int
    delivery_provider: str
    delivery_batch_size: int
    smtp_host: str
    smtp_port: int
    smtp_user: str | None
    smtp_password: str | None
    smtp_use_tls: bool
    smtp_timeout: float
    mailgun_domain: str
    mailgun_api_key: str
    mailgun_base_url: str
    http_timeout: float

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Resolve settings from the environment, then .env, then config/defaults.json.

        Importance: Every key has a shipped default, so a bare checkout runs with the mock channel.
        Alternatives: Fail fast on any unset variable.
        """

        defaults = load_defaults(Path("config") / "defaults.json")
        load_dotenv(Path(".env"))
        return AppConfig(
            db_path=os.getenv("MAILCAST_DB_PATH", defaults["db_path"]),
            api_host=os.getenv("MAILCAST_API_HOST", defaults["api_host"]),
            api_port=int(os.getenv("MAILCAST_API_PORT", defaults["api_port"])),
            api_key=os.getenv("MAILCAST_API_KEY", defaults["api_key"]),
            site_url=os.getenv("MAILCAST_SITE_URL", defaults["site_url"]).rstrip("/"),
            from_address=os.getenv("MAILCAST_FROM_ADDRESS", defaults["from_address"]),
            support_address=os.getenv("MAILCAST_SUPPORT_ADDRESS", defaults["support_address"]),
            chunk_size=int(os.getenv("MAILCAST_CHUNK_SIZE", defaults["chunk_size"])),
            error_max_length=int(
                os.getenv("MAILCAST_ERROR_MAX_LENGTH", defaults["error_max_length"])
            ),
            recipient_limit=int(os.getenv("MAILCAST_RECIPIENT_LIMIT", defaults["recipient_limit"])),
            job_workers=int(os.getenv("MAILCAST_JOB_WORKERS", defaults["job_workers"])),
            delivery_provider=os.getenv(
                "MAILCAST_DELIVERY_PROVIDER", defaults["delivery_provider"]
            ),
            delivery_batch_size=int(
                os.getenv("MAILCAST_DELIVERY_BATCH_SIZE", defaults["delivery_batch_size"])
            ),
            smtp_host=os.getenv("MAILCAST_SMTP_HOST", defaults["smtp_host"]),
            smtp_port=int(os.getenv("MAILCAST_SMTP_PORT", defaults["smtp_port"])),
            smtp_user=os.getenv("MAILCAST_SMTP_USER") or defaults["smtp_user"] or None,
            smtp_password=os.getenv("MAILCAST_SMTP_PASSWORD") or defaults["smtp_password"] or None,
            smtp_use_tls=parse_bool(os.getenv("MAILCAST_SMTP_USE_TLS", defaults["smtp_use_tls"])),
            smtp_timeout=float(os.getenv("MAILCAST_SMTP_TIMEOUT", defaults["smtp_timeout"])),
            mailgun_domain=os.getenv("MAILGUN_DOMAIN", defaults["mailgun_domain"]),
            mailgun_api_key=os.getenv("MAILGUN_API_KEY", defaults["mailgun_api_key"]),
            mailgun_base_url=os.getenv("MAILGUN_BASE_URL", defaults["mailgun_base_url"]),
            http_timeout=float(os.getenv("MAILCAST_HTTP_TIMEOUT", defaults["http_timeout"])),
        )


def load_defaults(path: Path) -> dict[str, str]:
    """Read the shipped defaults; every value is a string, like the environment."""

    if not path.is_file():
        raise FileNotFoundError(f"Missing Mailcast defaults at {path}")
    with path.open(encoding="utf-8") as handle:
        return json.load(handle)


def load_dotenv(path: Path) -> None:
    """Summary: Copy `KEY=value` lines from a .env file into unset environment variables.

    Importance: Lets SMTP and Mailgun credentials live outside the repository.
    Alternatives: Require operators to export every variable in the shell.
    """

    if not path.is_file():
        return
    with path.open(encoding="utf-8") as handle:
        for entry in handle:
            entry = entry.strip()
            if entry.startswith("export "):
                entry = entry[len("export "):].lstrip()
            name, separator, raw = entry.partition("=")
            if entry.startswith("#") or not separator or not name.strip():
                continue
            os.environ.setdefault(name.strip(), raw.strip().strip("'\""))


def parse_bool(value: str | bool) -> bool:
    """Interpret common truthy strings from env files."""

    if isinstance(value, bool):
        return value
    return value.strip().lower() in {"1", "true", "yes", "on"}
