import logging
import os
from dataclasses import dataclass

from dotenv import load_dotenv

from fleetmon_server.errors import ConfigurationError

DEFAULT_EXPORT_PATH = "dashboard.json"
DEFAULT_LATEST_LIMIT = 10
DEFAULT_SAMPLE_INTERVAL = 60.0

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    database_url: str
    export_path: str = DEFAULT_EXPORT_PATH
    latest_limit: int = DEFAULT_LATEST_LIMIT
    sample_interval: float = DEFAULT_SAMPLE_INTERVAL
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ=None, dotenv=True):
        """Build settings from the environment, loading ``.env`` first.

        Pass ``environ`` to read from a plain mapping instead (``.env`` is
        then ignored).
        """
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ

        database_url = environ.get("DATABASE_URL")
        if not database_url:
            raise ConfigurationError("DATABASE_URL not found in environment or .env file")

        return cls(
            database_url=database_url,
            export_path=environ.get("FLEETMON_EXPORT_PATH") or DEFAULT_EXPORT_PATH,
            latest_limit=_parse_positive(
                environ, "FLEETMON_LATEST_LIMIT", int, DEFAULT_LATEST_LIMIT
            ),
            sample_interval=_parse_positive(
                environ, "FLEETMON_SAMPLE_INTERVAL", float, DEFAULT_SAMPLE_INTERVAL
            ),
            log_level=(environ.get("FLEETMON_LOG_LEVEL") or "INFO").upper(),
        )


def _parse_positive(environ, name, kind, default):
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = kind(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{name} must be greater than zero, got {raw!r}")
    return value


def configure_logging(level="INFO"):
    logging.basicConfig(level=level, format=LOG_FORMAT)
