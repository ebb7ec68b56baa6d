"""
Runtime settings read from the environment (and a local .env file).
"""
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

PACKAGE_LOGGERS = (
    "TypeDependencyGraph",
    "DiscoveryGraph",
    "RecordBuilder",
    "BuilderRegistry",
    "CommitOrchestrator",
    "FieldConstraints",
    "MockStore",
    "SqlPersistenceEngine",
)


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    database_url: str = "sqlite:///:memory:"
    allow_privileged_commit: bool = False
    log_level: str = "WARNING"
    id_width: int = Field(default=12, ge=1)
    record_type_field: str = "RecordTypeId"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        load_dotenv(dotenv_path)
        return cls(
            database_url=os.getenv("RECORDGRAPH_DATABASE_URL", "sqlite:///:memory:"),
            allow_privileged_commit=_env_flag("RECORDGRAPH_ALLOW_PRIVILEGED_COMMIT"),
            log_level=os.getenv("RECORDGRAPH_LOG_LEVEL", "WARNING").upper(),
            id_width=int(os.getenv("RECORDGRAPH_ID_WIDTH", "12")),
            record_type_field=os.getenv("RECORDGRAPH_RECORD_TYPE_FIELD", "RecordTypeId"),
        )


def configure_logging(settings: Settings) -> None:
    """Apply the configured level to every package logger."""
    for name in PACKAGE_LOGGERS:
        logging.getLogger(name).setLevel(settings.log_level)
