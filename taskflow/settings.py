"""Application settings loaded from the environment (and a .env file)."""
import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator
import pytz

from taskflow.services.errors import InvalidInputError
from taskflow.services.materialization import MaterializationConfig
from taskflow.services.timezone import validate_timezone

DEFAULT_DATABASE_URL = "sqlite:///./taskflow.db"

ENV_KEYS = {
    "database_url": "DATABASE_URL",
    "pool_size": "TASKFLOW_POOL_SIZE",
    "default_timezone": "TASKFLOW_DEFAULT_TIMEZONE",
    "lookahead_days": "TASKFLOW_LOOKAHEAD_DAYS",
    "min_upcoming_instances": "TASKFLOW_MIN_UPCOMING_INSTANCES",
    "max_batch_size": "TASKFLOW_MAX_BATCH_SIZE",
    "enable_catchup": "TASKFLOW_ENABLE_CATCHUP",
    "materialization_grace_days": "TASKFLOW_GRACE_DAYS",
    "default_filters": "TASKFLOW_DEFAULT_FILTERS",
    "log_level": "LOG_LEVEL",
}


def detect_system_timezone(environ: Optional[Mapping[str, str]] = None) -> str:
    """Best guess at the host's IANA zone, falling back to UTC."""
    environ = os.environ if environ is None else environ

    candidates = [environ.get("TZ", "").lstrip(":")]
    timezone_file = Path("/etc/timezone")
    if timezone_file.is_file():
        try:
            candidates.append(timezone_file.read_text().strip())
        except OSError:
            pass
    localtime = Path("/etc/localtime")
    if localtime.is_symlink():
        target = str(localtime.resolve())
        if "zoneinfo/" in target:
            candidates.append(target.split("zoneinfo/", 1)[1])

    for name in candidates:
        if name and name in pytz.all_timezones_set:
            return name
    return "UTC"


class Settings(BaseModel):
    """Recognized configuration options."""

    database_url: str = DEFAULT_DATABASE_URL
    pool_size: int = Field(default=5, ge=1)
    default_timezone: str = "UTC"
    lookahead_days: int = Field(default=30, ge=0)
    min_upcoming_instances: int = Field(default=1, ge=0)
    max_batch_size: int = Field(default=100, ge=1)
    enable_catchup: bool = False
    materialization_grace_days: int = Field(default=3, ge=0)
    default_filters: List[str] = Field(default_factory=list)
    log_level: str = "INFO"

    @field_validator("default_timezone")
    @classmethod
    def check_timezone(cls, value: str) -> str:
        validate_timezone(value)
        return value

    @field_validator("default_filters", mode="before")
    @classmethod
    def split_filters(cls, value):
        if isinstance(value, str):
            return [part.strip() for part in value.split(";") if part.strip()]
        return value

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read instead of os.environ
            dotenv: Load a .env file into os.environ first

        Raises:
            InvalidInputError: If a value does not parse
        """
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ

        values: Dict[str, str] = {
            option: environ[key] for option, key in ENV_KEYS.items() if environ.get(key)
        }
        values.setdefault("default_timezone", detect_system_timezone(environ))
        try:
            return cls(**values)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid configuration: {e}")

    def materialization_config(self) -> MaterializationConfig:
        return MaterializationConfig(
            lookahead_days=self.lookahead_days,
            min_upcoming_instances=self.min_upcoming_instances,
            max_batch_size=self.max_batch_size,
            enable_catchup=self.enable_catchup,
            materialization_grace_days=self.materialization_grace_days,
            default_timezone=self.default_timezone,
        )
