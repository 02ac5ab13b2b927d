"""Runtime settings and logging setup.

every setting can be overridden from the environment with a YOYFORGE_ prefix,
e.g. YOYFORGE_DATABASE_PATH=./data/sales.duckdb.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.logging import RichHandler


class Settings(BaseSettings):
    """Settings for the comparison store."""

    model_config = SettingsConfigDict(env_prefix="YOYFORGE_")

    database_path: str | None = None  # None = in-memory duckdb
    catalog_path: Path = Path("./metrics")
    table_prefix: str = ""

    # schemas change rarely, five minutes is plenty
    column_cache_ttl: float = Field(default=300.0, ge=0)
    distinct_max_rows: int = Field(default=10_000, gt=0)

    log_level: str = "WARNING"


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings object."""
    return Settings()


def setup_logging(loglevel: str) -> None:
    """Send log records through rich."""
    level = getattr(logging, loglevel.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Invalid log level: {loglevel}")

    logformat = "[%(asctime)s] %(levelname)s: %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=logformat,
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
        force=True,
    )
