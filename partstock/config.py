from __future__ import annotations

import logging
import os
from pathlib import Path

from pydantic import BaseModel, Field

ENV_PREFIX = "PARTSTOCK_"


class Settings(BaseModel):
    db_path: Path = Path("./partstock.db")
    busy_timeout: float = Field(default=30.0, gt=0)
    log_level: str = "INFO"


def load_settings(environ=None) -> Settings:
    env = os.environ if environ is None else environ
    values = {}
    if env.get(f"{ENV_PREFIX}DB"):
        values["db_path"] = env[f"{ENV_PREFIX}DB"]
    if env.get(f"{ENV_PREFIX}BUSY_TIMEOUT"):
        values["busy_timeout"] = env[f"{ENV_PREFIX}BUSY_TIMEOUT"]
    if env.get(f"{ENV_PREFIX}LOG_LEVEL"):
        values["log_level"] = env[f"{ENV_PREFIX}LOG_LEVEL"].upper()
    return Settings(**values)


def configure_logging(level: str | int = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
