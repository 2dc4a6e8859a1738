"""
Process configuration, read once at startup from the environment and an
optional .env file.
"""
import os
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

ENV_PREFIX = "SWARMPILOT_"


class Settings(BaseModel):
    """
    Runtime settings for the engine connection and logging.
    """
    docker_host: Optional[str] = None
    engine_timeout: int = Field(default=60, gt=0)
    connect_attempts: int = Field(default=3, ge=1)
    connect_backoff: float = Field(default=0.5, ge=0)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """
        Builds settings from SWARMPILOT_* variables.

        :param env_file: Optional path to a .env file; defaults to ./.env when present.
        :return: Validated settings.
        """
        load_dotenv(env_file or find_dotenv(usecwd=True))
        values = {}
        for field_name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{field_name.upper()}")
            if raw is not None and raw != "":
                values[field_name] = raw
        return cls(**values)
