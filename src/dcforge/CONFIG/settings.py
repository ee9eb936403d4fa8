"""
Runtime settings read from DCFORGE_* environment variables and an optional .env file.
"""
import os
from typing import Dict, List, Mapping, Optional

from dotenv import dotenv_values
from pydantic import BaseModel, field_validator

from ..REGISTRY.discovery import DEFAULT_TAG, FALLBACK_TAG

ENV_PREFIX = "DCFORGE_"


class Settings(BaseModel):
    """
    Tunables for discovery and generation.
    """
    sources: List[str] = []
    discovery_tag: str = DEFAULT_TAG
    fallback_tag: Optional[str] = FALLBACK_TAG
    cache_ttl: int = 86400  # seconds
    timeout: float = 30.0  # seconds, per network request
    page_size: int = 100
    max_pages: int = 10
    log_level: str = "WARNING"

    @field_validator("sources", mode="before")
    @classmethod
    def _split_sources(cls, value):
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @field_validator("fallback_tag", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("cache_ttl", "page_size", "max_pages")
    @classmethod
    def _positive(cls, value):
        if value < 1:
            raise ValueError("must be at least 1")
        return value

    @classmethod
    def load(cls, env_file: Optional[str] = ".env", environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from a .env file and the process environment.
        Process environment values take precedence over the file.

        :param env_file: Path of a dotenv file; missing files are ignored.
        :param environ: Environment mapping, defaults to os.environ.
        :return: The settings.
        """
        values: Dict[str, Optional[str]] = {}
        if env_file and os.path.isfile(env_file):
            values.update(dotenv_values(env_file))
        values.update(os.environ if environ is None else environ)

        fields = {}
        for name in cls.model_fields:
            raw = values.get(ENV_PREFIX + name.upper())
            if raw is not None:
                fields[name] = raw
        return cls(**fields)
