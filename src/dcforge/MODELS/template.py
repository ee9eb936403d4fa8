"""
Models for devcontainer templates: named starting points for a configuration.
"""
from typing import List, Dict, Optional, Any, Union
from pydantic import BaseModel, ConfigDict, field_validator
from enum import Enum


class TemplateCategory(str, Enum):
    """
    Known template categories. Anything unrecognised lands in GENERAL.
    """
    RUNTIME = "runtime"
    WEB = "web"
    MICROSERVICES = "microservices"
    DATA = "data"
    GENERAL = "general"

    @classmethod
    def parse(cls, value: Optional[str]) -> "TemplateCategory":
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.GENERAL


class Template(BaseModel):
    """
    A base configuration that a project's devcontainer is derived from.
    Built from the catalog or from a discovered package, never mutated afterwards.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    category: TemplateCategory = TemplateCategory.GENERAL
    version: Optional[str] = None
    source: Optional[str] = None

    base_image: Optional[str] = None
    required_features: List[str] = []
    optional_features: List[str] = []
    default_extensions: List[str] = []
    default_customizations: Dict[str, Any] = {}

    # Kept loose so malformed entries survive until validation
    default_ports: List[Union[int, str]] = []
    default_post_create_command: Optional[str] = None
    default_env_vars: Dict[str, str] = {}
    # Variable name -> prompt text; values the user must supply
    required_env_vars: Dict[str, str] = {}

    requires_docker_compose: bool = False
    docker_compose_template: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _parse_category(cls, value):
        return TemplateCategory.parse(value)
