"""
Models for discovery sources and the template packages found in them.
"""
from typing import List, Dict, Optional
from pydantic import BaseModel, ConfigDict
from enum import Enum

from .template import Template, TemplateCategory
from ..UTILS.ports import parse_port_list, split_csv

DEFAULT_BASE_IMAGE = "mcr.microsoft.com/vscode/devcontainers/base:ubuntu"

_TRUE_VALUES = {"true", "1", "yes", "on"}


class SourceKind(str, Enum):
    """
    Where a discovery source lives.
    """
    LOCAL = "local"
    REMOTE = "remote"


class SourceRef(BaseModel):
    """
    A local directory of package archives or a remote package index URL.
    """
    model_config = ConfigDict(frozen=True)

    location: str
    kind: SourceKind = SourceKind.LOCAL

    @classmethod
    def parse(cls, location: str) -> "SourceRef":
        """
        Classify a source string. http(s) URLs are remote, everything else is a path.
        """
        if not location or not location.strip():
            raise ValueError("Source location cannot be empty")
        location = location.strip()
        if location.lower().startswith(("http://", "https://")):
            return cls(location=location, kind=SourceKind.REMOTE)
        return cls(location=location, kind=SourceKind.LOCAL)

    @property
    def is_remote(self) -> bool:
        return self.kind is SourceKind.REMOTE

    def __str__(self) -> str:
        return self.location


class PackageSummary(BaseModel):
    """
    Metadata of a discovered template package, read without unpacking its content.
    """
    model_config = ConfigDict(frozen=True)

    package_id: str
    version: str
    title: str = ""
    description: str = ""
    authors: List[str] = []
    tags: List[str] = []
    project_url: Optional[str] = None
    metadata: Dict[str, str] = {}
    source: Optional[str] = None
    download_count: int = 0
    is_prerelease: bool = False

    @property
    def key(self) -> str:
        return f"{self.package_id.lower()}@{self.version.lower()}"

    @property
    def category(self) -> TemplateCategory:
        for tag in self.tags:
            if tag.lower().startswith("category:"):
                return TemplateCategory.parse(tag.split(":", 1)[1])
        return TemplateCategory.GENERAL

    def has_tag(self, tag: str) -> bool:
        wanted = tag.strip().lower()
        return any(t.lower() == wanted for t in self.tags)

    def to_template(self) -> Template:
        """
        Convert package metadata into a Template.

        Recognised metadata keys: baseImage, requiredFeatures, optionalFeatures,
        vscodeExtensions, defaultPorts, postCreateCommand, requiresDockerCompose,
        dockerComposeTemplate, env:<NAME> and requiredEnv:<NAME>.
        """
        meta = self.metadata
        default_env: Dict[str, str] = {}
        required_env: Dict[str, str] = {}
        for key, value in meta.items():
            if key.startswith("env:") and len(key) > 4:
                default_env[key[4:]] = value
            elif key.startswith("requiredEnv:") and len(key) > 12:
                required_env[key[12:]] = value

        return Template(
            id=self.package_id,
            name=self.title or self.package_id,
            description=self.description,
            category=self.category,
            version=self.version,
            source=self.source,
            base_image=meta.get("baseImage") or DEFAULT_BASE_IMAGE,
            required_features=split_csv(meta.get("requiredFeatures")),
            optional_features=split_csv(meta.get("optionalFeatures")),
            default_extensions=split_csv(meta.get("vscodeExtensions")),
            default_ports=parse_port_list(meta.get("defaultPorts")),
            default_post_create_command=meta.get("postCreateCommand") or None,
            default_env_vars=default_env,
            required_env_vars=required_env,
            requires_docker_compose=(meta.get("requiresDockerCompose") or "").strip().lower() in _TRUE_VALUES,
            docker_compose_template=meta.get("dockerComposeTemplate") or None,
        )
