"""
Models describing devcontainer features and the conflicts between them.
"""
from typing import List, Dict, Optional, Any, Tuple
from pydantic import BaseModel, ConfigDict, field_validator
from enum import Enum


class FeatureCategory(str, Enum):
    """
    Known feature categories. Anything unrecognised lands in OTHER.
    """
    RUNTIME = "runtime"
    TOOL = "tool"
    CLOUD = "cloud"
    KUBERNETES = "kubernetes"
    DATABASE = "database"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Optional[str]) -> "FeatureCategory":
        if isinstance(value, cls):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.OTHER


class ConflictSeverity(str, Enum):
    """
    How serious a conflict is. Only WARNING lets resolution continue.
    """
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return {"warning": 1, "error": 2, "critical": 3}[self.value]

    @property
    def is_blocking(self) -> bool:
        return self is not ConflictSeverity.WARNING


class FeatureOption(BaseModel):
    """
    A single configurable option exposed by a feature.
    """
    model_config = ConfigDict(frozen=True)

    type: str = "string"
    description: str = ""
    default: Any = None
    enum: List[Any] = []
    required: bool = False
    pattern: Optional[str] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None


class Feature(BaseModel):
    """
    An installable capability for a devcontainer.

    Features are immutable once loaded. The catalog owns them and everything
    else refers to them by identifier.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    version: str = "latest"
    repository: str = ""
    category: FeatureCategory = FeatureCategory.OTHER
    tags: List[str] = []

    default_options: Dict[str, Any] = {}
    options: Dict[str, FeatureOption] = {}

    dependencies: List[str] = []
    conflicts_with: List[str] = []
    # Severity per conflicting id; ids missing here default to ERROR
    conflict_severities: Dict[str, ConflictSeverity] = {}

    deprecated: bool = False
    deprecation_message: Optional[str] = None
    documentation: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _parse_category(cls, value):
        return FeatureCategory.parse(value)

    @property
    def qualified_id(self) -> str:
        """The devcontainer.json reference, e.g. ghcr.io/devcontainers/features/node:1."""
        if not self.repository:
            return self.id
        return f"{self.repository}:{self.version}"

    def matches(self, reference: str) -> bool:
        """
        Check whether a short name, qualified id or bare repository refers to this feature.
        """
        ref = reference.strip().lower()
        if not ref:
            return False
        candidates = {self.id.lower(), self.qualified_id.lower()}
        if self.repository:
            candidates.add(self.repository.lower())
        return ref in candidates

    def severity_for(self, other_id: str) -> ConflictSeverity:
        return self.conflict_severities.get(other_id, ConflictSeverity.ERROR)

    def options_with_defaults(self) -> Dict[str, Any]:
        """Declared option defaults overlaid with the feature's explicit default options."""
        merged = {
            name: option.default
            for name, option in self.options.items()
            if option.default is not None
        }
        merged.update(self.default_options)
        return merged


class Conflict(BaseModel):
    """
    An incompatibility between features: a mutually exclusive pair or a
    dependency cycle. Members are kept sorted so the pair is unordered.
    """
    model_config = ConfigDict(frozen=True)

    members: Tuple[str, ...]
    reason: str
    severity: ConflictSeverity = ConflictSeverity.ERROR
    resolution: Optional[str] = None
    cycle: bool = False

    @field_validator("members", mode="before")
    @classmethod
    def _sort_members(cls, value):
        return tuple(sorted(value))
