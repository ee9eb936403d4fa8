"""
Structured results returned across component boundaries.
"""
from typing import List, Optional
from pydantic import BaseModel
from enum import Enum

from .feature import Feature, Conflict, ConflictSeverity
from .configuration import Configuration
from .package import PackageSummary
from .template import Template


class ErrorCode(str, Enum):
    """
    Machine-readable failure categories.
    """
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    IO = "io"
    NETWORK = "network"
    TIMEOUT = "timeout"
    MANIFEST_MALFORMED = "manifest_malformed"
    ALREADY_EXISTS = "already_exists"
    IN_PROGRESS = "in_progress"
    CANCELLED = "cancelled"


class ResolutionResult(BaseModel):
    """
    Outcome of resolving a requested feature set.
    resolved_features is empty whenever success is False.
    """
    success: bool = False
    resolved_features: List[Feature] = []
    conflicts: List[Conflict] = []
    missing_features: List[str] = []
    missing_dependencies: List[str] = []
    warnings: List[str] = []
    error_message: Optional[str] = None
    error_code: Optional[ErrorCode] = None

    @property
    def resolved_ids(self) -> List[str]:
        return [feature.id for feature in self.resolved_features]

    @property
    def blocking_conflicts(self) -> List[Conflict]:
        return [c for c in self.conflicts if c.severity.is_blocking]


class ValidationResult(BaseModel):
    """
    Errors and warnings found in a configuration.
    """
    is_valid: bool = True
    errors: List[str] = []
    warnings: List[str] = []
    severity: ConflictSeverity = ConflictSeverity.WARNING


class SourceError(BaseModel):
    """
    A failure confined to one discovery source.
    """
    source: str
    message: str
    code: ErrorCode = ErrorCode.NETWORK


class DiscoveryResult(BaseModel):
    """
    Packages found across sources plus the per-source errors and per-package warnings.
    An unreachable source shows up in errors, never as an exception.
    """
    packages: List[PackageSummary] = []
    errors: List[SourceError] = []
    warnings: List[str] = []

    @property
    def success(self) -> bool:
        return not self.errors


class SourceValidationResult(BaseModel):
    """
    Which package sources answered. is_valid needs at least one valid source and no errors.
    """
    valid_sources: List[str] = []
    invalid_sources: List[str] = []
    errors: List[SourceError] = []
    warnings: List[str] = []

    @property
    def is_valid(self) -> bool:
        return bool(self.valid_sources) and not self.errors


class ExtractionResult(BaseModel):
    """
    Outcome of unpacking a template package into a destination.
    """
    success: bool = False
    extracted_files: List[str] = []
    manifest: Optional[Template] = None
    error_message: Optional[str] = None
    error_code: Optional[ErrorCode] = None


class FileGenerationResult(BaseModel):
    """
    Outcome of writing a configuration to disk.
    """
    success: bool = False
    generated_file_path: Optional[str] = None
    generated_files: List[str] = []
    validation_errors: List[str] = []
    error_message: Optional[str] = None


class PipelineResult(BaseModel):
    """
    Outcome of a full initialization run.
    errors holds fatal problems in the order they occurred; warnings are informational.
    """
    success: bool = False
    configuration: Optional[Configuration] = None
    resolution: Optional[ResolutionResult] = None
    validation: Optional[ValidationResult] = None
    generated_files: List[str] = []
    errors: List[str] = []
    warnings: List[str] = []
    error_code: Optional[ErrorCode] = None

    @property
    def first_error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None
