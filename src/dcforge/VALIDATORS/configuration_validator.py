"""
Structural validation of merged devcontainer configurations.
"""
import re
from typing import Any, Dict, Iterable, List, Optional

from ..CATALOG.catalog import SourceCatalog
from ..MODELS.configuration import Configuration
from ..MODELS.feature import ConflictSeverity, Feature
from ..MODELS.results import ValidationResult
from ..UTILS.ports import is_valid_port

NAME_PATTERN = re.compile(r"^[A-Za-z0-9 _.\-]+$")
_TARGET_KEYS = ("target", "dst", "destination")


def mount_target(mount: Any) -> Optional[str]:
    """
    Extract the container-side path of a mount given as a dict,
    a "type=bind,source=..,target=.." string or a "src:dst" string.
    """
    if isinstance(mount, dict):
        for key in _TARGET_KEYS:
            if mount.get(key):
                return str(mount[key])
        return None
    if not isinstance(mount, str):
        return None
    if "=" in mount:
        for part in mount.split(","):
            key, _, value = part.partition("=")
            if key.strip().lower() in _TARGET_KEYS and value.strip():
                return value.strip()
        return None
    pieces = mount.split(":")
    if len(pieces) >= 2 and pieces[1]:
        return pieces[1]
    return None


class ConfigurationValidator:
    """
    Checks a configuration against structural rules and feature option schemas.
    The configuration is never modified.
    """

    def __init__(self, catalog: Optional[SourceCatalog] = None):
        """
        :param catalog: Used to look up feature definitions for option checks
                        when no resolved features are passed to validate().
        """
        self.catalog = catalog

    def validate(
        self,
        config: Configuration,
        resolved_features: Optional[Iterable[Feature]] = None,
        requires_docker_compose: bool = False,
    ) -> ValidationResult:
        """
        Validates a configuration.

        :param config: The configuration to check.
        :param resolved_features: When given, every feature key must belong to this set.
        :param requires_docker_compose: Warn when no compose file is referenced.
        :return: Errors and warnings; is_valid is False when there is any error.
        """
        if config is None:
            raise ValueError("config must not be None")

        errors: List[str] = []
        warnings: List[str] = []
        resolved = list(resolved_features) if resolved_features is not None else None

        self._check_name(config, errors, warnings)
        self._check_container_source(config, errors)
        self._check_ports(config, errors)
        self._check_mounts(config, errors)
        self._check_features(config, resolved, errors, warnings)
        self._check_env(config, errors)

        if requires_docker_compose and not config.docker_compose_file:
            warnings.append("Template requires Docker Compose but no dockerComposeFile is configured")
        if not config.features:
            warnings.append("No features configured")
        if not config.forward_ports:
            warnings.append("No forwarded ports configured")

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            severity=ConflictSeverity.ERROR if errors else ConflictSeverity.WARNING,
        )

    def _check_name(self, config, errors, warnings):
        name = (config.name or "").strip()
        if not name:
            errors.append("Configuration name is required")
        elif not NAME_PATTERN.match(name):
            warnings.append(f"Configuration name '{name}' contains unusual characters")

    def _check_container_source(self, config, errors):
        present = []
        if config.image:
            present.append("image")
        if config.build is not None:
            present.append("build")
        if config.docker_compose_file:
            present.append("dockerComposeFile")

        if not present:
            errors.append("One of image, build or dockerComposeFile must be set")
        elif len(present) > 1:
            errors.append(f"Only one of image, build or dockerComposeFile may be set (found {', '.join(present)})")

        if config.image:
            if any(ch.isspace() for ch in config.image):
                errors.append(f"Invalid image reference '{config.image}': contains whitespace")
            elif config.image.startswith("-") or config.image.endswith("-"):
                errors.append(f"Invalid image reference '{config.image}'")
        if config.build is not None and not (config.build.dockerfile or config.build.context):
            errors.append("Build configuration requires a dockerfile or a context")
        if config.docker_compose_file and not config.service:
            errors.append("A service is required when dockerComposeFile is set")

    def _check_ports(self, config, errors):
        for port in config.forward_ports:
            if not is_valid_port(port):
                errors.append(f"Invalid forwarded port {port!r}: must be an integer between 1 and 65535")

    def _check_mounts(self, config, errors):
        seen = set()
        for mount in config.mounts:
            target = mount_target(mount)
            if target is None:
                errors.append(f"Mount {mount!r} has no target path")
                continue
            normalized = target.rstrip("/") or "/"
            if normalized in seen:
                errors.append(f"Duplicate mount target: {target}")
            seen.add(normalized)

    def _check_features(self, config, resolved, errors, warnings):
        for key, options in config.features.items():
            feature = self._lookup(key, resolved)
            if resolved is not None and feature is None:
                errors.append(f"Feature '{key}' is not in the resolved feature set")
                continue
            if feature is None:
                continue
            if feature.deprecated:
                message = f"Feature '{feature.id}' is deprecated"
                if feature.deprecation_message:
                    message += f": {feature.deprecation_message}"
                warnings.append(message)
            self._check_options(feature, options or {}, errors, warnings)

    def _lookup(self, key: str, resolved: Optional[List[Feature]]) -> Optional[Feature]:
        if resolved is not None:
            for feature in resolved:
                if feature.matches(key):
                    return feature
            return None
        if self.catalog is not None:
            return self.catalog.get_feature(key)
        return None

    @staticmethod
    def _check_options(feature: Feature, options: Dict[str, Any], errors, warnings):
        for name, option in feature.options.items():
            if option.required and name not in options:
                errors.append(f"Feature '{feature.id}' requires option '{name}'")

        for name, value in options.items():
            option = feature.options.get(name)
            if option is None:
                warnings.append(f"Feature '{feature.id}' has no option named '{name}'")
                continue
            prefix = f"Feature '{feature.id}' option '{name}'"
            kind = option.type.lower()

            if kind == "boolean":
                if not isinstance(value, bool):
                    errors.append(f"{prefix} must be a boolean")
                continue

            if kind in ("number", "integer"):
                numeric = isinstance(value, (int, float)) and not isinstance(value, bool)
                if not numeric or (kind == "integer" and not isinstance(value, int)):
                    errors.append(f"{prefix} must be of type {kind}")
                    continue
                if option.minimum is not None and value < option.minimum:
                    errors.append(f"{prefix} must be at least {option.minimum}")
                if option.maximum is not None and value > option.maximum:
                    errors.append(f"{prefix} must be at most {option.maximum}")
                continue

            if not isinstance(value, str):
                errors.append(f"{prefix} must be a string")
                continue
            if option.enum and value not in [str(v) for v in option.enum]:
                errors.append(f"{prefix} must be one of: {', '.join(str(v) for v in option.enum)}")
            elif option.pattern and not re.fullmatch(option.pattern, value):
                errors.append(f"{prefix} does not match pattern {option.pattern}")

    def _check_env(self, config, errors):
        for label, env in (("remoteEnv", config.remote_env), ("containerEnv", config.container_env)):
            for key in env:
                if not key or not key.strip():
                    errors.append(f"Environment variable name in {label} cannot be empty")
