"""
Parser for the template manifest (devcontainer-template.json) shipped inside packages.
"""
import json
from typing import Any, Optional

from ..MODELS.package import DEFAULT_BASE_IMAGE, PackageSummary
from ..MODELS.template import Template
from ..UTILS.ports import parse_port_list, split_csv

MANIFEST_FILE_NAME = "devcontainer-template.json"


class ManifestError(ValueError):
    """Raised when a template manifest cannot be turned into a Template."""


class ManifestParser:
    """
    Converts manifest JSON into a Template. Keys are matched case-insensitively.
    Fields the manifest leaves out are taken from the package metadata.
    """

    @staticmethod
    def parse_from_string(content: str, package: Optional[PackageSummary] = None) -> Template:
        """
        Parses a manifest document.

        Args:
            content: Manifest JSON text.
            package: Package whose metadata fills the gaps.

        Returns:
            Template: The parsed template.

        Raises:
            ManifestError: If the JSON is invalid or describes an unusable template.
        """
        try:
            data = json.loads(content)
        except ValueError as e:
            raise ManifestError(f"Template manifest is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ManifestError("Template manifest must be a JSON object")

        fields = {str(key).lower(): value for key, value in data.items()}
        base = package.to_template().model_dump() if package is not None else {}

        def pick(key: str, default: Any = None) -> Any:
            value = fields.get(key.lower())
            return default if value is None else value

        template_id = pick("id") or base.get("id") or pick("name")
        if not template_id:
            raise ManifestError("Template manifest has no id or name")

        try:
            env_vars = dict(pick("environmentVariables", base.get("default_env_vars", {})))
            required_env = dict(pick("requiredEnvironmentVariables", base.get("required_env_vars", {})))
            return Template(
                id=str(template_id),
                name=pick("name", base.get("name") or str(template_id)),
                description=pick("description", base.get("description", "")),
                category=pick("category", base.get("category")),
                version=pick("version", base.get("version")),
                source=base.get("source"),
                base_image=pick("baseImage", base.get("base_image") or DEFAULT_BASE_IMAGE),
                required_features=ManifestParser._list(pick("requiredFeatures", base.get("required_features", []))),
                optional_features=ManifestParser._list(pick("optionalFeatures", base.get("optional_features", []))),
                default_extensions=ManifestParser._list(pick("vscodeExtensions", base.get("default_extensions", []))),
                default_customizations=pick("customSettings", {}),
                default_ports=parse_port_list(pick("defaultPorts", base.get("default_ports", []))),
                default_post_create_command=pick("postCreateCommand", base.get("default_post_create_command")) or None,
                default_env_vars={str(k): str(v) for k, v in env_vars.items()},
                required_env_vars={str(k): str(v) for k, v in required_env.items()},
                requires_docker_compose=bool(pick("requiresDockerCompose", base.get("requires_docker_compose", False))),
                docker_compose_template=pick("dockerComposeTemplate", base.get("docker_compose_template")),
            )
        except (TypeError, ValueError) as e:
            raise ManifestError(f"Template manifest is malformed: {e}") from e

    @staticmethod
    def _list(value: Any):
        if isinstance(value, str):
            return split_csv(value)
        if not isinstance(value, list):
            raise ManifestError(f"Expected a list, got {type(value).__name__}")
        return [str(item) for item in value]
