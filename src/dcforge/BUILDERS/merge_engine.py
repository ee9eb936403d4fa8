# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Configuration merging.
Combines a base template with selected features, ports, environment and a
free-form overlay into one devcontainer configuration.
"""

import copy
import json
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel

from ..MODELS.configuration import Configuration
from ..MODELS.feature import Feature
from ..MODELS.template import Template
from ..UTILS.ports import dedupe_ports

DEFAULT_COMPOSE_FILE = "docker-compose.yml"
DEFAULT_COMPOSE_SERVICE = "app"


class MergeInput(BaseModel):
    """
    The caller's selections applied on top of a base.

    Attributes:
        features: Resolved features; keyed by qualified id in the result
        feature_options: Option overrides keyed by any feature reference
        overlay: Free-form configuration applied last
    """
    name: Optional[str] = None
    base_image: Optional[str] = None
    features: List[Feature] = []
    feature_options: Dict[str, Dict[str, Any]] = {}
    extensions: List[str] = []
    ports: List[Union[int, str]] = []
    env: Dict[str, str] = {}
    container_env: Dict[str, str] = {}
    post_create_command: Optional[str] = None
    workspace_folder: Optional[str] = None
    use_docker_compose: bool = False
    compose_service: str = DEFAULT_COMPOSE_SERVICE
    overlay: Optional[Configuration] = None


def _provided(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def _scalar(base: Any, overlay: Any) -> Any:
    return overlay if _provided(overlay) else base


def _unique(items: Iterable[Any]) -> List[Any]:
    """Keep the first occurrence of each item, comparing dicts by content."""
    seen = set()
    result = []
    for item in items:
        key = json.dumps(item, sort_keys=True, default=str) if isinstance(item, (dict, list)) else item
        if key in seen:
            continue
        seen.add(key)
        result.append(copy.deepcopy(item))
    return result


def _deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _merge_features(base: Dict[str, Dict[str, Any]], overlay: Dict[str, Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    merged = {key: dict(options) for key, options in base.items()}
    for key, options in overlay.items():
        merged.setdefault(key, {}).update(copy.deepcopy(options))
    return merged


def merge_configurations(base: Configuration, overlay: Configuration) -> Configuration:
    """
    Merge two configurations; overlay wins. Neither argument is modified.

    Scalars are replaced only by non-empty overlay values. Lists are
    concatenated and deduplicated keeping first occurrences. Maps are unioned
    with overlay keys winning. An overlay build clears the base image and an
    overlay compose file clears both.
    """
    image = _scalar(base.image, overlay.image)
    build = overlay.build if overlay.build is not None else base.build
    if overlay.build is not None:
        image = overlay.image if _provided(overlay.image) else None

    compose_file = _scalar(base.docker_compose_file, overlay.docker_compose_file)
    if _provided(overlay.docker_compose_file):
        image = overlay.image if _provided(overlay.image) else None
        build = overlay.build

    return Configuration(
        name=_scalar(base.name, overlay.name),
        image=image,
        build=build.model_copy(deep=True) if build is not None else None,
        docker_compose_file=copy.deepcopy(compose_file),
        service=_scalar(base.service, overlay.service),
        run_services=_unique(base.run_services + overlay.run_services),
        features=_merge_features(base.features, overlay.features),
        extensions=_unique(base.extensions + overlay.extensions),
        customizations=_deep_merge(base.customizations, overlay.customizations),
        forward_ports=dedupe_ports(base.forward_ports + overlay.forward_ports),
        post_create_command=_scalar(base.post_create_command, overlay.post_create_command),
        remote_env={**base.remote_env, **overlay.remote_env},
        container_env={**base.container_env, **overlay.container_env},
        mounts=_unique(base.mounts + overlay.mounts),
        run_args=_unique(base.run_args + overlay.run_args),
        workspace_folder=_scalar(base.workspace_folder, overlay.workspace_folder),
    )


def configuration_from_template(template: Template) -> Configuration:
    """
    The starting configuration a template describes. Template features are not
    included here; they arrive through the resolved feature set.
    """
    return Configuration(
        name=template.name or template.id,
        image=template.base_image,
        extensions=_unique(template.default_extensions),
        customizations=copy.deepcopy(template.default_customizations),
        forward_ports=dedupe_ports(template.default_ports),
        post_create_command=template.default_post_create_command,
        remote_env=dict(template.default_env_vars),
    )


class ConfigurationMergeEngine:
    """
    Applies selections to a base in precedence order: base, selections, overlay.
    Stateless; the same inputs always give the same configuration.
    """

    def merge(self, base: Union[Template, Configuration], selections: MergeInput) -> Configuration:
        """
        Merge selections into a base.

        Args:
            base: A template or an existing configuration
            selections: The caller's choices

        Returns:
            A new Configuration
        """
        if base is None or selections is None:
            raise ValueError("merge needs both a base and selections")

        if isinstance(base, Template):
            config = configuration_from_template(base)
        else:
            config = base

        config = merge_configurations(config, self._selections_to_configuration(config, selections))
        if selections.overlay is not None:
            config = merge_configurations(config, selections.overlay)
        return config

    def _selections_to_configuration(self, base: Configuration, selections: MergeInput) -> Configuration:
        features = {}
        for feature in selections.features:
            key = feature.qualified_id
            options = feature.options_with_defaults()
            options.update(base.features.get(key, {}))
            options.update(self._overrides_for(feature, selections.feature_options))
            features[key] = options

        compose_file = None
        service = None
        if selections.use_docker_compose:
            compose_file = DEFAULT_COMPOSE_FILE
            service = selections.compose_service

        return Configuration(
            name=selections.name or "",
            image=selections.base_image,
            docker_compose_file=compose_file,
            service=service,
            features=features,
            extensions=list(selections.extensions),
            forward_ports=list(selections.ports),
            post_create_command=selections.post_create_command,
            remote_env=dict(selections.env),
            container_env=dict(selections.container_env),
            workspace_folder=selections.workspace_folder,
        )

    @staticmethod
    def _overrides_for(feature: Feature, feature_options: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
        overrides: Dict[str, Any] = {}
        for reference in sorted(feature_options):
            if feature.matches(reference):
                overrides.update(feature_options[reference])
        return overrides
