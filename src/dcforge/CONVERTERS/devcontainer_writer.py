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
Writes a validated configuration to disk as .devcontainer/devcontainer.json,
plus a Dockerfile or docker-compose.yml when the configuration needs one.
"""
import json
import logging
import os
from pathlib import Path
from typing import Optional

import yaml
from jinja2 import Template

from ..MODELS.configuration import Configuration
from ..MODELS.package import DEFAULT_BASE_IMAGE
from ..MODELS.results import FileGenerationResult
from ..PARSERS.compose_parser import ComposeParser
from ..UTILS.token_replacer import TokenReplacer

logger = logging.getLogger(__name__)

DEVCONTAINER_DIR = ".devcontainer"
DEVCONTAINER_JSON = "devcontainer.json"

DOCKERFILE_TEMPLATE = """FROM {{ base_image }}
{% for name, value in args.items() %}
ARG {{ name }}={{ value }}
{%- endfor %}
{% if container_env %}
{% for name, value in container_env.items() -%}
ENV {{ name }}="{{ value }}"
{% endfor %}
{%- endif %}
# [Optional] Install additional OS packages.
# RUN apt-get update && export DEBIAN_FRONTEND=noninteractive \\
#     && apt-get -y install --no-install-recommends <packages>
{% if workspace_folder %}
WORKDIR {{ workspace_folder }}
{% endif %}
"""


def _stays_inside(root: Path, name: str) -> bool:
    """True when name, relative to root/.devcontainer, stays under root and is not devcontainer.json itself."""
    if not name or Path(name).is_absolute():
        return False
    base = root.resolve()
    target = (base / DEVCONTAINER_DIR / name).resolve()
    return base in target.parents and target != base / DEVCONTAINER_DIR / DEVCONTAINER_JSON


class DevcontainerFileGenerator:
    """
    Serializes configurations into devcontainer files.
    """

    def __init__(self):
        self.dockerfile_template = Template(DOCKERFILE_TEMPLATE)

    def write_configuration(
        self,
        config: Configuration,
        destination_dir: str,
        base_image: Optional[str] = None,
        compose_template: Optional[str] = None,
        replacer: Optional[TokenReplacer] = None,
    ) -> FileGenerationResult:
        """
        Writes the configuration files.

        :param config: A configuration that already passed validation.
        :param destination_dir: Project directory; files go under .devcontainer/.
        :param base_image: Image used for a generated Dockerfile or compose service.
        :param compose_template: Compose fragment from the template, used instead of the default.
        :param replacer: Token replacer applied to the compose fragment.
        :return: The generation result. Serialization problems show up in validation_errors.
        """
        destination = Path(destination_dir)
        try:
            destination.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            return FileGenerationResult(error_message=f"Cannot create {destination}: {e}")
        if not os.access(destination, os.W_OK):
            return FileGenerationResult(error_message=f"Destination {destination} is not writable")

        data = config.to_devcontainer_dict()
        try:
            text = json.dumps(data, indent=2, allow_nan=False)
        except (TypeError, ValueError) as e:
            return FileGenerationResult(
                error_message="Configuration cannot be serialized",
                validation_errors=[f"Configuration is not JSON serializable: {e}"],
            )

        reparsed = Configuration.from_devcontainer_dict(json.loads(text)).to_devcontainer_dict()
        if reparsed != data:
            return FileGenerationResult(
                error_message="Configuration cannot be serialized",
                validation_errors=["Configuration changed when read back from JSON"],
            )

        extra_files = {}
        image = base_image or DEFAULT_BASE_IMAGE
        if config.build is not None:
            dockerfile = config.build.dockerfile or "Dockerfile"
            extra_files[dockerfile] = self.dockerfile_template.render(
                base_image=image,
                args=config.build.args,
                container_env=config.container_env,
                workspace_folder=config.workspace_folder,
            )

        if isinstance(config.docker_compose_file, str) and config.docker_compose_file:
            compose_text, errors = self._compose_content(config, image, compose_template, replacer)
            if errors:
                return FileGenerationResult(error_message="Compose file is inconsistent", validation_errors=errors)
            extra_files[config.docker_compose_file] = compose_text

        unsafe = [name for name in extra_files if not _stays_inside(destination, name)]
        if unsafe:
            return FileGenerationResult(
                error_message="Refusing to write outside the project directory",
                validation_errors=[f"File path '{name}' points outside the project directory" for name in unsafe],
            )

        devcontainer_dir = destination / DEVCONTAINER_DIR
        generated = []
        try:
            devcontainer_dir.mkdir(parents=True, exist_ok=True)
            json_path = devcontainer_dir / DEVCONTAINER_JSON
            for name, content in extra_files.items():
                path = (devcontainer_dir / name)
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(content)
                generated.append(str(path))
            json_path.write_text(text + "\n")
            generated.insert(0, str(json_path))
        except OSError as e:
            return FileGenerationResult(error_message=f"Failed to write devcontainer files: {e}", generated_files=generated)

        logger.info("Wrote %s", json_path)
        return FileGenerationResult(success=True, generated_file_path=str(json_path), generated_files=generated)

    def _compose_content(self, config, image, compose_template, replacer):
        if compose_template:
            content = compose_template
        else:
            service = config.service or "app"
            content = yaml.safe_dump({
                "services": {
                    service: {
                        "image": image,
                        "volumes": ["../..:/workspaces:cached"],
                        "command": "sleep infinity",
                    }
                }
            }, sort_keys=False)

        try:
            compose = ComposeParser(replacer).parse_from_string(content)
        except ValueError as e:
            return None, [str(e)]
        if config.service and not compose.has_service(config.service):
            return None, [f"Compose file has no service named '{config.service}'"]
        if replacer is not None:
            content = replacer.replace(content)
        return content, []
