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
Parsers for Docker Compose YAML used by compose-based devcontainers.
"""
import yaml
from typing import Optional

from ..MODELS.compose import ComposeFile
from ..UTILS.token_replacer import TokenReplacer


class ComposeParser:
    """
    Parser for docker-compose.yml files and template compose fragments.
    """
    def __init__(self, replacer: Optional[TokenReplacer] = None):
        """
        Initializes the parser with an optional token replacer applied before parsing.

        :param replacer: Replaces {{Token}} placeholders in template fragments.
        """
        self.replacer = replacer

    def parse(self, compose_path: str) -> ComposeFile:
        """
        Parses a compose file from a path.

        :param compose_path: Path to the compose file.
        :return: Parsed compose file.
        """
        with open(compose_path, 'r') as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> ComposeFile:
        """
        Parses a compose file from a string.

        :param content: YAML content of the compose file.
        :return: Parsed compose file.
        :raises ValueError: If the YAML is invalid or not a mapping.
        """
        if self.replacer is not None:
            content = self.replacer.replace(content)

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid compose YAML: {e}") from e
        if not data:
            data = {}
        if not isinstance(data, dict):
            raise ValueError("Compose document must be a mapping")

        services = data.get('services') or {}
        if not isinstance(services, dict):
            raise ValueError("Compose 'services' must be a mapping")

        return ComposeFile(
            services=[str(name) for name in services],
            volumes=[str(v) for v in data['volumes']] if isinstance(data.get('volumes'), dict) else [],
            raw=data,
        )
