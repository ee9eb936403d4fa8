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
Parser for devcontainer.json files, which are JSON with comments.
"""
import json
from typing import List

from ..MODELS.configuration import Configuration


def strip_jsonc(content: str) -> str:
    """
    Removes // and /* */ comments and trailing commas outside of strings.

    :param content: JSONC text.
    :return: Plain JSON text.
    :raises ValueError: On an unterminated block comment.
    """
    out: List[str] = []
    i = 0
    n = len(content)
    in_string = False
    while i < n:
        c = content[i]
        if in_string:
            out.append(c)
            if c == "\\" and i + 1 < n:
                out.append(content[i + 1])
                i += 2
                continue
            if c == '"':
                in_string = False
            i += 1
            continue
        if c == '"':
            in_string = True
            out.append(c)
        elif content.startswith("//", i):
            end = content.find("\n", i)
            if end == -1:
                break
            i = end
            continue
        elif content.startswith("/*", i):
            end = content.find("*/", i + 2)
            if end == -1:
                raise ValueError("Unterminated block comment in devcontainer.json")
            i = end + 2
            continue
        else:
            out.append(c)
        i += 1
    return _drop_trailing_commas("".join(out))


def _drop_trailing_commas(text: str) -> str:
    out: List[str] = []
    in_string = False
    i = 0
    n = len(text)
    while i < n:
        c = text[i]
        if in_string:
            out.append(c)
            if c == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if c == '"':
                in_string = False
        elif c == '"':
            in_string = True
            out.append(c)
        elif c == ",":
            j = i + 1
            while j < n and text[j].isspace():
                j += 1
            if j >= n or text[j] not in "}]":
                out.append(c)
        else:
            out.append(c)
        i += 1
    return "".join(out)


class DevcontainerParser:
    """
    Parser for existing devcontainer.json files.
    """

    def parse(self, path: str) -> Configuration:
        """
        Parses a devcontainer.json from a path.

        :param path: Path to the file.
        :return: Parsed configuration.
        """
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> Configuration:
        """
        Parses devcontainer.json content.

        :param content: JSON or JSONC text.
        :return: Parsed configuration.
        :raises ValueError: If the document is not a JSON object.
        """
        data = json.loads(strip_jsonc(content))
        if not isinstance(data, dict):
            raise ValueError("devcontainer.json must contain a JSON object")
        return Configuration.from_devcontainer_dict(data)
