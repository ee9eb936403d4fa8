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
Template package reference parsing and handling.
Parses references like 'Contoso.Templates.Api', 'Contoso.Templates.Api@1.2.0'
or a direct path to a .nupkg archive.
"""

from typing import Optional
from dataclasses import dataclass


@dataclass
class PackageReference:
    """
    Parsed template package reference.

    Examples:
        - Contoso.Api -> id Contoso.Api, newest version
        - Contoso.Api@1.2.0 -> id Contoso.Api, version 1.2.0
        - ./feed/Contoso.Api.1.2.0.nupkg -> a local archive path
        - with source set, the package is looked up in that source only
    """

    package_id: Optional[str] = None
    version: Optional[str] = None
    path: Optional[str] = None
    source: Optional[str] = None

    @classmethod
    def parse(cls, reference: str, source: Optional[str] = None) -> "PackageReference":
        """
        Parse a package reference string.

        Args:
            reference: Package id, id@version or path to a .nupkg file
            source: Optional source location to resolve the package from

        Returns:
            Parsed PackageReference object.
        """
        if not reference or not reference.strip():
            raise ValueError("Empty package reference")
        reference = reference.strip()

        if reference.lower().endswith(".nupkg"):
            return cls(path=reference, source=source)

        version = None
        if "@" in reference:
            reference, version = reference.rsplit("@", 1)
            if not reference or not version:
                raise ValueError(f"Invalid package reference: {reference}@{version}")

        return cls(package_id=reference, version=version, source=source)

    @property
    def is_archive(self) -> bool:
        return self.path is not None

    @property
    def archive_name(self) -> str:
        """File name of the archive as published in a feed folder."""
        if self.package_id is None or self.version is None:
            raise ValueError("Archive name needs both package id and version")
        return f"{self.package_id}.{self.version}.nupkg"

    @property
    def flat_container_path(self) -> str:
        """Path of the archive under a v3 PackageBaseAddress, all lowercase."""
        if self.package_id is None or self.version is None:
            raise ValueError("Download path needs both package id and version")
        pid = self.package_id.lower()
        ver = self.version.lower()
        return f"{pid}/{ver}/{pid}.{ver}.nupkg"

    def __str__(self) -> str:
        if self.path:
            return self.path
        if self.version:
            return f"{self.package_id}@{self.version}"
        return self.package_id or ""
