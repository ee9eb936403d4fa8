"""
Parser for .nuspec package metadata embedded in .nupkg archives.
"""
import re
import zipfile
import xml.etree.ElementTree as ET
from typing import Dict, List, Optional

from ..MODELS.package import PackageSummary
from ..UTILS.versioning import is_prerelease


class NuspecError(ValueError):
    """Raised when package metadata is missing or unreadable."""


def _local(tag: str) -> str:
    # Strip the XML namespace, nuspec files use several schema versions
    return tag.rsplit("}", 1)[-1]


class NuspecParser:
    """
    Reads id, version, title, description, authors, tags and custom
    properties from a nuspec document.
    """

    @staticmethod
    def read_archive(archive: zipfile.ZipFile, source: Optional[str] = None) -> PackageSummary:
        """
        Finds and parses the .nuspec entry at the root of an open package archive.

        :param archive: The opened .nupkg.
        :param source: Source location recorded on the summary.
        :return: The package summary.
        :raises NuspecError: If the archive has no nuspec or it is malformed.
        """
        names = [n for n in archive.namelist() if n.lower().endswith(".nuspec") and "/" not in n]
        if not names:
            raise NuspecError("Package archive contains no .nuspec metadata")
        content = archive.read(names[0]).decode("utf-8-sig")
        return NuspecParser.parse_from_string(content, source=source)

    @staticmethod
    def parse_from_string(content: str, source: Optional[str] = None) -> PackageSummary:
        """
        Parses nuspec XML.

        :param content: The XML text.
        :param source: Source location recorded on the summary.
        :return: The package summary.
        :raises NuspecError: If the XML is invalid or id/version are missing.
        """
        try:
            root = ET.fromstring(content)
        except ET.ParseError as e:
            raise NuspecError(f"Invalid nuspec XML: {e}") from e

        metadata = None
        for element in root.iter():
            if _local(element.tag) == "metadata":
                metadata = element
                break
        if metadata is None:
            raise NuspecError("nuspec has no <metadata> element")

        fields: Dict[str, str] = {}
        properties: Dict[str, str] = {}
        for child in metadata:
            name = _local(child.tag)
            if name == "properties":
                properties.update(NuspecParser._parse_properties(child))
            else:
                fields[name] = (child.text or "").strip()

        package_id = fields.get("id")
        version = fields.get("version")
        if not package_id or not version:
            raise NuspecError("nuspec metadata must declare both <id> and <version>")

        return PackageSummary(
            package_id=package_id,
            version=version,
            title=fields.get("title", ""),
            description=fields.get("description", ""),
            authors=NuspecParser._split(fields.get("authors", ""), ","),
            tags=NuspecParser._split(fields.get("tags", ""), r"[\s,]+"),
            project_url=fields.get("projectUrl") or None,
            metadata=properties,
            source=source,
            is_prerelease=is_prerelease(version),
        )

    @staticmethod
    def _parse_properties(element) -> Dict[str, str]:
        """
        Reads <property name="..." value="..."/> entries; the value may also be element text.
        """
        properties = {}
        for prop in element:
            if _local(prop.tag) != "property":
                continue
            name = prop.get("name")
            if not name:
                continue
            value = prop.get("value")
            if value is None:
                value = (prop.text or "").strip()
            properties[name] = value
        return properties

    @staticmethod
    def _split(value: str, separator: str) -> List[str]:
        if separator == ",":
            parts = value.split(",")
        else:
            parts = re.split(separator, value)
        return [p.strip() for p in parts if p.strip()]
