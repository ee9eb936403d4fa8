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
Template package extraction.
Resolves a package reference to archive bytes, unpacks its content with
placeholder substitution and parses its manifest into a Template.
"""
import io
import logging
import zipfile
import zlib
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from ..MODELS.package import SourceRef
from ..MODELS.results import ErrorCode, ExtractionResult
from ..MODELS.template import Template
from ..PARSERS.manifest_parser import MANIFEST_FILE_NAME, ManifestError, ManifestParser
from ..PARSERS.nuspec_parser import NuspecError, NuspecParser
from ..REGISTRY.discovery import local_archives
from ..REGISTRY.feed_client import FeedClient, FeedError
from ..REGISTRY.package_reference import PackageReference
from ..UTILS.cancellation import CancellationToken, OperationCancelled, check_cancelled
from ..UTILS.token_replacer import TokenReplacer
from ..UTILS.versioning import is_prerelease, version_sort_key
from .destination_lock import DestinationError, DestinationLock

logger = logging.getLogger(__name__)

CONTENT_PREFIXES = ("content/", "contentFiles/")
IGNORED_SEGMENTS = {"bin", "obj", ".git", ".vs", ".idea", "node_modules"}
SKIPPED_FILES = {"template.json", "icon.png", MANIFEST_FILE_NAME.lower()}


class PackageNotFoundError(Exception):
    """No source could provide the requested package."""


def _is_unsafe(relative_path: str) -> bool:
    parts = relative_path.replace("\\", "/").split("/")
    return (
        relative_path.startswith(("/", "\\"))
        or ".." in parts
        or (len(relative_path) > 1 and relative_path[1] == ":")
    )


class TemplateArchiveExtractor:
    """
    Unpacks template packages into a destination directory.
    """

    def __init__(self, feed_client: Optional[FeedClient] = None):
        """
        Initialize the extractor.

        Args:
            feed_client: Client used when a package lives in a remote feed
        """
        self.feed_client = feed_client or FeedClient()

    def extract(
        self,
        package_ref: Union[str, PackageReference],
        destination: str,
        project_name: str,
        description: str = "",
        force: bool = False,
        sources: Iterable[str] = (),
        cancel: Optional[CancellationToken] = None,
    ) -> ExtractionResult:
        """
        Extract a package into destination.

        Only one caller may initialize a destination at a time; the others get
        IN_PROGRESS. Files appear in the destination only if everything succeeds.

        Args:
            package_ref: Package id, id@version or .nupkg path
            destination: Target directory
            project_name: Value for the ProjectName tokens
            description: Value for the Description tokens
            force: Overwrite existing files
            sources: Where to look for the package when the reference names no source
            cancel: Checked before each download and each file write

        Returns:
            ExtractionResult with absolute paths of the extracted files
        """
        try:
            with DestinationLock(destination, force=force) as lock:
                staged = self.stage(package_ref, lock.staging, project_name, description, sources, cancel)
                if not staged.success:
                    return staged
                files = lock.commit()
                return ExtractionResult(success=True, extracted_files=files, manifest=staged.manifest)
        except DestinationError as e:
            logger.warning(str(e))
            return ExtractionResult(error_message=str(e), error_code=e.code)
        except OSError as e:
            return ExtractionResult(error_message=f"Destination not writable: {e}", error_code=ErrorCode.IO)

    def stage(
        self,
        package_ref: Union[str, PackageReference],
        staging_dir: Path,
        project_name: str,
        description: str = "",
        sources: Iterable[str] = (),
        cancel: Optional[CancellationToken] = None,
    ) -> ExtractionResult:
        """
        Unpack a package into a staging directory the caller owns.
        extracted_files holds paths relative to staging_dir.
        """
        try:
            ref = package_ref if isinstance(package_ref, PackageReference) else PackageReference.parse(package_ref)
            data, source = self._fetch(ref, list(sources), cancel)
            files, manifest = self._unpack(data, source, Path(staging_dir), project_name, description, cancel)
        except OperationCancelled as e:
            return ExtractionResult(error_message=str(e), error_code=ErrorCode.CANCELLED)
        except PackageNotFoundError as e:
            return ExtractionResult(error_message=str(e), error_code=ErrorCode.NOT_FOUND)
        except FeedError as e:
            return ExtractionResult(error_message=f"Package download failed: {e}", error_code=e.code)
        except (ManifestError, NuspecError) as e:
            return ExtractionResult(error_message=f"Template manifest malformed: {e}", error_code=ErrorCode.MANIFEST_MALFORMED)
        except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError) as e:
            return ExtractionResult(error_message=f"Package archive unreadable: {e}", error_code=ErrorCode.IO)
        except OSError as e:
            return ExtractionResult(error_message=f"Extraction failed: {e}", error_code=ErrorCode.IO)
        except ValueError as e:
            return ExtractionResult(error_message=str(e), error_code=ErrorCode.NOT_FOUND)

        logger.info("Staged %d files from %s", len(files), manifest.id)
        return ExtractionResult(success=True, extracted_files=files, manifest=manifest)

    def _fetch(
        self, ref: PackageReference, sources: List[str], cancel: Optional[CancellationToken]
    ) -> Tuple[bytes, Optional[str]]:
        """
        Resolve a reference to archive bytes.

        Returns:
            (archive bytes, source location)
        """
        if ref.is_archive:
            path = Path(ref.path).expanduser()
            if not path.is_file():
                raise PackageNotFoundError(f"Package archive not found: {ref.path}")
            check_cancelled(cancel, "archive read")
            return path.read_bytes(), str(path.parent)

        candidates = [ref.source] if ref.source else sources
        if not candidates:
            raise PackageNotFoundError(f"No package source given for {ref}")

        for location in candidates:
            source = SourceRef.parse(location)
            if source.is_remote:
                data = self._fetch_remote(ref, source.location, cancel)
            else:
                data = self._fetch_local(ref, Path(source.location).expanduser(), cancel)
            if data is not None:
                return data, source.location
        raise PackageNotFoundError(f"Package {ref} not found in {', '.join(candidates)}")

    @staticmethod
    def _fetch_local(ref: PackageReference, folder: Path, cancel) -> Optional[bytes]:
        if not folder.is_dir():
            return None
        matches = local_archives(folder, ref.package_id)
        if not matches:
            return None

        if ref.version is not None:
            path = matches.get(ref.version.lower())
        else:
            path = matches[max(matches, key=version_sort_key)]
        if path is None:
            return None
        check_cancelled(cancel, "archive read")
        return path.read_bytes()

    def _fetch_remote(self, ref: PackageReference, location: str, cancel) -> Optional[bytes]:
        version = ref.version
        if version is None:
            try:
                versions = self.feed_client.versions(location, ref.package_id, cancel=cancel)
            except FeedError as e:
                if e.code is ErrorCode.NOT_FOUND:
                    return None
                raise
            stable = [v for v in versions if not is_prerelease(v)]
            pool = stable or versions
            if not pool:
                return None
            version = max(pool, key=version_sort_key)
        try:
            return self.feed_client.download(location, ref.package_id, version, cancel=cancel)
        except FeedError as e:
            if e.code is ErrorCode.NOT_FOUND:
                return None
            raise

    def _unpack(
        self,
        data: bytes,
        source: Optional[str],
        staging: Path,
        project_name: str,
        description: str,
        cancel: Optional[CancellationToken],
    ) -> Tuple[List[str], Template]:
        """Write content entries under staging and return (relative paths, manifest)."""
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            summary = NuspecParser.read_archive(archive, source=source)

            manifest = None
            for name in archive.namelist():
                if name.rsplit("/", 1)[-1].lower() == MANIFEST_FILE_NAME.lower():
                    text = archive.read(name).decode("utf-8-sig")
                    manifest = ManifestParser.parse_from_string(text, package=summary)
                    break
            if manifest is None:
                manifest = summary.to_template()

            replacer = TokenReplacer.for_project(project_name, description, template=summary.package_id)
            root = staging.resolve()
            written = []
            for info in archive.infolist():
                relative = self._content_path(info.filename)
                if relative is None or info.is_dir():
                    continue
                target_relative = replacer.replace_path(relative)
                if _is_unsafe(target_relative):
                    logger.warning("Skipping unsafe archive entry %s", info.filename)
                    continue
                target = (root / target_relative).resolve()
                if root not in target.parents:
                    logger.warning("Skipping archive entry outside destination: %s", info.filename)
                    continue

                check_cancelled(cancel, f"writing {target_relative}")
                content = archive.read(info)
                if TokenReplacer.is_processable(target_relative):
                    try:
                        content = replacer.replace(content.decode("utf-8")).encode("utf-8")
                    except UnicodeDecodeError:
                        logger.debug("%s is not UTF-8, copying as is", target_relative)
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(content)
                written.append(target_relative)
        return written, manifest

    @staticmethod
    def _content_path(entry_name: str) -> Optional[str]:
        """Relative path of a content entry, or None when the entry is not extracted."""
        for prefix in CONTENT_PREFIXES:
            if entry_name.startswith(prefix):
                relative = entry_name[len(prefix):]
                break
        else:
            return None
        if not relative or relative.endswith("/"):
            return None
        if _is_unsafe(relative):
            logger.warning("Skipping unsafe archive entry %s", entry_name)
            return None

        parts = relative.split("/")
        lowered = [p.lower() for p in parts]
        if lowered[0] == ".template.config" or lowered[-1] in SKIPPED_FILES:
            return None
        if any(part in IGNORED_SEGMENTS for part in lowered[:-1]):
            return None
        return relative
