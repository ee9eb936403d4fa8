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
Template package discovery across local package folders and remote feeds.
Source failures are reported alongside the results and never raised.
"""

import logging
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..MODELS.package import PackageSummary, SourceRef
from ..MODELS.results import DiscoveryResult, ErrorCode, SourceError, SourceValidationResult
from ..PARSERS.nuspec_parser import NuspecError, NuspecParser
from ..UTILS.cancellation import CancellationToken, OperationCancelled, check_cancelled
from ..UTILS.versioning import is_prerelease, version_sort_key
from .discovery_cache import DiscoveryCache
from .feed_client import FeedClient, FeedError

logger = logging.getLogger(__name__)

DEFAULT_TAG = "pks-devcontainers"
FALLBACK_TAG = "pks-templates"

SourceLike = Union[str, SourceRef]


@dataclass(frozen=True)
class SourceListing:
    """What one source yielded for one tag. Only listings without an error are cached."""
    packages: Tuple[PackageSummary, ...] = ()
    warnings: Tuple[str, ...] = ()
    error: Optional[SourceError] = None


def relevance_score(package: PackageSummary, query: str) -> int:
    """
    Score a package against a free-text query.
    Id matches weigh most, then title, tags and description; popularity breaks ties.
    """
    needle = query.strip().lower()
    if not needle:
        return 0
    score = 0
    if needle in package.package_id.lower():
        score += 10
    if needle in package.title.lower():
        score += 5
    if needle in package.description.lower():
        score += 2
    if any(needle in tag.lower() for tag in package.tags):
        score += 3
    if score and package.download_count > 1000:
        score += 1
    return score


def sort_packages(packages: Iterable[PackageSummary]) -> List[PackageSummary]:
    """
    Drop repeated id/version pairs (first source wins) and order by id, then newest version first.
    """
    unique = {}
    for package in packages:
        unique.setdefault(package.key, package)
    ordered = sorted(unique.values(), key=lambda p: version_sort_key(p.version), reverse=True)
    return sorted(ordered, key=lambda p: p.package_id.lower())


def local_archives(folder: Path, package_id: str) -> Dict[str, Path]:
    """
    Archives named <id>.<version>.nupkg in a folder, keyed by lower-cased version.
    Names whose version part does not start with a digit belong to another package.
    """
    prefix = f"{package_id.lower()}."
    matches = {}
    for path in folder.iterdir():
        name = path.name.lower()
        if not (path.is_file() and name.endswith(".nupkg") and name.startswith(prefix)):
            continue
        version = path.name[len(prefix):-len(".nupkg")]
        if version[:1].isascii() and version[:1].isdigit():
            matches[version.lower()] = path
    return matches


class PackageDiscoveryService:
    """
    Enumerates template packages carrying a discovery tag.
    """

    def __init__(
        self,
        feed_client: Optional[FeedClient] = None,
        cache: Optional[DiscoveryCache] = None,
        default_tag: str = DEFAULT_TAG,
        fallback_tag: Optional[str] = FALLBACK_TAG,
    ):
        """
        Initialize the discovery service.

        Args:
            feed_client: Client used for remote sources
            cache: Result cache shared between calls
            default_tag: Tag used when a call does not name one
            fallback_tag: Legacy tag tried when a remote source has nothing for the primary tag
        """
        self.feed_client = feed_client or FeedClient()
        self.cache = cache or DiscoveryCache()
        self.default_tag = default_tag
        self.fallback_tag = fallback_tag

    def discover(
        self,
        sources: Iterable[SourceLike],
        tag: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> DiscoveryResult:
        """
        List packages carrying a tag across all sources.

        Args:
            sources: Local folders and/or feed URLs
            tag: Discovery tag, defaults to the service's default tag
            cancel: Checked before every archive read and network call

        Returns:
            DiscoveryResult with packages sorted by id then descending version,
            plus one SourceError per failing source
        """
        return self._collect(sources, tag or self.default_tag, cancel, force=False)

    def refresh(
        self,
        source: SourceLike,
        tag: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> DiscoveryResult:
        """Bypass the cache for one source and reload it."""
        ref = self._as_ref(source)
        dropped = self.cache.invalidate_where(lambda key: key[0] == ref.location)
        logger.debug("Refreshing %s, dropped %d cache entries", ref.location, dropped)
        return self._collect([ref], tag or self.default_tag, cancel, force=True)

    def search(
        self,
        sources: Iterable[SourceLike],
        query: str,
        tag: Optional[str] = None,
        max_results: Optional[int] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> DiscoveryResult:
        """
        Search discovered packages by free text.

        Args:
            sources: Local folders and/or feed URLs
            query: Text matched against id, title, description and tags
            tag: Discovery tag
            max_results: Truncate after this many matches

        Returns:
            DiscoveryResult ordered by relevance, then id and version
        """
        result = self.discover(sources, tag, cancel)
        if not query or not query.strip():
            packages = result.packages
        else:
            scored = [(relevance_score(p, query), p) for p in result.packages]
            # Stable sort keeps the id/version order among equal scores
            scored = sorted((item for item in scored if item[0] > 0), key=lambda item: -item[0])
            packages = [p for _, p in scored]
        if max_results is not None:
            packages = packages[:max_results]
        return DiscoveryResult(packages=packages, errors=result.errors, warnings=result.warnings)

    def details(
        self,
        source: SourceLike,
        package_id: str,
        version: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> Optional[PackageSummary]:
        """Find one package in a source; the newest version when none is given."""
        result = self.discover([source], tag)
        for package in result.packages:
            if package.package_id.lower() != package_id.lower():
                continue
            if version is None or package.version.lower() == version.lower():
                return package
        return None

    def validate_sources(self, sources: Iterable[SourceLike]) -> SourceValidationResult:
        """
        Check that every source answers: a local folder must exist and a
        feed must serve its service index.

        Args:
            sources: Local folders and/or feed URLs

        Returns:
            SourceValidationResult with one SourceError per invalid source
        """
        result = SourceValidationResult()
        for source in sources:
            try:
                ref = self._as_ref(source)
            except ValueError as e:
                result.invalid_sources.append(str(source))
                result.errors.append(SourceError(source=str(source), message=str(e), code=ErrorCode.VALIDATION))
                continue

            error = self._check_source(ref)
            if error is None:
                result.valid_sources.append(ref.location)
            else:
                result.invalid_sources.append(ref.location)
                result.errors.append(error)

        if result.invalid_sources:
            result.warnings.append(f"{len(result.invalid_sources)} sources could not be validated")
        return result

    def _check_source(self, ref: SourceRef) -> Optional[SourceError]:
        if not ref.is_remote:
            if Path(ref.location).expanduser().is_dir():
                return None
            return SourceError(
                source=ref.location,
                message=f"Package source directory not found: {ref.location}",
                code=ErrorCode.NOT_FOUND,
            )
        try:
            index = self.feed_client.service_index(ref.location)
        except FeedError as e:
            logger.warning("Source %s did not answer: %s", ref.location, e)
            return SourceError(source=ref.location, message=str(e), code=e.code)
        if not isinstance(index.get("resources"), list):
            return SourceError(
                source=ref.location,
                message=f"{ref.location} is not a package feed service index",
                code=ErrorCode.VALIDATION,
            )
        return None

    def latest_version(
        self,
        sources: Iterable[SourceLike],
        package_id: str,
        include_prerelease: bool = False,
        cancel: Optional[CancellationToken] = None,
    ) -> Optional[str]:
        """
        Newest version of a package across sources, whatever its tags.

        Args:
            sources: Local folders and/or feed URLs
            package_id: Package id, matched case-insensitively
            include_prerelease: Consider prerelease versions too

        Returns:
            The newest version, or None when no source has the package

        Raises:
            FeedError: When no source has the package and a feed failed
        """
        versions: List[str] = []
        failure: Optional[FeedError] = None
        for source in sources:
            ref = self._as_ref(source)
            if ref.is_remote:
                try:
                    versions.extend(self.feed_client.versions(ref.location, package_id, cancel=cancel))
                except FeedError as e:
                    if e.code is not ErrorCode.NOT_FOUND:
                        logger.warning("Version lookup on %s failed: %s", ref.location, e)
                        failure = e
            else:
                folder = Path(ref.location).expanduser()
                if folder.is_dir():
                    versions.extend(local_archives(folder, package_id))

        candidates = versions if include_prerelease else [v for v in versions if not is_prerelease(v)]
        if candidates:
            return max(candidates, key=version_sort_key)
        if failure is not None:
            raise failure
        return None

    def _collect(self, sources, tag, cancel, force) -> DiscoveryResult:
        packages: List[PackageSummary] = []
        errors: List[SourceError] = []
        warnings: List[str] = []

        for source in sources:
            ref = self._as_ref(source)
            try:
                listing = self.cache.get_or_load(
                    (ref.location, tag.lower()),
                    lambda ref=ref: self._load(ref, tag, cancel),
                    cache_if=lambda l: l.error is None,
                    force=force,
                )
            except OperationCancelled as e:
                errors.append(SourceError(source=ref.location, message=str(e), code=ErrorCode.CANCELLED))
                break

            packages.extend(listing.packages)
            warnings.extend(listing.warnings)
            if listing.error is not None:
                errors.append(listing.error)

        return DiscoveryResult(packages=sort_packages(packages), errors=errors, warnings=warnings)

    @staticmethod
    def _as_ref(source: SourceLike) -> SourceRef:
        if isinstance(source, SourceRef):
            return source
        return SourceRef.parse(source)

    def _load(self, ref: SourceRef, tag: str, cancel: Optional[CancellationToken]) -> SourceListing:
        if ref.is_remote:
            return self._load_remote(ref, tag, cancel)
        return self._load_local(ref, tag, cancel)

    def _load_local(self, ref: SourceRef, tag: str, cancel: Optional[CancellationToken]) -> SourceListing:
        """Scan a folder (not recursively) for .nupkg archives carrying the tag."""
        folder = Path(ref.location).expanduser()
        if not folder.is_dir():
            message = f"Package source directory not found: {ref.location}"
            logger.error(message)
            return SourceListing(error=SourceError(source=ref.location, message=message, code=ErrorCode.NOT_FOUND))

        try:
            archives = sorted(p for p in folder.iterdir() if p.is_file() and p.suffix.lower() == ".nupkg")
        except OSError as e:
            message = f"Cannot list package source {ref.location}: {e}"
            logger.error(message)
            return SourceListing(error=SourceError(source=ref.location, message=message, code=ErrorCode.IO))

        packages = []
        warnings = []
        for archive_path in archives:
            check_cancelled(cancel, f"reading {archive_path.name}")
            try:
                with zipfile.ZipFile(archive_path) as archive:
                    summary = NuspecParser.read_archive(archive, source=ref.location)
            except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError,
                    NuspecError, ValueError, OSError) as e:
                warning = f"Skipping {archive_path.name}: {e}"
                logger.warning(warning)
                warnings.append(warning)
                continue
            if summary.has_tag(tag):
                packages.append(summary)

        logger.debug("Found %d packages tagged %s in %s", len(packages), tag, ref.location)
        return SourceListing(packages=tuple(packages), warnings=tuple(warnings))

    def _load_remote(self, ref: SourceRef, tag: str, cancel: Optional[CancellationToken]) -> SourceListing:
        """Search a feed for the tag, retrying once with the legacy tag when nothing comes back."""
        try:
            packages = self.feed_client.search(ref.location, tag=tag, cancel=cancel)
            if not packages and self.fallback_tag and self.fallback_tag.lower() != tag.lower():
                logger.info("No packages tagged %s on %s, trying %s", tag, ref.location, self.fallback_tag)
                packages = self.feed_client.search(ref.location, tag=self.fallback_tag, cancel=cancel)
        except FeedError as e:
            logger.error("Discovery against %s failed: %s", ref.location, e)
            return SourceListing(error=SourceError(source=ref.location, message=str(e), code=e.code))
        return SourceListing(packages=tuple(packages))
