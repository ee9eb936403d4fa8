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
Package feed client for template discovery and download.
Implements the parts of the NuGet v3 protocol needed here: service index,
search and the flat-container download endpoint.
"""

import json
import logging
import socket
from typing import Any, Dict, List, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from .. import __version__
from ..MODELS.package import PackageSummary
from ..MODELS.results import ErrorCode
from ..UTILS.cancellation import CancellationToken, check_cancelled
from ..UTILS.versioning import is_prerelease
from .package_reference import PackageReference

logger = logging.getLogger(__name__)

SEARCH_RESOURCE = "SearchQueryService"
PACKAGE_BASE_RESOURCE = "PackageBaseAddress"


class FeedError(Exception):
    """A feed request failed. code tells network problems from timeouts and missing packages."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.NETWORK, status: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.status = status


class FeedClient:
    """
    Client for NuGet v3 style package feeds.
    Every request carries a timeout; nothing is retried here.
    """

    def __init__(self, timeout: float = 30.0, page_size: int = 100, max_pages: int = 10):
        """
        Initialize the feed client.

        Args:
            timeout: Seconds before a request is abandoned
            page_size: Results requested per search page
            max_pages: Upper bound on search pages fetched per query
        """
        self.timeout = timeout
        self.page_size = page_size
        self.max_pages = max_pages
        self._service_indexes: Dict[str, Dict[str, Any]] = {}

    def _get(self, url: str, accept: str = "application/json") -> bytes:
        """Make a GET request and map failures onto FeedError."""
        request = Request(url)
        request.add_header("Accept", accept)
        request.add_header("User-Agent", f"dcforge/{__version__}")
        try:
            with urlopen(request, timeout=self.timeout) as response:
                return response.read()
        except HTTPError as e:
            code = ErrorCode.NOT_FOUND if e.code == 404 else ErrorCode.NETWORK
            raise FeedError(f"HTTP {e.code} from {url}", code=code, status=e.code) from e
        except URLError as e:
            if isinstance(e.reason, (socket.timeout, TimeoutError)):
                raise FeedError(f"Timed out after {self.timeout}s contacting {url}", code=ErrorCode.TIMEOUT) from e
            raise FeedError(f"Cannot reach {url}: {e.reason}") from e
        except (socket.timeout, TimeoutError) as e:
            raise FeedError(f"Timed out after {self.timeout}s contacting {url}", code=ErrorCode.TIMEOUT) from e
        except OSError as e:
            raise FeedError(f"Cannot reach {url}: {e}") from e

    def _get_json(self, url: str) -> Dict[str, Any]:
        content = self._get(url)
        try:
            data = json.loads(content.decode("utf-8-sig"))
        except ValueError as e:
            raise FeedError(f"Invalid JSON from {url}: {e}") from e
        if not isinstance(data, dict):
            raise FeedError(f"Unexpected response shape from {url}")
        return data

    def service_index(self, source_url: str) -> Dict[str, Any]:
        if source_url not in self._service_indexes:
            self._service_indexes[source_url] = self._get_json(source_url)
        return self._service_indexes[source_url]

    def _resource(self, source_url: str, resource_type: str) -> str:
        """Find the endpoint of a resource type in the service index. Entries without an @id are ignored."""
        resources = self.service_index(source_url).get("resources", [])
        if not isinstance(resources, list):
            raise FeedError(f"Unexpected service index shape from {source_url}")
        for resource in resources:
            if not isinstance(resource, dict) or not resource.get("@id"):
                continue
            kind = str(resource.get("@type", ""))
            if kind == resource_type or kind.startswith(resource_type + "/"):
                return str(resource["@id"]).rstrip("/")
        raise FeedError(f"{source_url} does not provide {resource_type}", code=ErrorCode.NOT_FOUND)

    def search(
        self,
        source_url: str,
        query: str = "",
        tag: Optional[str] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> List[PackageSummary]:
        """
        Run a paginated search.

        Args:
            source_url: Service index URL of the feed
            query: Free-text query
            tag: Restrict results to packages carrying this tag
            cancel: Checked before every request

        Returns:
            Package summaries in feed order
        """
        check_cancelled(cancel, "service index request")
        endpoint = self._resource(source_url, SEARCH_RESOURCE)
        terms = " ".join(part for part in [query.strip(), f"tags:{tag}" if tag else ""] if part)

        results: List[PackageSummary] = []
        skip = 0
        for _ in range(self.max_pages):
            check_cancelled(cancel, "search request")
            params = {
                "q": terms,
                "skip": skip,
                "take": self.page_size,
                "prerelease": "true",
                "semVerLevel": "2.0.0",
            }
            url = f"{endpoint}?{urlencode(params)}"
            data = self._get_json(url)
            items = data.get("data") or []
            if not isinstance(items, list):
                raise FeedError(f"Unexpected search response shape from {url}")
            results.extend(
                self._to_summary(item, source_url) for item in items if isinstance(item, dict) and item.get("id")
            )

            skip += len(items)
            total = data.get("totalHits")
            if len(items) < self.page_size or (isinstance(total, int) and skip >= total):
                break
        logger.debug("Feed %s returned %d packages for %r", source_url, len(results), terms)
        return results

    def versions(self, source_url: str, package_id: str, cancel: Optional[CancellationToken] = None) -> List[str]:
        check_cancelled(cancel, "version listing")
        base = self._resource(source_url, PACKAGE_BASE_RESOURCE)
        url = f"{base}/{package_id.lower()}/index.json"
        versions = self._get_json(url).get("versions", [])
        if not isinstance(versions, list):
            raise FeedError(f"Unexpected version listing shape from {url}")
        return [str(v) for v in versions]

    def download(
        self, source_url: str, package_id: str, version: str, cancel: Optional[CancellationToken] = None
    ) -> bytes:
        """
        Download a package archive from the flat container.

        Args:
            source_url: Service index URL of the feed
            package_id: Package id
            version: Exact version

        Returns:
            The .nupkg bytes
        """
        check_cancelled(cancel, "package download")
        base = self._resource(source_url, PACKAGE_BASE_RESOURCE)
        path = PackageReference(package_id=package_id, version=version).flat_container_path
        logger.info("Downloading %s %s from %s", package_id, version, source_url)
        return self._get(f"{base}/{path}", accept="application/octet-stream")

    @staticmethod
    def _to_summary(item: Dict[str, Any], source_url: str) -> PackageSummary:
        """Convert one search hit; a hit of the wrong shape is a FeedError."""
        def as_list(value, separator=None):
            if value is None:
                return []
            if isinstance(value, str):
                return [p.strip() for p in value.split(separator) if p.strip()]
            return [str(v) for v in value]

        try:
            version = str(item.get("version", ""))
            return PackageSummary(
                package_id=str(item["id"]),
                version=version,
                title=item.get("title") or "",
                description=item.get("description") or "",
                authors=as_list(item.get("authors"), ","),
                tags=as_list(item.get("tags")),
                project_url=item.get("projectUrl") or None,
                source=source_url,
                download_count=int(item.get("totalDownloads") or 0),
                is_prerelease=is_prerelease(version),
            )
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise FeedError(f"Unexpected search result from {source_url}: {e}") from e
