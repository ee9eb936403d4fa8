"""
Shared fixtures: in-memory template packages, a controllable clock and a fake feed.
"""
import io
import struct
import threading
import zipfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from xml.sax.saxutils import escape, quoteattr

import pytest

from dcforge.MODELS.results import ErrorCode
from dcforge.REGISTRY.feed_client import FeedError

NUSPEC_NAMESPACE = "http://schemas.microsoft.com/packaging/2013/05/nuspec.xsd"


def nuspec_xml(package_id, version, tags=("pks-devcontainers",), properties=None, title="", description=""):
    props = "".join(
        f"<property name={quoteattr(name)} value={quoteattr(value)} />"
        for name, value in (properties or {}).items()
    )
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        f'<package xmlns="{NUSPEC_NAMESPACE}">'
        "<metadata>"
        f"<id>{escape(package_id)}</id>"
        f"<version>{escape(version)}</version>"
        f"<title>{escape(title)}</title>"
        f"<description>{escape(description or package_id + ' template')}</description>"
        "<authors>Contoso, Fabrikam</authors>"
        f"<tags>{escape(' '.join(tags))}</tags>"
        f"<properties>{props}</properties>"
        "</metadata>"
        "</package>"
    )


def build_nupkg(package_id, version, tags=("pks-devcontainers",), properties=None, files=None,
                manifest=None, title="", description=""):
    """Bytes of a .nupkg holding a nuspec, optional manifest and content entries."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr(f"{package_id}.nuspec", nuspec_xml(
            package_id, version, tags=tags, properties=properties, title=title, description=description,
        ))
        if manifest is not None:
            archive.writestr("devcontainer-template.json", manifest)
        for name, content in (files or {}).items():
            archive.writestr(name, content)
    return buffer.getvalue()


def damaged_nupkg(package_id, version, damaged_entry=None, files=None):
    """
    A deflated .nupkg whose damaged_entry (the nuspec by default) has its
    compressed bytes overwritten, so reading it fails inside zlib.
    """
    damaged_entry = damaged_entry or f"{package_id}.nuspec"
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(f"{package_id}.nuspec", nuspec_xml(package_id, version))
        for name, content in (files or {}).items():
            archive.writestr(name, content)
    data = bytearray(buffer.getvalue())
    with zipfile.ZipFile(io.BytesIO(bytes(data))) as archive:
        info = archive.getinfo(damaged_entry)
    name_length, extra_length = struct.unpack("<HH", data[info.header_offset + 26:info.header_offset + 30])
    start = info.header_offset + 30 + name_length + extra_length
    # 0xff starts a deflate block of the reserved type 3
    data[start:start + info.compress_size] = b"\xff" * info.compress_size
    return bytes(data)


def write_nupkg(folder, package_id, version, **kwargs):
    folder = Path(folder)
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / f"{package_id}.{version}.nupkg"
    path.write_bytes(build_nupkg(package_id, version, **kwargs))
    return path


class FakeClock:
    """Clock whose time only moves when a test says so."""

    def __init__(self):
        self.current = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class FakeFeedClient:
    """
    Stands in for FeedClient. Search results are keyed by tag and archives by
    (lowercased id, version). Setting download_gate makes download() block until it is set.
    """

    def __init__(self, packages_by_tag=None, archives=None, error=None):
        self.packages_by_tag = packages_by_tag or {}
        self.archives = archives or {}
        self.error = error
        self.search_calls = []
        self.download_started = threading.Event()
        self.download_gate = None

    def search(self, source_url, query="", tag=None, cancel=None):
        self.search_calls.append(tag)
        if self.error is not None:
            raise self.error
        return list(self.packages_by_tag.get(tag, []))

    def versions(self, source_url, package_id, cancel=None):
        versions = [version for (pid, version) in self.archives if pid == package_id.lower()]
        if not versions:
            raise FeedError(f"{package_id} not found", code=ErrorCode.NOT_FOUND, status=404)
        return versions

    def download(self, source_url, package_id, version, cancel=None):
        self.download_started.set()
        if self.download_gate is not None:
            self.download_gate.wait(timeout=10)
        try:
            return self.archives[(package_id.lower(), version)]
        except KeyError:
            raise FeedError(f"{package_id} {version} not found", code=ErrorCode.NOT_FOUND, status=404)


@pytest.fixture
def make_nupkg():
    return build_nupkg


@pytest.fixture
def nupkg_writer():
    return write_nupkg


@pytest.fixture
def make_damaged_nupkg():
    return damaged_nupkg


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_feed():
    return FakeFeedClient
