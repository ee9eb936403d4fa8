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
Exclusive initialization of a destination directory.
A marker file created with O_EXCL lets exactly one caller proceed; work is
staged inside the destination and moved into place on commit.
"""
import hashlib
import json
import logging
import os
import shutil
import socket
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

import psutil

from ..MODELS.results import ErrorCode

logger = logging.getLogger(__name__)

MARKER_NAME = ".dcforge-init.lock"
STAGING_PREFIX = ".dcforge-staging-"
DEVCONTAINER_FILE = os.path.join(".devcontainer", "devcontainer.json")


class DestinationError(Exception):
    """The destination cannot be initialized. code is IN_PROGRESS, ALREADY_EXISTS or IO."""

    def __init__(self, message: str, code: ErrorCode):
        super().__init__(message)
        self.code = code


class DestinationLock:
    """
    Guards one initialization of a destination directory.

    Usage:
        with DestinationLock(path) as lock:
            write files under lock.staging
            lock.commit()
    Leaving the block without commit rolls the staged files back.
    """

    def __init__(self, destination: str, force: bool = False):
        """
        Initializes the lock.

        :param destination: Directory that will receive the files.
        :param force: Allow overwriting an existing devcontainer configuration.
        """
        self.destination = Path(destination).resolve()
        self.force = force
        self.marker = self.destination / MARKER_NAME
        self.staging: Optional[Path] = None
        self._held = False
        self._marker_text: Optional[str] = None

    def acquire(self) -> Path:
        """
        Creates the marker and a staging directory.

        :return: The staging directory.
        :raises DestinationError: IN_PROGRESS when another caller holds the marker,
                                  ALREADY_EXISTS when a configuration exists and force is off,
                                  IO when the destination is not writable.
        """
        try:
            self.destination.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DestinationError(f"Destination {self.destination} is not writable: {e}", ErrorCode.IO) from e
        if not os.access(self.destination, os.W_OK):
            raise DestinationError(f"Destination {self.destination} is not writable", ErrorCode.IO)

        for _ in range(3):
            if self._create_marker():
                break
            state, seen = self._read_marker()
            if state == "live":
                break
            if state == "stale":
                self._take_over(seen)
        if not self._held:
            raise DestinationError(
                f"Destination {self.destination} is already being initialized",
                ErrorCode.IN_PROGRESS,
            )

        if (self.destination / DEVCONTAINER_FILE).exists() and not self.force:
            self.release()
            raise DestinationError(
                f"{self.destination / DEVCONTAINER_FILE} already exists; use force to overwrite",
                ErrorCode.ALREADY_EXISTS,
            )

        try:
            self.staging = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=self.destination))
        except OSError as e:
            self.release()
            raise DestinationError(f"Cannot create staging area in {self.destination}: {e}", ErrorCode.IO) from e
        return self.staging

    def _create_marker(self) -> bool:
        try:
            fd = os.open(self.marker, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as e:
            raise DestinationError(f"Cannot create {self.marker}: {e}", ErrorCode.IO) from e
        self._held = True
        self._marker_text = json.dumps({
            "pid": os.getpid(),
            "host": socket.gethostname(),
            "created_at": datetime.now(timezone.utc).isoformat(),
            "nonce": uuid.uuid4().hex,
        })
        with os.fdopen(fd, "w") as f:
            f.write(self._marker_text)
        return True

    def _read_marker(self) -> Tuple[str, Optional[str]]:
        """
        Returns (state, marker text). state is "missing" if the marker vanished,
        "stale" if it was written on this host by a process that no longer runs,
        otherwise "live".
        """
        try:
            text = self.marker.read_text()
        except FileNotFoundError:
            return "missing", None
        except OSError:
            return "live", None
        try:
            info = json.loads(text)
        except ValueError:
            # Still being written by its owner
            return "live", text
        if not isinstance(info, dict) or info.get("host") != socket.gethostname():
            return "live", text
        pid = info.get("pid")
        if isinstance(pid, int) and not psutil.pid_exists(pid):
            return "stale", text
        return "live", text

    def _take_over(self, stale_text: str) -> bool:
        """
        Removes a stale marker whose content was stale_text.

        The marker is hard linked to a claim file named after its content;
        creating that link succeeds for exactly one caller. The claim is
        honoured only if the linked file still holds stale_text, so a marker
        written by a newer owner in the meantime is left alone.

        :return: True if this caller removed the stale marker.
        """
        digest = hashlib.sha1(stale_text.encode("utf-8")).hexdigest()[:16]
        claim = self.destination / f"{MARKER_NAME}.{digest}.claim"
        try:
            os.link(self.marker, claim)
        except (FileExistsError, FileNotFoundError):
            return False
        except OSError as e:
            raise DestinationError(f"Cannot claim stale marker {self.marker}: {e}", ErrorCode.IO) from e

        try:
            if claim.read_text() != stale_text:
                return False
            logger.warning("Removing stale initialization marker in %s", self.destination)
            # No live owner exists while the stale marker is in place
            for leftover in self.destination.glob(f"{STAGING_PREFIX}*"):
                if leftover.is_dir():
                    shutil.rmtree(leftover, ignore_errors=True)
            self.marker.unlink(missing_ok=True)
            return True
        finally:
            claim.unlink(missing_ok=True)

    def commit(self) -> List[str]:
        """
        Moves staged files into the destination.

        Conflicts are checked for every file before anything moves, and
        devcontainer.json is moved last. If a move fails, the files already
        moved are put back and replaced files are restored.

        :return: Absolute paths of the files now in the destination.
        :raises DestinationError: ALREADY_EXISTS if a file exists and force is off,
                                  IO if a move fails.
        """
        if self.staging is None:
            raise RuntimeError("commit() called before acquire()")

        devcontainer = Path(DEVCONTAINER_FILE)
        staged = sorted(
            (p for p in self.staging.rglob("*") if p.is_file()),
            key=lambda p: (p.relative_to(self.staging) == devcontainer, str(p)),
        )
        targets = [self.destination / p.relative_to(self.staging) for p in staged]

        for target in targets:
            for parent in target.relative_to(self.destination).parents:
                if (self.destination / parent).exists() and not (self.destination / parent).is_dir():
                    raise DestinationError(f"{self.destination / parent} exists and is not a directory",
                                           ErrorCode.ALREADY_EXISTS)
            if target.is_dir():
                raise DestinationError(f"{target} exists and is a directory", ErrorCode.ALREADY_EXISTS)
            if target.exists() and not self.force:
                raise DestinationError(f"{target} already exists; use force to overwrite", ErrorCode.ALREADY_EXISTS)

        moved: List[Tuple[Path, Path]] = []
        replaced: List[Tuple[Path, Path]] = []
        created: List[Path] = []
        backup: Optional[Path] = None
        try:
            for source, target in zip(staged, targets):
                created.extend(self._make_parents(target.parent))
                if target.exists():
                    if backup is None:
                        backup = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=self.destination))
                    saved = backup / str(len(replaced))
                    os.replace(target, saved)
                    replaced.append((saved, target))
                os.replace(source, target)
                moved.append((source, target))
        except OSError as e:
            self._undo(moved, replaced, created)
            raise DestinationError(f"Cannot move files into {self.destination}: {e}", ErrorCode.IO) from e
        finally:
            if backup is not None:
                shutil.rmtree(backup, ignore_errors=True)

        shutil.rmtree(self.staging, ignore_errors=True)
        self.staging = None
        logger.debug("Committed %d files to %s", len(moved), self.destination)
        return sorted(str(target) for _, target in moved)

    def _make_parents(self, directory: Path) -> List[Path]:
        """Create missing directories down to directory; returns the ones created, outermost first."""
        missing = []
        while directory != self.destination and not directory.exists():
            missing.append(directory)
            directory = directory.parent
        missing.reverse()
        for path in missing:
            path.mkdir()
        return missing

    @staticmethod
    def _undo(moved, replaced, created) -> None:
        for source, target in reversed(moved):
            try:
                os.replace(target, source)
            except OSError as e:
                logger.error("Cannot move %s back to staging: %s", target, e)
        for saved, target in reversed(replaced):
            try:
                os.replace(saved, target)
            except OSError as e:
                logger.error("Cannot restore %s: %s", target, e)
        for directory in reversed(created):
            try:
                directory.rmdir()
            except OSError as e:
                logger.error("Cannot remove %s: %s", directory, e)

    def rollback(self) -> None:
        if self.staging is not None:
            shutil.rmtree(self.staging, ignore_errors=True)
            self.staging = None

    def release(self) -> None:
        """Removes the marker if it is still the one this lock wrote."""
        if not self._held:
            return
        self._held = False
        try:
            if self.marker.read_text() != self._marker_text:
                logger.error("Initialization marker in %s was replaced by another caller", self.destination)
                return
        except FileNotFoundError:
            return
        self.marker.unlink(missing_ok=True)

    def __enter__(self) -> "DestinationLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.rollback()
        self.release()
        return False
