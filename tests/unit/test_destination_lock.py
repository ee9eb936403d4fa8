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
Unit tests for exclusive destination initialization.
"""
import json
import os
import socket
from pathlib import Path

import pytest

from dcforge.MANAGERS.destination_lock import MARKER_NAME, STAGING_PREFIX, DestinationError, DestinationLock
from dcforge.MODELS.results import ErrorCode

# Above the largest pid Linux hands out
DEAD_PID = 4194304 + 1000


def write_marker(destination, pid, host=None):
    destination.mkdir(parents=True, exist_ok=True)
    (destination / MARKER_NAME).write_text(json.dumps({"pid": pid, "host": host or socket.gethostname()}))


class TestDestinationLock:
    """Tests for DestinationLock."""

    def test_acquire_and_release(self, tmp_path):
        lock = DestinationLock(str(tmp_path / "project"))
        staging = lock.acquire()
        assert (tmp_path / "project" / MARKER_NAME).exists()
        assert staging.is_dir()
        assert staging.name.startswith(STAGING_PREFIX)

        lock.rollback()
        lock.release()
        assert not (tmp_path / "project" / MARKER_NAME).exists()
        assert not staging.exists()

    def test_second_caller_in_progress(self, tmp_path):
        with DestinationLock(str(tmp_path)):
            with pytest.raises(DestinationError) as excinfo:
                DestinationLock(str(tmp_path)).acquire()
            assert excinfo.value.code == ErrorCode.IN_PROGRESS
        assert not (tmp_path / MARKER_NAME).exists()

    def test_existing_configuration(self, tmp_path):
        (tmp_path / ".devcontainer").mkdir()
        (tmp_path / ".devcontainer" / "devcontainer.json").write_text("{}")
        with pytest.raises(DestinationError) as excinfo:
            DestinationLock(str(tmp_path)).acquire()
        assert excinfo.value.code == ErrorCode.ALREADY_EXISTS
        assert not (tmp_path / MARKER_NAME).exists()

    def test_force_allows_existing_configuration(self, tmp_path):
        (tmp_path / ".devcontainer").mkdir()
        (tmp_path / ".devcontainer" / "devcontainer.json").write_text("{}")
        with DestinationLock(str(tmp_path), force=True) as lock:
            (lock.staging / ".devcontainer").mkdir()
            (lock.staging / ".devcontainer" / "devcontainer.json").write_text('{"name": "new"}')
            lock.commit()
        assert (tmp_path / ".devcontainer" / "devcontainer.json").read_text() == '{"name": "new"}'

    def test_stale_marker_recovered(self, tmp_path):
        write_marker(tmp_path, DEAD_PID)
        (tmp_path / (STAGING_PREFIX + "leftover")).mkdir()
        with DestinationLock(str(tmp_path)) as lock:
            marker = json.loads((tmp_path / MARKER_NAME).read_text())
            assert marker["pid"] == os.getpid()
            assert not (tmp_path / (STAGING_PREFIX + "leftover")).exists()
            assert lock.staging.is_dir()

    def test_live_marker_respected(self, tmp_path):
        write_marker(tmp_path, os.getpid())
        with pytest.raises(DestinationError) as excinfo:
            DestinationLock(str(tmp_path)).acquire()
        assert excinfo.value.code == ErrorCode.IN_PROGRESS
        assert (tmp_path / MARKER_NAME).exists()

    def test_marker_from_other_host_respected(self, tmp_path):
        write_marker(tmp_path, DEAD_PID, host="some-other-host.invalid")
        with pytest.raises(DestinationError) as excinfo:
            DestinationLock(str(tmp_path)).acquire()
        assert excinfo.value.code == ErrorCode.IN_PROGRESS

    def test_commit_moves_files(self, tmp_path):
        with DestinationLock(str(tmp_path)) as lock:
            (lock.staging / "a").mkdir()
            (lock.staging / "a" / "one.txt").write_text("1")
            (lock.staging / "two.txt").write_text("2")
            files = lock.commit()
        assert sorted(files) == sorted([str(tmp_path / "a" / "one.txt"), str(tmp_path / "two.txt")])
        assert (tmp_path / "a" / "one.txt").read_text() == "1"
        assert sorted(p.name for p in tmp_path.iterdir()) == ["a", "two.txt"]

    def test_commit_conflict_moves_nothing(self, tmp_path):
        (tmp_path / "b.txt").write_text("mine")
        with pytest.raises(DestinationError) as excinfo:
            with DestinationLock(str(tmp_path)) as lock:
                (lock.staging / "a.txt").write_text("a")
                (lock.staging / "b.txt").write_text("b")
                lock.commit()
        assert excinfo.value.code == ErrorCode.ALREADY_EXISTS
        assert sorted(p.name for p in tmp_path.iterdir()) == ["b.txt"]
        assert (tmp_path / "b.txt").read_text() == "mine"

    def test_exit_without_commit_rolls_back(self, tmp_path):
        with DestinationLock(str(tmp_path)) as lock:
            (lock.staging / "a.txt").write_text("a")
        assert list(tmp_path.iterdir()) == []

    def test_failed_move_restores_destination(self, tmp_path, monkeypatch):
        real_replace = os.replace

        def replace(src, dst):
            if Path(dst).name == "b.txt":
                raise OSError("No space left on device")
            return real_replace(src, dst)

        with pytest.raises(DestinationError) as excinfo:
            with DestinationLock(str(tmp_path)) as lock:
                (lock.staging / "a.txt").write_text("a")
                (lock.staging / "b.txt").write_text("b")
                (lock.staging / ".devcontainer").mkdir()
                (lock.staging / ".devcontainer" / "devcontainer.json").write_text("{}")
                monkeypatch.setattr(os, "replace", replace)
                lock.commit()
        assert excinfo.value.code == ErrorCode.IO
        assert list(tmp_path.iterdir()) == []

    def test_failed_move_restores_overwritten_files(self, tmp_path, monkeypatch):
        (tmp_path / "a.txt").write_text("mine")
        real_replace = os.replace

        def replace(src, dst):
            if Path(dst).name == "b.txt":
                raise OSError("No space left on device")
            return real_replace(src, dst)

        with pytest.raises(DestinationError):
            with DestinationLock(str(tmp_path), force=True) as lock:
                (lock.staging / "a.txt").write_text("a")
                (lock.staging / "b.txt").write_text("b")
                monkeypatch.setattr(os, "replace", replace)
                lock.commit()
        assert sorted(p.name for p in tmp_path.iterdir()) == ["a.txt"]
        assert (tmp_path / "a.txt").read_text() == "mine"

    def test_file_in_place_of_directory(self, tmp_path):
        (tmp_path / "src").write_text("not a directory")
        with pytest.raises(DestinationError) as excinfo:
            with DestinationLock(str(tmp_path)) as lock:
                (lock.staging / "a.txt").write_text("a")
                (lock.staging / "src").mkdir()
                (lock.staging / "src" / "app.txt").write_text("app")
                lock.commit()
        assert excinfo.value.code == ErrorCode.ALREADY_EXISTS
        assert sorted(p.name for p in tmp_path.iterdir()) == ["src"]

    def test_devcontainer_json_moved_last(self, tmp_path, monkeypatch):
        real_replace = os.replace
        order = []

        def replace(src, dst):
            order.append(Path(dst).name)
            return real_replace(src, dst)

        with DestinationLock(str(tmp_path)) as lock:
            (lock.staging / ".devcontainer").mkdir()
            (lock.staging / ".devcontainer" / "devcontainer.json").write_text("{}")
            (lock.staging / ".devcontainer" / "z-Dockerfile").write_text("FROM ubuntu")
            (lock.staging / "readme.md").write_text("hi")
            monkeypatch.setattr(os, "replace", replace)
            files = lock.commit()
        assert order[-1] == "devcontainer.json"
        assert files[0] == str(tmp_path / ".devcontainer" / "devcontainer.json")

    def test_stale_marker_claimed_once(self, tmp_path):
        write_marker(tmp_path, DEAD_PID)
        late = DestinationLock(str(tmp_path))
        state, seen = late._read_marker()
        assert state == "stale"

        first = DestinationLock(str(tmp_path))
        first.acquire()
        try:
            # The marker now belongs to a live owner; the old observation must not remove it
            assert not late._take_over(seen)
            assert json.loads((tmp_path / MARKER_NAME).read_text())["pid"] == os.getpid()
            assert first.staging.is_dir()
            with pytest.raises(DestinationError) as excinfo:
                late.acquire()
            assert excinfo.value.code == ErrorCode.IN_PROGRESS
        finally:
            first.rollback()
            first.release()
        assert list(tmp_path.iterdir()) == []

    def test_release_leaves_foreign_marker(self, tmp_path):
        lock = DestinationLock(str(tmp_path))
        lock.acquire()
        lock.rollback()
        write_marker(tmp_path, os.getpid())
        lock.release()
        assert (tmp_path / MARKER_NAME).exists()
