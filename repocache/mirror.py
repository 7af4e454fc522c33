# mirror.py -- On-disk cache of mirrored repositories
# Copyright (C) 2026 The repocache Authors
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# repocache is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Mirror cache management.

Each remote repository is mirrored once, on first use, with
``git clone --mirror``. The clone is made next to its final location and
renamed into place only after it succeeded, so a directory at the mirror
path is always a complete mirror. A lock per mirror path makes concurrent
first requests for the same remote wait for a single clone.

Mirrors are never removed, and they are only refreshed when fetch() is
called explicitly.
"""

__all__ = [
    "MirrorCache",
    "MirrorState",
    "is_mirror",
]

import enum
import os
import shutil
import threading
import uuid
from collections.abc import Sequence
from typing import Optional

from . import log_utils
from .command import CommandRunner, GitInvocation, find_git_command, run_command
from .errors import MirrorError, ProcessExitError, ProcessSpawnError
from .repo_identity import find_local_repo_path

logger = log_utils.getLogger(__name__)


class MirrorState(enum.Enum):
    """Lifecycle of a mirror in the cache."""

    ABSENT = "absent"
    CLONING = "cloning"
    READY = "ready"


def is_mirror(path: str) -> bool:
    """Check whether path contains a bare git repository."""
    return (
        os.path.isfile(os.path.join(path, "HEAD"))
        and os.path.isdir(os.path.join(path, "objects"))
        and os.path.isdir(os.path.join(path, "refs"))
    )


class MirrorCache:
    """Cache of bare mirrors below a root directory.

    Attributes:
      cache_root: Directory holding the mirrors, as ``<host>/<path>``
      git_command: Argument vector prefix used to run git
    """

    def __init__(
        self,
        cache_root: str,
        runner: Optional[CommandRunner] = None,
        git_command: Optional[Sequence[str]] = None,
    ) -> None:
        self.cache_root = cache_root
        self.git_command = list(git_command) if git_command else find_git_command()
        self._runner: CommandRunner = runner if runner is not None else run_command
        self._states: dict[str, MirrorState] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_lock = threading.Lock()

    def find_local_repo_path(self, remote_url: str) -> str:
        return find_local_repo_path(self.cache_root, remote_url)

    def _lock_for(self, local_path: str) -> threading.Lock:
        with self._locks_lock:
            try:
                return self._locks[local_path]
            except KeyError:
                lock = self._locks[local_path] = threading.Lock()
                return lock

    def state(self, remote_url: str) -> MirrorState:
        """Return the state of the mirror of remote_url."""
        local_path = self.find_local_repo_path(remote_url)
        state = self._states.get(local_path)
        if state is not None:
            return state
        if is_mirror(local_path):
            return MirrorState.READY
        return MirrorState.ABSENT

    def _run_git(self, *args: str) -> None:
        self._runner(GitInvocation([*self.git_command, *args]), True)

    def ensure_mirror(self, remote_url: str) -> str:
        """Make sure a mirror of remote_url exists, cloning it if necessary.

        Args:
          remote_url: Absolute URL of the remote repository
        Returns: Path of the local mirror
        Raises:
          MirrorError: if the mirror could not be created
          InvalidRepositoryURL: if remote_url can not be mapped to a path
        """
        local_path = self.find_local_repo_path(remote_url)
        if self._states.get(local_path) is MirrorState.READY:
            return local_path
        with self._lock_for(local_path):
            if self._states.get(local_path) is MirrorState.READY or is_mirror(local_path):
                self._states[local_path] = MirrorState.READY
                return local_path
            self._states[local_path] = MirrorState.CLONING
            try:
                self._clone(remote_url, local_path)
            except BaseException:
                del self._states[local_path]
                raise
            self._states[local_path] = MirrorState.READY
        return local_path

    def _clone(self, remote_url: str, local_path: str) -> None:
        if os.path.isdir(local_path):
            # An empty directory can be left behind by an interrupted clone.
            try:
                os.rmdir(local_path)
            except OSError as e:
                raise MirrorError(
                    remote_url, local_path, "path exists and is not a git mirror"
                ) from e
        parent, name = os.path.split(local_path)
        try:
            os.makedirs(parent, exist_ok=True)
        except OSError as e:
            raise MirrorError(remote_url, local_path, str(e)) from e

        tmp_path = os.path.join(parent, f".{name}.{uuid.uuid4().hex}.tmp")
        logger.info("Cloning %s into %s", remote_url, local_path)
        try:
            self._run_git("clone", "--mirror", remote_url, tmp_path)
            self._run_git("-C", tmp_path, "remote", "set-url", "origin", remote_url)
            os.rename(tmp_path, local_path)
        except (ProcessSpawnError, ProcessExitError, OSError) as e:
            shutil.rmtree(tmp_path, ignore_errors=True)
            raise MirrorError(remote_url, local_path, str(e)) from e
        logger.info("Mirrored %s", remote_url)

    def fetch(self, local_path: str) -> None:
        """Update an existing mirror from its origin.

        Args:
          local_path: Path of the mirror
        Raises:
          ProcessSpawnError: if git could not be started
          ProcessExitError: if git fetch failed
        """
        with self._lock_for(local_path):
            self._run_git("-C", local_path, "fetch", "--quiet")
