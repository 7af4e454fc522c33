# config.py -- Runtime configuration for repocache
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

"""Configuration read from the process environment.

Recognized variables:

SERVER_ADDRESS
    ``host:port`` to listen on. ``:8000`` binds all interfaces.
CACHED_REPO_DIR
    Root directory of the mirror cache.
REPOCACHE_GIT
    Command used to run git, split like a shell would.
REPOCACHE_MAX_BODY_IN_MEMORY
    Request bodies larger than this many bytes are spooled to disk.
"""

__all__ = [
    "DEFAULT_CACHED_REPO_DIR",
    "DEFAULT_MAX_BODY_IN_MEMORY",
    "DEFAULT_SERVER_ADDRESS",
    "Config",
    "load_dotenv_file",
    "parse_server_address",
]

import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from typing import Optional

from .errors import ConfigError

DEFAULT_SERVER_ADDRESS = "localhost:8000"
DEFAULT_CACHED_REPO_DIR = "repos"
DEFAULT_MAX_BODY_IN_MEMORY = 16 * 1024 * 1024


def parse_server_address(address: str) -> tuple[str, int]:
    """Split a ``host:port`` listen address.

    Args:
      address: Address such as ``localhost:8000``, ``:8000`` or ``[::1]:8000``
    Returns: Tuple of (host, port)
    Raises:
      ConfigError: if the port is missing or not a valid TCP port
    """
    host, sep, port_str = address.rpartition(":")
    if not sep:
        raise ConfigError(f"SERVER_ADDRESS {address!r} lacks a port")
    try:
        port = int(port_str)
    except ValueError as e:
        raise ConfigError(f"Invalid port in SERVER_ADDRESS {address!r}") from e
    if not 0 <= port <= 65535:
        raise ConfigError(f"Port out of range in SERVER_ADDRESS {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, port


def _parse_size(name: str, value: str) -> int:
    try:
        size = int(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e
    if size < 0:
        raise ConfigError(f"{name} must not be negative")
    return size


@dataclass(frozen=True)
class Config:
    """Settings shared by the server and the command line tools."""

    server_address: str = DEFAULT_SERVER_ADDRESS
    cached_repo_dir: str = DEFAULT_CACHED_REPO_DIR
    git_command: list[str] = field(default_factory=lambda: ["git"])
    max_body_in_memory: int = DEFAULT_MAX_BODY_IN_MEMORY

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> "Config":
        """Build a configuration from environment variables.

        Args:
          environ: Mapping to read from, defaults to ``os.environ``
        Returns: A new Config; unset variables keep their defaults
        """
        if environ is None:
            environ = os.environ
        kwargs: dict = {}
        if environ.get("SERVER_ADDRESS"):
            kwargs["server_address"] = environ["SERVER_ADDRESS"]
        if environ.get("CACHED_REPO_DIR"):
            kwargs["cached_repo_dir"] = environ["CACHED_REPO_DIR"]
        if environ.get("REPOCACHE_GIT"):
            git_command = shlex.split(environ["REPOCACHE_GIT"])
            if not git_command:
                raise ConfigError("REPOCACHE_GIT is empty")
            kwargs["git_command"] = git_command
        if environ.get("REPOCACHE_MAX_BODY_IN_MEMORY"):
            kwargs["max_body_in_memory"] = _parse_size(
                "REPOCACHE_MAX_BODY_IN_MEMORY", environ["REPOCACHE_MAX_BODY_IN_MEMORY"]
            )
        config = cls(**kwargs)
        # Fail early on a malformed listen address.
        parse_server_address(config.server_address)
        return config

    @property
    def listen_address(self) -> tuple[str, int]:
        """The (host, port) pair to bind to."""
        return parse_server_address(self.server_address)

    def with_overrides(self, **kwargs) -> "Config":
        """Return a copy with the non-None keyword arguments applied."""
        return replace(self, **{k: v for k, v in kwargs.items() if v is not None})


def load_dotenv_file(path: Optional[str] = None) -> bool:
    """Load variables from a ``.env`` file into the process environment.

    Variables that are already set win over the file.

    Args:
      path: File to read; defaults to ``.env`` searched from the working
        directory upwards
    Returns: True if a file was found and loaded
    Raises:
      ConfigError: if path was given but names no file
    """
    from dotenv import find_dotenv, load_dotenv

    if path is None:
        path = find_dotenv(usecwd=True)
        if not path:
            return False
    elif not os.path.isfile(path):
        raise ConfigError(f"Environment file {path!r} does not exist")
    return load_dotenv(path, override=False)
