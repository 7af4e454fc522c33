# errors.py -- Exception classes for repocache
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

"""repocache exception classes."""

from collections.abc import Sequence
from typing import Optional


class RepoCacheError(Exception):
    """Base class for all repocache errors."""


class ProcessSpawnError(RepoCacheError):
    """A subprocess could not be started."""

    def __init__(self, args: Sequence[str], reason: str) -> None:
        """Initialize a ProcessSpawnError.

        Args:
            args: Argument vector of the process that failed to start
            reason: Human readable cause
        """
        self.argv = list(args)
        self.reason = reason
        super().__init__(f"Unable to start {self.argv!r}: {reason}")


class ProcessExitError(RepoCacheError):
    """A subprocess exited with a non-zero status."""

    def __init__(
        self, args: Sequence[str], returncode: int, stderr: Optional[bytes] = None
    ) -> None:
        """Initialize a ProcessExitError.

        Args:
            args: Argument vector of the process
            returncode: Exit status reported by the process
            stderr: Captured standard error output, if any
        """
        self.argv = list(args)
        self.returncode = returncode
        self.stderr = stderr
        message = f"{self.argv!r} exited with status {returncode}"
        if stderr:
            message += ": " + stderr.decode("utf-8", "replace").strip()
        super().__init__(message)


class MirrorError(RepoCacheError):
    """A local mirror could not be created or updated."""

    def __init__(self, remote_url: str, local_path: str, reason: str) -> None:
        self.remote_url = remote_url
        self.local_path = local_path
        super().__init__(f"Unable to mirror {remote_url} into {local_path}: {reason}")


class RequestBodyReadError(RepoCacheError):
    """The HTTP request body could not be read."""


class UnsupportedService(RepoCacheError):
    """The requested git service is not one we proxy."""

    def __init__(self, service: Optional[str]) -> None:
        self.service = service
        super().__init__(f"Unsupported service {service!r}")


class UnrecognizedRoute(RepoCacheError):
    """No handler exists for the request method and path."""

    def __init__(self, method: str, path: str) -> None:
        self.method = method
        self.path = path
        super().__init__(f"No route for {method} {path}")


class InvalidRepositoryURL(RepoCacheError):
    """A repository URL can not be mapped into the cache directory."""


class ConfigError(RepoCacheError):
    """Invalid configuration value."""
