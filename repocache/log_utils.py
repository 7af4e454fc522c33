# log_utils.py -- Logging utilities for repocache
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

"""Logging utilities for repocache.

The proxy can be embedded in another WSGI container, in which case the host
decides where log output goes. Until default_logging_config() is called, a
null handler on the "repocache" logger keeps the library quiet.

Modules only need getLogger, which this module re-exports for convenience.
"""

import logging
import os
import sys
from collections.abc import Mapping
from typing import Optional, Union

getLogger = logging.getLogger

DEFAULT_FORMAT = "%(asctime)s %(levelname)s: %(message)s"
TRACE_FORMAT = "%(asctime)s %(name)s %(levelname)s: %(message)s"


class _NullHandler(logging.Handler):
    """No-op logging handler to avoid unexpected logging warnings."""

    def emit(self, record: logging.LogRecord) -> None:
        pass


_NULL_HANDLER = _NullHandler()
_REPOCACHE_LOGGER = getLogger("repocache")
_REPOCACHE_LOGGER.addHandler(_NULL_HANDLER)


def _get_trace_target(environ: Optional[Mapping[str, str]] = None) -> Optional[Union[str, int]]:
    """Get the trace target from the GIT_TRACE environment variable.

    Returns:
        - None if tracing is disabled
        - 2 for stderr output (values "1", "2", "true")
        - str for a file path (absolute paths or directories)
    """
    if environ is None:
        environ = os.environ
    trace_value = environ.get("GIT_TRACE", "")

    if not trace_value or trace_value.lower() in ("0", "false"):
        return None

    if trace_value.lower() in ("1", "2", "true"):
        return 2

    if os.path.isabs(trace_value):
        return trace_value

    return None


def _configure_logging_from_trace(environ: Optional[Mapping[str, str]] = None) -> bool:
    """Configure logging based on GIT_TRACE.

    Returns True if trace configuration was successful, False otherwise.
    """
    trace_target = _get_trace_target(environ)
    if trace_target is None:
        return False

    if trace_target == 2:
        logging.basicConfig(level=logging.DEBUG, stream=sys.stderr, format=TRACE_FORMAT)
        return True

    assert isinstance(trace_target, str)
    if os.path.isdir(trace_target):
        filename = os.path.join(trace_target, f"repocache.{os.getpid()}")
    else:
        filename = trace_target
    try:
        logging.basicConfig(
            level=logging.DEBUG, filename=filename, filemode="a", format=TRACE_FORMAT
        )
    except OSError as e:
        sys.stderr.write(f"Warning: Failed to open GIT_TRACE file {trace_target}: {e}\n")
        return False
    return True


def default_logging_config(environ: Optional[Mapping[str, str]] = None) -> None:
    """Set up the default repocache loggers.

    Respects GIT_TRACE the same way git does for its own trace output:
    "1", "2" or "true" trace to stderr, an absolute path traces to that
    file, and a directory gets one file per process. Otherwise INFO level
    messages go to stderr.
    """
    remove_null_handler()

    if not _configure_logging_from_trace(environ):
        logging.basicConfig(
            level=logging.INFO,
            stream=sys.stderr,
            format=DEFAULT_FORMAT,
        )


def remove_null_handler() -> None:
    """Remove the null handler from the repocache loggers.

    If a caller wants to set up logging using something other than
    default_logging_config, calling this function first is a minor
    optimization to avoid the overhead of using the _NullHandler.
    """
    _REPOCACHE_LOGGER.removeHandler(_NULL_HANDLER)
