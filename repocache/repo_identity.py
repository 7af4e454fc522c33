# repo_identity.py -- Map request paths to remote repositories and mirrors
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

"""Derive the remote repository URL and local mirror path for a request.

A request for ``/github.com/jelmer/dulwich/info/refs`` refers to the remote
repository ``https://github.com/jelmer/dulwich``, which is mirrored at
``<cache root>/github.com/jelmer/dulwich``.
"""

__all__ = [
    "SMART_HTTP_SUFFIXES",
    "find_local_repo_path",
    "get_remote_repo_url",
]

import os

from urllib3.exceptions import LocationParseError
from urllib3.util import parse_url

from .errors import InvalidRepositoryURL

SMART_HTTP_SUFFIXES = ("/info/refs", "/HEAD", "/git-upload-pack", "/git-receive-pack")

DEFAULT_SCHEME = "https"


def get_remote_repo_url(path: str) -> str:
    """Get the remote repository URL for a request path.

    Args:
      path: The request path, e.g. ``/foo.com/bar/info/refs``
    Returns: The absolute URL of the remote repository, e.g.
      ``https://foo.com/bar``
    """
    if path.startswith("/"):
        path = path[1:]
    for suffix in SMART_HTTP_SUFFIXES:
        if path.endswith(suffix):
            path = path[: -len(suffix)]
            break
    if not (path.startswith("http://") or path.startswith("https://")):
        path = f"{DEFAULT_SCHEME}://{path}"
    return path


def find_local_repo_path(cache_root: str, remote_url: str) -> str:
    """Find the local mirror path for a remote repository.

    Args:
      cache_root: Root directory of the mirror cache
      remote_url: Absolute URL of the remote repository
    Returns: ``cache_root/<host>/<path>``

    parse_url resolves dot segments in the path of http and https URLs,
    but not in the host, and not for other schemes.

    Raises:
      InvalidRepositoryURL: if the URL has no host or the resulting path
        would lie outside the cache root
    """
    try:
        url = parse_url(remote_url)
    except LocationParseError as e:
        raise InvalidRepositoryURL(f"Unparseable repository URL {remote_url!r}") from e
    if not url.host:
        raise InvalidRepositoryURL(f"No host in repository URL {remote_url!r}")
    host = url.host
    if host in (".", ".."):
        raise InvalidRepositoryURL(f"Relative host in repository URL {remote_url!r}")
    if url.port is not None:
        host = f"{host}:{url.port}"
    segments = [s for s in (url.path or "").split("/") if s]
    if any(s in (".", "..") for s in segments):
        raise InvalidRepositoryURL(f"Relative path in repository URL {remote_url!r}")
    local_path = os.path.join(cache_root, host, *segments)
    root = os.path.abspath(cache_root)
    if os.path.commonpath([root, os.path.abspath(local_path)]) != root:
        raise InvalidRepositoryURL(
            f"Repository URL {remote_url!r} maps outside the cache root"
        )
    return local_path

