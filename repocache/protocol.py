# protocol.py -- git smart HTTP framing
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

"""pkt-line framing and service metadata for the git smart HTTP protocol.

Only the framing the proxy writes itself lives here. Everything after the
service announcement is produced by git and passed through untouched.
"""

__all__ = [
    "FLUSH_PKT",
    "GIT_RECEIVE_PACK",
    "GIT_UPLOAD_PACK",
    "MAX_PKT_DATA",
    "SERVICES",
    "advertise_refs_args",
    "advertisement_content_type",
    "is_valid_service",
    "pkt_line",
    "read_pkt_lines",
    "result_content_type",
    "service_announcement",
    "stateless_rpc_args",
]

from typing import Optional

GIT_UPLOAD_PACK = "git-upload-pack"
GIT_RECEIVE_PACK = "git-receive-pack"
SERVICES = (GIT_UPLOAD_PACK, GIT_RECEIVE_PACK)

FLUSH_PKT = b"0000"

# LARGE_PACKET_MAX in git is 65520, which includes the 4 byte length header.
MAX_PKT_DATA = 65520 - 4


def pkt_line(data: Optional[bytes]) -> bytes:
    """Wrap data in a pkt-line.

    Args:
      data: The data to wrap, as bytes or None.
    Returns: The data prefixed with its length in pkt-line format; if data
        was None, returns the flush-pkt ('0000').
    """
    if data is None:
        return FLUSH_PKT
    if len(data) > MAX_PKT_DATA:
        raise ValueError(f"pkt-line data too long: {len(data)} bytes")
    return ("%04x" % (len(data) + 4)).encode("ascii") + data  # noqa: UP031


def read_pkt_lines(data: bytes) -> tuple[list[Optional[bytes]], bytes]:
    """Parse the complete pkt-lines at the start of a buffer.

    Flush, delimiter and response-end packets are returned as None.

    Args:
      data: Buffer starting at a pkt-line boundary
    Returns: Tuple of (pkt-line payloads, unparsed remainder)
    Raises:
      ValueError: if a length header is not valid hex
    """
    pkts: list[Optional[bytes]] = []
    offset = 0
    while len(data) - offset >= 4:
        size = int(data[offset : offset + 4], 16)
        if size < 4:
            pkts.append(None)
            offset += 4
            continue
        if len(data) - offset < size:
            break
        pkts.append(data[offset + 4 : offset + size])
        offset += size
    return pkts, data[offset:]


def is_valid_service(service: Optional[str]) -> bool:
    """Check whether service names one of the proxied git services."""
    return service in SERVICES


def service_announcement(service: str) -> bytes:
    """Build the preamble of a smart ref advertisement.

    Args:
      service: Name of the git service, e.g. ``git-upload-pack``
    Returns: The ``# service=...`` pkt-line followed by a flush-pkt
    """
    return pkt_line(b"# service=" + service.encode("ascii") + b"\n") + FLUSH_PKT


def advertisement_content_type(service: str) -> str:
    return f"application/x-{service}-advertisement"


def result_content_type(service: str) -> str:
    return f"application/x-{service}-result"


def advertise_refs_args(service: str, path: str) -> list[str]:
    """Argument vector that advertises the refs of the repository at path."""
    return [service, "--stateless-rpc", "--advertise-refs", path]


def stateless_rpc_args(service: str, path: str) -> list[str]:
    """Argument vector for a single stateless RPC round trip."""
    return [service, "--stateless-rpc", path]
