# utils.py -- Utilities for running C git in compatibility tests
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

"""Utilities for interacting with cgit."""

import os
import shutil
import subprocess
from typing import Optional

from .. import SkipTest, TestCase

_DEFAULT_GIT = "git"


def git_version(git_path: str = _DEFAULT_GIT) -> Optional[tuple[int, ...]]:
    """Attempt to determine the version of git currently installed.

    Args:
      git_path: Path to the git executable; defaults to the version in
        the system path.
    Returns: A tuple of ints of the form (major, minor, point), or None if no
      git installation was found.
    """
    try:
        _, output = run_git(["--version"], git_path=git_path, capture_stdout=True)
    except OSError:
        return None
    version_prefix = b"git version "
    if not output.startswith(version_prefix):
        return None

    parts = output[len(version_prefix) :].split(b".")
    nums = []
    for part in parts[:3]:
        try:
            nums.append(int(part))
        except ValueError:
            break
    while len(nums) < 3:
        nums.append(0)
    return tuple(nums)


def require_git_version(
    required_version: tuple[int, ...], git_path: str = _DEFAULT_GIT
) -> None:
    """Require git version >= version, or skip the calling test."""
    found_version = git_version(git_path=git_path)
    if found_version is None:
        raise SkipTest(f"Test requires git >= {required_version}, but c git not found")
    if found_version < required_version:
        required = ".".join(map(str, required_version))
        found = ".".join(map(str, found_version))
        raise SkipTest(f"Test requires git >= {required}, found {found}")


def run_git(
    args: list[str],
    git_path: str = _DEFAULT_GIT,
    input: Optional[bytes] = None,
    capture_stdout: bool = False,
    **popen_kwargs,
) -> tuple[int, Optional[bytes]]:
    """Run a git command.

    Input is piped from the input parameter and output is sent to the standard
    streams, unless capture_stdout is set.

    Args:
      args: A list of args to the git command.
      git_path: Path to to the git executable.
      input: Input data to be sent to stdin.
      capture_stdout: Whether to capture and return stdout.
      popen_kwargs: Additional kwargs for subprocess.Popen;
        stdin/stdout args are ignored.
    Returns: A tuple of (returncode, stdout contents). If capture_stdout is
      False, None will be returned as stdout contents.
    Raises:
      OSError: if the git executable was not found.
    """
    env = popen_kwargs.pop("env", {})
    env["LC_ALL"] = env["LANG"] = "C"
    env["PATH"] = os.getenv("PATH", "")
    env["GIT_CONFIG_NOSYSTEM"] = "1"

    args = [git_path, *args]
    popen_kwargs["stdin"] = subprocess.PIPE
    if capture_stdout:
        popen_kwargs["stdout"] = subprocess.PIPE
    else:
        popen_kwargs.pop("stdout", None)
    p = subprocess.Popen(args, env=env, **popen_kwargs)
    stdout, stderr = p.communicate(input=input)
    return (p.returncode, stdout)


def run_git_or_fail(
    args: list[str], git_path: str = _DEFAULT_GIT, input: Optional[bytes] = None, **popen_kwargs
) -> bytes:
    """Run a git command, capture stdout/stderr, and fail if git fails."""
    if "stderr" not in popen_kwargs:
        popen_kwargs["stderr"] = subprocess.STDOUT
    returncode, stdout = run_git(
        args, git_path=git_path, input=input, capture_stdout=True, **popen_kwargs
    )
    if returncode != 0:
        raise AssertionError(
            f"git with args {args!r} failed with {returncode}: {stdout!r}"
        )
    assert stdout is not None
    return stdout


def make_source_repo(path: str) -> bytes:
    """Create a bare repository with a single commit.

    Args:
      path: Where to create the bare repository
    Returns: The SHA of the commit on master
    """
    work = path + ".work"
    run_git_or_fail(["init", "--quiet", "--initial-branch=master", work])
    with open(os.path.join(work, "README"), "w") as f:
        f.write("mirrored through repocache\n")
    run_git_or_fail(["add", "README"], cwd=work)
    run_git_or_fail(
        [
            "-c",
            "user.name=Test User",
            "-c",
            "user.email=test@example.com",
            "commit",
            "--quiet",
            "-m",
            "Initial commit",
        ],
        cwd=work,
    )
    run_git_or_fail(["clone", "--quiet", "--bare", work, path])
    shutil.rmtree(work)
    return run_git_or_fail(["rev-parse", "HEAD"], cwd=path).strip()


class CompatTestCase(TestCase):
    """Test case that requires git for compatibility checks.

    Subclasses can change the git version required by overriding
    min_git_version.
    """

    # GIT_CONFIG_COUNT, used to point https URLs at local repositories.
    min_git_version: tuple[int, ...] = (2, 31, 0)

    def setUp(self) -> None:
        super().setUp()
        require_git_version(self.min_git_version)

    def redirect_remote(self, url_prefix: str, local_prefix: str) -> None:
        """Make every git process started by this test fetch url_prefix from disk."""
        self.overrideEnv("GIT_CONFIG_COUNT", "1")
        self.overrideEnv("GIT_CONFIG_KEY_0", f"url.{local_prefix}.insteadOf")
        self.overrideEnv("GIT_CONFIG_VALUE_0", url_prefix)
