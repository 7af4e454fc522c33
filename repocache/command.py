# command.py -- Run git subprocesses
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

"""Run git executables with optional input and streamed output.

Payload bytes never go to the log: pack data can be large and binary, so
only argument vectors are logged.
"""

__all__ = [
    "CHUNK_SIZE",
    "CommandRunner",
    "GitInvocation",
    "GitProcess",
    "find_git_command",
    "run_and_get_output",
    "run_command",
]

import subprocess
import threading
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from io import BytesIO
from typing import IO, BinaryIO, Callable, Optional, Union

from . import log_utils
from .errors import ProcessExitError, ProcessSpawnError

logger = log_utils.getLogger(__name__)

CHUNK_SIZE = 65536


def find_git_command() -> list[str]:
    """Find command to run for system Git."""
    return ["git"]


@dataclass(frozen=True)
class GitInvocation:
    """A command line plus the stream to feed to its standard input.

    Attributes:
      args: Argument vector, executable first
      input: Binary file-like object read until EOF into stdin, or None
    """

    args: Sequence[str]
    input: Optional[IO[bytes]] = None

    def __post_init__(self) -> None:
        if not self.args:
            raise ValueError("empty argument vector")
        object.__setattr__(self, "args", tuple(self.args))


def _copy_to_stdin(source: IO[bytes], stdin: IO[bytes]) -> None:
    try:
        while True:
            data = source.read(CHUNK_SIZE)
            if not data:
                break
            stdin.write(data)
    except BrokenPipeError:
        # The process exited without reading all of its input; its exit
        # status tells the rest of the story.
        logger.debug("Process closed stdin before input was consumed")
    except OSError as e:
        logger.warning("Error writing process input: %s", e)
    finally:
        try:
            stdin.close()
        except OSError:
            pass


class GitProcess:
    """A running git process whose standard output is read by the caller.

    The caller drains the output with read() or iter_chunks() and then
    calls close(), or uses the object as a context manager.
    """

    def __init__(
        self,
        proc: "subprocess.Popen[bytes]",
        args: Sequence[str],
        feeder: Optional[threading.Thread] = None,
    ) -> None:
        assert proc.stdout is not None
        self.proc = proc
        self.args = tuple(args)
        self.stdout: IO[bytes] = proc.stdout
        self._feeder = feeder

    def read(self, size: int = -1) -> bytes:
        """Read up to size bytes of output; all remaining output if -1."""
        return self.stdout.read(size)

    def iter_chunks(self, size: int = CHUNK_SIZE) -> Iterator[bytes]:
        """Iterate over the output in chunks of at most size bytes."""
        while True:
            data = self.stdout.read(size)
            if not data:
                return
            yield data

    @property
    def returncode(self) -> Optional[int]:
        return self.proc.returncode

    def close(self, timeout: Optional[float] = 60) -> int:
        """Close the output pipe and wait for the process to terminate.

        Closing the pipe early makes a process that is still writing exit
        with SIGPIPE.

        Args:
          timeout: Maximum time to wait for the process, in seconds
        Returns: The exit status of the process
        """
        try:
            self.stdout.close()
        except OSError:
            pass
        try:
            returncode = self.proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(
                "%r did not terminate within %s seconds; killing it", self.args, timeout
            )
            self.proc.kill()
            returncode = self.proc.wait()
        if self._feeder is not None:
            self._feeder.join()
        return returncode

    def __enter__(self) -> "GitProcess":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


CommandRunner = Callable[[GitInvocation, bool], Union[GitProcess, BinaryIO]]


def run_command(invocation: GitInvocation, wait: bool = False) -> Union[GitProcess, BinaryIO]:
    """Start the process described by an invocation.

    Args:
      invocation: The command to run
      wait: Whether to block until the process exits
    Returns: A GitProcess streaming the live output if wait is False,
      otherwise a file-like object holding the complete output
    Raises:
      ProcessSpawnError: if the process or its output pipe can not be
        created
      ProcessExitError: if wait is True and the process exits with a
        non-zero status
    """
    args = list(invocation.args)
    logger.info("Executing: %r", args)
    if invocation.input is None:
        stdin: Union[int, None] = subprocess.DEVNULL
    else:
        stdin = subprocess.PIPE
    try:
        proc = subprocess.Popen(
            args,
            stdin=stdin,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE if wait else None,
        )
    except OSError as e:
        raise ProcessSpawnError(args, str(e)) from e
    if proc.stdout is None:
        proc.kill()
        proc.wait()
        raise ProcessSpawnError(args, "no stdout pipe")

    if wait:
        if invocation.input is not None:
            input_data: Optional[bytes] = invocation.input.read()
        else:
            input_data = None
        stdout, stderr = proc.communicate(input_data)
        if proc.returncode != 0:
            raise ProcessExitError(args, proc.returncode, stderr)
        if stderr:
            logger.debug("%s: %s", args[0], stderr.decode("utf-8", "replace").rstrip())
        return BytesIO(stdout)

    feeder = None
    if invocation.input is not None:
        assert proc.stdin is not None
        feeder = threading.Thread(
            target=_copy_to_stdin, args=(invocation.input, proc.stdin), daemon=True
        )
        feeder.start()
    return GitProcess(proc, args, feeder)


def run_and_get_output(
    invocation: GitInvocation, runner: Optional[CommandRunner] = None
) -> bytes:
    """Run a command to completion and return its standard output."""
    if runner is None:
        runner = run_command
    return runner(invocation, True).read()
