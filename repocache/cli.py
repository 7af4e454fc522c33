# cli.py -- Command line interface for repocache
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

"""Command line interface for repocache.

Settings come from the environment (optionally seeded from a ``.env``
file), and command line options override them. See repocache.config for
the recognized variables.
"""

__all__ = [
    "Command",
    "cmd_fetch",
    "cmd_mirror",
    "cmd_serve",
    "commands",
    "main",
]

import argparse
import logging
import signal
import sys
import types
from collections.abc import Sequence
from typing import Optional

from . import log_utils
from .config import Config, load_dotenv_file
from .errors import ConfigError, RepoCacheError
from .mirror import MirrorCache, is_mirror
from .repo_identity import get_remote_repo_url

logger = logging.getLogger(__name__)


def signal_int(signal: int, frame: Optional[types.FrameType]) -> None:
    """Handle interrupt signal by exiting."""
    sys.exit(1)


class Command:
    """A repocache subcommand."""

    def __init__(self, config: Optional[Config] = None) -> None:
        if config is None:
            config = Config.from_environ()
        self.config = config

    def mirror_cache(self) -> MirrorCache:
        return MirrorCache(self.config.cached_repo_dir, git_command=self.config.git_command)

    def run(self, args: Sequence[str]) -> Optional[int]:
        """Run the command."""
        raise NotImplementedError(self.run)


class cmd_serve(Command):
    """Run the caching smart HTTP proxy."""

    def run(self, args: Sequence[str]) -> Optional[int]:
        from .config import parse_server_address
        from .web import make_server, make_wsgi_chain

        host, port = parse_server_address(self.config.server_address)
        parser = argparse.ArgumentParser(prog="repocache serve")
        parser.add_argument(
            "-l",
            "--listen_address",
            default=host,
            help="Binding IP address.",
        )
        parser.add_argument(
            "-p",
            "--port",
            type=int,
            default=port,
            help="Binding TCP port.",
        )
        parser.add_argument(
            "--cache-dir",
            default=self.config.cached_repo_dir,
            help="Directory holding the mirrored repositories.",
        )
        parsed_args = parser.parse_args(args)

        self.config = self.config.with_overrides(cached_repo_dir=parsed_args.cache_dir)
        app = make_wsgi_chain(
            self.mirror_cache(),
            max_body_in_memory=self.config.max_body_in_memory,
        )
        server = make_server(parsed_args.listen_address, parsed_args.port, app)
        logger.info(
            "Listening for HTTP connections on %s:%d, caching into %s",
            parsed_args.listen_address,
            server.server_port,
            self.config.cached_repo_dir,
        )
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            pass
        finally:
            server.server_close()
        return 0


class cmd_mirror(Command):
    """Mirror a remote repository into the cache unless already present."""

    def run(self, args: Sequence[str]) -> Optional[int]:
        parser = argparse.ArgumentParser(prog="repocache mirror")
        parser.add_argument("url", help="Remote repository, e.g. github.com/jelmer/dulwich")
        parsed_args = parser.parse_args(args)
        remote_url = get_remote_repo_url(parsed_args.url)
        local_path = self.mirror_cache().ensure_mirror(remote_url)
        print(local_path)
        return 0


class cmd_fetch(Command):
    """Update an existing mirror from its origin."""

    def run(self, args: Sequence[str]) -> Optional[int]:
        parser = argparse.ArgumentParser(prog="repocache fetch")
        parser.add_argument("url", help="Remote repository, e.g. github.com/jelmer/dulwich")
        parsed_args = parser.parse_args(args)
        remote_url = get_remote_repo_url(parsed_args.url)
        cache = self.mirror_cache()
        local_path = cache.find_local_repo_path(remote_url)
        if not is_mirror(local_path):
            logger.error("%s has not been mirrored yet", remote_url)
            return 1
        cache.fetch(local_path)
        logger.info("Updated %s", local_path)
        return 0


commands: dict[str, type[Command]] = {
    "fetch": cmd_fetch,
    "mirror": cmd_mirror,
    "serve": cmd_serve,
}


def main(argv: Optional[Sequence[str]] = None) -> Optional[int]:
    """Main entry point for the repocache CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code or None
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(
        prog="repocache",
        description="Caching proxy for the git smart HTTP protocol",
    )
    parser.add_argument(
        "--env-file",
        help="Read environment variables from this file instead of ./.env",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        help=f"Command to run. Available: {', '.join(sorted(commands.keys()))}",
    )
    global_args, remaining = parser.parse_known_args(argv)

    try:
        cmd_kls = commands[global_args.command]
    except KeyError:
        parser.print_help()
        return 1

    try:
        load_dotenv_file(global_args.env_file)
    except ConfigError as e:
        log_utils.default_logging_config()
        logger.error("%s", e)
        return 1
    log_utils.default_logging_config()

    try:
        return cmd_kls().run(remaining)
    except RepoCacheError as e:
        logger.error("%s", e)
        return 1


def _main() -> None:
    signal.signal(signal.SIGINT, signal_int)

    sys.exit(main())


if __name__ == "__main__":
    _main()
