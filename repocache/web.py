# web.py -- WSGI smart-http caching proxy
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

"""HTTP server that proxies the git smart HTTP protocol through local mirrors.

The first path components name the remote repository, so a client cloning
``http://proxy:8000/github.com/jelmer/dulwich`` gets served from a mirror of
``https://github.com/jelmer/dulwich``.
"""

__all__ = [
    "HTTP_ERROR",
    "HTTP_FORBIDDEN",
    "HTTP_NOT_FOUND",
    "HTTP_NOT_IMPLEMENTED",
    "HTTP_OK",
    "NO_CACHE_HEADERS",
    "ChunkReader",
    "GitCacheApplication",
    "GunzipFilter",
    "HTTPGitRequest",
    "LimitedInputFilter",
    "ServerHandlerLogger",
    "ThreadingWSGIServer",
    "WSGIRequestHandlerLogger",
    "WSGIServerLogger",
    "get_info_refs",
    "gzip_chunks",
    "handle_service_request",
    "make_server",
    "make_wsgi_chain",
    "send_output",
    "spool_request_body",
]

import logging
import socket
import tempfile
import zlib
from collections.abc import Callable, Iterable, Iterator, Sequence
from socketserver import ThreadingMixIn
from types import TracebackType
from typing import IO, Any, BinaryIO, Optional, Union, cast
from urllib.parse import parse_qs
from wsgiref import simple_server
from wsgiref.simple_server import ServerHandler, WSGIRequestHandler, WSGIServer

from . import log_utils
from .command import CHUNK_SIZE, CommandRunner, GitInvocation, GitProcess, run_command
from .config import DEFAULT_MAX_BODY_IN_MEMORY
from .errors import (
    InvalidRepositoryURL,
    MirrorError,
    ProcessSpawnError,
    RequestBodyReadError,
    UnrecognizedRoute,
    UnsupportedService,
)
from .mirror import MirrorCache
from .protocol import (
    MAX_PKT_DATA,
    SERVICES,
    advertise_refs_args,
    advertisement_content_type,
    is_valid_service,
    read_pkt_lines,
    result_content_type,
    service_announcement,
    stateless_rpc_args,
)
from .repo_identity import get_remote_repo_url

WSGIEnvironment = dict[str, Any]
StartResponse = Callable[..., Callable[[bytes], object]]
WSGIApplication = Callable[[WSGIEnvironment, StartResponse], Iterable[bytes]]

logger = log_utils.getLogger(__name__)


# HTTP error strings
HTTP_OK = "200 OK"
HTTP_FORBIDDEN = "403 Forbidden"
HTTP_NOT_FOUND = "404 Not Found"
HTTP_ERROR = "500 Internal Server Error"
HTTP_NOT_IMPLEMENTED = "501 Not Implemented"


NO_CACHE_HEADERS = [
    ("Expires", "Fri, 01 Jan 1980 00:00:00 GMT"),
    ("Pragma", "no-cache"),
    ("Cache-Control", "no-cache"),
]


def gzip_chunks(chunks: Iterable[bytes], level: int = 6) -> Iterator[bytes]:
    """Compress a stream of chunks into a single gzip member.

    Every input chunk is followed by a sync flush, so the client can
    decompress everything it received so far; git relies on that to show
    progress messages while a pack is still being produced.

    Args:
      chunks: Uncompressed data
      level: zlib compression level
    Returns: Iterator over compressed data, ending with the gzip trailer
    """
    compressor = zlib.compressobj(level, zlib.DEFLATED, 16 + zlib.MAX_WBITS)
    for chunk in chunks:
        data = compressor.compress(chunk) + compressor.flush(zlib.Z_SYNC_FLUSH)
        if data:
            yield data
    yield compressor.flush()


def send_output(
    process: GitProcess, prefix: bytes = b"", compress: bool = False
) -> Iterator[bytes]:
    """Copy the output of a git process to the response.

    The process is closed once the output is exhausted, or when the
    response is abandoned early. By then the status line has been sent, so
    a failing process can only be logged.

    Args:
      process: The running process
      prefix: Bytes to send before the process output
      compress: Whether to gzip the response body
    Returns: Iterator over the response body
    """

    def _raw() -> Iterator[bytes]:
        if prefix:
            yield prefix
        yield from process.iter_chunks()

    output: Iterator[bytes] = _raw()
    if compress:
        output = gzip_chunks(output)
    nbytes = 0
    try:
        for data in output:
            nbytes += len(data)
            yield data
    finally:
        returncode = process.close()
        if returncode != 0:
            logger.error(
                "%r exited with status %d after %d bytes were written",
                list(process.args),
                returncode,
                nbytes,
            )
        else:
            logger.info("Bytes written: %d", nbytes)


def _chunk_iter(f: BinaryIO) -> Iterator[bytes]:
    while True:
        line = f.readline()
        if not line:
            raise RequestBodyReadError("Truncated chunked request body")
        try:
            length = int(line.split(b";", 1)[0].strip(), 16)
        except ValueError as e:
            raise RequestBodyReadError(f"Invalid chunk size line {line!r}") from e
        chunk = f.read(length + 2)
        if length == 0:
            break
        yield chunk[:-2]


class ChunkReader:
    """Reader for chunked transfer encoding streams."""

    def __init__(self, f: BinaryIO) -> None:
        self._iter = _chunk_iter(f)
        self._buffer: list[bytes] = []

    def read(self, n: int = -1) -> bytes:
        """Read n bytes from the chunked stream.

        Args:
          n: Number of bytes to read, or -1 for everything
        Returns:
          Up to n bytes of data
        """
        while n < 0 or sum(map(len, self._buffer)) < n:
            try:
                self._buffer.append(next(self._iter))
            except StopIteration:
                break
        f = b"".join(self._buffer)
        if n < 0:
            n = len(f)
        ret = f[:n]
        self._buffer = [f[n:]]
        return ret


class _LengthLimitedFile:
    """Wrapper class to limit the length of reads from a file-like object.

    This is used to ensure EOF is read from the wsgi.input object once
    Content-Length bytes are read. This behavior is required by the WSGI spec
    but not implemented in wsgiref.
    """

    def __init__(self, input: BinaryIO, max_bytes: int) -> None:
        self._input = input
        self._bytes_avail = max_bytes

    def read(self, size: int = -1) -> bytes:
        if self._bytes_avail <= 0:
            return b""
        if size == -1 or size > self._bytes_avail:
            size = self._bytes_avail
        data = self._input.read(size)
        if not data:
            raise RequestBodyReadError(
                f"Request body ended {self._bytes_avail} bytes short of Content-Length"
            )
        self._bytes_avail -= len(data)
        return data


def spool_request_body(
    environ: WSGIEnvironment, max_in_memory: int = DEFAULT_MAX_BODY_IN_MEMORY
) -> IO[bytes]:
    """Read the complete request body.

    Bodies up to max_in_memory bytes are kept in memory, larger ones are
    written to a temporary file.

    Args:
      environ: The WSGI environment
      max_in_memory: Size at which the body is moved to disk
    Returns: File-like object positioned at the start of the body; the
      caller closes it
    Raises:
      RequestBodyReadError: if reading the body failed
    """
    read = environ["wsgi.input"].read
    body = tempfile.SpooledTemporaryFile(max_size=max_in_memory)
    try:
        while True:
            data = read(CHUNK_SIZE)
            if not data:
                break
            body.write(data)
        body.seek(0)
    except RequestBodyReadError:
        body.close()
        raise
    except (OSError, EOFError, zlib.error, ValueError) as e:
        body.close()
        raise RequestBodyReadError(f"Error reading request body: {e}") from e
    return body  # type: ignore[return-value]


def _log_first_command(body: IO[bytes]) -> None:
    """Log the command word of the first pkt-line of a spooled RPC body."""
    head = body.read(MAX_PKT_DATA + 4)
    body.seek(0)
    try:
        pkts, _ = read_pkt_lines(head)
    except ValueError:
        logger.debug("Request body does not start with a pkt-line")
        return
    for pkt in pkts:
        if pkt:
            command = pkt.split(b" ", 1)[0].rstrip(b"\n")
            logger.debug("First command: %s", command.decode("ascii", "replace"))
            return
    logger.debug("Request body holds no command")


class HTTPGitRequest:
    """Class encapsulating the state of a single git HTTP request.

    Attributes:
      environ: the WSGI environment for the request.
    """

    def __init__(self, environ: WSGIEnvironment, start_response: StartResponse) -> None:
        self.environ = environ
        self._start_response = start_response
        self._headers: list[tuple[str, str]] = []

    @property
    def path(self) -> str:
        return self.environ.get("PATH_INFO", "") or "/"

    @property
    def method(self) -> str:
        return self.environ["REQUEST_METHOD"]

    def query_param(self, name: str) -> Optional[str]:
        params = parse_qs(self.environ.get("QUERY_STRING", ""))
        return params.get(name, [None])[0]

    def accepts_gzip(self) -> bool:
        """Check whether the client accepts gzip encoded responses."""
        return "gzip" in self.environ.get("HTTP_ACCEPT_ENCODING", "")

    def add_header(self, name: str, value: str) -> None:
        """Add a header to the response."""
        self._headers.append((name, value))

    def respond(
        self,
        status: str = HTTP_OK,
        content_type: Optional[str] = None,
        headers: Optional[Sequence[tuple[str, str]]] = None,
    ) -> Callable[[bytes], object]:
        """Begin a response with the given status and other headers."""
        if headers:
            self._headers.extend(headers)
        if content_type:
            self._headers.append(("Content-Type", content_type))
        self._headers.extend(NO_CACHE_HEADERS)

        return self._start_response(status, self._headers)

    def _respond_text(self, status: str, message: str) -> bytes:
        self.respond(status, "text/plain")
        return message.encode("utf-8") + b"\n"

    def not_found(self, message: str) -> bytes:
        """Begin a HTTP 404 response and return the text of a message."""
        logger.info("Not found: %s", message)
        return self._respond_text(HTTP_NOT_FOUND, message)

    def forbidden(self, message: str) -> bytes:
        """Begin a HTTP 403 response and return the text of a message."""
        logger.info("Forbidden: %s", message)
        return self._respond_text(HTTP_FORBIDDEN, message)

    def not_implemented(self, message: str) -> bytes:
        """Begin a HTTP 501 response and return the text of a message."""
        logger.info("Not implemented: %s", message)
        return self._respond_text(HTTP_NOT_IMPLEMENTED, message)

    def error(self, message: str) -> bytes:
        """Begin a HTTP 500 response and return the text of a message."""
        logger.error("Error: %s", message)
        return self._respond_text(HTTP_ERROR, message)


def _ensure_local_mirror(req: HTTPGitRequest, app: "GitCacheApplication") -> str:
    remote_url = get_remote_repo_url(req.path)
    return app.mirror_cache.ensure_mirror(remote_url)


def get_info_refs(
    req: HTTPGitRequest, app: "GitCacheApplication", service: str
) -> Iterator[bytes]:
    """Send the smart ref advertisement of a mirrored repository.

    Args:
      req: The HTTP request object
      app: The application serving the request
      service: Name of the requested git service

    Returns:
      Iterator yielding the service announcement and git's advertisement
    """
    try:
        local_path = _ensure_local_mirror(req, app)
    except InvalidRepositoryURL as e:
        yield req.not_found(str(e))
        return
    except MirrorError as e:
        yield req.error(str(e))
        return
    try:
        process = app.start(GitInvocation(advertise_refs_args(service, local_path)))
    except ProcessSpawnError as e:
        yield req.error(str(e))
        return
    compress = req.accepts_gzip()
    req.respond(
        HTTP_OK,
        advertisement_content_type(service),
        [("Content-Encoding", "gzip")] if compress else None,
    )
    yield from send_output(process, service_announcement(service), compress)


def handle_service_request(
    req: HTTPGitRequest, app: "GitCacheApplication", service: str
) -> Iterator[bytes]:
    """Handle a git service request (upload-pack or receive-pack).

    Args:
      req: The HTTP request object
      app: The application serving the request
      service: Name of the requested git service

    Returns:
      Iterator yielding the service response as bytes
    """
    logger.info("Handling service request for %s", service)
    try:
        local_path = _ensure_local_mirror(req, app)
    except InvalidRepositoryURL as e:
        yield req.not_found(str(e))
        return
    except MirrorError as e:
        yield req.error(str(e))
        return
    try:
        body = spool_request_body(req.environ, app.max_body_in_memory)
    except RequestBodyReadError as e:
        yield req.error(str(e))
        return
    try:
        if logger.isEnabledFor(logging.DEBUG):
            _log_first_command(body)
        try:
            process = app.start(
                GitInvocation(stateless_rpc_args(service, local_path), input=body)
            )
        except ProcessSpawnError as e:
            yield req.error(str(e))
            return
        compress = req.accepts_gzip()
        req.respond(
            HTTP_OK,
            result_content_type(service),
            [("Content-Encoding", "gzip")] if compress else None,
        )
        yield from send_output(process, compress=compress)
    finally:
        body.close()


class GitCacheApplication:
    """WSGI application serving git smart HTTP requests from local mirrors.

    Attributes:
      mirror_cache: the MirrorCache holding the local mirrors
      max_body_in_memory: request body size at which bodies spill to disk
    """

    def __init__(
        self,
        mirror_cache: MirrorCache,
        runner: Optional[CommandRunner] = None,
        max_body_in_memory: int = DEFAULT_MAX_BODY_IN_MEMORY,
    ) -> None:
        self.mirror_cache = mirror_cache
        self.max_body_in_memory = max_body_in_memory
        self._runner: CommandRunner = runner if runner is not None else run_command

    def start(self, invocation: GitInvocation) -> GitProcess:
        """Start a git process whose output is streamed to the client."""
        return cast(GitProcess, self._runner(invocation, False))

    def route(
        self, req: HTTPGitRequest
    ) -> tuple[Callable[[HTTPGitRequest, "GitCacheApplication", str], Iterator[bytes]], str]:
        """Find the handler and git service for a request.

        Raises:
          UnsupportedService: for GET requests that name no proxied service
          UnrecognizedRoute: for other requests that match no endpoint
        """
        path = req.path
        if req.method == "GET":
            service = req.query_param("service")
            if path.endswith("/info/refs"):
                if not is_valid_service(service):
                    raise UnsupportedService(service)
                assert service is not None
                return get_info_refs, service
            if is_valid_service(service):
                assert service is not None
                return handle_service_request, service
            raise UnsupportedService(service)
        if req.method == "POST":
            for suffix_service in SERVICES:
                if path.endswith("/" + suffix_service):
                    service = req.query_param("service")
                    if not is_valid_service(service):
                        service = suffix_service
                    assert service is not None
                    return handle_service_request, service
        raise UnrecognizedRoute(req.method, path)

    def __call__(
        self,
        environ: WSGIEnvironment,
        start_response: StartResponse,
    ) -> Iterable[bytes]:
        """Handle WSGI request."""
        req = HTTPGitRequest(environ, start_response)
        query = environ.get("QUERY_STRING")
        logger.info("=> %s %s%s", req.method, req.path, f"?{query}" if query else "")
        try:
            handler, service = self.route(req)
        except UnsupportedService as e:
            return [req.forbidden(str(e))]
        except UnrecognizedRoute as e:
            return [req.not_implemented(str(e))]
        return handler(req, self, service)


class GunzipFilter:
    """WSGI middleware that unzips gzip-encoded requests before passing on to the underlying application."""

    def __init__(self, application: WSGIApplication) -> None:
        self.app = application

    def __call__(
        self,
        environ: WSGIEnvironment,
        start_response: StartResponse,
    ) -> Iterable[bytes]:
        import gzip

        if environ.get("HTTP_CONTENT_ENCODING", "") == "gzip":
            environ["wsgi.input"] = gzip.GzipFile(
                filename=None, fileobj=environ["wsgi.input"], mode="rb"
            )
            del environ["HTTP_CONTENT_ENCODING"]
            environ.pop("CONTENT_LENGTH", None)

        return self.app(environ, start_response)


class LimitedInputFilter:
    """WSGI middleware that makes wsgi.input end where the request body ends.

    The body is delimited by Content-Length, or by the terminating chunk of
    a chunked request. A request with neither has no body.
    """

    def __init__(self, application: WSGIApplication) -> None:
        self.app = application

    def __call__(
        self,
        environ: WSGIEnvironment,
        start_response: StartResponse,
    ) -> Iterable[bytes]:
        if environ.get("HTTP_TRANSFER_ENCODING", "").lower() == "chunked":
            environ["wsgi.input"] = ChunkReader(environ["wsgi.input"])
            del environ["HTTP_TRANSFER_ENCODING"]
        else:
            try:
                content_length = int(environ.get("CONTENT_LENGTH") or 0)
            except ValueError:
                content_length = 0
            environ["wsgi.input"] = _LengthLimitedFile(
                environ["wsgi.input"], content_length
            )
        return self.app(environ, start_response)


def make_wsgi_chain(
    mirror_cache: MirrorCache,
    runner: Optional[CommandRunner] = None,
    max_body_in_memory: int = DEFAULT_MAX_BODY_IN_MEMORY,
) -> WSGIApplication:
    """Factory function to create an instance of GitCacheApplication.

    Correctly wrapped with needed middleware.
    """
    app = GitCacheApplication(
        mirror_cache, runner=runner, max_body_in_memory=max_body_in_memory
    )
    wrapped_app = LimitedInputFilter(GunzipFilter(app))
    return wrapped_app


class ServerHandlerLogger(ServerHandler):
    """ServerHandler that uses repocache's logger for logging exceptions."""

    def log_exception(
        self,
        exc_info: Union[
            tuple[type[BaseException], BaseException, TracebackType],
            tuple[None, None, None],
            None,
        ],
    ) -> None:
        """Log exception using repocache logger."""
        logger.exception(
            "Exception happened during processing of request",
            exc_info=exc_info,
        )

    def log_message(self, format: str, *args: object) -> None:
        """Log message using repocache logger."""
        logger.info(format, *args)

    def log_error(self, *args: object) -> None:
        """Log error using repocache logger."""
        logger.error(*args)


class WSGIRequestHandlerLogger(WSGIRequestHandler):
    """WSGIRequestHandler that uses repocache's logger for logging exceptions."""

    def log_exception(
        self,
        exc_info: Union[
            tuple[type[BaseException], BaseException, TracebackType],
            tuple[None, None, None],
            None,
        ],
    ) -> None:
        """Log exception using repocache logger."""
        logger.exception(
            "Exception happened during processing of request",
            exc_info=exc_info,
        )

    def log_message(self, format: str, *args: object) -> None:
        """Log message using repocache logger."""
        logger.info(format, *args)

    def log_error(self, *args: object) -> None:
        """Log error using repocache logger."""
        logger.error(*args)

    def handle(self) -> None:
        """Handle a single HTTP request."""
        self.raw_requestline = self.rfile.readline()
        if not self.parse_request():  # An error code has been sent, just exit
            return

        handler = ServerHandlerLogger(
            self.rfile,
            self.wfile,  # type: ignore
            self.get_stderr(),
            self.get_environ(),
        )
        handler.request_handler = self  # type: ignore  # backpointer for logging
        handler.run(self.server.get_app())  # type: ignore


class WSGIServerLogger(WSGIServer):
    """WSGIServer that uses repocache's logger for error handling."""

    def handle_error(self, request: object, client_address: tuple[str, int]) -> None:
        """Handle an error."""
        logger.exception(
            f"Exception happened during processing of request from {client_address!s}"
        )


class ThreadingWSGIServer(ThreadingMixIn, WSGIServerLogger):
    """WSGIServer that handles every request in its own thread."""

    daemon_threads = True


class ThreadingWSGIServerV6(ThreadingWSGIServer):

    address_family = socket.AF_INET6


def make_server(
    host: str, port: int, app: WSGIApplication
) -> ThreadingWSGIServer:
    """Create a threaded HTTP server for a WSGI application.

    Args:
      host: Address to bind to; an IPv6 address selects an IPv6 socket
      port: TCP port to listen on, 0 for an ephemeral port
      app: The WSGI application to serve
    """
    server_class = ThreadingWSGIServerV6 if ":" in host else ThreadingWSGIServer
    return simple_server.make_server(
        host,
        port,
        app,
        server_class=server_class,
        handler_class=WSGIRequestHandlerLogger,
    )
