"""Public front socket of the proxy.

The listener reads each request head on a connection and routes that
request on its own:

- an HTTP upgrade (WebSocket) is replayed onto a fresh gateway connection
  and the two sockets are spliced byte for byte in both directions until
  either side closes;
- anything else is sent, with ``Connection: close``, over a fresh
  connection to the internal control app, which answers control endpoints
  itself and forwards the rest to the gateway.  The response is relayed
  back and the client connection stays open for its next request when
  both the client and the response framing allow it.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable

from loguru import logger

HEAD_TERMINATOR = b"\r\n\r\n"
MAX_HEAD_BYTES = 64 * 1024
CHUNK_SIZE = 64 * 1024
HOP_HEADERS = (b"connection", b"keep-alive")


def parse_head_headers(head: bytes) -> dict[str, str]:
    """Header fields of a raw request head, names lowercased.  Repeated fields are comma-joined."""
    headers: dict[str, str] = {}
    for line in head.decode("latin-1").split("\r\n")[1:]:
        name, sep, value = line.partition(":")
        if not sep:
            continue
        key = name.strip().lower()
        value = value.strip()
        headers[key] = f"{headers[key]}, {value}" if key in headers else value
    return headers


def _tokens(value: str) -> set[str]:
    return {token.strip().lower() for token in value.split(",")}


def is_upgrade_request(head: bytes) -> bool:
    headers = parse_head_headers(head)
    return "upgrade" in _tokens(headers.get("connection", "")) and bool(headers.get("upgrade"))


def wants_keep_alive(head: bytes) -> bool:
    """Whether the client expects to reuse the connection after this request."""
    request_line = head.split(b"\r\n", 1)[0]
    tokens = _tokens(parse_head_headers(head).get("connection", ""))
    if "close" in tokens:
        return False
    if request_line.endswith(b"HTTP/1.0"):
        return "keep-alive" in tokens
    return True


def request_body_length(head: bytes) -> int | None:
    """Size of the body following *head*; ``None`` for a chunked body.

    Raises ``ValueError`` for a malformed ``Content-Length``.
    """
    headers = parse_head_headers(head)
    if "chunked" in _tokens(headers.get("transfer-encoding", "")):
        return None
    raw = headers.get("content-length")
    if raw is None:
        return 0
    length = int(raw)
    if length < 0:
        msg = f"Negative Content-Length: {raw}"
        raise ValueError(msg)
    return length


def set_connection(head: bytes, value: str) -> bytes:
    """Replace the hop-by-hop ``Connection``/``Keep-Alive`` fields of *head* with ``Connection: value``."""
    lines = head[: -len(HEAD_TERMINATOR)].split(b"\r\n")
    kept = [lines[0]]
    kept.extend(line for line in lines[1:] if line.partition(b":")[0].strip().lower() not in HOP_HEADERS)
    kept.append(f"Connection: {value}".encode("latin-1"))
    return b"\r\n".join(kept) + HEAD_TERMINATOR


def _status_code(head: bytes) -> int:
    """Status code of a raw response head; raises ``ValueError`` if there is none."""
    parts = head.split(b" ", 2)
    if len(parts) < 2:
        msg = f"Malformed status line: {head[:64]!r}"
        raise ValueError(msg)
    return int(parts[1])


def _is_framed(head: bytes, status_code: int, *, bodyless: bool) -> bool:
    """Whether the client can find the end of this response without the connection closing."""
    if bodyless or status_code in (204, 304):
        return True
    headers = parse_head_headers(head)
    return "content-length" in headers or "chunked" in _tokens(headers.get("transfer-encoding", ""))


def error_bytes(status_code: int, reason: str, message: str) -> bytes:
    """A complete ``Connection: close`` HTTP/1.1 response with a JSON error body."""
    body = json.dumps({"error": message}).encode()
    head = (
        f"HTTP/1.1 {status_code} {reason}\r\n"
        "Content-Type: application/json\r\n"
        f"Content-Length: {len(body)}\r\n"
        "Access-Control-Allow-Origin: *\r\n"
        "Connection: close\r\n\r\n"
    )
    return head.encode("latin-1") + body


async def _pipe(reader: asyncio.StreamReader, writer: asyncio.StreamWriter, *, half_close: bool = True) -> None:
    try:
        while chunk := await reader.read(CHUNK_SIZE):
            writer.write(chunk)
            await writer.drain()
    except ConnectionError as exc:
        logger.debug("Splice ended: {}", exc)
    finally:
        if half_close and not writer.is_closing() and writer.can_write_eof():
            try:
                writer.write_eof()
            except OSError as exc:
                logger.debug("Half-close failed: {}", exc)


async def _copy_exactly(reader: asyncio.StreamReader, writer: asyncio.StreamWriter, size: int) -> None:
    while size:
        chunk = await reader.read(min(CHUNK_SIZE, size))
        if not chunk:
            raise asyncio.IncompleteReadError(b"", size)
        writer.write(chunk)
        await writer.drain()
        size -= len(chunk)


async def _copy_chunked(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
    while True:
        line = await reader.readuntil(b"\r\n")
        writer.write(line)
        size = int(line.split(b";", 1)[0].strip(), 16)
        if size == 0:
            break
        await _copy_exactly(reader, writer, size + 2)
    # Trailer section, ended by an empty line.
    while True:
        line = await reader.readuntil(b"\r\n")
        writer.write(line)
        if line == b"\r\n":
            break
    await writer.drain()


async def _copy_body(reader: asyncio.StreamReader, writer: asyncio.StreamWriter, length: int | None) -> bool:
    """Copy one request body; False if it could not be copied whole."""
    try:
        if length is None:
            await _copy_chunked(reader, writer)
        else:
            await _copy_exactly(reader, writer, length)
    except (asyncio.IncompleteReadError, asyncio.LimitOverrunError, ValueError, ConnectionError) as exc:
        logger.debug("Request body copy ended early: {}", exc)
        return False
    return True


async def _close(writer: asyncio.StreamWriter) -> None:
    writer.close()
    try:
        await writer.wait_closed()
    except (ConnectionError, OSError) as exc:
        logger.debug("Close failed: {}", exc)


async def _relay_response(
    upstream: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    *,
    keep_alive: bool,
    bodyless: bool,
) -> bool:
    """Relay the control app's response to one request.

    The control connection carries ``Connection: close``, so the body ends
    at upstream EOF.  Returns True if the client connection can be reused.
    """
    while True:
        try:
            head = await upstream.readuntil(HEAD_TERMINATOR)
            status_code = _status_code(head)
        except (asyncio.IncompleteReadError, asyncio.LimitOverrunError, ValueError) as exc:
            logger.warning("Proxy: control app sent no usable response: {}", exc)
            writer.write(error_bytes(502, "Bad Gateway", "Backend unavailable"))
            await writer.drain()
            return False
        if not 100 <= status_code < 200:
            break
        # Interim response (e.g. 100 Continue); the final one follows.
        writer.write(head)
        await writer.drain()

    reusable = keep_alive and _is_framed(head, status_code, bodyless=bodyless)
    writer.write(set_connection(head, "keep-alive" if reusable else "close"))
    await writer.drain()
    await _pipe(upstream, writer, half_close=False)
    return reusable


class ProxyListener:
    """Accepts public connections on ``host:port`` and routes each request.

    *get_backend_port* is read per upgrade so a port change in the durable
    config applies without a restart.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        control_port: int,
        get_backend_port: Callable[[], int],
    ) -> None:
        self.host = host
        self.port = port
        self.control_port = control_port
        self._get_backend_port = get_backend_port
        self._server: asyncio.Server | None = None
        self._writers: set[asyncio.StreamWriter] = set()

    @property
    def listening(self) -> bool:
        return self._server is not None

    async def start(self) -> None:
        """Bind and start accepting; raises ``OSError`` if the port is taken.

        With ``port=0`` the OS picks a free port and ``self.port`` is updated to it.
        """
        self._server = await asyncio.start_server(
            self._handle,
            self.host,
            self.port,
            limit=MAX_HEAD_BYTES,
            reuse_address=True,
        )
        self.port = self._server.sockets[0].getsockname()[1]
        logger.info("Proxy listening on {}:{}", self.host, self.port)

    async def close(self) -> None:
        """Stop accepting and drop every open connection."""
        server = self._server
        self._server = None
        if server is None:
            return
        server.close()
        for writer in list(self._writers):
            writer.close()
        await server.wait_closed()
        logger.info("Proxy on port {} closed", self.port)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.add(writer)
        try:
            await self._route(reader, writer)
        except ConnectionError as exc:
            logger.debug("Proxy: client connection dropped: {}", exc)
        finally:
            self._writers.discard(writer)
            await _close(writer)

    async def _route(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        while True:
            try:
                head = await reader.readuntil(HEAD_TERMINATOR)
            except asyncio.IncompleteReadError:
                return
            except asyncio.LimitOverrunError:
                writer.write(error_bytes(431, "Request Header Fields Too Large", "Request head too large"))
                await writer.drain()
                return

            if is_upgrade_request(head):
                # The connection belongs to the gateway from here on.
                await self._splice_upgrade(head, reader, writer)
                return
            if not await self._exchange(head, reader, writer):
                return

    async def _connect(
        self,
        port: int,
        label: str,
        writer: asyncio.StreamWriter,
    ) -> tuple[asyncio.StreamReader, asyncio.StreamWriter] | None:
        """Open an upstream connection, or answer the client with a 502 and return None."""
        try:
            upstream = await asyncio.open_connection("127.0.0.1", port, limit=MAX_HEAD_BYTES)
        except OSError as exc:
            logger.warning("Proxy: {} on port {} unreachable: {}", label, port, exc)
            writer.write(error_bytes(502, "Bad Gateway", "Backend unavailable"))
            await writer.drain()
            return None
        self._writers.add(upstream[1])
        return upstream

    async def _release(self, upstream_writer: asyncio.StreamWriter) -> None:
        self._writers.discard(upstream_writer)
        await _close(upstream_writer)

    async def _splice_upgrade(self, head: bytes, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        upstream = await self._connect(self._get_backend_port(), "gateway", writer)
        if upstream is None:
            return
        upstream_reader, upstream_writer = upstream
        try:
            upstream_writer.write(head)
            await upstream_writer.drain()
            await asyncio.gather(_pipe(reader, upstream_writer), _pipe(upstream_reader, writer))
        finally:
            await self._release(upstream_writer)

    async def _exchange(self, head: bytes, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> bool:
        """Send one plain request over a fresh control connection and relay the response.

        Returns True if the client connection can carry another request.
        """
        try:
            length = request_body_length(head)
        except ValueError as exc:
            logger.debug("Proxy: rejecting request: {}", exc)
            writer.write(error_bytes(400, "Bad Request", "Invalid request"))
            await writer.drain()
            return False

        upstream = await self._connect(self.control_port, "control", writer)
        if upstream is None:
            return False
        upstream_reader, upstream_writer = upstream

        upstream_writer.write(set_connection(head, "close"))
        body = asyncio.create_task(_copy_body(reader, upstream_writer, length))
        try:
            reusable = await _relay_response(
                upstream_reader,
                writer,
                keep_alive=wants_keep_alive(head),
                bodyless=head.startswith(b"HEAD "),
            )
        finally:
            # A response sent before the whole body was read leaves the rest
            # of the body unread on the client connection.
            body_sent = body.done() and body.result()
            if not body.done():
                body.cancel()
                await asyncio.wait([body])
            await self._release(upstream_writer)
        return reusable and body_sent
