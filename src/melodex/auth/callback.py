# Callback server - accepts the single browser redirect on the loopback listener.
# Created: 2026-10-04
#
# Only the HTTP request line is read; headers and body are ignored. The
# listener is polled in short steps so that a concurrent release() (cancel)
# or the overall deadline can interrupt the wait.

from __future__ import annotations

import asyncio
import logging
import socket
import urllib.parse
from dataclasses import dataclass

from melodex.auth.errors import (
    AuthorizationDeniedError,
    CallbackCancelledError,
    CallbackTimedOutError,
    MalformedRequestError,
    MissingCodeError,
    StateMismatchError,
)
from melodex.auth.listener import BoundListener

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1
MAX_REQUEST_LINE = 8192
REQUEST_LINE_TIMEOUT = 10.0

_SUCCESS_PAGE = (
    "<html><head><meta charset=\"utf-8\"><title>melodex</title></head><body>"
    "<h3>Authorization received. You can close this tab and return to melodex.</h3>"
    "<script>window.close()</script>"
    "</body></html>"
)
_BAD_REQUEST_PAGE = "<html><body><h3>Bad request.</h3></body></html>"


@dataclass(frozen=True)
class RedirectRequest:
    """The request-target of the browser redirect, plus where it was received."""

    target: str  # path + query, e.g. "/callback?code=...&state=..."
    host: str
    port: int

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}{self.target}"

    @property
    def path(self) -> str:
        return urllib.parse.urlsplit(self.target).path

    @property
    def params(self) -> dict[str, str]:
        query = urllib.parse.urlsplit(self.target).query
        return dict(urllib.parse.parse_qsl(query, keep_blank_values=True))

    def authorization_code(self, expected_state: str | None) -> str:
        """Extract the code, checking the provider's error and the anti-forgery state.

        Raises:
            AuthorizationDeniedError: the provider redirected with ``error=``.
            StateMismatchError: ``state`` differs from ``expected_state``.
            MissingCodeError: no ``code`` parameter.
        """
        params = self.params
        if "error" in params:
            raise AuthorizationDeniedError(params["error"], params.get("error_description", ""))
        if expected_state is not None and params.get("state") != expected_state:
            raise StateMismatchError()
        code = params.get("code")
        if not code:
            raise MissingCodeError()
        return code


def parse_request_line(line: bytes) -> str:
    """Return the request-target of an HTTP request line.

    Raises:
        MalformedRequestError: empty, undecodable or not ``METHOD TARGET HTTP/x``.
    """
    try:
        text = line.decode("ascii").strip()
    except UnicodeDecodeError as e:
        raise MalformedRequestError("Callback request line is not ASCII") from e
    if not text:
        raise MalformedRequestError("Callback connection sent an empty request")

    parts = text.split()
    if len(parts) != 3 or not parts[2].startswith("HTTP/"):
        raise MalformedRequestError(f"Malformed callback request line: {text[:100]!r}")
    target = parts[1]
    if not target.startswith("/"):
        raise MalformedRequestError(f"Unexpected callback request target: {target[:100]!r}")
    return target


def _http_response(status: str, body: str) -> bytes:
    payload = body.encode("utf-8")
    head = (
        f"HTTP/1.1 {status}\r\n"
        "Content-Type: text/html; charset=utf-8\r\n"
        f"Content-Length: {len(payload)}\r\n"
        "Connection: close\r\n"
        "\r\n"
    )
    return head.encode("ascii") + payload


async def _handle_connection(conn: socket.socket, listener: BoundListener) -> RedirectRequest:
    conn.setblocking(False)
    reader, writer = await asyncio.open_connection(sock=conn, limit=MAX_REQUEST_LINE)
    try:
        try:
            line = await asyncio.wait_for(reader.readline(), timeout=REQUEST_LINE_TIMEOUT)
        except TimeoutError as e:
            raise MalformedRequestError("No request line received on the callback connection") from e
        except (ValueError, asyncio.LimitOverrunError) as e:
            raise MalformedRequestError(
                f"Callback request line exceeds {MAX_REQUEST_LINE} bytes"
            ) from e

        try:
            target = parse_request_line(line)
        except MalformedRequestError:
            writer.write(_http_response("400 Bad Request", _BAD_REQUEST_PAGE))
            raise

        writer.write(_http_response("200 OK", _SUCCESS_PAGE))
        return RedirectRequest(target=target, host=listener.host, port=listener.port)
    finally:
        try:
            await writer.drain()
            writer.close()
            await writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("Callback connection closed uncleanly: %s", e)


async def accept_once(
    listener: BoundListener,
    timeout: float,
    poll_interval: float = POLL_INTERVAL,
) -> RedirectRequest:
    """Wait for one browser redirect on ``listener``.

    Args:
        listener: The bound loopback listener.
        timeout: Overall budget in seconds for a connection to arrive.
        poll_interval: Sleep between accept attempts.

    Raises:
        CallbackTimedOutError: nothing connected within ``timeout``.
        CallbackCancelledError: the listener was released while waiting.
        MalformedRequestError: the connection did not send a usable request line.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    while True:
        if listener.closed:
            raise CallbackCancelledError()
        try:
            conn = listener.accept_nowait()
        except OSError as e:
            if listener.closed:
                raise CallbackCancelledError() from e
            raise MalformedRequestError(f"Accepting the callback connection failed: {e}") from e

        if conn is not None:
            logger.debug("Callback connection accepted on port %d", listener.port)
            return await _handle_connection(conn, listener)

        remaining = deadline - loop.time()
        if remaining <= 0:
            raise CallbackTimedOutError(timeout)
        await asyncio.sleep(min(poll_interval, remaining))
