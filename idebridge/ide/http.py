"""HTTP message framing for the bridge endpoint.

Only the subset of HTTP/1.1 the bridge needs: a request line, ``Name: value``
headers, a blank line and a body sized by ``Content-Length``. Chunked
transfer encoding is not supported.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

HEADER_TERMINATOR = b"\r\n\r\n"

REQUEST_LINE = re.compile(rb"^(\S+) (\S+) HTTP/(\S+)$")
HEADER_LINE = re.compile(rb"^([A-Za-z0-9-]+):[ \t]*(.*?)[ \t]*$")

# Keys under which decode() reports the request line
REQUEST_LINE_KEYS = ("method", "url", "version")


def _parse_head(head: bytes) -> dict[str, Optional[str]]:
    """Parse the request line and header block (terminator excluded)."""
    lines = head.split(b"\r\n")
    headers: dict[str, Optional[str]] = {}

    for line in lines[1:]:
        match = HEADER_LINE.match(line)
        if match:
            # Last occurrence of a duplicate header wins
            headers[match.group(1).decode("latin-1").lower()] = match.group(2).decode("latin-1")

    # Set last so a header named "method" cannot spoof the request line
    request_line = REQUEST_LINE.match(lines[0])
    if request_line:
        method, url, version = (part.decode("latin-1") for part in request_line.groups())
    else:
        method = url = version = None
    headers["method"] = method
    headers["url"] = url
    headers["version"] = version
    return headers


def _content_length(headers: dict[str, Optional[str]]) -> Optional[int]:
    """Return the declared body length, 0 when absent, None when unusable."""
    raw = headers.get("content-length")
    if raw is None:
        return 0
    try:
        length = int(raw)
    except ValueError:
        return None
    return length if length >= 0 else None


def _split_message(
    buffer: bytes, header_end: int, headers: dict[str, Optional[str]]
) -> tuple[Optional[dict[str, Optional[str]]], Optional[bytes], bytes]:
    body_start = header_end + len(HEADER_TERMINATOR)
    length = _content_length(headers)

    if length is None:
        # Body size unknowable: report a malformed message, drop the head
        headers["method"] = None
        return headers, b"", buffer[body_start:]

    body_end = body_start + length
    if len(buffer) < body_end:
        return None, None, buffer

    return headers, buffer[body_start:body_end], buffer[body_end:]


def decode(
    buffer: bytes,
) -> tuple[Optional[dict[str, Optional[str]]], Optional[bytes], bytes]:
    """Extract one HTTP message from the front of ``buffer``.

    Header names are lower-cased. The request line is reported under the
    ``method``, ``url`` and ``version`` keys, which are ``None`` when the
    start line is malformed.

    Args:
        buffer: Bytes received so far

    Returns:
        ``(headers, body, remainder)`` for a complete message, or
        ``(None, None, buffer)`` when more bytes are needed. Never raises.
    """
    header_end = buffer.find(HEADER_TERMINATOR)
    if header_end < 0:
        return None, None, buffer
    return _split_message(buffer, header_end, _parse_head(buffer[:header_end]))


@dataclass
class HttpMessage:
    """A complete HTTP request as seen by a connection."""

    method: Optional[str]
    url: Optional[str]
    version: Optional[str]
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def is_malformed(self) -> bool:
        """True when the start line or framing could not be parsed."""
        return self.method is None or self.url is None

    @property
    def path(self) -> Optional[str]:
        """Request target without the query string."""
        if self.url is None:
            return None
        return self.url.split("?", 1)[0]

    @classmethod
    def from_headers(
        cls, headers: dict[str, Optional[str]], body: bytes
    ) -> "HttpMessage":
        """Build from the header mapping produced by ``decode``."""
        return cls(
            method=headers.get("method"),
            url=headers.get("url"),
            version=headers.get("version"),
            headers={
                k: v for k, v in headers.items()
                if k not in REQUEST_LINE_KEYS and v is not None
            },
            body=body,
        )


class HttpDecoder:
    """Incremental decoder that remembers how far it has scanned.

    ``decode`` searches the whole buffer on every call, which is quadratic
    for a sender that trickles bytes. This keeps the scan offset and the
    parsed head between calls so each byte is examined once.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._scanned = 0
        self._head: Optional[dict[str, Optional[str]]] = None
        self._header_end = -1

    @property
    def pending(self) -> bytes:
        """Bytes received but not yet returned as part of a message."""
        return bytes(self._buffer)

    def feed(self, data: bytes) -> Optional[HttpMessage]:
        """Append ``data`` and return the next complete message, if any."""
        self._buffer.extend(data)
        return self.next_message()

    def next_message(self) -> Optional[HttpMessage]:
        """Return the next complete message already buffered, if any."""
        if self._head is None:
            # Terminator may straddle the previous chunk boundary
            start = max(0, self._scanned - (len(HEADER_TERMINATOR) - 1))
            header_end = self._buffer.find(HEADER_TERMINATOR, start)
            if header_end < 0:
                self._scanned = len(self._buffer)
                return None
            self._header_end = header_end
            self._head = _parse_head(bytes(self._buffer[:header_end]))

        body_start = self._header_end + len(HEADER_TERMINATOR)
        length = _content_length(self._head)
        if length is None:
            self._head["method"] = None
            length = 0
        body_end = body_start + length
        if len(self._buffer) < body_end:
            return None

        message = HttpMessage.from_headers(
            self._head, bytes(self._buffer[body_start:body_end])
        )
        del self._buffer[:body_end]
        self._head = None
        self._header_end = -1
        self._scanned = 0
        return message
