"""Socket helpers shared by server tests."""

import asyncio


class FakeTransport:
    """Records what a connection writes instead of touching a socket."""

    def __init__(self):
        self.written = bytearray()
        self.closed = False

    def write(self, data: bytes) -> None:
        assert not self.closed, "write after close"
        self.written.extend(data)

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True

    def get_extra_info(self, name, default=None):
        if name == "peername":
            return ("127.0.0.1", 50000)
        return default


async def open_stream(port: int, path: str = "/mcp"):
    """Open a GET stream and return (reader, writer, response head)."""
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(f"GET {path} HTTP/1.1\r\nHost: 127.0.0.1\r\n\r\n".encode())
    await writer.drain()
    head = await asyncio.wait_for(reader.readuntil(b"\r\n\r\n"), timeout=2)
    return reader, writer, head


def post_bytes(body: bytes, path: str = "/mcp") -> bytes:
    """Raw bytes of a POST request carrying ``body``."""
    return (
        f"POST {path} HTTP/1.1\r\nHost: 127.0.0.1\r\n"
        f"Content-Length: {len(body)}\r\n\r\n".encode() + body
    )


async def post(port: int, body: bytes, path: str = "/mcp") -> bytes:
    """POST ``body`` and return everything received until the server closes."""
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    writer.write(post_bytes(body, path))
    await writer.drain()
    try:
        return await asyncio.wait_for(reader.read(), timeout=2)
    finally:
        writer.close()


async def read_frame(reader: asyncio.StreamReader, timeout: float = 2) -> bytes:
    """Read one SSE frame (up to and including the blank line)."""
    return await asyncio.wait_for(reader.readuntil(b"\n\n"), timeout=timeout)
