"""A UDP echo service that reverses payloads, used by the network tests."""

from __future__ import annotations

import socket
import threading
from typing import Optional

DEFAULT_PORT = 21572
_BUFFER_SIZE = 257


class EchoService:
    """Listen on UDP and reply to each message with its payload reversed.

    Messages are a one-byte payload length followed by the payload.
    """

    def __init__(self, sock: socket.socket) -> None:
        self._socket = sock
        self._stop_requested = threading.Event()
        self.port: int = sock.getsockname()[1]
        self._thread: Optional[threading.Thread] = threading.Thread(
            target=self._serve, daemon=True
        )
        self._thread.start()

    @classmethod
    def start(cls, port: int = DEFAULT_PORT) -> EchoService:
        """Bind to 127.0.0.1 on ``port`` and start serving."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind(("127.0.0.1", port))
            # Periodically wake up to check whether a stop was requested.
            sock.settimeout(0.1)
        except OSError:
            sock.close()
            raise
        return cls(sock)

    def stop(self) -> None:
        """Request that the server stop."""
        self._stop_requested.set()

    def close(self) -> None:
        """Stop the server and wait for it to finish."""
        self.stop()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        self._socket.close()

    def __enter__(self) -> EchoService:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def _serve(self) -> None:
        while not self._stop_requested.is_set():
            try:
                data, addr = self._socket.recvfrom(_BUFFER_SIZE)
            except (socket.timeout, OSError):
                continue
            if not data or data[0] != len(data) - 1:
                continue
            reply = data[:1] + data[1:][::-1]
            self._socket.sendto(reply, addr)