"""Application readiness checks.

A container can be "up" in the runtime long before the server inside it
accepts connections. A :class:`ReadyCheck` answers the second question.
The readiness protocol calls ``is_ready()`` every 100 ms; returning
False or raising both mean "not yet".
"""

from __future__ import annotations

import socket
from typing import Protocol, runtime_checkable

from podspine.core.logging import get_logger

logger = get_logger(__name__)


@runtime_checkable
class ReadyCheck(Protocol):
    """Caller-supplied predicate: is the application in the container ready?"""

    def is_ready(self) -> bool: ...


class AlwaysReady:
    """Ready as soon as the runtime reports the container as up."""

    def is_ready(self) -> bool:
        return True

    def __repr__(self) -> str:
        return "AlwaysReady()"


class TCPSocketReadCheck:
    """Ready once a TCP connection yields at least one byte.

    Suits servers that greet on connect (SMTP, FTP, database wire
    protocols). Connection and read failures, including a read timeout,
    are reported as not ready rather than raised.
    """

    def __init__(self, address: str, port: int, timeout: float = 1.0) -> None:
        if not address:
            raise ValueError("address is required")
        self.address = address
        self.port = port
        self.timeout = timeout

    def is_ready(self) -> bool:
        try:
            with socket.create_connection((self.address, self.port), timeout=self.timeout) as sock:
                sock.settimeout(self.timeout)
                data = sock.recv(1)
        except OSError as exc:
            logger.debug(
                "ready_check.failed", address=self.address, port=self.port, error=str(exc)
            )
            return False
        if data:
            logger.debug("ready_check.read", address=self.address, port=self.port, byte=data.hex())
        return len(data) == 1

    def __repr__(self) -> str:
        return f"TCPSocketReadCheck({self.address!r}, {self.port})"
