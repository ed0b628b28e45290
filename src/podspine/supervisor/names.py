"""Unique, project-scoped names for containers and pods.

Names look like ``PODSPINE-<project>-<token>`` and
``PODSPINE-POD-<project>-<token>``. The token is 9 bytes from
:mod:`secrets` (72 bits), base64 encoded with the characters that are
awkward in shells and URLs replaced by ``_``, then upper-cased. Many
projects can share one host without their names colliding, and the
``POD`` infix lets a human or a cleanup scan filter by resource kind.
"""

from __future__ import annotations

import base64
import secrets
from collections.abc import Callable

NAME_PREFIX = "PODSPINE"
POD_INFIX = "POD"
TOKEN_BYTES = 9


def fresh_token(random_bytes: Callable[[int], bytes] = secrets.token_bytes) -> str:
    """Return a new 12-character token."""
    encoded = base64.b64encode(random_bytes(TOKEN_BYTES)).decode("ascii")
    return encoded.replace("/", "_").replace("+", "_").replace("=", "_").upper()


class NameAllocator:
    """Allocates container and pod names for one project."""

    def __init__(
        self,
        project_name: str,
        random_bytes: Callable[[int], bytes] = secrets.token_bytes,
    ) -> None:
        self.project_name = project_name
        self._random_bytes = random_bytes

    @property
    def container_prefix(self) -> str:
        return f"{NAME_PREFIX}-{self.project_name}-"

    @property
    def pod_prefix(self) -> str:
        return f"{NAME_PREFIX}-{POD_INFIX}-{self.project_name}-"

    def container_name(self) -> str:
        return self.container_prefix + fresh_token(self._random_bytes)

    def pod_name(self) -> str:
        return self.pod_prefix + fresh_token(self._random_bytes)
