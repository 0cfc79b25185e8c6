"""The runtime client, combining every API behind one object."""

from __future__ import annotations

from typing import Any, Optional

from layotto.sdk.configuration import ConfigurationMixin
from layotto.sdk.services import ServicesMixin
from layotto.sdk.state import StateClientMixin


class Client(ConfigurationMixin, StateClientMixin, ServicesMixin):
    """Client of the runtime API.

    ``connection`` is the transport to the runtime; it offers the runtime's
    calls (``say_hello``, ``get_state`` and so on) taking and returning
    dicts, and optionally ``close()``.
    """

    def __init__(self, connection: Any) -> None:
        self.connection = connection
        self.proto_client = connection

    def close(self) -> None:
        """Release the connection."""
        if self.connection is None:
            return
        close = getattr(self.connection, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, exc_type: Optional[type], exc: Optional[BaseException], tb: Any) -> None:
        self.close()


def new_client_with_connection(connection: Any) -> Client:
    """Create a client over an existing connection."""
    return Client(connection)