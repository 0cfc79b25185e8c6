"""Hello, pub/sub and lock calls of the client.

Requests sent through ``proto_client`` and the responses it returns are
plain dicts keyed by the wire field names.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class SayHelloRequest:
    """Asks a hello service for its greeting."""

    service_name: str = ""


@dataclass
class SayHelloResponse:
    """The greeting a hello service returned."""

    hello: str = ""


@dataclass
class PublishEventRequest:
    """An event to publish to a topic through a pub/sub component.

    ``metadata`` is passed to the component; its ``key`` entry names the
    message key.
    """

    pubsub_name: str = ""
    topic: str = ""
    data: Optional[bytes] = None
    data_content_type: str = ""
    metadata: Optional[dict[str, str]] = None


class ServicesMixin:
    """Hello, pub/sub and lock calls; expects a ``proto_client`` attribute."""

    proto_client: Any

    def say_hello(self, request: SayHelloRequest) -> SayHelloResponse:
        """Call the named hello service."""
        response = self.proto_client.say_hello({"service_name": request.service_name}) or {}
        return SayHelloResponse(hello=response.get("hello", ""))

    def publish_event(self, request: PublishEventRequest) -> None:
        """Publish an event to the request's topic."""
        self.proto_client.publish_event(
            {
                "pubsub_name": request.pubsub_name,
                "topic": request.topic,
                "data": request.data,
                "data_content_type": request.data_content_type,
                "metadata": request.metadata,
            }
        )

    def try_lock(self, request: Any) -> Any:
        """Try to take a distributed lock; the response says whether it succeeded."""
        return self.proto_client.try_lock(request)

    def unlock(self, request: Any) -> Any:
        """Release a distributed lock."""
        return self.proto_client.unlock(request)