"""The sidecar runtime: builds components from configuration and relays pub/sub events."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Callable, Optional

from layotto.config import DIAL_TIMEOUT, METADATA_KEY_PUBSUB_NAME, RuntimeConfig
from layotto.keyprefix import save_lock_configuration, save_state_configuration
from layotto.options import RuntimeOptions
from layotto.registry import (
    LOCK_SERVICE,
    PUBSUB_SERVICE,
    STATE_SERVICE,
    ComponentRegistry,
)

logger = logging.getLogger(__name__)

HELLO_SERVICE = "hello"
CONFIG_STORE_SERVICE = "configStore"
RPC_SERVICE = "rpc"

ID_FIELD = "id"
SOURCE_FIELD = "source"
DATA_CONTENT_TYPE_FIELD = "datacontenttype"
TYPE_FIELD = "type"
SPEC_VERSION_FIELD = "specversion"
DATA_FIELD = "data"
DATA_BASE64_FIELD = "data_base64"
EXPIRATION_FIELD = "expiration"


@dataclass
class TopicSubscription:
    """A topic the application wants to receive through a pub/sub component."""

    pubsub_name: str
    topic: str
    metadata: dict[str, str] = field(default_factory=dict)


class TopicEventStatus(IntEnum):
    """What the application asks the runtime to do with a delivered event."""

    SUCCESS = 0
    RETRY = 1
    DROP = 2


@dataclass
class TopicEventResponse:
    """The application's answer to a delivered event."""

    status: int = TopicEventStatus.SUCCESS


@dataclass
class TopicEventRequest:
    """An event as it is handed to the application."""

    id: str
    source: str
    data_content_type: str
    type: str
    spec_version: str
    topic: str
    pubsub_name: str
    data: Optional[bytes] = None


@dataclass
class NewMessage:
    """A raw message received from a pub/sub component."""

    data: bytes
    topic: str
    metadata: Optional[dict[str, str]] = None


class AppUnimplementedError(Exception):
    """Raised by an app callback client when the app does not implement the call."""


class RedeliveryError(Exception):
    """The event was not processed and should be delivered again."""


def list_topic_subscriptions(client: Any, logger: Any) -> list[TopicSubscription]:
    """Ask the application which topics it subscribes to; on failure, none."""
    try:
        response = client.list_topic_subscriptions()
    except Exception as exc:
        logger.error("[runtime][ListTopicSubscriptions]error after callback: %s", exc)
        return []
    subscriptions = getattr(response, "subscriptions", None) if response is not None else None
    if subscriptions:
        return list(subscriptions)
    return []


def _parse_rfc3339(text: str) -> Optional[datetime]:
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        return None
    if moment.tzinfo is None:
        return None
    return moment


def has_expired(cloud_event: dict[str, Any]) -> bool:
    """Whether the event carries an expiration time that has already passed."""
    value = cloud_event.get(EXPIRATION_FIELD)
    if value is None or value == "":
        return False
    moment = _parse_rfc3339(str(value))
    if moment is None:
        return False
    return moment < datetime.now(timezone.utc)


def _is_string_content_type(content_type: str) -> bool:
    return content_type.lower().startswith("text/") or content_type.endswith("/xml")


def _is_json_content_type(content_type: str) -> bool:
    return content_type.lower().startswith("application/json")


def _required_str(cloud_event: dict[str, Any], key: str) -> str:
    value = cloud_event.get(key)
    if not isinstance(value, str):
        raise ValueError(f"cloud event field {key!r} must be a string")
    return value


def _event_id(cloud_event: dict[str, Any]) -> str:
    return str(cloud_event.get(ID_FIELD, ""))


def to_topic_event_request(message: NewMessage, cloud_event: dict[str, Any]) -> TopicEventRequest:
    """Convert a decoded cloud event into the request handed to the application.

    Raises ValueError when a required field is missing, and binascii.Error
    when ``data_base64`` is not valid base64.
    """
    request = TopicEventRequest(
        id=_required_str(cloud_event, ID_FIELD),
        source=_required_str(cloud_event, SOURCE_FIELD),
        data_content_type=_required_str(cloud_event, DATA_CONTENT_TYPE_FIELD),
        type=_required_str(cloud_event, TYPE_FIELD),
        spec_version=_required_str(cloud_event, SPEC_VERSION_FIELD),
        topic=message.topic,
        pubsub_name=(message.metadata or {}).get(METADATA_KEY_PUBSUB_NAME, ""),
    )
    encoded = cloud_event.get(DATA_BASE64_FIELD)
    data = cloud_event.get(DATA_FIELD)
    if encoded is not None:
        if not isinstance(encoded, str):
            raise binascii.Error("data_base64 must be a string")
        request.data = base64.b64decode(encoded, validate=True)
    elif data is not None:
        if _is_string_content_type(request.data_content_type):
            if not isinstance(data, str):
                raise ValueError("cloud event field 'data' must be a string")
            request.data = data.encode("utf-8")
        elif _is_json_content_type(request.data_content_type):
            request.data = json.dumps(data, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    return request


def retry_strategy(
    error: Optional[BaseException],
    response: Optional[TopicEventResponse],
    cloud_event: dict[str, Any],
) -> None:
    """Raise RedeliveryError when the event should be delivered again."""
    event_id = _event_id(cloud_event)
    if error is not None:
        if isinstance(error, AppUnimplementedError):
            logger.warning(
                "[runtime]non-retriable error returned from app while processing pub/sub event %s: %s",
                event_id,
                error,
            )
            return
        failure = RedeliveryError(
            f"error returned from app while processing pub/sub event {event_id}: {error}"
        )
        logger.debug("%s", failure)
        raise failure from error

    status = TopicEventStatus.SUCCESS if response is None else response.status
    if status == TopicEventStatus.SUCCESS:
        return
    if status == TopicEventStatus.RETRY:
        raise RedeliveryError(
            f"RETRY status returned from app while processing pub/sub event {event_id}"
        )
    if status == TopicEventStatus.DROP:
        logger.warning(
            "[runtime]DROP status returned from app while processing pub/sub event %s", event_id
        )
        return
    raise RedeliveryError(
        f"unknown status returned from app while processing pub/sub event {event_id}: {int(status)}"
    )


def _default_err_interceptor(error: BaseException, message_format: str, *args: Any) -> None:
    logger.error("[runtime] occurs an error: %s, %s", error, message_format % args)


class MosnRuntime:
    """Creates the configured components and delivers subscribed events to the app.

    Components are objects with ``init(config)``; pub/sub components also offer
    ``subscribe(topic, metadata, handler)``, where ``handler(message)`` raises
    when the message must be redelivered. ``app_callback`` is the client used
    to reach the application: ``list_topic_subscriptions()`` returns an object
    with a ``subscriptions`` list and ``on_topic_event(request)`` returns a
    :class:`TopicEventResponse`. When the configuration names a callback port
    and ``dialer`` is given, ``dialer(address, timeout)`` builds that client.
    """

    def __init__(
        self,
        runtime_config: Optional[RuntimeConfig],
        *,
        info: Any = None,
        app_callback: Any = None,
        dialer: Optional[Callable[[str, float], Any]] = None,
    ) -> None:
        self.runtime_config = runtime_config
        self.info = info
        self.app_callback = app_callback
        self._dialer = dialer
        self.srv: Any = None
        self.hello_registry = ComponentRegistry(HELLO_SERVICE, info)
        self.config_store_registry = ComponentRegistry(CONFIG_STORE_SERVICE, info)
        self.rpc_registry = ComponentRegistry(RPC_SERVICE, info)
        self.pubsub_registry = ComponentRegistry(PUBSUB_SERVICE, info)
        self.state_registry = ComponentRegistry(STATE_SERVICE, info)
        self.lock_registry = ComponentRegistry(LOCK_SERVICE, info)
        self.hellos: dict[str, Any] = {}
        self.config_stores: dict[str, Any] = {}
        self.rpcs: dict[str, Any] = {}
        self.pub_subs: dict[str, Any] = {}
        self.states: dict[str, Any] = {}
        self.locks: dict[str, Any] = {}
        self._topic_per_component: Optional[dict[str, dict[str, dict[str, str]]]] = None
        self._err_interceptor: Callable[..., None] = _default_err_interceptor

    @property
    def app_id(self) -> str:
        return self.runtime_config.app.app_id if self.runtime_config else ""

    def run(self, *options: Callable[[RuntimeOptions], None]) -> Any:
        """Apply the options, start every configured component and build the server.

        The server is made by the ``srv_maker`` option, called with this runtime
        and the extra server options; without one there is no server.
        """
        opts = RuntimeOptions()
        for option in options:
            option(opts)
        self._err_interceptor = opts.err_interceptor or _default_err_interceptor

        self._init_runtime(opts)
        if opts.srv_maker is not None:
            self.srv = opts.srv_maker(self, *opts.grpc_options)
        return self.srv

    def stop(self) -> None:
        """Stop the server, if one was built."""
        if self.srv is not None:
            self.srv.stop()

    def _init_runtime(self, opts: RuntimeOptions) -> None:
        if self.runtime_config is None:
            raise ValueError("[runtime] init error:no runtimeConfig")
        self._init_app_callback_connection()
        self._init_simple("hello's", self.hello_registry, opts.hellos,
                          self.runtime_config.hellos, self.hellos)
        self._init_simple("configstore's", self.config_store_registry, opts.config_stores,
                          self.runtime_config.config_stores, self.config_stores)
        self._init_simple("rpc's", self.rpc_registry, opts.rpcs,
                          self.runtime_config.rpcs, self.rpcs)
        self._init_pubsubs(opts.pub_subs)
        self._init_states(opts.states)
        self._init_locks(opts.locks)

    def _create(self, registry: ComponentRegistry, name: str, what: str) -> Any:
        try:
            return registry.create(name)
        except Exception as exc:
            self._err_interceptor(exc, f"create {what} component %s failed", name)
            raise

    def _init_component(self, component: Any, config: Any, name: str, what: str) -> None:
        try:
            component.init(config)
        except Exception as exc:
            self._err_interceptor(exc, f"init {what} component %s failed", name)
            raise

    def _init_simple(self, what: str, registry: ComponentRegistry, factories: list,
                     configs: dict[str, Any], pool: dict[str, Any]) -> None:
        logger.info("[runtime] init %s service", registry.service_name)
        registry.register(*factories)
        for name, config in configs.items():
            component = self._create(registry, name, what)
            self._init_component(component, config, name, what)
            pool[name] = component

    def _init_pubsubs(self, factories: list) -> None:
        logger.info("[runtime] start initializing pubsub components")
        self.pubsub_registry.register(*factories)
        for name, config in self.runtime_config.pub_subs.items():
            component = self._create(self.pubsub_registry, name, "pubsub")
            if not config.metadata.get("consumerID", "").strip():
                config.metadata["consumerID"] = self.app_id
            self._init_component(component, config.metadata, name, "pubsub")
            self.pub_subs[name] = component
        self._start_subscribing()

    def _init_states(self, factories: list) -> None:
        logger.info("[runtime] start initializing state components")
        self.state_registry.register(*factories)
        for name, config in self.runtime_config.state.items():
            component = self._create(self.state_registry, name, "state")
            self._init_component(component, config.metadata, name, "state")
            self.states[name] = component
            try:
                save_state_configuration(name, config.metadata)
            except ValueError as exc:
                logger.error("error save state keyprefix: %s", exc)
                raise

    def _init_locks(self, factories: list) -> None:
        logger.info("[runtime] start initializing lock components")
        self.lock_registry.register(*factories)
        for name, config in self.runtime_config.lock.items():
            component = self._create(self.lock_registry, name, "lock")
            self._init_component(component, config.metadata, name, "lock")
            try:
                save_lock_configuration(name, config.metadata)
            except ValueError as exc:
                self._err_interceptor(exc, "save lock configuration %s failed", name)
                raise
            self.locks[name] = component

    def _start_subscribing(self) -> None:
        if not self.pub_subs:
            return
        topic_routes = self.get_interested_topics()
        if not topic_routes:
            return
        for name, component in self.pub_subs.items():
            self._begin_pubsub(name, component, topic_routes)

    def _handler_for(self, pubsub_name: str) -> Callable[[NewMessage], None]:
        def handle(message: NewMessage) -> None:
            if message.metadata is None:
                message.metadata = {}
            message.metadata[METADATA_KEY_PUBSUB_NAME] = pubsub_name
            self.publish_message(message)

        return handle

    def _begin_pubsub(self, pubsub_name: str, component: Any,
                      topic_routes: dict[str, dict[str, dict[str, str]]]) -> None:
        topics = topic_routes.get(pubsub_name)
        if topics is None:
            return
        for topic, metadata in topics.items():
            logger.debug("[runtime][beginPubSub]subscribing to topic=%s on pubsub=%s",
                         topic, pubsub_name)
            try:
                component.subscribe(topic, metadata, self._handler_for(pubsub_name))
            except Exception as exc:
                logger.warning("[runtime][beginPubSub]failed to subscribe to topic %s: %s",
                               topic, exc)
                raise

    def get_interested_topics(self) -> dict[str, dict[str, dict[str, str]]]:
        """Map each pub/sub name to the app's topics and their metadata; cached once known."""
        if self._topic_per_component is not None:
            return self._topic_per_component
        if self.app_callback is None:
            return {}
        routes: dict[str, dict[str, dict[str, str]]] = {}
        for subscription in list_topic_subscriptions(self.app_callback, logger):
            if subscription is None:
                continue
            routes.setdefault(subscription.pubsub_name, {})[subscription.topic] = subscription.metadata
        for pubsub_name, topics in routes.items():
            logger.info(
                "[runtime][getInterestedTopics]app is subscribed to the following topics: %s through pubsub=%s",
                list(topics), pubsub_name,
            )
        self._topic_per_component = routes
        return routes

    def publish_message(self, message: NewMessage) -> None:
        """Deliver a pub/sub message to the application.

        Raises ValueError when the message is not a cloud event and
        RedeliveryError when it should be delivered again.
        """
        try:
            cloud_event = json.loads(message.data)
        except ValueError as exc:
            logger.debug("[runtime]error deserializing cloud events proto: %s", exc)
            raise
        if not isinstance(cloud_event, dict):
            raise ValueError("cloud event must be a JSON object")

        if has_expired(cloud_event):
            logger.warning("[runtime]dropping expired pub/sub event %s as of %s",
                           _event_id(cloud_event), cloud_event.get(EXPIRATION_FIELD))
            return

        try:
            envelope = to_topic_event_request(message, cloud_event)
        except binascii.Error as exc:
            logger.debug("unable to base64 decode cloudEvent field data_base64: %s", exc)
            return

        try:
            if self.app_callback is None:
                raise RuntimeError("no app callback connection")
            response = self.app_callback.on_topic_event(envelope)
        except Exception as exc:
            retry_strategy(exc, None, cloud_event)
            return
        retry_strategy(None, response, cloud_event)

    def _init_app_callback_connection(self) -> None:
        if self.runtime_config is None or self.runtime_config.app.grpc_callback_port == 0:
            return
        if self._dialer is None:
            return
        port = self.runtime_config.app.grpc_callback_port
        try:
            self.app_callback = self._dialer(f"127.0.0.1:{port}", DIAL_TIMEOUT)
        except Exception as exc:
            logger.warning("[runtime]failed to init callback client at port %s : %s", port, exc)
            raise