import base64
import binascii
import json
from types import SimpleNamespace

import pytest

from layotto.config import parse_runtime_config
from layotto.keyprefix import IllegalKeyError, get_modified_lock_key, get_modified_state_key
from layotto.options import (
    with_err_interceptor,
    with_grpc_options,
    with_lock_factory,
    with_new_server,
    with_pubsub_factory,
    with_state_factory,
)
from layotto.registry import ComponentNotRegisteredError, Factory
from layotto.runtime import (
    AppUnimplementedError,
    MosnRuntime,
    NewMessage,
    RedeliveryError,
    TopicEventResponse,
    TopicEventStatus,
    TopicSubscription,
    has_expired,
    retry_strategy,
    to_topic_event_request,
)
from layotto.runtime import list_topic_subscriptions as fetch_app_subscriptions


class FakeComponent:
    def __init__(self):
        self.config = None
        self.subscriptions = []

    def init(self, config):
        self.config = dict(config)

    def subscribe(self, topic, metadata, handler):
        self.subscriptions.append((topic, metadata, handler))


class FakeApp:
    def __init__(self, subscriptions=(), response=None, error=None):
        self.subscriptions = list(subscriptions)
        self.response = response
        self.error = error
        self.list_calls = 0
        self.events = []

    def list_topic_subscriptions(self):
        self.list_calls += 1
        return SimpleNamespace(subscriptions=self.subscriptions)

    def on_topic_event(self, request):
        self.events.append(request)
        if self.error is not None:
            raise self.error
        return self.response


class BrokenApp:
    def list_topic_subscriptions(self):
        raise ConnectionError("down")


class EmptyApp:
    def list_topic_subscriptions(self):
        return None


class FakeLogger:
    def __init__(self):
        self.errors = []

    def error(self, fmt, *args):
        self.errors.append(fmt % args)


def make_event(**overrides):
    event = {
        "id": "evt-1",
        "source": "src",
        "datacontenttype": "text/plain",
        "type": "com.example.event",
        "specversion": "1.0",
        "data": "hello",
    }
    event.update(overrides)
    return event


def message_for(event, topic="topic1"):
    return NewMessage(data=json.dumps(event).encode(), topic=topic,
                      metadata={"pubsubName": "mock"})


def test_run_without_config_raises():
    with pytest.raises(ValueError, match="no runtimeConfig"):
        MosnRuntime(None).run()


def test_pubsub_consumer_id_defaults_to_app_id():
    component = FakeComponent()
    config = parse_runtime_config({"app": {"app_id": "app1"},
                                   "pub_subs": {"mock": {"metadata": {"consumerID": "  "}}}})
    runtime = MosnRuntime(config)
    runtime.run(with_pubsub_factory(Factory("mock", lambda: component)))
    assert component.config["consumerID"] == "app1"
    assert runtime.pub_subs["mock"] is component


def test_pubsub_consumer_id_kept_when_set():
    component = FakeComponent()
    config = parse_runtime_config({"app": {"app_id": "app1"},
                                   "pub_subs": {"mock": {"metadata": {"consumerID": "c1"}}}})
    MosnRuntime(config).run(with_pubsub_factory(Factory("mock", lambda: component)))
    assert component.config["consumerID"] == "c1"


def test_unregistered_component_calls_interceptor_and_raises():
    calls = []
    config = parse_runtime_config({"state": {"missing": {"metadata": {}}}})
    runtime = MosnRuntime(config)
    with pytest.raises(ComponentNotRegisteredError):
        runtime.run(with_err_interceptor(lambda err, fmt, *args: calls.append(fmt % args)))
    assert calls == ["create state component missing failed"]


def test_state_key_prefix_saved():
    component = FakeComponent()
    config = parse_runtime_config({"state": {"rt_state_store": {"metadata": {"keyPrefix": "name"}}}})
    runtime = MosnRuntime(config)
    runtime.run(with_state_factory(Factory("rt_state_store", lambda: component)))
    assert runtime.states["rt_state_store"] is component
    assert component.config == {"keyPrefix": "name"}
    assert get_modified_state_key("k", "rt_state_store", "app") == "rt_state_store||k"


def test_lock_key_prefix_saved():
    component = FakeComponent()
    config = parse_runtime_config({"lock": {"rt_lock_store": {"metadata": {"keyPrefix": "none"}}}})
    runtime = MosnRuntime(config)
    runtime.run(with_lock_factory(Factory("rt_lock_store", lambda: component)))
    assert runtime.locks["rt_lock_store"] is component
    assert get_modified_lock_key("k", "rt_lock_store", "app") == "k"


def test_lock_illegal_prefix_raises():
    calls = []
    config = parse_runtime_config({"lock": {"rt_bad_lock": {"metadata": {"keyPrefix": "a||b"}}}})
    runtime = MosnRuntime(config)
    with pytest.raises(IllegalKeyError):
        runtime.run(with_lock_factory(Factory("rt_bad_lock", FakeComponent)),
                    with_err_interceptor(lambda err, fmt, *args: calls.append(fmt % args)))
    assert calls == ["save lock configuration rt_bad_lock failed"]
    assert "rt_bad_lock" not in runtime.locks


def test_subscription_delivers_event_to_app():
    component = FakeComponent()
    app = FakeApp(subscriptions=[TopicSubscription("mock", "topic1", {"m": "v"}), None],
                  response=TopicEventResponse(TopicEventStatus.SUCCESS))
    config = parse_runtime_config({"pub_subs": {"mock": {"metadata": {}}}})
    runtime = MosnRuntime(config, app_callback=app)
    runtime.run(with_pubsub_factory(Factory("mock", lambda: component)))

    assert len(component.subscriptions) == 1
    topic, metadata, handler = component.subscriptions[0]
    assert (topic, metadata) == ("topic1", {"m": "v"})

    handler(NewMessage(data=json.dumps(make_event()).encode(), topic="topic1"))
    assert len(app.events) == 1
    request = app.events[0]
    assert request.pubsub_name == "mock"
    assert request.topic == "topic1"
    assert request.data == b"hello"


def test_interested_topics_are_cached():
    app = FakeApp(subscriptions=[TopicSubscription("ps", "t1"), TopicSubscription("ps", "t2")])
    runtime = MosnRuntime(parse_runtime_config({}), app_callback=app)
    first = runtime.get_interested_topics()
    second = runtime.get_interested_topics()
    assert first == {"ps": {"t1": {}, "t2": {}}}
    assert second is first
    assert app.list_calls == 1


def test_interested_topics_without_app_is_empty():
    assert MosnRuntime(parse_runtime_config({})).get_interested_topics() == {}


def test_list_topic_subscriptions_error_returns_empty():
    log = FakeLogger()
    assert fetch_app_subscriptions(BrokenApp(), log) == []
    assert len(log.errors) == 1
    assert "down" in log.errors[0]


def test_list_topic_subscriptions_none_response():
    log = FakeLogger()
    assert fetch_app_subscriptions(EmptyApp(), log) == []
    assert log.errors == []


@pytest.mark.parametrize(
    "event, expected",
    [
        ({}, False),
        ({"expiration": ""}, False),
        ({"expiration": "not a time"}, False),
        ({"expiration": "2000-01-01T00:00:00Z"}, True),
        ({"expiration": "2999-01-01T00:00:00+00:00"}, False),
    ],
)
def test_has_expired(event, expected):
    assert has_expired(event) is expected


def test_to_request_base64_data():
    event = make_event(data_base64=base64.b64encode(b"\x00\x01raw").decode())
    request = to_topic_event_request(message_for(event), event)
    assert request.data == b"\x00\x01raw"
    assert request.id == "evt-1"
    assert request.pubsub_name == "mock"


def test_to_request_json_data_round_trips():
    event = make_event(datacontenttype="application/json", data={"a": [1, 2]})
    request = to_topic_event_request(message_for(event), event)
    assert json.loads(request.data) == {"a": [1, 2]}


def test_to_request_other_content_type_has_no_data():
    event = make_event(datacontenttype="application/octet-stream")
    assert to_topic_event_request(message_for(event), event).data is None


def test_to_request_bad_base64_raises():
    event = make_event(data_base64="!!!")
    with pytest.raises(binascii.Error):
        to_topic_event_request(message_for(event), event)


def test_to_request_missing_field_raises():
    event = make_event()
    del event["source"]
    with pytest.raises(ValueError, match="source"):
        to_topic_event_request(message_for(event), event)


def test_retry_strategy_outcomes():
    event = make_event()
    assert retry_strategy(None, TopicEventResponse(TopicEventStatus.SUCCESS), event) is None
    assert retry_strategy(None, None, event) is None
    assert retry_strategy(None, TopicEventResponse(TopicEventStatus.DROP), event) is None
    assert retry_strategy(AppUnimplementedError("no"), None, event) is None
    with pytest.raises(RedeliveryError,
                       match="RETRY status returned from app while processing pub/sub event evt-1"):
        retry_strategy(None, TopicEventResponse(TopicEventStatus.RETRY), event)
    with pytest.raises(RedeliveryError, match="unknown status"):
        retry_strategy(None, TopicEventResponse(7), event)
    with pytest.raises(RedeliveryError, match="error returned from app"):
        retry_strategy(ConnectionError("boom"), None, event)


def test_publish_expired_event_is_dropped():
    app = FakeApp()
    runtime = MosnRuntime(parse_runtime_config({}), app_callback=app)
    runtime.publish_message(message_for(make_event(expiration="2000-01-01T00:00:00Z")))
    assert app.events == []


def test_publish_invalid_json_raises():
    runtime = MosnRuntime(parse_runtime_config({}), app_callback=FakeApp())
    with pytest.raises(ValueError):
        runtime.publish_message(NewMessage(data=b"not json", topic="t"))


def test_publish_app_error_requests_redelivery():
    app = FakeApp(error=ConnectionError("down"))
    runtime = MosnRuntime(parse_runtime_config({}), app_callback=app)
    with pytest.raises(RedeliveryError):
        runtime.publish_message(message_for(make_event()))
    assert len(app.events) == 1


def test_server_built_and_stopped():
    built = []

    class Server:
        stopped = False

        def stop(self):
            self.stopped = True

    def maker(runtime, *extra):
        built.append((runtime, extra))
        return Server()

    runtime = MosnRuntime(parse_runtime_config({}))
    srv = runtime.run(with_new_server(maker), with_grpc_options("opt1"))
    assert built == [(runtime, ("opt1",))]
    runtime.stop()
    assert srv.stopped is True


def test_dialer_reaches_callback_port():
    dialed = []
    app = FakeApp()

    def dialer(address, timeout):
        dialed.append((address, timeout))
        return app

    config = parse_runtime_config({"app": {"grpc_callback_port": 5000}})
    runtime = MosnRuntime(config, dialer=dialer)
    runtime.run()
    assert dialed == [("127.0.0.1:5000", 30.0)]
    assert runtime.app_callback is app