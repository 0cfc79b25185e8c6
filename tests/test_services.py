import pytest

from layotto.sdk.services import (
    PublishEventRequest,
    SayHelloRequest,
    SayHelloResponse,
    ServicesMixin,
)


class FakeRuntime:
    def __init__(self):
        self.requests = []

    def say_hello(self, request):
        self.requests.append(("say_hello", request))
        return {"hello": "world"}

    def publish_event(self, request):
        self.requests.append(("publish_event", request))
        return {}

    def try_lock(self, request):
        self.requests.append(("try_lock", request))
        return {"success": True}

    def unlock(self, request):
        self.requests.append(("unlock", request))
        return {"status": 0}


class BrokenRuntime:
    def say_hello(self, request):
        raise ConnectionError("down")

    def publish_event(self, request):
        raise ConnectionError("down")


class _Client(ServicesMixin):
    def __init__(self, proto_client):
        self.proto_client = proto_client


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def client(runtime):
    return _Client(runtime)


def test_say_hello(client, runtime):
    response = client.say_hello(SayHelloRequest("helloworld"))
    assert response == SayHelloResponse(hello="world")
    assert runtime.requests == [("say_hello", {"service_name": "helloworld"})]


def test_publish_event(client, runtime):
    result = client.publish_event(PublishEventRequest(
        pubsub_name="redis", topic="orders", data=b"payload",
        data_content_type="text/plain", metadata={"key": "k1"}))
    assert result is None
    assert runtime.requests == [("publish_event", {
        "pubsub_name": "redis",
        "topic": "orders",
        "data": b"payload",
        "data_content_type": "text/plain",
        "metadata": {"key": "k1"},
    })]


def test_publish_event_error_propagates():
    request = PublishEventRequest(
        pubsub_name="redis", topic="orders", data=b"payload",
        data_content_type="text/plain", metadata={})
    with pytest.raises(ConnectionError, match="down"):
        _Client(BrokenRuntime()).publish_event(request)


def test_lock_requests_pass_through_in_order(client, runtime):
    lock_request = {"store_name": "redis", "resource_id": "r1", "lock_owner": "owner", "expire": 10}
    assert client.say_hello(SayHelloRequest("helloworld")) == SayHelloResponse(hello="world")
    assert client.try_lock(lock_request) == {"success": True}
    assert client.unlock(lock_request) == {"status": 0}
    assert runtime.requests == [
        ("say_hello", {"service_name": "helloworld"}),
        ("try_lock", lock_request),
        ("unlock", lock_request),
    ]


def test_errors_propagate():
    with pytest.raises(ConnectionError, match="down"):
        _Client(BrokenRuntime()).say_hello(SayHelloRequest("x"))