import pytest

from layotto.registry import (
    LOCK_SERVICE,
    PUBSUB_SERVICE,
    STATE_SERVICE,
    ComponentNotRegisteredError,
    ComponentRegistry,
    Factory,
)


class RecordingInfo:
    def __init__(self):
        self.services = []
        self.registered = []
        self.loaded = []

    def add_service(self, service):
        self.services.append(service)

    def register_component(self, service, name):
        self.registered.append((service, name))

    def load_component(self, service, name):
        self.loaded.append((service, name))


def test_new_factory_keeps_fields():
    f = Factory("", None)
    assert f.name == ""
    assert f.factory_method is None


@pytest.mark.parametrize("service", [LOCK_SERVICE, PUBSUB_SERVICE, STATE_SERVICE])
def test_new_registry(service):
    info = RecordingInfo()
    registry = ComponentRegistry(service, info)
    sentinel = object()
    registry.register(Factory("mock", lambda: sentinel))
    assert registry.create("mock") is sentinel
    with pytest.raises(ComponentNotRegisteredError, match="not regsitered"):
        registry.create("not exists")
    assert info.services == [service]
    assert info.registered == [(service, "mock")]
    assert info.loaded == [(service, "mock")]


def test_create_returns_new_instance_each_time():
    registry = ComponentRegistry(STATE_SERVICE)
    registry.register(Factory("list", list))
    first = registry.create("list")
    second = registry.create("list")
    assert first == [] and first is not second


def test_later_registration_replaces_earlier():
    registry = ComponentRegistry(LOCK_SERVICE)
    registry.register(Factory("mock", lambda: 1), Factory("mock", lambda: 2))
    assert registry.create("mock") == 2


def test_not_registered_error_names_component():
    registry = ComponentRegistry(PUBSUB_SERVICE)
    with pytest.raises(ComponentNotRegisteredError) as excinfo:
        registry.create("redis")
    assert excinfo.value.name == "redis"
    assert str(excinfo.value) == "service component redis is not regsitered"


def test_contains_reflects_registration():
    registry = ComponentRegistry(LOCK_SERVICE)
    registry.register(Factory("etcd", dict))
    assert "etcd" in registry
    assert "redis" not in registry