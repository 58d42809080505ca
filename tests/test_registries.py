from typing import Any

import pytest

from api.v1.core.registries import (
    EventRouteRegistry,
    JobContext,
    JobRegistry,
    Registry,
)
from api.v1.infra.outbox.routing import (
    REALTIME_PUSH,
    SEND_EMAIL,
    EmailRoute,
    RealtimePushRoute,
    register_default_routes,
)


class MockHandler:
    async def handle(self, payload: dict[str, Any], context: JobContext) -> dict[str, Any]:
        return {"ok": True}


def test_registry_basic_operations():
    """Test basic registry register, get, list operations."""
    registry = Registry[str]("Test")

    # Test empty registry
    assert registry.list() == []

    # Test register and get
    registry.register("test_impl", "test_value")
    assert registry.get("test_impl") == "test_value"
    assert registry.list() == ["test_impl"]
    assert registry.has("test_impl")
    assert not registry.has("nonexistent")

    # Test KeyError for missing implementation
    with pytest.raises(KeyError, match="No test implementation registered"):
        registry.get("nonexistent")


def test_registry_freeze():
    registry = Registry[str]("Test")
    registry.register("before", "value")
    registry.freeze()

    assert registry.is_frozen()
    with pytest.raises(RuntimeError, match="registry is frozen"):
        registry.register("after", "value")
    assert registry.get("before") == "value"


def test_job_registry():
    registry = JobRegistry()
    handler = MockHandler()

    registry.register("send_sms", handler)

    assert registry.get("send_sms") is handler
    assert "send_sms" in registry.list()


def test_default_routes():
    routes = EventRouteRegistry()
    register_default_routes(routes)

    assert isinstance(routes.resolve("verification_email"), EmailRoute)
    assert isinstance(routes.resolve("recovery_email"), EmailRoute)
    assert routes.resolve("verification_email").job_type == SEND_EMAIL

    fallback = routes.resolve("invoice_generated")
    assert isinstance(fallback, RealtimePushRoute)
    assert fallback.job_type == REALTIME_PUSH


def test_resolve_without_default_raises():
    routes = EventRouteRegistry()

    with pytest.raises(KeyError, match="No event route registered for: unmapped"):
        routes.resolve("unmapped")


def test_frozen_route_registry_rejects_default():
    routes = EventRouteRegistry()
    routes.freeze()

    with pytest.raises(RuntimeError, match="frozen"):
        routes.set_default(RealtimePushRoute())
