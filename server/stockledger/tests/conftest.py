import pytest

from stockledger.auth import get_current_actor
from stockledger.events import (
    register_audit_sink,
    register_notification_sink,
    unregister_audit_sink,
    unregister_notification_sink,
)
from stockledger.main import app
from stockledger.permissions import Actor


@pytest.fixture(autouse=True)
def override_auth(request):
    if request.node.get_closest_marker("real_auth"):
        yield
        return

    app.dependency_overrides[get_current_actor] = lambda: Actor(id=1, role="ADMIN", name="Test Admin")
    yield
    app.dependency_overrides.pop(get_current_actor, None)


@pytest.fixture()
def delivered():
    """Collects audit records and notifications that reach the sinks."""
    captured = {"audit": [], "notifications": []}
    audit_sink = register_audit_sink(captured["audit"].append)
    notification_sink = register_notification_sink(captured["notifications"].append)
    yield captured
    unregister_audit_sink(audit_sink)
    unregister_notification_sink(notification_sink)
