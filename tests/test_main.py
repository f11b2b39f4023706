"""Tests for the FastAPI application."""

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from clueprint import __version__
from clueprint.broker import SessionBroker
from clueprint.config import Settings
from clueprint.main import create_app


@pytest.fixture
def app():
    return create_app(SessionBroker(), Settings())


def test_health_reports_service_state(app):
    with TestClient(app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {
        "status": "healthy",
        "service": "clueprint",
        "extension_connected": False,
        "recording": "idle",
        "pending_requests": 0,
        "snapshots": 0,
    }


def test_app_exposes_broker_and_connection_manager(app):
    assert isinstance(app.state.broker, SessionBroker)
    assert app.state.connection_manager.broker is app.state.broker
    assert app.version == __version__


def test_lifespan_starts_and_stops_owned_broker(app):
    broker = app.state.broker

    with TestClient(app):
        assert broker.running

    assert not broker.running


def test_websocket_rejects_web_page_origin(app):
    with TestClient(app) as client:
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/", headers={"origin": "https://evil.example"}):
                pass

    assert exc_info.value.code == 1008
