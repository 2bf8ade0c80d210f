"""Tests for health endpoint."""

from unittest.mock import patch

import pytest

from stableview.main import app, serve
from stableview.services.config import ConfigService


@pytest.mark.asyncio
async def test_health_check(client):
    """Test health endpoint returns OK."""
    response = await client.get("/api/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["service"] == "stableview-core"
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_root(client):
    response = await client.get("/")
    assert response.status_code == 200
    assert response.json()["docs"] == "/docs"


def test_serve_uses_configured_host_and_port(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("server:\n  host: 127.0.0.1\n  port: 8123\n")
    config = ConfigService(str(path), environ={})

    with patch("stableview.main.uvicorn.run") as run:
        serve(config)

    run.assert_called_once_with(app, host="127.0.0.1", port=8123)


def test_serve_exits_on_invalid_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("server:\n  port: 0\n")
    config = ConfigService(str(path), environ={})

    with patch("stableview.main.uvicorn.run") as run, pytest.raises(SystemExit):
        serve(config)

    run.assert_not_called()
