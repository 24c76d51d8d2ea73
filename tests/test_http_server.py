#!/usr/bin/env python3
"""
Tests for the VICE HTTP API.
"""

import asyncio
import threading

import pytest
from fastapi.testclient import TestClient

from fake_vice import FakeVice
from vice_mcp import __version__
from vice_mcp.client import ViceClient
from vice_mcp.connection import ViceConnection
from vice_mcp.http_server import create_app
from vice_mcp.protocol import PROFILE_V2


def _client():
    return ViceClient(ViceConnection(PROFILE_V2, response_timeout=2.0))


@pytest.fixture
def vice():
    """A fake binary monitor running on its own event loop thread."""
    loop = asyncio.new_event_loop()
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    fake = asyncio.run_coroutine_threadsafe(FakeVice(PROFILE_V2).start(), loop).result()
    try:
        yield fake
    finally:
        asyncio.run_coroutine_threadsafe(fake.stop(), loop).result()
        loop.call_soon_threadsafe(loop.stop)
        thread.join()
        loop.close()


@pytest.fixture
def http(vice):
    """An HTTP client whose app is connected to the fake monitor."""
    with TestClient(create_app(_client())) as client:
        response = client.post("/connect", json={"host": "127.0.0.1", "port": vice.port})
        assert response.status_code == 200
        yield client


class TestOffline:
    """Tests that need no VICE connection."""

    def test_root(self):
        """Test the API root endpoint."""
        with TestClient(create_app(_client())) as client:
            data = client.get("/").json()

        assert data["name"] == "VICE HTTP API"
        assert data["version"] == __version__
        assert "vice_port" in data["config"]

    def test_status_not_connected(self):
        """Test status before connecting."""
        with TestClient(create_app(_client())) as client:
            data = client.get("/status").json()

        assert data["success"] is True
        assert data["data"] == {"connected": False, "running": True}

    def test_memory_not_connected(self):
        """Test that commands without a connection map to 503."""
        with TestClient(create_app(_client())) as client:
            response = client.get("/memory", params={"address": 1024})

        assert response.status_code == 503
        assert response.json()["detail"]["code"] == "NOT_CONNECTED"

    def test_checkpoints_empty(self):
        """Test that no checkpoints are listed before any are set."""
        with TestClient(create_app(_client())) as client:
            assert client.get("/checkpoints").json() == []

    def test_connect_port_validation(self):
        """Test that an out-of-range port is rejected by the request model."""
        with TestClient(create_app(_client())) as client:
            response = client.post("/connect", json={"port": 0})

        assert response.status_code == 422


class TestConnected:
    """Tests against the fake binary monitor."""

    def test_status(self, http, vice):
        """Test status once connected."""
        data = http.get("/status").json()["data"]

        assert data["connected"] is True
        assert data["port"] == vice.port

    def test_connect_twice(self, http, vice):
        """Test that a second connect is a conflict mapped to 503."""
        response = http.post("/connect", json={"host": "127.0.0.1", "port": vice.port})

        assert response.status_code == 503
        assert response.json()["detail"]["code"] == "ALREADY_CONNECTED"

    def test_read_memory(self, http, vice):
        """Test a memory read."""
        vice.memory[0xC000:0xC003] = b"\xa9\x00\x60"

        data = http.get("/memory", params={"address": 0xC000, "length": 3}).json()

        assert data["bytes"] == [0xA9, 0x00, 0x60]
        assert data["hex"] == "a90060"

    def test_read_memory_invalid_address(self, http):
        """Test that validation errors map to 400."""
        response = http.get("/memory", params={"address": 0x10000})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_ADDRESS"

    def test_write_memory(self, http, vice):
        """Test a memory write."""
        response = http.post("/memory", json={"address": 0xD020, "bytes": [0, 6]})

        assert response.status_code == 200
        assert bytes(vice.memory[0xD020:0xD022]) == b"\x00\x06"

    def test_registers(self, http):
        """Test register retrieval."""
        data = http.get("/registers").json()

        assert data["registers"]["PC"] == 0xE5CF
        assert data["flags"]["string"] == "nv-bdiZc"

    def test_step_and_continue(self, http):
        """Test execution control and the run state it leaves behind."""
        assert http.post("/step", json={}).status_code == 200
        assert http.get("/status").json()["data"]["running"] is False

        assert http.post("/continue").status_code == 200
        assert http.get("/status").json()["data"]["running"] is True

    def test_step_invalid_count(self, http):
        """Test that a zero step count is rejected."""
        response = http.post("/step", json={"count": 0})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_COUNT"

    def test_checkpoint_lifecycle(self, http):
        """Test breakpoint creation, listing and deletion."""
        created = http.post("/breakpoints", json={"address": 0xC000}).json()
        checkpoint_id = created["data"]["id"]

        listed = http.get("/checkpoints").json()
        assert listed == [
            {
                "id": checkpoint_id,
                "kind": "exec",
                "start_address": 0xC000,
                "end_address": 0xC000,
                "enabled": True,
                "temporary": False,
            }
        ]

        assert http.delete(f"/checkpoints/{checkpoint_id}").status_code == 200
        assert http.get("/checkpoints").json() == []

    def test_watchpoint_bad_type(self, http):
        """Test that an unknown watchpoint type maps to 400."""
        response = http.post("/watchpoints", json={"start_address": 0xD020, "type": "exec"})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_CHECKPOINT_TYPE"

    def test_peer_error(self, http, vice):
        """Test that an error status from VICE maps to 502."""
        vice.overrides["checkpoint_delete"] = lambda vice, frame: [
            vice.response("checkpoint_delete", frame.request_id, status=0x01)
        ]

        response = http.delete("/checkpoints/42")

        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "OBJECT_MISSING"

    def test_undecodable_reply(self, http, vice):
        """Test that a body too short to decode maps to 502."""
        vice.overrides["memory_get"] = lambda vice, frame: [
            vice.response("memory_get", frame.request_id)
        ]

        response = http.get("/memory", params={"address": 0xC000, "length": 3})

        assert response.status_code == 502
        assert response.json()["detail"]["code"] == "INVALID_RESPONSE"

    def test_screen(self, http, vice):
        """Test screen text read through the VIC-II setup."""
        vice.memory[0xDD00] = 0x97
        vice.memory[0xD018] = 0x15
        vice.memory[0x0400:0x07E8] = bytes([32] * 1000)
        vice.memory[0x0400:0x0402] = bytes([15, 11])

        data = http.get("/screen").json()

        assert data["screen_address"]["hex"] == "$0400"
        assert data["lines"][0] == "OK"
        assert len(data["lines"]) == 25
