#!/usr/bin/env python3
"""
Tests for the VICE client against an in-process fake binary monitor.
"""

import asyncio

import pytest

from fake_vice import run_with_vice as _with_vice
from vice_mcp.client import ViceClient
from vice_mcp.connection import ViceConnection
from vice_mcp.errors import CommandError, ConnectionError, ProtocolError, ValidationError
from vice_mcp.protocol import PROFILE_V1, PROFILE_V2

SCREEN_CODES = bytes([8, 5, 12, 12, 15, 32, 23, 15, 18, 12, 4] + [32] * 29)


def _run(coro):
    return asyncio.run(coro)


async def _until(predicate, timeout=2.0):
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


class TestConnectionLifecycle:
    """Tests for connect and disconnect."""

    def test_connect_sets_state(self):
        """Test that a successful connect records host, port and running."""

        async def body(client, vice):
            return client.get_state(), vice.port

        state, port = _with_vice(body)
        assert state.connected
        assert state.running
        assert state.host == "127.0.0.1"
        assert state.port == port

    def test_connect_twice_raises(self):
        """Test that connecting while connected is refused."""

        async def body(client, vice):
            with pytest.raises(ConnectionError) as excinfo:
                await client.connect("127.0.0.1", vice.port)
            return excinfo.value.code

        assert _with_vice(body) == "ALREADY_CONNECTED"

    def test_connect_refused(self):
        """Test that a refused connection is classified with a hint."""

        async def _test():
            server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
            port = server.sockets[0].getsockname()[1]
            server.close()
            await server.wait_closed()

            client = ViceClient(ViceConnection(PROFILE_V2))
            with pytest.raises(ConnectionError) as excinfo:
                await client.connect("127.0.0.1", port)
            return excinfo.value, client.get_state()

        error, state = _run(_test())
        assert error.code == "CONNECTION_FAILED"
        assert "-binarymonitor" in error.suggestion
        assert not state.connected

    def test_commands_require_connection(self):
        """Test that commands fail with NOT_CONNECTED before connect."""

        async def _test():
            client = ViceClient(ViceConnection(PROFILE_V2))
            with pytest.raises(ConnectionError) as excinfo:
                await client.get_registers()
            return excinfo.value.code

        assert _run(_test()) == "NOT_CONNECTED"

    def test_disconnect_when_not_connected(self):
        """Test that disconnect is a no-op without a connection."""

        async def _test():
            client = ViceClient(ViceConnection(PROFILE_V2))
            await client.disconnect()
            return client.get_state()

        assert not _run(_test()).connected

    def test_peer_close_rejects_all_pending(self):
        """Test that VICE closing the socket rejects every pending call once."""

        async def body(client, vice):
            vice.overrides["memory_get"] = lambda vice, frame: None
            tasks = [
                asyncio.create_task(client.read_memory(0x1000 * i, 0x1000 * i + 1))
                for i in range(3)
            ]
            await vice.wait_for_requests(3)
            vice.drop_clients()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            return results, client.connection.pending_count, client.get_state()

        results, pending, state = _with_vice(body)
        assert [type(r) for r in results] == [ConnectionError] * 3
        assert [r.code for r in results] == ["CONNECTION_CLOSED"] * 3
        assert pending == 0
        assert not state.connected

    def test_timeout_leaves_connection_usable(self):
        """Test that an unanswered call times out without affecting later calls."""

        async def body(client, vice):
            vice.overrides["memory_get"] = lambda vice, frame: None
            with pytest.raises(ConnectionError) as excinfo:
                await client.read_memory(0x0400, 0x0400)
            del vice.overrides["memory_get"]
            vice.memory[0x0400] = 0x2A
            return excinfo.value.code, await client.read_memory(0x0400, 0x0400)

        code, data = _with_vice(body, timeout=0.2)
        assert code == "RESPONSE_TIMEOUT"
        assert data == b"\x2a"


    def test_timeout_does_not_disturb_concurrent_read(self):
        """Test that a read in flight survives a sibling call timing out."""

        async def body(client, vice):
            held = []

            def _hold(vice, frame):
                held.append(frame)
                return None

            vice.overrides["memory_get"] = _hold
            slow = asyncio.create_task(client.read_memory(0x1000, 0x1000))
            await asyncio.sleep(0.2)
            fast = asyncio.create_task(client.read_memory(0x2000, 0x2001))
            await vice.wait_for_requests(2)
            with pytest.raises(ConnectionError) as excinfo:
                await slow
            vice.push(vice.response("memory_get", held[1].request_id, b"\x02\x00\xde\xad"))
            return excinfo.value.code, await fast, client.connection.pending_count

        code, data, pending = _with_vice(body, timeout=0.4)
        assert code == "RESPONSE_TIMEOUT"
        assert data == b"\xde\xad"
        assert pending == 0


class TestMemory:
    """Tests for memory reads and writes."""

    def test_read_screen_line(self):
        """Test that reading $0400-$0427 returns the 40 screen codes."""

        async def body(client, vice):
            vice.memory[0x0400 : 0x0400 + 40] = SCREEN_CODES
            return await client.read_memory(0x0400, 0x0427)

        data = _with_vice(body)
        assert len(data) == 40
        assert data == SCREEN_CODES

    def test_read_with_v1_profile(self):
        """Test that the legacy one-byte-id layout reads memory too."""

        async def body(client, vice):
            vice.memory[0xC000:0xC003] = b"\xa9\x00\x60"
            return await client.read_memory(0xC000, 0xC002)

        assert _with_vice(body, profile=PROFILE_V1) == b"\xa9\x00\x60"

    def test_read_full_address_space(self):
        """Test that a 64K read ignores the wrapped length field."""

        async def body(client, vice):
            vice.overrides["memory_get"] = lambda vice, frame: [
                vice.response("memory_get", frame.request_id, b"\x00\x00" + b"\xaa" * 0x10000)
            ]
            return await client.read_memory(0x0000, 0xFFFF)

        data = _with_vice(body)
        assert len(data) == 0x10000
        assert set(data) == {0xAA}

    @pytest.mark.parametrize("reply", [b"", b"\x04\x00\x01\x02"])
    def test_short_memory_reply(self, reply):
        """Test that a truncated memory body raises a classified error."""

        async def body(client, vice):
            vice.overrides["memory_get"] = lambda vice, frame: [
                vice.response("memory_get", frame.request_id, reply)
            ]
            with pytest.raises(ProtocolError) as excinfo:
                await client.read_memory(0x0400, 0x0403)
            return excinfo.value.code

        assert _with_vice(body) == "INVALID_RESPONSE"

    @pytest.mark.parametrize(
        "start,end,code",
        [
            (0x0500, 0x0400, "INVALID_RANGE"),
            (0x0000, 0x10000, "INVALID_ADDRESS"),
            (-1, 0x0010, "INVALID_ADDRESS"),
        ],
    )
    def test_invalid_read_sends_nothing(self, start, end, code):
        """Test that invalid ranges are rejected before any bytes are sent."""

        async def body(client, vice):
            with pytest.raises(ValidationError) as excinfo:
                await client.read_memory(start, end)
            await asyncio.sleep(0.05)
            return excinfo.value.code, bytes(vice.received)

        error_code, received = _with_vice(body)
        assert error_code == code
        assert received == b""

    def test_write_memory(self):
        """Test that written bytes land in VICE memory."""

        async def body(client, vice):
            await client.write_memory(0xD020, [0x00, 0x06])
            return bytes(vice.memory[0xD020:0xD022])

        assert _with_vice(body) == b"\x00\x06"

    def test_v1_write_is_chunked(self):
        """Test that the legacy layout splits writes over 256 bytes."""

        async def body(client, vice):
            payload = bytes(range(256)) + b"\xff" * 44
            await client.write_memory(0x2000, payload)
            return payload, bytes(vice.memory[0x2000:0x2000 + 300]), vice.requests_for("memory_set")

        payload, written, requests = _with_vice(body, profile=PROFILE_V1)
        assert written == payload
        assert len(requests) == 2

    @pytest.mark.parametrize(
        "address,data,code",
        [
            (0x1000, b"", "INVALID_DATA"),
            (0xFFFF, b"\x01\x02", "INVALID_RANGE"),
            (0x10000, b"\x01", "INVALID_ADDRESS"),
            (0x1000, [256], "INVALID_DATA"),
        ],
    )
    def test_invalid_write(self, address, data, code):
        """Test that bad writes are rejected locally."""

        async def body(client, vice):
            with pytest.raises(ValidationError) as excinfo:
                await client.write_memory(address, data)
            return excinfo.value.code, vice.requests_for("memory_set")

        error_code, requests = _with_vice(body)
        assert error_code == code
        assert requests == []


class TestRegisters:
    """Tests for register access."""

    def test_registers_from_async_event(self):
        """Test that register info tagged with the async id resolves the call."""

        async def body(client, vice):
            vice.registers.update({"A": 0x41, "PC": 0xC000, "SP": 0xFD})
            return await client.get_registers()

        registers = _with_vice(body)
        assert registers.a == 0x41
        assert registers.pc == 0xC000
        assert registers.sp == 0xFD
        assert str(registers.flags) == "nv-bdiZc"

    def test_registers_direct_reply_v1(self):
        """Test register decoding with natural widths and id-matched replies."""

        async def body(client, vice):
            vice.registers.update({"X": 0x10, "PC": 0x0810})
            return await client.get_registers()

        registers = _with_vice(body, profile=PROFILE_V1, registers_async=False)
        assert registers.x == 0x10
        assert registers.pc == 0x0810

    def test_set_registers_body(self):
        """Test the encoded register set request."""

        async def body(client, vice):
            await client.set_registers({"PC": 0xC000, "a": 5})
            return vice.requests_for("registers_set")[0].body

        assert _with_vice(body) == (
            b"\x00\x02\x00" + b"\x03\x03\x00\xc0" + b"\x03\x00\x05\x00"
        )

    @pytest.mark.parametrize(
        "values",
        [{"Q": 1}, {"A": 256}, {"PC": 0x10000}, {}],
    )
    def test_set_registers_validation(self, values):
        """Test that unknown registers and oversized values are rejected."""

        async def body(client, vice):
            with pytest.raises(ValidationError) as excinfo:
                await client.set_registers(values)
            return excinfo.value.code

        assert _with_vice(body) == "INVALID_REGISTER"


class TestExecution:
    """Tests for execution control and run state."""

    def test_step_marks_stopped(self):
        """Test that stepping records the machine as stopped."""

        async def body(client, vice):
            await client.step(3, step_over=True)
            request = vice.requests_for("step")[0]
            return client.get_state().running, request.body

        running, request_body = _with_vice(body)
        assert not running
        assert request_body == b"\x01\x03\x00"

    @pytest.mark.parametrize("count", [0, 0x10000])
    def test_step_count_validation(self, count):
        """Test that out-of-range step counts are rejected."""

        async def body(client, vice):
            with pytest.raises(ValidationError):
                await client.step(count)
            return vice.requests_for("step")

        assert _with_vice(body) == []

    def test_advance_keeps_run_state(self):
        """Test that advancing instructions leaves the tracked run state alone."""

        async def body(client, vice):
            await client.advance_instructions(5)
            return client.get_state().running, vice.requests_for("advance_instructions")

        running, requests = _with_vice(body, profile=PROFILE_V1)
        assert running
        assert requests[0].body == b"\x00\x05\x00"

    def test_run_state_events(self):
        """Test that stopped and resumed events update the run state."""

        async def body(client, vice):
            seen = []
            client.connection.on_run_state_changed = seen.append
            vice.push_event("stopped", b"\x00\xc0")
            await _until(lambda: seen == [False])
            stopped = client.get_state().running
            vice.push_event("resumed", b"\x00\xc0")
            await _until(lambda: seen == [False, True])
            return stopped, client.get_state().running

        assert _with_vice(body) == (False, True)

    def test_jam_event_stops(self):
        """Test that a CPU jam is treated as execution stopping."""

        async def body(client, vice):
            vice.push_event("jam", b"\x00\xc0")
            await _until(lambda: not client.get_state().running)
            return client.get_state().running

        assert _with_vice(body) is False

    def test_continue_and_reset(self):
        """Test continue and hard reset commands."""

        async def body(client, vice):
            await client.step()
            await client.continue_execution()
            running = client.get_state().running
            await client.reset(hard=True)
            return running, vice.requests_for("reset")[0].body

        running, reset_body = _with_vice(body)
        assert running
        assert reset_body == b"\x01"


class TestCheckpoints:
    """Tests for breakpoints and watchpoints."""

    def test_watchpoint_then_delete_leaves_map_empty(self):
        """Test that deleting a fresh watchpoint removes it locally."""

        async def body(client, vice):
            checkpoint_id = await client.set_watchpoint(0xD020, 0xD020, "store")
            tracked = client.list_watchpoints()
            await client.delete_breakpoint(checkpoint_id)
            return tracked, client.list_checkpoints(), vice.checkpoints

        tracked, remaining, peer_checkpoints = _with_vice(body)
        assert len(tracked) == 1
        assert tracked[0].kind == "store"
        assert remaining == []
        assert peer_checkpoints == {}

    def test_checkpoint_set_body(self):
        """Test the encoded checkpoint set request for a watchpoint on both."""

        async def body(client, vice):
            await client.set_watchpoint(0xD000, 0xD02E, "both", temporary=True)
            return vice.requests_for("checkpoint_set")[0].body

        assert _with_vice(body) == b"\x00\xd0\x2e\xd0\x01\x01\x06\x01"

    def test_checkpoint_ack_without_body(self):
        """Test that a bare acknowledgement to checkpoint set is classified."""

        async def body(client, vice):
            vice.overrides["checkpoint_set"] = lambda vice, frame: [
                vice.response("checkpoint_info", frame.request_id)
            ]
            with pytest.raises(ProtocolError) as excinfo:
                await client.set_breakpoint(0xC000)
            return excinfo.value.code, client.list_checkpoints()

        code, tracked = _with_vice(body)
        assert code == "INVALID_RESPONSE"
        assert tracked == []

    def test_delete_unknown_id_is_sent(self):
        """Test that deleting an untracked id still reaches VICE."""

        async def body(client, vice):
            await client.delete_breakpoint(99)
            return vice.requests_for("checkpoint_delete")

        requests = _with_vice(body)
        assert len(requests) == 1
        assert requests[0].body == (99).to_bytes(4, "little")

    def test_delete_error_from_vice(self):
        """Test that a peer error status is classified."""

        async def body(client, vice):
            vice.overrides["checkpoint_delete"] = lambda vice, frame: [
                vice.response("checkpoint_delete", frame.request_id, status=0x01)
            ]
            with pytest.raises(CommandError) as excinfo:
                await client.delete_breakpoint(7)
            return excinfo.value

        error = _with_vice(body)
        assert error.code == "OBJECT_MISSING"
        assert error.suggestion

    def test_breakpoint_lists(self):
        """Test that breakpoints and watchpoints are listed separately."""

        async def body(client, vice):
            await client.set_breakpoint(0xC000)
            await client.set_watchpoint(0x0400, 0x07E7, "load")
            return client.list_breakpoints(), client.list_watchpoints()

        breakpoints, watchpoints = _with_vice(body)
        assert [bp.start_address for bp in breakpoints] == [0xC000]
        assert [wp.end_address for wp in watchpoints] == [0x07E7]

    def test_invalid_watchpoint_kind(self):
        """Test that an unknown watchpoint type is rejected."""

        async def body(client, vice):
            with pytest.raises(ValidationError) as excinfo:
                await client.set_watchpoint(0x0400, kind="exec")
            return excinfo.value.code

        assert _with_vice(body) == "INVALID_CHECKPOINT_TYPE"

    def test_toggle_updates_tracking(self):
        """Test that toggling a checkpoint updates the local copy."""

        async def body(client, vice):
            checkpoint_id = await client.set_breakpoint(0xC000)
            await client.toggle_checkpoint(checkpoint_id, False)
            return client.list_breakpoints()[0].enabled

        assert _with_vice(body) is False

    def test_temporary_checkpoint_evicted_on_hit(self):
        """Test that a hit on a temporary checkpoint drops it from tracking."""

        async def body(client, vice):
            checkpoint_id = await client.run_to(0xC000)
            running = client.get_state().running
            vice.push_event("checkpoint_info", vice.checkpoint_body(checkpoint_id, hit=True))
            vice.push_event("stopped", b"\x00\xc0")
            await _until(
                lambda: not client.list_checkpoints() and not client.get_state().running
            )
            return running, client.list_checkpoints()

        assert _with_vice(body) == (True, [])

    def test_permanent_checkpoint_kept_on_hit(self):
        """Test that a hit on a normal breakpoint keeps it tracked."""

        async def body(client, vice):
            checkpoint_id = await client.set_breakpoint(0xC000)
            vice.push_event("checkpoint_info", vice.checkpoint_body(checkpoint_id, hit=True))
            vice.push_event("stopped", b"\x00\xc0")
            await _until(lambda: not client.get_state().running)
            return client.list_breakpoints()

        assert len(_with_vice(body)) == 1


class TestDisplayAndFiles:
    """Tests for display capture, palette and file commands."""

    def test_get_display(self):
        """Test that display info and pixels are decoded."""

        async def body(client, vice):
            vice.display = (
                {
                    "fields_length": 17,
                    "width": 4,
                    "height": 1,
                    "offset_x": 0,
                    "offset_y": 0,
                    "inner_width": 4,
                    "inner_height": 1,
                    "bits_per_pixel": 8,
                },
                b"\x00\x01\x0e\x06",
            )
            return await client.get_display()

        display = _with_vice(body)
        assert (display.width, display.height, display.bits_per_pixel) == (4, 1, 8)
        assert display.pixels == b"\x00\x01\x0e\x06"

    def test_get_palette(self):
        """Test that palette entries are decoded."""

        async def body(client, vice):
            vice.palette = [(0, 0, 0), (255, 255, 255), (0x88, 0x39, 0x32)]
            return await client.get_palette()

        palette = _with_vice(body)
        assert len(palette) == 3
        assert (palette[2].r, palette[2].g, palette[2].b) == (0x88, 0x39, 0x32)
        assert palette[1].luminance == pytest.approx(255.0)

    def test_save_snapshot_body(self):
        """Test the encoded snapshot dump request."""

        async def body(client, vice):
            await client.save_snapshot("debug.vsf")
            return vice.requests_for("dump")[0].body

        assert _with_vice(body) == b"\x00\x00\x09debug.vsf"

    def test_autostart_body(self):
        """Test the encoded autostart request."""

        async def body(client, vice):
            await client.autostart("game.d64", file_index=2, run=True)
            return vice.requests_for("autostart")[0].body

        assert _with_vice(body) == b"\x01\x02\x00\x08game.d64"

    def test_filename_too_long(self):
        """Test that filenames over 255 bytes are rejected locally."""

        async def body(client, vice):
            with pytest.raises(ValidationError) as excinfo:
                await client.load_snapshot("x" * 256)
            return excinfo.value.code, vice.requests_for("undump")

        code, requests = _with_vice(body)
        assert code == "INVALID_FILENAME"
        assert requests == []
