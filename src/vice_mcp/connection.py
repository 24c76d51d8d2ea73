"""
Connection manager for the VICE binary monitor socket.

Owns the TCP stream, the frame decoder and the request correlator. Incoming
frames go through two stages: an event classifier that tracks run state and
checkpoint hits, then the correlator that hands responses to waiting calls.
A single frame may be both an event and the answer to a pending call.
"""

import asyncio
import dataclasses
import logging
from typing import Callable, Optional

from .config import CONNECT_TIMEOUT, RESPONSE_TIMEOUT, VICE_HOST, VICE_PORT
from .correlator import RequestCorrelator
from .errors import (
    BINARY_MONITOR_HINT,
    ConnectionError,
    connection_closed,
    not_connected,
)
from .framing import Frame, FrameDecoder, encode_frame
from .protocol import ProtocolProfile
from .types import CheckpointHit, ConnectionState

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536


class ViceConnection:
    """
    Async connection to one VICE binary monitor.

    Attributes:
        on_run_state_changed: Called with the new running flag when VICE
            reports that execution stopped or resumed.
        on_checkpoint_hit: Called with a CheckpointHit when VICE reports a
            checkpoint hit outside of any request.
    """

    def __init__(
        self,
        profile: ProtocolProfile,
        connect_timeout: float = CONNECT_TIMEOUT,
        response_timeout: float = RESPONSE_TIMEOUT,
    ):
        self._profile = profile
        self._connect_timeout = connect_timeout
        self._decoder = FrameDecoder(profile.response_layout)
        self._correlator = RequestCorrelator(
            profile.request_id_space, profile.async_request_id, response_timeout
        )
        self._state = ConnectionState()
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._read_task: Optional[asyncio.Task] = None
        self._connecting = False

        self.on_run_state_changed: Optional[Callable[[bool], None]] = None
        self.on_checkpoint_hit: Optional[Callable[[CheckpointHit], None]] = None

    @property
    def profile(self) -> ProtocolProfile:
        return self._profile

    @property
    def connected(self) -> bool:
        return self._writer is not None and self._state.connected

    @property
    def pending_count(self) -> int:
        return len(self._correlator)

    def get_state(self) -> ConnectionState:
        """Return a snapshot of the connection state."""
        return dataclasses.replace(self._state)

    def set_running(self, running: bool) -> None:
        self._state.running = running

    async def connect(self, host: str = VICE_HOST, port: int = VICE_PORT) -> None:
        """
        Open the socket to VICE.

        Raises:
            ConnectionError: ALREADY_CONNECTED, CONNECTION_TIMEOUT or
                CONNECTION_FAILED
        """
        if self._writer is not None or self._connecting:
            raise ConnectionError(
                "ALREADY_CONNECTED",
                "Already connected to VICE",
                "Use disconnect() first if you want to reconnect",
            )

        self._connecting = True
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port), timeout=self._connect_timeout
            )
        except asyncio.TimeoutError:
            raise ConnectionError(
                "CONNECTION_TIMEOUT",
                f"Connection to {host}:{port} timed out after {self._connect_timeout:g} seconds",
                BINARY_MONITOR_HINT,
            )
        except OSError as e:
            raise ConnectionError(
                "CONNECTION_FAILED",
                f"Failed to connect to {host}:{port}: {e}",
                BINARY_MONITOR_HINT,
            )
        finally:
            self._connecting = False

        self._decoder.reset()
        self._reader = reader
        self._writer = writer
        self._state = ConnectionState(connected=True, host=host, port=port, running=True)
        self._read_task = asyncio.create_task(self._read_loop(reader))
        logger.info("Connected to VICE at %s:%d (API v%d)", host, port, self._profile.version)

    async def disconnect(self) -> None:
        """Close the socket. Safe to call when not connected."""
        writer = self._writer
        if writer is None:
            return

        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug("Error while closing socket: %s", e)

        if self._read_task is not None:
            await self._read_task
        self._handle_close()

    async def send(
        self,
        command: str,
        body: bytes = b"",
        expect: Optional[str] = None,
    ) -> Frame:
        """
        Send a command and wait for its response frame.

        Args:
            command: Command name from the profile's code table
            body: Encoded command body
            expect: Response kind name VICE may answer with as an async
                event instead of a direct reply

        Raises:
            ConnectionError: Not connected, send failure, disconnect or timeout
            CommandError: VICE returned a non-OK status
        """
        if not self.connected:
            raise not_connected()

        code = self._profile.commands[command]
        expected_kind = self._profile.responses[expect] if expect else None
        call = self._correlator.register(expected_kind)
        packet = encode_frame(
            self._profile.request_layout, self._profile.version, code, call.request_id, body
        )
        logger.debug(
            "Sending %s (0x%02x) reqId=%d: %s", command, code, call.request_id, packet.hex()
        )

        try:
            self._writer.write(packet)
            await self._writer.drain()
        except OSError as e:
            self._correlator.reject(
                call.request_id,
                ConnectionError(
                    "SEND_FAILED",
                    f"Failed to send command: {e}",
                    "Connection may have been lost. Try reconnecting.",
                ),
            )

        return await call.future

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        try:
            while True:
                data = await reader.read(READ_CHUNK_SIZE)
                if not data:
                    logger.info("Connection closed by VICE")
                    break
                self._on_data(data)
        except OSError as e:
            logger.warning("Socket error in read loop: %s", e)
        finally:
            self._handle_close()

    def _handle_close(self) -> None:
        if self._writer is None:
            return
        writer = self._writer
        self._writer = None
        self._reader = None
        writer.close()

        self._state.connected = False
        self._decoder.reset()
        self._correlator.fail_all(connection_closed)

    def _on_data(self, data: bytes) -> None:
        logger.debug("Received %d bytes: %s", len(data), data.hex())
        for frame in self._decoder.feed(data):
            self._dispatch(frame)

    def _dispatch(self, frame: Frame) -> None:
        logger.debug(
            "Frame: type=0x%02x status=0x%02x reqId=%d len=%d",
            frame.kind,
            frame.status,
            frame.request_id,
            len(frame.body),
        )
        is_event = self._classify_event(frame)
        matched = self._correlator.handle_frame(frame)
        if not matched and not is_event:
            logger.debug(
                "Dropping unmatched frame: type=0x%02x reqId=%d", frame.kind, frame.request_id
            )

    def _classify_event(self, frame: Frame) -> bool:
        profile = self._profile
        if frame.kind in profile.stopped_kinds:
            self._notify_run_state(False)
            return True
        if frame.kind in profile.resumed_kinds:
            self._notify_run_state(True)
            return True
        if (
            frame.kind == profile.responses["checkpoint_info"]
            and frame.request_id == profile.async_request_id
        ):
            hit = self._decode_checkpoint_hit(frame.body)
            if hit is not None and hit.hit:
                self._notify_checkpoint_hit(hit)
                return True
        return False

    def _decode_checkpoint_hit(self, body: bytes) -> Optional[CheckpointHit]:
        layout = self._profile.checkpoint_info
        if len(body) < layout.size:
            logger.debug("Checkpoint info too short: %d bytes", len(body))
            return None
        info = layout.unpack_from(body)
        return CheckpointHit(
            id=info["id"],
            hit=bool(info["hit"]),
            start_address=info["start"],
            end_address=info["end"],
            temporary=bool(info["temporary"]),
        )

    def _notify_run_state(self, running: bool) -> None:
        self._state.running = running
        if self.on_run_state_changed is None:
            return
        try:
            self.on_run_state_changed(running)
        except Exception as e:
            logger.warning("Run state handler exception: %s", e)

    def _notify_checkpoint_hit(self, hit: CheckpointHit) -> None:
        logger.info("Checkpoint %d hit", hit.id)
        if self.on_checkpoint_hit is None:
            return
        try:
            self.on_checkpoint_hit(hit)
        except Exception as e:
            logger.warning("Checkpoint hit handler exception: %s", e)

    def __repr__(self) -> str:
        state = self._state
        status = f"{state.host}:{state.port}" if self.connected else "disconnected"
        return f"<ViceConnection API v{self._profile.version} {status}>"
