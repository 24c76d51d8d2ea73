"""
High-level client for the VICE binary monitor.

Every operation validates its arguments against the C64's 16-bit address
space before anything is sent, builds the command body from the active
protocol profile and decodes the response into a typed result.
"""

import logging
from typing import Mapping, Optional, Union

from .config import (
    ADDRESS_MAX,
    CONNECT_TIMEOUT,
    MEMORY_SIZE,
    RESPONSE_TIMEOUT,
    VICE_API_VERSION,
    VICE_HOST,
    VICE_PORT,
)
from .connection import ViceConnection
from .errors import ValidationError, invalid_address, invalid_range, invalid_response
from .protocol import (
    CHECKPOINT_OPERATIONS,
    MEMSPACE_MAIN,
    REGISTER_IDS,
    REGISTER_NAMES,
    REGISTER_WIDTHS,
    BodyLayout,
    ProtocolProfile,
    get_profile,
)
from .types import (
    Checkpoint,
    CheckpointHit,
    ConnectionState,
    DisplayBuffer,
    PaletteColor,
    Registers,
)

logger = logging.getLogger(__name__)

WATCHPOINT_KINDS = ("load", "store", "both")
FILENAME_MAX = 255


def _check_address(address: int, label: str = "Address") -> None:
    if not 0 <= address <= ADDRESS_MAX:
        raise invalid_address(address, label)


def _check_range(start: int, end: int) -> None:
    _check_address(start, "Start address")
    _check_address(end, "End address")
    if start > end:
        raise invalid_range(start, end)


def _encode_filename(filename: str) -> bytes:
    encoded = filename.encode("utf-8")
    if not encoded:
        raise ValidationError("INVALID_FILENAME", "Filename must not be empty", "Provide a file path")
    if len(encoded) > FILENAME_MAX:
        raise ValidationError(
            "INVALID_FILENAME",
            f"Filename is {len(encoded)} bytes long; the limit is {FILENAME_MAX}",
            "Use a shorter path, or a path relative to VICE's working directory",
        )
    return encoded


def _decode(layout: BodyLayout, body: bytes, what: str, offset: int = 0) -> dict[str, int]:
    if len(body) < offset + layout.size:
        raise invalid_response(what, offset + layout.size, len(body))
    return layout.unpack_from(body, offset)


class ViceClient:
    """
    Async client for VICE debugging operations.

    The connection is injected so that independent sessions (and tests) can
    each own their own socket; by default one is built from the configured
    API version.
    """

    def __init__(
        self,
        connection: Optional[ViceConnection] = None,
        profile: Optional[ProtocolProfile] = None,
    ):
        if connection is None:
            connection = ViceConnection(
                profile or get_profile(VICE_API_VERSION),
                connect_timeout=CONNECT_TIMEOUT,
                response_timeout=RESPONSE_TIMEOUT,
            )
        self._connection = connection
        self._profile = connection.profile
        # VICE has no reliable way to enumerate checkpoints, so track them here
        self._checkpoints: dict[int, Checkpoint] = {}
        connection.on_checkpoint_hit = self._handle_checkpoint_hit

    @property
    def connection(self) -> ViceConnection:
        return self._connection

    @property
    def profile(self) -> ProtocolProfile:
        return self._profile

    # Connection lifecycle

    def get_state(self) -> ConnectionState:
        return self._connection.get_state()

    async def connect(self, host: str = VICE_HOST, port: int = VICE_PORT) -> None:
        """Connect to VICE; checkpoints tracked for a previous session are dropped."""
        await self._connection.connect(host, port)
        self._checkpoints.clear()

    async def disconnect(self) -> None:
        await self._connection.disconnect()

    def _handle_checkpoint_hit(self, hit: CheckpointHit) -> None:
        checkpoint = self._checkpoints.get(hit.id)
        if checkpoint is not None and checkpoint.temporary:
            logger.debug("Temporary checkpoint %d consumed by VICE", hit.id)
            del self._checkpoints[hit.id]

    # Memory

    async def read_memory(
        self, start_address: int, end_address: int, memspace: int = MEMSPACE_MAIN
    ) -> bytes:
        """
        Read an inclusive address range.

        Args:
            start_address: First address (0x0000-0xFFFF)
            end_address: Last address, inclusive (0x0000-0xFFFF)
            memspace: Memory space (0 = main CPU)

        Returns:
            The bytes read, end_address - start_address + 1 of them
        """
        _check_range(start_address, end_address)

        body = self._profile.memory_get.pack(
            side_effects=0, start=start_address, end=end_address, memspace=memspace, bank=0
        )
        response = await self._connection.send("memory_get", body, expect="memory_get")

        header = self._profile.memory_response_header
        _decode(header, response.body, "memory")
        # The 16-bit length field wraps to 0 for a full 64K read, so trust the range
        expected = end_address - start_address + 1
        data = response.body[header.size : header.size + expected]
        if len(data) < expected:
            raise invalid_response("memory", header.size + expected, len(response.body))
        return data

    async def write_memory(
        self,
        address: int,
        data: Union[bytes, bytearray, list[int]],
        memspace: int = MEMSPACE_MAIN,
    ) -> None:
        """
        Write bytes starting at an address.

        Args:
            address: Start address (0x0000-0xFFFF)
            data: Bytes to write; at least one, must not run past 0xFFFF
            memspace: Memory space (0 = main CPU)
        """
        _check_address(address)
        try:
            payload = bytes(data)
        except ValueError:
            raise ValidationError(
                "INVALID_DATA", "Byte values must be in the range 0-255", "Provide values 0-255"
            )
        if not payload:
            raise ValidationError(
                "INVALID_DATA", "Cannot write empty data", "Provide at least one byte to write"
            )
        if address + len(payload) > MEMORY_SIZE:
            raise ValidationError(
                "INVALID_RANGE",
                f"Write would extend past end of memory (0x{address:x} + {len(payload)} bytes)",
                "Reduce data length or use a lower start address",
            )

        layout = self._profile.memory_set
        # A one-byte length field caps each write at 256 bytes
        chunk_size = 256 if "length_minus_one" in layout.fields else len(payload)
        for offset in range(0, len(payload), chunk_size):
            chunk = payload[offset : offset + chunk_size]
            start = address + offset
            header = layout.pack(
                side_effects=0,
                start=start,
                end=start + len(chunk) - 1,
                memspace=memspace,
                bank=0,
                length_minus_one=len(chunk) - 1,
            )
            await self._connection.send("memory_set", header + chunk)

    # Registers

    async def get_registers(self, memspace: int = MEMSPACE_MAIN) -> Registers:
        """Read CPU registers; VICE may answer as an async RegisterInfo event."""
        body = self._profile.register_get.pack(memspace=memspace)
        response = await self._connection.send("registers_get", body, expect="register_info")
        return self._decode_registers(response.body)

    def _decode_registers(self, body: bytes) -> Registers:
        profile = self._profile
        count = _decode(profile.register_info_header, body, "register")["count"]
        offset = profile.register_info_header.size
        item = profile.register_item
        values = {}

        for _ in range(count):
            if offset + item.size > len(body):
                break
            entry = item.unpack_from(body, offset)
            offset += item.size
            size = entry["size"] - 1 if profile.register_size_counts_id else entry["size"]
            value = int.from_bytes(body[offset : offset + size], "little")
            offset += size
            values[REGISTER_NAMES.get(entry["id"], f"R{entry['id']}")] = value

        return Registers(values)

    async def set_registers(
        self, values: Mapping[str, int], memspace: int = MEMSPACE_MAIN
    ) -> None:
        """
        Set one or more registers by name (A, X, Y, PC, SP, FL).

        Raises:
            ValidationError: Unknown register name or value out of range
        """
        if not values:
            raise ValidationError(
                "INVALID_REGISTER", "No registers given", "Provide at least one register value"
            )

        profile = self._profile
        items = b""
        for name, value in values.items():
            reg_name = name.upper()
            if reg_name not in REGISTER_IDS:
                raise ValidationError(
                    "INVALID_REGISTER",
                    f"Unknown register: {name}",
                    f"Valid registers: {', '.join(REGISTER_IDS)}",
                )
            natural_width = REGISTER_WIDTHS.get(reg_name, 1)
            if not 0 <= value < (1 << (8 * natural_width)):
                raise ValidationError(
                    "INVALID_REGISTER",
                    f"Value {value} does not fit in register {reg_name}",
                    f"{reg_name} is {8 * natural_width}-bit",
                )
            width = profile.register_value_width or natural_width
            size = width + 1 if profile.register_size_counts_id else width
            items += profile.register_item.pack(id=REGISTER_IDS[reg_name], size=size)
            items += value.to_bytes(width, "little")

        header = profile.register_set_header.pack(memspace=memspace, count=len(values))
        await self._connection.send("registers_set", header + items)

    # Execution control

    async def step(self, count: int = 1, step_over: bool = False) -> None:
        """Execute count instructions and stop."""
        if not 1 <= count <= 0xFFFF:
            raise ValidationError(
                "INVALID_COUNT",
                f"Step count {count} is out of range",
                "Step count must be between 1 and 65535",
            )
        body = self._profile.step.pack(step_over=int(step_over), count=count)
        await self._connection.send("step", body)
        self._connection.set_running(False)

    async def advance_instructions(self, count: int, step_over: bool = False) -> None:
        """Advance count instructions without touching the tracked run state."""
        if not 1 <= count <= 0xFFFF:
            raise ValidationError(
                "INVALID_COUNT",
                f"Instruction count {count} is out of range",
                "Instruction count must be between 1 and 65535",
            )
        body = self._profile.step.pack(step_over=int(step_over), count=count)
        await self._connection.send("advance_instructions", body)

    async def continue_execution(self) -> None:
        """Resume execution."""
        await self._connection.send("continue")
        self._connection.set_running(True)

    async def reset(self, hard: bool = False) -> None:
        body = self._profile.reset.pack(mode=int(hard))
        await self._connection.send("reset", body)

    async def run_to(self, address: int) -> int:
        """
        Run until address is reached, via a temporary breakpoint.

        Returns:
            The id of the temporary breakpoint
        """
        checkpoint_id = await self.set_breakpoint(address, temporary=True)
        await self.continue_execution()
        return checkpoint_id

    # Checkpoints

    async def _set_checkpoint(
        self,
        start_address: int,
        end_address: int,
        kind: str,
        enabled: bool,
        stop: bool,
        temporary: bool,
    ) -> int:
        _check_range(start_address, end_address)

        body = self._profile.checkpoint_set.pack(
            start=start_address,
            end=end_address,
            stop=int(stop),
            enabled=int(enabled),
            operation=CHECKPOINT_OPERATIONS[kind],
            temporary=int(temporary),
        )
        response = await self._connection.send("checkpoint_set", body)
        checkpoint_id = _decode(self._profile.checkpoint_id, response.body, "checkpoint")["id"]

        self._checkpoints[checkpoint_id] = Checkpoint(
            id=checkpoint_id,
            start_address=start_address,
            end_address=end_address,
            enabled=enabled,
            temporary=temporary,
            kind=kind,
        )
        return checkpoint_id

    async def set_breakpoint(
        self,
        address: int,
        end_address: Optional[int] = None,
        enabled: bool = True,
        stop: bool = True,
        temporary: bool = False,
    ) -> int:
        """
        Set an execution breakpoint.

        Returns:
            The checkpoint id assigned by VICE
        """
        if end_address is None:
            end_address = address
        return await self._set_checkpoint(address, end_address, "exec", enabled, stop, temporary)

    async def set_watchpoint(
        self,
        start_address: int,
        end_address: Optional[int] = None,
        kind: str = "store",
        enabled: bool = True,
        stop: bool = True,
        temporary: bool = False,
    ) -> int:
        """
        Set a memory watchpoint.

        Args:
            start_address: First watched address
            end_address: Last watched address (default: start_address)
            kind: "load", "store" or "both"

        Returns:
            The checkpoint id assigned by VICE
        """
        if kind not in WATCHPOINT_KINDS:
            raise ValidationError(
                "INVALID_CHECKPOINT_TYPE",
                f"Unknown watchpoint type: {kind}",
                "Use 'load', 'store' or 'both'",
            )
        if end_address is None:
            end_address = start_address
        return await self._set_checkpoint(
            start_address, end_address, kind, enabled, stop, temporary
        )

    async def toggle_checkpoint(self, checkpoint_id: int, enabled: bool) -> None:
        body = self._profile.checkpoint_toggle.pack(id=checkpoint_id, enabled=int(enabled))
        await self._connection.send("checkpoint_toggle", body)

        checkpoint = self._checkpoints.get(checkpoint_id)
        if checkpoint is not None:
            checkpoint.enabled = enabled

    async def delete_breakpoint(self, checkpoint_id: int) -> None:
        """Delete a breakpoint or watchpoint. VICE is authoritative, so
        unknown ids are still sent."""
        body = self._profile.checkpoint_id.pack(id=checkpoint_id)
        await self._connection.send("checkpoint_delete", body)
        self._checkpoints.pop(checkpoint_id, None)

    def list_checkpoints(self) -> list[Checkpoint]:
        return list(self._checkpoints.values())

    def list_breakpoints(self) -> list[Checkpoint]:
        return [cp for cp in self._checkpoints.values() if cp.is_breakpoint]

    def list_watchpoints(self) -> list[Checkpoint]:
        return [cp for cp in self._checkpoints.values() if not cp.is_breakpoint]

    # Display

    async def get_display(self, use_vicii: bool = True) -> DisplayBuffer:
        """Capture the display as an 8-bit indexed pixel buffer."""
        body = self._profile.display_request.pack(use_vicii=int(use_vicii), format=0)
        response = await self._connection.send("display_get", body)

        layout = self._profile.display_info
        info = _decode(layout, response.body, "display")
        if "fields_length" in info:
            # Length of the fields that precede the pixel buffer
            pixels_start = 4 + info["fields_length"]
        else:
            pixels_start = layout.size
        pixels = response.body[pixels_start : pixels_start + info["buffer_length"]]

        return DisplayBuffer(
            width=info["width"],
            height=info["height"],
            bits_per_pixel=info["bits_per_pixel"],
            offset_x=info["offset_x"],
            offset_y=info["offset_y"],
            inner_width=info["inner_width"],
            inner_height=info["inner_height"],
            pixels=pixels,
        )

    async def get_palette(self, use_vicii: bool = True) -> list[PaletteColor]:
        body = self._profile.palette_request.pack(use_vicii=int(use_vicii))
        response = await self._connection.send("palette_get", body)

        header = self._profile.palette_header
        item = self._profile.palette_item
        count = _decode(header, response.body, "palette")["count"]
        offset = header.size
        colors = []
        for _ in range(count):
            if offset + item.size > len(response.body):
                break
            entry = item.unpack_from(response.body, offset)
            colors.append(PaletteColor(entry["red"], entry["green"], entry["blue"]))
            offset += 1 + entry["size"] if "size" in entry else item.size
        return colors

    # Snapshots and programs

    async def save_snapshot(
        self, filename: str, save_roms: bool = False, save_disks: bool = False
    ) -> None:
        encoded = _encode_filename(filename)
        header = self._profile.dump.pack(
            save_roms=int(save_roms), save_disks=int(save_disks), filename_length=len(encoded)
        )
        await self._connection.send("dump", header + encoded)

    async def load_snapshot(self, filename: str) -> None:
        encoded = _encode_filename(filename)
        header = self._profile.undump.pack(filename_length=len(encoded))
        await self._connection.send("undump", header + encoded)

    async def autostart(self, filename: str, file_index: int = 0, run: bool = True) -> None:
        """
        Load a program or disk image, optionally running it.

        Args:
            filename: PRG, D64, T64 or other image path on the VICE host
            file_index: File to load from a disk image (0 = first)
            run: Start the program after loading
        """
        encoded = _encode_filename(filename)
        if not 0 <= file_index <= 0xFFFF:
            raise ValidationError(
                "INVALID_COUNT", f"File index {file_index} is out of range", "Use 0-65535"
            )
        header = self._profile.autostart.pack(
            run=int(run), file_index=file_index, filename_length=len(encoded)
        )
        await self._connection.send("autostart", header + encoded)

    def __repr__(self) -> str:
        return f"<ViceClient {self._connection!r}>"
