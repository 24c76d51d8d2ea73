"""
Wire-format descriptors for the VICE binary monitor protocol.

VICE has shipped several incompatible layouts of the same protocol: the
request-id width, the command/response code table and the shape of several
command bodies all changed between releases. Rather than hardcoding one of
them, everything that varies lives in a ProtocolProfile selected at startup
by the configured API version.
"""

import struct
from dataclasses import dataclass, field
from typing import Optional

STX = 0x02

# START(1) + VERSION(1) + BODY_LENGTH(4)
FRAME_PREFIX_SIZE = 6


@dataclass(frozen=True)
class FrameLayout:
    """Ordered header fields that follow START | VERSION | BODY_LENGTH.

    Field names are ``kind``, ``status`` and ``request_id``; each is stored
    little-endian with the given width in bytes.
    """

    fields: tuple[tuple[str, int], ...]

    @property
    def header_size(self) -> int:
        return FRAME_PREFIX_SIZE + sum(width for _, width in self.fields)

    def width_of(self, name: str) -> int:
        for field_name, width in self.fields:
            if field_name == name:
                return width
        raise KeyError(name)


@dataclass(frozen=True)
class BodyLayout:
    """A fixed-shape command or response body described as a struct format."""

    fmt: str
    fields: tuple[str, ...] = ()

    @property
    def size(self) -> int:
        return struct.calcsize(self.fmt)

    def pack(self, **values: int) -> bytes:
        """Pack the fields this layout names; missing values default to 0."""
        return struct.pack(self.fmt, *(values.get(name, 0) for name in self.fields))

    def unpack_from(self, buffer: bytes, offset: int = 0) -> dict[str, int]:
        return dict(zip(self.fields, struct.unpack_from(self.fmt, buffer, offset)))


@dataclass(frozen=True)
class ProtocolProfile:
    """Everything about the wire protocol that differs between API versions."""

    version: int
    request_layout: FrameLayout
    response_layout: FrameLayout
    commands: dict[str, int]
    responses: dict[str, int]

    memory_get: BodyLayout
    memory_set: BodyLayout
    register_set_header: BodyLayout
    register_item: BodyLayout
    display_info: BodyLayout
    palette_request: BodyLayout
    palette_item: BodyLayout
    dump: BodyLayout

    # Register items: whether the size byte also counts the id byte, and the
    # fixed value width (None means each register uses its natural width).
    register_size_counts_id: bool = False
    register_value_width: Optional[int] = None

    memory_response_header: BodyLayout = field(default=BodyLayout("<H", ("length",)))
    register_get: BodyLayout = field(default=BodyLayout("<B", ("memspace",)))
    register_info_header: BodyLayout = field(default=BodyLayout("<H", ("count",)))
    checkpoint_set: BodyLayout = field(
        default=BodyLayout(
            "<HHBBBB", ("start", "end", "stop", "enabled", "operation", "temporary")
        )
    )
    checkpoint_info: BodyLayout = field(
        default=BodyLayout(
            "<IBHHBBBB",
            ("id", "hit", "start", "end", "stop", "enabled", "operation", "temporary"),
        )
    )
    checkpoint_id: BodyLayout = field(default=BodyLayout("<I", ("id",)))
    checkpoint_toggle: BodyLayout = field(default=BodyLayout("<IB", ("id", "enabled")))
    step: BodyLayout = field(default=BodyLayout("<BH", ("step_over", "count")))
    reset: BodyLayout = field(default=BodyLayout("<B", ("mode",)))
    display_request: BodyLayout = field(default=BodyLayout("<BB", ("use_vicii", "format")))
    palette_header: BodyLayout = field(default=BodyLayout("<H", ("count",)))
    undump: BodyLayout = field(default=BodyLayout("<B", ("filename_length",)))
    autostart: BodyLayout = field(
        default=BodyLayout("<BHB", ("run", "file_index", "filename_length"))
    )

    @property
    def async_request_id(self) -> int:
        """Sentinel request id marking unsolicited frames (all bits set)."""
        return (1 << (8 * self.response_layout.width_of("request_id"))) - 1

    @property
    def request_id_space(self) -> int:
        return 1 << (8 * self.request_layout.width_of("request_id"))

    @property
    def stopped_kinds(self) -> frozenset[int]:
        return frozenset(
            self.responses[name] for name in ("stopped", "jam") if name in self.responses
        )

    @property
    def resumed_kinds(self) -> frozenset[int]:
        return frozenset([self.responses["resumed"]])


# Checkpoint operation mask
CHECKPOINT_OP_EXEC = 0x01
CHECKPOINT_OP_LOAD = 0x02
CHECKPOINT_OP_STORE = 0x04

CHECKPOINT_OPERATIONS = {
    "exec": CHECKPOINT_OP_EXEC,
    "load": CHECKPOINT_OP_LOAD,
    "store": CHECKPOINT_OP_STORE,
    "both": CHECKPOINT_OP_LOAD | CHECKPOINT_OP_STORE,
}

# Memory spaces
MEMSPACE_MAIN = 0
MEMSPACE_DRIVE8 = 1
MEMSPACE_DRIVE9 = 2
MEMSPACE_DRIVE10 = 3
MEMSPACE_DRIVE11 = 4

# 6510 register ids as reported by VICE
REGISTER_NAMES = {
    0x00: "A",
    0x01: "X",
    0x02: "Y",
    0x03: "PC",
    0x04: "SP",
    0x05: "FL",
    0x35: "LIN",
    0x36: "CYC",
    0x37: "00",
    0x38: "01",
}
REGISTER_IDS = {name: reg_id for reg_id, name in REGISTER_NAMES.items()}
REGISTER_WIDTHS = {"PC": 2, "LIN": 2, "CYC": 2}

# Processor status flag bits
FLAG_NEGATIVE = 0x80
FLAG_OVERFLOW = 0x40
FLAG_BREAK = 0x10
FLAG_DECIMAL = 0x08
FLAG_INTERRUPT = 0x04
FLAG_ZERO = 0x02
FLAG_CARRY = 0x01


# API v1: the layout the first releases of this bridge spoke.
PROFILE_V1 = ProtocolProfile(
    version=0x01,
    request_layout=FrameLayout((("request_id", 1), ("kind", 1))),
    response_layout=FrameLayout((("kind", 1), ("status", 1), ("request_id", 1))),
    commands={
        "memory_get": 0x01,
        "memory_set": 0x02,
        "checkpoint_set": 0x11,
        "checkpoint_get": 0x12,
        "checkpoint_delete": 0x13,
        "checkpoint_list": 0x14,
        "checkpoint_toggle": 0x15,
        "registers_get": 0x22,
        "registers_set": 0x23,
        "continue": 0x31,
        "step": 0x32,
        "dump": 0x41,
        "undump": 0x42,
        "reset": 0x43,
        "resource_get": 0x51,
        "resource_set": 0x52,
        "exit": 0x71,
        "keyboard_feed": 0x72,
        "advance_instructions": 0x73,
        "display_get": 0x84,
        "palette_get": 0x91,
        "autostart": 0xDD,
    },
    responses={
        "invalid": 0x00,
        "memory_get": 0x01,
        "memory_set": 0x02,
        "checkpoint_info": 0x11,
        "register_info": 0x31,
        "dump": 0x41,
        "undump": 0x42,
        "resource_get": 0x51,
        "resource_set": 0x52,
        "stopped": 0x62,
        "resumed": 0x63,
    },
    memory_get=BodyLayout("<BHBH", ("side_effects", "start", "memspace", "end")),
    memory_set=BodyLayout("<BHBB", ("side_effects", "start", "memspace", "length_minus_one")),
    register_set_header=BodyLayout("<BH", ("memspace", "count")),
    register_item=BodyLayout("<BB", ("id", "size")),
    display_info=BodyLayout(
        "<IIIBIIII",
        (
            "buffer_length",
            "width",
            "height",
            "bits_per_pixel",
            "offset_x",
            "offset_y",
            "inner_width",
            "inner_height",
        ),
    ),
    palette_request=BodyLayout("<"),
    palette_item=BodyLayout("<BBB", ("red", "green", "blue")),
    dump=BodyLayout("<B", ("filename_length",)),
)

# API v2: VICE 3.5 and later.
PROFILE_V2 = ProtocolProfile(
    version=0x02,
    request_layout=FrameLayout((("request_id", 4), ("kind", 1))),
    response_layout=FrameLayout((("kind", 1), ("status", 1), ("request_id", 4))),
    commands={
        "memory_get": 0x01,
        "memory_set": 0x02,
        "checkpoint_get": 0x11,
        "checkpoint_set": 0x12,
        "checkpoint_delete": 0x13,
        "checkpoint_list": 0x14,
        "checkpoint_toggle": 0x15,
        "registers_get": 0x31,
        "registers_set": 0x32,
        "dump": 0x41,
        "undump": 0x42,
        "resource_get": 0x51,
        "resource_set": 0x52,
        "step": 0x71,
        "advance_instructions": 0x71,
        "keyboard_feed": 0x72,
        "execute_until_return": 0x73,
        "display_get": 0x84,
        "palette_get": 0x91,
        "continue": 0xAA,
        "exit": 0xAA,
        "reset": 0xCC,
        "autostart": 0xDD,
    },
    responses={
        "invalid": 0x00,
        "memory_get": 0x01,
        "memory_set": 0x02,
        "checkpoint_info": 0x11,
        "register_info": 0x31,
        "dump": 0x41,
        "undump": 0x42,
        "resource_get": 0x51,
        "resource_set": 0x52,
        "jam": 0x61,
        "stopped": 0x62,
        "resumed": 0x63,
    },
    memory_get=BodyLayout("<BHHBH", ("side_effects", "start", "end", "memspace", "bank")),
    memory_set=BodyLayout("<BHHBH", ("side_effects", "start", "end", "memspace", "bank")),
    register_set_header=BodyLayout("<BH", ("memspace", "count")),
    register_item=BodyLayout("<BB", ("size", "id")),
    register_size_counts_id=True,
    register_value_width=2,
    display_info=BodyLayout(
        "<IHHHHHHBI",
        (
            "fields_length",
            "width",
            "height",
            "offset_x",
            "offset_y",
            "inner_width",
            "inner_height",
            "bits_per_pixel",
            "buffer_length",
        ),
    ),
    palette_request=BodyLayout("<B", ("use_vicii",)),
    palette_item=BodyLayout("<BBBB", ("size", "red", "green", "blue")),
    dump=BodyLayout("<BBB", ("save_roms", "save_disks", "filename_length")),
)

PROFILES = {
    1: PROFILE_V1,
    2: PROFILE_V2,
}


def get_profile(version: int) -> ProtocolProfile:
    """
    Look up the protocol profile for a declared API version.

    Args:
        version: Binary monitor API version (1 or 2)

    Raises:
        ValueError: If no profile exists for the version
    """
    try:
        return PROFILES[int(version)]
    except (KeyError, ValueError):
        supported = ", ".join(str(v) for v in sorted(PROFILES))
        raise ValueError(
            f"Unsupported binary monitor API version: {version!r} (supported: {supported})"
        )
