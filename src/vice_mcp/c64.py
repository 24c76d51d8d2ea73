"""
C64 hardware constants and decoders.

Turns raw VIC-II, CIA and screen memory values into the structures a
debugger user thinks in: colour names, screen text, video addresses,
graphics modes and sprite visibility.
"""

from typing import Sequence, Union

ByteData = Union[bytes, bytearray, Sequence[int]]

C64_COLORS = (
    "black",
    "white",
    "red",
    "cyan",
    "purple",
    "green",
    "blue",
    "yellow",
    "orange",
    "brown",
    "light red",
    "dark gray",
    "gray",
    "light green",
    "light blue",
    "light gray",
)

SCREEN_COLUMNS = 40
SCREEN_ROWS = 25
SCREEN_SIZE = SCREEN_COLUMNS * SCREEN_ROWS

# Hardware addresses
VIC_BASE = 0xD000
VIC_REGISTER_COUNT = 0x2F
COLOR_RAM = 0xD800
CIA2_PORT_A = 0xDD00
SPRITE_POINTER_OFFSET = 0x3F8
SPRITE_DATA_SIZE = 64

SPRITE_VISIBLE_X_MIN = 24
SPRITE_VISIBLE_X_MAX = 343
SPRITE_VISIBLE_Y_MIN = 50
SPRITE_VISIBLE_Y_MAX = 249

# Screen codes 0-31 that are not letters
_SCREEN_SYMBOLS = {0: "@", 27: "[", 28: "£", 29: "]", 30: "^", 31: "<"}


def get_color_name(value: int) -> str:
    return C64_COLORS[value & 0x0F]


def get_color_info(value: int) -> dict:
    return {"value": value & 0x0F, "name": get_color_name(value)}


def screen_code_to_ascii(code: int) -> str:
    """
    Convert a screen code (not a PETSCII character code) to ASCII.

    Graphics characters become '#'; reverse-video codes (128-255) map to
    their non-reversed character.
    """
    code &= 0x7F
    if code in _SCREEN_SYMBOLS:
        return _SCREEN_SYMBOLS[code]
    if code <= 26:
        return chr(64 + code)
    if code <= 63:
        return chr(code)
    return "#"


def screen_to_text(screen_data: ByteData) -> list[str]:
    """Convert 1000 bytes of screen RAM to 25 lines, trailing spaces trimmed."""
    data = bytes(screen_data)
    lines = []
    for row in range(SCREEN_ROWS):
        row_data = data[row * SCREEN_COLUMNS : (row + 1) * SCREEN_COLUMNS]
        lines.append("".join(screen_code_to_ascii(code) for code in row_data).rstrip())
    return lines


def get_vic_bank(cia2_port_a: int) -> dict:
    """VIC bank from CIA2 port A; bits 0-1 select the bank, inverted."""
    bank = ~cia2_port_a & 0x03
    return {"bank": bank, "base_address": bank * 0x4000}


def get_video_addresses(d018: int, bank_base: int) -> dict:
    """Screen and character memory addresses from $D018 within a VIC bank."""
    screen_offset = ((d018 >> 4) & 0x0F) * 0x0400
    char_offset = ((d018 >> 1) & 0x07) * 0x0800
    return {
        "screen_address": bank_base + screen_offset,
        "char_address": bank_base + char_offset,
    }


def get_graphics_mode(d011: int, d016: int) -> dict:
    ecm = bool(d011 & 0x40)
    bmm = bool(d011 & 0x20)
    mcm = bool(d016 & 0x10)

    if not ecm and not bmm and not mcm:
        mode = "standard text"
    elif ecm and not bmm and not mcm:
        mode = "extended background color"
    elif not ecm and not bmm and mcm:
        mode = "multicolor text"
    elif not ecm and bmm and not mcm:
        mode = "standard bitmap"
    elif not ecm and bmm and mcm:
        mode = "multicolor bitmap"
    else:
        mode = "invalid (ECM + other modes)"

    return {
        "mode": mode,
        "bitmap": bmm,
        "multicolor": mcm,
        "extended_color": ecm,
    }


def is_sprite_visible(x: int, y: int, enabled: bool) -> dict:
    """
    Check whether a sprite can appear in the visible screen area.

    Returns:
        {"visible": bool} plus a "reason" when not visible
    """
    if not enabled:
        return {"visible": False, "reason": "Sprite is disabled ($D015)"}
    if not SPRITE_VISIBLE_X_MIN <= x <= SPRITE_VISIBLE_X_MAX:
        return {
            "visible": False,
            "reason": f"X position {x} is outside visible range "
            f"({SPRITE_VISIBLE_X_MIN}-{SPRITE_VISIBLE_X_MAX})",
        }
    if not SPRITE_VISIBLE_Y_MIN <= y <= SPRITE_VISIBLE_Y_MAX:
        return {
            "visible": False,
            "reason": f"Y position {y} is outside visible range "
            f"({SPRITE_VISIBLE_Y_MIN}-{SPRITE_VISIBLE_Y_MAX})",
        }
    return {"visible": True}


def validate_sprite_data_address(address: int) -> dict:
    """
    Check where a sprite's 64-byte data block lands in memory.

    The VIC-II sees character ROM instead of RAM at $1000-$1FFF in banks 0
    and 2, so sprite data there shows ROM glyphs. Data overlapping the
    screen or zero page usually means a wrong sprite pointer.

    Returns:
        {"region", "severity" ("ok" | "warning" | "error"), "warning"?}
    """
    region = describe_address(address) or "RAM"
    bank = address // 0x4000
    offset = address & 0x3FFF
    end = address + SPRITE_DATA_SIZE - 1

    if bank in (0, 2) and 0x1000 <= offset < 0x2000:
        return {
            "region": "Character ROM (VIC view)",
            "severity": "error",
            "warning": f"VIC bank {bank} sees character ROM at this address; "
            "sprite will show ROM data instead of RAM",
        }
    if address < 0x0200:
        return {
            "region": region,
            "severity": "error",
            "warning": "Sprite data overlaps zero page or stack",
        }
    if address < 0x0800 and end >= 0x0400:
        return {
            "region": region,
            "severity": "warning",
            "warning": "Sprite data overlaps default screen RAM",
        }
    if 0xD000 <= address < 0xE000:
        return {
            "region": region,
            "severity": "warning",
            "warning": "Sprite data is under the I/O area; the CPU cannot "
            "write it while I/O is banked in",
        }
    return {"region": region, "severity": "ok"}


def describe_address(address: int) -> str:
    """Name the memory region an address falls in, or "" if unremarkable."""
    if address < 0x0100:
        return "Zero page"
    if address < 0x0200:
        return "Stack"
    if 0x0400 <= address < 0x0800:
        return "Default screen RAM"
    if 0x0800 <= address < 0x1000:
        return "Default char ROM shadow"
    if 0xA000 <= address < 0xC000:
        return "BASIC ROM / RAM"
    if 0xD000 <= address < 0xD400:
        return "VIC-II registers"
    if 0xD400 <= address < 0xD800:
        return "SID registers"
    if 0xD800 <= address < 0xDC00:
        return "Color RAM"
    if 0xDC00 <= address < 0xDD00:
        return "CIA1 registers"
    if 0xDD00 <= address < 0xDE00:
        return "CIA2 registers"
    if address >= 0xE000:
        return "KERNAL ROM / RAM"
    return ""


def format_address(address: int) -> dict:
    """Address as a {value, hex} pair, e.g. {"value": 1024, "hex": "$0400"}."""
    return {"value": address, "hex": f"${address:04x}"}


def format_byte(value: int) -> dict:
    return {"value": value, "hex": f"${value:02x}"}
