#!/usr/bin/env python3
"""
MCP Server for the VICE C64 emulator.
Exposes the binary monitor as debugging tools over the Model Context Protocol.
"""

import asyncio
import base64
import json
import logging
import sys
from collections import Counter
from typing import Any, Optional

from mcp.server import Server
from mcp.types import Tool, TextContent
import mcp.server.stdio

from . import __version__
from .c64 import (
    CIA2_PORT_A,
    COLOR_RAM,
    SCREEN_COLUMNS,
    SCREEN_ROWS,
    SCREEN_SIZE,
    SPRITE_POINTER_OFFSET,
    VIC_BASE,
    VIC_REGISTER_COUNT,
    format_address,
    format_byte,
    get_color_info,
    get_graphics_mode,
    get_vic_bank,
    get_video_addresses,
    is_sprite_visible,
    screen_to_text,
    validate_sprite_data_address,
)
from .client import WATCHPOINT_KINDS, ViceClient
from .config import ADDRESS_MAX, MEMORY_SIZE, VICE_HOST, VICE_PORT, configure_logging
from .disasm import disassemble, format_listing
from .errors import ValidationError, ViceError, invalid_address
from .types import Registers

logger = logging.getLogger(__name__)

DEFAULT_READ_LENGTH = 256
DEFAULT_DISASM_COUNT = 10
DEFAULT_RENDER_CHARSET = " .:-=+*#%@"

_ADDRESS_SCHEMA = {"type": "integer", "minimum": 0, "maximum": ADDRESS_MAX}


def _tool(name: str, description: str, properties: Optional[dict] = None, required=None) -> Tool:
    schema: dict[str, Any] = {"type": "object", "properties": properties or {}}
    if required:
        schema["required"] = list(required)
    return Tool(name=name, description=description, inputSchema=schema)


TOOLS = [
    _tool(
        "status",
        "Get current VICE connection and emulation state: whether connected, "
        "whether emulation is running or stopped, and host/port if connected.",
    ),
    _tool(
        "connect",
        "Connect to a running VICE instance via the binary monitor protocol. "
        "VICE must be started with: x64sc -binarymonitor "
        "-binarymonitoraddress ip4://127.0.0.1:6502",
        {
            "host": {"type": "string", "description": f"VICE host (default: {VICE_HOST})"},
            "port": {
                "type": "integer",
                "minimum": 1,
                "maximum": 65535,
                "description": f"Binary monitor port (default: {VICE_PORT})",
            },
        },
    ),
    _tool("disconnect", "Disconnect from VICE. Safe to call when not connected."),
    _tool(
        "readMemory",
        "Read memory from the C64 address space. Returns bytes plus hex dump and "
        "ASCII. Use readScreen or readSprites for interpreted output.",
        {
            "address": {**_ADDRESS_SCHEMA, "description": "Start address (0x0000-0xFFFF)"},
            "length": {
                "type": "integer",
                "minimum": 1,
                "maximum": MEMORY_SIZE,
                "description": f"Bytes to read (default: {DEFAULT_READ_LENGTH})",
            },
        },
        ["address"],
    ),
    _tool(
        "writeMemory",
        "Write bytes to C64 memory. Changes take effect immediately.",
        {
            "address": {**_ADDRESS_SCHEMA, "description": "Start address (0x0000-0xFFFF)"},
            "bytes": {
                "type": "array",
                "items": {"type": "integer", "minimum": 0, "maximum": 255},
                "minItems": 1,
                "description": "Bytes to write (0-255 each)",
            },
        },
        ["address", "bytes"],
    ),
    _tool(
        "getRegisters",
        "Get the 6510 CPU registers (A, X, Y, SP, PC) with decoded status flags.",
    ),
    _tool(
        "setRegisters",
        "Set one or more CPU registers, e.g. {\"registers\": {\"PC\": 49152, \"A\": 0}}.",
        {
            "registers": {
                "type": "object",
                "additionalProperties": {"type": "integer", "minimum": 0},
                "description": "Register name (A, X, Y, PC, SP, FL) to value",
            },
        },
        ["registers"],
    ),
    _tool("continue", "Resume execution after a breakpoint or step."),
    _tool(
        "step",
        "Execute one or more instructions, then stop.",
        {
            "count": {"type": "integer", "minimum": 1, "maximum": 0xFFFF},
            "stepOver": {"type": "boolean", "description": "Treat JSR as one instruction"},
        },
    ),
    _tool(
        "reset",
        "Reset the C64. Hard reset is a power cycle, soft reset is the reset button.",
        {"hard": {"type": "boolean", "description": "Hard reset (default: false)"}},
    ),
    _tool(
        "setBreakpoint",
        "Set an execution breakpoint. Returns a breakpoint id.",
        {
            "address": {**_ADDRESS_SCHEMA, "description": "Address to break at"},
            "enabled": {"type": "boolean", "description": "Active (default: true)"},
            "temporary": {"type": "boolean", "description": "Delete after hit (default: false)"},
        },
        ["address"],
    ),
    _tool(
        "deleteBreakpoint",
        "Delete a breakpoint or watchpoint by id.",
        {"breakpointId": {"type": "integer", "minimum": 0}},
        ["breakpointId"],
    ),
    _tool("listBreakpoints", "List breakpoints set in this session."),
    _tool(
        "toggleBreakpoint",
        "Enable or disable a breakpoint or watchpoint without deleting it.",
        {
            "breakpointId": {"type": "integer", "minimum": 0},
            "enabled": {"type": "boolean"},
        },
        ["breakpointId", "enabled"],
    ),
    _tool(
        "setWatchpoint",
        "Stop when memory in a range is read (load), written (store) or both.",
        {
            "startAddress": {**_ADDRESS_SCHEMA},
            "endAddress": {**_ADDRESS_SCHEMA, "description": "Default: startAddress"},
            "type": {"type": "string", "enum": list(WATCHPOINT_KINDS)},
            "enabled": {"type": "boolean"},
            "temporary": {"type": "boolean"},
        },
        ["startAddress", "type"],
    ),
    _tool("listWatchpoints", "List memory watchpoints set in this session."),
    _tool(
        "runTo",
        "Run until an address is reached, using a temporary breakpoint.",
        {"address": {**_ADDRESS_SCHEMA}},
        ["address"],
    ),
    _tool(
        "disassemble",
        "Disassemble 6502 code with branch targets and KERNAL labels.",
        {
            "address": {**_ADDRESS_SCHEMA, "description": "Start address (default: PC)"},
            "count": {"type": "integer", "minimum": 1, "maximum": 100},
        },
    ),
    _tool(
        "saveSnapshot",
        "Save the complete machine state to a VICE snapshot file.",
        {"filename": {"type": "string"}},
        ["filename"],
    ),
    _tool(
        "loadSnapshot",
        "Restore machine state from a VICE snapshot file.",
        {"filename": {"type": "string"}},
        ["filename"],
    ),
    _tool(
        "loadProgram",
        "Autostart a PRG, D64, T64 or other C64 image, optionally running it.",
        {
            "filename": {"type": "string"},
            "run": {"type": "boolean", "description": "Run after loading (default: true)"},
            "fileIndex": {"type": "integer", "minimum": 0, "maximum": 0xFFFF},
        },
        ["filename"],
    ),
    _tool(
        "readScreen",
        "Read screen RAM from its current location and return it as text.",
        {
            "format": {"type": "string", "enum": ["full", "summary"]},
            "includeRaw": {"type": "boolean"},
        },
    ),
    _tool(
        "readColorRam",
        "Read color RAM ($D800) with color names and a usage summary.",
        {"summary": {"type": "boolean", "description": "Omit the 25x40 grid"}},
    ),
    _tool(
        "readVicState",
        "Read VIC-II registers with interpreted colors, mode, addresses and sprites.",
    ),
    _tool(
        "readSprites",
        "Read all 8 hardware sprites: position, visibility, color, flags and data pointer.",
        {"enabledOnly": {"type": "boolean"}},
    ),
    _tool(
        "screenshot",
        "Capture the display as indexed 8-bit pixels (base64) with the palette.",
        {"includePalette": {"type": "boolean", "description": "Default: true"}},
    ),
    _tool(
        "renderScreen",
        "Render the display as ASCII art shaded by palette luminance.",
        {
            "width": {"type": "integer", "minimum": 20, "maximum": 200},
            "height": {"type": "integer", "minimum": 10, "maximum": 100},
            "charset": {"type": "string", "description": "Dark to light shading characters"},
        },
    ),
]


def _meta(client: ViceClient, include_endpoint: bool = True) -> dict:
    state = client.get_state()
    meta = {"connected": state.connected, "running": state.running}
    if include_endpoint and state.connected:
        meta["host"] = state.host
        meta["port"] = state.port
    return meta


def _require(arguments: dict, name: str) -> Any:
    if arguments.get(name) is None:
        raise ValidationError(
            "MISSING_ARGUMENT",
            f"Missing required argument: {name}",
            "Check the tool's input schema",
        )
    return arguments[name]


def _memory_hint(start: int, end: int) -> str:
    if start <= 0xFF:
        return "Zero page - commonly used for variables and pointers"
    if 0x100 <= start <= 0x1FF:
        return "Stack area"
    if start >= 0x400 and end <= 0x7FF:
        return "Default screen RAM area"
    if start >= 0xD000 and end <= 0xD3FF:
        return "VIC-II registers - use readVicState for interpreted data"
    if start >= 0xD400 and end <= 0xD7FF:
        return "SID registers"
    if start >= 0xD800 and end <= 0xDBFF:
        return "Color RAM"
    if start >= 0xA000 and end <= 0xBFFF:
        return "BASIC ROM (or RAM if bank switched)"
    if start >= 0xE000:
        return "KERNAL ROM (or RAM if bank switched)"
    return ""


def _registers_payload(registers: Registers) -> dict:
    sp = registers.sp
    if "SP" in registers.values and sp < 0x10:
        hint = "Warning: Stack pointer very low - possible stack overflow"
    elif "SP" in registers.values and sp > 0xF0:
        hint = "Warning: Stack nearly empty - possible stack underflow"
    else:
        hint = "CPU state looks normal"

    return {
        "a": format_byte(registers.a),
        "x": format_byte(registers.x),
        "y": format_byte(registers.y),
        "sp": {**format_byte(sp), "stackTop": f"$01{sp:02x}"},
        "pc": format_address(registers.pc),
        "flags": registers.flags.to_dict(),
        "hint": hint,
    }


async def _read_byte(client: ViceClient, address: int) -> int:
    return (await client.read_memory(address, address))[0]


async def _read_video_setup(client: ViceClient) -> tuple[dict, dict]:
    """Return (bank info, video addresses) from CIA2 port A and $D018."""
    bank_info = get_vic_bank(await _read_byte(client, CIA2_PORT_A))
    d018 = await _read_byte(client, VIC_BASE + 0x18)
    return bank_info, get_video_addresses(d018, bank_info["base_address"])


async def _read_screen(client: ViceClient, arguments: dict) -> dict:
    bank_info, video = await _read_video_setup(client)
    screen_address = video["screen_address"]
    screen_data = await client.read_memory(screen_address, screen_address + SCREEN_SIZE - 1)

    lines = screen_to_text(screen_data)
    non_empty = [(row, line) for row, line in enumerate(lines) if line.strip()]
    summary_format = arguments.get("format") == "summary"

    response: dict[str, Any] = {
        "screenAddress": format_address(screen_address),
        "vicBank": bank_info["bank"],
        "format": "summary" if summary_format else "full",
    }
    if summary_format:
        response["lines"] = [{"lineNumber": row, "content": line} for row, line in non_empty]
        response["totalLines"] = SCREEN_ROWS
        response["nonEmptyCount"] = len(non_empty)
    else:
        response["lines"] = lines
        response["summary"] = {
            "nonEmptyLines": len(non_empty),
            "preview": [f'Line {row}: "{line}"' for row, line in non_empty[:3]]
            or ["Screen appears empty"],
        }
    if arguments.get("includeRaw"):
        response["raw"] = list(screen_data)

    d011 = await _read_byte(client, VIC_BASE + 0x11)
    d016 = await _read_byte(client, VIC_BASE + 0x16)
    mode = get_graphics_mode(d011, d016)
    response["graphicsMode"] = mode["mode"]

    if mode["bitmap"]:
        response["hint"] = (
            "Warning: VIC-II is in bitmap mode - screen RAM contains bitmap data, not text."
        )
    elif not non_empty:
        response["hint"] = "Screen appears empty or contains only spaces."
    else:
        response["hint"] = (
            f'Screen has {len(non_empty)} non-empty line(s). First: "{non_empty[0][1]}"'
        )
    return response


async def _read_color_ram(client: ViceClient, arguments: dict) -> dict:
    color_data = await client.read_memory(COLOR_RAM, COLOR_RAM + SCREEN_SIZE - 1)

    counts = Counter(byte & 0x0F for byte in color_data)
    usage = [
        {
            "color": get_color_info(color),
            "count": count,
            "percentage": round(count / SCREEN_SIZE * 100),
        }
        for color, count in counts.most_common()
    ]

    response: dict[str, Any] = {
        "address": format_address(COLOR_RAM),
        "summary": {
            "uniqueColors": len(usage),
            "dominantColor": usage[0]["color"] if usage else None,
            "usage": usage,
        },
    }
    if not arguments.get("summary"):
        response["grid"] = [
            [get_color_info(color_data[row * SCREEN_COLUMNS + col]) for col in range(SCREEN_COLUMNS)]
            for row in range(SCREEN_ROWS)
        ]

    if len(usage) == 1:
        dominant = usage[0]["color"]
        response["hint"] = f"Entire screen uses {dominant['name']} ({dominant['value']})"
    elif usage:
        response["hint"] = (
            f"{len(usage)} colors used. Dominant: {usage[0]['color']['name']} "
            f"({usage[0]['percentage']}%)"
        )
    return response


def _sprite_position(vic: bytes, index: int) -> tuple[int, int]:
    x = vic[index * 2] + (256 if vic[0x10] & (1 << index) else 0)
    return x, vic[index * 2 + 1]


async def _read_vic_state(client: ViceClient) -> dict:
    vic = await client.read_memory(VIC_BASE, VIC_BASE + VIC_REGISTER_COUNT - 1)
    bank_info = get_vic_bank(await _read_byte(client, CIA2_PORT_A))

    d011, d016, d018 = vic[0x11], vic[0x16], vic[0x18]
    mode = get_graphics_mode(d011, d016)
    video = get_video_addresses(d018, bank_info["base_address"])
    raster_line = vic[0x12] | ((d011 & 0x80) << 1)

    sprite_enable = vic[0x15]
    enabled = [i for i in range(8) if sprite_enable & (1 << i)]
    visible = [i for i in enabled if is_sprite_visible(*_sprite_position(vic, i), True)["visible"]]
    display_enabled = bool(d011 & 0x10)

    if not display_enabled:
        hint = "Display is blanked (DEN=0) - screen shows border color only"
    elif enabled and len(visible) < len(enabled):
        hint = (
            f"{mode['mode']} mode, {len(enabled)} sprite(s) enabled but only "
            f"{len(visible)} visible. Use readSprites() for details."
        )
    elif enabled:
        hint = f"{mode['mode']} mode, {len(enabled)} sprite(s) enabled and visible."
    else:
        hint = f"{mode['mode']} mode, no sprites enabled."

    return {
        "borderColor": get_color_info(vic[0x20]),
        "backgroundColor": [get_color_info(vic[0x21 + i]) for i in range(4)],
        "graphicsMode": mode["mode"],
        "displayEnabled": display_enabled,
        "bitmap": mode["bitmap"],
        "multicolor": mode["multicolor"],
        "extendedColor": mode["extended_color"],
        "rows": 25 if d011 & 0x08 else 24,
        "columns": 40 if d016 & 0x08 else 38,
        "scrollX": d016 & 0x07,
        "scrollY": d011 & 0x07,
        "vicBank": {
            "bank": bank_info["bank"],
            "baseAddress": format_address(bank_info["base_address"]),
        },
        "screenAddress": format_address(video["screen_address"]),
        "charAddress": format_address(video["char_address"]),
        "rasterLine": raster_line,
        "spriteEnable": {
            "value": sprite_enable,
            "binary": f"{sprite_enable:08b}",
            "enabledSprites": enabled,
            "enabledCount": len(enabled),
            "visibleSprites": visible,
            "visibleCount": len(visible),
        },
        "spriteMulticolor0": get_color_info(vic[0x25]),
        "spriteMulticolor1": get_color_info(vic[0x26]),
        "hint": hint,
    }


async def _read_sprites(client: ViceClient, arguments: dict) -> dict:
    vic = await client.read_memory(VIC_BASE, VIC_BASE + VIC_REGISTER_COUNT - 1)
    bank_info = get_vic_bank(await _read_byte(client, CIA2_PORT_A))
    video = get_video_addresses(vic[0x18], bank_info["base_address"])

    pointer_base = video["screen_address"] + SPRITE_POINTER_OFFSET
    pointers = await client.read_memory(pointer_base, pointer_base + 7)

    sprites = []
    for i in range(8):
        bit = 1 << i
        enabled = bool(vic[0x15] & bit)
        if arguments.get("enabledOnly") and not enabled:
            continue

        x, y = _sprite_position(vic, i)
        visibility = is_sprite_visible(x, y, enabled)
        pointer = pointers[i]
        data_address = bank_info["base_address"] + pointer * 64
        address_info = validate_sprite_data_address(data_address)

        sprites.append(
            {
                "index": i,
                "enabled": enabled,
                "position": {
                    "x": x,
                    "y": y,
                    "visible": visibility["visible"],
                    "visibilityReason": visibility.get("reason"),
                },
                "color": get_color_info(vic[0x27 + i]),
                "multicolor": bool(vic[0x1C] & bit),
                "expandX": bool(vic[0x1D] & bit),
                "expandY": bool(vic[0x17] & bit),
                "priority": "behind" if vic[0x1B] & bit else "front",
                "pointer": format_byte(pointer),
                "dataAddress": {**format_address(data_address), **address_info},
            }
        )

    enabled_count = sum(1 for s in sprites if s["enabled"])
    visible_count = sum(1 for s in sprites if s["position"]["visible"])
    visibility_issues = [
        f"Sprite {s['index']}: {s['position']['visibilityReason']}"
        for s in sprites
        if s["enabled"] and not s["position"]["visible"]
    ]
    address_issues = [
        f"Sprite {s['index']}: {s['dataAddress']['warning']} ({s['dataAddress']['hex']})"
        for s in sprites
        if s["enabled"] and s["dataAddress"].get("warning")
    ]

    if address_issues:
        hint = f"{len(address_issues)} sprite(s) with suspicious data address: {address_issues[0]}"
    elif visibility_issues:
        hint = f"{len(visibility_issues)} enabled sprite(s) not visible: {visibility_issues[0]}"
    elif enabled_count == 0:
        hint = "No sprites enabled"
    else:
        hint = f"{enabled_count} sprite(s) enabled, {visible_count} visible"

    response = {
        "count": len(sprites),
        "enabledCount": enabled_count,
        "visibleCount": visible_count,
        "sprites": sprites,
        "spriteMulticolor0": get_color_info(vic[0x25]),
        "spriteMulticolor1": get_color_info(vic[0x26]),
        "hint": hint,
    }
    if visibility_issues or address_issues:
        response["issues"] = visibility_issues + address_issues
    return response


async def _render_screen(client: ViceClient, arguments: dict) -> dict:
    width = arguments.get("width") or 80
    height = arguments.get("height") or 50
    charset = arguments.get("charset") or DEFAULT_RENDER_CHARSET
    if not (20 <= width <= 200 and 10 <= height <= 100):
        raise ValidationError(
            "INVALID_ARGUMENT",
            f"Render size {width}x{height} is out of range",
            "Width must be 20-200 and height 10-100",
        )

    display = await client.get_display()
    palette = await client.get_palette()
    luminance = [color.luminance for color in palette]

    scale_x = display.inner_width / width
    scale_y = display.inner_height / height
    lines = []
    for row in range(height):
        line = []
        for col in range(width):
            src_x = int(display.offset_x + col * scale_x)
            src_y = int(display.offset_y + row * scale_y)
            index = src_y * display.width + src_x
            if index < len(display.pixels):
                color = display.pixels[index]
                lum = luminance[color] if color < len(luminance) else 0
                char_index = int(lum / 256 * len(charset))
                line.append(charset[min(char_index, len(charset) - 1)])
            else:
                line.append(" ")
        lines.append("".join(line))

    return {
        "width": width,
        "height": height,
        "sourceWidth": display.inner_width,
        "sourceHeight": display.inner_height,
        "charset": charset,
        "render": "\n".join(lines),
        "hint": f"ASCII rendering of {display.inner_width}x{display.inner_height} display "
        f"scaled to {width}x{height}",
    }


async def dispatch_tool(client: ViceClient, name: str, arguments: Optional[dict]) -> dict:
    """
    Run one tool against the client.

    Returns:
        The JSON-ready result with a _meta block; classified errors are
        returned as their error object rather than raised.
    """
    arguments = arguments or {}
    try:
        result = await _call(client, name, arguments)
    except ViceError as e:
        logger.debug("Tool %s failed: %r", name, e)
        return {**e.to_dict(), "_meta": _meta(client, include_endpoint=False)}
    except Exception as e:
        logger.exception("Unexpected error in tool %s", name)
        return {
            "isError": True,
            "code": "UNKNOWN_ERROR",
            "message": str(e),
            "_meta": _meta(client, include_endpoint=False),
        }
    return {**result, "_meta": _meta(client)}


async def _call(client: ViceClient, name: str, arguments: dict) -> dict:
    if name == "status":
        state = client.get_state()
        if not state.connected:
            hint = "Not connected. Use connect() to establish connection to VICE."
        elif state.running:
            hint = (
                "VICE is running. Use setBreakpoint() + continue() to pause at a "
                "specific point, or step() to execute one instruction."
            )
        else:
            hint = "VICE is paused. Use continue() to resume or step() to execute one instruction."
        result: dict[str, Any] = {"connected": state.connected, "running": state.running}
        if state.connected:
            result["host"] = state.host
            result["port"] = state.port
        result["hint"] = hint
        return result

    elif name == "connect":
        host = arguments.get("host") or VICE_HOST
        port = arguments.get("port") or VICE_PORT
        await client.connect(host, port)
        return {
            "connected": True,
            "host": host,
            "port": port,
            "message": f"Successfully connected to VICE at {host}:{port}",
            "hint": "Connection established. You can now use readMemory, getRegisters, "
            "and other debugging tools.",
        }

    elif name == "disconnect":
        was_connected = client.get_state().connected
        await client.disconnect()
        return {
            "disconnected": True,
            "wasConnected": was_connected,
            "message": "Disconnected from VICE" if was_connected else "Was not connected",
        }

    elif name == "readMemory":
        address = _require(arguments, "address")
        length = min(arguments.get("length") or DEFAULT_READ_LENGTH, MEMORY_SIZE)
        end_address = min(address + length - 1, ADDRESS_MAX)
        data = await client.read_memory(address, end_address)

        hex_lines = []
        for i in range(0, len(data), 16):
            chunk = data[i : i + 16]
            hex_lines.append(f"${address + i:04x}: {chunk.hex(' ')}")
        ascii_text = "".join(chr(b) if 32 <= b < 127 else "." for b in data)

        return {
            "address": format_address(address),
            "length": len(data),
            "bytes": list(data),
            "hex": "\n".join(hex_lines),
            "ascii": ascii_text,
            "hint": _memory_hint(address, end_address),
        }

    elif name == "writeMemory":
        address = _require(arguments, "address")
        data = _require(arguments, "bytes")
        await client.write_memory(address, data)
        return {
            "success": True,
            "address": format_address(address),
            "bytesWritten": len(data),
            "message": f"Wrote {len(data)} byte(s) to ${address:04x}",
        }

    elif name == "getRegisters":
        return _registers_payload(await client.get_registers())

    elif name == "setRegisters":
        registers = _require(arguments, "registers")
        await client.set_registers(registers)
        return {
            "success": True,
            "registers": {reg.upper(): value for reg, value in registers.items()},
            "message": f"Set {len(registers)} register(s)",
            "hint": "Use getRegisters() to verify the new CPU state",
        }

    elif name == "continue":
        await client.continue_execution()
        return {
            "resumed": True,
            "message": "Execution resumed",
            "hint": "Use status() to check if execution stopped (e.g., at breakpoint)",
        }

    elif name == "step":
        count = arguments.get("count") or 1
        step_over = bool(arguments.get("stepOver", False))
        await client.step(count, step_over)
        registers = await client.get_registers()
        return {
            "stepped": True,
            "count": count,
            "stepOver": step_over,
            "pc": format_address(registers.pc),
            "message": f"Stepped {count} instruction(s)",
            "hint": "Use getRegisters() for full CPU state, or disassemble() for the next instruction",
        }

    elif name == "reset":
        hard = bool(arguments.get("hard", False))
        await client.reset(hard)
        return {
            "reset": True,
            "type": "hard" if hard else "soft",
            "message": f"{'Hard' if hard else 'Soft'} reset performed",
            "hint": "C64 is now at startup. Use status() to check state.",
        }

    elif name == "setBreakpoint":
        address = _require(arguments, "address")
        enabled = arguments.get("enabled", True)
        temporary = arguments.get("temporary", False)
        checkpoint_id = await client.set_breakpoint(address, enabled=enabled, temporary=temporary)
        return {
            "success": True,
            "breakpointId": checkpoint_id,
            "address": format_address(address),
            "enabled": enabled,
            "temporary": temporary,
            "message": f"Breakpoint {checkpoint_id} set at ${address:04x}",
            "hint": "Use continue() to run until breakpoint is hit",
        }

    elif name == "deleteBreakpoint":
        checkpoint_id = _require(arguments, "breakpointId")
        await client.delete_breakpoint(checkpoint_id)
        return {
            "success": True,
            "deletedId": checkpoint_id,
            "message": f"Breakpoint {checkpoint_id} deleted",
        }

    elif name == "listBreakpoints":
        breakpoints = client.list_breakpoints()
        if not breakpoints:
            return {
                "count": 0,
                "breakpoints": [],
                "hint": "No breakpoints set. Use setBreakpoint() to add one.",
            }
        return {
            "count": len(breakpoints),
            "breakpoints": [
                {
                    "id": bp.id,
                    "address": format_address(bp.start_address),
                    "enabled": bp.enabled,
                    "temporary": bp.temporary,
                }
                for bp in breakpoints
            ],
            "hint": f"{len(breakpoints)} breakpoint(s) active. Use deleteBreakpoint(id) to remove.",
        }

    elif name == "toggleBreakpoint":
        checkpoint_id = _require(arguments, "breakpointId")
        enabled = bool(_require(arguments, "enabled"))
        await client.toggle_checkpoint(checkpoint_id, enabled)
        return {
            "success": True,
            "breakpointId": checkpoint_id,
            "enabled": enabled,
            "message": f"Breakpoint {checkpoint_id} {'enabled' if enabled else 'disabled'}",
        }

    elif name == "setWatchpoint":
        start = _require(arguments, "startAddress")
        end = arguments.get("endAddress")
        if end is None:
            end = start
        kind = _require(arguments, "type")
        enabled = arguments.get("enabled", True)
        temporary = arguments.get("temporary", False)
        checkpoint_id = await client.set_watchpoint(
            start, end, kind, enabled=enabled, temporary=temporary
        )
        where = f"at ${start:04x}" if start == end else f"for ${start:04x}-${end:04x}"
        return {
            "success": True,
            "watchpointId": checkpoint_id,
            "startAddress": format_address(start),
            "endAddress": format_address(end),
            "type": kind,
            "enabled": enabled,
            "temporary": temporary,
            "message": f"Watchpoint {checkpoint_id} set {where} ({kind})",
            "hint": "Use continue() to run until watchpoint is triggered",
        }

    elif name == "listWatchpoints":
        watchpoints = client.list_watchpoints()
        if not watchpoints:
            return {
                "count": 0,
                "watchpoints": [],
                "hint": "No watchpoints set. Use setWatchpoint() to add one.",
            }
        return {
            "count": len(watchpoints),
            "watchpoints": [
                {
                    "id": wp.id,
                    "startAddress": format_address(wp.start_address),
                    "endAddress": format_address(wp.end_address),
                    "type": wp.kind,
                    "enabled": wp.enabled,
                    "temporary": wp.temporary,
                }
                for wp in watchpoints
            ],
            "hint": f"{len(watchpoints)} watchpoint(s) active. Use deleteBreakpoint(id) to "
            "remove (works for both breakpoints and watchpoints).",
        }

    elif name == "runTo":
        address = _require(arguments, "address")
        checkpoint_id = await client.run_to(address)
        return {
            "running": True,
            "targetAddress": format_address(address),
            "temporaryBreakpointId": checkpoint_id,
            "message": f"Running to ${address:04x}",
            "hint": "Execution will stop when target address is reached. "
            "Use status() to check state.",
        }

    elif name == "disassemble":
        start = arguments.get("address")
        if start is None:
            start = (await client.get_registers()).pc
        count = arguments.get("count")
        if count is None:
            count = DEFAULT_DISASM_COUNT
        if not 1 <= count <= 100:
            raise ValidationError(
                "INVALID_COUNT",
                f"Instruction count {count} is out of range",
                "Disassemble between 1 and 100 instructions",
            )

        if not 0 <= start <= ADDRESS_MAX:
            raise invalid_address(start)

        # At most 3 bytes per instruction
        length = min(count * 3, MEMORY_SIZE - start)
        data = await client.read_memory(start, start + length - 1)
        instructions = disassemble(data, start, count)

        if instructions and instructions[0].mnemonic == "BRK":
            hint = "First instruction is BRK - this might be uninitialized memory or data"
        else:
            hint = f"Disassembled {len(instructions)} instruction(s) from ${start:04x}"
        return {
            "startAddress": format_address(start),
            "instructionCount": len(instructions),
            "instructions": [instr.to_dict() for instr in instructions],
            "listing": "\n".join(format_listing(instructions)),
            "hint": hint,
        }

    elif name == "saveSnapshot":
        filename = _require(arguments, "filename")
        await client.save_snapshot(filename)
        return {
            "success": True,
            "filename": filename,
            "message": f"Snapshot saved to {filename}",
            "hint": "Use loadSnapshot() to restore this state later",
        }

    elif name == "loadSnapshot":
        filename = _require(arguments, "filename")
        await client.load_snapshot(filename)
        return {
            "success": True,
            "filename": filename,
            "message": f"Snapshot loaded from {filename}",
            "hint": "Machine state restored. Use getRegisters() to verify state.",
        }

    elif name == "loadProgram":
        filename = _require(arguments, "filename")
        run = arguments.get("run", True)
        await client.autostart(filename, arguments.get("fileIndex") or 0, run)
        return {
            "success": True,
            "filename": filename,
            "run": run,
            "message": f"Loading {filename}{' and running' if run else ''}",
            "hint": "Program is loading. Set breakpoints before it reaches your code of interest."
            if run
            else "Program loaded but not started. Use continue() to run.",
        }

    elif name == "readScreen":
        return await _read_screen(client, arguments)

    elif name == "readColorRam":
        return await _read_color_ram(client, arguments)

    elif name == "readVicState":
        return await _read_vic_state(client)

    elif name == "readSprites":
        return await _read_sprites(client, arguments)

    elif name == "screenshot":
        display = await client.get_display()
        result = {
            "width": display.width,
            "height": display.height,
            "bitsPerPixel": display.bits_per_pixel,
            "visibleArea": {
                "offsetX": display.offset_x,
                "offsetY": display.offset_y,
                "innerWidth": display.inner_width,
                "innerHeight": display.inner_height,
            },
            "pixelCount": len(display.pixels),
            "pixelsBase64": base64.b64encode(display.pixels).decode("ascii"),
        }
        if arguments.get("includePalette", True):
            palette = await client.get_palette()
            result["palette"] = [{"r": c.r, "g": c.g, "b": c.b} for c in palette]
            result["paletteCount"] = len(palette)
        result["hint"] = (
            f"Display is {display.width}x{display.height} (visible: "
            f"{display.inner_width}x{display.inner_height}). Use readScreen() for text mode content."
        )
        return result

    elif name == "renderScreen":
        return await _render_screen(client, arguments)

    raise ValidationError("UNKNOWN_TOOL", f"Unknown tool: {name}", "Use list_tools to see available tools")


def create_server(client: ViceClient) -> Server:
    """Build an MCP server whose tools operate on the given client."""
    app = Server("vice-mcp")

    @app.list_tools()
    async def list_tools() -> list[Tool]:
        """Define available tools."""
        return TOOLS

    @app.call_tool()
    async def call_tool(name: str, arguments: Any) -> list[TextContent]:
        """Handle tool execution."""
        result = await dispatch_tool(client, name, arguments)
        return [TextContent(type="text", text=json.dumps(result, indent=2))]

    return app


async def main():
    """Main entry point for the MCP server."""
    configure_logging()
    logger.info("Starting vice-mcp v%s", __version__)

    client = ViceClient()
    app = create_server(client)
    try:
        async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                app.create_initialization_options(),
            )
    finally:
        await client.disconnect()


def run():
    """Console script entry point."""
    if "--version" in sys.argv[1:] or "-v" in sys.argv[1:]:
        print(f"vice-mcp v{__version__}")
        return
    asyncio.run(main())


if __name__ == "__main__":
    run()
