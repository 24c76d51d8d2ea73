"""Typed results returned by the VICE client."""

from dataclasses import dataclass, field
from typing import Optional

from .protocol import (
    FLAG_BREAK,
    FLAG_CARRY,
    FLAG_DECIMAL,
    FLAG_INTERRUPT,
    FLAG_NEGATIVE,
    FLAG_OVERFLOW,
    FLAG_ZERO,
)


@dataclass
class ConnectionState:
    connected: bool = False
    host: str = ""
    port: int = 0
    running: bool = True


@dataclass
class Checkpoint:
    """A breakpoint or watchpoint confirmed by VICE."""

    id: int
    start_address: int
    end_address: int
    enabled: bool = True
    temporary: bool = False
    kind: str = "exec"  # exec, load, store or both

    @property
    def is_breakpoint(self) -> bool:
        return self.kind == "exec"


@dataclass(frozen=True)
class CheckpointHit:
    """Checkpoint info reported by VICE outside of any request."""

    id: int
    hit: bool
    start_address: int = 0
    end_address: int = 0
    temporary: bool = False


@dataclass(frozen=True)
class StatusFlags:
    """Decoded 6502 processor status register."""

    raw: int

    @property
    def negative(self) -> bool:
        return bool(self.raw & FLAG_NEGATIVE)

    @property
    def overflow(self) -> bool:
        return bool(self.raw & FLAG_OVERFLOW)

    @property
    def break_flag(self) -> bool:
        return bool(self.raw & FLAG_BREAK)

    @property
    def decimal(self) -> bool:
        return bool(self.raw & FLAG_DECIMAL)

    @property
    def interrupt(self) -> bool:
        return bool(self.raw & FLAG_INTERRUPT)

    @property
    def zero(self) -> bool:
        return bool(self.raw & FLAG_ZERO)

    @property
    def carry(self) -> bool:
        return bool(self.raw & FLAG_CARRY)

    def __str__(self) -> str:
        # NV-BDIZC, uppercase = set
        return "".join(
            [
                "N" if self.negative else "n",
                "V" if self.overflow else "v",
                "-",
                "B" if self.break_flag else "b",
                "D" if self.decimal else "d",
                "I" if self.interrupt else "i",
                "Z" if self.zero else "z",
                "C" if self.carry else "c",
            ]
        )

    def to_dict(self) -> dict:
        return {
            "negative": self.negative,
            "overflow": self.overflow,
            "break": self.break_flag,
            "decimal": self.decimal,
            "interrupt": self.interrupt,
            "zero": self.zero,
            "carry": self.carry,
            "raw": self.raw,
            "string": str(self),
        }


@dataclass
class Registers:
    """CPU registers keyed by name (A, X, Y, PC, SP, FL, ...)."""

    values: dict[str, int] = field(default_factory=dict)

    def get(self, name: str) -> Optional[int]:
        return self.values.get(name)

    @property
    def a(self) -> int:
        return self.values.get("A", 0)

    @property
    def x(self) -> int:
        return self.values.get("X", 0)

    @property
    def y(self) -> int:
        return self.values.get("Y", 0)

    @property
    def pc(self) -> int:
        return self.values.get("PC", 0)

    @property
    def sp(self) -> int:
        return self.values.get("SP", 0)

    @property
    def flags(self) -> StatusFlags:
        return StatusFlags(self.values.get("FL", 0))


@dataclass
class DisplayBuffer:
    width: int
    height: int
    bits_per_pixel: int
    offset_x: int
    offset_y: int
    inner_width: int
    inner_height: int
    pixels: bytes = b""


@dataclass(frozen=True)
class PaletteColor:
    r: int
    g: int
    b: int

    @property
    def luminance(self) -> float:
        return 0.299 * self.r + 0.587 * self.g + 0.114 * self.b
