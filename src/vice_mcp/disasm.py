"""6502 disassembler covering the 151 documented opcodes."""

from dataclasses import dataclass
from typing import Optional, Sequence, Union

# Addressing mode -> instruction size in bytes
MODE_SIZES = {
    "impl": 1,  # Implied
    "acc": 1,  # Accumulator
    "imm": 2,  # #$xx
    "zp": 2,  # $xx
    "zpx": 2,  # $xx,X
    "zpy": 2,  # $xx,Y
    "abs": 3,  # $xxxx
    "abx": 3,  # $xxxx,X
    "aby": 3,  # $xxxx,Y
    "ind": 3,  # ($xxxx)
    "izx": 2,  # ($xx,X)
    "izy": 2,  # ($xx),Y
    "rel": 2,  # branches
}

OPCODES = {
    # ADC
    0x69: ("ADC", "imm"), 0x65: ("ADC", "zp"), 0x75: ("ADC", "zpx"), 0x6D: ("ADC", "abs"),
    0x7D: ("ADC", "abx"), 0x79: ("ADC", "aby"), 0x61: ("ADC", "izx"), 0x71: ("ADC", "izy"),
    # AND
    0x29: ("AND", "imm"), 0x25: ("AND", "zp"), 0x35: ("AND", "zpx"), 0x2D: ("AND", "abs"),
    0x3D: ("AND", "abx"), 0x39: ("AND", "aby"), 0x21: ("AND", "izx"), 0x31: ("AND", "izy"),
    # ASL
    0x0A: ("ASL", "acc"), 0x06: ("ASL", "zp"), 0x16: ("ASL", "zpx"), 0x0E: ("ASL", "abs"),
    0x1E: ("ASL", "abx"),
    # Branches
    0x90: ("BCC", "rel"), 0xB0: ("BCS", "rel"), 0xF0: ("BEQ", "rel"), 0x30: ("BMI", "rel"),
    0xD0: ("BNE", "rel"), 0x10: ("BPL", "rel"), 0x50: ("BVC", "rel"), 0x70: ("BVS", "rel"),
    # BIT
    0x24: ("BIT", "zp"), 0x2C: ("BIT", "abs"),
    # BRK
    0x00: ("BRK", "impl"),
    # Flag clears
    0x18: ("CLC", "impl"), 0xD8: ("CLD", "impl"), 0x58: ("CLI", "impl"), 0xB8: ("CLV", "impl"),
    # CMP
    0xC9: ("CMP", "imm"), 0xC5: ("CMP", "zp"), 0xD5: ("CMP", "zpx"), 0xCD: ("CMP", "abs"),
    0xDD: ("CMP", "abx"), 0xD9: ("CMP", "aby"), 0xC1: ("CMP", "izx"), 0xD1: ("CMP", "izy"),
    # CPX / CPY
    0xE0: ("CPX", "imm"), 0xE4: ("CPX", "zp"), 0xEC: ("CPX", "abs"),
    0xC0: ("CPY", "imm"), 0xC4: ("CPY", "zp"), 0xCC: ("CPY", "abs"),
    # DEC / DEX / DEY
    0xC6: ("DEC", "zp"), 0xD6: ("DEC", "zpx"), 0xCE: ("DEC", "abs"), 0xDE: ("DEC", "abx"),
    0xCA: ("DEX", "impl"), 0x88: ("DEY", "impl"),
    # EOR
    0x49: ("EOR", "imm"), 0x45: ("EOR", "zp"), 0x55: ("EOR", "zpx"), 0x4D: ("EOR", "abs"),
    0x5D: ("EOR", "abx"), 0x59: ("EOR", "aby"), 0x41: ("EOR", "izx"), 0x51: ("EOR", "izy"),
    # INC / INX / INY
    0xE6: ("INC", "zp"), 0xF6: ("INC", "zpx"), 0xEE: ("INC", "abs"), 0xFE: ("INC", "abx"),
    0xE8: ("INX", "impl"), 0xC8: ("INY", "impl"),
    # Jumps
    0x4C: ("JMP", "abs"), 0x6C: ("JMP", "ind"), 0x20: ("JSR", "abs"),
    # LDA
    0xA9: ("LDA", "imm"), 0xA5: ("LDA", "zp"), 0xB5: ("LDA", "zpx"), 0xAD: ("LDA", "abs"),
    0xBD: ("LDA", "abx"), 0xB9: ("LDA", "aby"), 0xA1: ("LDA", "izx"), 0xB1: ("LDA", "izy"),
    # LDX
    0xA2: ("LDX", "imm"), 0xA6: ("LDX", "zp"), 0xB6: ("LDX", "zpy"), 0xAE: ("LDX", "abs"),
    0xBE: ("LDX", "aby"),
    # LDY
    0xA0: ("LDY", "imm"), 0xA4: ("LDY", "zp"), 0xB4: ("LDY", "zpx"), 0xAC: ("LDY", "abs"),
    0xBC: ("LDY", "abx"),
    # LSR
    0x4A: ("LSR", "acc"), 0x46: ("LSR", "zp"), 0x56: ("LSR", "zpx"), 0x4E: ("LSR", "abs"),
    0x5E: ("LSR", "abx"),
    # NOP
    0xEA: ("NOP", "impl"),
    # ORA
    0x09: ("ORA", "imm"), 0x05: ("ORA", "zp"), 0x15: ("ORA", "zpx"), 0x0D: ("ORA", "abs"),
    0x1D: ("ORA", "abx"), 0x19: ("ORA", "aby"), 0x01: ("ORA", "izx"), 0x11: ("ORA", "izy"),
    # Stack
    0x48: ("PHA", "impl"), 0x08: ("PHP", "impl"), 0x68: ("PLA", "impl"), 0x28: ("PLP", "impl"),
    # ROL
    0x2A: ("ROL", "acc"), 0x26: ("ROL", "zp"), 0x36: ("ROL", "zpx"), 0x2E: ("ROL", "abs"),
    0x3E: ("ROL", "abx"),
    # ROR
    0x6A: ("ROR", "acc"), 0x66: ("ROR", "zp"), 0x76: ("ROR", "zpx"), 0x6E: ("ROR", "abs"),
    0x7E: ("ROR", "abx"),
    # Returns
    0x40: ("RTI", "impl"), 0x60: ("RTS", "impl"),
    # SBC
    0xE9: ("SBC", "imm"), 0xE5: ("SBC", "zp"), 0xF5: ("SBC", "zpx"), 0xED: ("SBC", "abs"),
    0xFD: ("SBC", "abx"), 0xF9: ("SBC", "aby"), 0xE1: ("SBC", "izx"), 0xF1: ("SBC", "izy"),
    # Flag sets
    0x38: ("SEC", "impl"), 0xF8: ("SED", "impl"), 0x78: ("SEI", "impl"),
    # STA
    0x85: ("STA", "zp"), 0x95: ("STA", "zpx"), 0x8D: ("STA", "abs"), 0x9D: ("STA", "abx"),
    0x99: ("STA", "aby"), 0x81: ("STA", "izx"), 0x91: ("STA", "izy"),
    # STX / STY
    0x86: ("STX", "zp"), 0x96: ("STX", "zpy"), 0x8E: ("STX", "abs"),
    0x84: ("STY", "zp"), 0x94: ("STY", "zpx"), 0x8C: ("STY", "abs"),
    # Transfers
    0xAA: ("TAX", "impl"), 0xA8: ("TAY", "impl"), 0xBA: ("TSX", "impl"),
    0x8A: ("TXA", "impl"), 0x9A: ("TXS", "impl"), 0x98: ("TYA", "impl"),
}  # fmt: skip

# Common C64 KERNAL/BASIC entry points
KERNAL_LABELS = {
    0xFFD2: "CHROUT",
    0xFFE4: "GETIN",
    0xFFCF: "CHRIN",
    0xFFC0: "OPEN",
    0xFFC3: "CLOSE",
    0xFFC6: "CHKIN",
    0xFFC9: "CHKOUT",
    0xFFCC: "CLRCHN",
    0xFFD5: "LOAD",
    0xFFD8: "SAVE",
    0xE544: "CLRSCR",
    0xA871: "CHRGET",
    0xBDCD: "FLTASC",
    0xB7F7: "FMULT",
    0xB850: "FDIV",
    0xB867: "MOVFM",
    0xBBA2: "GIVAYF",
}

_OPERAND_FORMATS = {
    "impl": "",
    "acc": "A",
    "imm": "#${:02x}",
    "zp": "${:02x}",
    "zpx": "${:02x},X",
    "zpy": "${:02x},Y",
    "abs": "${:04x}",
    "abx": "${:04x},X",
    "aby": "${:04x},Y",
    "ind": "(${:04x})",
    "izx": "(${:02x},X)",
    "izy": "(${:02x}),Y",
}


@dataclass
class Instruction:
    address: int
    bytes: list[int]
    mnemonic: str
    operand: str
    branch_target: Optional[int] = None

    @property
    def size(self) -> int:
        return len(self.bytes)

    @property
    def full_instruction(self) -> str:
        return f"{self.mnemonic} {self.operand}" if self.operand else self.mnemonic

    @property
    def label(self) -> Optional[str]:
        """KERNAL label for the instruction's absolute operand or branch target."""
        target = self.branch_target
        if target is None and len(self.bytes) == 3:
            target = self.bytes[1] | (self.bytes[2] << 8)
        return KERNAL_LABELS.get(target) if target is not None else None

    def to_dict(self) -> dict:
        data = {
            "address": {"value": self.address, "hex": f"${self.address:04x}"},
            "bytes": " ".join(f"{b:02x}" for b in self.bytes),
            "instruction": self.full_instruction,
        }
        if self.branch_target is not None:
            data["branchTarget"] = {
                "value": self.branch_target,
                "hex": f"${self.branch_target:04x}",
            }
        if self.label:
            data["label"] = self.label
        return data


def get_label_for_address(address: int) -> Optional[str]:
    return KERNAL_LABELS.get(address)


def disassemble(
    data: Union[bytes, bytearray, Sequence[int]],
    start_address: int,
    count: Optional[int] = None,
) -> list[Instruction]:
    """
    Disassemble a block of 6502 machine code.

    Args:
        data: Raw bytes to decode
        start_address: Address of the first byte
        count: Maximum number of instructions (default: as many as fit)

    Returns:
        Decoded instructions. Unknown opcodes become one-byte "???" entries;
        an instruction cut off by the end of data ends the listing.
    """
    code = bytes(data)
    result = []
    offset = 0

    while offset < len(code):
        if count is not None and len(result) >= count:
            break

        address = (start_address + offset) & 0xFFFF
        opcode = code[offset]
        entry = OPCODES.get(opcode)

        if entry is None:
            result.append(Instruction(address, [opcode], "???", f"${opcode:02x}"))
            offset += 1
            continue

        mnemonic, mode = entry
        size = MODE_SIZES[mode]
        if offset + size > len(code):
            break

        instr_bytes = list(code[offset : offset + size])
        branch_target = None

        if mode == "rel":
            displacement = instr_bytes[1]
            signed = displacement - 256 if displacement > 127 else displacement
            branch_target = (address + 2 + signed) & 0xFFFF
            operand = f"${branch_target:04x}"
        elif size == 3:
            operand = _OPERAND_FORMATS[mode].format(instr_bytes[1] | (instr_bytes[2] << 8))
        elif size == 2:
            operand = _OPERAND_FORMATS[mode].format(instr_bytes[1])
        else:
            operand = _OPERAND_FORMATS[mode]

        result.append(Instruction(address, instr_bytes, mnemonic, operand, branch_target))
        offset += size

    return result


def format_listing(instructions: Sequence[Instruction]) -> list[str]:
    """Render instructions as monitor-style lines: "$c000  a9 00     LDA #$00"."""
    lines = []
    for instr in instructions:
        line = f"${instr.address:04x}  {' '.join(f'{b:02x}' for b in instr.bytes):<9} {instr.full_instruction}"
        if instr.label:
            line += f"  ; {instr.label}"
        lines.append(line)
    return lines
