# CHIP-8 INFO
# https://chip-8.github.io/extensions/#chip-8
# https://chip-8.github.io/links/
#
# COMPATIBILITY QUIRKS TABLE
# https://games.gulrak.net/cadmium/chip8-opcode-table.html#quirk6
#
# MASTERING CHIP-8
# https://github.com/mattmikolay/chip-8/wiki/Mastering-CHIP%E2%80%908
#
# COWGOD'S TECHNICAL REFERENCE
# http://devernay.free.fr/hacks/chip8/C8TECH10.HTM


import os
from dataclasses import dataclass
from enum import Enum, auto
from functools import lru_cache, wraps
from typing import NamedTuple

from chip8_machine import (
    BLACK,
    FONT_SPRITE_SIZE,
    FONT_START_ADDRESS,
    SCREEN_HEIGHT,
    SCREEN_WIDTH,
    WHITE,
    MachineState,
    UnknownOpcode,
)


DEBUG = True if int(os.getenv('DEBUG', 0)) >= 1 else False


# ******************** QUIRKS SECTION
class ShiftQuirk(Enum):
    LEGACY_Y = "legacy-y"   # Vx = Vy shifted, the COSMAC VIP two register form
    MODERN_X = "modern-x"   # Vx shifted in place, Vy ignored
    BY_COUNT = "by-count"   # Vx shifted by the amount held in Vy

class DrawWrap(Enum):
    WRAP = "wrap"
    CLIP = "clip"

DIALECTS = {
    "cowgod": dict(shift=ShiftQuirk.MODERN_X, index_increment=False),
    "mikolay": dict(shift=ShiftQuirk.LEGACY_Y, index_increment=True),
}

@dataclass(frozen=True)
class Quirks:
    """points where historical interpreters disagree, chosen once per executor"""
    shift: ShiftQuirk = ShiftQuirk.MODERN_X
    index_increment: bool = False       # FX55/FX65 leave I = I + X + 1
    draw_wrap: DrawWrap = DrawWrap.WRAP
    vf_reset: bool = False              # 8XY1/8XY2/8XY3 clear VF
    strict: bool = True                 # unknown opcodes raise instead of being skipped

    @classmethod
    def preset(cls, name, **overrides):
        try:
            settings = dict(DIALECTS[name])
        except KeyError:
            raise ValueError(f"Unknown CHIP-8 dialect {name!r}, choose one of {sorted(DIALECTS)}") from None
        settings.update(overrides)
        return cls(**settings)


# ******************** DECODING SECTION
class Op(Enum):
    SYS = auto()
    CLS = auto()
    RET = auto()
    JP = auto()
    CALL = auto()
    SE_BYTE = auto()
    SNE_BYTE = auto()
    SE_REG = auto()
    LD_BYTE = auto()
    ADD_BYTE = auto()
    LD_REG = auto()
    OR = auto()
    AND = auto()
    XOR = auto()
    ADD_REG = auto()
    SUB = auto()
    SHR = auto()
    SUBN = auto()
    SHL = auto()
    SNE_REG = auto()
    LD_I = auto()
    JP_V0 = auto()
    RND = auto()
    DRW = auto()
    SKP = auto()
    SKNP = auto()
    LD_VX_DT = auto()
    LD_VX_K = auto()
    LD_DT_VX = auto()
    LD_ST_VX = auto()
    ADD_I = auto()
    LD_F = auto()
    LD_B = auto()
    STORE = auto()
    LOAD = auto()

class Instruction(NamedTuple):
    """an opcode decoded once, together with every operand field it may use"""
    op: Op
    x: int
    y: int
    n: int
    nn: int
    nnn: int
    opcode: int

# families fully identified by the first nibble
FAMILY_OPS = {
    0x1: Op.JP,
    0x2: Op.CALL,
    0x3: Op.SE_BYTE,
    0x4: Op.SNE_BYTE,
    0x6: Op.LD_BYTE,
    0x7: Op.ADD_BYTE,
    0xA: Op.LD_I,
    0xB: Op.JP_V0,
    0xC: Op.RND,
    0xD: Op.DRW,
}

# families sub keyed on the last nibble
NIBBLE_OPS = {
    0x5: {0x0: Op.SE_REG},
    0x8: {0x0: Op.LD_REG, 0x1: Op.OR, 0x2: Op.AND, 0x3: Op.XOR, 0x4: Op.ADD_REG,
          0x5: Op.SUB, 0x6: Op.SHR, 0x7: Op.SUBN, 0xE: Op.SHL},
    0x9: {0x0: Op.SNE_REG},
}

# families sub keyed on the low byte
BYTE_OPS = {
    0xE: {0x9E: Op.SKP, 0xA1: Op.SKNP},
    0xF: {0x07: Op.LD_VX_DT, 0x0A: Op.LD_VX_K, 0x15: Op.LD_DT_VX, 0x18: Op.LD_ST_VX,
          0x1E: Op.ADD_I, 0x29: Op.LD_F, 0x33: Op.LD_B, 0x55: Op.STORE, 0x65: Op.LOAD},
}

def decode(opcode):
    """split an opcode in its nibbles and tag it with the operation it encodes"""
    if not 0 <= opcode <= 0xFFFF:
        raise ValueError(f"Opcodes are 16 bit wide, got 0x{opcode:x}")
    family = (opcode & 0xF000) >> 12
    x, y = (opcode & 0x0F00) >> 8, (opcode & 0x00F0) >> 4
    n, nn, nnn = opcode & 0x000F, opcode & 0x00FF, opcode & 0x0FFF
    if family == 0x0:
        # 00E0 and 00EE win over the machine code routine call 0NNN
        op = {0x00E0: Op.CLS, 0x00EE: Op.RET}.get(opcode, Op.SYS)
    elif family in FAMILY_OPS:
        op = FAMILY_OPS[family]
    elif family in NIBBLE_OPS:
        op = NIBBLE_OPS[family].get(n)
    else:
        op = BYTE_OPS[family].get(nn)
    if op is None:
        raise UnknownOpcode(opcode)
    return Instruction(op, x, y, n, nn, nnn, opcode)


# ******************** UTILITIES SECTION
def asm(msg):
    """decorator to print out the ASM of the instruction being executed"""
    def decorator(fn):
        @wraps(fn)
        def wrapper_fn(self, state, ins):
            mem_addr = state.program_counter - 2    # PC already points past the executing opcode
            fn(self, state, ins)
            if DEBUG: print(f"mem_addr: 0x{mem_addr:04x}    instruction: {msg.format(**ins._asdict())}")
        wrapper_fn.asm = msg
        return wrapper_fn
    return decorator


# ******************** CPU SECTION
class Executor:
    """applies decoded opcodes to a MachineState according to a fixed set of quirks"""
    def __init__(self, quirks=None):
        self.quirks = quirks or Quirks()
        self.instructions = {
            Op.SYS: self._sys_call,
            Op.CLS: self._clear_screen,
            Op.RET: self._return,
            Op.JP: self._jump,
            Op.CALL: self._call_addr,
            Op.SE_BYTE: self._skip_if_eq,
            Op.SNE_BYTE: self._skip_if_not_eq,
            Op.SE_REG: self._skip_if_eq_regs,
            Op.LD_BYTE: self._set_vk,
            Op.ADD_BYTE: self._add_to_vk,
            Op.LD_REG: self._set_vx_to_vy,
            Op.OR: self._set_vx_or_vy,
            Op.AND: self._set_vx_and_vy,
            Op.XOR: self._set_vx_xor_vy,
            Op.ADD_REG: self._add_vx_vy,
            Op.SUB: self._sub_vx_vy,
            Op.SHR: self._shr,
            Op.SUBN: self._subn_vx_vy,
            Op.SHL: self._shl,
            Op.SNE_REG: self._skip_if_not_eq_regs,
            Op.LD_I: self._set_idx,
            Op.JP_V0: self._jump_plus,
            Op.RND: self._random_byte_and,
            Op.DRW: self._to_screen,
            Op.SKP: self._skip_if_pressed,
            Op.SKNP: self._skip_if_not_pressed,
            Op.LD_VX_DT: self._set_vx_dt,
            Op.LD_VX_K: self._wait_keypress,
            Op.LD_DT_VX: self._set_dt_vx,
            Op.LD_ST_VX: self._set_st,
            Op.ADD_I: self._add_to_idx,
            Op.LD_F: self._select_char,
            Op.LD_B: self._bcd_repr,
            Op.STORE: self._store_vregs,
            Op.LOAD: self._load_vregs,
        }

    def __repr__(self):
        return f"Executor({self.quirks})"

    def execute(self, opcode, state):
        """decode opcode and apply it to state, return the decoded instruction (None if skipped)"""
        try:
            ins = decode(opcode)
        except UnknownOpcode:
            if self.quirks.strict:
                raise
            return None
        self.instructions[ins.op](state, ins)
        return ins

    def cycle(self, state):
        """emulate one machine cycle: fetch the opcode at PC, decode it, execute it"""
        address = state.program_counter
        opcode = state.fetch()
        try:
            return self.execute(opcode, state)
        except UnknownOpcode:
            raise UnknownOpcode(opcode, address) from None

    def disassemble(self, opcode):
        try:
            ins = decode(opcode)
        except UnknownOpcode:
            return f"DW 0x{opcode:04x}"
        return self.instructions[ins.op].asm.format(**ins._asdict())

    @staticmethod
    def _goto_next_instruction(state):
        state.program_counter += 0x2

    # ********** FLOW
    @asm("SYS 0x{nnn:03x}")
    def _sys_call(self, state, ins):
        """machine code routine of the original hardware, ignored by every modern interpreter"""

    @asm("CLS")
    def _clear_screen(self, state, ins):
        state.clear_display()

    @asm("RET")
    def _return(self, state, ins):
        """return from a subroutine"""
        state.program_counter = state.pop()

    @asm("JP 0x{nnn:03x}")
    def _jump(self, state, ins):
        state.program_counter = ins.nnn

    @asm("CALL 0x{nnn:03x}")
    def _call_addr(self, state, ins):
        state.push(state.program_counter)
        state.program_counter = ins.nnn

    @asm("JP V0, 0x{nnn:03x}")
    def _jump_plus(self, state, ins):
        state.program_counter = ins.nnn + state.get_register(0x0)

    # ********** CONDITIONAL SKIPS
    @asm("SE V{x:X}, 0x{nn:02x}")
    def _skip_if_eq(self, state, ins):
        if state.get_register(ins.x) == ins.nn:
            self._goto_next_instruction(state)

    @asm("SNE V{x:X}, 0x{nn:02x}")
    def _skip_if_not_eq(self, state, ins):
        if state.get_register(ins.x) != ins.nn:
            self._goto_next_instruction(state)

    @asm("SE V{x:X}, V{y:X}")
    def _skip_if_eq_regs(self, state, ins):
        if state.get_register(ins.x) == state.get_register(ins.y):
            self._goto_next_instruction(state)

    @asm("SNE V{x:X}, V{y:X}")
    def _skip_if_not_eq_regs(self, state, ins):
        if state.get_register(ins.x) != state.get_register(ins.y):
            self._goto_next_instruction(state)

    @asm("SKP V{x:X}")
    def _skip_if_pressed(self, state, ins):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is pressed"""
        if state.get_key(state.get_register(ins.x)):
            self._goto_next_instruction(state)

    @asm("SKNP V{x:X}")
    def _skip_if_not_pressed(self, state, ins):
        """skip the following instruction if the key corresponding to the hex value stored in Vx is NOT pressed"""
        if not state.get_key(state.get_register(ins.x)):
            self._goto_next_instruction(state)

    # ********** REGISTERS
    @asm("LD V{x:X}, 0x{nn:02x}")
    def _set_vk(self, state, ins):
        """set the value of one of the 16 variable registers, Vx"""
        state.set_register(ins.x, ins.nn)

    @asm("ADD V{x:X}, 0x{nn:02x}")
    def _add_to_vk(self, state, ins):
        """add to the value already present in Vx, VF untouched"""
        state.set_register(ins.x, (state.get_register(ins.x) + ins.nn) & 0xFF)

    @asm("LD V{x:X}, V{y:X}")
    def _set_vx_to_vy(self, state, ins):
        state.set_register(ins.x, state.get_register(ins.y))

    def _logic(self, state, ins, result):
        state.set_register(ins.x, result)
        if self.quirks.vf_reset:
            state.set_register(0xF, 0)

    @asm("OR V{x:X}, V{y:X}")
    def _set_vx_or_vy(self, state, ins):
        self._logic(state, ins, state.get_register(ins.x) | state.get_register(ins.y))

    @asm("AND V{x:X}, V{y:X}")
    def _set_vx_and_vy(self, state, ins):
        self._logic(state, ins, state.get_register(ins.x) & state.get_register(ins.y))

    @asm("XOR V{x:X}, V{y:X}")
    def _set_vx_xor_vy(self, state, ins):
        self._logic(state, ins, state.get_register(ins.x) ^ state.get_register(ins.y))

    @asm("ADD V{x:X}, V{y:X}")
    def _add_vx_vy(self, state, ins):
        """set Vx = Vx + Vy, VF = carry"""
        total = state.get_register(ins.x) + state.get_register(ins.y)
        state.set_register(0xF, 1 if total > 0xFF else 0)
        state.set_register(ins.x, total & 0xFF)

    @asm("SUB V{x:X}, V{y:X}")
    def _sub_vx_vy(self, state, ins):
        """set Vx = Vx - Vy, VF = NOT borrow"""
        vx, vy = state.get_register(ins.x), state.get_register(ins.y)
        state.set_register(0xF, 1 if vx > vy else 0)
        state.set_register(ins.x, (vx - vy) & 0xFF)

    @asm("SUBN V{x:X}, V{y:X}")
    def _subn_vx_vy(self, state, ins):
        """set Vx = Vy - Vx, VF = NOT borrow"""
        vx, vy = state.get_register(ins.x), state.get_register(ins.y)
        state.set_register(0xF, 1 if vy > vx else 0)
        state.set_register(ins.x, (vy - vx) & 0xFF)

    def _shift_operands(self, state, ins):
        """value to shift and how far, according to the shift quirk"""
        if self.quirks.shift is ShiftQuirk.LEGACY_Y:
            return state.get_register(ins.y), 1
        if self.quirks.shift is ShiftQuirk.BY_COUNT:
            return state.get_register(ins.x), state.get_register(ins.y)
        return state.get_register(ins.x), 1

    @asm("SHR V{x:X}, V{y:X}")
    def _shr(self, state, ins):
        """set Vx = source SHR count, VF = last bit shifted out"""
        value, count = self._shift_operands(state, ins)
        lsb = (value >> (count - 1)) & 0x1 if count else 0
        state.set_register(0xF, lsb)
        state.set_register(ins.x, (value >> count) & 0xFF)

    @asm("SHL V{x:X}, V{y:X}")
    def _shl(self, state, ins):
        """set Vx = source SHL count, VF = last bit shifted out"""
        value, count = self._shift_operands(state, ins)
        msb = (value >> (8 - count)) & 0x1 if 1 <= count <= 8 else 0
        state.set_register(0xF, msb)
        state.set_register(ins.x, (value << count) & 0xFF)

    @asm("RND V{x:X}, 0x{nn:02x}")
    def _random_byte_and(self, state, ins):
        state.set_register(ins.x, state.random_byte() & ins.nn)

    # ********** TIMERS / KEYPAD
    @asm("LD V{x:X}, DT")
    def _set_vx_dt(self, state, ins):
        """set Vx = DT (delay timer) value"""
        state.set_register(ins.x, state.delay_timer)

    @asm("LD DT, V{x:X}")
    def _set_dt_vx(self, state, ins):
        """set DT (delay timer) = Vx"""
        state.delay_timer = state.get_register(ins.x)

    @asm("LD ST, V{x:X}")
    def _set_st(self, state, ins):
        """set ST (sound timer) = Vx"""
        state.sound_timer = state.get_register(ins.x)

    @asm("LD V{x:X}, K")
    def _wait_keypress(self, state, ins):
        """wait for a key press and store its value in Vx"""
        state.program_counter -= 0x2    # stay on the same instruction until a key is pressed
        key = state.first_pressed()
        if key is not None:
            state.set_register(ins.x, key)
            self._goto_next_instruction(state)

    # ********** INDEX REGISTER / MEMORY
    @asm("LD I, 0x{nnn:03x}")
    def _set_idx(self, state, ins):
        state.index_register = ins.nnn

    @asm("ADD I, V{x:X}")
    def _add_to_idx(self, state, ins):
        """set I = I + Vx"""
        state.index_register += state.get_register(ins.x)

    @asm("LD F, V{x:X}")
    def _select_char(self, state, ins):
        """set I to location of sprite for digit Vx"""
        digit = state.get_register(ins.x) & 0xF
        state.index_register = FONT_START_ADDRESS + digit * FONT_SPRITE_SIZE

    @asm("LD B, V{x:X}")
    def _bcd_repr(self, state, ins):
        """store the hundreds digit of Vx at I, the tens digit at I+1, the ones digit at I+2"""
        value = state.get_register(ins.x)
        idx = state.index_register
        state.mem[idx:idx+3] = (value // 100, (value // 10) % 10, value % 10)

    @asm("LD [I], V{x:X}")
    def _store_vregs(self, state, ins):
        """store registers V0 through Vx (included) in memory starting at location I"""
        idx = state.index_register
        state.mem[idx:idx+ins.x+1] = [state.get_register(r) for r in range(ins.x + 1)]
        if self.quirks.index_increment:
            state.index_register = idx + ins.x + 1

    @asm("LD V{x:X}, [I]")
    def _load_vregs(self, state, ins):
        """read registers V0 through Vx (included) from memory starting at location I"""
        idx = state.index_register
        for r, value in enumerate(state.mem[idx:idx+ins.x+1]):
            state.set_register(r, value)
        if self.quirks.index_increment:
            state.index_register = idx + ins.x + 1

    # ********** DISPLAY
    @asm("DRW V{x:X}, V{y:X}, {n}")
    def _to_screen(self, state, ins):
        """display n-byte sprite starting at memory location I at (Vx, Vy), set VF = collision"""
        clip = self.quirks.draw_wrap is DrawWrap.CLIP
        start_x = state.get_register(ins.x) % SCREEN_WIDTH
        start_y = state.get_register(ins.y) % SCREEN_HEIGHT
        # whole sprite read up front: a read past memory fails before the display changes
        idx = state.index_register
        sprite = state.mem[idx:idx+ins.n]
        state.set_register(0xF, 0)
        for row, sprite_byte in enumerate(sprite):
            y = start_y + row
            if y >= SCREEN_HEIGHT:
                if clip:
                    break
                y %= SCREEN_HEIGHT
            for col in range(8):        # most significant bit first
                if not sprite_byte & (0x80 >> col):
                    continue
                x = start_x + col
                if x >= SCREEN_WIDTH:
                    if clip:
                        break
                    x %= SCREEN_WIDTH
                # sprites are XORed onto the screen, erasing a lit pixel is a collision
                if state.get_pixel(x, y):
                    state.set_pixel(x, y, 0)
                    state.set_register(0xF, 1)
                else:
                    state.set_pixel(x, y, 1)


# ******************** DRIVER SECTION
@lru_cache(maxsize=None)
def _executor_for(quirks):
    return Executor(quirks)

def new_machine(random_source=None, foreground=WHITE, background=BLACK):
    return MachineState(random_source, foreground, background)

def load_program(state, rom):
    state.load_program(rom)

def execute(opcode, quirks, state):
    return _executor_for(quirks or Quirks()).execute(opcode, state)

def cycle(state, quirks=None):
    """perform one fetch + execute on state"""
    return _executor_for(quirks or Quirks()).cycle(state)

def tick_timers(state):
    state.decrement_timers()

def get_display(state):
    return state.display_view()

def set_key(state, keycode, pressed):
    state.set_key(keycode, pressed)

def disassemble(opcode):
    return _executor_for(Quirks()).disassemble(opcode)
