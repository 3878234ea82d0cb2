# CHIP-8 MACHINE STATE
# memory, registers, stack, timers, display and keypad of one running program
#
# MEMORY MAP
# 0x000-0x04F   font sprites (read only)
# 0x050-0x1FF   free, historically the interpreter itself
# 0x200-0xFFF   program + scratch


import os
import random
from enum import IntEnum

import numpy as np


# ******************** STATIC SECTION
C8_FONTS = [0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
            0x20, 0x60, 0x20, 0x20, 0x70,  # 1
            0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
            0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
            0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
            0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
            0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
            0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
            0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
            0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
            0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
            0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
            0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
            0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
            0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
            0xF0, 0x80, 0xF0, 0x80, 0x80]  # F

MEMORY_SIZE = 4096
FONT_START_ADDRESS = 0x000
FONT_END_ADDRESS = FONT_START_ADDRESS + len(C8_FONTS)
FONT_SPRITE_SIZE = 5
ROM_START_ADDRESS = 0x200
ROM_MAX_SIZE = 3215
STACK_SIZE = 16
REGISTER_COUNT = 16
KEY_COUNT = 16
SCREEN_WIDTH = 64
SCREEN_HEIGHT = 32
WHITE = (255, 255, 255)
BLACK = (0, 0, 0)


class Key(IntEnum):
    UP = 0
    DOWN = 1

class KeyCode(IntEnum):
    ZERO = 0x0
    ONE = 0x1
    TWO = 0x2
    THREE = 0x3
    FOUR = 0x4
    FIVE = 0x5
    SIX = 0x6
    SEVEN = 0x7
    EIGHT = 0x8
    NINE = 0x9
    A = 0xA
    B = 0xB
    C = 0xC
    D = 0xD
    E = 0xE
    F = 0xF

class Registers(IntEnum):
    R0 = 0x0
    R1 = 0x1
    R2 = 0x2
    R3 = 0x3
    R4 = 0x4
    R5 = 0x5
    R6 = 0x6
    R7 = 0x7
    R8 = 0x8
    R9 = 0x9
    RA = 0xA
    RB = 0xB
    RC = 0xC
    RD = 0xD
    RE = 0xE
    RF = 0xF    # carry / borrow / collision flag


# ******************** ERRORS SECTION
class Chip8Error(Exception):
    """base class of every condition a conforming program should never trigger"""

class RomTooLarge(Chip8Error):
    pass

class StackOverflow(Chip8Error):
    pass

class StackUnderflow(Chip8Error):
    pass

class MemoryOutOfBounds(Chip8Error):
    pass

class IndexOutOfRange(Chip8Error, IndexError):
    """register, key or pixel index outside of what the machine has"""

class UnknownOpcode(Chip8Error):
    def __init__(self, opcode, address=None):
        self.opcode = opcode
        self.address = address
        where = f" at 0x{address:04x}" if address is not None else ""
        super().__init__(f"Unknown opcode 0x{opcode:04x}{where}")


# ******************** MEMORY SECTION
# ********** WRAPS A LIST TO REPRESENT A STACK WITH A LIMITED SIZE OF 16 ADDRESSES
class Stack:
    def __init__(self, capacity=STACK_SIZE):
        self.addr_list = []
        self.capacity = capacity

    def __len__(self):
        return len(self.addr_list)

    def __repr__(self):
        return f"Stack({[hex(a) for a in self.addr_list]})"

    def append(self, address):
        if len(self.addr_list) >= self.capacity:
            raise StackOverflow(f"The CHIP-8 stack can contain at most {self.capacity} addresses. Limit exceeded")
        self.addr_list.append(address)

    def pop(self):
        if not self.addr_list:
            raise StackUnderflow("Return with an empty CHIP-8 stack")
        return self.addr_list.pop()

    def top(self):
        """peek at the most recent return address without removing it"""
        if not self.addr_list:
            raise StackUnderflow("The CHIP-8 stack is empty")
        return self.addr_list[-1]

# ********** WRAPS A BYTEARRAY TO REPRESENT THE MAIN MEMORY WITH A LIMITED SIZE OF 4KB
class Memory:
    def __init__(self):
        self.inner = bytearray(MEMORY_SIZE)
        self.inner[FONT_START_ADDRESS:FONT_END_ADDRESS] = bytes(C8_FONTS)

    def __len__(self):
        return len(self.inner)

    def _check_range(self, start, stop):
        if start < 0 or stop > MEMORY_SIZE or start > stop:
            raise MemoryOutOfBounds(f"Memory access [0x{start:x}, 0x{stop:x}) outside of [0x0, 0x{MEMORY_SIZE:x})")

    def _check_writable(self, start, stop):
        if start < FONT_END_ADDRESS and stop > FONT_START_ADDRESS:
            raise MemoryOutOfBounds(f"Memory write [0x{start:x}, 0x{stop:x}) overlaps the read-only font area")

    def _as_range(self, key):
        if isinstance(key, slice):
            if key.step not in (None, 1):
                raise ValueError("Memory slices must be contiguous")
            start = 0 if key.start is None else key.start
            stop = MEMORY_SIZE if key.stop is None else key.stop
            return start, stop
        return key, key + 1

    def __getitem__(self, key):
        start, stop = self._as_range(key)
        self._check_range(start, stop)
        if isinstance(key, slice):
            return bytes(self.inner[start:stop])
        return self.inner[key]

    def __setitem__(self, key, value):
        start, stop = self._as_range(key)
        self._check_range(start, stop)
        self._check_writable(start, stop)
        if isinstance(key, slice):
            value = bytes(value)
            if len(value) != stop - start:
                raise ValueError("Memory slice assignment cannot change the memory size")
            self.inner[start:stop] = value
        else:
            self.inner[key] = value     # bytearray rejects values outside 0..255

    def load_rom(self, rom):
        """copy a program into memory starting at ROM_START_ADDRESS, refuse it if it doesn't fit"""
        if len(rom) > ROM_MAX_SIZE:
            raise RomTooLarge(f"The ROM is {len(rom)} bytes long, at most {ROM_MAX_SIZE} bytes are allowed")
        self[ROM_START_ADDRESS:ROM_START_ADDRESS+len(rom)] = rom


# ******************** STATE SECTION
def _default_random_source():
    return random.randint(0, 255)

class MachineState:
    """
    the whole architectural state of a CHIP-8 program

    it knows nothing about opcodes: every field is reached through
    bounds-checked accessors that raise instead of corrupting the state
    """
    def __init__(self, random_source=None, foreground=WHITE, background=BLACK):
        self.mem = Memory()
        self.stack = Stack()
        self.v_regs = [0] * REGISTER_COUNT
        self._pc = ROM_START_ADDRESS
        self._idx = 0   # specify where the sprites reside in memory
        self._dt = 0    # delay timer, active when non-zero
        self._st = 0    # sound timer, active when non-zero
        self.display = np.zeros((SCREEN_HEIGHT, SCREEN_WIDTH), dtype=np.uint8)
        self.keys = [Key.UP] * KEY_COUNT
        self.random_source = random_source or _default_random_source
        # rendering only, never read by the interpreter
        self.foreground = foreground
        self.background = background

    def __str__(self):
        registers = f"PC_REGISTER:0x{self._pc:04x} | IDX_REGISTER:0x{self._idx:04x} | VARIABLE_REGISTERS:{self.v_regs}"
        timers = f"DT:{self._dt} | ST:{self._st}"
        top = f"0x{self.stack.top():04x}" if len(self.stack) else "-"
        stack = f"STACK:{self.stack} | TOP:{top}"
        return f"{registers}\n{timers}\n{stack}"

    # ********** FETCH / LOAD
    def fetch(self):
        """read the big endian opcode at PC and move PC to the following one"""
        if self._pc > MEMORY_SIZE - 2:
            raise MemoryOutOfBounds(f"Cannot fetch an opcode at 0x{self._pc:04x}")
        opcode = self.mem[self._pc] << 8 | self.mem[self._pc + 1]
        self._pc += 2
        return opcode

    def load_program(self, rom):
        self.mem.load_rom(rom)

    def load_rom_file(self, path):
        """load ROM file from user specified path, raise an exception if it can't be read"""
        if not os.path.exists(path):
            raise FileNotFoundError(f"file: {path} does not exist")
        if not os.path.isfile(path):
            raise IsADirectoryError(f"file: {path} is not a regular file. Will not attempt to read")
        with open(path, mode='rb') as f:
            rom = f.read()
        self.load_program(rom)
        return len(rom)

    # ********** REGISTERS
    def get_register(self, r):
        if not 0 <= r < REGISTER_COUNT:
            raise IndexOutOfRange(f"There is no V{r} register")
        return self.v_regs[r]

    def set_register(self, r, value):
        if not 0 <= r < REGISTER_COUNT:
            raise IndexOutOfRange(f"There is no V{r} register")
        if not 0 <= value <= 0xFF:
            raise ValueError(f"V{r:X} is an 8 bit register, got {value}")
        self.v_regs[r] = value

    @property
    def index_register(self):
        return self._idx

    @index_register.setter
    def index_register(self, value):
        if not 0 <= value <= 0xFFFF:
            raise MemoryOutOfBounds(f"Index register value 0x{value:x} does not fit in 16 bits")
        self._idx = value

    @property
    def program_counter(self):
        return self._pc

    @program_counter.setter
    def program_counter(self, value):
        if not 0 <= value < MEMORY_SIZE:
            raise MemoryOutOfBounds(f"Program counter 0x{value:x} outside of the {MEMORY_SIZE} bytes memory")
        self._pc = value

    # ********** TIMERS
    @property
    def delay_timer(self):
        return self._dt

    @delay_timer.setter
    def delay_timer(self, value):
        if not 0 <= value <= 0xFF:
            raise ValueError(f"The delay timer is 8 bit, got {value}")
        self._dt = value

    @property
    def sound_timer(self):
        return self._st

    @sound_timer.setter
    def sound_timer(self, value):
        if not 0 <= value <= 0xFF:
            raise ValueError(f"The sound timer is 8 bit, got {value}")
        self._st = value

    def decrement_timers(self):
        """meant to be called 60 times per second by whoever drives the machine"""
        if self._dt > 0:
            self._dt -= 1
        if self._st > 0:
            self._st -= 1

    # ********** STACK
    def push(self, address):
        self.stack.append(address)

    def pop(self):
        return self.stack.pop()

    # ********** RANDOMNESS
    def random_byte(self):
        value = self.random_source()
        if not 0 <= value <= 0xFF:
            raise ValueError(f"The random source returned {value}, a byte was expected")
        return value

    # ********** DISPLAY
    def get_pixel(self, x, y):
        """return 1 if pixel is ON, return 0 if pixel is OFF"""
        if not (0 <= x < SCREEN_WIDTH and 0 <= y < SCREEN_HEIGHT):
            raise IndexOutOfRange(f"Pixel ({x}, {y}) is outside of the {SCREEN_WIDTH}x{SCREEN_HEIGHT} display")
        return int(self.display[y, x])

    def set_pixel(self, x, y, value):
        if not (0 <= x < SCREEN_WIDTH and 0 <= y < SCREEN_HEIGHT):
            raise IndexOutOfRange(f"Pixel ({x}, {y}) is outside of the {SCREEN_WIDTH}x{SCREEN_HEIGHT} display")
        self.display[y, x] = 1 if value else 0

    def clear_display(self):
        self.display.fill(0)

    def display_view(self):
        """read only view of the framebuffer, indexed [y, x]"""
        view = self.display.view()
        view.flags.writeable = False
        return view

    # ********** KEYPAD
    def get_key(self, key):
        if not 0 <= key < KEY_COUNT:
            raise IndexOutOfRange(f"There is no key 0x{key:x} on the CHIP-8 keypad")
        return self.keys[key]

    def set_key(self, key, state):
        if not 0 <= key < KEY_COUNT:
            raise IndexOutOfRange(f"There is no key 0x{key:x} on the CHIP-8 keypad")
        self.keys[key] = Key.DOWN if state else Key.UP

    def reset_keys(self):
        self.keys = [Key.UP] * KEY_COUNT

    def first_pressed(self):
        """lowest key code currently held down, None when the keypad is untouched"""
        for code, state in enumerate(self.keys):
            if state == Key.DOWN:
                return code
        return None
