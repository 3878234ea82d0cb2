import os
import tempfile
import unittest

import numpy as np

from chip8_machine import (
    C8_FONTS,
    Chip8Error,
    IndexOutOfRange,
    ROM_MAX_SIZE,
    ROM_START_ADDRESS,
    Key,
    KeyCode,
    MachineState,
    Memory,
    MemoryOutOfBounds,
    Registers,
    RomTooLarge,
    Stack,
    StackOverflow,
    StackUnderflow,
)


class TestMemory(unittest.TestCase):
    def test_fonts_loaded(self):
        mem = Memory()
        self.assertEqual(mem[0x00:0x50], bytes(C8_FONTS))
        self.assertEqual(mem[0x50], 0)

    def test_font_area_is_read_only(self):
        mem = Memory()
        with self.assertRaises(MemoryOutOfBounds):
            mem[0x10] = 0xAA
        with self.assertRaises(MemoryOutOfBounds):
            mem[0x4E:0x52] = b"\x01\x02\x03\x04"

    def test_out_of_bounds(self):
        mem = Memory()
        with self.assertRaises(MemoryOutOfBounds):
            mem[0x1000]
        with self.assertRaises(MemoryOutOfBounds):
            mem[-1]
        with self.assertRaises(MemoryOutOfBounds):
            mem[0xFFE:0x1001] = b"\x00\x00\x00"

    def test_slice_write(self):
        mem = Memory()
        mem[0x300:0x303] = [1, 5, 7]
        self.assertEqual(mem[0x300:0x303], b"\x01\x05\x07")

    def test_load_rom(self):
        mem = Memory()
        mem.load_rom(b"\x60\x05")
        self.assertEqual(mem[ROM_START_ADDRESS], 0x60)
        self.assertEqual(mem[ROM_START_ADDRESS + 1], 0x05)

    def test_load_rom_too_large(self):
        mem = Memory()
        with self.assertRaises(RomTooLarge):
            mem.load_rom(b"\x01" * (ROM_MAX_SIZE + 1))
        # nothing written
        self.assertEqual(mem[ROM_START_ADDRESS], 0)

    def test_load_rom_max_size(self):
        mem = Memory()
        mem.load_rom(b"\x01" * ROM_MAX_SIZE)
        self.assertEqual(mem[ROM_START_ADDRESS + ROM_MAX_SIZE - 1], 1)
        self.assertEqual(mem[ROM_START_ADDRESS + ROM_MAX_SIZE], 0)


class TestStack(unittest.TestCase):
    def test_push_pop(self):
        stack = Stack()
        stack.append(0x202)
        stack.append(0x304)
        self.assertEqual(stack.top(), 0x304)
        self.assertEqual(stack.pop(), 0x304)
        self.assertEqual(stack.pop(), 0x202)
        self.assertEqual(len(stack), 0)

    def test_overflow(self):
        stack = Stack()
        for addr in range(16):
            stack.append(addr)
        with self.assertRaises(StackOverflow):
            stack.append(0x200)
        self.assertEqual(len(stack), 16)

    def test_underflow(self):
        with self.assertRaises(StackUnderflow):
            Stack().pop()


class TestMachineState(unittest.TestCase):
    def setUp(self):
        self.state = MachineState(random_source=lambda: 0x5A)

    def test_initial_state(self):
        self.assertEqual(self.state.program_counter, 0x200)
        self.assertEqual(self.state.index_register, 0)
        self.assertEqual(self.state.v_regs, [0] * 16)
        self.assertEqual(self.state.delay_timer, 0)
        self.assertEqual(self.state.sound_timer, 0)
        self.assertFalse(self.state.display.any())
        self.assertEqual(self.state.display.shape, (32, 64))
        self.assertTrue(all(k == Key.UP for k in self.state.keys))

    def test_fetch(self):
        self.state.load_program(b"\x12\x34\xAB\xCD")
        self.assertEqual(self.state.fetch(), 0x1234)
        self.assertEqual(self.state.program_counter, 0x202)
        self.assertEqual(self.state.fetch(), 0xABCD)
        self.assertEqual(self.state.program_counter, 0x204)

    def test_fetch_past_memory(self):
        self.state.program_counter = 0xFFF
        with self.assertRaises(MemoryOutOfBounds):
            self.state.fetch()

    def test_program_counter_bounds(self):
        with self.assertRaises(MemoryOutOfBounds):
            self.state.program_counter = 0x1000

    def test_registers(self):
        self.state.set_register(Registers.RA, 0xFF)
        self.assertEqual(self.state.get_register(0xA), 0xFF)
        with self.assertRaises(IndexOutOfRange):
            self.state.get_register(16)
        with self.assertRaises(ValueError):
            self.state.set_register(0, 256)

    def test_index_register_bounds(self):
        self.state.index_register = 0xFFFF
        with self.assertRaises(MemoryOutOfBounds):
            self.state.index_register = 0x10000

    def test_timers(self):
        self.state.delay_timer = 2
        self.state.sound_timer = 1
        self.state.decrement_timers()
        self.assertEqual((self.state.delay_timer, self.state.sound_timer), (1, 0))
        self.state.decrement_timers()
        self.state.decrement_timers()
        self.assertEqual((self.state.delay_timer, self.state.sound_timer), (0, 0))

    def test_random_byte(self):
        self.assertEqual(self.state.random_byte(), 0x5A)
        broken = MachineState(random_source=lambda: 300)
        with self.assertRaises(ValueError):
            broken.random_byte()

    def test_str_shows_stack_top(self):
        self.assertIn("TOP:-", str(self.state))
        self.state.push(0x20A)
        self.assertIn("TOP:0x020a", str(self.state))

    def test_push_pop(self):
        self.state.push(0x20A)
        self.assertEqual(self.state.pop(), 0x20A)
        with self.assertRaises(StackUnderflow):
            self.state.pop()

    def test_pixels(self):
        self.state.set_pixel(63, 31, 1)
        self.assertEqual(self.state.get_pixel(63, 31), 1)
        self.assertEqual(self.state.display[31, 63], 1)
        with self.assertRaises(IndexOutOfRange):
            self.state.get_pixel(64, 0)
        self.state.clear_display()
        self.assertFalse(self.state.display.any())

    def test_display_view_is_read_only(self):
        view = self.state.display_view()
        with self.assertRaises(ValueError):
            view[0, 0] = 1
        self.state.set_pixel(1, 0, 1)
        self.assertEqual(view[0, 1], 1)

    def test_keys(self):
        self.assertIsNone(self.state.first_pressed())
        self.state.set_key(KeyCode.B, True)
        self.state.set_key(KeyCode.FIVE, Key.DOWN)
        self.assertEqual(self.state.get_key(0xB), Key.DOWN)
        self.assertEqual(self.state.first_pressed(), 0x5)
        self.state.set_key(KeyCode.FIVE, False)
        self.assertEqual(self.state.first_pressed(), 0xB)
        self.state.reset_keys()
        self.assertIsNone(self.state.first_pressed())
        with self.assertRaises(IndexOutOfRange):
            self.state.set_key(16, True)

    def test_colors_are_carried(self):
        state = MachineState(foreground=(1, 2, 3), background=(4, 5, 6))
        self.assertEqual(state.foreground, (1, 2, 3))
        self.assertEqual(state.background, (4, 5, 6))

    def test_load_rom_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "rom.ch8")
            with open(path, "wb") as f:
                f.write(b"\x00\xE0")
            self.assertEqual(self.state.load_rom_file(path), 2)
            self.assertEqual(self.state.fetch(), 0x00E0)
            with self.assertRaises(FileNotFoundError):
                self.state.load_rom_file(os.path.join(tmp, "missing.ch8"))
            with self.assertRaises(IsADirectoryError):
                self.state.load_rom_file(tmp)

    def test_index_errors_are_chip8_errors(self):
        for access in (lambda: self.state.get_register(16), lambda: self.state.get_key(0x13),
                       lambda: self.state.set_pixel(0, 32, 1)):
            with self.assertRaises(Chip8Error):
                access()

    def test_display_dtype(self):
        self.assertEqual(self.state.display.dtype, np.uint8)


if __name__ == "__main__":
    unittest.main()
