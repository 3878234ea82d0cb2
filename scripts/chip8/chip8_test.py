import argparse
import unittest

from chip8 import get_args, get_quirks, parse_color
from chip8_executor import DrawWrap, Quirks, ShiftQuirk


class TestArguments(unittest.TestCase):
    def test_defaults(self):
        args = get_args(["-f", "pong.ch8"])
        self.assertEqual(args.file, "pong.ch8")
        self.assertEqual(get_quirks(args), Quirks())

    def test_dialect_with_overrides(self):
        args = get_args(["-f", "pong.ch8", "--dialect", "mikolay", "--no-index-increment", "--clip"])
        quirks = get_quirks(args)
        self.assertEqual(quirks.shift, ShiftQuirk.LEGACY_Y)
        self.assertFalse(quirks.index_increment)
        self.assertEqual(quirks.draw_wrap, DrawWrap.CLIP)

    def test_flags(self):
        args = get_args(["-f", "pong.ch8", "--shift", "by-count", "--vf-reset", "--lenient"])
        self.assertEqual(get_quirks(args), Quirks(shift=ShiftQuirk.BY_COUNT, vf_reset=True, strict=False))

    def test_colors(self):
        args = get_args(["-f", "pong.ch8", "--fg", "#ffffff", "--bg", "000000"])
        self.assertEqual(args.fg, (255, 255, 255))
        self.assertEqual(args.bg, (0, 0, 0))


class TestParseColor(unittest.TestCase):
    def test_valid(self):
        self.assertEqual(parse_color("#887ecb"), (0x88, 0x7E, 0xCB))

    def test_invalid(self):
        for value in ("#fff", "zzzzzz", ""):
            with self.subTest(value=value):
                with self.assertRaises(argparse.ArgumentTypeError):
                    parse_color(value)


if __name__ == "__main__":
    unittest.main()
