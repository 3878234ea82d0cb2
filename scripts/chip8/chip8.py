# CHIP-8 PYGAME FRONTEND
# drives chip8_executor at a fixed instruction rate, ticks the timers at 60Hz
# and renders the machine framebuffer
#
# usage: python chip8.py -f roms/IBM.ch8 --dialect mikolay


import argparse
import sys

import os
os.environ["PYGAME_HIDE_SUPPORT_PROMPT"] = "no welcome message"   # this env var disable pygame's welcome message when imported
import numpy as np
import pygame
from pygame.locals import (
    K_0, K_1, K_2, K_3,
    K_4, K_5, K_6, K_7,
    K_8, K_9, K_a, K_b,
    K_c, K_d, K_e, K_f,
)

from chip8_executor import (
    DEBUG,
    DIALECTS,
    DrawWrap,
    Executor,
    Quirks,
    ShiftQuirk,
    get_display,
    new_machine,
    set_key,
    tick_timers,
)
from chip8_machine import SCREEN_HEIGHT, SCREEN_WIDTH, Chip8Error


# ******************** STATIC SECTION
KEY_MAPPINGS = {
    K_0: 0x0,
    K_1: 0x1,
    K_2: 0x2,
    K_3: 0x3,
    K_4: 0x4,
    K_5: 0x5,
    K_6: 0x6,
    K_7: 0x7,
    K_8: 0x8,
    K_9: 0x9,
    K_a: 0xA,
    K_b: 0xB,
    K_c: 0xC,
    K_d: 0xD,
    K_e: 0xE,
    K_f: 0xF,
}

SCALE = 15
TIMER_HZ = 60
DEFAULT_SPEED = 600     # instructions per second
BLUE = (80, 69, 155)
LIGHT_BLUE = (136, 126, 203)


# ******************** CONFIGURATION SECTION
def parse_color(value):
    """turn '#887ecb' style hex strings into an (r, g, b) tuple"""
    value = value.lstrip('#')
    if len(value) != 6:
        raise argparse.ArgumentTypeError(f"{value!r} is not a RRGGBB hex color")
    try:
        return tuple(int(value[i:i+2], 16) for i in (0, 2, 4))
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value!r} is not a RRGGBB hex color") from None

def get_args(argv=None):
    parser = argparse.ArgumentParser(description="CHIP-8 interpreter")
    parser.add_argument("-f", "--file", required=True, help="input rom file")
    parser.add_argument("--dialect", choices=sorted(DIALECTS), help="start from the quirks of a known interpreter")
    parser.add_argument("--shift", choices=[q.value for q in ShiftQuirk], help="8XY6/8XYE source register")
    parser.add_argument("--index-increment", action=argparse.BooleanOptionalAction, default=None,
                        help="FX55/FX65 leave I = I + X + 1")
    parser.add_argument("--clip", action="store_true", help="clip sprites at the screen edge instead of wrapping them")
    parser.add_argument("--vf-reset", action="store_true", help="8XY1/8XY2/8XY3 clear VF")
    parser.add_argument("--lenient", action="store_true", help="skip unknown opcodes instead of halting")
    parser.add_argument("--speed", type=int, default=DEFAULT_SPEED, help="instructions per second")
    parser.add_argument("--fg", type=parse_color, default=LIGHT_BLUE, help="foreground color, RRGGBB")
    parser.add_argument("--bg", type=parse_color, default=BLUE, help="background color, RRGGBB")
    return parser.parse_args(argv)

def get_quirks(args):
    """command line flags on top of the chosen dialect (or the defaults)"""
    overrides = {}
    if args.shift:
        overrides['shift'] = ShiftQuirk(args.shift)
    if args.index_increment is not None:
        overrides['index_increment'] = args.index_increment
    if args.clip:
        overrides['draw_wrap'] = DrawWrap.CLIP
    if args.vf_reset:
        overrides['vf_reset'] = True
    if args.lenient:
        overrides['strict'] = False
    if args.dialect:
        return Quirks.preset(args.dialect, **overrides)
    return Quirks(**overrides)


# ******************** I/O SECTION
class Screen:
    def __init__(self, w=SCREEN_WIDTH, h=SCREEN_HEIGHT, s=SCALE, bg_color=BLUE, fg_color=LIGHT_BLUE):
        self.w, self.h, self.scale = w, h, s
        self.background = np.array(bg_color, dtype=np.uint8)
        self.foreground = np.array(fg_color, dtype=np.uint8)
        self.surface = pygame.display.set_mode(
            (w * self.scale, h * self.scale),
        )
        self.surface.fill(bg_color)

    def frame(self, pixels):
        """map a [y, x] 0/1 framebuffer to a colored (w, h, 3) array as pygame expects it"""
        return np.where(pixels.T[..., None] == 1, self.foreground, self.background)

    def refresh(self, pixels):
        small = pygame.surfarray.make_surface(self.frame(pixels))
        pygame.transform.scale(small, self.surface.get_size(), self.surface)
        pygame.display.flip()


# ******************** ENTRY POINT SECTION
def main(argv=None):
    args = get_args(argv)
    quirks = get_quirks(args)
    # pygame initialization
    pygame.init()
    clock = pygame.time.Clock()
    pygame.display.set_caption(args.file.split('/')[-1])
    # CPU
    chip = new_machine(foreground=args.fg, background=args.bg)
    try:
        size = chip.load_rom_file(args.file)
    except (OSError, Chip8Error) as err:
        sys.exit(f"Cannot load the ROM: {err}")
    if DEBUG: print(f"The ROM at path {args.file} ({size} bytes) has been loaded successfully")
    executor = Executor(quirks)
    # IO
    s = Screen(bg_color=chip.background, fg_color=chip.foreground)
    cycles_per_frame = max(1, args.speed // TIMER_HZ)
    # emulation loop
    run = True
    while run:
        # one frame per timer tick
        clock.tick(TIMER_HZ)
        # process user input
        # loop throught the event queue
        for event in pygame.event.get():
            if event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    run = False
                elif event.key in KEY_MAPPINGS:
                    set_key(chip, KEY_MAPPINGS[event.key], True)
            elif event.type == pygame.KEYUP:
                if event.key in KEY_MAPPINGS:
                    set_key(chip, KEY_MAPPINGS[event.key], False)
            elif event.type == pygame.QUIT:
                run = False
        try:
            for _ in range(cycles_per_frame):
                executor.cycle(chip)    # emulate one machine cycle (fetch opcode, decode opcode, execute opcode)
        except Chip8Error as err:
            pygame.quit()
            sys.exit(f"********** THE EMULATOR CRASHED WITH THE FOLLOWING STATE\n{chip}\n{err}")
        tick_timers(chip)
        s.refresh(get_display(chip))
    pygame.quit()


if __name__ == "__main__":
    main()
