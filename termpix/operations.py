#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

import sys
from collections.abc import Generator
from contextlib import contextmanager

SAVE_CURSOR = '\0337'
RESTORE_CURSOR = '\0338'
BEL = '\a'


def clear_screen() -> str:
    return '\033[H\033[2J'


def clear_screen_and_scrollback() -> str:
    return '\033[2J\033[3J\033[H'


def clear_line() -> str:
    return '\033[2K'


def set_cursor_position(x: int = 0, y: int = 0) -> str:  # (0, 0) is top left
    return f'\033[{y + 1};{x + 1}H'


def move_cursor_by(amt: int, direction: str) -> str:
    suffix = {'up': 'A', 'down': 'B', 'right': 'C', 'left': 'D'}[direction]
    return f'\033[{amt}{suffix}'


def erase_characters(count: int) -> str:
    return f'\033[{count}X'


def reset_sgr() -> str:
    return '\033[0m'


def fg_truecolor(r: int, g: int, b: int) -> str:
    return f'\033[38;2;{r};{g};{b}m'


def bg_truecolor(r: int, g: int, b: int) -> str:
    return f'\033[48;2;{r};{g};{b}m'


def fg_256(idx: int) -> str:
    return f'\033[38;5;{max(0, min(idx, 255))}m'


def bg_256(idx: int) -> str:
    return f'\033[48;5;{max(0, min(idx, 255))}m'


def reset_fg() -> str:
    return '\033[39m'


def reset_bg() -> str:
    return '\033[49m'


def primary_device_attributes() -> str:
    return '\033[c'


def report_window_size_in_pixels() -> str:
    return '\033[14t'


def report_cell_size_in_pixels() -> str:
    return '\033[16t'


def report_size_in_cells() -> str:
    return '\033[18t'


def osc(payload: str, terminator: str = BEL) -> str:
    return f'\033]{payload}{terminator}'


@contextmanager
def raw_mode(fd: int | None = None) -> Generator[None, None, None]:
    import termios
    import tty
    if fd is None:
        fd = sys.stdin.fileno()
    old = termios.tcgetattr(fd)
    try:
        tty.setraw(fd)
        yield
    finally:
        termios.tcsetattr(fd, termios.TCSADRAIN, old)
