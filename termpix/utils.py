#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

import math
import os
import sys
from contextlib import suppress
from functools import lru_cache
from typing import Any, NamedTuple, cast

from .constants import DEBUG_ENV_VAR


def log_error(*a: Any, **k: str) -> None:
    with suppress(Exception):
        msg = k.get('sep', ' ').join(map(str, a)) + k.get('end', '\n')
        sys.stderr.write(msg.replace('\0', ''))
        sys.stderr.flush()


def debug_enabled() -> bool:
    return bool(os.environ.get(DEBUG_ENV_VAR))


def debug(*a: Any) -> None:
    if debug_enabled():
        log_error('termpix:', *a)


def ceil_int(x: float) -> int:
    return int(math.ceil(x))


class ScreenSize(NamedTuple):
    rows: int
    cols: int
    width: int
    height: int
    cell_width: int
    cell_height: int


class ScreenSizeGetter:
    changed = True
    Size = ScreenSize
    ans: ScreenSize | None = None

    def __init__(self, fd: int | None):
        if fd is None:
            fd = sys.stdout.fileno()
        self.fd = fd

    def __call__(self) -> ScreenSize:
        if self.changed:
            import array
            import fcntl
            import termios
            buf = array.array('H', [0, 0, 0, 0])
            fcntl.ioctl(self.fd, termios.TIOCGWINSZ, cast(bytearray, buf))
            rows, cols, width, height = tuple(buf)
            cell_width, cell_height = width // (cols or 1), height // (rows or 1)
            self.ans = ScreenSize(rows, cols, width, height, cell_width, cell_height)
            self.changed = False
        return cast(ScreenSize, self.ans)


@lru_cache(maxsize=64)
def screen_size_function(fd: int | None = None) -> ScreenSizeGetter:
    return ScreenSizeGetter(fd)


def terminal_size() -> tuple[int, int] | None:
    ' (cols, rows) of the terminal stdout or stdin is connected to '
    for fd in (None, 0):
        try:
            ss = screen_size_function(fd)()
        except (OSError, ValueError):
            continue
        if ss.cols > 0 and ss.rows > 0:
            return ss.cols, ss.rows
    return None


def write_all(fd: int, data: str | bytes) -> None:
    if isinstance(data, str):
        data = data.encode('utf-8')
    while data:
        n = os.write(fd, data)
        if not n:
            break
        data = data[n:]


def is_interactive() -> bool:
    try:
        return sys.stdin.isatty()
    except (AttributeError, ValueError):
        return False
