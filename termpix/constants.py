#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

import sys
from typing import NamedTuple


class Version(NamedTuple):
    major: int
    minor: int
    patch: int


appname: str = 'termpix'
version: Version = Version(0, 4, 0)
str_version: str = '.'.join(map(str, version))
_plat = sys.platform.lower()
is_macos: bool = 'darwin' in _plat

BYPASS_ENV_VAR = 'TERMPIX_BYPASS_DETECTION'
DEBUG_ENV_VAR = 'TERMPIX_DEBUG'

# Wire
BASE64_CHUNK_SIZE = 4096
DEFAULT_ENCODING_WORKERS = 4
ITERM2_CHUNK_SIZE = 0x40000
MAX_IMAGE_ID = 0xffffffff
PASSTHROUGH_START = '\033Ptmux;'
PASSTHROUGH_END = '\033\\'

# Probing, in seconds
QUERY_TIMEOUT = 0.1
MAX_QUERY_TIMEOUT = 0.2
QUERY_BUFFER_SIZE = 256
KITTY_QUERY_ID = 42
MIN_FONT_DIMENSION = 4
MAX_FONT_DIMENSION = 50

# Pipeline
DEFAULT_CACHE_SIZE = 100
DEFAULT_PALETTE_SIZE = 256
MIN_PALETTE_SIZE = 2
MAX_PALETTE_SIZE = 256

# Used when there is no terminal to ask
DEFAULT_TERMINAL_COLUMNS = 80
DEFAULT_TERMINAL_ROWS = 24
DEFAULT_FONT_SIZE = 7, 14
FONT_SIZE_BY_PROGRAM = {
    'Apple_Terminal': (7, 16),
    'iTerm.app': (7, 14),
    'ghostty': (9, 18),
    'WezTerm': (8, 16),
    'mintty': (7, 14),
    'rio': (8, 16),
}
# Checked in order against a lowercased TERM
FONT_SIZE_BY_TERM = (
    ('xterm', (6, 13)),
    ('mlterm', (7, 14)),
    ('foot', (8, 16)),
    ('wezterm', (8, 16)),
    ('vt340', (9, 15)),
)
