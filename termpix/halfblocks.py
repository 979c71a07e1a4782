#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

from functools import lru_cache
from typing import TYPE_CHECKING, TextIO

from .constants import DEFAULT_TERMINAL_COLUMNS, DEFAULT_TERMINAL_ROWS
from .errors import EncodeError
from .operations import bg_256, bg_truecolor, clear_screen_and_scrollback, fg_256, fg_truecolor, move_cursor_by, reset_bg, reset_fg, reset_sgr
from .pipeline import compute_target_size, dither_image, resize_image, terminal_cells
from .renderers import ClearOptions, Renderer, RenderOptions
from .types import DitherMode, Protocol, ScaleMode

if TYPE_CHECKING:
    from PIL.Image import Image as PILImage

    from .detect import Features

UPPER_HALF = '▀'
LOWER_HALF = '▄'
CUBE_LEVELS = (0, 95, 135, 175, 215, 255)
CLEAR_DEFAULT_SIZE = 80, 20
RGB = tuple[int, int, int]


def nearest_cube_level(x: int) -> int:
    return min(range(6), key=lambda i: abs(CUBE_LEVELS[i] - x))


@lru_cache(maxsize=4096)
def xterm_256(r: int, g: int, b: int) -> int:
    ' Index of the closest xterm-256 colour, from the 6x6x6 cube or the grey ramp '
    ri, gi, bi = nearest_cube_level(r), nearest_cube_level(g), nearest_cube_level(b)
    cr, cg, cb = CUBE_LEVELS[ri], CUBE_LEVELS[gi], CUBE_LEVELS[bi]
    cube_dist = (cr - r) ** 2 + (cg - g) ** 2 + (cb - b) ** 2
    avg = (r + g + b) // 3
    gi_ = max(0, min((avg - 8 + 5) // 10, 23))
    gv = 8 + 10 * gi_
    grey_dist = (gv - r) ** 2 + (gv - g) ** 2 + (gv - b) ** 2
    if grey_dist < cube_dist:
        return 232 + gi_
    return 16 + 36 * ri + 6 * gi + bi


def cell_size(img_w: int, img_h: int, opts: RenderOptions, features: 'Features | None') -> tuple[int, int]:
    ' Output size in cells, every cell being one pixel wide and two pixels tall '
    width, height = opts.width, opts.height
    mode = opts.scale_mode
    if width <= 0 and height <= 0:
        width, height = terminal_cells(features) or (DEFAULT_TERMINAL_COLUMNS, DEFAULT_TERMINAL_ROWS)
        mode = ScaleMode.fit
    if width > 0 and height > 0:
        if mode is ScaleMode.fit:
            w, h = compute_target_size(img_w, img_h, width, height * 2, mode) or (width, height * 2)
            return max(1, w), max(1, h // 2)
        return width, height
    if width > 0:
        return width, max(1, width * img_h // max(1, img_w) // 2)
    return max(1, height * 2 * img_w // max(1, img_h)), height


class HalfblocksRenderer(Renderer):

    protocol = Protocol.halfblocks

    def render(self, img: 'PILImage', opts: RenderOptions) -> str:
        features = self.features_for(opts)
        cols, rows = cell_size(img.width, img.height, opts, features)
        scaled = resize_image(img, cols, rows * 2, opts.source_key)
        if opts.effective_dither is not DitherMode.none:
            scaled = dither_image(scaled, opts.effective_dither, opts.sixel.palette_size)
        scaled = scaled.convert('RGBA') if scaled.mode != 'RGBA' else scaled
        out = encode_halfblocks(scaled.tobytes(), cols, rows, features.truecolor)
        if not out:
            raise EncodeError('Halfblocks encoder produced no output', 'halfblocks')
        self.placement.record(0, cols, rows)
        return out

    def clear_sequence(self, opts: ClearOptions) -> str:
        if opts.all:
            return clear_screen_and_scrollback()
        cols = self.placement.last_width or CLEAR_DEFAULT_SIZE[0]
        rows = self.placement.last_height or CLEAR_DEFAULT_SIZE[1]
        return (' ' * cols + '\n') * rows + move_cursor_by(rows, 'up')

    def clear(self, opts: ClearOptions | None = None, output: TextIO | None = None) -> None:
        super().clear(opts, output)
        self.placement.reset()


def encode_halfblocks(rgba: bytes, cols: int, rows: int, truecolor: bool = True) -> str:
    '''Encode a cols x (2*rows) RGBA raster as rows of half block characters.
    Pixels with alpha below 128 show the terminal background.'''
    fg, bg = (fg_truecolor, bg_truecolor) if truecolor else (
        lambda r, g, b: fg_256(xterm_256(r, g, b)), lambda r, g, b: bg_256(xterm_256(r, g, b)))
    stride = cols * 4
    lines = []
    for row in range(rows):
        top_off, bottom_off = 2 * row * stride, (2 * row + 1) * stride
        cur_fg: RGB | None = None
        cur_bg: RGB | None = None
        line = []
        for x in range(cols):
            t, b = top_off + 4 * x, bottom_off + 4 * x
            top: RGB | None = (rgba[t], rgba[t + 1], rgba[t + 2]) if rgba[t + 3] >= 128 else None
            bottom: RGB | None = (rgba[b], rgba[b + 1], rgba[b + 2]) if rgba[b + 3] >= 128 else None
            if top is not None:
                want_fg, want_bg, ch = top, bottom, UPPER_HALF
            elif bottom is not None:
                want_fg, want_bg, ch = bottom, None, LOWER_HALF
            else:
                want_fg, want_bg, ch = cur_fg, None, ' '
            if want_fg != cur_fg:
                line.append(reset_fg() if want_fg is None else fg(*want_fg))
                cur_fg = want_fg
            if want_bg != cur_bg:
                line.append(reset_bg() if want_bg is None else bg(*want_bg))
                cur_bg = want_bg
            line.append(ch)
        line.append(reset_sgr())
        lines.append(''.join(line))
    return '\n'.join(lines)
