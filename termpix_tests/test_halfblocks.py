#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

from termpix.halfblocks import LOWER_HALF, UPPER_HALF, HalfblocksRenderer, cell_size, encode_halfblocks, xterm_256
from termpix.renderers import ClearOptions, RenderOptions
from termpix.types import ScaleMode

from . import BaseTest, checkerboard_image, solid_image

RED = (255, 0, 0, 255)
BLUE = (0, 0, 255, 255)
CLEAR = (0, 0, 0, 0)


def raster(*pixels):
    return bytes(c for p in pixels for c in p)


class TestHalfblocks(BaseTest):

    def test_encode(self):
        ae = self.ae
        ae(encode_halfblocks(raster(RED, BLUE), 1, 1), '\033[38;2;255;0;0m\033[48;2;0;0;255m' + UPPER_HALF + '\033[0m')
        ae(encode_halfblocks(raster(RED, CLEAR), 1, 1), '\033[38;2;255;0;0m' + UPPER_HALF + '\033[0m')
        ae(encode_halfblocks(raster(CLEAR, BLUE), 1, 1), '\033[38;2;0;0;255m' + LOWER_HALF + '\033[0m')
        ae(encode_halfblocks(raster(CLEAR, CLEAR), 1, 1), ' \033[0m')
        # colours are only emitted when they change
        ae(encode_halfblocks(raster(RED, RED, RED, RED), 2, 1), '\033[38;2;255;0;0m\033[48;2;255;0;0m' + UPPER_HALF * 2 + '\033[0m')
        # a transparent cell after a coloured one resets the background
        ae(
            encode_halfblocks(raster(RED, RED, RED, CLEAR), 2, 1),
            '\033[38;2;255;0;0m\033[48;2;255;0;0m' + UPPER_HALF + '\033[49m' + UPPER_HALF + '\033[0m')

    def test_rows(self):
        out = encode_halfblocks(raster(RED, RED, BLUE, BLUE), 1, 2)
        lines = out.split('\n')
        self.ae(len(lines), 2)
        self.assertTrue(all(x.endswith('\033[0m') for x in lines))
        self.assertIn('\033[38;2;0;0;255m', lines[1])

    def test_256_colors(self):
        self.ae(xterm_256(255, 0, 0), 196)
        self.ae(xterm_256(0, 0, 0), 16)
        self.ae(xterm_256(128, 128, 128), 244)
        self.ae(xterm_256(255, 255, 255), 231)
        self.ae(encode_halfblocks(raster(RED, BLUE), 1, 1, truecolor=False), '\033[38;5;196m\033[48;5;21m' + UPPER_HALF + '\033[0m')

    def test_cell_size(self):
        f = self.features()
        self.ae(cell_size(100, 50, RenderOptions(width=20), f), (20, 5))
        self.ae(cell_size(100, 50, RenderOptions(height=5), f), (20, 5))
        self.ae(cell_size(100, 50, RenderOptions(), f), (80, 20))
        self.ae(cell_size(100, 50, RenderOptions(width=10, height=10, scale_mode=ScaleMode.stretch), f), (10, 10))
        self.ae(cell_size(100, 50, RenderOptions(width=10, height=10), f), (10, 2))

    def test_render(self):
        r = HalfblocksRenderer()
        out = r.render(solid_image(2, 2, RED), RenderOptions(width=2, height=1, features=self.features()))
        self.ae(out, '\033[38;2;255;0;0m\033[48;2;255;0;0m' + UPPER_HALF * 2 + '\033[0m')
        self.ae((r.placement.last_width, r.placement.last_height), (2, 1))

    def test_checkerboard(self):
        r = HalfblocksRenderer()
        out = r.render(checkerboard_image(4, 4, 1), RenderOptions(width=2, height=2, features=self.features()))
        self.assertIn(UPPER_HALF, out)
        self.assertIn('\033[38;2;', out)
        out = r.render(checkerboard_image(4, 4, 1), RenderOptions(width=4, height=2, features=self.features()))
        self.assertIn(UPPER_HALF, out)
        self.assertIn('\033[38;2;255;255;255m', out)
        self.assertIn('\033[48;2;0;0;0m', out)
        self.ae(len(out.split('\n')), 2)

    def test_dithered_render(self):
        r = HalfblocksRenderer()
        out = r.render(checkerboard_image(8, 8), RenderOptions(width=4, height=2, dither=True, features=self.features(truecolor=False)))
        self.assertIn('\033[38;5;', out)
        self.assertNotIn('\033[38;2;', out)

    def test_clear(self):
        r = HalfblocksRenderer()
        self.ae(r.clear_sequence(ClearOptions(all=True)), '\033[2J\033[3J\033[H')
        self.ae(r.clear_sequence(ClearOptions()), (' ' * 80 + '\n') * 20 + '\033[20A')
        r.render(solid_image(2, 2), RenderOptions(width=2, height=1, features=self.features()))
        out = self.output()
        r.clear(output=out)
        self.ae(out.getvalue(), '  \n\033[1A')
        self.ae(r.placement.last_width, 0)
