#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

from termpix.errors import EncodeError
from termpix.multiplexer import is_wrapped
from termpix.renderers import ClearOptions, RenderOptions, SixelOptions
from termpix.sixel import SixelRenderer, encode_sixel, rle
from termpix.types import DitherMode, SixelClearMode

from . import BaseTest, checkerboard_image, gradient_image, solid_image


class TestSixel(BaseTest):

    def opts(self, **kw):
        so = SixelOptions(**kw.pop('sixel', {}))
        return RenderOptions(features=self.features(**kw.pop('features', {})), sixel=so, **kw)

    def test_rle(self):
        self.ae(rle(bytearray((1, 1, 1, 1, 2, 0, 0))), '!4@A')
        self.ae(rle(bytearray((3, 3, 3))), 'BBB')
        self.ae(rle(bytearray((0, 0))), '')
        self.ae(rle(bytearray((63,) * 10)), '!10~')

    def test_encode(self):
        self.ae(encode_sixel(b'\0', 1, 1, [(255, 0, 0)]), '\033Pq"1;1;1;1#0;2;100;0;0#0@\033\\')
        # seven rows need two bands
        self.ae(encode_sixel(bytes(7), 1, 7, [(0, 0, 0)]), '\033Pq"1;1;1;7#0;2;0;0;0#0~-#0@\033\\')
        out = encode_sixel(b'\0\1', 2, 1, [(128, 128, 128), (0, 0, 255)])
        self.assertIn('#0;2;50;50;50#1;2;0;0;100', out)
        self.assertTrue(out.endswith('#0@$#1?@\033\\'))

    def test_transparency(self):
        out = encode_sixel(b'\0\0', 2, 1, [(0, 0, 0)], alpha=bytes((255, 0)))
        self.ae(out, '\033P0;1q"1;1;2;1#0;2;0;0;0#0@\033\\')
        out = encode_sixel(b'\0\0', 2, 1, [(0, 0, 0)], alpha=bytes((255, 255)))
        self.assertTrue(out.startswith('\033Pq'))

    def test_encode_errors(self):
        for args in ((b'', 0, 0, [(0, 0, 0)]), (b'\0', 1, 1, [])):
            with self.assertRaises(EncodeError) as cm:
                encode_sixel(*args)
            self.ae(cm.exception.protocol, 'sixel')

    def test_render(self):
        r = SixelRenderer()
        out = r.render(gradient_image(40, 20), self.opts(width=4, height=2))
        self.assertTrue(out.startswith('\033Pq'))
        self.assertTrue(out.endswith('\033\\'))
        self.assertIn('"1;1;40;20', out)
        self.ae((r.placement.last_width, r.placement.last_height), (4, 2))

    def test_render_solid(self):
        r = SixelRenderer()
        out = r.render(solid_image(2, 2), self.opts(width_pixels=2, height_pixels=2))
        self.ae(out, '\033Pq"1;1;2;2#0;2;100;0;0#0BB\033\\')
        # placement derived from the image size when no cell size is given
        self.ae((r.placement.last_width, r.placement.last_height), (1, 1))

    def test_palette_options(self):
        img = gradient_image(16, 16)
        r = SixelRenderer()
        out = r.render(img, self.opts(width_pixels=16, height_pixels=16, sixel={'palette': 4}))
        self.assertIn('#3;2;', out)
        self.assertNotIn('#4;2;', out)
        out = r.render(img, self.opts(width_pixels=16, height_pixels=16, sixel={'palette': 4, 'optimize_palette': True}))
        self.assertNotIn('#4;2;', out)
        custom = ((0, 0, 0), (255, 255, 255))
        out = r.render(img, self.opts(width_pixels=16, height_pixels=16, sixel={'custom_palette': custom}))
        self.assertIn('#0;2;0;0;0#1;2;100;100;100', out)
        self.assertNotIn('#2;2;', out)

    def test_background_and_alpha(self):
        img = checkerboard_image(4, 4, transparent=True)
        r = SixelRenderer()
        out = r.render(img, self.opts(width_pixels=4, height_pixels=4))
        self.assertTrue(out.startswith('\033P0;1q'))
        out = r.render(img, self.opts(width_pixels=4, height_pixels=4, sixel={'background': (255, 0, 0)}))
        self.assertTrue(out.startswith('\033Pq'))
        self.assertIn(';100;0;0', out)

    def test_dithered_input_keeps_its_palette(self):
        r = SixelRenderer()
        out = r.render(gradient_image(16, 8), self.opts(
            width_pixels=16, height_pixels=8, dither=True, dither_mode=DitherMode.stucki, sixel={'palette': 8}))
        self.assertTrue(out.startswith('\033Pq'))
        self.assertNotIn('#8;2;', out)

    def test_multiplexer(self):
        r = SixelRenderer()
        out = r.render(solid_image(2, 2), self.opts(width=1, height=1, features={'in_multiplexer': True}))
        self.assertTrue(is_wrapped(out))
        self.assertTrue(is_wrapped(r.clear_sequence(ClearOptions())))

    def test_clear(self):
        r = SixelRenderer()
        # nothing rendered yet, fall back to clearing the screen
        self.ae(r.clear_sequence(ClearOptions()), '\033[H\033[2J')
        r.render(solid_image(2, 2), self.opts(width=2, height=3))
        self.ae(r.clear_sequence(ClearOptions()), '\033[3A\033[2K\033[1B\033[2K\033[1B\033[2K\r')
        self.ae(r.clear_sequence(ClearOptions(all=True)), '\033[H\033[2J')
        out = self.output()
        r.clear(output=out)
        self.ae(out.getvalue(), '\033[3A\033[2K\033[1B\033[2K\033[1B\033[2K\r')
        self.ae(r.placement.last_height, 0)
        r.render(solid_image(2, 2), self.opts(width=2, height=3, sixel={'clear_mode': SixelClearMode.screen}))
        self.ae(r.clear_sequence(ClearOptions()), '\033[H\033[2J')
