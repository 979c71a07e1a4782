#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

import os
import tempfile
from io import BytesIO, StringIO

from termpix import Image, clear_all, print_file, render_file
from termpix.errors import ClearError, ConfigurationError, DecodeError, OutputError
from termpix.halfblocks import UPPER_HALF
from termpix.types import DitherMode, Protocol, ScaleMode, SixelClearMode, TransferMode

from . import BaseTest, png_bytes, solid_image


class TestImage(BaseTest):

    def setUp(self):
        super().setUp()
        self.tdir = tempfile.mkdtemp()
        self.path = os.path.join(self.tdir, 'red.png')
        with open(self.path, 'wb') as f:
            f.write(png_bytes(solid_image(4, 4)))

    def tearDown(self):
        self.rmtree_ignoring_errors(self.tdir)
        super().tearDown()

    def test_factories(self):
        img = Image.open(self.path)
        self.ae(img.path, self.path)
        self.ae(img.source.size, (4, 4))
        self.ae(img.options.source_key, self.path)
        self.ae(Image.from_reader(BytesIO(png_bytes(solid_image(3, 1))), 'x').source.size, (3, 1))
        self.ae(Image.new_from_image(solid_image(2, 5)).source.size, (2, 5))
        with self.assertRaises(ConfigurationError):
            Image.new_from_image(None)
        with self.assertRaises(ConfigurationError):
            Image.open('')
        with self.assertRaises(ConfigurationError):
            Image.from_reader(None)
        with self.assertRaises(DecodeError):
            Image.from_reader(BytesIO(b'not an image'), 'junk')
        with self.assertRaises(DecodeError):
            Image.open(os.path.join(self.tdir, 'missing.png'))

    def test_setters(self):
        img = Image.new_from_image(solid_image())
        ans = img.size(10, 5).scale('fill').dither().dither_mode('stucki').position(1, 2)
        self.assertIs(ans, img)
        o = img.options
        self.ae((o.width, o.height, o.scale_mode, o.dither, o.dither_mode), (10, 5, ScaleMode.fill, True, DitherMode.stucki))
        self.ae((o.x, o.y), (1, 2))
        img.width(-3)
        self.ae(o.width, 0)
        img.zindex(-1).virtual().compression().png().temp_file().image_id(12).placement_id(3)
        self.ae((o.kitty.z_index, o.kitty.virtual, o.kitty.compression, o.kitty.png), (-1, True, True, True))
        self.ae((o.kitty.transfer, o.kitty.image_id, o.kitty.placement_id), (TransferMode.temp, 12, 3))
        img.transfer('shm')
        self.ae(o.kitty.transfer, TransferMode.shm)
        img.optimize_palette().palette_size(1000).custom_palette([(1, 2, 3)]).background((0, 0, 0)).sixel_clear_mode('screen')
        self.ae(o.sixel.palette_size, 256)
        self.ae((o.sixel.optimize_palette, o.sixel.custom_palette, o.sixel.clear_mode), (True, ((1, 2, 3),), SixelClearMode.screen))
        img.preserve_aspect().inline(False)
        self.ae((o.iterm2.preserve_aspect_ratio, o.iterm2.inline), (True, False))
        with self.assertRaises(ConfigurationError):
            img.protocol('gopher')
        with self.assertRaises(ConfigurationError):
            img.scale('huge')
        with self.assertRaises(ConfigurationError):
            img.image_id(0xffffffff + 1)
        with self.assertRaises(ConfigurationError):
            img.image_num(-1)

    def test_protocol_selection(self):
        img = Image.new_from_image(solid_image()).features(self.features(kitty_graphics=True))
        self.ae(img.active_protocol, Protocol.kitty)
        img.protocol('kitty')
        r = img.get_renderer()
        # setting the same protocol again keeps the renderer and its state
        self.assertIs(img.protocol('kitty').get_renderer(), r)
        img.protocol(Protocol.sixel)
        self.ae(img.active_protocol, Protocol.sixel)
        img.protocol('auto').features(self.features(iterm2_graphics=True))
        self.ae(img.active_protocol, Protocol.iterm2)
        img.features(self.features())
        self.ae(img.active_protocol, Protocol.halfblocks)

    def test_clone_is_independent(self):
        img = Image.new_from_image(solid_image()).size(4, 2).protocol('sixel').zindex(3)
        c = img.clone()
        self.assertIs(c.source, img.source)
        self.ae(c.requested_protocol, Protocol.sixel)
        c.size(8, 8).zindex(5).palette_size(16)
        self.ae((img.options.width, img.options.kitty.z_index, img.options.sixel.palette), (4, 3, 256))
        self.assertIsNone(c.renderer)

    def test_render_and_print(self):
        img = Image.open(self.path).protocol('halfblocks').size(2, 1).features(self.features())
        expected = '\033[38;2;255;0;0m\033[48;2;255;0;0m' + UPPER_HALF * 2 + '\033[0m'
        self.ae(img.render(), expected)
        out = StringIO()
        img.print(out)
        self.ae(out.getvalue(), expected)
        out = StringIO()
        img.clear(output=out)
        self.ae(out.getvalue(), '  \n\033[1A')

    def test_set_source(self):
        img = Image.open(self.path).size(2, 1).protocol('halfblocks').features(self.features())
        img.set_source(solid_image(4, 4, (0, 0, 255, 255)))
        self.ae(img.path, '')
        self.assertIn('\033[38;2;0;0;255m', img.render())
        self.ae(img.options.width, 2)
        with self.assertRaises(ConfigurationError):
            img.set_source(None)

    def test_settings_helpers(self):
        f = self.features()
        out = render_file(self.path, protocol='halfblocks', size=(2, 1), features=f)
        self.assertIn(UPPER_HALF, out)
        s = StringIO()
        print_file(self.path, s, protocol='halfblocks', width=2, height=1, features=f)
        self.ae(s.getvalue(), out)
        with self.assertRaises(ConfigurationError):
            render_file(self.path, colour='red')

    def test_clear_all(self):
        out = StringIO()
        clear_all('kitty', out)
        self.ae(out.getvalue(), '\033_Ga=d,d=a,q=2\033\\')
        out = StringIO()
        clear_all(output=out, features=self.features(iterm2_graphics=True))
        self.ae(out.getvalue(), '\033[2J\033[3J\033[H')
        out = StringIO()
        Image.new_from_image(solid_image()).protocol('sixel').clear_all(out)
        self.ae(out.getvalue(), '\033[H\033[2J')

    def test_write_errors(self):
        img = Image.new_from_image(solid_image()).protocol('halfblocks').size(2, 1).features(self.features())
        closed = StringIO()
        closed.close()
        with self.assertRaises(OutputError):
            img.print(closed)
        with self.assertRaises(ClearError) as cm:
            img.clear_all(closed)
        self.assertIsInstance(cm.exception, OSError)
        self.assertTrue(str(cm.exception).startswith('[clear] '))
