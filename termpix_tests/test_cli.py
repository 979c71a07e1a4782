#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

import os
import tempfile
from contextlib import contextmanager
from io import StringIO

from termpix.cli import CLIError, Options, format_help, parse_args, parse_option_spec
from termpix.detect import query_terminal_features
from termpix.errors import ConfigurationError
from termpix.halfblocks import UPPER_HALF
from termpix.icat import OPTIONS, IcatCLIOptions, create_test_pattern, help_text, main, usage

from . import BaseTest, png_bytes, solid_image

SPEC = '''\
--width -W
type=int
default=0
Width in cells.


# Kitty
--mode
choices=a,b,c
The mode.


--fast
type=bool-set
Go fast.


--ratio
type=float
default=1.5
A ratio.
'''


@contextmanager
def quiet_options():
    orig = Options.do_print
    Options.do_print = False
    try:
        yield
    finally:
        Options.do_print = orig


class TestCLI(BaseTest):

    def setUp(self):
        super().setUp()
        self.tdir = tempfile.mkdtemp()
        self.path = os.path.join(self.tdir, 'red.png')
        with open(self.path, 'wb') as f:
            f.write(png_bytes(solid_image(4, 4)))
        query_terminal_features.set_override(self.features())

    def tearDown(self):
        self.rmtree_ignoring_errors(self.tdir)
        super().tearDown()

    def parse(self, *args):
        return parse_args(list(args), lambda: SPEC, 'file', 'msg', 'test')

    def test_option_spec(self):
        seq = parse_option_spec(SPEC)
        self.ae(seq[1], 'Kitty')
        opts = {x['dest']: x for x in seq if not isinstance(x, str)}
        self.ae(opts['width']['aliases'], ('--width', '-W'))
        self.ae(opts['width']['help'], 'Width in cells.')
        self.ae((opts['mode']['type'], opts['mode']['choices'], opts['mode']['default']), ('choices', ('a', 'b', 'c'), 'a'))
        self.ae(opts['fast']['type'], 'bool-set')
        with self.assertRaises(ValueError):
            parse_option_spec('not an option\n')

    def test_parse_args(self):
        ans, items = self.parse()
        self.ae((ans.width, ans.mode, ans.fast, ans.ratio), (0, 'a', False, 1.5))
        self.ae(items, [])
        ans, items = self.parse('-W', '7', '--mode=c', '--fast', '--ratio', '2', 'x.png', '--fast=no')
        self.ae((ans.width, ans.mode, ans.fast, ans.ratio), (7, 'c', True, 2.0))
        # options stop at the first positional argument
        self.ae(items, ['x.png', '--fast=no'])
        ans, items = self.parse('--fast=no', '--', '-W')
        self.assertFalse(ans.fast)
        self.ae(items, ['-W'])
        self.ae(self.parse('-')[1], ['-'])

    def test_parse_errors(self):
        for args in (('--nope',), ('-W',), ('-W', 'x'), ('--mode', 'd'), ('--fast=maybe',)):
            with self.assertRaises(CLIError) as cm:
                self.parse(*args)
            self.assertIsInstance(cm.exception, ConfigurationError)
            self.assertTrue(str(cm.exception).startswith('[cli] '))

    def test_help_and_version(self):
        with quiet_options():
            for flag in ('-h', '--help', '-v', '--version'):
                with self.assertRaises(SystemExit) as cm:
                    self.parse(flag)
                self.ae(cm.exception.code, 0)
        text = format_help(parse_option_spec(OPTIONS), usage, help_text, 'termpix')
        self.assertIn('Choices: auto, kitty, sixel, iterm2, halfblocks', text)
        self.assertIn('falling back to colored Unicode half blocks.', text)
        self.assertIn('termpix', text)

    def test_icat_defaults_match_options(self):
        ans, _ = parse_args([], lambda: OPTIONS, usage, help_text, 'termpix', result_class=IcatCLIOptions)
        for name, val in vars(IcatCLIOptions).items():
            if not name.startswith('_'):
                self.ae(getattr(ans, name), val, name)

    def test_display(self):
        out = StringIO()
        self.ae(main(['--protocol', 'halfblocks', '-W', '2', '-H', '1', self.path], out), 0)
        self.ae(out.getvalue(), '\033[38;2;255;0;0m\033[48;2;255;0;0m' + UPPER_HALF * 2 + '\033[0m\n')

    def test_display_auto_protocol(self):
        query_terminal_features.set_override(self.features(kitty_graphics=True))
        out = StringIO()
        self.ae(main(['-W', '1', '-H', '1', '--id', '5', self.path], out), 0)
        self.assertTrue(out.getvalue().startswith('\033_Ga=T,'))
        self.assertIn('i=5', out.getvalue())

    def test_exit_codes(self):
        out = StringIO()
        self.ae(main(['--no-such-flag', self.path], out), 2)
        self.ae(main(['--width', 'wide', self.path], out), 2)
        self.ae(main(['--x', '3', self.path], out), 2)
        self.ae(main(['--protocol', 'halfblocks', os.path.join(self.tdir, 'missing.png')], out), 1)
        self.ae(main(['--id', str(0xffffffff + 1), '--protocol', 'kitty', self.path], out), 2)
        self.ae(out.getvalue(), '')
        with quiet_options():
            with self.assertRaises(SystemExit) as cm:
                main(['--version'], out)
            self.ae(cm.exception.code, 0)

    def test_clear(self):
        out = StringIO()
        self.ae(main(['--clear', '--protocol', 'kitty'], out), 0)
        self.ae(out.getvalue(), '\033_Ga=d,d=a,q=2\033\\')

    def test_detect_only(self):
        query_terminal_features.set_override(self.features(sixel_graphics=True, term_program='foot'))
        out = StringIO()
        self.ae(main(['--detect-only'], out), 0)
        lines = out.getvalue().splitlines()
        self.ae(lines[0], 'Protocol: sixel')
        self.ae(lines[1], 'Supported: sixel, halfblocks')
        self.assertIn('Terminal: xterm-256color (foot)', lines)
        self.assertIn('Multiplexer: no', lines)
        self.assertIn('Cell size: 10x20 pixels', lines)
        self.assertIn('Window: 80x24 cells', lines)

    def test_test_grid(self):
        out = StringIO()
        self.ae(main(['--test-grid'], out), 0)
        text = out.getvalue()
        self.assertTrue(text.startswith('=== halfblocks ===\n'))
        self.assertIn(UPPER_HALF, text)

    def test_test_pattern(self):
        img = create_test_pattern(60, 30)
        self.ae(img.size, (60, 30))
        self.ae(img.mode, 'RGBA')
        self.ae(img.getpixel((30, 10))[3], 0)
        self.ae(img.getpixel((0, 0))[3], 255)
        self.ae(img.getpixel((59, 29)), (255, 255, 255, 255))
