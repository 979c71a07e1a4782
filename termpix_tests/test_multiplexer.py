#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

from termpix.multiplexer import (
    enable_passthrough,
    force_multiplexer,
    in_multiplexer,
    in_screen,
    is_multiplexer_forced,
    is_passthrough_enabled,
    is_wrapped,
    maybe_wrap,
    unwrap,
    wrap,
)

from . import BaseTest


class TestMultiplexer(BaseTest):

    def test_wrap(self):
        seq = '\033_Ga=T;AAAA\033\\'
        w = wrap(seq)
        self.ae(w, '\033Ptmux;\033\033\033_Ga=T;AAAA\033\033\\\033\\')
        self.assertTrue(is_wrapped(w))
        self.ae(unwrap(w), seq)
        # idempotent and leaves non escape text alone
        self.ae(wrap(w), w)
        self.ae(wrap('plain text'), 'plain text')
        self.ae(unwrap('plain text'), 'plain text')

    def test_every_escape_doubled(self):
        seq = '\033]1337;File=inline=1:AAAA\a'
        inner = wrap(seq)[len('\033Ptmux;'):-2]
        self.ae(inner.count('\033'), 2 * seq.count('\033') + 1)

    def test_detection(self):
        self.assertTrue(in_multiplexer({'TMUX': '/tmp/tmux-1000/default,1,0'}))
        self.assertTrue(in_multiplexer({'TERM_PROGRAM': 'tmux'}))
        self.assertFalse(in_multiplexer({'TERM': 'xterm-kitty'}))
        self.assertTrue(in_screen({'TERM': 'screen-256color'}))
        self.assertFalse(in_screen({'TERM': 'xterm'}))
        self.ae(maybe_wrap('\033[c', {}), '\033[c')
        self.assertTrue(is_wrapped(maybe_wrap('\033[c', {'TMUX': '1'})))

    def test_forced(self):
        self.assertFalse(is_multiplexer_forced())
        force_multiplexer()
        self.assertTrue(is_multiplexer_forced())
        self.assertTrue(in_multiplexer({}))
        self.assertTrue(is_wrapped(maybe_wrap('\033[c', {})))
        force_multiplexer(False)
        self.assertFalse(in_multiplexer({}))

    def test_passthrough_only_attempted_once(self):
        self.assertFalse(enable_passthrough({}))
        self.assertFalse(is_passthrough_enabled())
        force_multiplexer()
        # already attempted, so the cached result is returned
        self.assertFalse(enable_passthrough({}))
