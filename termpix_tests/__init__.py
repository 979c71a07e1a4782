#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

import os
import shutil
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from io import StringIO
from unittest import TestCase

from termpix.detect import Features, clear_detection_log, reset_feature_cache
from termpix.multiplexer import force_multiplexer, reset_passthrough
from termpix.pipeline import clear_resize_cache

is_ci = os.environ.get('CI') == 'true'
# environment variables that change detection results
DETECTION_ENV_VARS = (
    'TMUX', 'TERM', 'TERM_PROGRAM', 'COLORTERM', 'KITTY_WINDOW_ID', 'GHOSTTY_RESOURCES_DIR', 'WEZTERM_EXECUTABLE',
    'LC_TERMINAL', 'ITERM_SESSION_ID', 'TERM_SESSION_ID', 'XTERM_VERSION', 'KONSOLE_VERSION', 'TERMPIX_BYPASS_DETECTION',
)


@contextmanager
def env_vars(**kw: str | None) -> Iterator[None]:
    ' Temporarily set environment variables, a value of None removes the variable '
    originals = {k: os.environ.get(k) for k in kw}
    for k, v in kw.items():
        if v is None:
            os.environ.pop(k, None)
        else:
            os.environ[k] = v
    try:
        yield
    finally:
        for k, v in originals.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


def make_features(**kw) -> Features:
    ' Features for a plain terminal outside any multiplexer, so that nothing is queried '
    defaults = dict(
        term_name='xterm-256color', font_width=10, font_height=20, window_cols=80, window_rows=24,
        window_width=800, window_height=480, truecolor=True)
    defaults.update(kw)
    return Features(**defaults)


def solid_image(width=4, height=4, color=(255, 0, 0, 255)):
    from PIL import Image
    return Image.new('RGBA', (width, height), color)


def gradient_image(width=32, height=16):
    from PIL import Image
    img = Image.new('RGB', (width, height))
    img.putdata([(255 * x // max(1, width - 1), 255 * y // max(1, height - 1), 128) for y in range(height) for x in range(width)])
    return img


def checkerboard_image(width=8, height=8, size=2, transparent=False):
    from PIL import Image
    img = Image.new('RGBA', (width, height))
    dark = (0, 0, 0, 0) if transparent else (0, 0, 0, 255)
    img.putdata([(255, 255, 255, 255) if ((x // size) + (y // size)) % 2 == 0 else dark for y in range(height) for x in range(width)])
    return img


def png_bytes(img) -> bytes:
    from io import BytesIO
    buf = BytesIO()
    img.save(buf, format='PNG')
    return buf.getvalue()


def reset_global_state() -> None:
    force_multiplexer(False)
    reset_passthrough()
    reset_feature_cache()
    clear_detection_log()
    clear_resize_cache()


class BaseTest(TestCase):

    ae = TestCase.assertEqual
    maxDiff = 2048
    is_ci = is_ci

    def setUp(self):
        reset_global_state()
        self.env_patch = env_vars(**{k: None for k in DETECTION_ENV_VARS})
        self.env_patch.__enter__()

    def tearDown(self):
        self.env_patch.__exit__(None, None, None)
        reset_global_state()

    def rmtree_ignoring_errors(self, tdir):
        try:
            shutil.rmtree(tdir)
        except FileNotFoundError as err:
            print('Failed to delete the directory:', tdir, 'with error:', err, file=sys.stderr)

    def features(self, **kw) -> Features:
        return make_features(**kw)

    def output(self) -> StringIO:
        return StringIO()
