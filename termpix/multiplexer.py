#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

import os
import subprocess
from collections.abc import Mapping
from threading import Lock

from .constants import PASSTHROUGH_END, PASSTHROUGH_START

forced_lock = Lock()
forced_multiplexer = False
passthrough_lock = Lock()
passthrough_attempted = False
passthrough_enabled = False


def force_multiplexer(yes: bool = True) -> None:
    global forced_multiplexer
    with forced_lock:
        forced_multiplexer = yes


def is_multiplexer_forced() -> bool:
    return forced_multiplexer


def in_multiplexer(env: Mapping[str, str] | None = None) -> bool:
    if forced_multiplexer:
        return True
    if env is None:
        env = os.environ
    return bool(env.get('TMUX')) or env.get('TERM_PROGRAM') == 'tmux'


def in_screen(env: Mapping[str, str] | None = None) -> bool:
    if env is None:
        env = os.environ
    return env.get('TERM', '').startswith('screen')


def is_wrapped(seq: str) -> bool:
    return seq.startswith(PASSTHROUGH_START) and seq.endswith(PASSTHROUGH_END)


def wrap(seq: str) -> str:
    '''Wrap a control sequence so that tmux forwards it to the outer terminal.
    Sequences that do not start with ESC, or that are already wrapped, are
    returned unchanged.'''
    if not seq.startswith('\033') or is_wrapped(seq):
        return seq
    return PASSTHROUGH_START + '\033' + seq.replace('\033', '\033\033') + PASSTHROUGH_END


def unwrap(seq: str) -> str:
    if not is_wrapped(seq):
        return seq
    inner = seq[len(PASSTHROUGH_START):-len(PASSTHROUGH_END)]
    if inner.startswith('\033\033'):
        inner = inner[1:]
    return inner.replace('\033\033', '\033')


def maybe_wrap(seq: str, env: Mapping[str, str] | None = None) -> str:
    return wrap(seq) if in_multiplexer(env) else seq


def enable_passthrough(env: Mapping[str, str] | None = None) -> bool:
    ' Ask tmux to forward wrapped sequences, at most once per process '
    global passthrough_attempted, passthrough_enabled
    with passthrough_lock:
        if passthrough_attempted:
            return passthrough_enabled
        passthrough_attempted = True
        if env is None:
            env = os.environ
        if not env.get('TMUX') and env.get('TERM_PROGRAM') != 'tmux':
            # forced mode without a real tmux has nothing to configure
            passthrough_enabled = forced_multiplexer
            return passthrough_enabled
        try:
            cp = subprocess.run(
                ['tmux', 'set', '-p', 'allow-passthrough', 'on'],
                stdin=subprocess.DEVNULL, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except (FileNotFoundError, PermissionError):
            passthrough_enabled = False
        else:
            passthrough_enabled = cp.returncode == 0
        return passthrough_enabled


def is_passthrough_enabled() -> bool:
    return passthrough_enabled


def reset_passthrough() -> None:
    global passthrough_attempted, passthrough_enabled
    with passthrough_lock:
        passthrough_attempted = passthrough_enabled = False
