#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

import os
import re
import select
from collections.abc import Callable, Mapping
from contextlib import ExitStack
from dataclasses import dataclass, replace
from threading import Lock, RLock
from time import monotonic
from typing import Any, NamedTuple

from .constants import (
    BYPASS_ENV_VAR,
    DEFAULT_FONT_SIZE,
    FONT_SIZE_BY_PROGRAM,
    FONT_SIZE_BY_TERM,
    KITTY_QUERY_ID,
    MAX_FONT_DIMENSION,
    MAX_QUERY_TIMEOUT,
    MIN_FONT_DIMENSION,
    QUERY_BUFFER_SIZE,
    QUERY_TIMEOUT,
)
from .errors import QueryError
from .multiplexer import enable_passthrough, in_multiplexer, in_screen, is_passthrough_enabled, maybe_wrap
from .operations import primary_device_attributes, raw_mode, report_cell_size_in_pixels, report_size_in_cells, report_window_size_in_pixels
from .types import Protocol, run_once
from .utils import debug, is_interactive, screen_size_function, write_all

KITTY_QUERY = f'\033_Gi={KITTY_QUERY_ID},s=1,v=1,a=q,t=d,f=24;AAAA\033\\'
ITERM2_CELL_SIZE_QUERY = '\033]1337;ReportCellSize\a'
# base64 of session.name
ITERM2_VARIABLE_QUERY = '\033]1337;ReportVariable=c2Vzc2lvbi5uYW1l\a'
ITERM2_LEGACY_QUERY = '\033[1337n'
da1_pat = re.compile(r'\033\[\?([0-9;]*)c')
cell_size_pat = re.compile(r'\033\[6;(\d+);(\d+)t')
window_pixels_pat = re.compile(r'\033\[4;(\d+);(\d+)t')
window_cells_pat = re.compile(r'\033\[8;(\d+);(\d+)t')
iterm2_cell_size_pat = re.compile(r'ReportCellSize=([0-9.]+);([0-9.]+)(?:;([0-9.]+))?')
iterm2_session_pat = re.compile(r'^w\d+t\d+p\d+:[0-9A-Fa-f-]+$')
KITTY_PROGRAMS = frozenset(('ghostty', 'wezterm', 'rio'))
ITERM2_PROGRAMS = frozenset(('iterm.app', 'wezterm', 'mintty', 'rio', 'vscode', 'warpterminal'))
SIXEL_PROGRAMS = frozenset(('iterm.app', 'mintty', 'wezterm', 'rio', 'mlterm'))
SIXEL_TERMS = ('sixel', 'mlterm', 'foot', 'rio', 'st-256color', 'yaft', 'alacritty', 'wezterm')
TRUECOLOR_PROGRAMS = frozenset(('iterm.app', 'wezterm', 'ghostty', 'rio', 'mintty', 'vscode'))
NO_GRAPHICS_PROGRAMS = frozenset(('Apple_Terminal', 'Terminal'))


@dataclass
class Features:
    term_name: str = ''
    term_program: str = ''
    in_multiplexer: bool = False
    in_screen: bool = False
    font_width: int = 0
    font_height: int = 0
    window_cols: int = 0
    window_rows: int = 0
    window_width: int = 0
    window_height: int = 0
    kitty_graphics: bool = False
    sixel_graphics: bool = False
    iterm2_graphics: bool = False
    truecolor: bool = False

    def cell_size(self) -> tuple[int, int]:
        if self.font_width > 0 and self.font_height > 0:
            return self.font_width, self.font_height
        return font_size_fallback({'TERM': self.term_name, 'TERM_PROGRAM': self.term_program})

    def copy(self, **kw: Any) -> 'Features':
        return replace(self, **kw)


class DetectionResult(NamedTuple):
    protocol: str
    success: bool
    error: Exception | None = None
    fallback: bool = False


detection_log_lock = Lock()
detection_log: list[DetectionResult] = []


def log_detection(protocol: str, success: bool, error: Exception | None = None, fallback: bool = False) -> None:
    r = DetectionResult(protocol, success, error, fallback)
    with detection_log_lock:
        detection_log.append(r)
    debug(f'detection: {protocol} success={success} fallback={fallback}' + (f' error={error}' if error else ''))


def get_detection_log() -> list[DetectionResult]:
    with detection_log_lock:
        return list(detection_log)


def clear_detection_log() -> None:
    with detection_log_lock:
        del detection_log[:]


# Environment classification {{{

def _env(env: Mapping[str, str] | None) -> Mapping[str, str]:
    return os.environ if env is None else env


def kitty_from_environment(env: Mapping[str, str] | None = None) -> bool:
    env = _env(env)
    if env.get('KITTY_WINDOW_ID') or env.get('GHOSTTY_RESOURCES_DIR') or env.get('WEZTERM_EXECUTABLE'):
        return True
    if 'kitty' in env.get('TERM', '').lower():
        return True
    return env.get('TERM_PROGRAM', '').lower() in KITTY_PROGRAMS


def iterm2_from_environment(env: Mapping[str, str] | None = None) -> bool:
    env = _env(env)
    if env.get('TERM_PROGRAM', '').lower() in ITERM2_PROGRAMS:
        return True
    if 'iterm' in env.get('LC_TERMINAL', '').lower():
        return True
    if env.get('ITERM_SESSION_ID') or env.get('WEZTERM_EXECUTABLE'):
        return True
    return iterm2_session_pat.match(env.get('TERM_SESSION_ID', '')) is not None


def sixel_from_environment(env: Mapping[str, str] | None = None) -> bool:
    env = _env(env)
    term = env.get('TERM', '').lower()
    if any(x in term for x in SIXEL_TERMS):
        return True
    if 'xterm' in term and env.get('XTERM_VERSION'):
        return True
    if env.get('KONSOLE_VERSION'):
        return True
    return env.get('TERM_PROGRAM', '').lower() in SIXEL_PROGRAMS


def truecolor_from_environment(env: Mapping[str, str] | None = None) -> bool:
    env = _env(env)
    if env.get('COLORTERM', '').lower() in ('truecolor', '24bit'):
        return True
    term = env.get('TERM', '').lower()
    if 'truecolor' in term or '24bit' in term or 'kitty' in term:
        return True
    return env.get('TERM_PROGRAM', '').lower() in TRUECOLOR_PROGRAMS


def font_size_fallback(env: Mapping[str, str] | None = None) -> tuple[int, int]:
    env = _env(env)
    q = FONT_SIZE_BY_PROGRAM.get(env.get('TERM_PROGRAM', ''))
    if q is not None:
        return q
    term = env.get('TERM', '').lower()
    for name, sz in FONT_SIZE_BY_TERM:
        if name in term:
            return sz
    return DEFAULT_FONT_SIZE


def clamp_font_dimension(x: float) -> int:
    return max(MIN_FONT_DIMENSION, min(int(round(x)), MAX_FONT_DIMENSION))
# }}}


# Interactive queries {{{

# Held for a whole raw mode session, sessions never overlap
terminal_lock = RLock()


class TerminalQuerier:
    '''Exclusive raw mode access to a terminal for a batch of queries. Opens
    the controlling terminal unless a file descriptor is given. Terminal
    state is restored when the context exits, whatever the exit path.'''

    def __init__(self, fd: int | None = None):
        self.fd = -1 if fd is None else fd
        self.owns_fd = fd is None
        self.exit_stack = ExitStack()
        self.lock = Lock()

    def __enter__(self) -> 'TerminalQuerier':
        import termios
        terminal_lock.acquire()
        self.exit_stack.callback(terminal_lock.release)
        if self.owns_fd:
            try:
                self.fd = os.open(os.ctermid(), os.O_RDWR | os.O_NOCTTY | os.O_CLOEXEC)
            except OSError as err:
                self.exit_stack.close()
                raise QueryError(f'Failed to open the controlling terminal: {err}') from err
            self.exit_stack.callback(os.close, self.fd)
        try:
            if not os.isatty(self.fd):
                raise QueryError(f'File descriptor {self.fd} is not a terminal')
            self.exit_stack.enter_context(raw_mode(self.fd))
        except (OSError, termios.error) as err:
            self.exit_stack.close()
            raise QueryError(f'Failed to put the terminal into raw mode: {err}') from err
        except QueryError:
            self.exit_stack.close()
            raise
        return self

    def __exit__(self, *a: object) -> None:
        self.exit_stack.close()

    def drain(self) -> None:
        ' Discard any pending input, such as replies that arrived after an earlier timeout '
        while select.select([self.fd], [], [], 0)[0]:
            if not os.read(self.fd, QUERY_BUFFER_SIZE):
                break

    def read_reply(self, done: Callable[[str], bool], timeout: float = QUERY_TIMEOUT) -> str:
        ' Read until done(everything read so far) is True or the deadline passes '
        timeout = min(timeout, MAX_QUERY_TIMEOUT)
        buf = ''
        deadline = monotonic() + timeout
        while True:
            remaining = deadline - monotonic()
            if remaining <= 0:
                break
            if not select.select([self.fd], [], [], remaining)[0]:
                break
            data = os.read(self.fd, QUERY_BUFFER_SIZE)
            if not data:
                break
            buf += data.decode('utf-8', 'replace')
            if done(buf):
                break
        return buf

    def query(self, seq: str, done: Callable[[str], bool], timeout: float = QUERY_TIMEOUT) -> str:
        with self.lock:
            self.drain()
            write_all(self.fd, maybe_wrap(seq))
            return self.read_reply(done, timeout)


def has_da1(buf: str) -> bool:
    return da1_pat.search(buf) is not None


def sixel_in_da1(buf: str) -> bool:
    m = da1_pat.search(buf)
    if m is None:
        return False
    attrs = ';' + m.group(1) + 'c'
    return ';4;' in attrs or ';4c' in attrs


def kitty_reply_ok(buf: str) -> bool:
    from .kitty import parse_response
    idx = buf.find('\033_G')
    while idx > -1:
        end = buf.find('\033\\', idx)
        if end < 0:
            break
        r = parse_response(buf[idx:end + 2])
        if r is not None and r.image_id == KITTY_QUERY_ID:
            return True
        idx = buf.find('\033_G', end)
    return False


def query_kitty(q: TerminalQuerier, use_sentinel: bool) -> tuple[bool, str]:
    if use_sentinel:
        resp = q.query(KITTY_QUERY + primary_device_attributes(), has_da1)
    else:
        resp = q.query(KITTY_QUERY, kitty_reply_ok)
    return kitty_reply_ok(resp), resp


def query_sixel(q: TerminalQuerier, earlier_reply: str = '') -> bool:
    if has_da1(earlier_reply):
        return sixel_in_da1(earlier_reply)
    return sixel_in_da1(q.query(primary_device_attributes(), has_da1))


def parse_iterm2_cell_size(buf: str) -> tuple[int, int] | None:
    ' iTerm2 replies with height;width;scale in points '
    m = iterm2_cell_size_pat.search(buf)
    if m is None:
        return None
    height, width = float(m.group(1)), float(m.group(2))
    scale = float(m.group(3) or 1) or 1
    return clamp_font_dimension(width * scale), clamp_font_dimension(height * scale)


def query_iterm2(q: TerminalQuerier, use_sentinel: bool) -> tuple[bool, tuple[int, int] | None]:
    sentinel = primary_device_attributes() if use_sentinel else ''

    def done(token: str) -> Callable[[str], bool]:
        if use_sentinel:
            return has_da1
        return lambda buf: token in buf and ('\a' in buf or '\033\\' in buf)

    resp = q.query(ITERM2_CELL_SIZE_QUERY + sentinel, done('ReportCellSize='))
    if 'ReportCellSize=' in resp:
        return True, parse_iterm2_cell_size(resp)
    resp = q.query(ITERM2_VARIABLE_QUERY + sentinel, done('ReportVariable'))
    if 'ReportVariable' in resp:
        return True, None
    resp = q.query(ITERM2_LEGACY_QUERY + sentinel, done('ITERM2'))
    return 'ITERM2' in resp, None


def query_metrics(q: TerminalQuerier, features: Features, use_sentinel: bool) -> None:
    queries = report_cell_size_in_pixels() + report_window_size_in_pixels() + report_size_in_cells()
    if use_sentinel:
        resp = q.query(queries + primary_device_attributes(), has_da1)
    else:
        resp = q.query(queries, lambda buf: all(p.search(buf) for p in (cell_size_pat, window_pixels_pat, window_cells_pat)))
    apply_metrics_reply(resp, features)


def apply_metrics_reply(resp: str, features: Features) -> None:
    m = window_cells_pat.search(resp)
    if m is not None:
        features.window_rows, features.window_cols = int(m.group(1)), int(m.group(2))
    m = window_pixels_pat.search(resp)
    if m is not None:
        features.window_height, features.window_width = int(m.group(1)), int(m.group(2))
    m = cell_size_pat.search(resp)
    if m is not None and int(m.group(1)) > 0 and int(m.group(2)) > 0:
        features.font_height, features.font_width = clamp_font_dimension(int(m.group(1))), clamp_font_dimension(int(m.group(2)))
    elif features.window_width > 0 and features.window_cols > 0 and features.window_rows > 0:
        features.font_width = clamp_font_dimension(features.window_width / features.window_cols)
        features.font_height = clamp_font_dimension(features.window_height / features.window_rows)


def run_queries(features: Features, fd: int | None = None) -> None:
    # The DA1 reply bounds the wait, but tmux answers DA1 itself so it only
    # works as a sentinel when talking to the terminal directly
    use_sentinel = not features.in_multiplexer
    skip_graphics = features.kitty_graphics or features.iterm2_graphics
    try:
        with TerminalQuerier(fd) as q:
            da1_reply = ''
            if not skip_graphics:
                try:
                    features.kitty_graphics, da1_reply = query_kitty(q, use_sentinel)
                    log_detection('kitty', features.kitty_graphics)
                except OSError as err:
                    log_detection('kitty', False, err)
                if not features.sixel_graphics:
                    try:
                        features.sixel_graphics = query_sixel(q, da1_reply)
                        log_detection('sixel', features.sixel_graphics)
                    except OSError as err:
                        log_detection('sixel', False, err)
                if not features.kitty_graphics:
                    try:
                        ok, cell_size = query_iterm2(q, use_sentinel)
                        features.iterm2_graphics = ok
                        if cell_size is not None:
                            features.font_width, features.font_height = cell_size
                        log_detection('iterm2', ok)
                    except OSError as err:
                        log_detection('iterm2', False, err)
            try:
                query_metrics(q, features, use_sentinel)
            except OSError as err:
                log_detection('metrics', False, err)
    except QueryError as err:
        log_detection('querier', False, err, True)
# }}}


def bypassed_features(val: str, features: Features) -> Features:
    val = val.strip().lower()
    features.truecolor = True
    if val == 'kitty':
        features.kitty_graphics = True
    elif val == 'sixel':
        features.sixel_graphics = True
    elif val == 'iterm2':
        features.iterm2_graphics = True
    elif val != 'halfblocks':
        log_detection('bypass', False, ValueError(f'Unknown protocol in {BYPASS_ENV_VAR}: {val}'), True)
    return features


def fill_window_size(features: Features) -> None:
    for fd in (None, 0):
        try:
            ss = screen_size_function(fd)()
        except (OSError, ValueError):
            continue
        if ss.cols > 0 and ss.rows > 0:
            if not features.window_cols:
                features.window_cols, features.window_rows = ss.cols, ss.rows
            if not features.window_width and ss.width > 0:
                features.window_width, features.window_height = ss.width, ss.height
            if not features.font_width and ss.cell_width > 0 and ss.cell_height > 0:
                features.font_width = clamp_font_dimension(ss.cell_width)
                features.font_height = clamp_font_dimension(ss.cell_height)
            return


def compute_features(env: Mapping[str, str] | None = None, interactive: bool | None = None, fd: int | None = None) -> Features:
    env = _env(env)
    features = Features(
        term_name=env.get('TERM', ''), term_program=env.get('TERM_PROGRAM', ''),
        in_multiplexer=in_multiplexer(env), in_screen=in_screen(env))
    bypass = env.get(BYPASS_ENV_VAR, '')
    if bypass:
        bypassed_features(bypass, features)
        log_detection('bypass', True)
    elif features.term_program in NO_GRAPHICS_PROGRAMS:
        log_detection('apple_terminal', False)
    else:
        if features.in_multiplexer:
            enable_passthrough(env)
        features.kitty_graphics = kitty_from_environment(env)
        features.iterm2_graphics = iterm2_from_environment(env)
        features.sixel_graphics = sixel_from_environment(env)
        features.truecolor = truecolor_from_environment(env)
        if interactive is None:
            interactive = is_interactive()
        if interactive and (not features.in_multiplexer or is_passthrough_enabled()):
            run_queries(features, fd)
        if features.in_multiplexer and not (features.kitty_graphics or features.sixel_graphics or features.iterm2_graphics):
            features.sixel_graphics = True
            log_detection('sixel', True, fallback=True)
    fill_window_size(features)
    if features.font_width <= 0 or features.font_height <= 0:
        features.font_width, features.font_height = font_size_fallback(env)
    return features


@run_once
def query_terminal_features() -> Features:
    return compute_features()


def reset_feature_cache() -> None:
    query_terminal_features.clear_cached()
    query_terminal_features.clear_override()


def determine_protocols(features: Features | None = None) -> list[Protocol]:
    ' Supported protocols in order of preference, always ending with halfblocks '
    if features is None:
        features = query_terminal_features()
    ans = []
    if features.kitty_graphics:
        ans.append(Protocol.kitty)
    if features.iterm2_graphics:
        ans.append(Protocol.iterm2)
    if features.sixel_graphics:
        ans.append(Protocol.sixel)
    ans.append(Protocol.halfblocks)
    return ans


def detect_protocol(features: Features | None = None) -> Protocol:
    return determine_protocols(features)[0]


def supported_protocols(features: Features | None = None) -> set[Protocol]:
    return set(determine_protocols(features))


def kitty_supported() -> bool:
    return query_terminal_features().kitty_graphics


def sixel_supported() -> bool:
    return query_terminal_features().sixel_graphics


def iterm2_supported() -> bool:
    return query_terminal_features().iterm2_graphics


def halfblocks_supported() -> bool:
    return True
