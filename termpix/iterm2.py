#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

from base64 import standard_b64encode
from collections.abc import Mapping
from io import BytesIO
from typing import TYPE_CHECKING

from .constants import ITERM2_CHUNK_SIZE
from .errors import EncodeError, QueryError
from .operations import BEL, clear_line, clear_screen_and_scrollback, erase_characters, move_cursor_by, osc
from .pipeline import process_image
from .renderers import ClearOptions, ITerm2Options, Renderer, RenderOptions
from .types import Protocol
from .utils import ceil_int

if TYPE_CHECKING:
    from PIL.Image import Image as PILImage

    from .detect import Features


def jpeg_data(img: 'PILImage') -> bytes:
    if img.mode != 'RGB':
        img = img.convert('RGB')
    buf = BytesIO()
    try:
        img.save(buf, format='JPEG')
    except (OSError, ValueError) as err:
        raise EncodeError(f'Failed to encode image as JPEG: {err}', 'iterm2') from err
    return buf.getvalue()


def file_params(size: int, width: int, height: int, io: ITerm2Options) -> str:
    params = [f'inline={int(io.inline)}', 'doNotMoveCursor=1', f'size={size}', f'width={width}px', f'height={height}px']
    if io.preserve_aspect_ratio:
        params.append('preserveAspectRatio=1')
    return ';'.join(params)


def file_sequences(data: bytes, params: str, chunk_size: int = ITERM2_CHUNK_SIZE) -> list[str]:
    '''The OSC 1337 sequences that transfer data. Payloads larger than
    chunk_size are split into a MultipartFile, FilePart and FileEnd series.'''
    if len(data) <= chunk_size:
        return [osc(f'1337;File={params}:{standard_b64encode(data).decode("ascii")}')]
    ans = [osc(f'1337;MultipartFile={params}:{standard_b64encode(data[:chunk_size]).decode("ascii")}')]
    for i in range(chunk_size, len(data), chunk_size):
        ans.append(osc(f'1337;FilePart:{standard_b64encode(data[i:i+chunk_size]).decode("ascii")}'))
    ans.append(osc('1337;FileEnd'))
    return ans


def background_clear_sequence(cols: int, rows: int) -> str:
    ' Blank a cols x rows rectangle below the cursor and return to where it started '
    ans = []
    for i in range(rows):
        ans.append(erase_characters(cols))
        if i < rows - 1:
            ans.append(move_cursor_by(1, 'down'))
    if rows > 1:
        ans.append(move_cursor_by(rows - 1, 'up'))
    return ''.join(ans)


def iterm2_cell_size(fd: int | None = None) -> tuple[int, int] | None:
    ' The cell size in pixels as reported by OSC 1337;ReportCellSize, or None '
    from .detect import ITERM2_CELL_SIZE_QUERY, TerminalQuerier, parse_iterm2_cell_size
    try:
        with TerminalQuerier(fd) as q:
            resp = q.query(ITERM2_CELL_SIZE_QUERY, lambda buf: 'ReportCellSize=' in buf and (BEL in buf or '\033\\' in buf))
    except QueryError:
        return None
    return parse_iterm2_cell_size(resp)


def detect_iterm2(env: Mapping[str, str] | None = None, fd: int | None = None) -> bool:
    ' True if the environment identifies iTerm2 or the terminal answers its queries '
    from .detect import TerminalQuerier, iterm2_from_environment, query_iterm2
    if iterm2_from_environment(env):
        return True
    try:
        with TerminalQuerier(fd) as q:
            return query_iterm2(q, False)[0]
    except QueryError:
        return False


class ITerm2Renderer(Renderer):

    protocol = Protocol.iterm2

    def cell_footprint(self, width: int, height: int, opts: RenderOptions, features: 'Features') -> tuple[int, int]:
        fw, fh = features.cell_size()
        cols = opts.width if opts.width > 0 else ceil_int(width / max(1, fw))
        rows = opts.height if opts.height > 0 else ceil_int(height / max(1, fh))
        return cols, rows

    def wants_background_clear(self, io: ITerm2Options, features: 'Features') -> bool:
        if io.clear_background is not None:
            return io.clear_background
        from .multiplexer import is_multiplexer_forced
        return features.in_multiplexer or is_multiplexer_forced()

    def render(self, img: 'PILImage', opts: RenderOptions) -> str:
        features = self.features_for(opts)
        processed = process_image(img, opts, features)
        data = jpeg_data(processed)
        if not data:
            raise EncodeError('JPEG encoder produced no data', 'iterm2')
        io = opts.iterm2
        params = file_params(len(data), processed.width, processed.height, io)
        cols, rows = self.cell_footprint(processed.width, processed.height, opts, features)
        out = []
        if self.wants_background_clear(io, features):
            out.append(self.passthrough(background_clear_sequence(cols, rows), features))
        out.extend(self.passthrough(seq, features) for seq in file_sequences(data, params))
        self.last_in_multiplexer = features.in_multiplexer
        self.placement.record(0, cols, rows)
        return ''.join(out)

    def clear_sequence(self, opts: ClearOptions) -> str:
        if opts.all:
            seq = clear_screen_and_scrollback()
        else:
            # no way to delete a single image, blank the current and previous lines
            seq = clear_line() + move_cursor_by(1, 'up') + clear_line() + move_cursor_by(1, 'down')
        return self.passthrough(seq)
