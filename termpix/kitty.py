#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

import os
import random
import re
import tempfile
from collections.abc import Iterator
from io import BytesIO
from typing import TYPE_CHECKING, Any, ClassVar, Generic, NamedTuple, TextIO, TypeVar, cast

from .constants import BASE64_CHUNK_SIZE, MAX_IMAGE_ID, QUERY_TIMEOUT
from .encoding import b64_chunks, zlib_compress
from .errors import ConfigurationError, EncodeError, QueryError
from .operations import RESTORE_CURSOR, SAVE_CURSOR, fg_truecolor, reset_fg, set_cursor_position
from .pipeline import process_image
from .renderers import ClearOptions, KittyOptions, Renderer, RenderOptions
from .types import Protocol, TransferMode
from .utils import ceil_int, is_interactive

if TYPE_CHECKING:
    from PIL.Image import Image as PILImage

    from .detect import Features

T = TypeVar('T')
PLACEHOLDER = '\U0010eeee'
# fmt: off
DIACRITICS = (
    '\u0305', '\u030d', '\u030e', '\u0310', '\u0312', '\u033d', '\u033e', '\u033f',
    '\u0346', '\u034a', '\u034b', '\u034c', '\u0350', '\u0351', '\u0352', '\u0357',
    '\u035b', '\u0363', '\u0364', '\u0365', '\u0366', '\u0367', '\u0368', '\u0369',
    '\u036a', '\u036b', '\u036c', '\u036d', '\u036e', '\u036f', '\u0483', '\u0484',
    '\u0485', '\u0486', '\u0487', '\u0592', '\u0593', '\u0594', '\u0595', '\u0597',
    '\u0598', '\u0599', '\u059c', '\u059d', '\u059e', '\u059f', '\u05a0', '\u05a1',
    '\u05a8', '\u05a9', '\u05ab', '\u05ac', '\u05af', '\u05c4', '\u0610', '\u0611',
    '\u0612', '\u0613', '\u0614', '\u0615', '\u0616', '\u0617', '\u0657', '\u0658',
    '\u0659', '\u065a', '\u065b', '\u065d', '\u065e', '\u06d6', '\u06d7', '\u06d8',
    '\u06d9', '\u06da', '\u06db', '\u06dc', '\u06df', '\u06e0', '\u06e1', '\u06e2',
    '\u06e4', '\u06e7', '\u06e8', '\u06eb', '\u06ec', '\u0730', '\u0732', '\u0733',
    '\u0735', '\u0736', '\u073a', '\u073d', '\u073f', '\u0740', '\u0741', '\u0743',
    '\u0745', '\u0747', '\u0749', '\u074a', '\u07eb', '\u07ec', '\u07ed', '\u07ee',
    '\u07ef', '\u07f0', '\u07f1', '\u07f3', '\u0816', '\u0817', '\u0818', '\u0819',
    '\u081b', '\u081c', '\u081d', '\u081e', '\u081f', '\u0820', '\u0821', '\u0822',
    '\u0823', '\u0825', '\u0826', '\u0827', '\u0829', '\u082a', '\u082b', '\u082c',
    '\u082d', '\u0951', '\u0953', '\u0954', '\u0f82', '\u0f83', '\u0f86', '\u0f87',
    '\u135d', '\u135e', '\u135f', '\u17dd', '\u193a', '\u1a17', '\u1a75', '\u1a76',
    '\u1a77', '\u1a78', '\u1a79', '\u1a7a', '\u1a7b', '\u1a7c', '\u1b6b', '\u1b6d',
    '\u1b6e', '\u1b6f', '\u1b70', '\u1b71', '\u1b72', '\u1b73', '\u1cd0', '\u1cd1',
    '\u1cd2', '\u1cda', '\u1cdb', '\u1ce0', '\u1dc0', '\u1dc1', '\u1dc3', '\u1dc4',
    '\u1dc5', '\u1dc6', '\u1dc7', '\u1dc8', '\u1dc9', '\u1dcb', '\u1dcc', '\u1dd1',
    '\u1dd2', '\u1dd3', '\u1dd4', '\u1dd5', '\u1dd6', '\u1dd7', '\u1dd8', '\u1dd9',
    '\u1dda', '\u1ddb', '\u1ddc', '\u1ddd', '\u1dde', '\u1ddf', '\u1de0', '\u1de1',
    '\u1de2', '\u1de3', '\u1de4', '\u1de5', '\u1de6', '\u1dfe', '\u20d0', '\u20d1',
    '\u20d4', '\u20d5', '\u20d6', '\u20d7', '\u20db', '\u20dc', '\u20e1', '\u20e7',
    '\u20e9', '\u20f0', '\u2cef', '\u2cf0', '\u2cf1', '\u2de0', '\u2de1', '\u2de2',
    '\u2de3', '\u2de4', '\u2de5', '\u2de6', '\u2de7', '\u2de8', '\u2de9', '\u2dea',
    '\u2deb', '\u2dec', '\u2ded', '\u2dee', '\u2def', '\u2df0', '\u2df1', '\u2df2',
    '\u2df3', '\u2df4', '\u2df5', '\u2df6', '\u2df7', '\u2df8', '\u2df9', '\u2dfa',
    '\u2dfb', '\u2dfc', '\u2dfd', '\u2dfe', '\u2dff', '\ua66f', '\ua67c', '\ua67d',
    '\ua6f0', '\ua6f1', '\ua8e0', '\ua8e1', '\ua8e2', '\ua8e3', '\ua8e4', '\ua8e5',
    '\ua8e6', '\ua8e7', '\ua8e8', '\ua8e9', '\ua8ea', '\ua8eb', '\ua8ec', '\ua8ed',
    '\ua8ee', '\ua8ef', '\ua8f0', '\ua8f1', '\uaab0', '\uaab2', '\uaab3', '\uaab7',
    '\uaab8', '\uaabe', '\uaabf', '\uaac1', '\ufe20', '\ufe21', '\ufe22', '\ufe23',
    '\ufe24', '\ufe25', '\ufe26',
    '\U00010a0f', '\U00010a38', '\U0001d185', '\U0001d186', '\U0001d187',
    '\U0001d188', '\U0001d189', '\U0001d1aa', '\U0001d1ab', '\U0001d1ac',
    '\U0001d1ad', '\U0001d242', '\U0001d243', '\U0001d244',
)
# fmt: on
diacritic_numbers = {d: i for i, d in enumerate(DIACRITICS)}
id_color_pat = re.compile(r'\033\[38;2;(\d+);(\d+);(\d+)m')


class Alias(Generic[T]):

    currently_processing: ClassVar[str] = ''

    def __init__(self, defval: T) -> None:
        self.name = ''
        self.defval = defval

    def __get__(self, instance: 'GraphicsCommand | None', cls: type['GraphicsCommand'] | None = None) -> T:
        if instance is None:
            return self.defval
        return cast(T, instance._actual_values.get(self.name, self.defval))

    def __set__(self, instance: 'GraphicsCommand', val: T | None) -> None:
        # Unlike the defaults, explicitly set values are always serialized, so
        # that for example d=a can be sent even though a is the default
        if val is None:
            instance._actual_values.pop(self.name, None)
        else:
            instance._actual_values[self.name] = val

    def __set_name__(self, owner: type['GraphicsCommand'], name: str) -> None:
        if len(name) == 1:
            Alias.currently_processing = name
        self.name = Alias.currently_processing


class GraphicsCommand:
    a = action = Alias('t')
    q = quiet = Alias(0)
    f = format = Alias(32)
    t = transmission_type = Alias('d')
    s = data_width = Alias(0)
    v = data_height = Alias(0)
    S = data_size = Alias(0)
    O = data_offset = Alias(0)  # noqa
    i = image_id = Alias(0)
    I = image_number = Alias(0)  # noqa
    p = placement_id = Alias(0)
    o = compression = Alias(cast(str | None, None))
    m = more = Alias(0)
    c = columns = Alias(0)
    r = rows = Alias(0)
    z = z_index = Alias(0)
    C = cursor_movement = Alias(0)
    U = unicode_placeholder = Alias(0)
    d = delete_action = Alias('a')

    def __init__(self, **kw: Any) -> None:
        self._actual_values: dict[str, Any] = {}
        for k, v in kw.items():
            setattr(self, k, v)

    def __repr__(self) -> str:
        return self.serialize().replace('\033', '^]')

    def clone(self) -> 'GraphicsCommand':
        ans = GraphicsCommand()
        ans._actual_values = self._actual_values.copy()
        return ans

    def serialize(self, payload: str = '') -> str:
        ' payload must already be base64 encoded '
        ans = ['\033_G', ','.join(f'{k}={v}' for k, v in self._actual_values.items())]
        if payload:
            ans.append(';')
            ans.append(payload)
        ans.append('\033\\')
        return ''.join(ans)

    def clear(self) -> None:
        self._actual_values = {}

    def iter_transmission_chunks(self, data: bytes, chunk_size: int = BASE64_CHUNK_SIZE) -> Iterator[str]:
        ' The full control data goes in the first frame, later frames carry only m '
        chunks = b64_chunks(data, chunk_size)
        if len(chunks) < 2:
            yield self.serialize(chunks[0] if chunks else '')
            return
        gc = self.clone()
        last = len(chunks) - 1
        for i, chunk in enumerate(chunks):
            gc.m = 0 if i == last else 1
            yield gc.serialize(chunk)
            gc.clear()


# Unicode placeholders {{{

def check_image_id(image_id: int, what: str = 'image id') -> int:
    if not isinstance(image_id, int) or image_id < 0 or image_id > MAX_IMAGE_ID:
        raise ConfigurationError(f'The {what} {image_id!r} is not in the range 0 to {MAX_IMAGE_ID:#x}')
    return image_id


def create_placeholder(row: int, col: int, id_extra: int = 0) -> str:
    try:
        return PLACEHOLDER + DIACRITICS[row] + DIACRITICS[col] + DIACRITICS[id_extra]
    except IndexError:
        raise ConfigurationError(f'Placeholder cell ({row}, {col}, {id_extra}) is outside the diacritics table') from None


def id_color(image_id: int) -> str:
    return fg_truecolor((image_id >> 16) & 0xff, (image_id >> 8) & 0xff, image_id & 0xff)


def create_placeholder_area(image_id: int, rows: int, cols: int) -> list[list[str]]:
    id_extra = (image_id >> 24) & 0xff
    return [[create_placeholder(r, c, id_extra) for c in range(cols)] for r in range(rows)]


def render_placeholder_row(area_row: list[str], image_id: int) -> str:
    if not area_row:
        return ''
    # cells after the first inherit row, column + 1 and the id from their left neighbour
    return id_color(image_id) + area_row[0] + PLACEHOLDER * (len(area_row) - 1) + reset_fg()


def render_placeholder_area(area: list[list[str]], image_id: int) -> str:
    return '\n'.join(render_placeholder_row(row, image_id) for row in area)


def render_relative_placeholder_area(image_id: int, cols: int, rows: int) -> str:
    if cols <= 0 or rows <= 0:
        return ''
    return render_placeholder_area(create_placeholder_area(image_id, rows, cols), image_id)


def render_anchored_placeholder_area(image_id: int, x: int, y: int, cols: int, rows: int) -> str:
    ' Placeholders with every row positioned absolutely, so the output contains no newlines '
    if cols <= 0 or rows <= 0:
        return ''
    area = create_placeholder_area(image_id, rows, cols)
    return ''.join(set_cursor_position(x, y + r) + render_placeholder_row(row, image_id) for r, row in enumerate(area))


def parse_placeholder_row(text: str) -> list[tuple[int, int, int]]:
    ' Return (row, col, image_id) for every placeholder cell in text '
    ans: list[tuple[int, int, int]] = []
    low_bits = 0
    prev: tuple[int, int, int] | None = None
    pos, n = 0, len(text)
    while pos < n:
        m = id_color_pat.match(text, pos)
        if m is not None:
            r, g, b = map(int, m.groups())
            low_bits = (r << 16) | (g << 8) | b
            prev = None
            pos = m.end()
            continue
        if text[pos] != PLACEHOLDER:
            pos += 1
            continue
        pos += 1
        marks = []
        while pos < n and len(marks) < 3 and text[pos] in diacritic_numbers:
            marks.append(diacritic_numbers[text[pos]])
            pos += 1
        if prev is None:
            row, col, extra = (marks + [0, 0, 0])[:3]
        else:
            row = marks[0] if marks else prev[0]
            col = marks[1] if len(marks) > 1 else prev[1] + 1
            extra = marks[2] if len(marks) > 2 else prev[2]
        prev = row, col, extra
        ans.append((row, col, (extra << 24) | low_bits))
    return ans
# }}}


class GraphicsResponse(NamedTuple):
    image_id: int = 0
    image_number: int = 0
    placement_id: int = 0
    message: str = ''

    @property
    def ok(self) -> bool:
        return self.message == 'OK'


def parse_response(raw: str) -> GraphicsResponse | None:
    from .multiplexer import unwrap
    raw = unwrap(raw.strip())
    start = raw.find('\033_G')
    if start < 0:
        return None
    end = raw.find('\033\\', start)
    if end < 0:
        return None
    body = raw[start + 3:end]
    controls, _, message = body.partition(';')
    vals = {'i': 0, 'I': 0, 'p': 0}
    for item in controls.split(','):
        k, sep, v = item.partition('=')
        if sep and k in vals:
            try:
                vals[k] = int(v)
            except ValueError:
                return None
    return GraphicsResponse(vals['i'], vals['I'], vals['p'], message)


def write_temp_file(data: bytes, prefix: str) -> str:
    try:
        with tempfile.NamedTemporaryFile(prefix=prefix, delete=False) as f:
            f.write(data)
    except OSError as err:
        raise EncodeError(f'Failed to write image data to a temporary file: {err}', 'kitty') from err
    return f.name


def write_shm(data: bytes) -> str:
    from multiprocessing import resource_tracker, shared_memory
    try:
        try:
            shm = shared_memory.SharedMemory(create=True, size=len(data), track=False)  # type: ignore
        except TypeError:
            # track was added in python 3.13
            shm = shared_memory.SharedMemory(create=True, size=len(data))
            resource_tracker.unregister(shm._name, 'shared_memory')  # type: ignore
        assert shm.buf is not None
        shm.buf[:len(data)] = data
        name = shm.name
        shm.close()
    except (OSError, ValueError) as err:
        raise EncodeError(f'Failed to create shared memory for image data: {err}', 'kitty') from err
    # the terminal unlinks it once it has read the data
    return name if name.startswith('/') else '/' + name


class KittyRenderer(Renderer):

    protocol = Protocol.kitty

    def __init__(self) -> None:
        super().__init__()
        self.last_image_num = 0
        self.owned_files: list[str] = []

    def choose_image_id(self, ko: KittyOptions) -> int:
        check_image_id(ko.image_id)
        check_image_id(ko.image_num, 'image number')
        if ko.image_id:
            return ko.image_id
        if ko.virtual and ko.image_num:
            # placeholders need the real id, so the image number doubles as one
            return ko.image_num
        if ko.image_num:
            return 0
        return random.randint(1, MAX_IMAGE_ID)

    def payload_for(self, img: 'PILImage', ko: KittyOptions) -> tuple[int, bytes]:
        if ko.png:
            buf = BytesIO()
            try:
                img.save(buf, format='PNG')
            except (OSError, ValueError) as err:
                raise EncodeError(f'Failed to encode image as PNG: {err}', 'kitty') from err
            return 100, buf.getvalue()
        if ko.rgb and 'A' not in img.getbands() and 'transparency' not in img.info:
            rgb = img if img.mode == 'RGB' else img.convert('RGB')
            return 24, rgb.tobytes()
        rgba = img if img.mode == 'RGBA' else img.convert('RGBA')
        return 32, rgba.tobytes()

    def transmit_data(self, gc: GraphicsCommand, data: bytes, ko: KittyOptions) -> bytes:
        ' Set the transmission keys of gc and return the payload to send '
        t = ko.transfer
        gc.t = t.key
        if t is TransferMode.direct:
            return data
        if t is TransferMode.temp:
            # the terminal deletes files whose name contains this marker
            path = write_temp_file(data, 'tty-graphics-protocol-')
        elif t is TransferMode.file:
            path = write_temp_file(data, 'termpix-')
            self.owned_files.append(path)
        else:
            gc.S = len(data)
            path = write_shm(data)
        return path.encode('utf-8')

    def frames(self, gc: GraphicsCommand, payload: bytes, ko: KittyOptions, features: 'Features') -> str:
        return ''.join(self.passthrough(f, features) for f in gc.iter_transmission_chunks(payload, ko.chunk_size))

    def footprint(self, img: 'PILImage', opts: RenderOptions, features: 'Features') -> tuple[int, int]:
        fw, fh = features.cell_size()
        cols = opts.width if opts.width > 0 and opts.height > 0 else ceil_int(img.width / max(1, fw))
        rows = opts.height if opts.width > 0 and opts.height > 0 else ceil_int(img.height / max(1, fh))
        return max(1, cols), max(1, rows)

    def render(self, img: 'PILImage', opts: RenderOptions) -> str:
        ko = opts.kitty
        image_id = self.choose_image_id(ko)
        features = self.features_for(opts)
        processed = process_image(img, opts, features)
        fmt, data = self.payload_for(processed, ko)
        if not data:
            raise EncodeError('Image has no pixel data', 'kitty')
        cols, rows = self.footprint(processed, opts, features)

        gc = GraphicsCommand()
        two_step = ko.virtual and opts.has_position
        gc.a = 't' if two_step else 'T'
        if ko.virtual:
            gc.U = 1
        gc.f = fmt
        if fmt != 100:
            gc.s, gc.v = processed.width, processed.height
        if ko.compression:
            data = zlib_compress(data)
        payload = self.transmit_data(gc, data, ko)
        if ko.compression:
            gc.o = 'z'
        if image_id:
            gc.i = image_id
        else:
            gc.I = ko.image_num
        if not two_step:
            if ko.placement_id:
                gc.p = ko.placement_id
            if ko.virtual:
                gc.c, gc.r = cols, rows
            if ko.z_index:
                gc.z = ko.z_index
        if image_id:
            gc.q = 2

        x, y = opts.x or 0, opts.y or 0
        if two_step:
            place = GraphicsCommand(a='p', U=1, i=image_id)
            if ko.placement_id:
                place.p = ko.placement_id
            place.c, place.r = cols, rows
            if ko.z_index:
                place.z = ko.z_index
            place.q = 2
            out = (
                self.frames(gc, payload, ko, features) + self.passthrough(place.serialize(), features) +
                SAVE_CURSOR + render_anchored_placeholder_area(image_id, x, y, cols, rows) + RESTORE_CURSOR)
        elif ko.virtual:
            out = self.frames(gc, payload, ko, features) + render_relative_placeholder_area(image_id, cols, rows)
        elif opts.has_position:
            out = SAVE_CURSOR + set_cursor_position(x, y) + self.frames(gc, payload, ko, features) + RESTORE_CURSOR
        else:
            out = self.frames(gc, payload, ko, features)

        self.last_in_multiplexer = features.in_multiplexer
        self.last_image_num = ko.image_num
        self.placement.record(image_id, cols, rows)
        return out

    def print(self, img: 'PILImage', opts: RenderOptions, output: TextIO | None = None) -> None:
        out = self.render(img, opts)
        ko = opts.kitty
        if self.placement.last_image_id or output is not None or not is_interactive():
            self.write(out, output)
            return
        # The terminal picks the id for images sent with only an image number
        # and reports it back, remember it so that clear() can delete by id
        from .detect import TerminalQuerier
        try:
            with TerminalQuerier() as q:
                self.write(out, output)
                resp = q.read_reply(lambda buf: '\033_G' in buf and '\033\\' in buf[buf.find('\033_G'):], QUERY_TIMEOUT)
        except QueryError:
            self.write(out, output)
            return
        r = parse_response(resp)
        if r is not None and r.image_id and r.image_number == ko.image_num:
            self.placement.last_image_id = r.image_id

    def placement_sequence(self, image_id: int, x: int, y: int, cols: int, rows: int, z_index: int = 0) -> str:
        ' Show an already transmitted image at absolute cell coordinates using a virtual placement '
        check_image_id(image_id)
        place = GraphicsCommand(a='p', U=1, i=image_id, c=cols, r=rows)
        if z_index:
            place.z = z_index
        place.q = 2
        return (
            self.passthrough(place.serialize()) + SAVE_CURSOR +
            render_anchored_placeholder_area(image_id, x, y, cols, rows) + RESTORE_CURSOR)

    def place_image(self, image_id: int, x: int, y: int, cols: int, rows: int, z_index: int = 0, output: TextIO | None = None) -> None:
        self.write(self.placement_sequence(image_id, x, y, cols, rows, z_index), output)
        self.placement.record(image_id, cols, rows)

    def clear_sequence(self, opts: ClearOptions) -> str:
        gc = GraphicsCommand(a='d')
        if opts.all:
            gc.d = 'a'
        elif opts.image_id:
            gc.d, gc.i = 'i', check_image_id(opts.image_id)
        elif opts.at_cursor:
            gc.d = 'c'
        elif opts.newest or opts.image_num:
            gc.d = 'n'
            num = opts.image_num or self.last_image_num
            if num:
                gc.I = num
        elif self.placement.last_image_id:
            gc.d, gc.i = 'i', self.placement.last_image_id
        elif self.last_image_num:
            gc.d, gc.I = 'n', self.last_image_num
        else:
            return ''
        gc.q = 2
        return self.passthrough(gc.serialize())

    def clear(self, opts: ClearOptions | None = None, output: TextIO | None = None) -> None:
        opts = opts or ClearOptions()
        super().clear(opts, output)
        if opts.all or not opts.image_id or opts.image_id == self.placement.last_image_id:
            self.placement.reset()
            self.last_image_num = 0
            self.remove_owned_files()

    def remove_owned_files(self) -> None:
        while self.owned_files:
            path = self.owned_files.pop()
            try:
                os.remove(path)
            except FileNotFoundError:
                pass

