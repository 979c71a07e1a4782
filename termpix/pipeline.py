#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

from collections import OrderedDict
from collections.abc import Hashable, Sequence
from io import BytesIO
from threading import Lock
from typing import IO, TYPE_CHECKING, Union

from .constants import DEFAULT_CACHE_SIZE, DEFAULT_PALETTE_SIZE, MAX_PALETTE_SIZE, MIN_PALETTE_SIZE
from .errors import DecodeError
from .types import DitherMode, ScaleMode
from .utils import terminal_size

if TYPE_CHECKING:
    from PIL.Image import Image as PILImage

    from .detect import Features
    from .renderers import RenderOptions

RGB = tuple[int, int, int]
ImageSource = Union['PILImage', str, bytes, bytearray, IO[bytes]]
STUCKI_KERNEL = (
    (1, 0, 8), (2, 0, 4),
    (-2, 1, 2), (-1, 1, 4), (0, 1, 8), (1, 1, 4), (2, 1, 2),
    (-2, 2, 1), (-1, 2, 2), (0, 2, 4), (1, 2, 2), (2, 2, 1),
)


def normalize_mode(img: 'PILImage') -> 'PILImage':
    if img.mode in ('RGB', 'RGBA'):
        return img
    has_alpha = img.mode in ('LA', 'PA', 'La', 'RGBa') or 'transparency' in img.info
    return img.convert('RGBA' if has_alpha else 'RGB')


def load_image(source: ImageSource, name: str = '') -> 'PILImage':
    '''Decode an image from a path, raw bytes, a binary stream or an already
    decoded Pillow image. Only the first frame of animated formats is used.'''
    from PIL import Image, UnidentifiedImageError
    if isinstance(source, Image.Image):
        return normalize_mode(source)
    if isinstance(source, str):
        name = name or source
        if not source:
            from .errors import ConfigurationError
            raise ConfigurationError('Image path must not be empty')
    elif isinstance(source, (bytes, bytearray, memoryview)):
        source = BytesIO(bytes(source))
    name = name or '<stream>'
    try:
        with Image.open(source) as img:
            img.seek(0)
            img.load()
            ans = normalize_mode(img)
            if ans is img:
                ans = img.copy()
    except (OSError, UnidentifiedImageError, ValueError, EOFError, Image.DecompressionBombError) as err:
        raise DecodeError(name, str(err)) from err
    return ans


# Sizing {{{

def aspect_size(src_w: int, src_h: int, width: int, height: int) -> tuple[int, int]:
    ' Fill in whichever of width or height is zero so as to preserve the aspect ratio '
    if width <= 0 and height > 0:
        width = height * src_w // max(1, src_h)
    elif height <= 0 and width > 0:
        height = width * src_h // max(1, src_w)
    return max(1, width), max(1, height)


def compute_target_size(src_w: int, src_h: int, width: int, height: int, mode: ScaleMode) -> tuple[int, int] | None:
    ' Pixel size to scale a src_w x src_h image to, given a target box in pixels, or None to leave it unscaled '
    if src_w <= 0 or src_h <= 0 or (width <= 0 and height <= 0):
        return None
    if width <= 0 or height <= 0:
        return aspect_size(src_w, src_h, width, height)
    if mode is ScaleMode.fit or mode is ScaleMode.fill:
        rw, rh = width / src_w, height / src_h
        ratio = min(rw, rh) if mode is ScaleMode.fit else max(rw, rh)
        ans = max(1, int(src_w * ratio)), max(1, int(src_h * ratio))
        if mode is ScaleMode.fit:
            ans = min(ans[0], width), min(ans[1], height)
        return ans
    return width, height


def terminal_cells(features: 'Features | None' = None) -> tuple[int, int] | None:
    if features is not None and features.window_cols > 0 and features.window_rows > 0:
        return features.window_cols, features.window_rows
    return terminal_size()


def target_box(opts: 'RenderOptions', font_width: int, font_height: int, features: 'Features | None' = None) -> tuple[int, int] | None:
    width, height = opts.width, opts.height
    if width <= 0 and height <= 0 and opts.width_pixels <= 0 and opts.height_pixels <= 0:
        if opts.scale_mode is not ScaleMode.fit:
            return None
        cells = terminal_cells(features)
        if cells is None:
            return None
        width, height = cells
    return (opts.width_pixels or width * font_width), (opts.height_pixels or height * font_height)
# }}}


# Resizing {{{

class ResizeCache:

    def __init__(self, max_size: int = DEFAULT_CACHE_SIZE):
        self.max_size = max_size
        self.entries: OrderedDict[Hashable, 'PILImage'] = OrderedDict()
        self.lock = Lock()

    def get(self, key: Hashable) -> 'PILImage | None':
        with self.lock:
            ans = self.entries.get(key)
            if ans is not None:
                self.entries.move_to_end(key)
            return ans

    def set(self, key: Hashable, img: 'PILImage') -> None:
        with self.lock:
            self.entries[key] = img
            self.entries.move_to_end(key)
            while len(self.entries) > self.max_size:
                self.entries.popitem(last=False)

    def clear(self) -> None:
        with self.lock:
            self.entries.clear()

    def __len__(self) -> int:
        return len(self.entries)


resize_cache = ResizeCache()


def clear_resize_cache() -> None:
    resize_cache.clear()


def resample_filter(src: tuple[int, int], target: tuple[int, int]) -> int:
    from PIL import Image
    if src[0] * src[1] > target[0] * target[1] * 4:
        return Image.Resampling.BILINEAR
    return Image.Resampling.NEAREST


def resize_image(img: 'PILImage', width: int, height: int, source_key: str = '') -> 'PILImage':
    from PIL import Image
    size = max(1, width), max(1, height)
    if img.size == size:
        return img
    key = (size[0], size[1], source_key, img.size) if source_key else None
    if key is not None:
        cached = resize_cache.get(key)
        if cached is not None:
            return cached
    rf = resample_filter(img.size, size)
    ans = fast_resize(img, *size) if rf == Image.Resampling.NEAREST else img.resize(size, rf)
    if key is not None:
        resize_cache.set(key, ans)
    return ans


def fast_resize(img: 'PILImage', width: int, height: int) -> 'PILImage':
    from PIL import Image
    size = max(1, width), max(1, height)
    if img.size == size:
        return img
    return img.resize(size, Image.Resampling.NEAREST)


def crop_center(img: 'PILImage', width: int, height: int) -> 'PILImage':
    src_w, src_h = img.size
    if width >= src_w and height >= src_h:
        return img
    width, height = min(width, src_w), min(height, src_h)
    left, top = (src_w - width) // 2, (src_h - height) // 2
    return img.crop((left, top, left + width, top + height))
# }}}


# Palettes and dithering {{{

def web_safe_palette() -> list[RGB]:
    levels = range(0, 256, 51)
    return [(r, g, b) for r in levels for g in levels for b in levels]


def clamp_palette_size(n: int) -> int:
    return max(MIN_PALETTE_SIZE, min(n or DEFAULT_PALETTE_SIZE, MAX_PALETTE_SIZE))


def palette_image(colors: Sequence[RGB]) -> 'PILImage':
    from PIL import Image
    flat = [c for rgb in colors for c in rgb]
    # pad with the last colour so that quantizing never picks an unlisted colour
    flat += list(colors[-1]) * (256 - len(colors))
    ans = Image.new('P', (1, 1))
    ans.putpalette(flat)
    return ans


def image_palette(img: 'PILImage') -> list[RGB]:
    ' The colours actually used by a paletted image, indexed as in the image '
    flat = img.getpalette() or []
    used = img.getcolors(256) or ()
    count = max((idx for _, idx in used), default=-1) + 1
    return [(flat[3 * i], flat[3 * i + 1], flat[3 * i + 2]) for i in range(count) if 3 * i + 2 < len(flat)]


def median_cut_palette(img: 'PILImage', size: int = DEFAULT_PALETTE_SIZE) -> list[RGB]:
    from PIL import Image
    q = img.convert('RGB').quantize(colors=clamp_palette_size(size), method=Image.Quantize.MEDIANCUT, dither=Image.Dither.NONE)
    return image_palette(q) or [(0, 0, 0)]


def dither_floyd_steinberg(img: 'PILImage', palette: Sequence[RGB] | None = None) -> 'PILImage':
    from PIL import Image
    pal = palette_image(palette or web_safe_palette())
    return img.convert('RGB').quantize(palette=pal, dither=Image.Dither.FLOYDSTEINBERG)


def nearest_index(palette: Sequence[RGB], r: int, g: int, b: int) -> int:
    best, best_dist = 0, 1 << 30
    for i, (pr, pg, pb) in enumerate(palette):
        d = (r - pr) * (r - pr) + (g - pg) * (g - pg) + (b - pb) * (b - pb)
        if d < best_dist:
            best, best_dist = i, d
            if not d:
                break
    return best


def dither_stucki(img: 'PILImage', palette: Sequence[RGB]) -> 'PILImage':
    from PIL import Image
    pal = list(palette) or [(0, 0, 0)]
    src = img.convert('RGB')
    w, h = src.size
    data = src.tobytes()
    rs, gs, bs = list(map(float, data[0::3])), list(map(float, data[1::3])), list(map(float, data[2::3]))
    out = bytearray(w * h)
    nearest_cache: dict[RGB, int] = {}
    for y in range(h):
        for x in range(w):
            i = y * w + x
            r = min(255, max(0, int(rs[i] + 0.5)))
            g = min(255, max(0, int(gs[i] + 0.5)))
            b = min(255, max(0, int(bs[i] + 0.5)))
            idx = nearest_cache.get((r, g, b))
            if idx is None:
                idx = nearest_cache[(r, g, b)] = nearest_index(pal, r, g, b)
            out[i] = idx
            pr, pg, pb = pal[idx]
            er, eg, eb = r - pr, g - pg, b - pb
            if not (er or eg or eb):
                continue
            for dx, dy, weight in STUCKI_KERNEL:
                nx, ny = x + dx, y + dy
                if 0 <= nx < w and ny < h:
                    j = ny * w + nx
                    f = weight / 42
                    rs[j] += er * f
                    gs[j] += eg * f
                    bs[j] += eb * f
    ans = Image.frombytes('P', (w, h), bytes(out))
    ans.putpalette([c for rgb in pal for c in rgb])
    return ans


def dither_image(img: 'PILImage', mode: DitherMode, palette_size: int = DEFAULT_PALETTE_SIZE) -> 'PILImage':
    if mode is DitherMode.floyd_steinberg:
        return dither_floyd_steinberg(img)
    if mode is DitherMode.stucki:
        return dither_stucki(img, median_cut_palette(img, palette_size))
    return img
# }}}


def process_image(img: 'PILImage', opts: 'RenderOptions', features: 'Features | None' = None, font: tuple[int, int] | None = None) -> 'PILImage':
    ' Scale and optionally dither img. The result is a paletted image if and only if it was dithered. '
    if font is None:
        font = features.cell_size() if features is not None else (0, 0)
        if font[0] <= 0 or font[1] <= 0:
            from .detect import font_size_fallback
            font = font_size_fallback()
    box = target_box(opts, font[0], font[1], features)
    if box is not None:
        size = compute_target_size(img.width, img.height, box[0], box[1], opts.scale_mode)
        if size is not None:
            img = resize_image(img, size[0], size[1], opts.source_key)
    mode = opts.effective_dither
    if mode is not DitherMode.none:
        img = dither_image(img, mode, opts.sixel.palette_size)
    return img
