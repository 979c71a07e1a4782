#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

from collections.abc import Sequence
from typing import TYPE_CHECKING, TextIO

from .errors import EncodeError
from .operations import clear_line, clear_screen, move_cursor_by
from .pipeline import dither_stucki, image_palette, median_cut_palette, process_image
from .renderers import ClearOptions, Renderer, RenderOptions, SixelOptions
from .types import Protocol, SixelClearMode

if TYPE_CHECKING:
    from PIL.Image import Image as PILImage

RGB = tuple[int, int, int]
OPAQUE_START = '\033Pq'
# P2=1 leaves pixels that are not painted at their current colour
TRANSPARENT_START = '\033P0;1q'
END = '\033\\'


def rle(values: bytearray) -> str:
    ' Sixel characters for a run of six pixel columns, with runs of four or more compressed '
    end = len(values)
    while end and not values[end - 1]:
        end -= 1
    parts = []
    i = 0
    while i < end:
        val = values[i]
        j = i + 1
        while j < end and values[j] == val:
            j += 1
        n, ch = j - i, chr(val + 63)
        parts.append(f'!{n}{ch}' if n >= 4 else ch * n)
        i = j
    return ''.join(parts)


def encode_sixel(indices: bytes, width: int, height: int, palette: Sequence[RGB], alpha: bytes | None = None) -> str:
    '''Encode a paletted raster as a complete sixel DCS sequence. Pixels whose
    alpha is below 128 are not painted.'''
    if width <= 0 or height <= 0 or not palette:
        raise EncodeError(f'Cannot encode a {width}x{height} image with {len(palette)} colors as sixel', 'sixel')
    transparent = alpha is not None and min(alpha) < 128
    out = [TRANSPARENT_START if transparent else OPAQUE_START, f'"1;1;{width};{height}']
    for n, (r, g, b) in enumerate(palette):
        out.append(f'#{n};2;{round(r * 100 / 255)};{round(g * 100 / 255)};{round(b * 100 / 255)}')
    bands = []
    for top in range(0, height, 6):
        per_color: dict[int, bytearray] = {}
        for bit, y in enumerate(range(top, min(top + 6, height))):
            offset = y * width
            for x in range(width):
                i = offset + x
                if transparent and alpha is not None and alpha[i] < 128:
                    continue
                c = indices[i]
                row = per_color.get(c)
                if row is None:
                    row = per_color[c] = bytearray(width)
                row[x] |= 1 << bit
        bands.append('$'.join(f'#{c}{rle(row)}' for c, row in sorted(per_color.items())))
    out.append('-'.join(bands))
    out.append(END)
    return ''.join(out)


class SixelRenderer(Renderer):

    protocol = Protocol.sixel

    def __init__(self) -> None:
        super().__init__()
        self.clear_mode = SixelClearMode.auto

    def quantize(self, img: 'PILImage', so: SixelOptions) -> tuple['PILImage', list[RGB], bytes | None]:
        from PIL import Image
        if img.mode == 'P':
            # already dithered by the pipeline, dithering again would only add noise
            return img, image_palette(img), None
        rgba = img.convert('RGBA')
        alpha: bytes | None = None
        if so.background is not None:
            bg = Image.new('RGBA', rgba.size, (*so.background, 255))
            rgb = Image.alpha_composite(bg, rgba).convert('RGB')
        else:
            alpha = rgba.getchannel('A').tobytes()
            rgb = rgba.convert('RGB')
        if so.custom_palette:
            palette = list(so.custom_palette)
            return dither_stucki(rgb, palette), palette, alpha
        if so.optimize_palette:
            palette = median_cut_palette(rgb, so.palette_size)
            return dither_stucki(rgb, palette), palette, alpha
        q = rgb.quantize(colors=so.palette_size, dither=Image.Dither.NONE)
        return q, image_palette(q), alpha

    def render(self, img: 'PILImage', opts: RenderOptions) -> str:
        features = self.features_for(opts)
        processed = process_image(img, opts, features)
        quantized, palette, alpha = self.quantize(processed, opts.sixel)
        output = encode_sixel(quantized.tobytes(), quantized.width, quantized.height, palette, alpha)
        if not output.startswith('\033'):
            raise EncodeError('Sixel encoder produced invalid output', 'sixel')
        output = self.passthrough(output, features)
        _, fh = features.cell_size()
        height = opts.height if opts.height > 0 else max(quantized.height // max(1, fh), 1)
        width = opts.width if opts.width > 0 else max(quantized.width // max(1, features.cell_size()[0]), 1)
        self.clear_mode = opts.sixel.clear_mode
        self.last_in_multiplexer = features.in_multiplexer
        self.placement.record(0, width, height)
        return output

    def precise_clear_sequence(self, height: int) -> str:
        ans = [move_cursor_by(height, 'up')] if height > 0 else []
        for i in range(height):
            ans.append(clear_line())
            if i < height - 1:
                ans.append(move_cursor_by(1, 'down'))
        ans.append('\r')
        return ''.join(ans)

    def clear_sequence(self, opts: ClearOptions) -> str:
        height = self.placement.last_height
        if opts.all or self.clear_mode is SixelClearMode.screen or height <= 0:
            seq = clear_screen()
        else:
            seq = self.precise_clear_sequence(height)
        return self.passthrough(seq)

    def clear(self, opts: ClearOptions | None = None, output: TextIO | None = None) -> None:
        super().clear(opts, output)
        self.placement.reset()
