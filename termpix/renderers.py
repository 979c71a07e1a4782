#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

import sys
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, TextIO

from .constants import BASE64_CHUNK_SIZE, DEFAULT_PALETTE_SIZE, MAX_PALETTE_SIZE, MIN_PALETTE_SIZE
from .errors import ClearError, OutputError
from .types import DitherMode, Protocol, ScaleMode, SixelClearMode, TransferMode

if TYPE_CHECKING:
    from PIL.Image import Image as PILImage

    from .detect import Features

RGB = tuple[int, int, int]


@dataclass
class KittyOptions:
    image_id: int = 0
    image_num: int = 0
    placement_id: int = 0
    z_index: int = 0
    virtual: bool = False
    compression: bool = False
    png: bool = False
    # Send images without transparency as f=24 RGB instead of f=32 RGBA
    rgb: bool = False
    transfer: TransferMode = TransferMode.direct
    chunk_size: int = BASE64_CHUNK_SIZE


@dataclass
class SixelOptions:
    palette: int = DEFAULT_PALETTE_SIZE
    optimize_palette: bool = False
    custom_palette: tuple[RGB, ...] | None = None
    background: RGB | None = None
    clear_mode: SixelClearMode = SixelClearMode.auto

    @property
    def colors(self) -> int:
        return self.palette

    @colors.setter
    def colors(self, val: int) -> None:
        self.palette = val

    @property
    def palette_size(self) -> int:
        return max(MIN_PALETTE_SIZE, min(self.palette or DEFAULT_PALETTE_SIZE, MAX_PALETTE_SIZE))


@dataclass
class ITerm2Options:
    preserve_aspect_ratio: bool = False
    inline: bool = True
    # None means only when inside a multiplexer
    clear_background: bool | None = None


@dataclass
class RenderOptions:
    width: int = 0
    height: int = 0
    width_pixels: int = 0
    height_pixels: int = 0
    scale_mode: ScaleMode = ScaleMode.fit
    dither: bool = False
    dither_mode: DitherMode = DitherMode.floyd_steinberg
    x: int | None = None
    y: int | None = None
    features: 'Features | None' = None
    # identifies the source image in the resize cache, usually its path
    source_key: str = ''
    kitty: KittyOptions = field(default_factory=KittyOptions)
    sixel: SixelOptions = field(default_factory=SixelOptions)
    iterm2: ITerm2Options = field(default_factory=ITerm2Options)

    @property
    def has_position(self) -> bool:
        return self.x is not None and self.y is not None

    @property
    def effective_dither(self) -> DitherMode:
        return self.dither_mode if self.dither else DitherMode.none


@dataclass
class ClearOptions:
    all: bool = False
    image_id: int = 0
    at_cursor: bool = False
    newest: bool = False
    image_num: int = 0


@dataclass
class PlacementRecord:
    last_image_id: int = 0
    last_width: int = 0
    last_height: int = 0

    def record(self, image_id: int, width: int, height: int) -> None:
        self.last_image_id, self.last_width, self.last_height = image_id, width, height

    def reset(self) -> None:
        self.record(0, 0, 0)


class Renderer:

    protocol: Protocol = Protocol.auto

    def __init__(self) -> None:
        self.placement = PlacementRecord()
        # multiplexer state seen by the last render, used when clearing
        self.last_in_multiplexer: bool | None = None

    def render(self, img: 'PILImage', opts: RenderOptions) -> str:
        raise NotImplementedError('Subclasses must implement render()')

    def print(self, img: 'PILImage', opts: RenderOptions, output: TextIO | None = None) -> None:
        self.write(self.render(img, opts), output)

    def clear_sequence(self, opts: ClearOptions) -> str:
        raise NotImplementedError('Subclasses must implement clear_sequence()')

    def clear(self, opts: ClearOptions | None = None, output: TextIO | None = None) -> None:
        seq = self.clear_sequence(opts or ClearOptions())
        if seq:
            self.write(seq, output, ClearError)

    def features_for(self, opts: RenderOptions) -> 'Features':
        if opts.features is not None:
            return opts.features
        from .detect import query_terminal_features
        return query_terminal_features()

    def passthrough(self, seq: str, features: 'Features | None' = None) -> str:
        ' Wrap seq for tmux when rendering inside a multiplexer '
        from .multiplexer import in_multiplexer, is_multiplexer_forced, wrap
        if features is not None:
            inside = features.in_multiplexer
        elif self.last_in_multiplexer is not None:
            inside = self.last_in_multiplexer
        else:
            inside = in_multiplexer()
        return wrap(seq) if inside or is_multiplexer_forced() else seq

    def write(self, data: str, output: TextIO | None = None, error_class: type[OutputError] = OutputError) -> None:
        stream = sys.stdout if output is None else output
        try:
            stream.write(data)
            stream.flush()
        except (OSError, ValueError) as err:
            raise error_class(f'Failed to write {self.protocol} output: {err}') from err

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.placement})'


def get_renderer(protocol: Protocol | str, features: 'Features | None' = None) -> Renderer:
    protocol = Protocol.from_literal(protocol)
    if protocol is Protocol.auto:
        from .detect import detect_protocol
        protocol = detect_protocol(features)
    if protocol is Protocol.kitty:
        from .kitty import KittyRenderer
        return KittyRenderer()
    if protocol is Protocol.sixel:
        from .sixel import SixelRenderer
        return SixelRenderer()
    if protocol is Protocol.iterm2:
        from .iterm2 import ITerm2Renderer
        return ITerm2Renderer()
    from .halfblocks import HalfblocksRenderer
    return HalfblocksRenderer()
