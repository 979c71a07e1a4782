#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

from collections.abc import Sequence
from dataclasses import replace
from typing import IO, TYPE_CHECKING, Any, TextIO

from .errors import ConfigurationError
from .pipeline import load_image
from .renderers import ClearOptions, Renderer, RenderOptions, get_renderer
from .types import DitherMode, Protocol, ScaleMode, SixelClearMode, TransferMode

if TYPE_CHECKING:
    from PIL.Image import Image as PILImage

    from .detect import Features

RGB = tuple[int, int, int]


class Image:
    '''A decoded image together with the options used to display it. All
    setters return the image so that calls can be chained::

        Image.open('logo.png').width(20).protocol('kitty').print()
    '''

    def __init__(self, source: 'PILImage', path: str = ''):
        self.source = source
        self.path = path
        self.options = RenderOptions(source_key=path)
        self.requested_protocol = Protocol.auto
        self.renderer: Renderer | None = None

    @classmethod
    def new_from_image(cls, img: 'PILImage') -> 'Image':
        if img is None:
            raise ConfigurationError('No image provided')
        return cls(load_image(img))

    @classmethod
    def open(cls, path: str) -> 'Image':
        if not path:
            raise ConfigurationError('Image path must not be empty')
        return cls(load_image(path), path)

    @classmethod
    def from_reader(cls, stream: IO[bytes], name: str = '') -> 'Image':
        if stream is None:
            raise ConfigurationError('No stream provided')
        return cls(load_image(stream, name), name)

    def set_source(self, source: Any, path: str = '') -> 'Image':
        ' Replace the image data, keeping all options '
        if source is None:
            raise ConfigurationError('No image provided')
        self.source = load_image(source, path)
        self.path = path or (source if isinstance(source, str) else '')
        self.options.source_key = self.path
        return self

    def __repr__(self) -> str:
        return f'Image({self.path or "<memory>"}, {self.source.width}x{self.source.height}, protocol={self.requested_protocol})'

    # Sizing {{{
    def width(self, cells: int) -> 'Image':
        self.options.width = max(0, cells)
        return self

    def height(self, cells: int) -> 'Image':
        self.options.height = max(0, cells)
        return self

    def size(self, width: int, height: int) -> 'Image':
        return self.width(width).height(height)

    def width_pixels(self, px: int) -> 'Image':
        self.options.width_pixels = max(0, px)
        return self

    def height_pixels(self, px: int) -> 'Image':
        self.options.height_pixels = max(0, px)
        return self

    def scale(self, mode: ScaleMode | str) -> 'Image':
        self.options.scale_mode = ScaleMode.from_literal(mode)
        return self

    def position(self, x: int | None, y: int | None) -> 'Image':
        self.options.x, self.options.y = x, y
        return self
    # }}}

    def protocol(self, p: Protocol | str) -> 'Image':
        p = Protocol.from_literal(p)
        if p is not self.requested_protocol:
            self.requested_protocol = p
            self.renderer = None
        return self

    def features(self, f: 'Features | None') -> 'Image':
        self.options.features = f
        if self.requested_protocol is Protocol.auto:
            self.renderer = None
        return self

    def dither(self, yes: bool = True) -> 'Image':
        self.options.dither = yes
        return self

    def dither_mode(self, mode: DitherMode | str) -> 'Image':
        self.options.dither_mode = DitherMode.from_literal(mode)
        return self

    # Kitty {{{
    def zindex(self, z: int) -> 'Image':
        self.options.kitty.z_index = z
        return self

    def virtual(self, yes: bool = True) -> 'Image':
        self.options.kitty.virtual = yes
        return self

    def compression(self, yes: bool = True) -> 'Image':
        self.options.kitty.compression = yes
        return self

    def png(self, yes: bool = True) -> 'Image':
        self.options.kitty.png = yes
        return self

    def rgb(self, yes: bool = True) -> 'Image':
        self.options.kitty.rgb = yes
        return self

    def temp_file(self, yes: bool = True) -> 'Image':
        self.options.kitty.transfer = TransferMode.temp if yes else TransferMode.direct
        return self

    def transfer(self, mode: TransferMode | str) -> 'Image':
        self.options.kitty.transfer = TransferMode.from_literal(mode)
        return self

    def image_num(self, n: int) -> 'Image':
        from .kitty import check_image_id
        self.options.kitty.image_num = check_image_id(n, 'image number')
        return self

    def image_id(self, n: int) -> 'Image':
        from .kitty import check_image_id
        self.options.kitty.image_id = check_image_id(n)
        return self

    def placement_id(self, n: int) -> 'Image':
        from .kitty import check_image_id
        self.options.kitty.placement_id = check_image_id(n, 'placement id')
        return self
    # }}}

    # Sixel {{{
    def optimize_palette(self, yes: bool = True) -> 'Image':
        self.options.sixel.optimize_palette = yes
        return self

    def palette_size(self, n: int) -> 'Image':
        self.options.sixel.palette = n
        return self

    def custom_palette(self, colors: Sequence[RGB] | None) -> 'Image':
        self.options.sixel.custom_palette = tuple(colors) if colors else None
        return self

    def background(self, color: RGB | None) -> 'Image':
        self.options.sixel.background = color
        return self

    def sixel_clear_mode(self, mode: SixelClearMode | str) -> 'Image':
        self.options.sixel.clear_mode = SixelClearMode.from_literal(mode)
        return self
    # }}}

    # iTerm2 {{{
    def preserve_aspect(self, yes: bool = True) -> 'Image':
        self.options.iterm2.preserve_aspect_ratio = yes
        return self

    def inline(self, yes: bool = True) -> 'Image':
        self.options.iterm2.inline = yes
        return self
    # }}}

    def clone(self) -> 'Image':
        ' A copy sharing the pixel data, with independent options and no renderer state '
        ans = Image(self.source, self.path)
        o = self.options
        ans.options = replace(o, kitty=replace(o.kitty), sixel=replace(o.sixel), iterm2=replace(o.iterm2))
        ans.requested_protocol = self.requested_protocol
        return ans

    def get_renderer(self) -> Renderer:
        if self.renderer is None:
            self.renderer = get_renderer(self.requested_protocol, self.options.features)
        return self.renderer

    @property
    def active_protocol(self) -> Protocol:
        return self.get_renderer().protocol

    def render(self) -> str:
        return self.get_renderer().render(self.source, self.options)

    def print(self, output: TextIO | None = None) -> None:
        self.get_renderer().print(self.source, self.options, output)

    def clear(self, opts: ClearOptions | None = None, output: TextIO | None = None) -> None:
        self.get_renderer().clear(opts, output)

    def clear_all(self, output: TextIO | None = None) -> None:
        self.clear(ClearOptions(all=True), output)


SETTINGS = frozenset((
    'width', 'height', 'size', 'width_pixels', 'height_pixels', 'scale', 'position', 'protocol', 'features',
    'dither', 'dither_mode', 'zindex', 'virtual', 'compression', 'png', 'rgb', 'temp_file', 'transfer', 'image_num',
    'image_id', 'placement_id', 'optimize_palette', 'palette_size', 'custom_palette', 'background',
    'sixel_clear_mode', 'preserve_aspect', 'inline',
))


def apply_settings(img: Image, settings: dict[str, Any]) -> Image:
    for name, val in settings.items():
        if name not in SETTINGS:
            raise ConfigurationError(f'Unknown image setting: {name}')
        if name == 'size' or name == 'position':
            getattr(img, name)(*val)
        else:
            getattr(img, name)(val)
    return img


def render_file(path: str, **settings: Any) -> str:
    ' Render the image at path, for example: render_file("a.png", width=20, protocol="sixel") '
    return apply_settings(Image.open(path), settings).render()


def print_file(path: str, output: TextIO | None = None, **settings: Any) -> None:
    apply_settings(Image.open(path), settings).print(output)


def clear_all(protocol: Protocol | str = Protocol.auto, output: TextIO | None = None, features: 'Features | None' = None) -> None:
    ' Remove all images shown with the given, or the detected, protocol '
    get_renderer(protocol, features).clear(ClearOptions(all=True), output)
