#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

import sys
from typing import TYPE_CHECKING, TextIO

from .cli import CLIError, parse_args
from .errors import ConfigurationError, TermpixError
from .image import Image, clear_all
from .types import Protocol
from .utils import log_error

if TYPE_CHECKING:
    from PIL.Image import Image as PILImage

    from .detect import Features

OPTIONS = '''\
--width -W
type=int
default=0
Width of the image in cells. When zero it is computed from the height, or
fitted to the terminal when both are zero.


--height -H
type=int
default=0
Height of the image in cells.


--protocol -p
type=choices
choices=auto,kitty,sixel,iterm2,halfblocks
default=auto
The graphics protocol to use. The default is to detect the best protocol
supported by the terminal.


--scale
type=choices
choices=fit,fill,stretch,none
default=fit
How to scale the image into the area given by --width and
--height.


--dither
type=bool-set
Dither the image, useful for terminals with limited colors.


--dither-mode
type=choices
choices=floyd-steinberg,stucki
default=floyd-steinberg
The dithering algorithm used when --dither is set.


--z-index -z
type=int
default=0
Z-index of the image, for the kitty protocol. When negative, text will be displayed on top of the image.


--virtual
type=bool-set
Use a virtual placement with Unicode placeholders, for the kitty protocol.


--x
type=int
default=-1
Column at which to place the image. Must be used together with --y.


--y
type=int
default=-1
Row at which to place the image.


--id
type=int
default=0
The image id to use with the kitty protocol. Normally, a random id is used.


--compression
type=bool-set
Compress the image data with zlib, for the kitty protocol.


--png
type=bool-set
Transmit the image as PNG data, for the kitty protocol.


--temp-file
type=bool-set
Transmit the image via a temporary file, for the kitty protocol. Only works when
the terminal runs on the same computer.


--colors
type=int
default=256
Number of palette colors for the sixel protocol, between 2 and 256.


--detect-only
type=bool-set
Print the detected protocol and terminal features and exit.


--test-grid
type=bool-set
Display a generated test pattern using every protocol the terminal supports.


--clear
type=bool-set
Remove all images currently displayed on the screen.
'''

help_text = (
    'Display images in the terminal using the kitty, sixel or iTerm2'
    ' graphics protocols, falling back to colored Unicode half blocks.'
    ' Use - as the file name to read image data from STDIN.'
)
usage = 'image-file ...'


class IcatCLIOptions:
    width: int = 0
    height: int = 0
    protocol: str = 'auto'
    scale: str = 'fit'
    dither: bool = False
    dither_mode: str = 'floyd-steinberg'
    z_index: int = 0
    virtual: bool = False
    x: int = -1
    y: int = -1
    id: int = 0
    compression: bool = False
    png: bool = False
    temp_file: bool = False
    colors: int = 256
    detect_only: bool = False
    test_grid: bool = False
    clear: bool = False


def create_test_pattern(width: int = 192, height: int = 96) -> 'PILImage':
    ' Hue bars over a grey ramp, with a transparent hole in the middle '
    import colorsys

    from PIL import Image as PILImageModule
    img = PILImageModule.new('RGBA', (width, height))
    px = img.load()
    assert px is not None
    for y in range(height):
        for x in range(width):
            if y < height * 2 // 3:
                r, g, b = colorsys.hsv_to_rgb(x / width, 1, 1 - y / height)
                px[x, y] = int(r * 255), int(g * 255), int(b * 255), 255
            else:
                v = 255 * x // max(1, width - 1)
                px[x, y] = v, v, v, 255
    cx, cy, radius = width // 2, height // 3, min(width, height) // 8
    for y in range(cy - radius, cy + radius):
        for x in range(cx - radius, cx + radius):
            px[x, y] = 0, 0, 0, 0
    return img


def configure(img: Image, cli: IcatCLIOptions) -> Image:
    img.size(cli.width, cli.height).protocol(cli.protocol).scale(cli.scale)
    img.dither(cli.dither).dither_mode(cli.dither_mode).palette_size(cli.colors)
    img.zindex(cli.z_index).virtual(cli.virtual).compression(cli.compression).png(cli.png).temp_file(cli.temp_file)
    if cli.id:
        img.image_id(cli.id)
    if cli.x > -1 and cli.y > -1:
        img.position(cli.x, cli.y)
    return img


def detect_only(output: TextIO, features: 'Features | None' = None) -> None:
    from .detect import determine_protocols, get_detection_log, query_terminal_features
    if features is None:
        features = query_terminal_features()
    protocols = determine_protocols(features)
    print('Protocol:', protocols[0], file=output)
    print('Supported:', ', '.join(map(str, protocols)), file=output)
    print(f'Terminal: {features.term_name or "unknown"} ({features.term_program or "unknown"})', file=output)
    print(f'Multiplexer: {"yes" if features.in_multiplexer else "no"}', file=output)
    print(f'Cell size: {features.font_width}x{features.font_height} pixels', file=output)
    print(f'Window: {features.window_cols}x{features.window_rows} cells', file=output)
    for entry in get_detection_log():
        status = 'ok' if entry.success else f'failed: {entry.error}' if entry.error else 'no'
        print(f'  query {entry.protocol}: {status}{" (fallback)" if entry.fallback else ""}', file=output)


def test_grid(cli: IcatCLIOptions, output: TextIO, features: 'Features | None' = None) -> None:
    from .detect import determine_protocols
    pattern = create_test_pattern()
    for p in determine_protocols(features):
        output.write(f'=== {p} ===\n')
        output.flush()
        img = configure(Image.new_from_image(pattern), cli).features(features).protocol(p)
        if not cli.width and not cli.height:
            img.size(32, 8)
        img.print(output)
        output.write('\n')
    output.flush()


def display(path: str, cli: IcatCLIOptions, output: TextIO) -> None:
    if path == '-':
        img = Image.from_reader(sys.stdin.buffer, '<stdin>')
    else:
        img = Image.open(path)
    configure(img, cli).print(output)
    if cli.x < 0 or cli.y < 0:
        output.write('\n')
        output.flush()


def main(args: list[str] | None = None, output: TextIO | None = None) -> int:
    output = sys.stdout if output is None else output
    try:
        cli, items = parse_args(
            sys.argv[1:] if args is None else args, lambda: OPTIONS, usage, help_text, 'termpix', result_class=IcatCLIOptions)
    except CLIError as err:
        log_error(err)
        return 2
    if (cli.x > -1) != (cli.y > -1):
        log_error('--x and --y must be used together')
        return 2
    try:
        if cli.detect_only:
            detect_only(output)
            return 0
        if cli.clear:
            clear_all(Protocol.from_literal(cli.protocol), output)
            if not items:
                return 0
        if cli.test_grid:
            test_grid(cli, output)
            return 0
    except ConfigurationError as err:
        log_error(err)
        return 2
    except TermpixError as err:
        log_error(err)
        return 1
    if not items:
        if sys.stdin.isatty():
            log_error('No image files specified. Use --help for usage.')
            return 2
        items = ['-']
    ret = 0
    for path in items:
        try:
            display(path, cli, output)
        except ConfigurationError as err:
            log_error(err)
            return 2
        except TermpixError as err:
            log_error(err)
            ret = 1
    return ret


if __name__ == '__main__':
    raise SystemExit(main())
