#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

from .constants import str_version as __version__
from .detect import (
    DetectionResult,
    Features,
    clear_detection_log,
    detect_protocol,
    determine_protocols,
    get_detection_log,
    halfblocks_supported,
    iterm2_supported,
    kitty_supported,
    query_terminal_features,
    reset_feature_cache,
    sixel_supported,
    supported_protocols,
)
from .errors import ClearError, ConfigurationError, DecodeError, EncodeError, OutputError, QueryError, TermpixError
from .image import Image, clear_all, print_file, render_file
from .multiplexer import force_multiplexer, is_multiplexer_forced, is_passthrough_enabled
from .pipeline import clear_resize_cache
from .renderers import ClearOptions, ITerm2Options, KittyOptions, Renderer, RenderOptions, SixelOptions, get_renderer
from .types import DitherMode, Protocol, ScaleMode, SixelClearMode, TransferMode
from .widget import AsyncRenderWorker, ImageGallery, ImageWidget, RenderOutcome, StatefulImageWidget

__all__ = (
    '__version__', 'Image', 'render_file', 'print_file', 'clear_all',
    'Protocol', 'ScaleMode', 'DitherMode', 'SixelClearMode', 'TransferMode',
    'RenderOptions', 'KittyOptions', 'SixelOptions', 'ITerm2Options', 'ClearOptions', 'Renderer', 'get_renderer',
    'Features', 'DetectionResult', 'query_terminal_features', 'reset_feature_cache', 'detect_protocol',
    'determine_protocols', 'supported_protocols', 'kitty_supported', 'sixel_supported', 'iterm2_supported',
    'halfblocks_supported', 'get_detection_log', 'clear_detection_log',
    'force_multiplexer', 'is_multiplexer_forced', 'is_passthrough_enabled', 'clear_resize_cache',
    'AsyncRenderWorker', 'StatefulImageWidget', 'RenderOutcome', 'ImageWidget', 'ImageGallery',
    'TermpixError', 'ConfigurationError', 'DecodeError', 'QueryError', 'EncodeError', 'OutputError', 'ClearError',
)
