#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

from collections.abc import Callable
from enum import Enum
from functools import update_wrapper
from threading import Lock
from typing import Generic, TypeVar, cast

_T = TypeVar('_T')
_LE = TypeVar('_LE', bound='LiteralEnum')


class LiteralEnum(Enum):

    @classmethod
    def from_literal(cls: type[_LE], val: 'str | _LE') -> _LE:
        from .errors import ConfigurationError
        if isinstance(val, cls):
            return val
        try:
            return cls(str(val).strip().lower().replace('-', '_'))
        except ValueError:
            choices = ', '.join(x.value for x in cls)
            raise ConfigurationError(f'Unknown {cls.__name__} {val!r}, must be one of: {choices}') from None

    def __str__(self) -> str:
        return str(self.value)


class Protocol(LiteralEnum):
    auto = 'auto'
    kitty = 'kitty'
    sixel = 'sixel'
    iterm2 = 'iterm2'
    halfblocks = 'halfblocks'


class ScaleMode(LiteralEnum):
    none = 'none'
    fit = 'fit'
    fill = 'fill'
    stretch = 'stretch'


class DitherMode(LiteralEnum):
    none = 'none'
    floyd_steinberg = 'floyd_steinberg'
    stucki = 'stucki'


class SixelClearMode(LiteralEnum):
    auto = 'auto'
    screen = 'screen'
    precise = 'precise'


class TransferMode(LiteralEnum):
    direct = 'direct'
    file = 'file'
    temp = 'temp'
    shm = 'shm'

    @property
    def key(self) -> str:
        return {'direct': 'd', 'file': 'f', 'temp': 't', 'shm': 's'}[self.value]


_unset = object()


class RunOnce(Generic[_T]):
    '''Call the wrapped function at most once per process. Safe to call from
    multiple threads. clear_cached() is the reset entry point used by tests.'''

    def __init__(self, f: Callable[[], _T]):
        self._override: object = _unset
        self._cached_result: object = _unset
        self._lock = Lock()
        update_wrapper(self, f)

    def __call__(self) -> _T:
        if self._override is not _unset:
            return cast(_T, self._override)
        if self._cached_result is _unset:
            with self._lock:
                if self._cached_result is _unset:
                    self._cached_result = self.__wrapped__()  # type: ignore
        return cast(_T, self._cached_result)

    def clear_cached(self) -> None:
        with self._lock:
            self._cached_result = _unset

    def set_override(self, val: _T) -> None:
        self._override = val

    def clear_override(self) -> None:
        self._override = _unset


def run_once(f: Callable[[], _T]) -> 'RunOnce[_T]':
    return RunOnce(f)
