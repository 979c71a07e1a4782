#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>


class TermpixError(Exception):

    subsystem = 'termpix'

    def __init__(self, message: str, subsystem: str = ''):
        super().__init__(message)
        if subsystem:
            self.subsystem = subsystem

    def __str__(self) -> str:
        return f'[{self.subsystem}] {super().__str__()}'


class ConfigurationError(TermpixError, ValueError):
    subsystem = 'config'


class DecodeError(TermpixError, ValueError):
    subsystem = 'decode'

    def __init__(self, path: str, message: str):
        super().__init__(f'Failed to decode image: {path} with error: {message}')
        self.path = path


class QueryError(TermpixError):
    subsystem = 'query'


class EncodeError(TermpixError):
    subsystem = 'encode'

    def __init__(self, message: str, protocol: str = ''):
        super().__init__(message, f'encode:{protocol}' if protocol else '')
        self.protocol = protocol


class OutputError(TermpixError, OSError):
    subsystem = 'output'


class ClearError(OutputError):
    subsystem = 'clear'
