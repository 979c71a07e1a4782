#!/usr/bin/env python
# License: GPL v3 Copyright: 2024, Kovid Goyal <kovid at kovidgoyal.net>

import concurrent.futures
import zlib
from base64 import standard_b64decode, standard_b64encode
from threading import Lock

from .constants import BASE64_CHUNK_SIZE, DEFAULT_ENCODING_WORKERS
from .errors import ConfigurationError, EncodeError

executor_lock = Lock()
encoding_executor: concurrent.futures.ThreadPoolExecutor | None = None


def get_executor() -> concurrent.futures.ThreadPoolExecutor:
    global encoding_executor
    with executor_lock:
        if encoding_executor is None:
            encoding_executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=DEFAULT_ENCODING_WORKERS, thread_name_prefix='termpix-b64')
        return encoding_executor


def raw_piece_size(chunk_size: int) -> int:
    # A multiple of three so that every piece but the last encodes without padding
    # and the encoded pieces concatenate into the encoding of the whole payload
    if chunk_size < 4:
        raise ConfigurationError(f'Base64 chunk size must be at least 4, not {chunk_size}')
    return chunk_size // 4 * 3


def b64_chunks(data: bytes | memoryview, chunk_size: int = BASE64_CHUNK_SIZE) -> list[str]:
    ' Encode data and split it into ordered base64 strings of at most chunk_size characters '
    if not data:
        return []
    if len(data) > 2 * chunk_size:
        return parallel_b64_chunks(data, chunk_size)
    step = raw_piece_size(chunk_size) // 3 * 4
    encoded = standard_b64encode(data).decode('ascii')
    return [encoded[i:i + step] for i in range(0, len(encoded), step)]


def _encode_piece(piece: bytes | memoryview) -> str:
    return standard_b64encode(piece).decode('ascii')


def parallel_b64_chunks(data: bytes | memoryview, chunk_size: int = BASE64_CHUNK_SIZE) -> list[str]:
    step = raw_piece_size(chunk_size)
    mv = memoryview(data)
    pieces = [mv[i:i + step] for i in range(0, len(mv), step)]
    # map() yields results in submission order
    return list(get_executor().map(_encode_piece, pieces))


def b64_decode_chunks(chunks: list[str]) -> bytes:
    return standard_b64decode(''.join(chunks))


def zlib_compress(data: bytes | memoryview, level: int = zlib.Z_DEFAULT_COMPRESSION) -> bytes:
    try:
        return zlib.compress(data, level)
    except zlib.error as err:
        raise EncodeError(f'Failed to compress payload: {err}', 'kitty') from err


def is_zlib_stream(data: bytes) -> bool:
    try:
        zlib.decompress(data)
    except zlib.error:
        return False
    return True
