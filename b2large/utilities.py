"""Hashing, data loading and number formatting functions."""

from __future__ import annotations

import hashlib
import json
import math
import os
import pathlib
import pkgutil
import threading
import typing

import jsonschema_rs

from . import constants, exception


def load_schema(name: str) -> typing.Any:
    """Reads and parses a JSON schema bundled with b2large.

    Args:
        name (str): Name of the schema.

    Returns:
        typing.Any: JSON schema validator.
    """
    data = pkgutil.get_data("b2large", name)
    assert data is not None
    return jsonschema_rs.validator_for(json.loads(data.decode()))


def new_hash() -> "hashlib._Hash":
    """Creates a new byte hasher.

    Returns:
        hashlib._Hash: SHA-1 hasher, the only algorithm accepted by B2 for part hashes.
    """
    return hashlib.sha1()


def read_range(
    input: typing.BinaryIO, size: int, chunk_size: int
) -> typing.Iterator[bytes]:
    """Yields at most size bytes from the current position of a binary stream.

    Args:
        input (typing.BinaryIO): Stream positioned at the first byte to read.
        size (int): Number of bytes to read.
        chunk_size (int): Maximum number of bytes per yielded chunk.

    Returns:
        typing.Iterator[bytes]: Chunks whose total length is size, or less if the stream ends early.
    """
    left = size
    while left > 0:
        data = input.read(min(chunk_size, left))
        if len(data) == 0:
            break
        left -= len(data)
        yield data


def hash_range(
    path: typing.Union[str, os.PathLike],
    start: int,
    end: int,
    chunk_size: int = constants.CHUNK_SIZE,
) -> str:
    """Calculates the SHA-1 of a file's byte range.

    Args:
        path (typing.Union[str, os.PathLike]): Path of the file to hash.
        start (int): Offset of the first byte.
        end (int): Offset of the last byte (inclusive).
        chunk_size (int, optional): Read buffer size in bytes. Defaults to :py:attr:`b2large.constants.CHUNK_SIZE`.

    Raises:
        OSError: if the file is shorter than end + 1 bytes.

    Returns:
        str: Hexadecimal SHA-1 digest.
    """
    size = end - start + 1
    read = 0
    hash_object = new_hash()
    with open(path, "rb") as input:
        input.seek(start)
        for chunk in read_range(input, size, chunk_size):
            read += len(chunk)
            hash_object.update(chunk)
    if read != size:
        raise OSError(
            f"{path} ended after {read} bytes while hashing bytes {start}-{end}"
        )
    return hash_object.hexdigest()


class RangeReader:
    """File-like request body that streams a byte range and counts sent bytes.

    The reader raises :py:class:`b2large.exception.TransferCanceled` from :py:meth:`read`
    once :py:meth:`abort` has been called, which interrupts the request that consumes it.

    Args:
        path (pathlib.Path): Path of the file to read.
        start (int): Offset of the first byte.
        end (int): Offset of the last byte (inclusive).
        on_read (typing.Optional[typing.Callable[[int], None]]): Called with the number of bytes after each read.
    """

    def __init__(
        self,
        path: pathlib.Path,
        start: int,
        end: int,
        on_read: typing.Optional[typing.Callable[[int], None]] = None,
    ):
        self.path = path
        self.start = start
        self.end = end
        self.on_read = on_read
        self.left = end - start + 1
        self.aborted = threading.Event()
        self.stream: typing.Optional[typing.BinaryIO] = None

    def __len__(self) -> int:
        return self.end - self.start + 1

    def read(self, size: int = -1) -> bytes:
        if self.aborted.is_set():
            raise exception.TransferCanceled()
        if self.stream is None:
            self.stream = open(self.path, "rb")
            self.stream.seek(self.start)
        if self.left <= 0:
            return b""
        if size is None or size < 0 or size > self.left:
            size = self.left
        data = self.stream.read(min(size, constants.CHUNK_SIZE))
        self.left -= len(data)
        if self.on_read is not None and len(data) > 0:
            self.on_read(len(data))
        return data

    def abort(self) -> None:
        self.aborted.set()

    def close(self) -> None:
        if self.stream is not None:
            self.stream.close()
            self.stream = None

    def __enter__(self) -> "RangeReader":
        return self

    def __exit__(self, *_):
        self.close()


def is_finite_number(value: typing.Any) -> bool:
    """Checks that value is an int or a float, but not a bool, NaN or infinity."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def duration_to_string(duration: float) -> str:
    """Generates a human-readable representation of a duration.

    Args:
        duration (float): Positive time delta in seconds.

    Returns:
        str: Human-redable representation.
    """
    duration = round(duration)
    if duration < 180:
        return f'{"{:.0f}".format(duration)} s'
    if duration < 10800:
        return f'{"{:.0f}".format(math.floor(duration / 60))} min'
    if duration < 259200:
        return f'{"{:.0f}".format(math.floor(duration / 3600))} h'
    return f'{"{:.0f}".format(math.floor(duration / 86400))} days'


def size_to_string(size: int) -> str:
    """Generates a human-readable representation of a size.

    Args:
        size (float): Resource size in bytes.

    Returns:
        str: Human-redable representation.
    """
    if size < 1000:
        return f'{"{:.0f}".format(size)} B'
    if size < 1000000:
        return f'{"{:.2f}".format(size / 1000)} kB'
    if size < 1000000000:
        return f'{"{:.2f}".format(size / 1000000)} MB'
    if size < 1000000000000:
        return f'{"{:.2f}".format(size / 1000000000)} GB'
    return f'{"{:.2f}".format(size / 1000000000000)} TB'


def speed_to_string(speed: float) -> str:
    """Generates a human-readable representation of a speed.

    Args:
        speed (float): Upload or copy speed in bytes per second.

    Returns:
        str: Human-redable representation.
    """
    return f"{size_to_string(round(speed))}/s"


def parse_size(size: str) -> int:
    """Parses a size with an optional K, M, G or T suffix (powers of 1000).

    Args:
        size (str): For instance ``"100M"`` or ``"5000000"``.

    Returns:
        int: Size in bytes.
    """
    multipliers = {"K": 1000, "M": 1000**2, "G": 1000**3, "T": 1000**4}
    if len(size) > 0 and size[-1].upper() in multipliers:
        return round(float(size[:-1]) * multipliers[size[-1].upper()])
    return round(float(size))
