"""Splitting an Annex B H.264 byte stream into NAL units."""

from __future__ import annotations

import os
from collections.abc import Iterator

_START_CODE_3 = b"\x00\x00\x01"
_START_CODE_4 = b"\x00\x00\x00\x01"


class H264FormatError(ValueError):
    """Raised when the stream does not begin with a start code."""


def is_start_code(buffer: bytes, code_length: int) -> bool:
    """Tell whether ``buffer`` begins with a start code of 3 or 4 bytes."""
    if code_length == 3:
        return bytes(buffer[:3]) == _START_CODE_3
    if code_length == 4:
        return bytes(buffer[:4]) == _START_CODE_4
    raise ValueError(f"start code length must be 3 or 4, not {code_length}")


def find_next_start_code(buffer: bytes, start: int) -> int | None:
    """Return the index of the first start code at or after ``start``, or None."""
    view = memoryview(buffer)
    remaining = len(buffer) - start
    last = start + max(remaining - 3, 0)
    for pos in range(start, last):
        if is_start_code(view[pos:], 3) or is_start_code(view[pos:], 4):
            return pos
    return last if is_start_code(view[last:], 3) else None


def start_code_length(frame: bytes) -> int:
    """Length of the start code that opens ``frame``: 4 or 3.

    Raises H264FormatError when the frame does not open with a start code.
    """
    for length in (4, 3):
        if is_start_code(frame, length):
            return length
    raise H264FormatError("frame does not start with a start code")


class H264Parser:
    """Walks a byte stream one NAL unit (with its start code) at a time.

    A unit is only produced once the start code that follows it is seen,
    so the final unit of a stream is never returned.
    """

    def __init__(self, data: bytes) -> None:
        self._data = bytes(data)
        self._pos = 0

    @classmethod
    def from_file(cls, path: str | os.PathLike[str]) -> H264Parser:
        """Read a whole ``.h264`` file into a parser."""
        with open(path, "rb") as stream:
            return cls(stream.read())

    def next_frame(self) -> bytes | None:
        """Return the next unit including its start code, or None at the end."""
        remaining = len(self._data) - self._pos
        if remaining == 0:
            return None
        view = memoryview(self._data)[self._pos:]
        if not (is_start_code(view, 4) or is_start_code(view, 3)):
            raise H264FormatError("H264 stream does not start with a start code")
        next_start = find_next_start_code(self._data, self._pos + 3)
        if next_start is None:
            return None
        frame = self._data[self._pos:next_start]
        self._pos = next_start
        return frame

    def __iter__(self) -> Iterator[bytes]:
        while (frame := self.next_frame()) is not None:
            yield frame