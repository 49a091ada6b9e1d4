"""Splits a transfer into numbered, contiguous byte ranges.

This module does not perform I/O. :py:func:`build_plan` is deterministic, which makes it safe to call again when a resumed upload is retried.
"""

from __future__ import annotations

import dataclasses
import math
import typing

from . import constants, exception, utilities


@dataclasses.dataclass
class Chunk:
    """A planned part of a large file."""

    part: int
    """Part number, starts at 1.
    """

    start: int
    """Offset of the part's first byte in the file.
    """

    end: int
    """Offset of the part's last byte in the file (inclusive).
    """

    size: int
    """Number of bytes in the part, always ``end - start + 1``.
    """

    attempts: int = 1
    """Number of the current attempt, incremented whenever the part is requeued.
    """

    def range_header(self) -> str:
        """Formats the chunk as an HTTP byte range.

        Returns:
            str: For instance ``"bytes=0-99"``.
        """
        return f"bytes={self.start}-{self.end}"


@dataclasses.dataclass(frozen=True)
class ResumeContext:
    """Parts recorded by the server for an unfinished large file."""

    uploaded_parts: dict[int, int]
    """Maps part numbers to their recorded size in bytes.
    """

    last_consecutive_part: int
    """Highest part number n such that parts 1 to n are all uploaded (0 if part 1 is missing).
    """

    last_uploaded_part: int
    """Highest uploaded part number, may be larger than :py:attr:`last_consecutive_part` if there are gaps.
    """


@dataclasses.dataclass
class Plan:
    """Output of :py:func:`build_plan`."""

    chunks: list[Chunk]
    """Chunks sorted by part number.
    """

    last_part: int
    """Number of the last chunk, 0 if there are no chunks.
    """

    part_size: int
    """Effective part size, larger than the requested one if the file would otherwise need too many parts.
    """

    missing_part_size: int
    """Size used for gap parts when resuming, 0 if there are no gap parts.
    """


def effective_part_size(size: int, part_size: int) -> int:
    """Raises the part size so that size fits in :py:attr:`b2large.constants.MAXIMUM_PARTS` parts.

    Args:
        size (int): Total number of bytes.
        part_size (int): Requested part size.

    Returns:
        int: part_size, or ``ceil(size / MAXIMUM_PARTS)`` if that is larger.
    """
    part_size = int(math.ceil(part_size))
    if math.ceil(size / part_size) > constants.MAXIMUM_PARTS:
        return int(math.ceil(size / constants.MAXIMUM_PARTS))
    return part_size


def build_plan(
    size: int,
    part_size: int,
    resume_context: typing.Optional[ResumeContext] = None,
) -> Plan:
    """Calculates the chunks of a large file.

    Parts up to :py:attr:`ResumeContext.last_consecutive_part` keep the size recorded by the server.
    Gap parts (after the last consecutive part, up to the last uploaded part) share a uniform size
    that spreads the bytes left over the gap, capped at the part size.
    The remaining parts use the part size and the last one is truncated to the remainder.

    Args:
        size (int): Total number of bytes.
        part_size (int): Requested part size in bytes.
        resume_context (typing.Optional[ResumeContext], optional): Parts already uploaded. Defaults to None.

    Raises:
        exception.InvalidSize: if size is not a finite number, is negative or has a fractional part.
        exception.InvalidPartSize: if part_size is not a finite number greater than zero.
        exception.PartSizeOverflow: if a chunk is larger than the part size, if the resume context is inconsistent with the plan, or if the plan has too many parts.

    Returns:
        Plan: The chunks and the effective sizes.
    """
    if not utilities.is_finite_number(size):
        raise exception.InvalidSize(f"file size must be a finite number (got {size!r})")
    if size < 0:
        raise exception.InvalidSize(f"file size must not be negative (got {size!r})")
    if size != int(size):
        raise exception.InvalidSize(
            f"file size must be a whole number of bytes (got {size!r})"
        )
    if not utilities.is_finite_number(part_size) or part_size <= 0:
        raise exception.InvalidPartSize(part_size)
    size = int(size)
    part_size = effective_part_size(size, part_size)
    if resume_context is None:
        resume_context = ResumeContext(
            uploaded_parts={}, last_consecutive_part=0, last_uploaded_part=0
        )
    if size == 0:
        return Plan(chunks=[], last_part=0, part_size=part_size, missing_part_size=0)

    chunks: list[Chunk] = []
    missing_part_size = 0
    start = 0
    part = 1
    while start < size:
        if part <= resume_context.last_consecutive_part:
            chunk_size = resume_context.uploaded_parts[part]
        elif part <= resume_context.last_uploaded_part:
            if missing_part_size == 0:
                missing_part_size = min(
                    part_size,
                    int(
                        math.ceil(
                            (size - start)
                            / (
                                resume_context.last_uploaded_part
                                - resume_context.last_consecutive_part
                            )
                        )
                    ),
                )
            chunk_size = missing_part_size
        else:
            chunk_size = part_size
        chunk_size = min(chunk_size, size - start)
        chunk = Chunk(
            part=part,
            start=start,
            end=start + chunk_size - 1,
            size=chunk_size,
        )
        if chunk.size > part_size:
            raise exception.PartSizeOverflow(chunk, part_size, "the part size")
        if chunk.size <= 0:
            raise exception.PartSizeOverflow(chunk, 0, "the minimum part size")
        if (
            part in resume_context.uploaded_parts
            and resume_context.uploaded_parts[part] != chunk.size
        ):
            raise exception.PartSizeOverflow(
                chunk,
                resume_context.uploaded_parts[part],
                "the size recorded by the server",
            )
        if part > constants.MAXIMUM_PARTS:
            raise exception.PartSizeOverflow(
                chunk, constants.MAXIMUM_PARTS, "the maximum number of parts"
            )
        chunks.append(chunk)
        start += chunk_size
        part += 1
    last_part = part - 1
    if resume_context.last_uploaded_part > last_part:
        raise exception.PartSizeOverflow(
            chunks[-1],
            resume_context.last_uploaded_part,
            "the last part recorded by the server",
        )
    return Plan(
        chunks=chunks,
        last_part=last_part,
        part_size=part_size,
        missing_part_size=missing_part_size,
    )
