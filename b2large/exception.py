from __future__ import annotations

import typing

if typing.TYPE_CHECKING:
    from . import chunk


class TransferError(Exception):
    """Base class of the errors raised by b2large."""


class InvalidSize(TransferError, ValueError):
    """Raised if the total size of a transfer is not a finite, non-negative number.

    Args:
        message (str): Description of the problem.
    """


class InvalidPartSize(TransferError, ValueError):
    """Raised if the requested part size is not a finite number greater than zero.

    Args:
        part_size (typing.Any): The rejected value.
    """

    def __init__(self, part_size: typing.Any):
        super().__init__(
            f"part size must be a finite number greater than zero (got {part_size!r})"
        )
        self.part_size = part_size


class PartSizeTooSmall(TransferError, ValueError):
    """Raised if the requested part size is below the service floor.

    Args:
        part_size (int): The requested part size in bytes.
        minimum_part_size (int): The smallest part size accepted by the service.
    """

    def __init__(self, part_size: int, minimum_part_size: int):
        super().__init__(
            f"part size can not be lower than {minimum_part_size} bytes (got {part_size})"
        )
        self.part_size = part_size
        self.minimum_part_size = minimum_part_size


class PartSizeOverflow(TransferError):
    """Raised if a planned chunk does not fit the plan's constraints.

    This usually means that the parts recorded by the server for a resumed upload
    are inconsistent with the requested part size.

    Args:
        chunk (chunk.Chunk): The offending chunk, attached for diagnostics.
        limit (int): The limit that the chunk exceeds.
        reason (str): Description of the limit.
    """

    def __init__(self, chunk: "chunk.Chunk", limit: int, reason: str):
        super().__init__(
            f"part {chunk.part} (bytes {chunk.start}-{chunk.end}, size {chunk.size}) overflows {reason} ({limit})"
        )
        self.chunk = chunk
        self.limit = limit


class TransportError(TransferError):
    """Raised if a request fails.

    Args:
        message (str): Error message, usually read from the response body.
        status (typing.Optional[int]): HTTP status, None if the request did not reach the server.
        code (typing.Optional[str]): B2 error code (for instance ``"bad_request"``).
    """

    def __init__(
        self,
        message: str,
        status: typing.Optional[int] = None,
        code: typing.Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.code = code


class TransportRetryable(TransportError):
    """Transient failure (connection reset, timeout, HTTP 408 or 5xx)."""


class TransportFatal(TransportError):
    """Non-transient failure (any other status, including permission errors)."""


class NotAuthorized(TransportFatal):
    """Raised if an API call is made before :py:meth:`b2large.api.B2Api.authorize`."""

    def __init__(self):
        super().__init__(
            "not yet authorised, call `authorize` before running any functions"
        )


class TransferCanceled(TransferError):
    """Raised if the caller canceled the transfer."""

    def __init__(self):
        super().__init__("B2 upload cancelled")


class ResumeSessionInvalid(TransferError):
    """Raised if the large file to resume cannot be found or read.

    Args:
        session_id (str): The large file ID provided by the caller.
        reason (str): Description of the failure.
    """

    def __init__(self, session_id: str, reason: str):
        super().__init__(f'cannot resume large file "{session_id}" ({reason})')
        self.session_id = session_id


class RetriesExhausted(TransferError):
    """Raised if a part or the whole transfer used up its error budget.

    The last retryable error is attached as ``__cause__``.

    Args:
        part (int): Number of the part whose failure exhausted the budget.
        attempts (int): Attempts made for this part.
        total_errors (int): Errors accumulated by the transfer.
    """

    def __init__(self, part: int, attempts: int, total_errors: int):
        super().__init__(
            f"exceeded max retry attempts for upload (part {part}, {attempts} attempts, {total_errors} errors in total)"
        )
        self.part = part
        self.attempts = attempts
        self.total_errors = total_errors
