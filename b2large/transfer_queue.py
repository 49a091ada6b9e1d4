"""Concurrent part transfers with retry budgets."""

from __future__ import annotations

import dataclasses
import logging
import math
import queue
import threading
import time
import types
import typing

from . import chunk, exception, slots


@dataclasses.dataclass(frozen=True)
class Progress:
    """Message that reports transfer progress."""

    percent: int
    """Integer percentage in the range [0, 100].
    """

    bytes_transferred: int
    """Bytes of completed parts plus bytes sent by in-flight parts.
    """

    bytes_total: int
    """Total number of bytes to transfer.
    """

    @classmethod
    def from_bytes(cls, bytes_transferred: int, bytes_total: int) -> "Progress":
        """Clamps the transferred bytes to the total and calculates the percentage.

        Args:
            bytes_transferred (int): Bytes transferred so far.
            bytes_total (int): Total number of bytes.

        Returns:
            Progress: The progress snapshot. An empty transfer is reported as complete.
        """
        bytes_transferred = max(0, min(bytes_transferred, bytes_total))
        if bytes_total == 0:
            return cls(percent=100, bytes_transferred=0, bytes_total=0)
        return cls(
            percent=int(math.floor(bytes_transferred / bytes_total * 100)),
            bytes_transferred=bytes_transferred,
            bytes_total=bytes_total,
        )


@dataclasses.dataclass
class PartResult:
    """Accumulates the hashes of completed parts."""

    hashes: dict[int, str] = dataclasses.field(default_factory=dict)
    """Maps part numbers to the SHA-1 acknowledged by the server.
    """

    bytes_transferred: int = 0
    """Total size of the completed parts.
    """

    error: typing.Optional[BaseException] = None
    """Terminal error, None if every part was transferred.
    """

    def ordered_hashes(self, last_part: int) -> list[str]:
        """Lists the part hashes in part order, as required to finish a large file.

        Args:
            last_part (int): Number of the last part.

        Raises:
            RuntimeError: if a part is missing, which indicates a bug since the queue only reports success once all the parts are complete.

        Returns:
            list[str]: The hashes of parts 1 to last_part.
        """
        missing = [
            part for part in range(1, last_part + 1) if part not in self.hashes
        ]
        if len(missing) > 0:
            raise RuntimeError(
                f"parts {missing} are missing after the transfer completed"
            )
        return [self.hashes[part] for part in range(1, last_part + 1)]


class CloseRequest:
    """Special queue item used to request a worker thread shutdown."""

    pass


Operation = typing.Callable[[slots.SlotPool, slots.UploadSlot, chunk.Chunk], str]
"""Transfers one chunk through a slot and returns the part's SHA-1."""


class TransferQueue:
    """Transfers chunks with one worker thread per slot.

    Workers pull chunks from a queue, claim a slot, and run the operation. A chunk that fails with
    :py:class:`b2large.exception.TransportRetryable` goes back to the queue, and its slot is
    refreshed before the next part uses it, until the part or the whole transfer exceeds its error budget.
    Any other exception stops the transfer.

    Args:
        pool (slots.SlotPool): Provisioned slots, its size sets the number of workers.
        operation (Operation): Transfers a single chunk.
        max_part_attempts (int): Maximum number of attempts per part.
        max_total_errors (int): Maximum number of retryable errors across all the parts.
    """

    def __init__(
        self,
        pool: slots.SlotPool,
        operation: Operation,
        max_part_attempts: int,
        max_total_errors: int,
    ):
        self.pool = pool
        self.operation = operation
        self.max_part_attempts = max_part_attempts
        self.max_total_errors = max_total_errors
        self.lock = threading.Lock()
        self.result = PartResult()
        self.total_errors = 0
        self.remaining = 0
        self.done = threading.Event()
        self.queue: queue.Queue[typing.Union[chunk.Chunk, CloseRequest]] = queue.Queue()

    def run(
        self,
        chunks: typing.Iterable[chunk.Chunk],
        completed: typing.Optional[dict[int, str]] = None,
    ) -> PartResult:
        """Transfers the chunks and blocks until they are all complete or the transfer fails.

        Args:
            chunks (typing.Iterable[chunk.Chunk]): The planned chunks.
            completed (typing.Optional[dict[int, str]], optional): Hashes of the parts already on the server. These chunks are counted as transferred and are not dispatched. Defaults to None.

        Returns:
            PartResult: Hashes of the completed parts. :py:attr:`PartResult.error` is set if the transfer failed or was canceled.
        """
        pending: list[chunk.Chunk] = []
        with self.lock:
            for item in chunks:
                if completed is not None and item.part in completed:
                    self.result.hashes[item.part] = completed[item.part]
                    self.result.bytes_transferred += item.size
                else:
                    pending.append(item)
            self.remaining = len(pending)
        logging.debug(
            f"{len(pending)} parts to transfer, {len(self.result.hashes)} already complete"
        )
        if len(pending) == 0:
            self.done.set()
        for item in pending:
            self.queue.put(item)
        workers = tuple(
            threading.Thread(target=self.target, daemon=True)
            for _ in range(0, len(self.pool))
        )
        for worker in workers:
            worker.start()
        self.done.wait()
        for _ in workers:
            self.queue.put(CloseRequest())
        for worker in workers:
            worker.join()
        return self.result

    def target(self):
        """Worker thread implementation."""
        while True:
            item = self.queue.get()
            if isinstance(item, CloseRequest):
                break
            if self.done.is_set():
                continue
            slot = self.pool.acquire(cancel=self.done.is_set)
            if slot is None:
                continue
            try:
                if self.done.is_set():
                    continue
                self.pool.refresh(slot)
                logging.debug(
                    f"transfer part {item.part} (attempt {item.attempts}) with slot {slot.index}"
                )
                hash = self.operation(self.pool, slot, item)
            except exception.TransportRetryable as error:
                self.pool.invalidate(slot)
                self.retry(item, error)
            except Exception as error:
                self.fail(error)
            else:
                self.complete(item, hash)
            finally:
                self.pool.release(slot)

    def complete(self, item: chunk.Chunk, hash: str) -> None:
        with self.lock:
            if self.result.error is not None:
                return
            self.result.hashes[item.part] = hash
            self.result.bytes_transferred += item.size
            self.remaining -= 1
            finished = self.remaining == 0
        logging.debug(f"part {item.part} complete")
        if finished:
            self.done.set()

    def retry(self, item: chunk.Chunk, error: exception.TransportRetryable) -> None:
        with self.lock:
            if self.result.error is not None:
                return
            item.attempts += 1
            self.total_errors += 1
            exhausted = (
                item.attempts > self.max_part_attempts
                or self.total_errors > self.max_total_errors
            )
            total_errors = self.total_errors
        logging.warning(
            f"part {item.part} failed ({error}), {total_errors} errors in total"
        )
        if exhausted:
            failure = exception.RetriesExhausted(
                part=item.part, attempts=item.attempts - 1, total_errors=total_errors
            )
            failure.__cause__ = error
            self.fail(failure)
        else:
            self.queue.put(item)

    def fail(self, error: BaseException) -> None:
        """Stops the transfer with a terminal error.

        Only the first error is kept. Queued chunks are abandoned and waiting workers are woken up.
        """
        with self.lock:
            if self.result.error is not None:
                return
            self.result.error = error
        logging.debug(f"transfer failed with {error!r}")
        self.done.set()
        self.pool.interrupt()

    def cancel(self) -> None:
        """Stops the transfer and aborts the requests in flight."""
        self.fail(exception.TransferCanceled())
        self.pool.abort_all()

    def progress(self, bytes_total: int) -> Progress:
        """Calculates the bytes transferred so far, including in-flight parts.

        Args:
            bytes_total (int): Total number of bytes of the transfer.

        Returns:
            Progress: The progress snapshot.
        """
        with self.lock:
            bytes_transferred = self.result.bytes_transferred
        return Progress.from_bytes(
            bytes_transferred + self.pool.bytes_in_flight(), bytes_total
        )


class ProgressReporter:
    """Calls a function with the transfer progress at regular intervals.

    The function is called one last time when the reporter closes.

    Args:
        interval (float): Period in seconds.
        poll (typing.Callable[[], Progress]): Returns the current progress.
        callback (typing.Callable[[Progress], None]): Receives progress snapshots.
    """

    def __init__(
        self,
        interval: float,
        poll: typing.Callable[[], Progress],
        callback: typing.Callable[[Progress], None],
    ):
        self.interval = interval
        self.poll = poll
        self.callback = callback
        self.stop = threading.Event()
        self.worker = threading.Thread(target=self.target, daemon=True)
        self.worker.start()

    def target(self):
        """Worker thread implementation."""
        next_dispatch = time.monotonic()
        while not self.stop.is_set():
            self.callback(self.poll())
            next_dispatch += self.interval
            now = time.monotonic()
            if next_dispatch > now:
                self.stop.wait(next_dispatch - now)
        self.callback(self.poll())

    def close(self):
        self.stop.set()
        self.worker.join()

    def __enter__(self) -> "ProgressReporter":
        return self

    def __exit__(
        self,
        type: typing.Optional[typing.Type[BaseException]],
        value: typing.Optional[BaseException],
        traceback: typing.Optional[types.TracebackType],
    ):
        self.close()
