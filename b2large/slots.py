"""Fixed pool of upload destinations shared by the workers of one transfer."""

from __future__ import annotations

import dataclasses
import logging
import threading
import typing

from . import utilities


@dataclasses.dataclass(frozen=True)
class UploadDestination:
    """Upload URL and authorization token returned by b2_get_upload_part_url."""

    url: str
    """Upload URL for one part at a time.
    """

    token: str
    """Authorization token that must be sent with the parts uploaded to :py:attr:`url`.
    """


@dataclasses.dataclass
class UploadSlot:
    """One reusable upload destination.

    A slot serves at most one part transfer at a time.
    """

    index: int
    """Position of the slot in its pool.
    """

    destination: typing.Optional[UploadDestination]
    """Where parts are sent, None for server-side copies which only need a concurrency token.
    """

    in_use: bool = False
    """Whether a worker currently owns the slot.
    """

    stale: bool = False
    """Whether the destination must be replaced before the next part.
    """

    bytes_sent: int = 0
    """Bytes of the current part sent so far.
    """

    body: typing.Optional[utilities.RangeReader] = None
    """Request body of the current part, used to abort the request.
    """


class SlotPool:
    """Hands out upload slots to workers.

    Every mutation of the slots happens under a single lock, so two workers can never claim the same slot.

    Args:
        provider (typing.Callable[[], typing.Optional[UploadDestination]]): Called once per slot to fetch a destination, and again to replace stale destinations.
        capacity (int): Number of slots.
    """

    def __init__(
        self,
        provider: typing.Callable[[], typing.Optional[UploadDestination]],
        capacity: int,
    ):
        assert capacity > 0
        self.provider = provider
        self.condition = threading.Condition()
        self.interrupted = False
        self.slots: tuple[UploadSlot, ...] = tuple(
            UploadSlot(index=index, destination=provider())
            for index in range(0, capacity)
        )
        logging.debug(f"provisioned {capacity} slots")

    def __len__(self) -> int:
        return len(self.slots)

    def try_acquire(self) -> typing.Optional[UploadSlot]:
        """Claims a free slot without blocking.

        Returns:
            typing.Optional[UploadSlot]: A slot marked in-use, or None if all the slots are busy.
        """
        with self.condition:
            return self._claim()

    def acquire(
        self, cancel: typing.Callable[[], bool] = lambda: False
    ) -> typing.Optional[UploadSlot]:
        """Waits for a free slot.

        Args:
            cancel (typing.Callable[[], bool], optional): Checked whenever the pool changes, the function returns None as soon as it is true. Defaults to lambda: False.

        Returns:
            typing.Optional[UploadSlot]: A slot marked in-use, or None if the wait was canceled or the pool interrupted.
        """
        with self.condition:
            while True:
                if self.interrupted or cancel():
                    return None
                slot = self._claim()
                if slot is not None:
                    return slot
                self.condition.wait()

    def _claim(self) -> typing.Optional[UploadSlot]:
        for slot in self.slots:
            if not slot.in_use:
                slot.in_use = True
                slot.bytes_sent = 0
                return slot
        return None

    def release(self, slot: UploadSlot) -> None:
        """Marks the slot free and wakes a waiting worker."""
        with self.condition:
            slot.in_use = False
            slot.bytes_sent = 0
            slot.body = None
            self.condition.notify()

    def invalidate(self, slot: UploadSlot) -> None:
        """Flags the slot's destination as unusable (expired token or broken connection)."""
        with self.condition:
            slot.stale = True

    def refresh(self, slot: UploadSlot) -> None:
        """Replaces a stale destination with a new one from the provider.

        The caller must own the slot. The provider is called outside the lock since it usually sends a request.
        """
        if not slot.stale:
            return
        logging.debug(f"refresh slot {slot.index}")
        destination = self.provider()
        with self.condition:
            slot.destination = destination
            slot.stale = False

    def report_sent(self, slot: UploadSlot, size: int) -> None:
        with self.condition:
            slot.bytes_sent += size

    def attach_body(self, slot: UploadSlot, body: utilities.RangeReader) -> None:
        with self.condition:
            slot.body = body
            if self.interrupted:
                body.abort()

    def bytes_in_flight(self) -> int:
        """Sums the bytes sent by the parts currently being transferred."""
        with self.condition:
            return sum(slot.bytes_sent for slot in self.slots if slot.in_use)

    def abort_all(self) -> None:
        """Aborts the request bodies of all the slots in use."""
        with self.condition:
            for slot in self.slots:
                if slot.in_use and slot.body is not None:
                    slot.body.abort()

    def interrupt(self) -> None:
        """Wakes all the workers waiting in :py:meth:`acquire`, which then return None."""
        with self.condition:
            self.interrupted = True
            self.condition.notify_all()
