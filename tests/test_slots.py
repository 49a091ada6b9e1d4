"""Test the upload slot pool"""

import threading

import pytest

from b2large import exception, slots, utilities


class CountingProvider:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return slots.UploadDestination(url=f"https://upload/{self.calls}", token=f"token-{self.calls}")


class TestSlotPool:
    """Slot ownership and refresh"""

    def test_provisions_one_destination_per_slot(self):
        provider = CountingProvider()
        pool = slots.SlotPool(provider=provider, capacity=3)
        assert len(pool) == 3
        assert provider.calls == 3
        assert len({slot.destination.url for slot in pool.slots}) == 3

    def test_slots_are_exclusive(self):
        """A slot is never handed out twice"""
        pool = slots.SlotPool(provider=CountingProvider(), capacity=2)
        first = pool.try_acquire()
        second = pool.try_acquire()
        assert first is not None and second is not None
        assert first.index != second.index
        assert pool.try_acquire() is None
        pool.release(first)
        third = pool.try_acquire()
        assert third is first

    def test_acquire_waits_for_release(self):
        """A blocked worker gets the slot released by another worker"""
        pool = slots.SlotPool(provider=CountingProvider(), capacity=1)
        owned = pool.try_acquire()
        acquired = []
        worker = threading.Thread(target=lambda: acquired.append(pool.acquire()))
        worker.start()
        worker.join(0.1)
        assert acquired == []
        pool.release(owned)
        worker.join(5.0)
        assert acquired == [owned]

    def test_interrupt_wakes_waiting_workers(self):
        pool = slots.SlotPool(provider=CountingProvider(), capacity=1)
        pool.try_acquire()
        acquired = []
        worker = threading.Thread(target=lambda: acquired.append(pool.acquire()))
        worker.start()
        pool.interrupt()
        worker.join(5.0)
        assert acquired == [None]
        assert pool.acquire() is None

    def test_acquire_checks_cancel(self):
        pool = slots.SlotPool(provider=CountingProvider(), capacity=1)
        assert pool.acquire(cancel=lambda: True) is None

    def test_refresh_replaces_stale_destinations_only(self):
        """The provider is called again only for invalidated slots"""
        provider = CountingProvider()
        pool = slots.SlotPool(provider=provider, capacity=1)
        slot = pool.try_acquire()
        original = slot.destination
        pool.refresh(slot)
        assert provider.calls == 1
        assert slot.destination == original
        pool.invalidate(slot)
        assert slot.stale
        pool.refresh(slot)
        assert provider.calls == 2
        assert not slot.stale
        assert slot.destination != original

    def test_bytes_in_flight(self):
        pool = slots.SlotPool(provider=CountingProvider(), capacity=2)
        first = pool.try_acquire()
        second = pool.try_acquire()
        pool.report_sent(first, 10)
        pool.report_sent(second, 5)
        pool.report_sent(first, 3)
        assert pool.bytes_in_flight() == 18
        pool.release(first)
        assert pool.bytes_in_flight() == 5

    def test_abort_all(self, make_file):
        """Bodies attached to busy slots raise on the next read"""
        path = make_file(100)
        pool = slots.SlotPool(provider=CountingProvider(), capacity=1)
        slot = pool.try_acquire()
        with utilities.RangeReader(path, 0, 99) as body:
            pool.attach_body(slot, body)
            assert len(body.read(10)) == 10
            pool.abort_all()
            with pytest.raises(exception.TransferCanceled):
                body.read(10)

    def test_attach_after_interrupt_aborts(self, make_file):
        """A body attached after the pool stopped is aborted immediately"""
        path = make_file(100)
        pool = slots.SlotPool(provider=CountingProvider(), capacity=1)
        slot = pool.try_acquire()
        pool.interrupt()
        with utilities.RangeReader(path, 0, 99) as body:
            pool.attach_body(slot, body)
            with pytest.raises(exception.TransferCanceled):
                body.read()
