"""User-facing API to upload or copy large files."""

from __future__ import annotations

import contextlib
import dataclasses
import enum
import logging
import os
import pathlib
import threading
import typing

from . import (api, chunk, constants, exception, reconcile, slots,
               transfer_queue, utilities)


class State(enum.Enum):
    """Lifecycle of a transfer."""

    PLANNING = "planning"
    RESUMING = "resuming"
    SESSION_STARTING = "session_starting"
    SLOTS_PROVISIONING = "slots_provisioning"
    TRANSFERRING = "transferring"
    FINALIZING = "finalizing"
    DONE = "done"
    ERRORING = "erroring"
    CANCELING = "canceling"
    CANCELED = "canceled"
    FAILED = "failed"


TERMINAL_STATES = frozenset((State.DONE, State.CANCELED, State.FAILED))


@dataclasses.dataclass(frozen=True)
class TransferSettings:
    """Tuning parameters shared by all the transfers of a client."""

    concurrency: int = constants.DEFAULT_CONCURRENCY
    """Number of upload slots and worker threads.
    """

    max_part_attempts: int = constants.DEFAULT_MAX_PART_ATTEMPTS
    """Maximum number of attempts per part.
    """

    max_total_errors: int = constants.DEFAULT_MAX_TOTAL_ERRORS
    """Maximum number of retryable errors across all the parts.
    """

    progress_interval: float = constants.DEFAULT_PROGRESS_INTERVAL
    """Period of the progress callback in seconds.
    """


@dataclasses.dataclass
class Descriptor:
    """Destination and resume options common to uploads and copies."""

    bucket_id: str
    """Bucket of the new file.
    """

    file_name: str
    """Name of the new file.
    """

    content_type: str = "b2/x-auto"
    """MIME type, ``b2/x-auto`` lets the server guess it from the file name.
    """

    part_size: typing.Optional[int] = None
    """Requested part size, defaults to the account's recommended part size.
    """

    file_info: dict[str, str] = dataclasses.field(default_factory=dict)
    """Custom metadata stored with the file.
    """

    resume_session_id: typing.Optional[str] = None
    """ID of an unfinished large file to resume.
    """

    fresh_on_invalid_resume: bool = False
    """Whether to start a new large file if :py:attr:`resume_session_id` cannot be resumed (the transfer fails otherwise).
    """


@dataclasses.dataclass
class UploadDescriptor(Descriptor):
    """Upload of a local file."""

    path: pathlib.Path = pathlib.Path()
    """Local file to upload.
    """

    sha1: typing.Optional[str] = None
    """SHA-1 of the whole file, stored as ``large_file_sha1``.
    """

    hash_file: bool = True
    """Whether to calculate :py:attr:`sha1` before starting a new large file when it is not provided.
    """


@dataclasses.dataclass
class CopyDescriptor(Descriptor):
    """Server-side copy of an existing file."""

    source_file_id: str = ""
    """ID of the file to copy.
    """

    size: int = 0
    """Size of the source file in bytes.
    """


class Transfer:
    """Controls one large file transfer.

    Input validation runs in the constructor, which is the only place where errors are raised to the caller.
    Everything else runs on a background thread started by :py:meth:`start`, and its outcome is reported by
    :py:meth:`result`, :py:attr:`error` and the on_done callback.

    Args:
        session_api (api.SessionApi): Remote large file lifecycle.
        part_api (api.PartTransferApi): Remote part transfer.
        descriptor (typing.Union[UploadDescriptor, CopyDescriptor]): What to transfer.
        settings (TransferSettings, optional): Concurrency and error budgets. Defaults to TransferSettings().
        on_progress (typing.Optional[typing.Callable[[transfer_queue.Progress], None]], optional): Called every :py:attr:`TransferSettings.progress_interval` seconds while parts are transferred. Defaults to None.
        on_done (typing.Optional[typing.Callable[["Transfer"], None]], optional): Called once the transfer reaches a terminal state. Defaults to None.
        hash_range (typing.Callable[[pathlib.Path, int, int], str], optional): Calculates the SHA-1 of a file's byte range. Defaults to :py:func:`b2large.utilities.hash_range`.

    Raises:
        FileNotFoundError: if the file to upload does not exist or is not a file.
        PermissionError: if the file to upload is not readable.
        exception.InvalidSize: if the copy size is not a finite, non-negative number.
        exception.InvalidPartSize: if the part size is not a finite number greater than zero.
        exception.PartSizeTooSmall: if the part size is below the service floor.
    """

    def __init__(
        self,
        session_api: api.SessionApi,
        part_api: api.PartTransferApi,
        descriptor: typing.Union[UploadDescriptor, CopyDescriptor],
        settings: TransferSettings = TransferSettings(),
        on_progress: typing.Optional[
            typing.Callable[[transfer_queue.Progress], None]
        ] = None,
        on_done: typing.Optional[typing.Callable[["Transfer"], None]] = None,
        hash_range: typing.Callable[
            [pathlib.Path, int, int], str
        ] = utilities.hash_range,
    ):
        assert settings.concurrency > 0
        self.session_api = session_api
        self.part_api = part_api
        self.descriptor = descriptor
        self.settings = settings
        self.on_progress = on_progress
        self.on_done = on_done
        self.hash_range = hash_range
        self.lock = threading.Lock()
        self.state = State.PLANNING
        self.session_id: typing.Optional[str] = None
        self.error: typing.Optional[BaseException] = None
        self.cleanup_error: typing.Optional[BaseException] = None
        self.file: typing.Optional[dict[str, typing.Any]] = None
        self.plan: typing.Optional[chunk.Plan] = None
        self.queue: typing.Optional[transfer_queue.TransferQueue] = None
        self.final_progress: typing.Optional[transfer_queue.Progress] = None
        self.cancel_requested = False
        self.finished = threading.Event()
        self.worker: typing.Optional[threading.Thread] = None
        self.file_info = dict(descriptor.file_info)
        if isinstance(descriptor, UploadDescriptor):
            path = pathlib.Path(descriptor.path)
            if not path.is_file():
                raise FileNotFoundError(f"{path} does not exist or is not a file")
            if not os.access(path, os.R_OK):
                raise PermissionError(f"{path} is not readable")
            stat = path.stat()
            self.path: typing.Optional[pathlib.Path] = path
            self.size = stat.st_size
            self.file_info.setdefault(
                "src_last_modified_millis", str(round(stat.st_mtime * 1000))
            )
            if descriptor.sha1 is not None:
                self.file_info.setdefault("large_file_sha1", descriptor.sha1)
        else:
            if not utilities.is_finite_number(descriptor.size):
                raise exception.InvalidSize(
                    f"file size must be a finite number (got {descriptor.size!r})"
                )
            if descriptor.size < 0:
                raise exception.InvalidSize(
                    f"file size must not be negative (got {descriptor.size!r})"
                )
            if descriptor.size != int(descriptor.size):
                raise exception.InvalidSize(
                    f"file size must be a whole number of bytes (got {descriptor.size!r})"
                )
            self.path = None
            self.size = int(descriptor.size)
        self.part_size = (
            session_api.recommended_part_size()
            if descriptor.part_size is None
            else descriptor.part_size
        )
        if not utilities.is_finite_number(self.part_size) or self.part_size <= 0:
            raise exception.InvalidPartSize(self.part_size)
        minimum_part_size = session_api.minimum_part_size()
        if self.part_size < minimum_part_size:
            raise exception.PartSizeTooSmall(self.part_size, minimum_part_size)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.descriptor.file_name!r}, {self.state.value})"

    def start(self) -> "Transfer":
        """Starts the background thread.

        Returns:
            Transfer: self, for chaining.
        """
        assert self.worker is None
        self.worker = threading.Thread(target=self.target, daemon=True)
        self.worker.start()
        return self

    def target(self):
        """Background thread implementation."""
        try:
            self.execute()
        except Exception as error:
            self.terminate(error)
        finally:
            self.finished.set()
            if self.on_done is not None:
                self.on_done(self)

    def set_state(self, state: State) -> None:
        with self.lock:
            logging.debug(f"{self}: {self.state.value} -> {state.value}")
            self.state = state

    def check_canceled(self) -> None:
        with self.lock:
            if self.cancel_requested:
                raise exception.TransferCanceled()

    def execute(self) -> None:
        reconciliation: typing.Optional[reconcile.Reconciliation] = None
        if self.descriptor.resume_session_id is not None:
            self.set_state(State.RESUMING)
            try:
                reconciliation = reconcile.reconcile(
                    self.session_api, self.descriptor.resume_session_id
                )
            except exception.ResumeSessionInvalid as error:
                if not self.descriptor.fresh_on_invalid_resume:
                    raise
                logging.warning(f"{error}, starting a new large file")
            else:
                self.session_id = self.descriptor.resume_session_id
        plan = chunk.build_plan(
            self.size,
            self.part_size,
            None if reconciliation is None else reconciliation.context(),
        )
        self.plan = plan
        completed = {} if reconciliation is None else reconciliation.completed(plan)
        logging.debug(
            f"{self}: {plan.last_part} parts of {plan.part_size} bytes, {len(completed)} already uploaded"
        )
        self.check_canceled()
        if self.session_id is None:
            self.set_state(State.SESSION_STARTING)
            if (
                isinstance(self.descriptor, UploadDescriptor)
                and self.descriptor.hash_file
                and "large_file_sha1" not in self.file_info
            ):
                assert self.path is not None
                logging.debug(f"{self}: hashing {self.path}")
                self.file_info["large_file_sha1"] = self.hash_range(
                    self.path, 0, self.size - 1
                )
                self.check_canceled()
            self.session_id = self.session_api.start_large_file(
                bucket_id=self.descriptor.bucket_id,
                file_name=self.descriptor.file_name,
                content_type=self.descriptor.content_type,
                file_info=self.file_info,
            )
        self.check_canceled()
        self.set_state(State.SLOTS_PROVISIONING)
        # at least one slot, even when every part is already uploaded
        pool = slots.SlotPool(
            provider=self.provide_destination,
            capacity=min(
                self.settings.concurrency, max(1, len(plan.chunks) - len(completed))
            ),
        )
        queue = transfer_queue.TransferQueue(
            pool=pool,
            operation=self.transfer_chunk,
            max_part_attempts=self.settings.max_part_attempts,
            max_total_errors=self.settings.max_total_errors,
        )
        with self.lock:
            if self.cancel_requested:
                raise exception.TransferCanceled()
            self.queue = queue
            self.state = State.TRANSFERRING
        logging.debug(f"{self}: transferring")
        with (
            transfer_queue.ProgressReporter(
                interval=self.settings.progress_interval,
                poll=self.progress,
                callback=self.on_progress,
            )
            if self.on_progress is not None
            else contextlib.nullcontext()
        ):
            result = queue.run(plan.chunks, completed)
        if result.error is not None:
            raise result.error
        self.check_canceled()
        self.set_state(State.FINALIZING)
        part_sha1_array = result.ordered_hashes(plan.last_part)
        file = self.session_api.finish_large_file(self.session_id, part_sha1_array)
        with self.lock:
            self.file = file
            self.final_progress = transfer_queue.Progress.from_bytes(
                self.size, self.size
            )
            self.state = State.DONE
        logging.debug(f"{self}: finished {self.session_id}")

    def terminate(self, error: BaseException) -> None:
        """Records the terminal error and cancels the remote large file.

        A failure of the cancellation request is logged and stored in :py:attr:`cleanup_error`, the original error is preserved.
        """
        canceled = isinstance(error, exception.TransferCanceled)
        with self.lock:
            self.error = error
            if self.queue is not None:
                self.final_progress = self.queue.progress(self.size)
        if canceled:
            logging.debug(f"{self}: canceled")
        else:
            logging.error(f"{self}: {error}")
            self.set_state(State.ERRORING)
        if canceled or self.session_id is not None:
            self.set_state(State.CANCELING)
        if self.session_id is not None:
            try:
                self.session_api.cancel_large_file(self.session_id)
            except Exception as cleanup_error:
                logging.error(
                    f"{self}: canceling large file {self.session_id} failed ({cleanup_error})"
                )
                self.cleanup_error = cleanup_error
        self.set_state(State.CANCELED if canceled else State.FAILED)

    def provide_destination(self) -> typing.Optional[slots.UploadDestination]:
        if isinstance(self.descriptor, CopyDescriptor):
            return None
        assert self.session_id is not None
        return self.session_api.get_upload_part_url(self.session_id)

    def transfer_chunk(
        self, pool: slots.SlotPool, slot: slots.UploadSlot, item: chunk.Chunk
    ) -> str:
        """Uploads or copies one chunk, used as the queue operation."""
        assert self.session_id is not None
        if isinstance(self.descriptor, CopyDescriptor):
            response = self.part_api.copy_part(
                source_file_id=self.descriptor.source_file_id,
                large_file_id=self.session_id,
                part_number=item.part,
                range=item.range_header(),
            )
            return response["contentSha1"]
        assert self.path is not None and slot.destination is not None
        sha1 = self.hash_range(self.path, item.start, item.end)
        with utilities.RangeReader(
            path=self.path,
            start=item.start,
            end=item.end,
            on_read=lambda size: pool.report_sent(slot, size),
        ) as body:
            pool.attach_body(slot, body)
            response = self.part_api.upload_part(
                destination=slot.destination,
                part_number=item.part,
                sha1=sha1,
                body=body,
            )
        return response.get("contentSha1", sha1)

    def cancel(self) -> None:
        """Requests the transfer to stop.

        Requests in flight are aborted and no part is dispatched after the next boundary.
        A cancellation requested once the large file is being finished is best effort.
        """
        with self.lock:
            if self.state in TERMINAL_STATES:
                return
            self.cancel_requested = True
            queue = self.queue
        logging.debug(f"{self}: cancel requested")
        if queue is not None:
            queue.cancel()

    def progress(self) -> transfer_queue.Progress:
        """Returns the bytes transferred so far.

        Returns:
            transfer_queue.Progress: Zero before the transfer starts, the final snapshot after it ends.
        """
        with self.lock:
            final_progress = self.final_progress
            queue = self.queue
        if final_progress is not None:
            return final_progress
        if queue is None:
            return transfer_queue.Progress(
                percent=0, bytes_transferred=0, bytes_total=self.size
            )
        return queue.progress(self.size)

    def info(self) -> dict[str, typing.Any]:
        """Returns the new file's metadata once finished, and a partial description otherwise.

        Returns:
            dict[str, typing.Any]: The server response to b2_finish_large_file, or ``fileId``, ``state`` and ``error``.
        """
        with self.lock:
            if self.file is not None:
                return self.file
            return {
                "fileId": self.session_id,
                "state": self.state.value,
                "error": self.error,
            }

    def wait(self, timeout: typing.Optional[float] = None) -> bool:
        """Blocks until the transfer reaches a terminal state.

        Args:
            timeout (typing.Optional[float], optional): Maximum wait in seconds, None waits forever. Defaults to None.

        Returns:
            bool: Whether the transfer is over.
        """
        return self.finished.wait(timeout)

    def result(self, timeout: typing.Optional[float] = None) -> dict[str, typing.Any]:
        """Waits for the transfer and returns the new file's metadata.

        Args:
            timeout (typing.Optional[float], optional): Maximum wait in seconds, None waits forever. Defaults to None.

        Raises:
            TimeoutError: if the transfer is still running after timeout.
            Exception: the transfer's terminal error.

        Returns:
            dict[str, typing.Any]: The server response to b2_finish_large_file.
        """
        if not self.finished.wait(timeout):
            raise TimeoutError(f"{self} is still running")
        if self.error is not None:
            raise self.error
        assert self.file is not None
        return self.file


def start_transfer(
    client: typing.Any,
    descriptor: typing.Union[UploadDescriptor, CopyDescriptor],
    settings: TransferSettings = TransferSettings(),
    on_progress: typing.Optional[
        typing.Callable[[transfer_queue.Progress], None]
    ] = None,
    on_done: typing.Optional[typing.Callable[[Transfer], None]] = None,
) -> Transfer:
    """Validates the descriptor and starts the transfer on a background thread.

    Args:
        client (typing.Any): Object that implements both :py:class:`b2large.api.SessionApi` and :py:class:`b2large.api.PartTransferApi`, usually an authorized :py:class:`b2large.api.B2Api`.
        descriptor (typing.Union[UploadDescriptor, CopyDescriptor]): What to transfer.
        settings (TransferSettings, optional): Concurrency and error budgets. Defaults to TransferSettings().
        on_progress (typing.Optional[typing.Callable[[transfer_queue.Progress], None]], optional): Progress callback. Defaults to None.
        on_done (typing.Optional[typing.Callable[[Transfer], None]], optional): Completion callback. Defaults to None.

    Returns:
        Transfer: Handle to cancel the transfer, poll its progress and wait for its result.
    """
    return Transfer(
        session_api=client,
        part_api=client,
        descriptor=descriptor,
        settings=settings,
        on_progress=on_progress,
        on_done=on_done,
    ).start()
