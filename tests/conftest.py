"""Pytest configuration and fixtures"""

import shutil
import tempfile
import threading
from pathlib import Path

import pytest

from b2large import api, exception, slots


class FakeClient(api.SessionApi, api.PartTransferApi):
    """In-memory B2 large file API.

    Failures are scripted per part number: each entry of `failures[part]` is raised by one attempt, in order.
    """

    def __init__(self, minimum_part_size=10, recommended_part_size=10):
        self.lock = threading.Lock()
        self.minimum = minimum_part_size
        self.recommended = recommended_part_size
        self.failures = {}
        self.parts = []
        self.page_size = 1000
        self.list_parts_error = None
        self.cancel_error = None
        self.upload_hook = None
        self.started = []
        self.destinations = 0
        self.uploads = []
        self.copies = []
        self.finished = []
        self.canceled = []

    def minimum_part_size(self):
        return self.minimum

    def recommended_part_size(self):
        return self.recommended

    def start_large_file(self, bucket_id, file_name, content_type, file_info):
        with self.lock:
            self.started.append((bucket_id, file_name, content_type, dict(file_info)))
            return f"large-{len(self.started)}"

    def get_upload_part_url(self, file_id):
        with self.lock:
            self.destinations += 1
            return slots.UploadDestination(
                url=f"https://pod-000-1000-00.backblaze.com/b2api/v2/b2_upload_part/{file_id}/{self.destinations}",
                token=f"token-{self.destinations}",
            )

    def list_parts(self, file_id, start_part_number=None):
        if self.list_parts_error is not None:
            raise self.list_parts_error
        start = 1 if start_part_number is None else start_part_number
        parts = [part for part in self.parts if part.part_number >= start]
        page = parts[: self.page_size]
        next_part_number = None
        if len(parts) > self.page_size:
            next_part_number = parts[self.page_size].part_number
        return api.PartsPage(parts=page, next_part_number=next_part_number)

    def finish_large_file(self, file_id, part_sha1_array):
        with self.lock:
            self.finished.append((file_id, list(part_sha1_array)))
        return {"fileId": file_id, "fileName": "file", "action": "upload"}

    def cancel_large_file(self, file_id):
        with self.lock:
            self.canceled.append(file_id)
        if self.cancel_error is not None:
            raise self.cancel_error
        return {"fileId": file_id}

    def next_failure(self, part_number):
        with self.lock:
            failures = self.failures.get(part_number)
            if failures:
                return failures.pop(0)
        return None

    def upload_part(self, destination, part_number, sha1, body):
        if self.upload_hook is not None:
            self.upload_hook(part_number, body)
        failure = self.next_failure(part_number)
        if failure is not None:
            raise failure
        data = b""
        while True:
            buffer = body.read(4)
            if len(buffer) == 0:
                break
            data += buffer
        with self.lock:
            self.uploads.append((part_number, destination, data))
        return {"partNumber": part_number, "contentSha1": sha1, "contentLength": len(data)}

    def copy_part(self, source_file_id, large_file_id, part_number, range):
        failure = self.next_failure(part_number)
        if failure is not None:
            raise failure
        with self.lock:
            self.copies.append((part_number, range))
        return {"partNumber": part_number, "contentSha1": f"sha1-{part_number}"}


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    tmpdir = tempfile.mkdtemp()
    yield Path(tmpdir)
    shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def client():
    """Fake B2 client with a 10 bytes minimum part size"""
    return FakeClient()


@pytest.fixture
def make_file(temp_dir):
    """Create a file filled with predictable bytes"""

    def make(size, name="data.bin"):
        path = temp_dir / name
        path.write_bytes(bytes(index % 251 for index in range(size)))
        return path

    return make


@pytest.fixture
def retryable():
    """Build a retryable transport error"""
    return lambda: exception.TransportRetryable("service unavailable", status=503)
