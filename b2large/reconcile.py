"""Finds the parts already uploaded for an unfinished large file."""

from __future__ import annotations

import dataclasses
import logging
import typing

from . import api, chunk, exception


@dataclasses.dataclass
class Reconciliation:
    """Parts recorded by the server for a large file."""

    session_id: str
    """The large file ID.
    """

    uploaded_parts: dict[int, int]
    """Maps part numbers to sizes in bytes.
    """

    hashes: dict[int, str]
    """Maps part numbers to SHA-1 hashes.
    """

    last_consecutive_part: int
    """Highest part number n such that parts 1 to n are all uploaded.
    """

    last_uploaded_part: int
    """Highest uploaded part number.
    """

    def context(self) -> chunk.ResumeContext:
        """Converts the reconciliation into planner input."""
        return chunk.ResumeContext(
            uploaded_parts=dict(self.uploaded_parts),
            last_consecutive_part=self.last_consecutive_part,
            last_uploaded_part=self.last_uploaded_part,
        )

    def completed(self, plan: chunk.Plan) -> dict[int, str]:
        """Selects the planned chunks that need not be sent again.

        :py:func:`b2large.chunk.build_plan` rejects uploaded parts whose size differs from the plan,
        the size check is repeated here so that a plan built without this reconciliation cannot skip a part.

        Args:
            plan (chunk.Plan): A plan built from :py:meth:`context`.

        Returns:
            dict[int, str]: Maps part numbers to hashes.
        """
        return {
            item.part: self.hashes[item.part]
            for item in plan.chunks
            if item.part in self.uploaded_parts
            and self.uploaded_parts[item.part] == item.size
        }


def reconcile(session_api: api.SessionApi, session_id: str) -> Reconciliation:
    """Reads all the pages of the large file's part list.

    Args:
        session_api (api.SessionApi): Remote large file API.
        session_id (str): ID of the unfinished large file.

    Raises:
        exception.ResumeSessionInvalid: if the server rejects the large file ID (unknown, finished, canceled or not accessible).
        exception.TransportRetryable: if the listing failed with a transient error.

    Returns:
        Reconciliation: The uploaded parts.
    """
    uploaded_parts: dict[int, int] = {}
    hashes: dict[int, str] = {}
    start_part_number: typing.Optional[int] = None
    while True:
        try:
            page = session_api.list_parts(session_id, start_part_number)
        except exception.TransportFatal as error:
            raise exception.ResumeSessionInvalid(session_id, str(error)) from error
        for part in page.parts:
            uploaded_parts[part.part_number] = part.size
            hashes[part.part_number] = part.sha1
        if page.next_part_number is None:
            break
        if start_part_number is not None and page.next_part_number <= start_part_number:
            raise exception.ResumeSessionInvalid(
                session_id,
                f"the part list does not advance (next part {page.next_part_number})",
            )
        start_part_number = page.next_part_number
    last_consecutive_part = 0
    while last_consecutive_part + 1 in uploaded_parts:
        last_consecutive_part += 1
    last_uploaded_part = max(uploaded_parts) if len(uploaded_parts) > 0 else 0
    logging.debug(
        f"{session_id}: {len(uploaded_parts)} parts uploaded, {last_consecutive_part=}, {last_uploaded_part=}"
    )
    return Reconciliation(
        session_id=session_id,
        uploaded_parts=uploaded_parts,
        hashes=hashes,
        last_consecutive_part=last_consecutive_part,
        last_uploaded_part=last_uploaded_part,
    )
