"""Backblaze B2 API calls used by large file transfers."""

from __future__ import annotations

import dataclasses
import logging
import threading
import typing

import requests

from . import constants, exception, slots, utilities


@dataclasses.dataclass(frozen=True)
class PartInfo:
    """A part recorded by the server for an unfinished large file."""

    part_number: int
    """Part number, starts at 1.
    """

    size: int
    """Part size in bytes.
    """

    sha1: str
    """Hexadecimal SHA-1 of the part.
    """


@dataclasses.dataclass(frozen=True)
class PartsPage:
    """One page of :py:meth:`SessionApi.list_parts` results."""

    parts: list[PartInfo]
    """Parts in ascending part number order.
    """

    next_part_number: typing.Optional[int]
    """Value to pass as ``start_part_number`` to read the next page, None on the last page.
    """


class SessionApi:
    """Remote lifecycle of a large file.

    This is an abstract class, :py:class:`B2Api` implements it with HTTP requests.
    """

    def minimum_part_size(self) -> int:
        """Returns the smallest part size accepted by the service."""
        raise NotImplementedError()

    def recommended_part_size(self) -> int:
        """Returns the part size to use when the caller does not specify one."""
        raise NotImplementedError()

    def start_large_file(
        self,
        bucket_id: str,
        file_name: str,
        content_type: str,
        file_info: dict[str, str],
    ) -> str:
        """Prepares a large file upload and returns its ID."""
        raise NotImplementedError()

    def get_upload_part_url(self, file_id: str) -> slots.UploadDestination:
        """Returns a new upload destination for the parts of a large file."""
        raise NotImplementedError()

    def list_parts(
        self, file_id: str, start_part_number: typing.Optional[int] = None
    ) -> PartsPage:
        """Lists the parts uploaded so far for an unfinished large file."""
        raise NotImplementedError()

    def finish_large_file(
        self, file_id: str, part_sha1_array: list[str]
    ) -> dict[str, typing.Any]:
        """Assembles the parts and returns the new file's metadata."""
        raise NotImplementedError()

    def cancel_large_file(self, file_id: str) -> dict[str, typing.Any]:
        """Deletes the parts of an unfinished large file."""
        raise NotImplementedError()


class PartTransferApi:
    """Transfer of a single part.

    This is an abstract class, :py:class:`B2Api` implements it with HTTP requests.
    """

    def upload_part(
        self,
        destination: slots.UploadDestination,
        part_number: int,
        sha1: str,
        body: utilities.RangeReader,
    ) -> dict[str, typing.Any]:
        """Sends the bytes of a part and returns the server's acknowledgement (``contentSha1``, ``contentLength``...)."""
        raise NotImplementedError()

    def copy_part(
        self,
        source_file_id: str,
        large_file_id: str,
        part_number: int,
        range: str,
    ) -> dict[str, typing.Any]:
        """Copies a byte range of an existing file into a part."""
        raise NotImplementedError()


UPLOAD_TOKEN_ERRORS = frozenset(("expired_auth_token", "bad_auth_token"))
"""B2 error codes returned by an upload URL whose token can no longer be used.
"""


def error_from_response(response: requests.Response) -> exception.TransportError:
    """Converts an unsuccessful response into an exception.

    Statuses 408 and 5xx yield :py:class:`b2large.exception.TransportRetryable`, other statuses yield :py:class:`b2large.exception.TransportFatal`.

    Args:
        response (requests.Response): Response with a status other than 200.

    Returns:
        exception.TransportError: The exception to raise.
    """
    message: typing.Optional[str] = None
    code: typing.Optional[str] = None
    try:
        body = response.json()
        if isinstance(body, dict):
            message = body.get("message")
            code = body.get("code")
    except ValueError:
        pass
    if message is None or len(message) == 0:
        message = (
            response.text
            if len(response.text) > 0
            else f"HTTP {response.status_code} from {response.url}"
        )
    if (
        response.status_code in constants.RETRYABLE_STATUSES
        or response.status_code >= 500
    ):
        return exception.TransportRetryable(
            message, status=response.status_code, code=code
        )
    return exception.TransportFatal(message, status=response.status_code, code=code)


def error_from_request_exception(
    error: requests.RequestException,
) -> exception.TransportError:
    """Converts a requests exception into a b2large exception.

    Connection errors and timeouts are retryable, other exceptions (invalid URL, too many redirects...) are not.
    """
    if isinstance(
        error,
        (
            requests.ConnectionError,
            requests.Timeout,
            requests.exceptions.ChunkedEncodingError,
        ),
    ):
        return exception.TransportRetryable(str(error))
    return exception.TransportFatal(str(error))


@dataclasses.dataclass
class Authorization:
    """Account information returned by b2_authorize_account."""

    account_id: str
    authorization_token: str
    api_url: str
    download_url: typing.Optional[str]
    recommended_part_size: int
    absolute_minimum_part_size: int

    @classmethod
    def from_json(cls, data: dict[str, typing.Any]) -> "Authorization":
        """Reads version 2 responses (flat) and version 3 responses (``apiInfo.storageApi``)."""
        if "apiInfo" in data:
            data = {**data, **data["apiInfo"]["storageApi"]}
        return cls(
            account_id=data["accountId"],
            authorization_token=data["authorizationToken"],
            api_url=data["apiUrl"],
            download_url=data.get("downloadUrl"),
            recommended_part_size=data.get(
                "recommendedPartSize", constants.RECOMMENDED_PART_SIZE
            ),
            absolute_minimum_part_size=data.get(
                "absoluteMinimumPartSize", constants.MINIMUM_PART_SIZE
            ),
        )


class B2Api(SessionApi, PartTransferApi):
    """Sends requests to the B2 API.

    Each thread gets its own :py:class:`requests.Session`.

    Args:
        key_id (str): Application key ID (or account ID for the master key).
        application_key (str): Application key.
        url (str, optional): Authorization server URL, without ``b2api/`` and the version. Defaults to :py:attr:`b2large.constants.DEFAULT_API_URL`.
        version (str, optional): API version. Defaults to :py:attr:`b2large.constants.DEFAULT_API_VERSION`.
        timeout (float, optional): Request timeout in seconds. Defaults to :py:attr:`b2large.constants.DEFAULT_TIMEOUT`.
        max_reauth_attempts (int, optional): Number of re-authorizations attempted when the token expires. Defaults to :py:attr:`b2large.constants.DEFAULT_MAX_REAUTH_ATTEMPTS`.
        session_factory (typing.Callable[[], requests.Session], optional): Creates the per-thread sessions. Defaults to requests.Session.
    """

    def __init__(
        self,
        key_id: str,
        application_key: str,
        url: str = constants.DEFAULT_API_URL,
        version: str = constants.DEFAULT_API_VERSION,
        timeout: float = constants.DEFAULT_TIMEOUT,
        max_reauth_attempts: int = constants.DEFAULT_MAX_REAUTH_ATTEMPTS,
        session_factory: typing.Callable[[], requests.Session] = requests.Session,
    ):
        if len(key_id) == 0:
            raise ValueError("missing authentication key ID")
        if len(application_key) == 0:
            raise ValueError("missing authentication application key")
        self.key_id = key_id
        self.application_key = application_key
        self.url = url
        self.version = version
        self.timeout = timeout
        self.max_reauth_attempts = max_reauth_attempts
        self.session_factory = session_factory
        self.authorization: typing.Optional[Authorization] = None
        self.authorization_lock = threading.Lock()
        self.local = threading.local()

    def __repr__(self):
        return f"{self.__class__.__name__}('{self.url}', '{self.key_id}')"

    def session(self) -> requests.Session:
        """Returns the calling thread's session."""
        session = getattr(self.local, "session", None)
        if session is None:
            session = self.session_factory()
            self.local.session = session
        return session

    def api_url(self, name: str, base: typing.Optional[str] = None) -> str:
        """Calculates the URL of an API call.

        Args:
            name (str): Call name, for instance ``"b2_list_parts"``.
            base (typing.Optional[str], optional): Base URL, defaults to the account's API URL.

        Returns:
            str: The full URL.
        """
        if base is None:
            assert self.authorization is not None
            base = self.authorization.api_url
        return "{}{}b2api/{}/{}".format(
            base, "" if base.endswith("/") else "/", self.version, name
        )

    def authorize(self) -> Authorization:
        """Calls b2_authorize_account, required before any other call.

        Raises:
            exception.TransportError: if the request fails.

        Returns:
            Authorization: The account information.
        """
        with self.authorization_lock:
            logging.debug(f"authorize {self.key_id} with {self.url}")
            try:
                response = self.session().get(
                    self.api_url("b2_authorize_account", base=self.url),
                    auth=(self.key_id, self.application_key),
                    headers={"Accept": "application/json"},
                    timeout=self.timeout,
                )
            except requests.RequestException as error:
                raise error_from_request_exception(error) from error
            if response.status_code != 200:
                raise error_from_response(response)
            self.authorization = Authorization.from_json(response.json())
            return self.authorization

    def call(self, name: str, body: dict[str, typing.Any]) -> dict[str, typing.Any]:
        """Sends a JSON API request with the account token.

        The account is re-authorized if the server reports an expired token.

        Args:
            name (str): Call name, for instance ``"b2_start_large_file"``.
            body (dict[str, typing.Any]): JSON body.

        Raises:
            exception.NotAuthorized: if :py:meth:`authorize` has not been called.
            exception.TransportError: if the request fails.

        Returns:
            dict[str, typing.Any]: The parsed JSON response.
        """
        if self.authorization is None:
            raise exception.NotAuthorized()
        reauth_attempts = 0
        while True:
            token = self.authorization.authorization_token
            logging.debug(f"call {name}")
            try:
                response = self.session().post(
                    self.api_url(name),
                    json=body,
                    headers={"Authorization": token, "Accept": "application/json"},
                    timeout=self.timeout,
                )
            except requests.RequestException as error:
                raise error_from_request_exception(error) from error
            if response.status_code == 200:
                return response.json()
            error = error_from_response(response)
            if response.status_code == 401 and error.code == "expired_auth_token":
                if reauth_attempts >= self.max_reauth_attempts:
                    raise exception.TransportFatal(
                        "auth token expired, and unable to re-authenticate to acquire new token",
                        status=401,
                        code=error.code,
                    ) from error
                reauth_attempts += 1
                self.reauthorize(expired_token=token)
                continue
            raise error

    def reauthorize(self, expired_token: str) -> None:
        # another thread may have refreshed the token already
        assert self.authorization is not None
        if self.authorization.authorization_token == expired_token:
            self.authorize()

    def minimum_part_size(self) -> int:
        if self.authorization is None:
            return constants.MINIMUM_PART_SIZE
        return self.authorization.absolute_minimum_part_size

    def recommended_part_size(self) -> int:
        if self.authorization is None:
            return constants.RECOMMENDED_PART_SIZE
        return self.authorization.recommended_part_size

    def start_large_file(
        self,
        bucket_id: str,
        file_name: str,
        content_type: str,
        file_info: dict[str, str],
    ) -> str:
        return self.call(
            "b2_start_large_file",
            {
                "bucketId": bucket_id,
                "fileName": file_name,
                "contentType": content_type,
                "fileInfo": file_info,
            },
        )["fileId"]

    def get_upload_part_url(self, file_id: str) -> slots.UploadDestination:
        response = self.call("b2_get_upload_part_url", {"fileId": file_id})
        return slots.UploadDestination(
            url=response["uploadUrl"], token=response["authorizationToken"]
        )

    def list_parts(
        self,
        file_id: str,
        start_part_number: typing.Optional[int] = None,
        max_part_count: int = constants.LIST_PARTS_MAX_COUNT,
    ) -> PartsPage:
        body: dict[str, typing.Any] = {
            "fileId": file_id,
            "maxPartCount": max_part_count,
        }
        if start_part_number is not None:
            body["startPartNumber"] = start_part_number
        response = self.call("b2_list_parts", body)
        return PartsPage(
            parts=[
                PartInfo(
                    part_number=int(part["partNumber"]),
                    size=int(part["contentLength"]),
                    sha1=part["contentSha1"],
                )
                for part in response["parts"]
            ],
            next_part_number=response.get("nextPartNumber"),
        )

    def list_unfinished_large_files(
        self,
        bucket_id: str,
        name_prefix: typing.Optional[str] = None,
        start_file_id: typing.Optional[str] = None,
        max_file_count: int = 100,
    ) -> dict[str, typing.Any]:
        """Lists the large files that were started but neither finished nor canceled.

        Args:
            bucket_id (str): The bucket to search.
            name_prefix (typing.Optional[str], optional): Only list files whose names start with this prefix. Defaults to None.
            start_file_id (typing.Optional[str], optional): First file ID to return, used to read the next page. Defaults to None.
            max_file_count (int, optional): Page size, at most 100. Defaults to 100.

        Returns:
            dict[str, typing.Any]: The ``files`` list and ``nextFileId``.
        """
        body: dict[str, typing.Any] = {
            "bucketId": bucket_id,
            "maxFileCount": max_file_count,
        }
        if name_prefix is not None:
            body["namePrefix"] = name_prefix
        if start_file_id is not None:
            body["startFileId"] = start_file_id
        return self.call("b2_list_unfinished_large_files", body)

    def get_file_info(self, file_id: str) -> dict[str, typing.Any]:
        return self.call("b2_get_file_info", {"fileId": file_id})

    def finish_large_file(
        self, file_id: str, part_sha1_array: list[str]
    ) -> dict[str, typing.Any]:
        return self.call(
            "b2_finish_large_file",
            {"fileId": file_id, "partSha1Array": part_sha1_array},
        )

    def cancel_large_file(self, file_id: str) -> dict[str, typing.Any]:
        return self.call("b2_cancel_large_file", {"fileId": file_id})

    def upload_part(
        self,
        destination: slots.UploadDestination,
        part_number: int,
        sha1: str,
        body: utilities.RangeReader,
    ) -> dict[str, typing.Any]:
        try:
            response = self.session().post(
                destination.url,
                data=body,
                headers={
                    "Authorization": destination.token,
                    "X-Bz-Part-Number": str(part_number),
                    "X-Bz-Content-Sha1": sha1,
                    "Content-Length": str(len(body)),
                    "Accept": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as error:
            raise error_from_request_exception(error) from error
        if response.status_code != 200:
            error = error_from_response(response)
            # the upload token belongs to the slot, a new upload URL replaces it
            if response.status_code == 401 and error.code in UPLOAD_TOKEN_ERRORS:
                raise exception.TransportRetryable(
                    str(error), status=401, code=error.code
                ) from error
            raise error
        return response.json()

    def copy_part(
        self,
        source_file_id: str,
        large_file_id: str,
        part_number: int,
        range: str,
    ) -> dict[str, typing.Any]:
        return self.call(
            "b2_copy_part",
            {
                "sourceFileId": source_file_id,
                "largeFileId": large_file_id,
                "partNumber": part_number,
                "range": range,
            },
        )
