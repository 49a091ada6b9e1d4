"""Test the B2 HTTP client with a fake requests session"""

import json

import pytest
import requests

from b2large import api, exception, slots, utilities


def response(status_code, body=None, url="https://api001.backblazeb2.com"):
    result = requests.Response()
    result.status_code = status_code
    result.url = url
    result.encoding = "utf-8"
    if body is None:
        result._content = b""
    elif isinstance(body, bytes):
        result._content = body
    else:
        result._content = json.dumps(body).encode()
    return result


AUTHORIZATION = {
    "accountId": "account",
    "authorizationToken": "token-1",
    "apiUrl": "https://api001.backblazeb2.com",
    "downloadUrl": "https://f001.backblazeb2.com",
    "recommendedPartSize": 100000000,
    "absoluteMinimumPartSize": 5000000,
}


class FakeSession:
    """Returns scripted responses (or raises scripted exceptions) in order"""

    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    def next(self, method, url, kwargs):
        self.requests.append((method, url, kwargs))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, **kwargs):
        return self.next("GET", url, kwargs)

    def post(self, url, **kwargs):
        return self.next("POST", url, kwargs)


def make_client(responses, **kwargs):
    session = FakeSession(responses)
    client = api.B2Api(
        key_id="key-id",
        application_key="application-key",
        session_factory=lambda: session,
        **kwargs,
    )
    return client, session


class TestClassification:
    """Errors are retryable or fatal"""

    @pytest.mark.parametrize("status_code", [408, 500, 503])
    def test_retryable_statuses(self, status_code):
        error = api.error_from_response(
            response(status_code, {"status": status_code, "code": "service_unavailable", "message": "busy"})
        )
        assert isinstance(error, exception.TransportRetryable)
        assert error.status == status_code
        assert error.code == "service_unavailable"
        assert str(error) == "busy"

    @pytest.mark.parametrize("status_code", [400, 401, 403, 404])
    def test_fatal_statuses(self, status_code):
        error = api.error_from_response(
            response(status_code, {"status": status_code, "code": "bad_request", "message": "no"})
        )
        assert isinstance(error, exception.TransportFatal)
        assert error.code == "bad_request"

    def test_non_json_body(self):
        error = api.error_from_response(response(502, b"<html>bad gateway</html>"))
        assert isinstance(error, exception.TransportRetryable)
        assert error.code is None
        assert "bad gateway" in str(error)

    def test_empty_body(self):
        error = api.error_from_response(response(500))
        assert "HTTP 500" in str(error)

    def test_request_exceptions(self):
        assert isinstance(
            api.error_from_request_exception(requests.ConnectionError("reset")),
            exception.TransportRetryable,
        )
        assert isinstance(
            api.error_from_request_exception(requests.Timeout("slow")),
            exception.TransportRetryable,
        )
        assert isinstance(
            api.error_from_request_exception(requests.exceptions.InvalidURL("bad")),
            exception.TransportFatal,
        )


class TestB2Api:
    """Requests and re-authorization"""

    def test_missing_credentials(self):
        with pytest.raises(ValueError):
            api.B2Api(key_id="", application_key="key")
        with pytest.raises(ValueError):
            api.B2Api(key_id="key-id", application_key="")

    def test_authorize(self):
        client, session = make_client([response(200, AUTHORIZATION)])
        authorization = client.authorize()
        assert authorization.api_url == "https://api001.backblazeb2.com"
        assert client.minimum_part_size() == 5000000
        assert client.recommended_part_size() == 100000000
        method, url, kwargs = session.requests[0]
        assert method == "GET"
        assert url == "https://api.backblazeb2.com/b2api/v2/b2_authorize_account"
        assert kwargs["auth"] == ("key-id", "application-key")

    def test_authorize_version_3(self):
        authorization = api.Authorization.from_json(
            {
                "accountId": "account",
                "authorizationToken": "token",
                "apiInfo": {
                    "storageApi": {
                        "apiUrl": "https://api002.backblazeb2.com",
                        "downloadUrl": "https://f002.backblazeb2.com",
                        "recommendedPartSize": 200000000,
                        "absoluteMinimumPartSize": 5000000,
                    }
                },
            }
        )
        assert authorization.api_url == "https://api002.backblazeb2.com"
        assert authorization.recommended_part_size == 200000000

    def test_call_before_authorize(self):
        client, _ = make_client([])
        with pytest.raises(exception.NotAuthorized, match="not yet authorised"):
            client.start_large_file("bucket", "file", "b2/x-auto", {})

    def test_start_large_file(self):
        client, session = make_client(
            [response(200, AUTHORIZATION), response(200, {"fileId": "large-1"})]
        )
        client.authorize()
        assert client.start_large_file("bucket", "file", "b2/x-auto", {"a": "b"}) == "large-1"
        method, url, kwargs = session.requests[1]
        assert url == "https://api001.backblazeb2.com/b2api/v2/b2_start_large_file"
        assert kwargs["headers"]["Authorization"] == "token-1"
        assert kwargs["json"] == {
            "bucketId": "bucket",
            "fileName": "file",
            "contentType": "b2/x-auto",
            "fileInfo": {"a": "b"},
        }

    def test_expired_token_is_renewed(self):
        expired = {"status": 401, "code": "expired_auth_token", "message": "expired"}
        client, session = make_client(
            [
                response(200, AUTHORIZATION),
                response(401, expired),
                response(200, {**AUTHORIZATION, "authorizationToken": "token-2"}),
                response(200, {"fileId": "large-1"}),
            ]
        )
        client.authorize()
        client.cancel_large_file("large-1")
        assert [method for method, _, _ in session.requests] == ["GET", "POST", "GET", "POST"]
        assert session.requests[3][2]["headers"]["Authorization"] == "token-2"

    def test_reauthorization_budget(self):
        expired = {"status": 401, "code": "expired_auth_token", "message": "expired"}
        client, _ = make_client(
            [
                response(200, AUTHORIZATION),
                response(401, expired),
                response(200, AUTHORIZATION),
                response(401, expired),
            ],
            max_reauth_attempts=1,
        )
        client.authorize()
        with pytest.raises(exception.TransportFatal, match="auth token expired"):
            client.cancel_large_file("large-1")

    def test_other_unauthorized_errors_are_fatal(self):
        client, session = make_client(
            [
                response(200, AUTHORIZATION),
                response(401, {"status": 401, "code": "unauthorized", "message": "no"}),
            ]
        )
        client.authorize()
        with pytest.raises(exception.TransportFatal):
            client.cancel_large_file("large-1")
        assert len(session.requests) == 2

    def test_connection_errors_are_retryable(self):
        client, _ = make_client(
            [response(200, AUTHORIZATION), requests.ConnectionError("reset")]
        )
        client.authorize()
        with pytest.raises(exception.TransportRetryable):
            client.get_upload_part_url("large-1")

    def test_list_parts(self):
        client, session = make_client(
            [
                response(200, AUTHORIZATION),
                response(
                    200,
                    {
                        "parts": [
                            {"partNumber": 1, "contentLength": 100, "contentSha1": "a"},
                            {"partNumber": 2, "contentLength": 100, "contentSha1": "b"},
                        ],
                        "nextPartNumber": 3,
                    },
                ),
            ]
        )
        client.authorize()
        page = client.list_parts("large-1", start_part_number=1)
        assert page.parts[1] == api.PartInfo(part_number=2, size=100, sha1="b")
        assert page.next_part_number == 3
        assert session.requests[1][2]["json"]["startPartNumber"] == 1

    def test_upload_part_headers(self, make_file):
        path = make_file(100)
        client, session = make_client(
            [response(200, {"partNumber": 2, "contentSha1": "abc"})]
        )
        with utilities.RangeReader(path, 10, 19) as body:
            client.upload_part(
                destination=slots.UploadDestination(url="https://upload", token="upload-token"),
                part_number=2,
                sha1="abc",
                body=body,
            )
        method, url, kwargs = session.requests[0]
        assert url == "https://upload"
        assert kwargs["headers"]["Authorization"] == "upload-token"
        assert kwargs["headers"]["X-Bz-Part-Number"] == "2"
        assert kwargs["headers"]["X-Bz-Content-Sha1"] == "abc"
        assert kwargs["headers"]["Content-Length"] == "10"

    def test_upload_part_server_error(self, make_file):
        path = make_file(100)
        client, _ = make_client([response(503, {"code": "service_unavailable", "message": "busy"})])
        with utilities.RangeReader(path, 0, 99) as body:
            with pytest.raises(exception.TransportRetryable):
                client.upload_part(
                    destination=slots.UploadDestination(url="https://upload", token="t"),
                    part_number=1,
                    sha1="abc",
                    body=body,
                )

    @pytest.mark.parametrize("code", ["expired_auth_token", "bad_auth_token"])
    def test_upload_part_stale_token_is_retryable(self, make_file, code):
        """A rejected upload token asks for a new upload URL instead of failing the file"""
        path = make_file(100)
        client, session = make_client(
            [response(401, {"status": 401, "code": code, "message": "token"})]
        )
        with utilities.RangeReader(path, 0, 99) as body:
            with pytest.raises(exception.TransportRetryable) as error:
                client.upload_part(
                    destination=slots.UploadDestination(url="https://upload", token="t"),
                    part_number=1,
                    sha1="abc",
                    body=body,
                )
        assert error.value.status == 401
        assert error.value.code == code
        assert len(session.requests) == 1

    def test_upload_part_unauthorized_is_fatal(self, make_file):
        path = make_file(100)
        client, _ = make_client(
            [response(401, {"status": 401, "code": "unauthorized", "message": "no"})]
        )
        with utilities.RangeReader(path, 0, 99) as body:
            with pytest.raises(exception.TransportFatal):
                client.upload_part(
                    destination=slots.UploadDestination(url="https://upload", token="t"),
                    part_number=1,
                    sha1="abc",
                    body=body,
                )
