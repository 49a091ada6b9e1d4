"""User-facing API to read settings files and start transfers."""

from __future__ import annotations

import dataclasses
import logging
import os
import pathlib
import typing

try:
    import tomllib
except ModuleNotFoundError:
    import tomli as tomllib

from . import api, constants, controller, transfer_queue, utilities

schema = utilities.load_schema("b2large_schema.json")
"""JSON schema for TOML settings files."""

KEY_ID_VARIABLE: str = "B2_APPLICATION_KEY_ID"
APPLICATION_KEY_VARIABLE: str = "B2_APPLICATION_KEY"


@dataclasses.dataclass
class AccountSettings:
    """The account entry in a TOML settings file."""

    key_id: str
    """Application key ID.
    """

    application_key: str
    """Application key.
    """

    url: str = constants.DEFAULT_API_URL
    """Authorization server URL.
    """

    version: str = constants.DEFAULT_API_VERSION
    """API version.
    """


@dataclasses.dataclass
class Configuration:
    """Represents a settings file (TOML)."""

    account: AccountSettings
    """Credentials and server.
    """

    transfer: controller.TransferSettings
    """Concurrency and error budgets.
    """

    part_size: typing.Optional[int]
    """Default part size, None to use the account's recommended part size.
    """

    timeout: float
    """Request timeout in seconds.
    """

    max_reauth_attempts: int
    """Number of re-authorizations attempted when the token expires.
    """

    def client(self, authorize: bool = True) -> api.B2Api:
        """Creates an API client for the account.

        Args:
            authorize (bool, optional): Whether to call b2_authorize_account immediately. Defaults to True.

        Raises:
            RuntimeError: if the credentials are missing.

        Returns:
            api.B2Api: The client.
        """
        if len(self.account.key_id) == 0 or len(self.account.application_key) == 0:
            raise RuntimeError(
                f"missing credentials, set them in the settings file or with {KEY_ID_VARIABLE} and {APPLICATION_KEY_VARIABLE}"
            )
        client = api.B2Api(
            key_id=self.account.key_id,
            application_key=self.account.application_key,
            url=self.account.url,
            version=self.account.version,
            timeout=self.timeout,
            max_reauth_attempts=self.max_reauth_attempts,
        )
        if authorize:
            client.authorize()
        return client

    def upload(
        self,
        client: api.B2Api,
        path: typing.Union[str, os.PathLike],
        bucket_id: str,
        file_name: str,
        content_type: str = "b2/x-auto",
        file_info: typing.Optional[dict[str, str]] = None,
        sha1: typing.Optional[str] = None,
        hash_file: bool = True,
        resume_session_id: typing.Optional[str] = None,
        fresh_on_invalid_resume: bool = False,
        on_progress: typing.Optional[
            typing.Callable[[transfer_queue.Progress], None]
        ] = None,
    ) -> controller.Transfer:
        """Starts a large file upload with this configuration's settings.

        Args:
            client (api.B2Api): Authorized client, see :py:meth:`client`.
            path (typing.Union[str, os.PathLike]): Local file to upload.
            bucket_id (str): Destination bucket.
            file_name (str): Name of the new file.
            content_type (str, optional): MIME type. Defaults to "b2/x-auto".
            file_info (typing.Optional[dict[str, str]], optional): Custom metadata. Defaults to None.
            sha1 (typing.Optional[str], optional): SHA-1 of the whole file. Defaults to None.
            hash_file (bool, optional): Whether to calculate the SHA-1 of the whole file when sha1 is None. Defaults to True.
            resume_session_id (typing.Optional[str], optional): Unfinished large file to resume. Defaults to None.
            fresh_on_invalid_resume (bool, optional): Whether to start over if the large file cannot be resumed. Defaults to False.
            on_progress (typing.Optional[typing.Callable[[transfer_queue.Progress], None]], optional): Progress callback. Defaults to None.

        Returns:
            controller.Transfer: The running transfer.
        """
        return controller.start_transfer(
            client=client,
            descriptor=controller.UploadDescriptor(
                path=pathlib.Path(path),
                bucket_id=bucket_id,
                file_name=file_name,
                content_type=content_type,
                part_size=self.part_size,
                file_info={} if file_info is None else file_info,
                sha1=sha1,
                hash_file=hash_file,
                resume_session_id=resume_session_id,
                fresh_on_invalid_resume=fresh_on_invalid_resume,
            ),
            settings=self.transfer,
            on_progress=on_progress,
        )

    def copy(
        self,
        client: api.B2Api,
        source_file_id: str,
        bucket_id: str,
        file_name: str,
        size: typing.Optional[int] = None,
        content_type: str = "b2/x-auto",
        on_progress: typing.Optional[
            typing.Callable[[transfer_queue.Progress], None]
        ] = None,
    ) -> controller.Transfer:
        """Starts a server-side copy of a large file with this configuration's settings.

        Args:
            client (api.B2Api): Authorized client, see :py:meth:`client`.
            source_file_id (str): File to copy.
            bucket_id (str): Destination bucket.
            file_name (str): Name of the new file.
            size (typing.Optional[int], optional): Source size in bytes, read with b2_get_file_info if None. Defaults to None.
            content_type (str, optional): MIME type. Defaults to "b2/x-auto".
            on_progress (typing.Optional[typing.Callable[[transfer_queue.Progress], None]], optional): Progress callback. Defaults to None.

        Returns:
            controller.Transfer: The running transfer.
        """
        if size is None:
            size = int(client.get_file_info(source_file_id)["contentLength"])
        return controller.start_transfer(
            client=client,
            descriptor=controller.CopyDescriptor(
                source_file_id=source_file_id,
                size=size,
                bucket_id=bucket_id,
                file_name=file_name,
                content_type=content_type,
                part_size=self.part_size,
            ),
            settings=self.transfer,
            on_progress=on_progress,
        )


def configuration_from_dict(
    data: dict[str, typing.Any],
    environ: typing.Mapping[str, str] = os.environ,
) -> Configuration:
    """Validates parsed TOML data and applies environment overrides.

    Args:
        data (dict[str, typing.Any]): Parsed settings.
        environ (typing.Mapping[str, str], optional): Environment variables. Defaults to os.environ.

    Raises:
        jsonschema_rs.ValidationError: if the settings do not match the schema.

    Returns:
        Configuration: The settings.
    """
    schema.validate(data)
    account = data.get("account", {})
    transfer = data.get("transfer", {})
    key_id = environ.get(KEY_ID_VARIABLE, account.get("key_id", ""))
    application_key = environ.get(
        APPLICATION_KEY_VARIABLE, account.get("application_key", "")
    )
    if KEY_ID_VARIABLE in environ:
        logging.debug(f"key ID read from {KEY_ID_VARIABLE}")
    return Configuration(
        account=AccountSettings(
            key_id=key_id,
            application_key=application_key,
            url=account.get("url", constants.DEFAULT_API_URL),
            version=account.get("version", constants.DEFAULT_API_VERSION),
        ),
        transfer=controller.TransferSettings(
            concurrency=transfer.get("concurrency", constants.DEFAULT_CONCURRENCY),
            max_part_attempts=transfer.get(
                "max_part_attempts", constants.DEFAULT_MAX_PART_ATTEMPTS
            ),
            max_total_errors=transfer.get(
                "max_total_errors", constants.DEFAULT_MAX_TOTAL_ERRORS
            ),
            progress_interval=transfer.get(
                "progress_interval", constants.DEFAULT_PROGRESS_INTERVAL
            ),
        ),
        part_size=transfer.get("part_size"),
        timeout=transfer.get("timeout", constants.DEFAULT_TIMEOUT),
        max_reauth_attempts=transfer.get(
            "max_reauth_attempts", constants.DEFAULT_MAX_REAUTH_ATTEMPTS
        ),
    )


def configuration_from_path(
    path: typing.Union[str, os.PathLike],
    environ: typing.Mapping[str, str] = os.environ,
) -> Configuration:
    """Reads the configuration (TOML) with the given path.

    A missing file is treated as an empty configuration, so that credentials can come from the environment alone.

    Args:
        path (typing.Union[str, os.PathLike]): Configuration file path.
        environ (typing.Mapping[str, str], optional): Environment variables. Defaults to os.environ.

    Returns:
        Configuration: the parsed TOML configuration.
    """
    path = pathlib.Path(path).resolve()
    if not path.is_file():
        logging.debug(f"{path} does not exist, using defaults")
        return configuration_from_dict({}, environ=environ)
    with open(path, "rb") as configuration_file:
        data = tomllib.load(configuration_file)
    return configuration_from_dict(data, environ=environ)
