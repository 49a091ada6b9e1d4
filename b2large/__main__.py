from __future__ import annotations

import argparse
import dataclasses
import logging
import pathlib
import pkgutil
import sys
import typing

import jsonschema_rs

from . import configuration, controller, display, exception, utilities


def check_positive(value: str):
    value_as_int = int(value)
    if value_as_int <= 0:
        raise argparse.ArgumentTypeError(f"{value} is not a positive integer")
    return value_as_int


def check_size(value: str):
    try:
        return utilities.parse_size(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"{value} is not a size")


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--configuration",
        "-c",
        default="b2large.toml",
        help="b2large configuration file path",
    )
    parser.add_argument(
        "--timeout", "-t", default=None, type=float, help="Request timeout in seconds"
    )
    parser.add_argument(
        "--workers",
        "-w",
        type=check_positive,
        default=None,
        help="Number of parallel part transfers (overrides the configuration)",
    )


def load_configuration(args: argparse.Namespace) -> configuration.Configuration:
    b2large_configuration = configuration.configuration_from_path(
        pathlib.Path(args.configuration)
    )
    if args.timeout is not None:
        b2large_configuration.timeout = args.timeout
    if args.workers is not None:
        b2large_configuration.transfer = dataclasses.replace(
            b2large_configuration.transfer, concurrency=args.workers
        )
    return b2large_configuration


def run(transfer: controller.Transfer, terminal_display: display.Display) -> None:
    try:
        with terminal_display:
            transfer.wait()
    except KeyboardInterrupt:
        transfer.cancel()
        transfer.wait()
    file = transfer.result()
    print(
        display.format_info(
            f"{file['fileName']} ({file['fileId']}, {utilities.size_to_string(file['contentLength'])})"
        )
    )


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Upload or copy large files to Backblaze B2",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--log-directory", help="write log files to this directory")
    subparsers = parser.add_subparsers(dest="command")
    init_parser = subparsers.add_parser(
        "init", help="Generate a default b2large.toml file"
    )
    init_parser.add_argument(
        "--configuration",
        "-c",
        default="b2large.toml",
        help="b2large configuration file path",
    )
    upload_parser = subparsers.add_parser(
        "upload", help="Upload a local file as a large file"
    )
    upload_parser.add_argument("path", help="Path to the local file")
    upload_parser.add_argument(
        "--bucket-id", "-b", required=True, help="Destination bucket ID"
    )
    upload_parser.add_argument(
        "--name", "-n", default=None, help="File name in the bucket (defaults to the local file name)"
    )
    upload_parser.add_argument(
        "--content-type", default="b2/x-auto", help="MIME type of the file"
    )
    upload_parser.add_argument(
        "--part-size",
        "-p",
        type=check_size,
        default=None,
        help="Part size with an optional K, M, G or T suffix (defaults to the configuration or the account's recommended size)",
    )
    upload_parser.add_argument(
        "--resume", "-r", default=None, help="ID of an unfinished large file to resume"
    )
    upload_parser.add_argument(
        "--fresh-on-invalid-resume",
        action="store_true",
        help="Start a new large file if the resumed one is not valid",
    )
    upload_parser.add_argument(
        "--skip-hash",
        action="store_true",
        help="Do not calculate the SHA-1 of the whole file (stored as large_file_sha1 by default)",
    )
    add_common_arguments(upload_parser)
    copy_parser = subparsers.add_parser(
        "copy", help="Copy an existing file server-side as a large file"
    )
    copy_parser.add_argument("source_file_id", help="ID of the file to copy")
    copy_parser.add_argument(
        "--bucket-id", "-b", required=True, help="Destination bucket ID"
    )
    copy_parser.add_argument("--name", "-n", required=True, help="Name of the copy")
    copy_parser.add_argument(
        "--size",
        type=check_size,
        default=None,
        help="Size of the source file (read from the server if omitted)",
    )
    copy_parser.add_argument(
        "--part-size",
        "-p",
        type=check_size,
        default=None,
        help="Part size with an optional K, M, G or T suffix",
    )
    add_common_arguments(copy_parser)
    unfinished_parser = subparsers.add_parser(
        "unfinished", help="List the large files that were neither finished nor canceled"
    )
    unfinished_parser.add_argument(
        "--bucket-id", "-b", required=True, help="Bucket ID"
    )
    unfinished_parser.add_argument(
        "--prefix", default=None, help="Only list files whose name starts with this prefix"
    )
    add_common_arguments(unfinished_parser)
    cancel_parser = subparsers.add_parser(
        "cancel", help="Cancel an unfinished large file and delete its parts"
    )
    cancel_parser.add_argument("file_id", help="ID of the unfinished large file")
    add_common_arguments(cancel_parser)
    args = parser.parse_args()

    log_directory: typing.Optional[pathlib.Path] = None
    if args.log_directory is not None:
        log_directory = pathlib.Path(args.log_directory)
        log_directory.mkdir(parents=True, exist_ok=True)
        logging.basicConfig(
            filename=str(log_directory / "main.log"),
            encoding="utf-8",
            level=logging.DEBUG,
            format="%(asctime)s %(message)s",
        )

    if args.command == "init":
        target = pathlib.Path(args.configuration)
        if target.is_file():
            print(display.format_error(f"{target} already exists"))
            sys.exit(1)
        b2large_default = pkgutil.get_data("b2large", "b2large_default.toml")
        assert b2large_default is not None
        with open(target, "wb") as target_file:
            target_file.write(b2large_default)
        print(display.format_info(f"wrote {target}"))

    elif args.command is not None:
        command_error: typing.Optional[str] = None
        try:
            b2large_configuration = load_configuration(args)
            if getattr(args, "part_size", None) is not None:
                b2large_configuration.part_size = args.part_size
            client = b2large_configuration.client()
            if args.command == "upload":
                path = pathlib.Path(args.path)
                if not args.skip_hash and args.resume is None:
                    print(display.format_dim(f"hashing {path}"))
                terminal_display = display.Display(
                    label=args.name if args.name is not None else path.name
                )
                run(
                    b2large_configuration.upload(
                        client=client,
                        path=path,
                        bucket_id=args.bucket_id,
                        file_name=args.name if args.name is not None else path.name,
                        content_type=args.content_type,
                        hash_file=not args.skip_hash,
                        resume_session_id=args.resume,
                        fresh_on_invalid_resume=args.fresh_on_invalid_resume,
                        on_progress=terminal_display,
                    ),
                    terminal_display,
                )
            elif args.command == "copy":
                terminal_display = display.Display(label=args.name)
                run(
                    b2large_configuration.copy(
                        client=client,
                        source_file_id=args.source_file_id,
                        bucket_id=args.bucket_id,
                        file_name=args.name,
                        size=args.size,
                        on_progress=terminal_display,
                    ),
                    terminal_display,
                )
            elif args.command == "unfinished":
                start_file_id: typing.Optional[str] = None
                while True:
                    page = client.list_unfinished_large_files(
                        bucket_id=args.bucket_id,
                        name_prefix=args.prefix,
                        start_file_id=start_file_id,
                    )
                    for file in page["files"]:
                        print(f"{file['fileId']} {file['fileName']}")
                    start_file_id = page.get("nextFileId")
                    if start_file_id is None:
                        break
            elif args.command == "cancel":
                client.cancel_large_file(args.file_id)
                print(display.format_info(f"canceled {args.file_id}"))
        except KeyboardInterrupt:
            command_error = "Interrupted"
        except (
            exception.TransferError,
            jsonschema_rs.ValidationError,
            OSError,
            RuntimeError,
            ValueError,
        ) as error:
            logging.debug(f"{args.command} failed: {error!r}")
            command_error = str(error)
        if command_error is not None:
            print(display.format_error(command_error))
            sys.exit(1)
