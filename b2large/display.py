from __future__ import annotations

import collections
import logging
import os
import shutil
import sys
import threading
import time
import types
import typing

from . import transfer_queue, utilities

ANSI_COLORS_ENABLED = os.getenv("ANSI_COLORS_DISABLED") is None


def format_bold(message: str) -> str:
    """Surrounds the message with ANSI escape characters for bold formatting.

    Args:
        message (str): A message to be displayed in a terminal.

    Returns:
        str: The message surrounded with ANSI escape characters, or the original message if the environment variable ``ANSI_COLORS_DISABLED`` is set.
    """
    if ANSI_COLORS_ENABLED:
        return f"\033[1m{message}\033[0m"
    return message


def format_dim(message: str) -> str:
    """Surrounds the message with ANSI escape characters for dim formatting.

    Args:
        message (str): A message to be displayed in a terminal.

    Returns:
        str: The message surrounded with ANSI escape characters, or the original message if the environment variable ``ANSI_COLORS_DISABLED`` is set.
    """
    if ANSI_COLORS_ENABLED:
        return f"\033[2m{message}\033[0m"
    return message


def format_info(message: str) -> str:
    """Adds an arrow in front of the message.

    Args:
        message (str): A message to be displayed in a terminal.

    Returns:
        str: The message with a prefix.
    """
    return f"→ {format_bold(message)}"


def format_error(message: str) -> str:
    """Adds a cross mark in front of the message.

    Args:
        message (str): A message to be displayed in a terminal.

    Returns:
        str: The message with a prefix.
    """
    if ANSI_COLORS_ENABLED:
        return f"\033[31m✗\033[0m {message}"
    return f"✗ {message}"


def progress_bar(width: int, progress: typing.Optional[float]) -> str:
    """Generates a progress bar compatible with terminals.

    Args:
        width (int): The progress bar width in characters.
        progress (typing.Optional[float]): None yields an indeterminate progress bar, otherwise a value in the range ``[0, 1]``.

    Returns:
        str: The progress bar as a string, without line breaks.
    """
    width = max(width, 3)
    if progress is None:
        return "|{}|".format("░" * (width - 2))
    fill = round((width - 2) * max(0.0, min(1.0, progress)))
    return "|{}{}|".format("█" * fill, "–" * (width - 2 - fill))


class Speedometer:
    """Measures speed with multiple samples and a sliding window.

    Args:
        maximum_samples (int): Number of samples. Fewer samples are used for the first few speed estimations, until that number is reached.
    """

    def __init__(self, maximum_samples: int):
        assert maximum_samples > 0
        self.samples: collections.deque[float] = collections.deque()
        self.maximum_samples = maximum_samples

    def add_sample(self, sample: float):
        """Passes a new sample to the speedometer.

        Args:
            sample (float): Speed sample in bytes per second.
        """
        if len(self.samples) >= self.maximum_samples:
            self.samples.popleft()
        self.samples.append(sample)

    def value(self) -> float:
        """Current speed value in bytes per second.

        Returns:
            float: Mean value of the samples, 0 if there are no samples yet.
        """
        if len(self.samples) == 0:
            return 0.0
        return sum(self.samples) / len(self.samples)


class Display:
    """Shows the progress of one transfer on a single terminal line.

    The object is a progress callback (see :py:attr:`b2large.controller.Transfer.on_progress`), it keeps the last snapshot and
    redraws it on every call. Speeds are averaged over the last ``speed_samples`` calls.

    Args:
        label (str): Name printed before the progress bar.
        speed_samples (int, optional): Number of samples of the sliding speed window. Defaults to 20.
        output (typing.TextIO, optional): Terminal stream. Defaults to sys.stdout.
    """

    def __init__(
        self,
        label: str,
        speed_samples: int = 20,
        output: typing.TextIO = sys.stdout,
    ):
        self.label = label
        self.speedometer = Speedometer(maximum_samples=speed_samples)
        self.output = output
        self.lock = threading.Lock()
        self.begin = time.monotonic()
        self.previous_time = self.begin
        self.initial_bytes: typing.Optional[int] = None
        self.previous: typing.Optional[transfer_queue.Progress] = None
        self.previous_line = ""

    def __call__(self, progress: transfer_queue.Progress):
        with self.lock:
            now = time.monotonic()
            if self.previous is None:
                self.initial_bytes = progress.bytes_transferred
            else:
                interval = now - self.previous_time
                if interval > 0:
                    self.speedometer.add_sample(
                        max(
                            0,
                            progress.bytes_transferred
                            - self.previous.bytes_transferred,
                        )
                        / interval
                    )
            self.previous_time = now
            self.previous = progress
            self.write(progress, self.speedometer.value(), average=False)

    def write(
        self, progress: transfer_queue.Progress, speed: float, average: bool
    ) -> None:
        """Redraws the progress line.

        Args:
            progress (transfer_queue.Progress): Progress snapshot.
            speed (float): Current or average speed in bytes per second.
            average (bool): Whether the provided speed is an average, typically used after the transfer is over.
        """
        overview = "{}{} / {} | {}".format(
            "average: " if average else "",
            utilities.size_to_string(progress.bytes_transferred),
            utilities.size_to_string(progress.bytes_total),
            utilities.speed_to_string(round(speed)),
        )
        if not average and speed > 0:
            overview += " | {} left".format(
                utilities.duration_to_string(
                    (progress.bytes_total - progress.bytes_transferred) / speed
                )
            )
        label = f"{self.label} {progress.percent:>3}% "
        width = shutil.get_terminal_size().columns - len(label) - len(overview) - 2
        line = f"{label}{progress_bar(width, progress.percent / 100)} {overview}"
        self.output.write(f"\r{' ' * len(self.previous_line)}\r{line}")
        self.output.flush()
        self.previous_line = line

    def close(self):
        """Prints the average speed and moves to the next line.

        This function is called automatically if display is used as a context manager.
        """
        with self.lock:
            if self.previous is not None:
                assert self.initial_bytes is not None
                duration = time.monotonic() - self.begin
                self.write(
                    self.previous,
                    (self.previous.bytes_transferred - self.initial_bytes) / duration
                    if duration > 0
                    else 0.0,
                    average=True,
                )
                self.output.write("\n")
                self.output.flush()

    def __enter__(self) -> "Display":
        return self

    def __exit__(
        self,
        type: typing.Optional[typing.Type[BaseException]],
        value: typing.Optional[BaseException],
        traceback: typing.Optional[types.TracebackType],
    ):
        logging.debug(f"display exit with error type {type}")
        self.close()
