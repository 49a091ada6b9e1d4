"""Constants used throughout the codebase."""

CHUNK_SIZE: int = 65536
"""Buffer size in bytes for file reads."""

DEFAULT_API_URL: str = "https://api.backblazeb2.com"
"""Authorization server, the account's API URL is returned by b2_authorize_account."""

DEFAULT_API_VERSION: str = "v2"
"""API version inserted after ``b2api/`` in request paths."""

DEFAULT_CONCURRENCY: int = 4
"""Number of upload slots (and worker threads) per transfer."""

DEFAULT_MAX_PART_ATTEMPTS: int = 3
"""Number of times a single part may be attempted before the transfer fails."""

DEFAULT_MAX_REAUTH_ATTEMPTS: int = 3
"""Number of re-authorizations attempted when the account token expires."""

DEFAULT_MAX_TOTAL_ERRORS: int = 10
"""Number of retryable errors tolerated across all the parts of a transfer."""

DEFAULT_PROGRESS_INTERVAL: float = 0.25
"""Period in seconds of the progress callback."""

DEFAULT_TIMEOUT: float = 60.0
"""Request timeout, can be overriden in settings TOML files."""

LIST_PARTS_MAX_COUNT: int = 1000
"""Maximum number of parts returned by one b2_list_parts call."""

MAXIMUM_PARTS: int = 10000
"""Maximum number of parts in a large file."""

MINIMUM_PART_SIZE: int = 5000000
"""Smallest part size accepted by the service (except for the last part)."""

RECOMMENDED_PART_SIZE: int = 100000000
"""Part size used when neither the caller nor the account specify one."""

RETRYABLE_STATUSES: frozenset[int] = frozenset((408,))
"""HTTP statuses below 500 that are retried (all 5xx statuses are retried as well)."""
