"""
Download-with-fallback: get a build input onto local disk via the coordinator cache.

    1. use_cache false → ask the server to (re)fetch first
    2. try the cached copy
    3. on failure → ask the server to fetch, then try the cached copy once more

At most two fetch requests and two cache reads per call, no delay between
attempts. The second read covers a cold cache and a cached file that was
superseded by another agent's fetch mid-transfer.
"""

import logging
from typing import Callable

from prostagma.errors import ProstagmaError

logger = logging.getLogger("prostagma")


def ensure_file(
    url: str,
    dest: str,
    use_cache: bool,
    request_remote_fetch: Callable[[str], None],
    download_cached: Callable[[str, str], None],
) -> None:
    """
    Make sure ``dest`` holds the content of ``url``.

    Args:
        url: Source URL, as the server knows it.
        dest: Local destination path.
        use_cache: When False the server is always asked to re-fetch first.
        request_remote_fetch: ``fetch(url)`` — ask the server to download and cache.
        download_cached: ``download(url, dest)`` — copy the server's cached file to dest.

    Raises the ProstagmaError of the failing call; fetch failures propagate at once.
    """
    if not use_cache:
        try:
            request_remote_fetch(url)
        except ProstagmaError as exc:
            logger.error(f"Server could not download {url}: {exc}")
            raise

    try:
        download_cached(url, dest)
        return
    except ProstagmaError as exc:
        logger.info(f"Cached copy of {url} unavailable ({exc}) — asking server to fetch it")

    try:
        request_remote_fetch(url)
    except ProstagmaError as exc:
        logger.error(f"Server could not download {url}: {exc}")
        raise

    try:
        download_cached(url, dest)
    except ProstagmaError as exc:
        logger.error(f"Could not download {url} after re-fetch: {exc}")
        raise
