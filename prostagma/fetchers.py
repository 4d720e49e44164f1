"""
Fetch strategies used by the coordinator to fill a cache file.

Each strategy has the signature ``fetch(url, path)`` and writes the remote
content into the already-created file at ``path``. Failures are reported as:
  NotFoundError  — the remote could not be reached or refused the file
  InternalError  — the local side failed (file write, CLI not runnable)
"""

import logging
import subprocess

import requests as _requests

from prostagma.errors import InternalError, NotFoundError

logger = logging.getLogger("prostagma")

_CHUNK_SIZE = 64 * 1024


def fetch_http(url: str, path: str, *, timeout: float = 30) -> None:
    """Plain HTTP(S) GET of ``url``, streamed into ``path``."""
    try:
        resp = _requests.get(url, stream=True, timeout=timeout)
    except _requests.RequestException as exc:
        raise NotFoundError(f"could not download {url}: {exc}") from exc

    with resp:
        if resp.status_code != 200:
            raise NotFoundError(f"upstream returned {resp.status_code} for {url}")
        try:
            with open(path, "wb") as f:
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
        except _requests.RequestException as exc:
            raise NotFoundError(f"download of {url} was interrupted: {exc}") from exc
        except OSError as exc:
            raise InternalError(f"could not write {path}: {exc}") from exc


def fetch_s3(url: str, path: str, *, aws_cli: str = "/usr/local/bin/aws") -> None:
    """Object-storage fetch via ``aws s3 cp <url> <path>``."""
    try:
        proc = subprocess.run(
            [aws_cli, "s3", "cp", url, path],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
    except OSError as exc:
        raise InternalError(f"could not invoke {aws_cli}: {exc}") from exc

    if proc.returncode != 0:
        logger.debug(f"aws s3 cp output for {url}: {proc.stdout}")
        raise NotFoundError(f"aws s3 cp exited with {proc.returncode} for {url}")
