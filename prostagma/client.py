"""
Coordinator client — the agent's view of the coordination server.

Every call carries the shared secret in its JSON body. Unlike a
fire-and-forget client, failures are raised (CoordinatorRequestError) so
the caller decides: the poll loop swallows them, a build step aborts.
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import requests as _requests

from prostagma.errors import CoordinatorRequestError
from prostagma.utils import get_worker_id

logger = logging.getLogger("prostagma")

_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class TriggerResult:
    trigger: str
    count: int
    boot_id: Optional[str] = None


class CoordinatorClient:
    """HTTP client for the coordination server. Stateless apart from its settings."""

    def __init__(self, server_url: str, secret: str, *, timeout: float = 30):
        self._base = server_url.rstrip("/")
        self._secret = secret
        self._timeout = timeout
        self._worker_id = get_worker_id()

    # ── Internal helpers ──────────────────────────────────────────────────

    def _request(self, method: str, path: str, body: dict, *, stream: bool = False):
        """Send ``body`` (plus the secret) as JSON. Returns the response or raises."""
        url = f"{self._base}{path}"
        payload = {"secret": self._secret, "worker": self._worker_id, **body}
        try:
            r = _requests.request(method, url, json=payload, timeout=self._timeout, stream=stream)
        except _requests.RequestException as exc:
            logger.error(f"  [coord-http] {method} {path} failed: {exc}")
            raise CoordinatorRequestError(f"{method} {path} failed: {exc}") from exc

        if r.status_code != 200:
            r.close()
            logger.error(f"  [coord-http] {method} {path} returned {r.status_code}")
            raise CoordinatorRequestError(
                f"{method} {path} returned {r.status_code}", status_code=r.status_code
            )
        return r

    # ── Triggers ──────────────────────────────────────────────────────────

    def get_trigger(self, name: str) -> TriggerResult:
        """Read a trigger's current count."""
        r = self._request("GET", "/trigger", {"trigger": name})
        try:
            data = r.json()
            result = TriggerResult(
                trigger=data.get("trigger", name),
                count=int(data["count"]),
                boot_id=data.get("boot_id"),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.error(f"  [coord-http] Could not decode trigger reply: {exc}")
            raise CoordinatorRequestError(f"could not decode trigger reply: {exc}") from exc
        logger.debug(f"  [coord-http] Trigger {name} count={result.count}")
        return result

    def increment_trigger(self, name: str) -> int:
        """Fire a trigger. Returns the new count when the server reports it."""
        r = self._request("POST", "/trigger", {"trigger": name})
        try:
            return int(r.json().get("count", 0))
        except (ValueError, TypeError, AttributeError):
            return 0

    # ── Cache ─────────────────────────────────────────────────────────────

    def request_fetch(self, url: str) -> None:
        """Ask the server to (re)download ``url`` over HTTP into its cache."""
        logger.info(f"  [coord-http] Asking server to cache {url}")
        self._request("POST", "/cache", {"url": url}).close()

    def request_fetch_s3(self, url: str) -> None:
        """Ask the server to (re)download ``url`` from object storage into its cache."""
        logger.info(f"  [coord-http] Asking server to cache {url} from S3")
        self._request("POST", "/cache/s3", {"url": url}).close()

    def download_cached(self, url: str, dest: str) -> None:
        """
        Stream the server's cached copy of ``url`` into ``dest``.

        Uses atomic write (temp + os.replace) so ``dest`` never holds a
        partial file. Raises CoordinatorRequestError on a miss or transfer error.
        """
        logger.info(f"  [coord-http] Downloading cached {url} → {dest}")
        tmp_path = dest + ".part"
        r = self._request("GET", "/cache", {"url": url}, stream=True)
        try:
            with r:
                parent = os.path.dirname(dest)
                if parent:
                    os.makedirs(parent, exist_ok=True)
                with open(tmp_path, "wb") as f:
                    for chunk in r.iter_content(chunk_size=_CHUNK_SIZE):
                        if chunk:
                            f.write(chunk)
            os.replace(tmp_path, dest)
        except (OSError, ValueError, _requests.RequestException) as exc:
            logger.error(f"  [coord-http] Could not download entire file {url}: {exc}")
            try:
                os.unlink(tmp_path)
            except (OSError, ValueError):
                pass
            raise CoordinatorRequestError(f"could not download {url}: {exc}") from exc
