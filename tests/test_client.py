"""Tests for the coordinator HTTP client."""

import pytest
import requests

from prostagma import client as client_module
from prostagma.client import CoordinatorClient, TriggerResult
from prostagma.errors import CoordinatorRequestError


class FakeResponse:
    def __init__(self, status_code=200, payload=None, chunks=(), error=None):
        self.status_code = status_code
        self._payload = payload
        self._chunks = chunks
        self._error = error
        self.closed = False

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def iter_content(self, chunk_size=1):
        yield from self._chunks
        if self._error:
            raise self._error

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


@pytest.fixture
def sent(monkeypatch):
    """Captures outgoing requests; set ``sent.reply`` to control the response."""

    class _Sent(list):
        reply = FakeResponse(payload={"ok": True})

    log = _Sent()

    def _request(method, url, **kwargs):
        log.append((method, url, kwargs))
        if isinstance(log.reply, Exception):
            raise log.reply
        return log.reply

    monkeypatch.setattr(client_module._requests, "request", _request)
    return log


@pytest.fixture
def coordinator():
    return CoordinatorClient("http://coord:8099/", "s3cret", timeout=3)


def test_get_trigger_sends_secret_in_body(sent, coordinator):
    sent.reply = FakeResponse(payload={"trigger": "nightly", "count": 4, "boot_id": "b1"})

    result = coordinator.get_trigger("nightly")

    assert result == TriggerResult("nightly", 4, "b1")
    method, url, kwargs = sent[0]
    assert (method, url) == ("GET", "http://coord:8099/trigger")
    assert kwargs["json"]["secret"] == "s3cret"
    assert kwargs["json"]["trigger"] == "nightly"
    assert kwargs["timeout"] == 3


def test_get_trigger_without_boot_id(sent, coordinator):
    sent.reply = FakeResponse(payload={"trigger": "nightly", "count": 0})
    assert coordinator.get_trigger("nightly").boot_id is None


@pytest.mark.parametrize("payload", [None, {"trigger": "nightly"}, {"count": "many"}, ["count"]])
def test_get_trigger_undecodable_reply(sent, coordinator, payload):
    sent.reply = FakeResponse(payload=payload)
    with pytest.raises(CoordinatorRequestError):
        coordinator.get_trigger("nightly")


def test_non_200_raises_with_status(sent, coordinator):
    sent.reply = FakeResponse(status_code=403)
    with pytest.raises(CoordinatorRequestError) as info:
        coordinator.get_trigger("nightly")
    assert info.value.status_code == 403
    assert sent.reply.closed


def test_transport_error_raises_without_status(sent, coordinator):
    sent.reply = requests.ConnectionError("refused")
    with pytest.raises(CoordinatorRequestError) as info:
        coordinator.request_fetch("https://h/a")
    assert info.value.status_code is None


def test_increment_trigger_returns_count(sent, coordinator):
    sent.reply = FakeResponse(payload={"ok": True, "trigger": "nightly", "count": 9})
    assert coordinator.increment_trigger("nightly") == 9
    assert sent[0][:2] == ("POST", "http://coord:8099/trigger")


def test_fetch_requests_hit_the_right_paths(sent, coordinator):
    coordinator.request_fetch("https://h/a")
    coordinator.request_fetch_s3("s3://b/k")
    assert [(m, u) for m, u, _ in sent] == [
        ("POST", "http://coord:8099/cache"),
        ("POST", "http://coord:8099/cache/s3"),
    ]
    assert sent[1][2]["json"]["url"] == "s3://b/k"


def test_download_cached_writes_atomically(sent, coordinator, tmp_path):
    sent.reply = FakeResponse(chunks=(b"part1", b"part2"))
    dest = tmp_path / "sub" / "file.bin"

    coordinator.download_cached("https://h/a", str(dest))

    assert dest.read_bytes() == b"part1part2"
    assert not (tmp_path / "sub" / "file.bin.part").exists()
    method, url, kwargs = sent[0]
    assert (method, url) == ("GET", "http://coord:8099/cache")
    assert kwargs["stream"] is True


def test_download_cached_miss_leaves_dest_untouched(sent, coordinator, tmp_path):
    dest = tmp_path / "file.bin"
    dest.write_bytes(b"previous")
    sent.reply = FakeResponse(status_code=404)

    with pytest.raises(CoordinatorRequestError):
        coordinator.download_cached("https://h/a", str(dest))
    assert dest.read_bytes() == b"previous"


def test_download_cached_interrupted_removes_partial(sent, coordinator, tmp_path):
    dest = tmp_path / "file.bin"
    sent.reply = FakeResponse(chunks=(b"half",), error=requests.ConnectionError("reset"))

    with pytest.raises(CoordinatorRequestError):
        coordinator.download_cached("https://h/a", str(dest))
    assert not dest.exists()
    assert not (tmp_path / "file.bin.part").exists()


def test_download_cached_bad_destination_is_request_error(sent, coordinator, tmp_path):
    """A destination path the OS rejects is reported, not raised raw."""
    sent.reply = FakeResponse(chunks=(b"data",))
    with pytest.raises(CoordinatorRequestError):
        coordinator.download_cached("https://h/a", str(tmp_path / "bad\0name"))
