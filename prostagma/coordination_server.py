"""
HTTP Coordination Server — file cache and build triggers for the agent fleet.

A lightweight Flask server. Agents poll a named trigger counter to learn
that a build was requested, and pull build inputs through the server's
file cache so each artifact is downloaded from its origin only once.

Every endpoint except /health takes a JSON body carrying the shared secret:

    GET  /cache     {secret, url}      → cached file bytes
    POST /cache     {secret, url}      → fetch url over HTTP and cache it
    POST /cache/s3  {secret, url}      → fetch url with `aws s3 cp` and cache it
    GET  /trigger   {secret, trigger}  → {trigger, count, boot_id}
    POST /trigger   {secret, trigger}  → increment the counter

Usage:
    python -m prostagma.coordination_server [OPTIONS]

Options:
    --host TEXT       Bind address (default: 0.0.0.0)
    --port INT        Bind port (default: 8099)
    --cache-dir TEXT  Cache directory, wiped on startup (default: /tmp/prostagma_cache/)
    --config TEXT     Optional YAML config file
"""

import argparse
import functools
import logging
import sys
import time
import uuid

from flask import Flask, jsonify, request as flask_request, send_file

from prostagma.errors import BadRequestError, ForbiddenError, ProstagmaError
from prostagma.fetchers import fetch_http, fetch_s3
from prostagma.store import CacheStore, TriggerStore
from prostagma.utils import load_config, secrets_match, setup_logging

logger = logging.getLogger("prostagma")


# ═══════════════════════════════════════════════════════════════════════════
#  Request helpers
# ═══════════════════════════════════════════════════════════════════════════

def _parse_body(*fields: str) -> dict:
    """Decode the JSON body and require each field to be a string."""
    body = flask_request.get_json(force=True, silent=True)
    if not isinstance(body, dict):
        logger.info(f"BAD REQUEST   from {flask_request.remote_addr}  (body is not a JSON object)")
        raise BadRequestError("request body must be a JSON object")
    for field in ("secret",) + fields:
        if not isinstance(body.get(field), str):
            logger.info(f"BAD REQUEST   from {flask_request.remote_addr}  (missing '{field}')")
            raise BadRequestError(f"missing or non-string field '{field}'")
    return body


def _check_secret(body: dict, secret: str) -> None:
    if not secrets_match(body.get("secret"), secret):
        worker = body.get("worker", "unknown")
        logger.warning(
            f"FORBIDDEN     {flask_request.method} {flask_request.path}  "
            f"from {flask_request.remote_addr} (worker={worker})"
        )
        raise ForbiddenError("bad secret")


def fetch_and_cache(cache: CacheStore, url: str, fetch) -> str:
    """
    Fetch ``url`` into a new cache file and publish it.

    Concurrent calls for the same URL both fetch; the last one to publish
    wins and the other's file is deleted as superseded.
    """
    path = cache.new_file()
    try:
        fetch(url, path)
    except Exception:
        cache.discard(path)
        raise
    cache.publish(url, path)
    return path


# ═══════════════════════════════════════════════════════════════════════════
#  App factory
# ═══════════════════════════════════════════════════════════════════════════

def create_app(config: dict, fetchers: dict = None) -> Flask:
    """
    Build the Flask app around fresh stores.

    ``fetchers`` maps "http" / "s3" to ``fetch(url, path)`` callables; the
    defaults are the real requests / aws-cli strategies.
    """
    secret = config["secret"]
    cache = CacheStore(config["cache_dir"])
    triggers = TriggerStore()

    fetchers = dict(fetchers or {})
    fetchers.setdefault("http", functools.partial(fetch_http, timeout=config.get("request_timeout", 30)))
    fetchers.setdefault("s3", functools.partial(fetch_s3, aws_cli=config.get("aws_cli", "/usr/local/bin/aws")))

    app = Flask(__name__)
    app.extensions["prostagma"] = {
        "cache": cache,
        "triggers": triggers,
        "boot_id": uuid.uuid4().hex,
        "start_time": time.time(),
    }
    state = app.extensions["prostagma"]

    @app.errorhandler(ProstagmaError)
    def _handle_error(exc: ProstagmaError):
        return jsonify({"ok": False, "error": str(exc)}), exc.status_code

    # ── Health ────────────────────────────────────────────────────────

    @app.route("/health", methods=["GET"])
    def health():
        """Health check — verifies the server is running."""
        uptime = int(time.time() - state["start_time"])
        return jsonify({
            "status": "ok",
            "uptime": uptime,
            "cached": len(cache),
            "triggers": len(triggers),
        })

    # ── Cache ─────────────────────────────────────────────────────────

    @app.route("/cache", methods=["GET"])
    def serve_cached():
        """Stream a previously cached file. 404 if the URL was never cached."""
        body = _parse_body("url")
        _check_secret(body, secret)
        url = body["url"]

        try:
            f = cache.open(url)
        except ProstagmaError:
            logger.info(f"CACHE MISS    {url}  for {flask_request.remote_addr}")
            raise

        logger.info(f"SERVING       {url}  to {flask_request.remote_addr}")
        return send_file(f, mimetype="application/octet-stream")

    def _cache_with(kind: str):
        body = _parse_body("url")
        _check_secret(body, secret)
        url = body["url"]

        logger.info(f"FETCHING      {url}  ({kind}) for {flask_request.remote_addr}")
        try:
            path = fetch_and_cache(cache, url, fetchers[kind])
        except ProstagmaError as exc:
            logger.error(f"FETCH FAILED  {url}  ({kind}) — {exc}")
            raise
        logger.info(f"CACHED        {url}  → {path}")
        return jsonify({"ok": True})

    @app.route("/cache", methods=["POST"])
    def cache_http():
        """Download a URL over HTTP and cache it."""
        return _cache_with("http")

    @app.route("/cache/s3", methods=["POST"])
    def cache_s3():
        """Download an object-storage URL with the aws CLI and cache it."""
        return _cache_with("s3")

    # ── Triggers ──────────────────────────────────────────────────────

    @app.route("/trigger", methods=["GET"])
    def get_trigger():
        """Report a trigger's count (0 if never incremented)."""
        body = _parse_body("trigger")
        _check_secret(body, secret)
        name = body["trigger"]

        count = triggers.get(name)
        logger.debug(f"TRIGGER READ  {name}  count={count}  for {flask_request.remote_addr}")
        return jsonify({"trigger": name, "count": count, "boot_id": state["boot_id"]})

    @app.route("/trigger", methods=["POST"])
    def increment_trigger():
        """Increment a trigger's count."""
        body = _parse_body("trigger")
        _check_secret(body, secret)
        name = body["trigger"]

        count = triggers.increment(name)
        logger.info(f"TRIGGERED     {name}  count={count}  by {flask_request.remote_addr}")
        return jsonify({"ok": True, "trigger": name, "count": count})

    return app


# ═══════════════════════════════════════════════════════════════════════════
#  CLI entry point
# ═══════════════════════════════════════════════════════════════════════════

def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Prostagma coordination server (file cache + build triggers)"
    )
    parser.add_argument("--host", default=None, help="Bind address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (default: 8099)")
    parser.add_argument("--cache-dir", default=None,
                        help="Cache directory, wiped on startup (default: /tmp/prostagma_cache/)")
    parser.add_argument("--config", "-c", default=None, help="Optional YAML config file")
    args = parser.parse_args(argv)

    logger = setup_logging("server")
    config = load_config(args.config, role="server")
    if args.host:
        config["bind_host"] = args.host
    if args.port:
        config["port"] = args.port
    if args.cache_dir:
        config["cache_dir"] = args.cache_dir

    app = create_app(config)
    try:
        app.extensions["prostagma"]["cache"].reset()
    except OSError as e:
        logger.critical(f"Could not create cache directory {config['cache_dir']}: {e}")
        sys.exit(1)

    # Suppress Flask's default request logging — we log manually
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    # Startup banner
    logger.info("=" * 60)
    logger.info(f"  Coordination server running on {config['bind_host']}:{config['port']}")
    logger.info(f"  Cache dir:  {config['cache_dir']}")
    logger.info(f"  Boot id:    {app.extensions['prostagma']['boot_id']}")
    logger.info("=" * 60)

    # threaded=True so agents are served concurrently
    app.run(host=config["bind_host"], port=config["port"], threaded=True, use_reloader=False)


if __name__ == "__main__":
    main()
