"""
Utility functions: config loading, logging setup, and helpers.

Config sources, lowest to highest precedence:
  1. built-in defaults
  2. optional YAML file (--config or PROSTAGMA_CONFIG)
  3. PROSTAGMA_* environment variables
"""

import hmac
import os
import logging
import socket
import yaml
from datetime import datetime


LOG_DIR = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "logs")

LOGGER_NAME = "prostagma"

# Environment variable → config key
_ENV_KEYS = {
    "PROSTAGMA_HOST":          "server_url",
    "PROSTAGMA_SECRET":        "secret",
    "PROSTAGMA_TRIGGER":       "trigger",
    "PROSTAGMA_SCRIPT":        "script",
    "PROSTAGMA_SHELL":         "shell",
    "PROSTAGMA_CACHE_DIR":     "cache_dir",
    "PROSTAGMA_AWS":           "aws_cli",
    "PROSTAGMA_POLL_INTERVAL": "poll_interval",
}

ROLES = ("server", "client", "trigger")


def get_worker_id() -> str:
    """Return a stable machine identifier (hostname) for worker identity."""
    return socket.gethostname()


def secrets_match(provided, expected: str) -> bool:
    """Constant-time comparison of a caller-supplied secret against the configured one."""
    if not isinstance(provided, str) or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def setup_logging(role: str = "prostagma", log_dir: str = None) -> logging.Logger:
    """Configure and return the project logger."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    # Prevent duplicate handlers on repeated calls
    if logger.handlers:
        return logger

    log_dir = log_dir or LOG_DIR
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"{role}_{timestamp}.log")

    # Console handler
    ch = logging.StreamHandler()
    ch.setLevel(logging.INFO)
    ch_fmt = logging.Formatter("[%(asctime)s] %(levelname)-8s %(message)s", datefmt="%H:%M:%S")
    ch.setFormatter(ch_fmt)

    # File handler
    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh_fmt = logging.Formatter("[%(asctime)s] %(levelname)-8s %(name)s — %(message)s")
    fh.setFormatter(fh_fmt)

    logger.addHandler(ch)
    logger.addHandler(fh)

    logger.info(f"Log file: {log_file}")
    return logger


def load_config(config_path: str = None, role: str = "server", environ=None) -> dict:
    """Load and validate configuration for the given role, applying safe defaults."""
    if environ is None:
        environ = os.environ
    if role not in ROLES:
        raise ValueError(f"Invalid role '{role}'. Must be one of: {', '.join(ROLES)}.")

    config: dict = {}

    if config_path is None:
        config_path = environ.get("PROSTAGMA_CONFIG")
    if config_path:
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Config file not found: {config_path}")
        with open(config_path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f)
        if loaded is not None and not isinstance(loaded, dict):
            raise ValueError(f"Config file must contain a mapping: {config_path}")
        config.update(loaded or {})

    for env_name, key in _ENV_KEYS.items():
        value = environ.get(env_name)
        if value:
            config[key] = value

    # Connection settings
    config.setdefault("server_url", "http://localhost:8099")
    config.setdefault("request_timeout", 30)

    # Server settings
    config.setdefault("bind_host", "0.0.0.0")
    config.setdefault("port", 8099)
    config.setdefault("cache_dir", "/tmp/prostagma_cache/")
    config.setdefault("aws_cli", "/usr/local/bin/aws")

    # Agent settings
    config.setdefault("shell", "/bin/sh")
    config.setdefault("poll_interval", 5)
    config.setdefault("trigger", None)
    config.setdefault("script", None)

    secret = config.get("secret")
    if not isinstance(secret, str) or not secret:
        raise ValueError("Missing required config key: 'secret'")

    interval = config["poll_interval"]
    try:
        interval = float(interval)
    except (TypeError, ValueError):
        raise ValueError(f"poll_interval must be a number > 0, got: {config['poll_interval']!r}")
    if interval <= 0:
        raise ValueError(f"poll_interval must be a number > 0, got: {config['poll_interval']!r}")
    config["poll_interval"] = interval

    port = config["port"]
    if not isinstance(port, int) or not 1 <= port <= 65535:
        raise ValueError(f"port must be an int in 1..65535, got: {port!r}")

    timeout = config["request_timeout"]
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ValueError(f"request_timeout must be a number > 0, got: {timeout!r}")

    config["server_url"] = str(config["server_url"]).rstrip("/")

    if role == "client":
        missing_keys = [k for k in ("trigger", "script") if not config.get(k)]
        if missing_keys:
            raise ValueError(f"Missing required configuration keys: {', '.join(missing_keys)}")

    return config
