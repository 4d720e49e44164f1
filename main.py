"""
Prostagma — Entry Point

Usage:
    python main.py server  [--host H] [--port P] [--cache-dir DIR] [--config PATH]
    python main.py client  [--config PATH]
    python main.py trigger [NAME] [--config PATH]

Settings come from PROSTAGMA_* environment variables, optionally layered
over a YAML config file (see prostagma/utils.py).
"""

import argparse
import sys

from prostagma import agent, coordination_server
from prostagma.client import CoordinatorClient
from prostagma.errors import ProstagmaError
from prostagma.utils import load_config, setup_logging


def fire_trigger(argv=None) -> int:
    """Increment a trigger once — what a CI job calls to request a build."""
    parser = argparse.ArgumentParser(prog="main.py trigger", description="Fire a build trigger")
    parser.add_argument("name", nargs="?", default=None,
                        help="Trigger name (default: PROSTAGMA_TRIGGER)")
    parser.add_argument("--config", "-c", default=None, help="Optional YAML config file")
    args = parser.parse_args(argv)

    logger = setup_logging("trigger")
    config = load_config(args.config, role="trigger")
    name = args.name or config.get("trigger")
    if not name:
        logger.error("No trigger name given (argument or PROSTAGMA_TRIGGER)")
        return 2

    client = CoordinatorClient(config["server_url"], config["secret"], timeout=config["request_timeout"])
    try:
        count = client.increment_trigger(name)
    except ProstagmaError as e:
        logger.error(f"Could not fire trigger '{name}': {e}")
        return 1
    logger.info(f"Fired trigger '{name}' (count={count})")
    return 0


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print(__doc__.strip(), file=sys.stderr)
        sys.exit(2)

    role, rest = argv[0], argv[1:]
    if role == "server":
        coordination_server.main(rest)
    elif role == "client":
        agent.main(rest)
    elif role == "trigger":
        sys.exit(fire_trigger(rest))
    else:
        print(f"Unknown argument: {role}\n\n{__doc__.strip()}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
