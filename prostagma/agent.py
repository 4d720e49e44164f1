"""
Build agent — polls a trigger on the coordinator and runs the build script
each time the trigger's count goes up.

Per sample, compared with the previous one:
  same count             → nothing
  higher count           → run the build script once (blocking)
  lower count            → coordinator restarted; resync, don't build
  different boot_id      → coordinator restarted; resync, don't build
  request failed         → keep the previous count, retry next period

The count starts at 0. One startup sample records the current count without
building; if it fails the count stays 0, so a trigger fired while the
coordinator was unreachable still builds on the first successful sample.

The loop is single-threaded: while a build runs no sample is taken, so two
builds can never overlap.

Usage:
    python -m prostagma.agent [--config PATH]
"""

import argparse
import enum
import logging
import sys
import time
from typing import Callable, Optional

from prostagma.client import CoordinatorClient, TriggerResult
from prostagma.errors import ProstagmaError
from prostagma.script import run_build_script
from prostagma.utils import load_config, setup_logging

logger = logging.getLogger("prostagma")


class PollOutcome(enum.Enum):
    BASELINE = "baseline"
    UNCHANGED = "unchanged"
    INCREASED = "increased"
    DECREASED = "decreased"
    RESTARTED = "restarted"
    FAILED = "failed"


class TriggerWatcher:
    """
    Edge detector over successive trigger samples.

    Args:
        sample: Returns the current TriggerResult; raises ProstagmaError on failure.
        on_trigger: Called (synchronously) once per detected increase.
        interval: Seconds between samples.
        sleep: Injected for tests.
    """

    def __init__(
        self,
        sample: Callable[[], TriggerResult],
        on_trigger: Callable[[], object],
        *,
        interval: float = 5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._sample = sample
        self._on_trigger = on_trigger
        self._interval = interval
        self._sleep = sleep
        self.last_seen_count: int = 0
        self.boot_id: Optional[str] = None
        self.runs = 0

    def establish_baseline(self) -> PollOutcome:
        """Startup sample: record the count (and boot id) without building."""
        try:
            result = self._sample()
        except ProstagmaError as e:
            logger.warning(f"Startup trigger poll failed, starting from count={self.last_seen_count}: {e}")
            return PollOutcome.FAILED

        self.last_seen_count = result.count
        self.boot_id = result.boot_id
        logger.info(f"Trigger '{result.trigger}' baseline count={result.count}")
        return PollOutcome.BASELINE

    def poll_once(self) -> PollOutcome:
        """Take one sample and act on it."""
        try:
            result = self._sample()
        except ProstagmaError as e:
            logger.warning(f"Trigger poll failed, keeping count={self.last_seen_count}: {e}")
            return PollOutcome.FAILED

        previous, previous_boot = self.last_seen_count, self.boot_id
        self.last_seen_count = result.count
        if result.boot_id is not None:
            self.boot_id = result.boot_id

        if result.boot_id is not None and previous_boot is not None and result.boot_id != previous_boot:
            logger.info(f"Coordinator restarted (new boot id) — resynced count={result.count}, not building")
            return PollOutcome.RESTARTED

        if result.count == previous:
            return PollOutcome.UNCHANGED

        if result.count < previous:
            logger.info(f"Trigger count dropped {previous} → {result.count} — coordinator restarted, not building")
            return PollOutcome.DECREASED

        logger.info(f"Triggered: '{result.trigger}' {previous} → {result.count}")
        self.runs += 1
        self._on_trigger()
        return PollOutcome.INCREASED

    def run_forever(self, max_polls: Optional[int] = None) -> None:
        """Take the startup sample, then poll every ``interval`` seconds.

        ``max_polls`` (startup sample included) bounds the loop for tests.
        """
        self.establish_baseline()
        polls = 1
        while max_polls is None or polls < max_polls:
            self._sleep(self._interval)
            self.poll_once()
            polls += 1


# ═══════════════════════════════════════════════════════════════════════════
#  CLI entry point
# ═══════════════════════════════════════════════════════════════════════════

def build_watcher(config: dict, client: CoordinatorClient) -> TriggerWatcher:
    """Wire a TriggerWatcher to the coordinator and the configured build script."""
    trigger = config["trigger"]

    def _run_build():
        return run_build_script(config["script"], shell=config["shell"], client=client)

    return TriggerWatcher(
        lambda: client.get_trigger(trigger),
        _run_build,
        interval=config["poll_interval"],
    )


def main(argv=None):
    parser = argparse.ArgumentParser(description="Prostagma build agent")
    parser.add_argument("--config", "-c", default=None, help="Optional YAML config file")
    args = parser.parse_args(argv)

    logger = setup_logging("agent")
    config = load_config(args.config, role="client")

    logger.info("Configuration loaded:")
    logger.info(f"  Server:         {config['server_url']}")
    logger.info(f"  Trigger:        {config['trigger']}")
    logger.info(f"  Script:         {config['script']}")
    logger.info(f"  Shell:          {config['shell']}")
    logger.info(f"  Poll interval:  {config['poll_interval']}s")

    client = CoordinatorClient(config["server_url"], config["secret"], timeout=config["request_timeout"])
    watcher = build_watcher(config, client)
    try:
        watcher.run_forever()
    except KeyboardInterrupt:
        logger.info("Interrupted — agent stopping")
        sys.exit(0)


if __name__ == "__main__":
    main()
