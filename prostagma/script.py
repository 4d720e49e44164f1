"""
Build scripts: a YAML list of steps, run in order, stopping at the first failure.

    steps:
      - download:
          cache: true
          url: https://example.com/toolchain.tar.gz
          dest: toolchain.tar.gz
      - download_s3:
          url: s3://bucket/assets.zip
          dest: assets.zip
      - shell: |
          tar xzf toolchain.tar.gz
          make all

Each list element is a map with exactly one key naming the step kind.
The whole script is parsed before anything runs, so a malformed step never
leaves a half-executed build behind. Steps that already ran are not undone
when a later one fails.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Union

import yaml

from prostagma.downloader import ensure_file
from prostagma.errors import ProstagmaError, ScriptError, UnknownStepError

logger = logging.getLogger("prostagma")


@dataclass(frozen=True)
class ShellStep:
    commands: tuple


@dataclass(frozen=True)
class DownloadStep:
    url: str
    dest: str
    cache: bool = False


@dataclass(frozen=True)
class DownloadS3Step:
    url: str
    dest: str
    cache: bool = False


Step = Union[ShellStep, DownloadStep, DownloadS3Step]


# ═══════════════════════════════════════════════════════════════════════════
#  Parsing
# ═══════════════════════════════════════════════════════════════════════════

def load_script(path: str) -> list:
    """Read and parse the build script at ``path``."""
    try:
        with open(path, "rb") as f:
            doc = yaml.safe_load(f)
    except OSError as e:
        raise ScriptError(f"could not read build script {path}: {e}") from e
    except (yaml.YAMLError, UnicodeDecodeError) as e:
        raise ScriptError(f"could not parse build script {path}: {e}") from e
    return parse_steps(doc)


def parse_steps(doc) -> list:
    """Turn a decoded YAML document into a list of steps.

    Accepts either ``{"steps": [...]}`` or a bare list.
    """
    if isinstance(doc, dict):
        if "steps" not in doc:
            raise ScriptError("build script mapping has no `steps` key")
        doc = doc["steps"]
    if doc is None:
        return []
    if not isinstance(doc, list):
        raise ScriptError("build script must be a list of steps")
    return [_parse_step(i, node) for i, node in enumerate(doc)]


def _parse_step(index: int, node) -> Step:
    if not isinstance(node, dict) or len(node) != 1:
        raise ScriptError(f"step {index}: expected a map with exactly one key")

    (kind, value), = node.items()
    if kind == "shell":
        if not isinstance(value, str):
            raise ScriptError(f"step {index}: `shell` must be a string")
        commands = tuple(line for line in value.split("\n") if line.strip())
        return ShellStep(commands=commands)
    if kind == "download":
        return DownloadStep(**_download_fields(index, kind, value))
    if kind == "download_s3":
        return DownloadS3Step(**_download_fields(index, kind, value))
    raise UnknownStepError(f"step {index}: unknown step kind '{kind}'")


def _download_fields(index: int, kind: str, value) -> dict:
    if not isinstance(value, dict):
        raise ScriptError(f"step {index}: `{kind}` must be a map of cache/url/dest")
    unknown = set(value) - {"cache", "url", "dest"}
    if unknown:
        raise ScriptError(f"step {index}: unknown `{kind}` field(s): {', '.join(sorted(map(str, unknown)))}")
    url, dest = value.get("url"), value.get("dest")
    if not isinstance(url, str) or not url:
        raise ScriptError(f"step {index}: `{kind}` needs a url")
    if not isinstance(dest, str) or not dest:
        raise ScriptError(f"step {index}: `{kind}` needs a dest")
    cache = value.get("cache", False)
    if not isinstance(cache, bool):
        raise ScriptError(f"step {index}: `{kind}.cache` must be true or false")
    return {"url": url, "dest": dest, "cache": cache}


# ═══════════════════════════════════════════════════════════════════════════
#  Running
# ═══════════════════════════════════════════════════════════════════════════

def run_shell_command(shell: str, command: str) -> str:
    """Run one command with ``<shell> -c``; return its combined output or raise ScriptError."""
    try:
        proc = subprocess.run(
            [shell, "-c", command],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
    except (OSError, ValueError) as e:
        logger.error(f"Error running command `{command}`: {e}")
        raise ScriptError(f"could not run `{command}` with {shell}: {e}") from e

    if proc.returncode != 0:
        logger.error(f"Command `{command}` exited with {proc.returncode}:\n{proc.stdout}")
        raise ScriptError(f"`{command}` exited with status {proc.returncode}")

    logger.info(f"Ran command `{command}`")
    if proc.stdout:
        logger.debug(proc.stdout.rstrip())
    return proc.stdout


def run_steps(steps: list, *, shell: str, client) -> None:
    """Run ``steps`` in order. The first failing step raises and ends the run."""
    for step in steps:
        if isinstance(step, ShellStep):
            for command in step.commands:
                run_shell_command(shell, command)
        elif isinstance(step, DownloadStep):
            ensure_file(step.url, step.dest, step.cache,
                        client.request_fetch, client.download_cached)
        elif isinstance(step, DownloadS3Step):
            ensure_file(step.url, step.dest, step.cache,
                        client.request_fetch_s3, client.download_cached)
        else:
            raise UnknownStepError(f"unhandled step type {type(step).__name__}")


def run_build_script(path: str, *, shell: str, client) -> bool:
    """
    Load and run the build script at ``path``.

    Returns True if every step succeeded. Failures are logged, never raised,
    so one broken build doesn't stop the agent.
    """
    logger.info(f"Running build script {os.path.abspath(path)}")
    try:
        steps = load_script(path)
        run_steps(steps, shell=shell, client=client)
    except ProstagmaError as e:
        logger.error(f"Build script aborted: {e}")
        return False
    logger.info(f"Build script finished ({len(steps)} step(s))")
    return True
