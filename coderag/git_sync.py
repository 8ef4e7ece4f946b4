"""Clone-or-pull synchronisation of configured repositories."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import List
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger(__name__)

GIT_TIMEOUT_S = 600.0


def redact_url(url: str) -> str:
    """Strip any ``user:token@`` credentials from a URL before it is logged."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return "<invalid url>"
    if not parts.username and not parts.password:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"***@{host}", parts.path, parts.query, parts.fragment))


async def _run_git(action: str, args: List[str], url: str, timeout_s: float) -> bool:
    # Never block on an interactive credential prompt.
    env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
    try:
        proc = await asyncio.create_subprocess_exec(
            "git",
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
        )
    except OSError as exc:
        logger.error(f"Cannot run git for {redact_url(url)}: {exc}")
        return False

    try:
        _, stderr = await asyncio.wait_for(proc.communicate(), timeout_s)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        logger.error(f"git {action} timed out after {timeout_s:g}s for {redact_url(url)}")
        return False

    if proc.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip().replace(url, redact_url(url))
        logger.error(f"git {action} failed for {redact_url(url)}: {message}")
        return False
    return True


async def fetch_or_update(url: str, local_path: str, timeout_s: float = GIT_TIMEOUT_S) -> bool:
    """Clone ``url`` into ``local_path``, or pull if it is already there.

    Returns False on any failure, including a git call that runs longer than
    ``timeout_s``; never raises.
    """
    if not os.path.exists(local_path):
        parent = os.path.dirname(os.path.abspath(local_path))
        try:
            os.makedirs(parent, exist_ok=True)
        except OSError as exc:
            logger.error(f"Cannot create {parent}: {exc}")
            return False
        logger.info(f"Cloning {redact_url(url)}...")
        return await _run_git("clone", ["clone", "--", url, local_path], url, timeout_s)

    logger.info(f"Updating {os.path.basename(local_path)}...")
    return await _run_git("pull", ["-C", local_path, "pull", "--ff-only"], url, timeout_s)
