from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from ..errors import ReadinessTimeout
from .command import CommandRunner

logger = logging.getLogger(__name__)


METADATA_URL = "http://169.254.169.254"

_IPV4_RE = re.compile(r"inet\s+(\d+(?:\.\d+){3})")


def poll_until(
    check: Callable[[], bool],
    *,
    what: str,
    interval: float = 1.0,
    deadline: Optional[float] = None,
    backoff: float = 1.0,
    max_interval: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Call `check` until it returns True.

    `deadline` is in seconds from the first attempt; None waits forever.
    The delay between attempts is multiplied by `backoff` after each miss,
    capped at `max_interval`. Returns the number of attempts made.
    """

    start = clock()
    delay = interval
    attempts = 0
    while True:
        attempts += 1
        try:
            if check():
                logger.info("%s ready after %d attempt(s)", what, attempts)
                return attempts
        except Exception as e:
            # A failed check is just "not ready yet".
            logger.debug("%s check failed: %s", what, e)

        if deadline is not None and clock() - start + delay > deadline:
            raise ReadinessTimeout(f"{what} not ready after {attempts} attempt(s) ({deadline}s deadline)")

        sleep(delay)
        delay = delay * backoff
        if max_interval is not None:
            delay = min(delay, max_interval)


@dataclass
class Resolver:
    """DNS lookups through a specific server (dig)."""

    runner: CommandRunner

    def resolves(self, name: str, server: str) -> bool:
        r = self.runner.run(["dig", "+short", f"@{server}", name], check=False)
        return r.returncode == 0 and bool(r.stdout.strip())

    def prewarm(self, name: str, server: str) -> None:
        self.runner.run(["dig", f"@{server}", name], check=False)


def wait_for_dns(resolver: Resolver, name: str, server: str, **poll) -> int:
    logger.info("Waiting for DNS resolution of %s via %s", name, server)
    return poll_until(lambda: resolver.resolves(name, server), what=f"DNS {name}@{server}", **poll)


def wait_for_http(client: httpx.Client, url: str, *, expect: str | None = None, **poll) -> int:
    """Poll `url` until it answers (and its body contains `expect`, when given)."""

    def _check() -> bool:
        r = client.get(url)
        if expect is None:
            return r.status_code < 500
        return expect in r.text

    logger.info("Waiting for %s to respond", url)
    return poll_until(_check, what=url, **poll)


def is_cloud_instance(client: httpx.Client) -> bool:
    """True when the cloud instance metadata service answers."""

    try:
        client.get(METADATA_URL, timeout=httpx.Timeout(2.0, connect=2.0))
        return True
    except httpx.HTTPError:
        return False


def parse_ipv4(ip_addr_output: str) -> str | None:
    """First IPv4 address from `ip -4 addr show <iface>` output."""

    m = _IPV4_RE.search(ip_addr_output)
    return m.group(1) if m else None
