from __future__ import annotations

import logging
from dataclasses import dataclass

from .command import CommandRunner

logger = logging.getLogger(__name__)


@dataclass
class Systemd:
    """Service manager collaborator."""

    runner: CommandRunner

    def enable(self, unit: str) -> None:
        self.runner.run(["systemctl", "enable", unit])

    def disable(self, unit: str) -> None:
        self.runner.run(["systemctl", "disable", unit], check=False)

    def start(self, unit: str) -> None:
        self.runner.run(["systemctl", "start", unit])

    def stop(self, unit: str) -> None:
        self.runner.run(["systemctl", "stop", unit], check=False)

    def restart(self, unit: str) -> None:
        self.runner.run(["systemctl", "restart", unit])

    def daemon_reload(self) -> None:
        self.runner.run(["systemctl", "daemon-reload"])

    def enable_and_start(self, unit: str) -> None:
        self.enable(unit)
        self.start(unit)

    def is_running(self, pattern: str) -> bool:
        r = self.runner.run(["pgrep", "-f", pattern], check=False)
        return r.returncode == 0
