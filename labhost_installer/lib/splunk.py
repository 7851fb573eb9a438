from __future__ import annotations

import logging
from dataclasses import dataclass

from .command import CmdResult, CommandRunner

logger = logging.getLogger(__name__)


ACCEPT = ["--accept-license", "--answer-yes", "--no-prompt"]


@dataclass
class SplunkCli:
    """Thin wrapper over $SPLUNK_HOME/bin/splunk."""

    runner: CommandRunner
    home: str = "/opt/splunk"
    auth: str = "admin:changeme"

    @property
    def binary(self) -> str:
        return f"{self.home}/bin/splunk"

    @property
    def seed_password(self) -> str:
        return self.auth.split(":", 1)[1]

    def _run(self, *args: str, check: bool = True) -> CmdResult:
        return self.runner.run([self.binary, *args], check=check)

    def start_first_time(self) -> None:
        self._run("start", *ACCEPT, "--seed-passwd", self.seed_password)

    def add_index(self, name: str) -> None:
        self._run("add", "index", name, "-auth", self.auth)

    def install_app(self, package: str) -> None:
        self._run("install", "app", package, "-auth", self.auth)

    def add_license(self, path: str) -> None:
        self._run("add", "licenses", path, "-auth", self.auth)

    def add_monitor(self, path: str, *, index: str, sourcetype: str) -> None:
        self._run(
            "add",
            "monitor",
            path,
            "-index",
            index,
            "-sourcetype",
            sourcetype,
            "-auth",
            self.auth,
            *ACCEPT,
        )

    def restart(self) -> None:
        self._run("restart")

    def enable_boot_start(self) -> None:
        self._run("enable", "boot-start")
