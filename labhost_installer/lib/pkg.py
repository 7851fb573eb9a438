from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from ..errors import MissingPrerequisiteError
from .command import CommandRunner

logger = logging.getLogger(__name__)


NONINTERACTIVE_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


@dataclass
class AptPackages:
    """Package manager collaborator (apt/dpkg)."""

    runner: CommandRunner

    def preseed(self, selections: Iterable[str]) -> None:
        for line in selections:
            self.runner.run(["debconf-set-selections"], input_text=line + "\n")

    def add_repository(self, repo: str) -> None:
        # -n: the caller runs a single update afterwards.
        self.runner.run(["add-apt-repository", "-y", "-n", repo])

    def clean(self) -> None:
        self.runner.run(["apt-get", "clean"])

    def update(self) -> None:
        self.runner.run(["apt-get", "-qq", "update"], env=NONINTERACTIVE_ENV)

    def install(self, packages: Sequence[str], *, frontend: str = "apt-get") -> None:
        if not packages:
            return
        self.runner.run([frontend, "install", "-y", *packages], env=NONINTERACTIVE_ENV)

    def is_installed(self, package: str) -> bool:
        r = self.runner.run(["dpkg", "-s", package], check=False)
        return r.returncode == 0

    def ensure_installed(self, package: str, *, clean_first: bool = False) -> None:
        """Verify a package is installed; reinstall exactly once if it is not.

        Raises MissingPrerequisiteError when the package is still absent after the retry.
        """

        logger.info("[TEST] Validating that %s is correctly installed...", package)
        if self.is_installed(package):
            logger.info("[+] %s was successfully installed!", package)
            return

        logger.warning("[-] %s was not found. Attempting to reinstall.", package)
        if clean_first:
            self.clean()
        self.update()
        self.runner.run(["apt-get", "install", "-y", package], check=False, env=NONINTERACTIVE_ENV)

        if not self.is_installed(package):
            raise MissingPrerequisiteError(
                f"Unable to install {package} even after a retry"
            )
        logger.info("[+] %s was installed on retry", package)


def ensure_all_installed(apt: AptPackages, packages: Iterable[str], *, clean_first: bool = False) -> None:
    for p in packages:
        apt.ensure_installed(p, clean_first=clean_first)
