from __future__ import annotations

import logging
from typing import Any, Dict

from ..errors import CommandError, StageAbandoned
from ..lib.artifacts import download, expect_first, github_releases_page_links, is_elf_executable, resolve_artifact
from ..lib.edits import Chmod, CopyFile, EnsureDir

logger = logging.getLogger(__name__)


VELOCIRAPTOR_DIR = "/opt/velociraptor"


class InstallVelociraptorStep:
    step_id = "50_install_velociraptor"
    name = "install_velociraptor"
    markers = (f"{VELOCIRAPTOR_DIR}/velociraptor",)

    def run(self, ctx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        logger.info("Installing Velociraptor...")
        ctx.edit([EnsureDir(VELOCIRAPTOR_DIR)])

        url = resolve_artifact(
            name="Velociraptor",
            discover=github_releases_page_links(ctx.http, cfg.velociraptor_releases_page, needle="linux-amd64"),
            validate=expect_first(scheme="https://", suffix="linux-amd64"),
            pinned=cfg.velociraptor_pinned_url,
        )
        binary = download(ctx.http, url, ctx.path(VELOCIRAPTOR_DIR), dry_run=ctx.dry_run)
        if not ctx.dry_run and not is_elf_executable(binary):
            raise StageAbandoned(f"Failed to download the latest version of Velociraptor from {url}")
        logger.info("Velociraptor successfully downloaded!")

        # The marker path is only filled once the package is installed.
        downloaded = f"{VELOCIRAPTOR_DIR}/{binary.name}"
        ctx.edit(
            [
                Chmod(downloaded, executable=True),
                CopyFile(ctx.resource("velociraptor/server.config.yaml"), f"{VELOCIRAPTOR_DIR}/"),
            ]
        )

        logger.info("Creating Velociraptor dpkg...")
        cwd = str(ctx.path(VELOCIRAPTOR_DIR))
        ctx.runner.run(
            [f"./{binary.name}", "--config", f"{VELOCIRAPTOR_DIR}/server.config.yaml", "debian", "server"],
            cwd=cwd,
        )

        debs = sorted(ctx.path(VELOCIRAPTOR_DIR).glob("velociraptor_*_server.deb"))
        if not debs and not ctx.dry_run:
            raise StageAbandoned("Velociraptor did not produce a server package")

        logger.info("Installing the dpkg...")
        try:
            ctx.runner.run(["dpkg", "-i", *(d.name for d in debs)], cwd=cwd)
        except CommandError as e:
            raise StageAbandoned(f"Failed to install the dpkg: {e}") from e

        if not ctx.dry_run:
            binary.replace(ctx.path(f"{VELOCIRAPTOR_DIR}/velociraptor"))
        logger.info("Installation complete!")
        return state
