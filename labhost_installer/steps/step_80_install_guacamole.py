from __future__ import annotations

import logging
import tarfile
from typing import Any, Dict

from ..errors import CommandError
from ..lib.artifacts import download
from ..lib.edits import CopyFile, EnsureDir, Symlink

logger = logging.getLogger(__name__)


GUACD_UNIT = "/lib/systemd/system/guacd.service"
WEBAPPS = "/var/lib/tomcat9/webapps"


def _apache_download(path: str) -> str:
    return f"https://apache.org/dyn/closer.lua/guacamole/{path}?action=download"


class InstallGuacamoleStep:
    step_id = "80_install_guacamole"
    name = "install_guacamole"
    markers = (GUACD_UNIT,)

    def _build_server(self, ctx, version: str) -> None:
        """configure/make/make install. Build failures are logged; the web app still gets installed."""

        tarball = download(
            ctx.http,
            _apache_download(f"{version}/source/guacamole-server-{version}.tar.gz"),
            ctx.path(f"/opt/guacamole-server-{version}.tar.gz"),
            dry_run=ctx.dry_run,
        )
        src = ctx.path(f"/opt/guacamole-server-{version}")
        if not ctx.dry_run:
            with tarfile.open(tarball, "r:gz") as tar:
                tar.extractall(ctx.path("/opt"), filter="data")

        logger.info("Configuring Guacamole and running 'make' and 'make install'...")
        try:
            for argv in (["./configure", "--with-init-dir=/etc/init.d"], ["make", "--quiet"], ["make", "--quiet", "install"]):
                ctx.runner.run(argv, cwd=str(src))
        except (CommandError, OSError) as e:
            logger.error("[-] An error occurred while installing Guacamole: %s", e)
        ctx.runner.run(["ldconfig"])

    def run(self, ctx, state: Dict[str, Any]) -> Dict[str, Any]:
        version = ctx.cfg.guacamole_version
        logger.info("Setting up Guacamole...")
        self._build_server(ctx, version)

        download(
            ctx.http,
            _apache_download(f"{version}/binary/guacamole-{version}.war"),
            ctx.path(f"{WEBAPPS}/guacamole.war"),
            dry_run=ctx.dry_run,
        )

        res = ctx.resource
        ctx.edit(
            [
                EnsureDir("/etc/guacamole"),
                EnsureDir("/etc/guacamole/shares", mode=0o777),
                EnsureDir("/usr/share/tomcat9/.guacamole"),
                CopyFile(res("guacamole/user-mapping.xml"), "/etc/guacamole/"),
                CopyFile(res("guacamole/guacamole.properties"), "/etc/guacamole/"),
                CopyFile(res("guacamole/guacd.service"), GUACD_UNIT),
                Symlink("/etc/guacamole/guacamole.properties", "/usr/share/tomcat9/.guacamole/guacamole.properties"),
                Symlink("/etc/guacamole/user-mapping.xml", "/usr/share/tomcat9/.guacamole/user-mapping.xml"),
            ]
        )

        # Exists already on re-runs.
        ctx.runner.run(
            ["useradd", "-M", "-d", "/var/lib/guacd/", "-r", "-s", "/sbin/nologin", "-c", "Guacd User", "guacd"],
            check=False,
        )
        ctx.edit([EnsureDir("/var/lib/guacd")])
        ctx.runner.run(["chown", "-R", "guacd:", "/var/lib/guacd"])

        services = ctx.services
        services.daemon_reload()
        services.enable("guacd")
        services.enable("tomcat9")
        services.start("guacd")
        services.start("tomcat9")
        logger.info("Guacamole installation complete!")
        return state
