from __future__ import annotations

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


APT_FAST_PRESEED = (
    "apt-fast apt-fast/maxdownloads string 10",
    "apt-fast apt-fast/dlflag boolean true",
)

REPOSITORIES = (
    "ppa:apt-fast/stable",
    "ppa:rmescandon/yq",
    "ppa:oisf/suricata-stable",
)

PACKAGES = (
    "jq",
    "whois",
    "build-essential",
    "git",
    "unzip",
    "htop",
    "yq",
    "mysql-server",
    "redis-server",
    "python3-pip",
    # guacamole-server build dependencies
    "libcairo2-dev",
    "libjpeg-turbo8-dev",
    "libpng-dev",
    "libtool-bin",
    "libossp-uuid-dev",
    "libavcodec-dev",
    "libavutil-dev",
    "libswscale-dev",
    "freerdp2-dev",
    "libpango1.0-dev",
    "libssh2-1-dev",
    "libvncserver-dev",
    "libtelnet-dev",
    "libssl-dev",
    "libvorbis-dev",
    "libwebp-dev",
    "tomcat9",
    "tomcat9-admin",
    "tomcat9-user",
    "tomcat9-common",
    "net-tools",
)


class AptPrerequisitesStep:
    step_id = "10_apt_install_prerequisites"
    name = "apt_install_prerequisites"
    markers = ()

    def run(self, ctx, state: Dict[str, Any]) -> Dict[str, Any]:
        apt = ctx.apt
        apt.preseed(APT_FAST_PRESEED)

        logger.info("Adding apt repositories...")
        for repo in REPOSITORIES:
            apt.add_repository(repo)

        logger.info("Running apt-get clean and update...")
        apt.clean()
        apt.update()

        logger.info("Installing apt-fast...")
        apt.install(["apt-fast"])

        logger.info("Using apt-fast to install %d packages...", len(PACKAGES))
        apt.install(PACKAGES, frontend="apt-fast")

        state.setdefault("execution", {}).setdefault("plan", {})["packages"] = list(PACKAGES)
        return state
