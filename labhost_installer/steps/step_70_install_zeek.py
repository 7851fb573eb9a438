from __future__ import annotations

import logging
import os
from typing import Any, Dict, List

from ..errors import ServiceNotRunningError
from ..lib.artifacts import download
from ..lib.edits import AppendText, CopyFile, Edit, IniDelSection, IniSet, WriteFile
from ..lib.net import is_cloud_instance

logger = logging.getLogger(__name__)


NODE_CFG = "/opt/zeek/etc/node.cfg"
LOCAL_ZEEK = "/opt/zeek/share/zeek/site/local.zeek"
ZEEK_LIST = "/etc/apt/sources.list.d/security:zeek.list"
ZEEK_UNIT = "/lib/systemd/system/zeek.service"

SITE_SCRIPTS = """
# labhost-installer site scripts
@load protocols/ftp/software
@load protocols/smtp/software
@load protocols/ssh/software
@load protocols/http/software
@load tuning/json-logs
@load policy/integration/collective-intel
@load policy/frameworks/intel/do_notice
@load frameworks/intel/seen
@load frameworks/intel/do_notice
@load frameworks/files/hash-all-files
@load base/protocols/smb
@load policy/protocols/conn/vlan-logging
@load policy/protocols/conn/mac-logging
@load ja3

redef Intel::read_files += {
  "/opt/zeek/etc/intel.dat"
};

redef ignore_checksums = T;
"""


def _worker(iface: str, procs: int) -> List[Edit]:
    section = f"worker-{iface}"
    return [
        IniSet(NODE_CFG, section, "type", "worker"),
        IniSet(NODE_CFG, section, "host", "localhost"),
        IniSet(NODE_CFG, section, "interface", iface),
        IniSet(NODE_CFG, section, "lb_method", "pf_ring"),
        IniSet(NODE_CFG, section, "lb_procs", str(procs)),
    ]


def node_layout(*, monitor_eth0: bool, procs: int) -> List[Edit]:
    edits: List[Edit] = [
        IniDelSection(NODE_CFG, "zeek"),
        IniSet(NODE_CFG, "manager", "type", "manager"),
        IniSet(NODE_CFG, "manager", "host", "localhost"),
        IniSet(NODE_CFG, "proxy", "type", "proxy"),
        IniSet(NODE_CFG, "proxy", "host", "localhost"),
    ]
    if monitor_eth0:
        edits += _worker("eth0", procs)
    edits += _worker("eth1", procs)
    return edits


class InstallZeekStep:
    step_id = "70_install_zeek"
    name = "install_zeek"
    markers = (ZEEK_UNIT,)

    def _add_repository(self, ctx) -> None:
        distro = ctx.cfg.zeek_repo_distro
        repo = f"https://download.opensuse.org/repositories/security:/zeek/{distro}/"
        listing = ctx.path(ZEEK_LIST)
        if not listing.exists() or "zeek" not in listing.read_text(encoding="utf-8"):
            ctx.edit([WriteFile(ZEEK_LIST, f"deb {repo} /\n")])
        key = download(ctx.http, f"{repo}Release.key", ctx.path("/tmp/Release.key"), dry_run=ctx.dry_run)
        ctx.runner.run(["apt-key", "add", str(key)])

    def run(self, ctx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        logger.info("Installing Zeek...")
        self._add_repository(ctx)
        ctx.apt.update()
        ctx.apt.install(["zeek"])

        zkg_env = {"PATH": os.environ.get("PATH", "/usr/bin:/bin") + ":/opt/zeek/bin"}
        ctx.runner.run(["pip3", "install", "zkg==2.1.1"])
        for args in (["refresh"], ["autoconfig"], ["install", "--force", "salesforce/ja3"]):
            ctx.runner.run(["zkg", *args], env=zkg_env)

        # eth0 only exists outside the cloud; there it gets a worker too.
        cloud = is_cloud_instance(ctx.http)
        procs = os.cpu_count() or 1
        ctx.edit(
            [
                AppendText(LOCAL_ZEEK, SITE_SCRIPTS, unless_present="# labhost-installer site scripts", create=True),
                *node_layout(monitor_eth0=not cloud, procs=procs),
                CopyFile(ctx.resource("zeek/zeek.service"), ZEEK_UNIT),
            ]
        )

        ctx.services.enable_and_start("zeek")
        try:
            ctx.wait_until(lambda: ctx.services.is_running("zeek"), what="zeek", deadline=cfg.service_deadline)
        except TimeoutError as e:
            raise ServiceNotRunningError("Zeek attempted to start but is not running") from e

        state.setdefault("execution", {}).setdefault("decisions", {})["zeek_workers"] = {
            "eth0": not cloud,
            "lb_procs": procs,
        }
        return state
