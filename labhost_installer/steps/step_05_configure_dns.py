from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.edits import WriteFile, YamlSet
from ..lib.net import is_cloud_instance

logger = logging.getLogger(__name__)


NETPLAN_PATH = "/etc/netplan/01-netcfg.yaml"


class ConfigureDnsStep:
    """Point the host at plain resolv.conf with public resolvers plus the lab DNS."""

    step_id = "05_configure_dns"
    name = "configure_dns"
    markers = ()

    def run(self, ctx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        cloud = is_cloud_instance(ctx.http)
        state.setdefault("execution", {}).setdefault("decisions", {})["cloud"] = cloud

        # Cloud builds manage their own interfaces.
        if not cloud:
            if not ctx.path(NETPLAN_PATH).exists():
                ctx.edit([WriteFile(NETPLAN_PATH, "network:\n  version: 2\n")])
            ctx.edit(
                [
                    YamlSet(
                        NETPLAN_PATH,
                        (
                            (
                                "network.ethernets.eth1",
                                {"dhcp4": True, "nameservers": {"addresses": cfg.public_resolvers}},
                            ),
                        ),
                    )
                ]
            )
            ctx.runner.run(["netplan", "apply"])

        ctx.services.disable("systemd-resolved")
        ctx.services.stop("systemd-resolved")

        resolv = ctx.path("/etc/resolv.conf")
        if not ctx.dry_run and (resolv.is_symlink() or resolv.exists()):
            resolv.unlink()
        nameservers = [*cfg.public_resolvers, cfg.lab_resolver]
        ctx.edit([WriteFile("/etc/resolv.conf", "".join(f"nameserver {ns}\n" for ns in nameservers))])

        logger.info("DNS configured (cloud=%s nameservers=%s)", cloud, ",".join(nameservers))
        return state
