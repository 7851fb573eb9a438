from __future__ import annotations

import logging
from typing import Any, Dict

from ..errors import NetworkConfigError
from ..lib.edits import AppendText
from ..lib.net import parse_ipv4, wait_for_dns

logger = logging.getLogger(__name__)


DHCLIENT_CONF = "/etc/dhcp/dhclient.conf"


def _dhclient_lease_block(ip: str) -> str:
    return (
        'interface "eth1" {\n'
        "  send host-name = gethostname();\n"
        f"  send dhcp-requested-address {ip};\n"
        "}\n"
    )


class FixEth1StaticIpStep:
    """Keep dhclient from clobbering the static eth1 address, then wait for DNS."""

    step_id = "25_fix_eth1_static_ip"
    name = "fix_eth1_static_ip"
    markers = ()

    def _eth1_ip(self, ctx) -> str | None:
        r = ctx.runner.run(["ip", "-4", "addr", "show", "eth1"], check=False)
        return parse_ipv4(r.stdout)

    def run(self, ctx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        decisions = state.setdefault("execution", {}).setdefault("decisions", {})

        lsmod = ctx.runner.run(["lsmod"], check=False)
        if "kvm" in lsmod.stdout:
            logger.info("Using KVM, no need to fix DHCP for eth1 iface")
            decisions["hypervisor"] = "kvm"
            return state

        eth2_mac = ctx.path("/sys/class/net/eth2/address")
        if eth2_mac.exists() and eth2_mac.read_text(encoding="utf-8").strip() == cfg.esxi_eth2_mac:
            logger.info("Using ESXi, no need to change anything")
            decisions["hypervisor"] = "esxi"
            return state

        # dhclient keeps rewriting eth1 despite the static address; pin it with a static lease.
        conf = ctx.path(DHCLIENT_CONF)
        if not conf.exists() or 'interface "eth1"' not in conf.read_text(encoding="utf-8"):
            ctx.edit([AppendText(DHCLIENT_CONF, _dhclient_lease_block(cfg.eth1_ip), create=True)])
            ctx.runner.run(["netplan", "apply"])

        current = self._eth1_ip(ctx)
        if current != cfg.eth1_ip:
            logger.warning("Incorrect IP Address settings detected (%s). Attempting to fix.", current)
            ctx.runner.run(["ip", "link", "set", "dev", "eth1", "down"])
            ctx.runner.run(["ip", "addr", "flush", "dev", "eth1"])
            ctx.runner.run(["ip", "link", "set", "dev", "eth1", "up"])
            current = self._eth1_ip(ctx)
            if current != cfg.eth1_ip:
                raise NetworkConfigError(
                    f"Failed to fix the broken static IP for eth1 (current={current}, "
                    f"expected={cfg.eth1_ip}); other lab hosts depend on it"
                )
            logger.info("The static IP has been fixed and set to %s", cfg.eth1_ip)

        wait_for_dns(
            ctx.dns,
            cfg.dns_check_name,
            cfg.public_resolvers[0],
            **ctx.poll_args(cfg.dns_deadline),
        )
        return state
