from __future__ import annotations

import logging
from typing import Any, Dict, List

from ..lib.edits import Edit, EnsureDir, IniSet, Touch

logger = logging.getLogger(__name__)


SURICATA_MONITOR = "monitor:///var/log/suricata"
ZEEK_MONITOR = "monitor:///opt/zeek/spool/manager"


def suricata_inputs(splunk_home: str) -> List[Edit]:
    inputs = f"{splunk_home}/etc/apps/search/local/inputs.conf"
    props = f"{splunk_home}/etc/apps/search/local/props.conf"
    return [
        IniSet(inputs, SURICATA_MONITOR, "index", "suricata"),
        IniSet(inputs, SURICATA_MONITOR, "sourcetype", "suricata:json"),
        IniSet(inputs, SURICATA_MONITOR, "whitelist", "eve.json"),
        IniSet(inputs, SURICATA_MONITOR, "disabled", "0"),
        IniSet(props, "suricata:json", "TRUNCATE", "0"),
    ]


def zeek_inputs(splunk_home: str) -> List[Edit]:
    local = f"{splunk_home}/etc/apps/Splunk_TA_bro/local"
    inputs = f"{local}/inputs.conf"
    return [
        EnsureDir(local),
        Touch(inputs),
        IniSet(inputs, ZEEK_MONITOR, "index", "zeek"),
        IniSet(inputs, ZEEK_MONITOR, "sourcetype", "zeek:json"),
        IniSet(inputs, ZEEK_MONITOR, "whitelist", r".*\.log$"),
        IniSet(inputs, ZEEK_MONITOR, "blacklist", r".*(communication|stderr)\.log$"),
        IniSet(inputs, ZEEK_MONITOR, "disabled", "0"),
    ]


class ConfigureSplunkInputsStep:
    """Wire Suricata, Fleet and Zeek output into Splunk."""

    step_id = "90_configure_splunk_inputs"
    name = "configure_splunk_inputs"
    markers = ()

    def run(self, ctx, state: Dict[str, Any]) -> Dict[str, Any]:
        home = ctx.cfg.splunk_home
        logger.info("Configuring Splunk Inputs...")
        ctx.edit(suricata_inputs(home))

        ctx.splunk.add_monitor("/var/log/fleet/osquery_result", index="osquery", sourcetype="osquery:json")
        ctx.splunk.add_monitor("/var/log/fleet/osquery_status", index="osquery-status", sourcetype="osquery:status")

        ctx.edit(zeek_inputs(home))

        ctx.runner.run(["chown", "-R", "splunk:splunk", f"{home}/etc/apps/Splunk_TA_bro"])
        ctx.splunk.restart()
        return state
