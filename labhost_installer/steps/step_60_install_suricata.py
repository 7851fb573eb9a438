from __future__ import annotations

import logging
from typing import Any, Dict

from ..errors import ServiceNotRunningError
from ..lib.edits import AppendText, CopyFile, ShellVarSet, WriteFile

logger = logging.getLogger(__name__)


SURICATA_UPDATE_REPO = "https://github.com/OISF/suricata-update.git"
LOGROTATE_PATH = "/etc/logrotate.d/suricata"

LOGROTATE_POLICY = """/var/log/suricata/*.log /var/log/suricata/*.json
{
    hourly
    rotate 0
    missingok
    nocompress
    size=500M
    sharedscripts
    postrotate
            /bin/kill -HUP `cat /var/run/suricata.pid 2>/dev/null` 2>/dev/null || true
    endscript
}
"""


class InstallSuricataStep:
    step_id = "60_install_suricata"
    name = "install_suricata"
    # Written last.
    markers = (LOGROTATE_PATH,)

    def _install_suricata_update(self, ctx) -> None:
        src = "/opt/suricata-update"
        if not ctx.path(src).is_dir():
            ctx.runner.run(["git", "clone", SURICATA_UPDATE_REPO, src])
        ctx.runner.run(["pip3", "install", "pyyaml"])
        ctx.runner.run(["python3", "setup.py", "install"], cwd=str(ctx.path(src)))

    def run(self, ctx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        logger.info("Installing Suricata...")
        ctx.apt.install(["suricata"])
        ctx.apt.ensure_installed("suricata", clean_first=True)

        self._install_suricata_update(ctx)

        ctx.edit(
            [
                CopyFile(ctx.resource("suricata/suricata.yaml"), "/etc/suricata/suricata.yaml"),
                ShellVarSet("/etc/default/suricata", "iface", "eth1"),
            ]
        )
        ctx.runner.run(["suricata-update", "update-sources"])
        # Protocol decode duplicates what Zeek already logs.
        ctx.edit(
            [
                AppendText(
                    "/etc/suricata/disable.conf",
                    "re:protocol-command-decode\n",
                    unless_present="re:protocol-command-decode",
                    create=True,
                )
            ]
        )
        ctx.runner.run(["suricata-update", "enable-source", "et/open"])
        ctx.runner.run(["suricata-update"])

        ctx.runner.run(["service", "suricata", "stop"], check=False)
        ctx.runner.run(["service", "suricata", "start"])
        try:
            ctx.wait_until(lambda: ctx.services.is_running("suricata"), what="suricata", deadline=cfg.service_deadline)
        except TimeoutError as e:
            raise ServiceNotRunningError("Suricata attempted to start but is not running") from e

        ctx.edit([WriteFile(LOGROTATE_PATH, LOGROTATE_POLICY)])
        return state
