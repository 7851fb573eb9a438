from __future__ import annotations

import logging
from typing import Any, Dict

from ..lib.assets import copy_optional
from ..lib.edits import Chmod, ReplaceText

logger = logging.getLogger(__name__)


class ModifyMotdStep:
    step_id = "15_modify_motd"
    name = "modify_motd"
    markers = ()

    def run(self, ctx, state: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("Updating the MOTD...")
        ctx.edit(
            [
                ReplaceText("/root/.bashrc", "#force_color_prompt=yes", "force_color_prompt=yes", missing_ok=True),
                ReplaceText(
                    "/home/vagrant/.bashrc", "#force_color_prompt=yes", "force_color_prompt=yes", missing_ok=True
                ),
            ]
        )

        help_text = "/etc/update-motd.d/10-help-text"
        if ctx.path(help_text).exists():
            ctx.edit([Chmod(help_text, executable=False)])

        motd = "/etc/update-motd.d/20-detectionlab"
        if copy_optional(
            ctx.root,
            ctx.resource("logger/20-detectionlab"),
            motd,
            what="lab MOTD",
            dry_run=ctx.dry_run,
        ):
            ctx.edit([Chmod(motd, executable=True)])
        return state
