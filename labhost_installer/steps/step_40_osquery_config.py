from __future__ import annotations

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


OSQUERY_CONFIG_REPO = "https://github.com/palantir/osquery-configuration.git"
OSQUERY_CONFIG_DIR = "/opt/osquery-configuration"


class DownloadOsqueryConfigStep:
    step_id = "40_download_palantir_osquery_config"
    name = "download_palantir_osquery_config"
    markers = (OSQUERY_CONFIG_DIR,)

    def run(self, ctx, state: Dict[str, Any]) -> Dict[str, Any]:
        if ctx.path(f"{OSQUERY_CONFIG_DIR}/.git").is_dir():
            # Forced re-run over an existing checkout.
            logger.info("Updating Palantir osquery configs...")
            ctx.runner.run(["git", "-C", OSQUERY_CONFIG_DIR, "pull", "--ff-only"])
            return state

        logger.info("Downloading Palantir osquery configs...")
        ctx.runner.run(["git", "clone", OSQUERY_CONFIG_REPO, OSQUERY_CONFIG_DIR])
        return state
