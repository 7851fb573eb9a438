from __future__ import annotations

from typing import Any, Dict

from ..lib.pkg import ensure_all_installed

REQUIRED_PACKAGES = (
    "jq",
    "whois",
    "build-essential",
    "git",
    "unzip",
    "yq",
    "mysql-server",
    "redis-server",
    "python3-pip",
)


class PrerequisiteCheckStep:
    step_id = "20_test_prerequisites"
    name = "test_prerequisites"
    markers = ()

    def run(self, ctx, state: Dict[str, Any]) -> Dict[str, Any]:
        ensure_all_installed(ctx.apt, REQUIRED_PACKAGES)
        return state
