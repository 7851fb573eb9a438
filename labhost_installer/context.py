from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import httpx

from .config import LabConfig
from .lib.command import CommandRunner, SubprocessRunner
from .lib.edits import Edit, apply_edits, host_path
from .lib.net import Resolver, poll_until
from .lib.pkg import NONINTERACTIVE_ENV, AptPackages
from .lib.services import Systemd
from .lib.splunk import SplunkCli


@dataclass
class HostCtx:
    """Everything a stage may touch on the host being provisioned."""

    cfg: LabConfig
    runner: CommandRunner
    http: httpx.Client
    root: Path = Path("/")

    def __post_init__(self) -> None:
        self.root = Path(self.root)
        self.apt = AptPackages(self.runner)
        self.services = Systemd(self.runner)
        self.dns = Resolver(self.runner)
        self.splunk = SplunkCli(self.runner, home=self.cfg.splunk_home, auth=self.cfg.splunk_auth)

    @property
    def dry_run(self) -> bool:
        return self.cfg.dry_run

    def path(self, host_abs_path: str) -> Path:
        return host_path(self.root, host_abs_path)

    def resource(self, rel: str) -> str:
        """Absolute host path of a companion resource file."""
        return f"{self.cfg.resources_dir.rstrip('/')}/{rel.lstrip('/')}"

    def edit(self, edits: Iterable[Edit]) -> int:
        return apply_edits(self.root, edits, dry_run=self.dry_run)

    def poll_args(self, deadline: Optional[float]) -> Dict[str, Any]:
        return {
            "interval": self.cfg.poll_interval,
            "deadline": deadline,
            "backoff": self.cfg.poll_backoff,
            "max_interval": self.cfg.poll_max_interval,
        }

    def wait_until(self, check, *, what: str, deadline: Optional[float]) -> int:
        return poll_until(check, what=what, **self.poll_args(deadline))


def build_host_ctx(cfg: LabConfig) -> HostCtx:
    runner = SubprocessRunner(env=NONINTERACTIVE_ENV, dry_run=cfg.dry_run)
    http = httpx.Client(verify=cfg.tls_verify, timeout=httpx.Timeout(30.0, connect=10.0))
    return HostCtx(cfg=cfg, runner=runner, http=http, root=Path(cfg.root))
