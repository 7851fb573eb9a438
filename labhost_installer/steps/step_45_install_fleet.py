from __future__ import annotations

import logging
import tarfile
from pathlib import Path
from typing import Any, Dict, List

from ..errors import ArtifactResolutionError
from ..lib.artifacts import download, expect_single, github_release_assets, resolve_artifact
from ..lib.edits import AppendText, Chmod, CopyFile, CopyTree, Edit, EnsureDir, ReplaceText, Touch, YamlSet
from .step_40_osquery_config import OSQUERY_CONFIG_DIR

logger = logging.getLogger(__name__)


FLEET_URL = "https://127.0.0.1:8412"
FLEET_DIR = "/opt/fleet"
FLEET_DIST_DIR = "/opt/fleet-dist"
FLEET_LOG_DIR = "/var/log/fleet"

ENDPOINT_CONFIGS = (
    f"{OSQUERY_CONFIG_DIR}/Fleet/Endpoints/MacOS/osquery.yaml",
    f"{OSQUERY_CONFIG_DIR}/Fleet/Endpoints/Windows/osquery.yaml",
)

# Lab-friendly query schedule: hourly -> 5 minutes, 8h/never -> 30 minutes.
# Applied in order; the last rule must not re-match the output of the earlier ones.
INTERVAL_REWRITES = (
    ("interval: 3600", "interval: 300"),
    ("interval: 28800", "interval: 1800"),
    ("interval: 0", "interval: 1800"),
)


def _pinned_asset(version: str, binary: str) -> str:
    return (
        f"https://github.com/fleetdm/fleet/releases/download/fleet-v{version}/"
        f"{binary}_v{version}_linux.tar.gz"
    )


def _extract_binary(archive: Path, binary: str, dest: Path) -> Path:
    """Extract the member named `binary` from a release tarball into `dest`."""

    with tarfile.open(archive, "r:gz") as tar:
        for member in tar.getmembers():
            if member.isfile() and Path(member.name).name == binary:
                src = tar.extractfile(member)
                if src is None:
                    break
                out = dest / binary
                out.write_bytes(src.read())
                return out
    raise ArtifactResolutionError(f"{binary} not found in {archive}")


class InstallFleetStep:
    """Fleet server + fleetctl, with the Palantir osquery packs imported."""

    step_id = "45_install_fleet_import_osquery_config"
    name = "install_fleet_import_osquery_config"
    markers = (FLEET_DIR,)

    def _mysql(self, ctx, sql: str, *, password: str | None, check: bool = True):
        argv = ["mysql", "-uroot"]
        if password is not None:
            argv.append(f"--password={password}")
        return ctx.runner.run([*argv, "-e", sql], check=check)

    def _fetch_binaries(self, ctx) -> None:
        cfg = ctx.cfg
        opt = ctx.path("/opt")
        # /opt/fleet is the server directory, so archives unpack elsewhere.
        ctx.edit([EnsureDir(FLEET_DIST_DIR)])
        for binary, exclude in (("fleetctl", None), ("fleet", "fleetctl")):
            url = resolve_artifact(
                name=binary,
                discover=github_release_assets(
                    ctx.http,
                    cfg.fleet_release_api,
                    name_pattern=rf"^{binary}_.*linux\.tar\.gz$",
                    exclude=exclude,
                ),
                validate=expect_single(scheme="https:", suffix="linux.tar.gz"),
                pinned=_pinned_asset(cfg.fleet_pinned_version, binary),
            )
            archive = download(ctx.http, url, opt, dry_run=ctx.dry_run)
            if ctx.dry_run:
                continue
            extracted = _extract_binary(archive, binary, ctx.path(FLEET_DIST_DIR))
            ctx.edit(
                [
                    CopyFile(f"{FLEET_DIST_DIR}/{extracted.name}", f"/usr/local/bin/{binary}"),
                    Chmod(f"/usr/local/bin/{binary}", executable=True),
                ]
            )

    def _hosts_entries(self) -> List[Edit]:
        return [
            AppendText("/etc/hosts", "\n127.0.0.1       fleet\n", unless_present="fleet"),
            AppendText("/etc/hosts", "\n127.0.0.1       logger\n", unless_present="logger"),
        ]

    def _fleetctl(self, ctx, *args: str, check: bool = True):
        return ctx.runner.run(["fleetctl", *args], check=check)

    def _apply_agent_options(self, ctx) -> None:
        cfg = ctx.cfg
        current = self._fleetctl(ctx, "get", "config")
        tmp = "/tmp/config.yaml"
        if not ctx.dry_run:
            p = ctx.path(tmp)
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_text(current.stdout, encoding="utf-8")
        # Quiet osquery INFO logs and fix snapshot event formatting.
        ctx.edit(
            [
                YamlSet(
                    tmp,
                    (
                        ("spec.agent_options.config.options.enroll_secret", cfg.fleet_enroll_secret),
                        ("spec.agent_options.config.options.logger_snapshot_event_type", True),
                    ),
                )
            ]
        )
        self._fleetctl(ctx, "apply", "-f", tmp)

    def run(self, ctx, state: Dict[str, Any]) -> Dict[str, Any]:
        cfg = ctx.cfg
        logger.info("Installing Fleet...")
        ctx.edit(self._hosts_entries())

        # Fails once root already has the password (a forced re-run).
        self._mysql(
            ctx,
            f"ALTER USER 'root'@'localhost' IDENTIFIED WITH mysql_native_password BY '{cfg.mysql_password}';",
            password=None,
            check=False,
        )
        self._mysql(ctx, "create database if not exists fleet;", password=cfg.mysql_password)

        self._fetch_binaries(ctx)

        ctx.runner.run(
            [
                "fleet",
                "prepare",
                "db",
                "--mysql_address=127.0.0.1:3306",
                "--mysql_database=fleet",
                "--mysql_username=root",
                f"--mysql_password={cfg.mysql_password}",
            ]
        )

        ctx.edit(
            [
                CopyTree(ctx.resource("fleet"), FLEET_DIR, include="server.*"),
                CopyFile(ctx.resource("fleet/fleet.service"), "/etc/systemd/system/fleet.service"),
                EnsureDir(FLEET_LOG_DIR),
            ]
        )
        ctx.services.enable_and_start("fleet.service")

        logger.info("Waiting for fleet service to start...")
        ctx.wait_until(
            lambda: "setup" in ctx.http.get(FLEET_URL).text,
            what="fleet",
            deadline=cfg.http_deadline,
        )

        self._fleetctl(ctx, "config", "set", "--address", f"https://{cfg.eth1_ip}:8412")
        self._fleetctl(ctx, "config", "set", "--tls-skip-verify", "true")
        # An already initialized server refuses setup (a forced re-run); login still works.
        setup = self._fleetctl(
            ctx,
            "setup",
            "--email",
            cfg.fleet_admin_email,
            "--name",
            "admin",
            "--password",
            cfg.fleet_admin_password,
            "--org-name",
            cfg.fleet_org_name,
            check=False,
        )
        if not setup.ok:
            logger.warning("fleetctl setup failed; assuming Fleet was already set up")
        self._fleetctl(ctx, "login", "--email", cfg.fleet_admin_email, "--password", cfg.fleet_admin_password)

        # Must match the secret deployed to the Windows hosts.
        r = self._mysql(
            ctx,
            "use fleet; INSERT INTO enroll_secrets(created_at, secret, team_id) "
            f'VALUES ("2022-05-30 21:20:23", "{cfg.fleet_enroll_secret}", NULL);',
            password=cfg.mysql_password,
            check=False,
        )
        if r.ok:
            logger.info("Updated enrollment secret")
        else:
            logger.error("Error adding the custom enrollment secret. Agent enrollment will have problems.")

        ctx.edit([ReplaceText(p, old, new) for old, new in INTERVAL_REWRITES for p in ENDPOINT_CONFIGS])

        self._apply_agent_options(ctx)

        for config in ENDPOINT_CONFIGS:
            self._fleetctl(ctx, "apply", "-f", config)
        packs = sorted(ctx.path(f"{OSQUERY_CONFIG_DIR}/Fleet/Endpoints/packs").glob("*.yaml"))
        for pack in packs:
            self._fleetctl(ctx, "apply", "-f", f"{OSQUERY_CONFIG_DIR}/Fleet/Endpoints/packs/{pack.name}")

        # Splunk only monitors files that already exist.
        ctx.edit([Touch(f"{FLEET_LOG_DIR}/osquery_result"), Touch(f"{FLEET_LOG_DIR}/osquery_status")])
        return state
