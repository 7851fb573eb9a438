from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from dotenv import dotenv_values

logger = logging.getLogger(__name__)


VARIABLES_PATHS = (
    "/vagrant/logger_variables.sh",
    "/home/vagrant/logger_variables.sh",
)

# Keys read from the variables file / process environment.
SECRET_KEYS = ("MAXMIND_LICENSE", "BASE64_ENCODED_SPLUNK_LICENSE")

PINNED_SPLUNK_URL = (
    "https://download.splunk.com/products/splunk/releases/8.0.2/linux/"
    "splunk-8.0.2-a7f645ddaf91-linux-2.6-amd64.deb&wget=true"
)
PINNED_FLEET_VERSION = "4.14.0"
PINNED_VELOCIRAPTOR_URL = (
    "https://github.com/Velocidex/velociraptor/releases/download/v0.6.9/"
    "velociraptor-v0.6.9-linux-amd64"
)


def _section(raw: Mapping[str, Any], name: str) -> Dict[str, Any]:
    return dict(raw.get(name) or {})


@dataclass(frozen=True)
class LabConfig:
    """Typed view over the raw settings mapping.

    Every option a stage reads is exposed as a property with its default, so the
    complete set of recognized options is visible here.
    """

    raw: Dict[str, Any] = field(default_factory=dict)
    secrets: Dict[str, str] = field(default_factory=dict)

    # -- host --------------------------------------------------------------

    @property
    def root(self) -> str:
        return str(self.raw.get("root") or "/")

    @property
    def resources_dir(self) -> str:
        return str(self.raw.get("resources_dir") or "/vagrant/resources")

    @property
    def dry_run(self) -> bool:
        return bool(self.raw.get("dry_run", False))

    @property
    def tls_verify(self) -> bool:
        return bool(self.raw.get("tls_verify", False))

    # -- network -----------------------------------------------------------

    @property
    def eth1_ip(self) -> str:
        return str(_section(self.raw, "network").get("eth1_ip") or "192.168.56.105")

    @property
    def public_resolvers(self) -> List[str]:
        return list(_section(self.raw, "network").get("public_resolvers") or ["8.8.8.8", "8.8.4.4"])

    @property
    def lab_resolver(self) -> str:
        return str(_section(self.raw, "network").get("lab_resolver") or "192.168.56.102")

    @property
    def esxi_eth2_mac(self) -> str:
        return str(_section(self.raw, "network").get("esxi_eth2_mac") or "00:50:56:a3:b1:c4")

    @property
    def dns_check_name(self) -> str:
        return str(_section(self.raw, "network").get("dns_check_name") or "github.com")

    # -- readiness ---------------------------------------------------------

    @property
    def poll_interval(self) -> float:
        return float(_section(self.raw, "readiness").get("interval", 1.0))

    @property
    def poll_backoff(self) -> float:
        return float(_section(self.raw, "readiness").get("backoff", 1.0))

    @property
    def poll_max_interval(self) -> Optional[float]:
        v = _section(self.raw, "readiness").get("max_interval")
        return None if v is None else float(v)

    @property
    def dns_deadline(self) -> Optional[float]:
        return self._deadline("dns_deadline", 300.0)

    @property
    def http_deadline(self) -> Optional[float]:
        return self._deadline("http_deadline", 600.0)

    @property
    def service_deadline(self) -> Optional[float]:
        return self._deadline("service_deadline", 30.0)

    def _deadline(self, key: str, default: float) -> Optional[float]:
        readiness = _section(self.raw, "readiness")
        if key not in readiness:
            return default
        # An explicit null keeps the unbounded wait.
        v = readiness[key]
        return None if v is None else float(v)

    # -- splunk ------------------------------------------------------------

    @property
    def splunk_home(self) -> str:
        return str(_section(self.raw, "splunk").get("home") or "/opt/splunk")

    @property
    def splunk_auth(self) -> str:
        return str(_section(self.raw, "splunk").get("auth") or "admin:changeme")

    @property
    def splunk_download_page(self) -> str:
        return str(
            _section(self.raw, "splunk").get("download_page")
            or "https://www.splunk.com/en_us/download/splunk-enterprise.html"
        )

    @property
    def splunk_pinned_url(self) -> str:
        return str(_section(self.raw, "splunk").get("pinned_url") or PINNED_SPLUNK_URL)

    # -- fleet -------------------------------------------------------------

    @property
    def fleet_release_api(self) -> str:
        return str(
            _section(self.raw, "fleet").get("release_api")
            or "https://api.github.com/repos/fleetdm/fleet/releases/latest"
        )

    @property
    def fleet_pinned_version(self) -> str:
        return str(_section(self.raw, "fleet").get("pinned_version") or PINNED_FLEET_VERSION)

    @property
    def fleet_admin_email(self) -> str:
        return str(_section(self.raw, "fleet").get("admin_email") or "admin@detectionlab.network")

    @property
    def fleet_admin_password(self) -> str:
        return str(_section(self.raw, "fleet").get("admin_password") or "Fl33tpassword!")

    @property
    def fleet_org_name(self) -> str:
        return str(_section(self.raw, "fleet").get("org_name") or "DetectionLab")

    @property
    def fleet_enroll_secret(self) -> str:
        return str(
            _section(self.raw, "fleet").get("enroll_secret") or "enrollmentsecretenrollmentsecret"
        )

    @property
    def mysql_password(self) -> str:
        return str(_section(self.raw, "fleet").get("mysql_password") or "fleet")

    # -- velociraptor / guacamole / zeek -------------------------------------

    @property
    def velociraptor_releases_page(self) -> str:
        return str(
            _section(self.raw, "velociraptor").get("releases_page")
            or "https://github.com/Velocidex/velociraptor/releases/"
        )

    @property
    def velociraptor_pinned_url(self) -> str:
        return str(_section(self.raw, "velociraptor").get("pinned_url") or PINNED_VELOCIRAPTOR_URL)

    @property
    def guacamole_version(self) -> str:
        return str(_section(self.raw, "guacamole").get("version") or "1.3.0")

    @property
    def zeek_repo_distro(self) -> str:
        return str(_section(self.raw, "zeek").get("repo_distro") or "xUbuntu_20.04")

    # -- optional secrets --------------------------------------------------

    @property
    def maxmind_license(self) -> Optional[str]:
        return self.secrets.get("MAXMIND_LICENSE") or None

    @property
    def splunk_license_b64(self) -> Optional[str]:
        return self.secrets.get("BASE64_ENCODED_SPLUNK_LICENSE") or None


def load_variables(
    paths: Sequence[str] = VARIABLES_PATHS,
    environ: Mapping[str, str] | None = None,
) -> Dict[str, str]:
    """Read optional secrets from the first variables file found, then the environment.

    The variables file is shell syntax (`export KEY=value` or `KEY=value`).
    The process environment wins over the file.
    """

    found: Dict[str, str] = {}
    for candidate in paths:
        p = Path(candidate)
        if p.is_file():
            values = dotenv_values(p)
            found = {k: v for k, v in values.items() if k in SECRET_KEYS and v}
            logger.info("Loaded variables from %s", p)
            break
    else:
        logger.info("Unable to locate logger_variables.sh (looked in %s)", ", ".join(paths))

    env = os.environ if environ is None else environ
    for key in SECRET_KEYS:
        if env.get(key):
            found[key] = env[key]
    return found


def load_config(
    path: str | None = None,
    *,
    overrides: Mapping[str, Any] | None = None,
    variables_paths: Sequence[str] = VARIABLES_PATHS,
    environ: Mapping[str, str] | None = None,
) -> LabConfig:
    raw: Dict[str, Any] = {}
    if path:
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(path)
        if p.suffix.lower() not in {".yaml", ".yml"}:
            raise ValueError("lab config must be YAML")

        import yaml

        raw = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            raise ValueError(f"{path} must contain a mapping/object")

    for key, value in (overrides or {}).items():
        if value is not None:
            raw[key] = value

    secrets = load_variables(variables_paths, environ)
    cfg = LabConfig(raw=raw, secrets=secrets)

    if not cfg.maxmind_license:
        logger.info(
            "Note: no MaxMind license key configured, so the ASNgen Splunk app may not work "
            "correctly. It is optional and everything else should function correctly."
        )
    return cfg
