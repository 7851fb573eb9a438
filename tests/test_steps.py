"""
Stage behaviour against a scratch host root, scripted commands and mocked HTTP.
"""

from __future__ import annotations

import io
import tarfile

import pytest
import yaml

from labhost_installer.errors import (
    ArtifactResolutionError,
    EditPreconditionError,
    NetworkConfigError,
    ServiceNotRunningError,
    StageAbandoned,
)
from labhost_installer.lib.edits import IniDelSection, IniSet, ReplaceText, apply_edits
from labhost_installer.pipeline import run_pipeline
from labhost_installer.state_store import ensure_defaults, is_step_completed
from labhost_installer.steps import (
    AptPrerequisitesStep,
    ConfigureDnsStep,
    ConfigureSplunkInputsStep,
    DownloadOsqueryConfigStep,
    FixEth1StaticIpStep,
    InstallFleetStep,
    InstallGuacamoleStep,
    InstallSplunkStep,
    InstallSuricataStep,
    InstallVelociraptorStep,
    InstallZeekStep,
    ModifyMotdStep,
)
from labhost_installer.steps.step_10_apt_prerequisites import PACKAGES
from labhost_installer.steps.step_45_install_fleet import INTERVAL_REWRITES, _extract_binary
from labhost_installer.steps.step_70_install_zeek import node_layout

from conftest import read, write

SPLUNK_PAGE = "https://www.splunk.com/en_us/download/splunk-enterprise.html"
SPLUNK_DEB = "https://download.splunk.com/products/splunk/releases/9.0.0/linux/splunk-9.0.0-linux-2.6-amd64.deb"


def _unpack_splunk(root):
    """Stand-in for `dpkg -i splunk.deb`: lay down the files later stages edit."""

    def _action(argv):
        home = "/opt/splunk"
        write(root, f"{home}/bin/splunk", "#!/bin/sh\n")
        write(root, f"{home}/etc/system/default/limits.conf", "[lookup]\nmax_memtable_bytes = 10000000\n")
        apps = f"{home}/etc/apps"
        write(root, f"{apps}/TA-asngen/default/asngen.conf", "[asngen]\nlicense_key =\n")
        write(root, f"{apps}/Splunk_TA_windows/default/macros.conf", "[wineventlog_index_windows]\ndefinition = index=wineventlog_windows\n")
        write(
            root,
            f"{apps}/ThreatHunting/default/data/ui/views/computer_investigator.xml",
            "<query>index=windows host_fqdn=$host$) event_id=1</query>\n",
        )
        write(root, f"{apps}/ThreatHunting/default/props.conf", "FIELDALIAS-host = host_fqdn\n")
        write(root, f"{apps}/force_directed_viz/default/savedsearches.conf", "[bad]\n")
        return 0, ""

    return _action


def _resources(root):
    for name in (
        "windows_ta_props.conf",
        "sysmon_ta_props.conf",
        "zeek_ta_props.conf",
        "macros.conf",
        "props.conf",
        "transforms.conf",
    ):
        write(root, f"/vagrant/resources/splunk_server/{name}", f"# {name}\n")


class TestInstallSplunk:
    def test_existing_binary_skips_the_install(self, make_ctx, runner, routes, host_root):
        write(host_root, "/opt/splunk/bin/splunk")

        result = run_pipeline(ctx=make_ctx(), state=ensure_defaults({}), steps=[InstallSplunkStep()])

        assert result.skipped_steps == ["30_install_splunk"]
        assert runner.calls == []
        assert routes.requested == []

    @pytest.mark.parametrize("force", [True, False])
    def test_binary_from_an_interrupted_or_forced_run_proves_nothing(self, make_ctx, runner, routes, host_root, force):
        write(host_root, "/opt/splunk/bin/splunk")
        routes.add(SPLUNK_PAGE, text=f'<a data-link="{SPLUNK_DEB}">Download .deb</a>\n')
        routes.add(SPLUNK_DEB, content=b"splunk-deb")
        runner.on("dpkg", "-i", returncode=1)
        state = ensure_defaults({})
        if not force:
            state["execution"]["in_progress"] = ["30_install_splunk"]

        with pytest.raises(ArtifactResolutionError):
            run_pipeline(ctx=make_ctx(), state=state, steps=[InstallSplunkStep()], force=force)

        assert runner.ran("dpkg", "-i")
        assert not is_step_completed(state, "30_install_splunk")

    def test_fresh_install(self, make_ctx, runner, routes, host_root):
        routes.add(SPLUNK_PAGE, text=f'<a data-link="{SPLUNK_DEB}">Download .deb</a>\n')
        routes.add(SPLUNK_DEB, content=b"splunk-deb")
        runner.on_call("dpkg", "-i", action=_unpack_splunk(host_root))
        _resources(host_root)
        ctx = make_ctx(secrets={"MAXMIND_LICENSE": "mm-key", "BASE64_ENCODED_SPLUNK_LICENSE": "TElDRU5TRQ=="})

        InstallSplunkStep().run(ctx, ensure_defaults({}))

        assert (host_root / "opt/splunk-9.0.0-linux-2.6-amd64.deb").read_bytes() == b"splunk-deb"
        assert runner.ran("dpkg", "-i", str(host_root / "opt/splunk-9.0.0-linux-2.6-amd64.deb"))
        assert runner.count("/opt/splunk/bin/splunk", "add", "index") == 10
        assert runner.count("/opt/splunk/bin/splunk", "install", "app") == 10
        assert runner.ran("/opt/splunk/bin/splunk", "add", "licenses", "/tmp/Splunk.License")
        assert not (host_root / "tmp/Splunk.License").exists()
        assert runner.calls[-1] == ["/opt/splunk/bin/splunk", "enable", "boot-start"]

        apps = "/opt/splunk/etc/apps"
        assert "license_key = mm-key" in read(host_root, f"{apps}/TA-asngen/local/asngen.conf")
        view = read(host_root, f"{apps}/ThreatHunting/default/data/ui/views/computer_investigator.xml")
        assert view == "<query>`windows` ComputerName=$host$*) EventCode=1</query>\n"
        assert read(host_root, f"{apps}/ThreatHunting/default/props.conf") == "FIELDALIAS-host = host_fqdn\n"
        assert "definition = index=wineventlog\n" in read(host_root, f"{apps}/Splunk_TA_windows/local/macros.conf")
        assert not (host_root / f"{apps.lstrip('/')}/force_directed_viz/default/savedsearches.conf").exists()
        assert "max_memtable_bytes = 30000000" in read(host_root, "/opt/splunk/etc/system/local/limits.conf")
        assert "[splunktcp://9997]" in read(host_root, "/opt/splunk/etc/apps/search/local/inputs.conf")

    def test_failed_package_install_is_fatal(self, make_ctx, runner, routes, host_root):
        routes.add(SPLUNK_PAGE, text="nothing here")
        routes.add(
            "https://download.splunk.com/products/splunk/releases/8.0.2/linux/splunk-8.0.2-a7f645ddaf91-linux-2.6-amd64.deb&wget=true",
            content=b"pinned",
        )
        runner.on("dpkg", "-i", returncode=1)
        ctx = make_ctx()

        with pytest.raises(ArtifactResolutionError) as exc:
            InstallSplunkStep().run(ctx, ensure_defaults({}))

        assert "install Splunk" in str(exc.value)
        assert (host_root / "opt/splunk-8.0.2-a7f645ddaf91-linux-2.6-amd64.deb").exists()


class TestFixEth1:
    def test_kvm_needs_nothing(self, make_ctx, runner):
        runner.on("lsmod", stdout="kvm_intel 282624 0\nkvm 663552 1 kvm_intel\n")
        state = FixEth1StaticIpStep().run(make_ctx(), ensure_defaults({}))

        assert runner.calls == [["lsmod"]]
        assert state["execution"]["decisions"]["hypervisor"] == "kvm"

    def test_static_lease_is_added_once(self, make_ctx, runner, host_root):
        runner.on("ip", "-4", "addr", stdout="    inet 192.168.56.105/24 brd 192.168.56.255 scope global eth1\n")
        runner.on("dig", "+short", stdout="140.82.112.3\n")
        ctx = make_ctx()

        FixEth1StaticIpStep().run(ctx, ensure_defaults({}))
        FixEth1StaticIpStep().run(ctx, ensure_defaults({}))

        assert read(host_root, "/etc/dhcp/dhclient.conf").count('interface "eth1"') == 1
        assert runner.count("netplan", "apply") == 1
        assert not runner.ran("ip", "link", "set")

    def test_wrong_address_after_bounce_is_fatal(self, make_ctx, runner):
        runner.on("ip", "-4", "addr", stdout="    inet 10.0.2.15/24 scope global eth1\n")

        with pytest.raises(NetworkConfigError):
            FixEth1StaticIpStep().run(make_ctx(), ensure_defaults({}))

        assert runner.ran("ip", "link", "set", "dev", "eth1", "up")


class TestVelociraptor:
    PAGE = "https://github.com/Velocidex/velociraptor/releases"
    BINARY = "https://github.com/Velocidex/velociraptor/releases/download/v0.7.0/velociraptor-v0.7.0-linux-amd64"

    def test_non_elf_download_abandons_the_stage(self, make_ctx, routes, runner):
        routes.add(self.PAGE, text=f'<a href="{self.BINARY[len("https://github.com"):]}">linux-amd64</a>\n')
        routes.add(self.BINARY, text="<html>rate limited</html>")

        with pytest.raises(StageAbandoned):
            InstallVelociraptorStep().run(make_ctx(), ensure_defaults({}))

        assert not runner.ran("dpkg")

    ELF = b"\x7fELF" + bytes([2, 1, 1, 0]) + b"\x00" * 8 + (2).to_bytes(2, "little") + b"\x3e\x00" + b"\x00" * 32

    def _pinned_release(self, routes, runner, host_root):
        routes.add(self.PAGE, text="no links")
        routes.add(
            "https://github.com/Velocidex/velociraptor/releases/download/v0.6.9/velociraptor-v0.6.9-linux-amd64",
            content=self.ELF,
        )
        write(host_root, "/vagrant/resources/velociraptor/server.config.yaml", "Frontend: {}\n")

        def build_deb(argv):
            write(host_root, "/opt/velociraptor/velociraptor_0.6.9_server.deb", "deb")
            return 0, ""

        runner.on_call("./velociraptor-v0.6.9-linux-amd64", action=build_deb)

    def test_install(self, make_ctx, routes, runner, host_root):
        self._pinned_release(routes, runner, host_root)

        InstallVelociraptorStep().run(make_ctx(), ensure_defaults({}))

        assert (host_root / "opt/velociraptor/velociraptor").read_bytes() == self.ELF
        assert not (host_root / "opt/velociraptor/velociraptor-v0.6.9-linux-amd64").exists()
        assert (host_root / "opt/velociraptor/server.config.yaml").exists()
        assert runner.calls[-1] == ["dpkg", "-i", "velociraptor_0.6.9_server.deb"]
        assert runner.cwds[-1] == str(host_root / "opt/velociraptor")

    def test_failed_dpkg_is_retried_on_the_next_run(self, make_ctx, routes, runner, host_root):
        self._pinned_release(routes, runner, host_root)
        runner.on("dpkg", "-i", sequence=[(1, ""), (0, "")])
        ctx = make_ctx()
        state = ensure_defaults({})

        first = run_pipeline(ctx=ctx, state=state, steps=[InstallVelociraptorStep()])
        assert first.abandoned_steps == ["50_install_velociraptor"]
        assert not (host_root / "opt/velociraptor/velociraptor").exists()

        # Even with the marker in place, an abandoned stage is run again.
        write(host_root, "/opt/velociraptor/velociraptor")
        second = run_pipeline(ctx=ctx, state=state, steps=[InstallVelociraptorStep()])
        assert second.ran_steps == ["50_install_velociraptor"]
        assert runner.count("dpkg", "-i") == 2
        assert is_step_completed(state, "50_install_velociraptor")


class TestSplunkInputs:
    def test_inputs_are_configured(self, make_ctx, runner, host_root):
        write(host_root, "/opt/splunk/etc/apps/search/local/inputs.conf", "[splunktcp://9997]\nconnection_host = ip\n")
        write(host_root, "/opt/splunk/etc/apps/search/local/props.conf", "# props\n")

        ConfigureSplunkInputsStep().run(make_ctx(), ensure_defaults({}))

        inputs = read(host_root, "/opt/splunk/etc/apps/search/local/inputs.conf")
        assert inputs.startswith("[splunktcp://9997]\nconnection_host = ip\n")
        assert "[monitor:///var/log/suricata]\nindex = suricata\nsourcetype = suricata:json\nwhitelist = eve.json\ndisabled = 0\n" in inputs
        assert "TRUNCATE = 0" in read(host_root, "/opt/splunk/etc/apps/search/local/props.conf")
        zeek = read(host_root, "/opt/splunk/etc/apps/Splunk_TA_bro/local/inputs.conf")
        assert "index = zeek" in zeek
        assert r"blacklist = .*(communication|stderr)\.log$" in zeek
        assert runner.count("/opt/splunk/bin/splunk", "add", "monitor") == 2
        assert runner.calls[-1] == ["/opt/splunk/bin/splunk", "restart"]

    def test_before_splunk_is_installed(self, make_ctx, runner):
        with pytest.raises(EditPreconditionError):
            ConfigureSplunkInputsStep().run(make_ctx(), ensure_defaults({}))
        assert runner.calls == []


def test_zeek_node_layout():
    with_eth0 = node_layout(monitor_eth0=True, procs=4)
    assert with_eth0[0] == IniDelSection("/opt/zeek/etc/node.cfg", "zeek")
    assert IniSet("/opt/zeek/etc/node.cfg", "worker-eth0", "interface", "eth0") in with_eth0
    assert IniSet("/opt/zeek/etc/node.cfg", "worker-eth1", "lb_procs", "4") in with_eth0

    cloud = node_layout(monitor_eth0=False, procs=2)
    assert not any(getattr(e, "section", "") == "worker-eth0" for e in cloud)


def test_suricata_not_running_is_fatal(make_ctx, runner, host_root):
    write(host_root, "/vagrant/resources/suricata/suricata.yaml", "vars: {}\n")
    write(host_root, "/etc/default/suricata", "RUN=yes\niface=eth0\n")
    runner.on("pgrep", returncode=1)

    with pytest.raises(ServiceNotRunningError):
        InstallSuricataStep().run(make_ctx(), ensure_defaults({}))

    assert "iface=eth1" in read(host_root, "/etc/default/suricata")
    assert not (host_root / "etc/logrotate.d/suricata").exists()


FLEET_API = "https://api.github.com/repos/fleetdm/fleet/releases/latest"
FLEET_RELEASE = "https://github.com/fleetdm/fleet/releases/download/fleet-v4.20.0"
ENDPOINTS = "/opt/osquery-configuration/Fleet/Endpoints"


def _release_tarball(binary: str) -> bytes:
    buf = io.BytesIO()
    payload = f"{binary}-binary".encode()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        info = tarfile.TarInfo(f"{binary}_v4.20.0_linux/{binary}")
        info.size = len(payload)
        tar.addfile(info, io.BytesIO(payload))
    return buf.getvalue()


class TestFleet:
    def _fleet_release(self, routes):
        assets = [
            {"name": f"{b}_v4.20.0_linux.tar.gz", "browser_download_url": f"{FLEET_RELEASE}/{b}_v4.20.0_linux.tar.gz"}
            for b in ("fleet", "fleetctl")
        ]
        routes.add(FLEET_API, json={"assets": assets})
        for b in ("fleet", "fleetctl"):
            routes.add(f"{FLEET_RELEASE}/{b}_v4.20.0_linux.tar.gz", content=_release_tarball(b))
        routes.add("https://127.0.0.1:8412", text="<title>Fleet setup</title>")

    def _fleet_host(self, root):
        write(root, "/etc/hosts", "127.0.0.1 localhost\n")
        for name in ("server.cert", "server.key", "fleet.service"):
            write(root, f"/vagrant/resources/fleet/{name}", f"# {name}\n")
        write(root, f"{ENDPOINTS}/MacOS/osquery.yaml", "schedule:\n  interval: 3600\n")
        write(root, f"{ENDPOINTS}/Windows/osquery.yaml", "schedule:\n  interval: 28800\n")
        write(root, f"{ENDPOINTS}/packs/windows-application-security.yaml", "queries: []\n")
        write(root, f"{ENDPOINTS}/packs/performance-metrics.yaml", "queries: []\n")

    def test_existing_server_directory_skips_the_install(self, make_ctx, runner, host_root):
        (host_root / "opt/fleet").mkdir(parents=True)

        result = run_pipeline(ctx=make_ctx(), state=ensure_defaults({}), steps=[InstallFleetStep()])

        assert result.skipped_steps == ["45_install_fleet_import_osquery_config"]
        assert runner.calls == []

    def test_fresh_install(self, make_ctx, runner, routes, host_root):
        self._fleet_release(routes)
        self._fleet_host(host_root)
        runner.on("fleetctl", "get", "config", stdout="apiVersion: v1\nkind: config\nspec:\n  org_info:\n    org_name: DetectionLab\n")

        result = run_pipeline(ctx=make_ctx(), state=ensure_defaults({}), steps=[InstallFleetStep()])

        assert result.ran_steps == ["45_install_fleet_import_osquery_config"]
        assert read(host_root, "/usr/local/bin/fleet") == "fleet-binary"
        assert read(host_root, "/usr/local/bin/fleetctl") == "fleetctl-binary"
        assert sorted(p.name for p in (host_root / "opt/fleet").iterdir()) == ["server.cert", "server.key"]
        assert read(host_root, "/etc/systemd/system/fleet.service") == "# fleet.service\n"
        hosts = read(host_root, "/etc/hosts")
        assert "127.0.0.1       fleet" in hosts and "127.0.0.1       logger" in hosts

        assert runner.ran("fleet", "prepare", "db")
        assert runner.ran("systemctl", "start", "fleet.service")
        assert runner.ran("fleetctl", "setup")
        assert read(host_root, f"{ENDPOINTS}/MacOS/osquery.yaml") == "schedule:\n  interval: 300\n"
        assert read(host_root, f"{ENDPOINTS}/Windows/osquery.yaml") == "schedule:\n  interval: 1800\n"

        config = yaml.safe_load(read(host_root, "/tmp/config.yaml"))
        assert config["spec"]["org_info"] == {"org_name": "DetectionLab"}
        assert config["spec"]["agent_options"]["config"]["options"] == {
            "enroll_secret": "enrollmentsecretenrollmentsecret",
            "logger_snapshot_event_type": True,
        }

        applied = [c[3] for c in runner.calls if c[:3] == ["fleetctl", "apply", "-f"]]
        assert applied == [
            "/tmp/config.yaml",
            f"{ENDPOINTS}/MacOS/osquery.yaml",
            f"{ENDPOINTS}/Windows/osquery.yaml",
            f"{ENDPOINTS}/packs/performance-metrics.yaml",
            f"{ENDPOINTS}/packs/windows-application-security.yaml",
        ]
        assert (host_root / "var/log/fleet/osquery_result").exists()
        assert (host_root / "var/log/fleet/osquery_status").exists()

    def test_forced_rerun_tolerates_an_initialized_server(self, make_ctx, runner, routes, host_root):
        self._fleet_release(routes)
        self._fleet_host(host_root)
        (host_root / "opt/fleet").mkdir(parents=True)
        runner.on("mysql", "-uroot", "-e", returncode=1)
        runner.on("fleetctl", "setup", returncode=1)
        state = ensure_defaults({})

        result = run_pipeline(ctx=make_ctx(), state=state, steps=[InstallFleetStep()], force=True)

        assert result.ran_steps == ["45_install_fleet_import_osquery_config"]
        assert runner.ran("fleetctl", "login")
        assert is_step_completed(state, "45_install_fleet_import_osquery_config")

    def test_interval_rewrites_do_not_cascade(self, host_root):
        path = "/opt/osquery-configuration/Fleet/Endpoints/Windows/osquery.yaml"
        write(host_root, path, "a:\n  interval: 3600\nb:\n  interval: 28800\nc:\n  interval: 0\n")
        apply_edits(host_root, [ReplaceText(path, old, new) for old, new in INTERVAL_REWRITES])
        assert read(host_root, path) == "a:\n  interval: 300\nb:\n  interval: 1800\nc:\n  interval: 1800\n"

    def test_binary_is_extracted_from_the_release_tarball(self, tmp_path):
        payload = tmp_path / "fleetctl"
        payload.write_bytes(b"fleetctl-binary")
        archive = tmp_path / "fleetctl_v4.20.0_linux.tar.gz"
        with tarfile.open(archive, "w:gz") as tar:
            tar.add(payload, arcname="fleetctl_v4.20.0_linux/fleetctl")
        dest = tmp_path / "out"
        dest.mkdir()

        assert _extract_binary(archive, "fleetctl", dest).read_bytes() == b"fleetctl-binary"
        with pytest.raises(ArtifactResolutionError):
            _extract_binary(archive, "fleet", dest)


class TestConfigureDns:
    def test_netplan_and_resolv_conf(self, make_ctx, runner, host_root):
        write(host_root, "/etc/netplan/01-netcfg.yaml", "network:\n  version: 2\n  renderer: networkd\n")
        write(host_root, "/run/systemd/resolve/stub-resolv.conf", "nameserver 127.0.0.53\n")
        (host_root / "etc/resolv.conf").symlink_to(host_root / "run/systemd/resolve/stub-resolv.conf")

        state = ConfigureDnsStep().run(make_ctx(), ensure_defaults({}))

        netplan = yaml.safe_load(read(host_root, "/etc/netplan/01-netcfg.yaml"))
        assert netplan["network"]["renderer"] == "networkd"
        assert netplan["network"]["ethernets"]["eth1"] == {
            "dhcp4": True,
            "nameservers": {"addresses": ["8.8.8.8", "8.8.4.4"]},
        }
        resolv = host_root / "etc/resolv.conf"
        assert not resolv.is_symlink()
        assert resolv.read_text() == "nameserver 8.8.8.8\nnameserver 8.8.4.4\nnameserver 192.168.56.102\n"
        assert read(host_root, "/run/systemd/resolve/stub-resolv.conf") == "nameserver 127.0.0.53\n"
        assert runner.calls == [
            ["netplan", "apply"],
            ["systemctl", "disable", "systemd-resolved"],
            ["systemctl", "stop", "systemd-resolved"],
        ]
        assert state["execution"]["decisions"]["cloud"] is False

    def test_cloud_host_keeps_its_interfaces(self, make_ctx, runner, routes, host_root):
        routes.add("http://169.254.169.254", text="ami-id\n")

        ConfigureDnsStep().run(make_ctx(), ensure_defaults({}))

        assert not (host_root / "etc/netplan").exists()
        assert not runner.ran("netplan")
        assert read(host_root, "/etc/resolv.conf").startswith("nameserver 8.8.8.8\n")


def test_apt_prerequisites_order(make_ctx, runner):
    AptPrerequisitesStep().run(make_ctx(), ensure_defaults({}))

    assert [c[:2] for c in runner.calls] == [
        ["debconf-set-selections"],
        ["debconf-set-selections"],
        ["add-apt-repository", "-y"],
        ["add-apt-repository", "-y"],
        ["add-apt-repository", "-y"],
        ["apt-get", "clean"],
        ["apt-get", "-qq"],
        ["apt-get", "install"],
        ["apt-fast", "install"],
    ]
    assert [c[-1] for c in runner.calls[2:5]] == ["ppa:apt-fast/stable", "ppa:rmescandon/yq", "ppa:oisf/suricata-stable"]
    assert runner.calls[7] == ["apt-get", "install", "-y", "apt-fast"]
    assert runner.calls[8] == ["apt-fast", "install", "-y", *PACKAGES]


class TestModifyMotd:
    def test_motd(self, make_ctx, host_root):
        write(host_root, "/root/.bashrc", "#force_color_prompt=yes\n")
        help_text = write(host_root, "/etc/update-motd.d/10-help-text", "#!/bin/sh\n")
        help_text.chmod(0o755)
        write(host_root, "/vagrant/resources/logger/20-detectionlab", "#!/bin/sh\necho lab\n")

        ModifyMotdStep().run(make_ctx(), ensure_defaults({}))

        assert read(host_root, "/root/.bashrc") == "force_color_prompt=yes\n"
        assert not (host_root / "home/vagrant/.bashrc").exists()
        assert help_text.stat().st_mode & 0o111 == 0
        motd = host_root / "etc/update-motd.d/20-detectionlab"
        assert motd.read_text() == "#!/bin/sh\necho lab\n"
        assert motd.stat().st_mode & 0o111 == 0o111

    def test_missing_motd_resource_is_tolerated(self, make_ctx, runner, host_root):
        ModifyMotdStep().run(make_ctx(), ensure_defaults({}))

        assert not (host_root / "etc/update-motd.d/20-detectionlab").exists()
        assert runner.calls == []


class TestOsqueryConfig:
    def test_clone(self, make_ctx, runner):
        DownloadOsqueryConfigStep().run(make_ctx(), ensure_defaults({}))

        assert runner.calls == [
            ["git", "clone", "https://github.com/palantir/osquery-configuration.git", "/opt/osquery-configuration"]
        ]

    def test_forced_rerun_pulls_the_existing_checkout(self, make_ctx, runner, host_root):
        (host_root / "opt/osquery-configuration/.git").mkdir(parents=True)

        run_pipeline(
            ctx=make_ctx(), state=ensure_defaults({}), steps=[DownloadOsqueryConfigStep()], force=True
        )

        assert runner.calls == [["git", "-C", "/opt/osquery-configuration", "pull", "--ff-only"]]


ZEEK_KEY = "https://download.opensuse.org/repositories/security:/zeek/xUbuntu_20.04/Release.key"


def test_zeek_install_is_repeatable(make_ctx, runner, routes, host_root):
    routes.add(ZEEK_KEY, content=b"-----BEGIN PGP PUBLIC KEY BLOCK-----\n")
    write(host_root, "/opt/zeek/etc/node.cfg", "[zeek]\ntype=standalone\nhost=localhost\ninterface=eth0\n")
    write(host_root, "/vagrant/resources/zeek/zeek.service", "[Unit]\nDescription=zeek\n")
    ctx = make_ctx()

    InstallZeekStep().run(ctx, ensure_defaults({}))
    state = InstallZeekStep().run(ctx, ensure_defaults({}))

    local = read(host_root, "/opt/zeek/share/zeek/site/local.zeek")
    assert local.count("# labhost-installer site scripts") == 1
    assert local.count("@load ja3") == 1
    node_cfg = read(host_root, "/opt/zeek/etc/node.cfg")
    assert "[zeek]" not in node_cfg
    assert node_cfg.count("[worker-eth1]") == 1
    assert node_cfg.count("[worker-eth0]") == 1
    assert read(host_root, "/etc/apt/sources.list.d/security:zeek.list").count("deb ") == 1
    assert read(host_root, "/lib/systemd/system/zeek.service") == "[Unit]\nDescription=zeek\n"
    assert runner.count("apt-key", "add") == 2
    assert runner.ran("zkg", "install", "--force", "salesforce/ja3")
    assert state["execution"]["decisions"]["zeek_workers"]["eth0"] is True


GUACAMOLE = "https://apache.org/dyn/closer.lua/guacamole/1.3.0"


def _guacamole_source() -> bytes:
    buf = io.BytesIO()
    script = b"#!/bin/sh\nexit 1\n"
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        info = tarfile.TarInfo("guacamole-server-1.3.0/configure")
        info.size = len(script)
        info.mode = 0o755
        tar.addfile(info, io.BytesIO(script))
    return buf.getvalue()


def test_guacamole_build_failure_is_tolerated(make_ctx, runner, routes, host_root):
    routes.add(f"{GUACAMOLE}/source/guacamole-server-1.3.0.tar.gz?action=download", content=_guacamole_source())
    routes.add(f"{GUACAMOLE}/binary/guacamole-1.3.0.war?action=download", content=b"war")
    for name in ("user-mapping.xml", "guacamole.properties", "guacd.service"):
        write(host_root, f"/vagrant/resources/guacamole/{name}", f"<!-- {name} -->\n")
    runner.on("./configure", returncode=1)

    result = run_pipeline(ctx=make_ctx(), state=ensure_defaults({}), steps=[InstallGuacamoleStep()])

    assert result.ran_steps == ["80_install_guacamole"]
    assert (host_root / "opt/guacamole-server-1.3.0/configure").exists()
    assert runner.cwds[0] == str(host_root / "opt/guacamole-server-1.3.0")
    assert not runner.ran("make")
    assert runner.ran("ldconfig")
    assert (host_root / "var/lib/tomcat9/webapps/guacamole.war").read_bytes() == b"war"
    assert read(host_root, "/lib/systemd/system/guacd.service") == "<!-- guacd.service -->\n"
    link = host_root / "usr/share/tomcat9/.guacamole/guacamole.properties"
    assert link.is_symlink() and str(link.readlink()) == "/etc/guacamole/guacamole.properties"
    assert runner.calls[-1] == ["systemctl", "start", "tomcat9"]
