from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path
from typing import Any, Dict, List

from ..errors import ArtifactResolutionError, CommandError
from ..lib.artifacts import download, expect_single, resolve_artifact, splunk_page_links
from ..lib.assets import copy_optional
from ..lib.edits import (
    AppendText,
    CopyFile,
    Edit,
    EnsureDir,
    RemoveFile,
    ReplaceInTree,
    ReplaceText,
    Touch,
    WriteFile,
)

logger = logging.getLogger(__name__)


INDEXES = (
    "wineventlog",
    "osquery",
    "osquery-status",
    "sysmon",
    "powershell",
    "zeek",
    "suricata",
    "threathunting",
    "evtx_attack_samples",
    "msexchange",
)

# Relative to the resources directory.
APPS = (
    "splunk_forwarder/splunk-add-on-for-microsoft-windows_700.tgz",
    "splunk_server/splunk-add-on-for-microsoft-sysmon_1062.tgz",
    "splunk_server/asn-lookup-generator_110.tgz",
    "splunk_server/lookup-file-editor_331.tgz",
    "splunk_server/splunk-add-on-for-zeek-aka-bro_400.tgz",
    "splunk_server/force-directed-app-for-splunk_200.tgz",
    "splunk_server/punchcard-custom-visualization_130.tgz",
    "splunk_server/sankey-diagram-custom-visualization_130.tgz",
    "splunk_server/link-analysis-app-for-splunk_161.tgz",
    "splunk_server/threathunting_1492.tgz",
)

DNS_PREWARM = ("download.splunk.com", "splunk.com", "www.splunk.com")

USER_PREFS = """[general]
render_version_messages = 1
dismissedInstrumentationOptInVersion = 4
notification_python_3_impact = false
display.page.home.dashboardId = /servicesNS/nobody/search/data/ui/views/logger_dashboard
"""


class InstallSplunkStep:
    step_id = "30_install_splunk"
    name = "install_splunk"
    markers = ("/opt/splunk/bin/splunk",)

    def _fetch_package(self, ctx) -> Path:
        cfg = ctx.cfg
        # Resolution of download.splunk.com sometimes fails mid-download unless cached.
        for host in DNS_PREWARM:
            ctx.dns.prewarm(host, cfg.public_resolvers[0])

        url = resolve_artifact(
            name="Splunk",
            discover=splunk_page_links(ctx.http, cfg.splunk_download_page),
            validate=expect_single(scheme="https:", suffix=".deb"),
            pinned=cfg.splunk_pinned_url,
        )
        opt = ctx.path("/opt")
        if not ctx.dry_run:
            opt.mkdir(parents=True, exist_ok=True)
        pkg = download(ctx.http, url, opt, dry_run=ctx.dry_run)
        if not ctx.dry_run and not pkg.exists():
            raise ArtifactResolutionError("Something went wrong while trying to download Splunk")
        return pkg

    def _install_license(self, ctx) -> None:
        blob = ctx.cfg.splunk_license_b64
        if not blob:
            return
        try:
            data = base64.b64decode(blob, validate=False)
        except (binascii.Error, ValueError) as e:
            logger.warning("Splunk license blob is not valid base64, skipping: %s", e)
            return
        lic = "/tmp/Splunk.License"
        if not ctx.dry_run:
            p = ctx.path(lic)
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(data)
        try:
            ctx.splunk.add_license(lic)
        finally:
            ctx.edit([RemoveFile(lic)])

    def _app_fixes(self, ctx) -> List[Edit]:
        home = ctx.cfg.splunk_home
        apps = f"{home}/etc/apps"
        res = ctx.resource
        views = f"{apps}/ThreatHunting/default/data/ui/views/computer_investigator.xml"

        edits: List[Edit] = [
            # ASNGen app needs python2 (doksu/TA-asngen#18).
            AppendText(f"{apps}/TA-asngen/default/commands.conf", "python.version = python2\n", create=True),
        ]
        if ctx.cfg.maxmind_license:
            local_conf = f"{apps}/TA-asngen/local/asngen.conf"
            edits += [
                EnsureDir(f"{apps}/TA-asngen/local"),
                CopyFile(f"{apps}/TA-asngen/default/asngen.conf", local_conf),
                ReplaceText(local_conf, "license_key =", f"license_key = {ctx.cfg.maxmind_license}"),
            ]

        edits += [
            # "rename = xmlwineventlog" stripped; only effective in default/.
            CopyFile(res("splunk_server/windows_ta_props.conf"), f"{apps}/Splunk_TA_windows/default/props.conf"),
            CopyFile(res("splunk_server/sysmon_ta_props.conf"), f"{apps}/TA-microsoft-sysmon/default/props.conf"),
            EnsureDir(f"{apps}/Splunk_TA_bro/local"),
            CopyFile(res("splunk_server/zeek_ta_props.conf"), f"{apps}/Splunk_TA_bro/local/props.conf"),
            CopyFile(res("splunk_server/macros.conf"), f"{apps}/ThreatHunting/default/macros.conf"),
            ReplaceText(views, "index=windows", "`windows`"),
            ReplaceText(views, "$host$)", "$host$*)"),
            ReplaceInTree(
                f"{apps}/ThreatHunting",
                "host_fqdn",
                "ComputerName",
                exclude=(f"{apps}/ThreatHunting/default/props.conf",),
            ),
            ReplaceInTree(
                f"{apps}/ThreatHunting",
                "event_id",
                "EventCode",
                exclude=(f"{apps}/ThreatHunting/default/props.conf",),
            ),
            EnsureDir(f"{apps}/Splunk_TA_windows/local"),
            CopyFile(f"{apps}/Splunk_TA_windows/default/macros.conf", f"{apps}/Splunk_TA_windows/local/macros.conf"),
            ReplaceText(f"{apps}/Splunk_TA_windows/local/macros.conf", "wineventlog_windows", "wineventlog"),
            # Invalid key in stanza until force directed 2.0.1.
            RemoveFile(f"{apps}/force_directed_viz/default/savedsearches.conf"),
        ]
        return edits

    def _server_settings(self, ctx) -> List[Edit]:
        home = ctx.cfg.splunk_home
        search_local = f"{home}/etc/apps/search/local"
        system_local = f"{home}/etc/system/local"
        res = ctx.resource
        return [
            WriteFile(f"{search_local}/inputs.conf", "[splunktcp://9997]\nconnection_host = ip\n"),
            CopyFile(res("splunk_server/props.conf"), f"{search_local}/props.conf"),
            CopyFile(res("splunk_server/transforms.conf"), f"{search_local}/transforms.conf"),
            CopyFile(f"{home}/etc/system/default/limits.conf", f"{system_local}/limits.conf"),
            # Room for the ASN lookup table.
            ReplaceText(
                f"{system_local}/limits.conf",
                "max_memtable_bytes = 10000000",
                "max_memtable_bytes = 30000000",
            ),
            # Skip the tour and the change-password dialog.
            Touch(f"{home}/etc/.ui_login"),
            EnsureDir(f"{home}/etc/users/admin/search/local"),
            WriteFile(f"{system_local}/ui-tour.conf", "[search-tour]\nviewed = 1\n"),
            WriteFile(f"{home}/etc/users/admin/user-prefs/local/user-prefs.conf", USER_PREFS),
            WriteFile(f"{system_local}/web.conf", "[settings]\nenableSplunkWebSSL = true\n"),
            EnsureDir(f"{search_local}/data/ui/views"),
        ]

    def _install(self, ctx) -> None:
        pkg = self._fetch_package(ctx)
        try:
            ctx.runner.run(["dpkg", "-i", str(pkg)])
        except CommandError as e:
            raise ArtifactResolutionError(f"Something went wrong while trying to install Splunk: {e}") from e

        splunk = ctx.splunk
        splunk.start_first_time()
        for index in INDEXES:
            splunk.add_index(index)
        for app in APPS:
            splunk.install_app(ctx.resource(app))

        ctx.edit(self._app_fixes(ctx))
        self._install_license(ctx)
        ctx.edit(self._server_settings(ctx))
        copy_optional(
            ctx.root,
            ctx.resource("splunk_server/logger_dashboard.xml"),
            f"{ctx.cfg.splunk_home}/etc/apps/search/local/data/ui/views",
            what="dashboard",
            dry_run=ctx.dry_run,
        )

        splunk.restart()
        splunk.enable_boot_start()

    def run(self, ctx, state: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("Installing Splunk...")
        self._install(ctx)

        home = ctx.cfg.splunk_home
        ctx.edit(
            [
                AppendText(
                    "/root/.bashrc",
                    f'export PATH="$PATH:{home}/bin:/opt/zeek/bin"\nexport SPLUNK_HOME={home}\n',
                    unless_present=f"SPLUNK_HOME={home}",
                    create=True,
                )
            ]
        )
        return state
