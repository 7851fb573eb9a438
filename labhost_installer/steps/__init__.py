from .step_05_configure_dns import ConfigureDnsStep
from .step_10_apt_prerequisites import AptPrerequisitesStep
from .step_15_modify_motd import ModifyMotdStep
from .step_20_test_prerequisites import PrerequisiteCheckStep
from .step_25_fix_eth1_static_ip import FixEth1StaticIpStep
from .step_30_install_splunk import InstallSplunkStep
from .step_40_osquery_config import DownloadOsqueryConfigStep
from .step_45_install_fleet import InstallFleetStep
from .step_50_install_velociraptor import InstallVelociraptorStep
from .step_60_install_suricata import InstallSuricataStep
from .step_70_install_zeek import InstallZeekStep
from .step_80_install_guacamole import InstallGuacamoleStep
from .step_90_configure_splunk_inputs import ConfigureSplunkInputsStep

__all__ = [
    "ConfigureDnsStep",
    "AptPrerequisitesStep",
    "ModifyMotdStep",
    "PrerequisiteCheckStep",
    "FixEth1StaticIpStep",
    "InstallSplunkStep",
    "DownloadOsqueryConfigStep",
    "InstallFleetStep",
    "InstallVelociraptorStep",
    "InstallSuricataStep",
    "InstallZeekStep",
    "InstallGuacamoleStep",
    "ConfigureSplunkInputsStep",
]
