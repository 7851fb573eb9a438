from __future__ import annotations


class ProvisioningError(RuntimeError):
    """Fatal error: aborts the whole pipeline (exit code 1)."""


class CommandError(ProvisioningError):
    def __init__(self, argv: list[str], returncode: int, stderr: str = "") -> None:
        self.argv = argv
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"Command failed ({returncode}): {' '.join(argv)}\n{stderr}".rstrip())


class MissingPrerequisiteError(ProvisioningError):
    pass


class ArtifactResolutionError(ProvisioningError):
    pass


class ReadinessTimeout(ProvisioningError, TimeoutError):
    pass


class EditPreconditionError(ProvisioningError):
    pass


class NetworkConfigError(ProvisioningError):
    pass


class ServiceNotRunningError(ProvisioningError):
    pass


class UnknownStageError(ProvisioningError):
    pass


class StageAbandoned(Exception):
    """Stops the current stage only; the pipeline carries on with the next one."""
