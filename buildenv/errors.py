"""Common error types for buildenv."""

from typing import List, Optional


class BuildEnvError(RuntimeError):
    """Base class for every user-facing buildenv failure."""


class ValidationError(BuildEnvError):
    """Input or remote health check failed before anything was provisioned."""


class MissingDependencyError(ValidationError):
    """A required local tool (az, packer) is not on PATH."""


class AzureCliError(BuildEnvError):
    """Azure CLI command error."""

    def __init__(self, cmd: List[str], returncode: int, stdout: str = "", stderr: str = ""):
        self.cmd = cmd
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        message = stderr.strip() or stdout.strip() or f"Command failed with exit code {returncode}"
        super().__init__(message)


class CIServiceError(BuildEnvError):
    """CI service REST call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ImageBuildError(BuildEnvError):
    """Packer failed or produced no usable manifest."""


class ProvisioningError(BuildEnvError):
    """A pipeline step could not produce the resource later steps depend on."""
