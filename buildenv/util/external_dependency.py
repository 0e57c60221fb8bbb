import logging
from typing import Dict

from buildenv.errors import MissingDependencyError
from buildenv.util.cmd import CMD

logger = logging.getLogger(__name__)


class ExternalDependency:
    TOOLS: Dict[str, Dict[str, str]] = {
        "azure-cli": {
            "check": "az",
            "hint": "https://learn.microsoft.com/cli/azure/install-azure-cli",
        },
        "packer": {
            "check": "packer",
            "hint": "https://developer.hashicorp.com/packer/install",
        },
    }

    @staticmethod
    def path(tool: str) -> str:
        """
        Return the resolved executable for `tool`.

        Raises:
            MissingDependencyError: If the executable is not on PATH.
        """
        tool = tool.lower()
        if tool not in ExternalDependency.TOOLS:
            raise ValueError(f"[ExternalDependency] Unknown tool: {tool}")

        entry = ExternalDependency.TOOLS[tool]
        resolved = CMD.which(entry["check"])
        if not resolved:
            raise MissingDependencyError(
                f"'{entry['check']}' was not found on PATH. Install {tool}: {entry['hint']}"
            )
        return resolved

    @staticmethod
    def ensure(*tools: str) -> Dict[str, str]:
        found = {}
        for tool in tools:
            found[tool] = ExternalDependency.path(tool)
            logger.debug(f"[ExternalDependency] {tool} found at {found[tool]}")
        return found
