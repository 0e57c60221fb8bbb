import json
import logging
from typing import Any, Dict, List, Optional

from buildenv.errors import AzureCliError
from buildenv.util.cmd import CMD
from buildenv.util.external_dependency import ExternalDependency

logger = logging.getLogger(__name__)

# Sub-commands whose output never changes during a run and may be cached.
_CACHEABLE = (
    ("account", "list"),
    ("account", "list-locations"),
    ("vm", "list-sizes"),
)


class CachedRuns:
    """
    Simple in-process cache for read-only Azure CLI command outputs, keyed by the
    joined command line.
    """
    cached_runs: Dict[str, Any] = {}

    @staticmethod
    def get_cached_output(full_cmd_str: str) -> Optional[Any]:
        if full_cmd_str in CachedRuns.cached_runs:
            logger.debug(f"[CachedRuns] Cache hit for '{full_cmd_str}'")
            return CachedRuns.cached_runs[full_cmd_str]
        return None

    @staticmethod
    def store_output(full_cmd_str: str, output: Any) -> None:
        CachedRuns.cached_runs[full_cmd_str] = output

    @staticmethod
    def clear() -> None:
        CachedRuns.cached_runs.clear()


def _is_cacheable(cmd: List[str]) -> bool:
    return tuple(cmd[1:3]) in _CACHEABLE


def run_az(
        cmd: List[str],
        *,
        expect_json: bool = True,
        force_refresh: bool = False,
        redact: Optional[List[str]] = None,
        capture_output: bool = True,
) -> Any:
    """
    Run an Azure CLI command and return its parsed JSON output.

    Logic:
        1. Resolve the 'az' executable (MissingDependencyError if absent).
        2. Append '--output json' when JSON is expected and no output flag was given.
        3. Serve read-only listings from CachedRuns unless force_refresh=True.
        4. Execute; a non-zero exit raises AzureCliError carrying stderr.
        5. Parse stdout as JSON (empty stdout gives None).

    With capture_output=False the command talks to the terminal directly (az login
    prints its sign-in instructions there) and None is returned.
    """
    if not cmd or cmd[0] != "az":
        raise ValueError(f"[run_az] Expected an 'az ...' command, got {cmd!r}")

    az_path = ExternalDependency.path("azure-cli")
    full_cmd = list(cmd)
    if capture_output and expect_json and "--output" not in full_cmd and "-o" not in full_cmd:
        full_cmd += ["--output", "json"]
    full_cmd_str = " ".join(full_cmd)

    cacheable = capture_output and _is_cacheable(full_cmd)
    if cacheable and not force_refresh:
        cached = CachedRuns.get_cached_output(full_cmd_str)
        if cached is not None:
            return cached

    completed = CMD.run([az_path] + full_cmd[1:], redact=redact, capture_output=capture_output)
    stdout = completed.stdout or ""
    stderr = completed.stderr or ""

    if completed.returncode != 0:
        logger.debug(f"[run_az] '{full_cmd[1:3]}' failed with exit code {completed.returncode}")
        raise AzureCliError(full_cmd, completed.returncode, stdout, stderr)

    if not capture_output:
        return None

    if not expect_json:
        return stdout.strip()

    if not stdout.strip():
        return None

    try:
        output = json.loads(stdout)
    except json.JSONDecodeError as jde:
        raise AzureCliError(full_cmd, completed.returncode, stdout, f"Expected JSON output: {jde}")

    if cacheable:
        CachedRuns.store_output(full_cmd_str, output)
    return output
