# cmd.py

import logging
import platform
import shlex
import subprocess
from pathlib import Path
from shutil import which as std_which
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class CMD:
    @staticmethod
    def run(
            cmd: Union[str, List[str]],
            *,
            capture_output: bool = True,
            check: bool = False,
            text: bool = True,
            env: Optional[Dict[str, str]] = None,
            cwd: Optional[Union[str, Path]] = None,
            redact: Optional[List[str]] = None,
    ) -> subprocess.CompletedProcess:
        """
        Runs a subprocess command without a shell.

        - If `cmd` is a string, it is split with shlex.
        - On Windows a list whose first entry is a .cmd/.bat shim is run through
          cmd.exe so that az.cmd resolves.
        - Values in `redact` are masked in the logged command line.
        """
        if not isinstance(cmd, (str, list)):
            raise TypeError(f"[CMD.run] 'cmd' must be a str or list, got {type(cmd).__name__}")
        if env is not None and not isinstance(env, dict):
            raise TypeError(f"[CMD.run] 'env' must be a dict or None, got {type(env).__name__}")

        if isinstance(cmd, str):
            cmd = shlex.split(cmd)

        if platform.system() == "Windows" and cmd[0].strip('"').lower().endswith((".cmd", ".bat")):
            cmd = ["cmd.exe", "/c"] + cmd

        shown = " ".join(cmd)
        for secret in redact or []:
            if secret:
                shown = shown.replace(secret, "***")
        logger.debug("Running command: %s (cwd=%r)", shown, str(cwd) if cwd else None)

        return subprocess.run(
            cmd,
            capture_output=capture_output,
            check=check,
            text=text,
            env=env,
            cwd=str(cwd) if cwd else None,
        )

    @staticmethod
    def which(exe: str) -> Optional[str]:
        """
        Resolve an executable on PATH, or None.
        """
        return std_which(exe)
