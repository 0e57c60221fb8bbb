import os
from pathlib import Path

# ─── Root Directory ──────────────────────────────────────────────
GLOBAL_ROOT = Path(os.getcwd()).resolve()

# ─── Config and Log Paths ────────────────────────────────────────
GLOBAL_CFG_FILE = GLOBAL_ROOT / "buildenv_settings.toml"
GLOBAL_LOG_DIR = GLOBAL_ROOT / "logs"
ENV_PREFIX = "BUILDENV"

# ─── Defaults ────────────────────────────────────────────────────
GLOBAL_CFG_DEFAULT = {
    "ci": {
        "url": "https://ci.appveyor.com",
        "token": "",
        "build_cloud_name": "",
        "workers_capacity": 20,
        "retries": 1,
        "timeout": 30.0,
    },
    "azure": {
        "subscription": "",
        "location": "",
        "vm_size": "",
        "prefix": "appveyor",
        "sp_name": "",
    },
    "network": {
        "address_space": "10.0.0.0/16",
        "subnet_prefix": "10.0.0.0/24",
        "open_ports": [22, 3389, 5986],
    },
    "image": {
        "name": "",
        "os": "Windows",
        "template": "",
        "uri": "",
        "manifest": "packer-manifest.json",
        "install_user": "appveyor",
        "install_password": "",
        "rebuild": False,
    },
    "logging": {
        "level": "INFO",
        "dir": str(GLOBAL_LOG_DIR),
    },
}

GLOBAL_CFG_ENSURE_LIST = ["url", "token"]
DENY_LIST = ["", "changeme", "your-token-here", "<token>"]

IMAGE_OS_TYPES = ("Windows", "Linux")
