import copy
import json
import logging
import os
from pathlib import Path
from typing import Any, Mapping, Optional

import toml
import yaml

import buildenv.context._globals as _globals
from buildenv.errors import ValidationError
from buildenv.util.error_handling import recall

logger = logging.getLogger(__name__)

_MISSING = object()


class Config:
    """
    buildenv settings: a TOML, JSON or YAML file (picked by extension) layered over
    built-in defaults, environment variables and command-line overrides.
    """

    @staticmethod
    def build(path: Path = _globals.GLOBAL_CFG_FILE) -> Path:
        """
        Create the settings file with defaults if it does not exist yet.
        """
        path = Path(path)
        if path.exists():
            return path
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            Config._serialize(path, _globals.GLOBAL_CFG_DEFAULT)
        except OSError as e:
            raise ValidationError(f"Could not write settings file {path}: {e}")
        logger.info(f"[Config.build] Wrote default settings to {path}")
        return path

    @staticmethod
    def _extension(path: Path) -> str:
        return Path(path).suffix.lstrip(".").lower()

    @staticmethod
    def _serialize(path: Path, data: dict) -> None:
        ext = Config._extension(path)
        if ext == "toml":
            text = toml.dumps(data)
        elif ext == "json":
            text = json.dumps(data, indent=2)
        elif ext in ("yaml", "yml"):
            text = yaml.safe_dump(data, sort_keys=False)
        else:
            raise ValidationError(f"Unsupported settings format '.{ext}' for {path}; use .toml, .json or .yaml")
        Path(path).write_text(text, encoding="utf-8")

    @staticmethod
    def dump(path: Path = _globals.GLOBAL_CFG_FILE) -> dict:
        """
        Parse the settings file and return its contents.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValidationError: If the format is unsupported or the content does not parse.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(path)

        parsers = {
            "toml": lambda p: toml.load(p),
            "json": lambda p: json.loads(p.read_text(encoding="utf-8")),
            "yaml": lambda p: yaml.safe_load(p.read_text(encoding="utf-8")),
            "yml": lambda p: yaml.safe_load(p.read_text(encoding="utf-8")),
        }
        file_ext = Config._extension(path)
        if file_ext not in parsers:
            raise ValidationError(f"Unsupported settings format '.{file_ext}' for {path}; use .toml, .json or .yaml")

        try:
            parsed_data = parsers[file_ext](path)
        except (toml.TomlDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
            raise ValidationError(f"Settings file {path} could not be parsed: {e}")

        if parsed_data is None:
            parsed_data = {}
        if not isinstance(parsed_data, dict):
            raise ValidationError(
                f"Settings file {path} must hold a mapping of sections, got {type(parsed_data).__name__}"
            )
        return parsed_data

    @staticmethod
    def fetch(path: Path = _globals.GLOBAL_CFG_FILE) -> dict:
        """
        Parsed settings file, written with defaults first if it is missing.
        """

        def fallback():
            Config.build(path)

        return recall(lambda: Config.dump(path), fallback, handled=(FileNotFoundError,))

    @staticmethod
    def get(*keys, path: Path = _globals.GLOBAL_CFG_FILE, default: Any = _MISSING) -> Any:
        """
        Retrieves a nested configuration value (e.g., Config.get("ci", "url")).

        Raises:
            RuntimeError: If keys are missing and no default was given.
        """
        data = Config.fetch(path)
        try:
            for key in keys:
                data = data[key]
            return data
        except (KeyError, TypeError) as e:
            if default is not _MISSING:
                return default
            raise RuntimeError(f"[Config.get] Key path {keys} not found or invalid: {e}")

    @staticmethod
    def deep_merge(target: dict, updates: Mapping) -> dict:
        for k, v in updates.items():
            if isinstance(v, Mapping) and isinstance(target.get(k), dict):
                Config.deep_merge(target[k], v)
            else:
                target[k] = v
        return target

    @staticmethod
    def write(path: Path = _globals.GLOBAL_CFG_FILE, *, set: dict = None, add: dict = None,
              remove: list = None) -> dict:
        """
        Edits the config file by setting, adding, or removing key-value pairs.

        Args:
            path (Path): Config file path to write.
            set (dict): Overwrite existing keys or add new ones (nested dicts are merged).
            add (dict): Add new keys only; does not overwrite existing ones.
            remove (list): List of top-level keys to delete.
        """
        data = Config.fetch(path)

        if set:
            Config.deep_merge(data, set)

        if add:
            for k, v in add.items():
                if k not in data:
                    data[k] = v

        if remove:
            for k in remove:
                data.pop(k, None)

        Config._serialize(Path(path), data)
        return data

    @staticmethod
    def coerce(raw: str, like: Any, label: str = "value") -> Any:
        """
        Convert a string from the environment or the command line to the type of `like`.

        Raises:
            ValidationError: If `raw` does not convert; the message names `label`.
        """
        try:
            return Config._convert(raw, like)
        except ValueError:
            expected = "list of integers" if isinstance(like, list) else type(like).__name__
            raise ValidationError(f"{label} must be a {expected}, got {raw!r}")

    @staticmethod
    def _convert(raw: str, like: Any) -> Any:
        if isinstance(like, bool):
            return raw.strip().lower() in ("1", "true", "yes", "on")
        if isinstance(like, int):
            return int(raw)
        if isinstance(like, float):
            return float(raw)
        if isinstance(like, list):
            items = [item.strip() for item in raw.split(",") if item.strip()]
            if like and isinstance(like[0], int):
                return [int(item) for item in items]
            return items
        return raw

    @staticmethod
    def apply_env(data: dict, environ: Optional[Mapping[str, str]] = None) -> dict:
        """
        Override values from BUILDENV_<SECTION>_<KEY> environment variables.
        """
        environ = os.environ if environ is None else environ
        for section, values in data.items():
            if not isinstance(values, dict):
                continue
            for key, current in values.items():
                name = f"{_globals.ENV_PREFIX}_{section}_{key}".upper()
                if name in environ:
                    values[key] = Config.coerce(environ[name], current, label=name)
                    logger.debug(f"[Config.apply_env] {section}.{key} overridden by {name}")
        return data

    @staticmethod
    def resolve(path: Path = _globals.GLOBAL_CFG_FILE, overrides: Optional[Mapping] = None,
                environ: Optional[Mapping[str, str]] = None) -> dict:
        """
        Effective settings: defaults < settings file < environment < overrides.

        `overrides` is a nested dict; keys whose value is None are ignored so that
        unset command-line options do not mask lower layers.
        """
        data = copy.deepcopy(_globals.GLOBAL_CFG_DEFAULT)
        path = Path(path)
        if path.exists():
            Config.deep_merge(data, Config.dump(path))
        Config.apply_env(data, environ)
        for section, values in (overrides or {}).items():
            given = {k: v for k, v in values.items() if v is not None}
            Config.deep_merge(data.setdefault(section, {}), given)
        return data

    @staticmethod
    def validate(data: dict, root: str = "ci", ensure: list = None, deny: list = None) -> bool:
        """
        Validates that required keys exist in a section and are not in the deny list.

        Raises:
            ValidationError: If any key is missing or has a placeholder value.
        """
        required = _globals.GLOBAL_CFG_ENSURE_LIST if ensure is None else ensure
        denied = _globals.DENY_LIST + (deny or [])
        section = data.get(root) or {}

        for k in required:
            v = section.get(k)
            if v is None:
                raise ValidationError(f"Missing required config key: {root}.{k}")
            if isinstance(v, str) and v.strip().lower() in denied:
                raise ValidationError(f"Missing or placeholder value for {root}.{k}")
        return True

