import json

import pytest
import toml

import buildenv.context._globals as _globals
from buildenv.context.config import Config
from buildenv.errors import ValidationError


@pytest.fixture
def cfg_file(tmp_path):
    return tmp_path / "buildenv_settings.toml"


def test_fetch_builds_missing_file_with_defaults(cfg_file):
    data = Config.fetch(cfg_file)
    assert cfg_file.exists()
    assert data["azure"]["prefix"] == _globals.GLOBAL_CFG_DEFAULT["azure"]["prefix"]
    assert data["network"]["open_ports"] == [22, 3389, 5986]


def test_get_nested_key(cfg_file):
    Config.write(cfg_file, set={"ci": {"url": "https://ci.internal"}})
    assert Config.get("ci", "url", path=cfg_file) == "https://ci.internal"


def test_get_missing_key_raises_or_returns_default(cfg_file):
    with pytest.raises(RuntimeError):
        Config.get("ci", "nope", path=cfg_file)
    assert Config.get("ci", "nope", path=cfg_file, default=7) == 7


def test_write_merges_nested_sections(cfg_file):
    Config.write(cfg_file, set={"azure": {"location": "northeurope"}})
    data = toml.load(cfg_file)
    assert data["azure"]["location"] == "northeurope"
    assert data["azure"]["prefix"] == "appveyor"


def test_write_add_does_not_overwrite_and_remove_drops(cfg_file):
    Config.write(cfg_file, add={"ci": {"url": "ignored"}, "extra": {"k": "v"}}, remove=["logging"])
    data = Config.dump(cfg_file)
    assert data["ci"]["url"] == _globals.GLOBAL_CFG_DEFAULT["ci"]["url"]
    assert data["extra"] == {"k": "v"}
    assert "logging" not in data


def test_dump_reads_json_and_yaml(tmp_path):
    json_file = tmp_path / "settings.json"
    json_file.write_text(json.dumps({"ci": {"token": "abc"}}), encoding="utf-8")
    yaml_file = tmp_path / "settings.yaml"
    yaml_file.write_text("ci:\n  token: xyz\n", encoding="utf-8")

    assert Config.dump(json_file)["ci"]["token"] == "abc"
    assert Config.dump(yaml_file)["ci"]["token"] == "xyz"


def test_dump_rejects_unknown_format(tmp_path):
    odd = tmp_path / "settings.ini"
    odd.write_text("[ci]\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        Config.dump(odd)


def test_broken_settings_file_is_a_validation_error(cfg_file):
    cfg_file.write_text("[ci\nurl = ", encoding="utf-8")
    with pytest.raises(ValidationError, match="could not be parsed"):
        Config.resolve(cfg_file, environ={})
    with pytest.raises(ValidationError):
        Config.fetch(cfg_file)


def test_settings_file_must_hold_sections(tmp_path):
    listed = tmp_path / "settings.yaml"
    listed.write_text("- ci\n- azure\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        Config.dump(listed)


def test_bad_environment_value_names_the_variable(cfg_file):
    with pytest.raises(ValidationError, match="BUILDENV_CI_RETRIES"):
        Config.resolve(cfg_file, environ={"BUILDENV_CI_RETRIES": "three"})


def test_resolve_precedence(cfg_file):
    Config.write(cfg_file, set={"azure": {"location": "from-file", "vm_size": "from-file"}})
    environ = {"BUILDENV_AZURE_VM_SIZE": "from-env", "BUILDENV_CI_WORKERS_CAPACITY": "5"}

    data = Config.resolve(cfg_file, {"azure": {"location": "from-cli", "vm_size": None}}, environ=environ)

    assert data["azure"]["location"] == "from-cli"
    assert data["azure"]["vm_size"] == "from-env"
    assert data["ci"]["workers_capacity"] == 5
    assert data["azure"]["prefix"] == "appveyor"


def test_resolve_without_file_uses_defaults(tmp_path):
    data = Config.resolve(tmp_path / "absent.toml", environ={})
    assert data == _globals.GLOBAL_CFG_DEFAULT
    assert not (tmp_path / "absent.toml").exists()


def test_coerce_follows_default_types():
    assert Config.coerce("22, 443", [22]) == [22, 443]
    assert Config.coerce("true", False) is True
    assert Config.coerce("2.5", 1.0) == 2.5
    assert Config.coerce("x", "") == "x"


def test_validate_rejects_placeholder_token(settings):
    settings["ci"]["token"] = "changeme"
    with pytest.raises(ValidationError):
        Config.validate(settings, root="ci")


def test_validate_accepts_real_values(settings):
    assert Config.validate(settings, root="ci") is True


def test_coerce_rejects_bad_values():
    with pytest.raises(ValidationError, match="network.open_ports"):
        Config.coerce("22,ssh", [22], label="network.open_ports")
    with pytest.raises(ValidationError):
        Config.coerce("many", 20)
