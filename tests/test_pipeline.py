import pytest

from buildenv.buildazure.ids import ResourceNames
from buildenv.buildazure.tenant import AzureAccount, AzureRegion, AzureSubscription, AzureVmSize
from buildenv.errors import ProvisioningError, ValidationError
from buildenv.imaging.packer import Packer
from buildenv.pipeline import BuildEnvironment
from buildenv.util.external_dependency import ExternalDependency

SUBSCRIPTION_ID = "00000000-1111-2222-3333-444444444444"


@pytest.fixture
def azure_cli(monkeypatch):
    """
    Logged-in Azure CLI with one subscription; region and size are taken as given.
    """
    monkeypatch.setattr(ExternalDependency, "ensure", staticmethod(lambda *tools: {t: t for t in tools}))
    monkeypatch.setattr(AzureAccount, "ensure_login",
                        staticmethod(lambda interactive=True: {"user": {"name": "dev@example.com"}}))
    monkeypatch.setattr(AzureSubscription, "select", staticmethod(
        lambda wanted=None, interactive=True: {"id": SUBSCRIPTION_ID, "name": "Dev", "tenantId": "tenant-1"}
    ))
    monkeypatch.setattr(AzureRegion, "select", staticmethod(lambda wanted=None, interactive=True: wanted))
    monkeypatch.setattr(AzureVmSize, "select",
                        staticmethod(lambda location, wanted=None, interactive=True: wanted))


@pytest.fixture
def environment(settings, fake_ci, fake_azure, fake_az, azure_cli):
    def make(**overrides):
        for section, values in overrides.items():
            settings[section].update(values)
        return BuildEnvironment(
            settings, interactive=False, ci_client=fake_ci, azure_client_factory=lambda sub: fake_azure
        )
    return make


@pytest.fixture
def packer_builds(monkeypatch):
    builds = []

    def fake_build(template, variables, manifest):
        builds.append(variables)
        return f"https://imgstore.blob.core.windows.net/images/build-{len(builds)}.vhd"

    monkeypatch.setattr(Packer, "build", staticmethod(fake_build))
    return builds


@pytest.fixture
def template(tmp_path):
    path = tmp_path / "windows.json"
    path.write_text("{}", encoding="utf-8")
    return str(path)


def test_first_run_creates_everything(environment, fake_ci, fake_azure):
    summary = environment().provision()

    names = ResourceNames.build("appveyor", "westeurope", SUBSCRIPTION_ID)
    assert summary["resources"] == names.as_dict()
    assert summary["service_principal"] == "app-1"
    assert summary["build_cloud"] == {"name": "appveyor-azure", "id": 101}
    assert summary["image"]["name"] == "appveyor-windows"

    assert [kind for kind, _ in fake_azure.calls] == [
        "resource_group", "storage_account", "storage_account", "storage_account",
        "security_group", "virtual_network",
    ]
    assert fake_ci.calls == [
        ("create_build_worker_image", "appveyor-windows"),
        ("create_build_cloud", "appveyor-azure"),
    ]

    cloud = fake_ci.clouds[101]["settings"]["cloudSettings"]
    assert cloud["azureAccount"]["clientSecret"]["value"] == "secret-1"
    assert cloud["vmConfiguration"]["diskStorageAccountKey"]["value"] == f"key-of-{names.vm_storage_account}"
    assert cloud["vmConfiguration"]["diskStorageAccountName"] == names.vm_storage_account
    assert cloud["networking"]["securityGroupName"] == names.security_group


def test_second_run_changes_nothing(environment, fake_ci, fake_azure, fake_az):
    environment().provision()
    azure_calls, ci_calls = list(fake_azure.calls), list(fake_ci.calls)

    summary = environment().provision()

    assert fake_azure.calls == azure_calls
    assert fake_ci.calls == ci_calls
    assert "ad app credential reset" not in fake_az.calls
    assert summary["build_cloud"]["id"] == 101


def test_changed_vm_size_updates_build_cloud(environment, fake_ci):
    environment().provision()
    environment(azure={"vm_size": "Standard_D4s_v3"}).provision()

    assert fake_ci.calls[-1] == ("update_build_cloud", "appveyor-azure")
    assert fake_ci.clouds[101]["settings"]["cloudSettings"]["vmConfiguration"]["vmSize"] == "Standard_D4s_v3"


def test_packer_image_is_built_once(environment, packer_builds, template, fake_ci, fake_az):
    image = {"uri": "", "template": template, "install_password": "pw"}

    first = environment(image=image).provision()
    second = environment(image=image).provision()

    assert len(packer_builds) == 1
    assert packer_builds[0]["azure_client_secret"] == "secret-1"
    assert packer_builds[0]["packer_manifest"].endswith("packer-manifest.json")
    assert first["image"]["location"] == second["image"]["location"]
    assert "ad app credential reset" not in fake_az.calls


def test_rebuild_forces_new_image_and_secret(environment, packer_builds, template, fake_ci, fake_az):
    image = {"uri": "", "template": template, "install_password": "pw"}
    environment(image=image).provision()

    summary = environment(image=dict(image, rebuild=True)).provision()

    assert len(packer_builds) == 2
    assert packer_builds[1]["azure_client_secret"] == "secret-reset-1"
    assert summary["image"]["location"].endswith("build-2.vhd")
    cloud = fake_ci.clouds[summary["build_cloud"]["id"]]["settings"]["cloudSettings"]
    assert cloud["images"][0]["vhdOrManagedImageName"].endswith("build-2.vhd")
    assert cloud["azureAccount"]["clientSecret"]["value"] == "secret-reset-1"


def test_failed_step_stops_the_run(environment, fake_azure, fake_ci):
    names = ResourceNames.build("appveyor", "westeurope", SUBSCRIPTION_ID)
    fake_azure.unavailable_names.add(names.cache_storage_account)

    with pytest.raises(ProvisioningError, match="cache storage account"):
        environment().provision()
    assert ("security_group", names.security_group) not in fake_azure.calls
    assert fake_ci.calls == []


def test_validate_rejects_unknown_os(environment):
    with pytest.raises(ValidationError):
        environment(image={"os": "Plan9"}).validate()


def test_validate_rejects_missing_token(environment):
    with pytest.raises(ValidationError):
        environment(ci={"token": ""}).validate()


def test_custom_names(environment):
    env = environment(ci={"build_cloud_name": "my-cloud"}, image={"name": "vs2022", "os": "Linux"})
    assert env.cloud_name == "my-cloud"
    assert env.image["name"] == "vs2022"
