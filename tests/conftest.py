import copy
from types import SimpleNamespace

import pytest
from azure.core.exceptions import ResourceNotFoundError

import buildenv.context._globals as _globals
from buildenv.buildazure.run import CachedRuns
from buildenv.context.logger import Logger

SUBSCRIPTION_ID = "00000000-1111-2222-3333-444444444444"
TENANT_ID = "tenant-1"


@pytest.fixture(autouse=True)
def _isolated_state():
    CachedRuns.clear()
    yield
    CachedRuns.clear()
    Logger.reset()


@pytest.fixture
def settings():
    """
    Effective settings as Config.resolve would return them, with a usable token and
    an existing image so no Packer build is needed.
    """
    data = copy.deepcopy(_globals.GLOBAL_CFG_DEFAULT)
    data["ci"]["url"] = "https://ci.example.com"
    data["ci"]["token"] = "secret-token"
    data["azure"]["subscription"] = SUBSCRIPTION_ID
    data["azure"]["location"] = "westeurope"
    data["azure"]["vm_size"] = "Standard_D2s_v3"
    data["image"]["uri"] = "https://imgstore.blob.core.windows.net/images/windows.vhd"
    return data


class _Poller:
    def __init__(self, value):
        self._value = value

    def result(self):
        return self._value


def _not_found(kind, name):
    return ResourceNotFoundError(message=f"{kind} '{name}' was not found")


class FakeAzure:
    """
    In-memory stand-in for AzureClient: the resource, storage and network operation groups
    the provisioning code calls, with every mutating call recorded in `calls`.
    """

    def __init__(self, subscription_id=SUBSCRIPTION_ID):
        self.subscription_id = subscription_id
        self.calls = []
        self.groups = {}
        self.accounts = {}
        self.security_groups = {}
        self.networks = {}
        self.unavailable_names = set()

        self.resource = SimpleNamespace(resource_groups=SimpleNamespace(
            get=self._rg_get, create_or_update=self._rg_create_or_update,
        ))
        self.storage = SimpleNamespace(storage_accounts=SimpleNamespace(
            get_properties=self._sa_get,
            check_name_availability=self._sa_check,
            begin_create=self._sa_create,
            list_keys=self._sa_keys,
        ))
        self.network = SimpleNamespace(
            network_security_groups=SimpleNamespace(get=self._nsg_get, begin_create_or_update=self._nsg_put),
            virtual_networks=SimpleNamespace(get=self._vnet_get, begin_create_or_update=self._vnet_put),
        )

    def _rg_get(self, name):
        if name not in self.groups:
            raise _not_found("Resource group", name)
        return self.groups[name]

    def _rg_create_or_update(self, name, params):
        self.calls.append(("resource_group", name))
        group = SimpleNamespace(name=name, location=params["location"], tags=dict(params.get("tags") or {}))
        self.groups[name] = group
        return group

    def _sa_get(self, resource_group, name):
        if name not in self.accounts:
            raise _not_found("Storage account", name)
        return self.accounts[name]

    def _sa_check(self, params):
        available = params["name"] not in self.unavailable_names
        return SimpleNamespace(name_available=available, message=None if available else "taken")

    def _sa_create(self, resource_group, name, params):
        self.calls.append(("storage_account", name))
        account = SimpleNamespace(name=name, location=params["location"], sku=params["sku"])
        self.accounts[name] = account
        return _Poller(account)

    def _sa_keys(self, resource_group, name):
        return SimpleNamespace(keys=[SimpleNamespace(value=f"key-of-{name}")])

    def _nsg_get(self, resource_group, name):
        if name not in self.security_groups:
            raise _not_found("Network security group", name)
        return self.security_groups[name]

    def _nsg_put(self, resource_group, name, nsg):
        self.calls.append(("security_group", name))
        nsg.id = (f"/subscriptions/{self.subscription_id}/resourceGroups/{resource_group}"
                  f"/providers/Microsoft.Network/networkSecurityGroups/{name}")
        self.security_groups[name] = nsg
        return _Poller(nsg)

    def _vnet_get(self, resource_group, name):
        if name not in self.networks:
            raise _not_found("Virtual network", name)
        return self.networks[name]

    def _vnet_put(self, resource_group, name, vnet):
        self.calls.append(("virtual_network", name))
        self.networks[name] = vnet
        return _Poller(vnet)


class FakeCI:
    """
    In-memory CI service with the CIClient surface used by BuildCloud and BuildWorkerImage.
    """

    def __init__(self):
        self.clouds = {}
        self.images = []
        self.calls = []
        self._next_id = 100

    def validate(self):
        return None

    def list_build_clouds(self):
        return [{"buildCloudId": c["buildCloudId"], "name": c["name"]} for c in self.clouds.values()]

    def get_build_cloud(self, build_cloud_id):
        return copy.deepcopy(self.clouds[build_cloud_id])

    def create_build_cloud(self, document):
        self.calls.append(("create_build_cloud", document["name"]))
        stored = copy.deepcopy(document)
        stored["buildCloudId"] = self._next_id
        self._next_id += 1
        self.clouds[stored["buildCloudId"]] = stored
        return copy.deepcopy(stored)

    def update_build_cloud(self, document):
        self.calls.append(("update_build_cloud", document["name"]))
        self.clouds[document["buildCloudId"]] = copy.deepcopy(document)
        return copy.deepcopy(document)

    def list_build_worker_images(self):
        return copy.deepcopy(self.images)

    def create_build_worker_image(self, document):
        self.calls.append(("create_build_worker_image", document["name"]))
        stored = dict(document, buildWorkerImageId=self._next_id)
        self._next_id += 1
        self.images.append(stored)
        return dict(stored)

    def update_build_worker_image(self, document):
        self.calls.append(("update_build_worker_image", document["name"]))
        self.images = [document if i["buildWorkerImageId"] == document["buildWorkerImageId"] else i
                       for i in self.images]
        return dict(document)


class FakeAz:
    """
    Scripted `az` for service principal commands.
    """

    def __init__(self):
        self.principals = {}
        self.credentials = {}
        self.calls = []
        self._resets = 0

    def __call__(self, cmd, **kwargs):
        verb = cmd[1:4]
        self.calls.append(" ".join(cmd[1:5] if verb == ["ad", "app", "credential"] else verb))
        if verb == ["ad", "sp", "list"]:
            name = cmd[cmd.index("--display-name") + 1]
            return [p for p in self.principals.values() if p["displayName"] == name]
        if verb == ["ad", "sp", "create-for-rbac"]:
            name = cmd[cmd.index("--name") + 1]
            self.principals[name] = {"appId": "app-1", "displayName": name, "appOwnerOrganizationId": TENANT_ID}
            self.credentials["app-1"] = [{"keyId": "key-0", "displayName": "rbac"}]
            return {"appId": "app-1", "displayName": name, "password": "secret-1", "tenant": TENANT_ID}
        if verb == ["ad", "app", "credential"]:
            app_id = cmd[cmd.index("--id") + 1]
            keys = self.credentials.setdefault(app_id, [])
            if cmd[4] == "list":
                return [dict(k) for k in keys]
            if cmd[4] == "delete":
                key_id = cmd[cmd.index("--key-id") + 1]
                self.credentials[app_id] = [k for k in keys if k["keyId"] != key_id]
                return ""
            self._resets += 1
            keys.append({"keyId": f"key-{self._resets}", "displayName": cmd[cmd.index("--display-name") + 1]})
            return {"appId": app_id, "password": f"secret-reset-{self._resets}", "tenant": TENANT_ID}
        if verb == ["role", "assignment", "create"]:
            return {"roleDefinitionName": "Contributor"}
        raise AssertionError(f"unexpected az call: {cmd}")


@pytest.fixture
def fake_azure():
    return FakeAzure()


@pytest.fixture
def fake_ci():
    return FakeCI()


@pytest.fixture
def fake_az(monkeypatch):
    az = FakeAz()
    monkeypatch.setattr("buildenv.buildazure.client.run_az", az)
    return az
