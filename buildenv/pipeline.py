import logging
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import buildenv.context._globals as _globals
from buildenv.buildazure.client import AzureClient, ServicePrincipals
from buildenv.buildazure.ids import ResourceNames
from buildenv.buildazure.provision import Provision
from buildenv.buildazure.tenant import AzureAccount, AzureRegion, AzureSubscription, AzureVmSize
from buildenv.ci.build_cloud import BuildCloud
from buildenv.ci.build_image import BuildWorkerImage
from buildenv.ci.client import CIClient
from buildenv.context.config import Config
from buildenv.errors import ProvisioningError, ValidationError
from buildenv.imaging.packer import ImageSource, Packer
from buildenv.util.external_dependency import ExternalDependency

logger = logging.getLogger(__name__)

TAGS = {"managed-by": "buildenv"}


def _require(value: Any, step: str) -> Any:
    """
    Stop the run when a step produced nothing instead of feeding None downstream.
    """
    if value is None:
        raise ProvisioningError(f"Step '{step}' did not produce a result; see the warning above.")
    return value


class BuildEnvironment:
    """
    The provisioning run, one step after another:

        1. validate     CI service health/auth, Azure CLI login, local tools, image settings
        2. select       subscription, region, VM size
        3. ensure       service principal, resource group, storage accounts, security group, network
        4. image        existing image reference or a Packer build
        5. register     build worker image and build cloud on the CI service

    Every ensure is get-or-create, so a repeated run with the same settings changes nothing.
    """

    def __init__(
            self,
            settings: Dict[str, Any],
            *,
            interactive: bool = True,
            ci_client: Optional[CIClient] = None,
            azure_client_factory: Callable[[str], AzureClient] = AzureClient,
    ):
        self.settings = settings
        self.interactive = interactive
        self.ci = ci_client or CIClient(
            settings["ci"]["url"],
            settings["ci"]["token"],
            retries=int(settings["ci"].get("retries", 1)),
            timeout=float(settings["ci"].get("timeout", 30.0)),
        )
        self.azure_client_factory = azure_client_factory
        self.account: Optional[Dict[str, Any]] = None

    # ─── Settings helpers ─────────────────────────────────────────────────────

    @property
    def image(self) -> Dict[str, Any]:
        image = dict(self.settings["image"])
        prefix = self.settings["azure"]["prefix"]
        image["name"] = image.get("name") or f"{prefix}-{image['os']}".lower()
        if image.get("template") and not image.get("uri"):
            manifest = Path(image.get("manifest") or "packer-manifest.json")
            if not manifest.is_absolute():
                manifest = Path(image["template"]).resolve().parent / manifest
            image["manifest"] = str(manifest)
        return image

    @property
    def cloud_name(self) -> str:
        return self.settings["ci"].get("build_cloud_name") or f"{self.settings['azure']['prefix']}-azure"

    # ─── Steps ────────────────────────────────────────────────────────────────

    def validate(self) -> None:
        """
        Abort before touching anything if inputs, tools or remote services are unusable.
        """
        Config.validate(self.settings, root="ci")
        if self.settings["image"].get("os") not in _globals.IMAGE_OS_TYPES:
            raise ValidationError(
                f"image.os must be one of {', '.join(_globals.IMAGE_OS_TYPES)}, got {self.settings['image'].get('os')!r}"
            )
        if not self.settings["azure"].get("prefix"):
            raise ValidationError("azure.prefix must not be empty.")
        ExternalDependency.ensure("azure-cli")
        ImageSource.check(self.settings["image"])
        self.ci.validate()
        self.account = AzureAccount.ensure_login(self.interactive)

    def select(self) -> Dict[str, str]:
        azure = self.settings["azure"]
        subscription = AzureSubscription.select(azure.get("subscription") or None, self.interactive)
        location = AzureRegion.select(azure.get("location") or None, self.interactive)
        vm_size = AzureVmSize.select(location, azure.get("vm_size") or None, self.interactive)
        return {
            "subscription_id": subscription["id"],
            "tenant_id": subscription.get("tenantId", ""),
            "location": location,
            "vm_size": vm_size,
        }

    def names(self, selection: Dict[str, str]) -> ResourceNames:
        azure = self.settings["azure"]
        return ResourceNames.build(
            azure["prefix"], selection["location"], selection["subscription_id"], azure.get("sp_name") or ""
        )

    def provision(self) -> Dict[str, Any]:
        """
        Run every step and return a summary of what the build environment consists of.
        """
        self.validate()
        selection = self.select()
        names = self.names(selection)
        subscription_id = selection["subscription_id"]
        location = selection["location"]
        image = self.image
        network = self.settings["network"]

        current_cloud = BuildCloud.find(self.ci, self.cloud_name)
        image_location = image.get("uri") or None
        if not image_location and not image.get("rebuild"):
            image_location = BuildCloud.image_location(current_cloud, image["name"])
            if image_location:
                logger.info(f"[BuildEnvironment] Reusing image '{image['name']}' already registered on the build cloud")

        # A fresh secret is only needed when the CI service has none for this principal
        # or Packer has to authenticate.
        known_client_id = BuildCloud.client_id(current_cloud) if image_location else None
        principal = _require(
            ServicePrincipals.ensure(names.service_principal, subscription_id, known_client_id),
            "service principal",
        )

        client = self.azure_client_factory(subscription_id)
        _require(Provision.ResourceGroup.ensure(client, names.resource_group, location, TAGS), "resource group")
        for purpose, account in names.storage_accounts().items():
            _require(
                Provision.StorageAccount.ensure(client, names.resource_group, account, location, TAGS),
                f"{purpose} storage account",
            )
        nsg = _require(
            Provision.SecurityGroup.ensure(
                client, names.resource_group, names.security_group, location, network["open_ports"], TAGS
            ),
            "network security group",
        )
        _require(
            Provision.VirtualNetwork.ensure(
                client, names.resource_group, names.virtual_network, location,
                network["address_space"], names.subnet, network["subnet_prefix"],
                security_group_id=nsg.id, tags=TAGS,
            ),
            "virtual network",
        )

        if not image_location:
            variables = Packer.build_variables(
                subscription_id=subscription_id,
                tenant_id=selection["tenant_id"] or principal.tenant_id,
                client_id=principal.client_id,
                client_secret=principal.client_secret,
                location=location,
                resource_group=names.resource_group,
                storage_account=names.vm_storage_account,
                vm_size=selection["vm_size"],
                install_user=image["install_user"],
                install_password=image["install_password"],
                image_name=image["name"],
                manifest=Path(image["manifest"]),
            )
            image_location = ImageSource.resolve(image, variables)

        worker_image = _require(
            BuildWorkerImage.ensure(self.ci, image["name"], image["os"]), "build worker image"
        )

        storage_key = None
        if BuildCloud.needs_storage_key(current_cloud, names.vm_storage_account):
            storage_key = _require(
                Provision.storage_key(client, names.resource_group, names.vm_storage_account),
                "storage account key",
            )

        desired = BuildCloud.document(
            name=self.cloud_name,
            workers_capacity=int(self.settings["ci"].get("workers_capacity", 20)),
            subscription_id=subscription_id,
            tenant_id=selection["tenant_id"] or principal.tenant_id,
            client_id=principal.client_id,
            client_secret=principal.client_secret,
            location=location,
            vm_size=selection["vm_size"],
            resource_group=names.resource_group,
            storage_account=names.vm_storage_account,
            storage_key=storage_key,
            virtual_network=names.virtual_network,
            subnet=names.subnet,
            security_group=names.security_group,
            image_name=worker_image["name"],
            image_location=image_location,
        )
        cloud = _require(BuildCloud.ensure(self.ci, desired, current_cloud), "build cloud")

        summary = {
            "subscription_id": subscription_id,
            "location": location,
            "vm_size": selection["vm_size"],
            "service_principal": principal.client_id,
            "resources": names.as_dict(),
            "image": {"name": worker_image["name"], "os": image["os"], "location": image_location},
            "build_cloud": {"name": cloud.get("name", self.cloud_name), "id": cloud.get("buildCloudId")},
        }
        logger.info(f"[BuildEnvironment] Build cloud '{summary['build_cloud']['name']}' is ready")
        return summary
