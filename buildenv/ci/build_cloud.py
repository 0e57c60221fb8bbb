import copy
import logging
from typing import Any, Dict, List, Optional

from buildenv.ci.client import CIClient
from buildenv.errors import CIServiceError

logger = logging.getLogger(__name__)

CLOUD_TYPE = "Azure"
DISK_CONTAINER = "vms"


def _secure(value: str) -> Dict[str, Any]:
    return {"isEncrypted": False, "value": value}


class BuildCloud:
    """
    Get-or-create-or-reconcile of the build cloud record: the CI service's profile for
    starting build workers in the provisioned Azure environment.
    """

    @staticmethod
    def document(
            *,
            name: str,
            workers_capacity: int,
            subscription_id: str,
            tenant_id: str,
            client_id: str,
            client_secret: Optional[str],
            location: str,
            vm_size: str,
            resource_group: str,
            storage_account: str,
            storage_key: Optional[str],
            virtual_network: str,
            subnet: str,
            security_group: str,
            image_name: str,
            image_location: str,
    ) -> Dict[str, Any]:
        """
        Desired build cloud document. Secrets that are not known this run
        (None) are left out so the stored values are kept.
        """
        account = {
            "clientId": client_id,
            "tenantId": tenant_id,
            "subscriptionId": subscription_id,
        }
        if client_secret:
            account["clientSecret"] = _secure(client_secret)

        vm = {
            "location": location,
            "vmSize": vm_size,
            "vmResourceGroup": resource_group,
            "diskStorageAccountName": storage_account,
            "diskStorageContainer": DISK_CONTAINER,
            "assignPublicIPAddress": True,
        }
        if storage_key:
            vm["diskStorageAccountKey"] = _secure(storage_key)

        return {
            "name": name,
            "cloudType": CLOUD_TYPE,
            "workersCapacity": workers_capacity,
            "settings": {
                "cloudSettings": {
                    "azureAccount": account,
                    "vmConfiguration": vm,
                    "networking": {
                        "virtualNetworkName": virtual_network,
                        "subnetName": subnet,
                        "securityGroupName": security_group,
                    },
                    "images": [
                        {"name": image_name, "vhdOrManagedImageName": image_location},
                    ],
                },
            },
        }

    @staticmethod
    def find(client: CIClient, name: str) -> Optional[Dict[str, Any]]:
        """
        Full build cloud document for `name`, or None.
        """
        summary = CIClient.find_by_name(client.list_build_clouds(), name)
        if summary is None:
            return None
        return client.get_build_cloud(summary["buildCloudId"])

    @staticmethod
    def _cloud_settings(cloud: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return ((cloud or {}).get("settings") or {}).get("cloudSettings") or {}

    @staticmethod
    def client_id(cloud: Optional[Dict[str, Any]]) -> Optional[str]:
        return (BuildCloud._cloud_settings(cloud).get("azureAccount") or {}).get("clientId")

    @staticmethod
    def needs_storage_key(cloud: Optional[Dict[str, Any]], storage_account: str) -> bool:
        """
        The disk storage key is sent when the cloud is new, points at another storage
        account, or holds no key yet.
        """
        vm = BuildCloud._cloud_settings(cloud).get("vmConfiguration") or {}
        if not cloud or vm.get("diskStorageAccountName") != storage_account:
            return True
        return not vm.get("diskStorageAccountKey")

    @staticmethod
    def image_location(cloud: Optional[Dict[str, Any]], image_name: str) -> Optional[str]:
        for image in BuildCloud._cloud_settings(cloud).get("images") or []:
            if str(image.get("name", "")).lower() == image_name.lower():
                return image.get("vhdOrManagedImageName")
        return None

    @staticmethod
    def _merge_images(current: List[Dict[str, Any]], desired: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        merged = [dict(i) for i in current]
        for image in desired:
            for existing in merged:
                if str(existing.get("name", "")).lower() == image["name"].lower():
                    existing.update(image)
                    break
            else:
                merged.append(dict(image))
        return merged

    @staticmethod
    def merge(current: Dict[str, Any], desired: Dict[str, Any]) -> Dict[str, Any]:
        """
        Overlay `desired` on `current`. Fields the tool does not own are kept; images
        are matched by name so other images registered on the cloud survive.
        """

        def overlay(target: Dict[str, Any], updates: Dict[str, Any]) -> None:
            for k, v in updates.items():
                if k == "images":
                    target[k] = BuildCloud._merge_images(target.get(k) or [], v)
                elif isinstance(v, dict) and isinstance(target.get(k), dict):
                    overlay(target[k], v)
                else:
                    target[k] = copy.deepcopy(v)

        merged = copy.deepcopy(current)
        overlay(merged, desired)
        return merged

    @staticmethod
    def ensure(client: CIClient, desired: Dict[str, Any],
               current: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """
        Create the build cloud if absent, update it if it differs from `desired`.

        `current` may be passed when the caller already fetched the document.
        """
        name = desired["name"]
        try:
            if current is None:
                current = BuildCloud.find(client, name)

            if current is None:
                logger.info(f"[BuildCloud] Creating '{name}'")
                return client.create_build_cloud(desired)

            merged = BuildCloud.merge(current, desired)
            if merged == current:
                logger.info(f"[BuildCloud] '{name}' is up to date")
                return current

            logger.info(f"[BuildCloud] Updating '{name}'")
            return client.update_build_cloud(merged)
        except CIServiceError as ex:
            logger.warning(f"[BuildCloud] Could not ensure '{name}': {ex}")
            return None
