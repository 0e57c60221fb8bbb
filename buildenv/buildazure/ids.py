import logging
from dataclasses import asdict, dataclass
from typing import Dict

from buildenv.util import sanitization as sanny

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceNames:
    """
    Every Azure resource name a build environment uses, derived from
    (prefix, location, subscription id) so that repeated runs land on the same resources.
    """
    resource_group: str
    vm_storage_account: str
    cache_storage_account: str
    artifact_storage_account: str
    virtual_network: str
    subnet: str
    security_group: str
    service_principal: str

    @staticmethod
    def build(prefix: str, location: str, subscription_id: str, sp_name: str = "") -> "ResourceNames":
        if not prefix or not location or not subscription_id:
            raise ValueError("[ResourceNames] prefix, location and subscription_id are required")

        suffix = sanny.short_hash(subscription_id)
        names = ResourceNames(
            resource_group=sanny.resource_name(prefix, "build-env", location),
            vm_storage_account=sanny.storage_account_name(prefix, location, suffix="vm" + suffix),
            cache_storage_account=sanny.storage_account_name(prefix, location, suffix="cache" + suffix),
            artifact_storage_account=sanny.storage_account_name(prefix, location, suffix="art" + suffix),
            virtual_network=sanny.resource_name(prefix, "vnet", location),
            subnet=sanny.resource_name(prefix, "subnet"),
            security_group=sanny.resource_name(prefix, "nsg", location),
            service_principal=sp_name or sanny.resource_name(prefix, "build-env-sp"),
        )
        logger.debug(f"[ResourceNames] {names}")
        return names

    def storage_accounts(self) -> Dict[str, str]:
        return {
            "vm": self.vm_storage_account,
            "cache": self.cache_storage_account,
            "artifact": self.artifact_storage_account,
        }

    def as_dict(self) -> Dict[str, str]:
        return asdict(self)
