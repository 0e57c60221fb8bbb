import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError
from azure.mgmt.network.models import (
    AddressSpace,
    NetworkSecurityGroup,
    SecurityRule,
    Subnet,
    VirtualNetwork,
)

from buildenv.buildazure.client import AzureClient

logger = logging.getLogger(__name__)

RULE_PRIORITY_START = 1000
RULE_PRIORITY_STEP = 10
RULE_PRIORITY_MAX = 4096
PORT_LABELS = {22: "ssh", 3389: "rdp", 5985: "winrm-http", 5986: "winrm-https"}


def _get_or_none(getter: Callable[..., Any], *args) -> Any:
    """
    Call an SDK getter and map "not found" to None. Other errors propagate.
    """
    try:
        return getter(*args)
    except ResourceNotFoundError:
        return None


def rule_name(port: int) -> str:
    return f"allow-{PORT_LABELS.get(int(port), str(port))}-inbound"


class Provision:
    """
    Get-or-create of the Azure resources a build environment needs.

    Every `ensure` looks the resource up by name, creates it when absent and reconciles
    the fields it owns when present. A rejected create/update is logged as a warning and
    the step returns None; nothing is rolled back.
    """

    class ResourceGroup:
        @staticmethod
        def ensure(client: AzureClient, name: str, location: str, tags: Optional[Dict[str, str]] = None):
            tags = dict(tags or {})
            groups = client.resource.resource_groups
            try:
                existing = _get_or_none(groups.get, name)
                if existing is None:
                    logger.info(f"[ResourceGroup] Creating '{name}' in {location}")
                    return groups.create_or_update(name, {"location": location, "tags": tags})

                if existing.location.replace(" ", "").lower() != location.lower():
                    logger.warning(
                        f"[ResourceGroup] '{name}' exists in {existing.location}, not {location}; reusing it"
                    )

                current_tags = dict(existing.tags or {})
                if any(current_tags.get(k) != v for k, v in tags.items()):
                    current_tags.update(tags)
                    logger.info(f"[ResourceGroup] Updating tags on '{name}'")
                    return groups.create_or_update(name, {"location": existing.location, "tags": current_tags})

                logger.info(f"[ResourceGroup] '{name}' already exists")
                return existing
            except HttpResponseError as ex:
                logger.warning(f"[ResourceGroup] Could not ensure '{name}': {ex.message}")
                return None

    class StorageAccount:
        SKU = "Standard_LRS"
        KIND = "StorageV2"

        @staticmethod
        def ensure(client: AzureClient, resource_group: str, name: str, location: str,
                   tags: Optional[Dict[str, str]] = None):
            accounts = client.storage.storage_accounts
            try:
                existing = _get_or_none(accounts.get_properties, resource_group, name)
                if existing is not None:
                    logger.info(f"[StorageAccount] '{name}' already exists")
                    return existing

                availability = accounts.check_name_availability({"name": name, "type": "Microsoft.Storage/storageAccounts"})
                if not availability.name_available:
                    logger.warning(
                        f"[StorageAccount] Name '{name}' is not available: {availability.message}"
                    )
                    return None

                logger.info(f"[StorageAccount] Creating '{name}' in {resource_group}")
                poller = accounts.begin_create(
                    resource_group,
                    name,
                    {
                        "sku": {"name": Provision.StorageAccount.SKU},
                        "kind": Provision.StorageAccount.KIND,
                        "location": location,
                        "enable_https_traffic_only": True,
                        "minimum_tls_version": "TLS1_2",
                        "tags": dict(tags or {}),
                    },
                )
                return poller.result()
            except HttpResponseError as ex:
                logger.warning(f"[StorageAccount] Could not ensure '{name}': {ex.message}")
                return None

    class SecurityGroup:
        @staticmethod
        def desired_rules(ports: Iterable[int], taken: Iterable[int] = ()) -> List[SecurityRule]:
            """
            One inbound TCP allow rule per port, on priorities not in `taken`.
            """
            used = set(taken)
            priority = RULE_PRIORITY_START
            rules = []
            for port in ports:
                while priority in used:
                    priority += RULE_PRIORITY_STEP
                if priority > RULE_PRIORITY_MAX:
                    raise ValueError(f"No free security rule priority left for port {port}")
                rules.append(SecurityRule(
                    name=rule_name(port),
                    protocol="Tcp",
                    access="Allow",
                    direction="Inbound",
                    priority=priority,
                    source_address_prefix="*",
                    source_port_range="*",
                    destination_address_prefix="*",
                    destination_port_range=str(port),
                ))
                used.add(priority)
            return rules

        @staticmethod
        def ensure(client: AzureClient, resource_group: str, name: str, location: str, ports: Iterable[int],
                   tags: Optional[Dict[str, str]] = None):
            groups = client.network.network_security_groups
            ports = list(ports)
            try:
                existing = _get_or_none(groups.get, resource_group, name)
                if existing is None:
                    logger.info(f"[SecurityGroup] Creating '{name}' with ports {ports}")
                    nsg = NetworkSecurityGroup(
                        location=location,
                        security_rules=Provision.SecurityGroup.desired_rules(ports),
                        tags=dict(tags or {}),
                    )
                    return groups.begin_create_or_update(resource_group, name, nsg).result()

                rules = list(existing.security_rules or [])
                present = {r.name for r in rules}
                missing = [p for p in ports if rule_name(p) not in present]
                if not missing:
                    logger.info(f"[SecurityGroup] '{name}' already exists")
                    return existing

                taken = [r.priority for r in rules if r.direction == "Inbound"]
                rules.extend(Provision.SecurityGroup.desired_rules(missing, taken))
                existing.security_rules = rules
                logger.info(f"[SecurityGroup] Adding rules for ports {missing} to '{name}'")
                return groups.begin_create_or_update(resource_group, name, existing).result()
            except HttpResponseError as ex:
                logger.warning(f"[SecurityGroup] Could not ensure '{name}': {ex.message}")
                return None
            except ValueError as ex:
                logger.warning(f"[SecurityGroup] Could not ensure '{name}': {ex}")
                return None

    class VirtualNetwork:
        @staticmethod
        def ensure(client: AzureClient, resource_group: str, name: str, location: str,
                   address_space: str, subnet_name: str, subnet_prefix: str,
                   security_group_id: Optional[str] = None, tags: Optional[Dict[str, str]] = None):
            networks = client.network.virtual_networks
            nsg_ref = NetworkSecurityGroup(id=security_group_id) if security_group_id else None
            try:
                existing = _get_or_none(networks.get, resource_group, name)
                if existing is None:
                    logger.info(f"[VirtualNetwork] Creating '{name}' ({address_space}) with subnet '{subnet_name}'")
                    vnet = VirtualNetwork(
                        location=location,
                        address_space=AddressSpace(address_prefixes=[address_space]),
                        subnets=[Subnet(name=subnet_name, address_prefix=subnet_prefix,
                                        network_security_group=nsg_ref)],
                        tags=dict(tags or {}),
                    )
                    return networks.begin_create_or_update(resource_group, name, vnet).result()

                changed = False
                if existing.address_space is None:
                    existing.address_space = AddressSpace(address_prefixes=[])
                prefixes = list(existing.address_space.address_prefixes or [])
                if address_space not in prefixes:
                    existing.address_space.address_prefixes = prefixes + [address_space]
                    changed = True

                subnets = list(existing.subnets or [])
                subnet = next((s for s in subnets if s.name == subnet_name), None)
                if subnet is None:
                    subnets.append(Subnet(name=subnet_name, address_prefix=subnet_prefix,
                                          network_security_group=nsg_ref))
                    existing.subnets = subnets
                    changed = True
                elif nsg_ref is not None:
                    current = getattr(subnet.network_security_group, "id", None)
                    if (current or "").lower() != security_group_id.lower():
                        subnet.network_security_group = nsg_ref
                        changed = True

                if not changed:
                    logger.info(f"[VirtualNetwork] '{name}' already exists")
                    return existing

                logger.info(f"[VirtualNetwork] Reconciling '{name}'")
                return networks.begin_create_or_update(resource_group, name, existing).result()
            except HttpResponseError as ex:
                logger.warning(f"[VirtualNetwork] Could not ensure '{name}': {ex.message}")
                return None

    @staticmethod
    def storage_key(client: AzureClient, resource_group: str, name: str) -> Optional[str]:
        """
        First access key of a storage account, or None if it cannot be listed.
        """
        try:
            keys = client.storage.storage_accounts.list_keys(resource_group, name)
        except HttpResponseError as ex:
            logger.warning(f"[StorageAccount] Could not list keys for '{name}': {ex.message}")
            return None
        return keys.keys[0].value if keys.keys else None
