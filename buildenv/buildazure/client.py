import logging
from dataclasses import dataclass
from typing import Any, Optional

from azure.identity import DefaultAzureCredential
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.storage import StorageManagementClient

from buildenv.errors import AzureCliError
from buildenv.buildazure.run import run_az

logger = logging.getLogger(__name__)


class AzureClient:
    """
    Lazily constructed Azure SDK management clients for one subscription.
    """

    def __init__(self, subscription_id: str, credential: Any = None):
        if not subscription_id:
            raise ValueError("[AzureClient] subscription_id is required")
        self.subscription_id = subscription_id
        self.credential = credential or DefaultAzureCredential(exclude_interactive_browser_credential=True)
        self._resource: Optional[ResourceManagementClient] = None
        self._storage: Optional[StorageManagementClient] = None
        self._network: Optional[NetworkManagementClient] = None

    @property
    def resource(self) -> ResourceManagementClient:
        if self._resource is None:
            self._resource = ResourceManagementClient(self.credential, self.subscription_id)
        return self._resource

    @property
    def storage(self) -> StorageManagementClient:
        if self._storage is None:
            self._storage = StorageManagementClient(self.credential, self.subscription_id)
        return self._storage

    @property
    def network(self) -> NetworkManagementClient:
        if self._network is None:
            self._network = NetworkManagementClient(self.credential, self.subscription_id)
        return self._network


@dataclass
class ServicePrincipal:
    client_id: str
    client_secret: Optional[str]
    tenant_id: str
    display_name: str

    def __repr__(self) -> str:
        return (f"ServicePrincipal(client_id={self.client_id!r}, tenant_id={self.tenant_id!r}, "
                f"display_name={self.display_name!r})")


class ServicePrincipals:
    """
    Get-or-create of the service principal the CI service and Packer authenticate with.
    """

    ROLE = "Contributor"
    CREDENTIAL_NAME = "buildenv"

    @staticmethod
    def find(name: str) -> Optional[dict]:
        found = run_az(["az", "ad", "sp", "list", "--display-name", name]) or []
        matches = [sp for sp in found if sp.get("displayName") == name]
        return matches[0] if matches else None

    @staticmethod
    def _from_credentials(creds: dict, name: str) -> ServicePrincipal:
        return ServicePrincipal(
            client_id=creds["appId"],
            client_secret=creds["password"],
            tenant_id=creds["tenant"],
            display_name=creds.get("displayName") or name,
        )

    @staticmethod
    def prune_credentials(app_id: str) -> int:
        """
        Delete the password credentials earlier runs added (display name CREDENTIAL_NAME),
        so that each reset leaves exactly one of them. Other credentials are kept.
        """
        existing = run_az(["az", "ad", "app", "credential", "list", "--id", app_id]) or []
        stale = [c["keyId"] for c in existing if c.get("displayName") == ServicePrincipals.CREDENTIAL_NAME]
        for key_id in stale:
            run_az(["az", "ad", "app", "credential", "delete", "--id", app_id, "--key-id", key_id],
                   expect_json=False)
        if stale:
            logger.info(f"[ServicePrincipals] Removed {len(stale)} earlier buildenv secret(s) from {app_id}")
        return len(stale)

    @staticmethod
    def ensure_role(client_id: str, subscription_id: str) -> None:
        scope = f"/subscriptions/{subscription_id}"
        try:
            run_az([
                "az", "role", "assignment", "create",
                "--assignee", client_id,
                "--role", ServicePrincipals.ROLE,
                "--scope", scope,
            ])
        except AzureCliError as ex:
            if "already exists" not in str(ex).lower():
                raise
            logger.debug(f"[ServicePrincipals] Role assignment already present for {client_id}")

    @staticmethod
    def ensure(name: str, subscription_id: str, known_client_id: Optional[str] = None) -> Optional[ServicePrincipal]:
        """
        Reuse the principal named `name` or create it with Contributor on the subscription.

        Existing secrets cannot be read back, so a reused principal gets a fresh secret
        that replaces the one an earlier run added, unless its app id equals
        `known_client_id` (the CI service already holds a working secret for it); then
        client_secret is None.

        Returns None, after logging a warning, if the directory rejects the call.
        """
        try:
            existing = ServicePrincipals.find(name)
            if existing:
                app_id = existing["appId"]
                logger.info(f"[ServicePrincipals] Reusing service principal '{name}' ({app_id})")
                if known_client_id and known_client_id.lower() == app_id.lower():
                    ServicePrincipals.ensure_role(app_id, subscription_id)
                    return ServicePrincipal(
                        client_id=app_id,
                        client_secret=None,
                        tenant_id=existing.get("appOwnerOrganizationId", ""),
                        display_name=name,
                    )
                ServicePrincipals.prune_credentials(app_id)
                creds = run_az([
                    "az", "ad", "app", "credential", "reset",
                    "--id", app_id,
                    "--append",
                    "--display-name", ServicePrincipals.CREDENTIAL_NAME,
                ])
                ServicePrincipals.ensure_role(app_id, subscription_id)
                return ServicePrincipals._from_credentials(creds, name)

            logger.info(f"[ServicePrincipals] Creating service principal '{name}'")
            creds = run_az([
                "az", "ad", "sp", "create-for-rbac",
                "--name", name,
                "--role", ServicePrincipals.ROLE,
                "--scopes", f"/subscriptions/{subscription_id}",
            ])
            return ServicePrincipals._from_credentials(creds, name)
        except (AzureCliError, KeyError, TypeError) as ex:
            logger.warning(f"[ServicePrincipals] Could not ensure service principal '{name}': {ex}")
            return None
