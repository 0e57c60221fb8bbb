# tenant.py
import logging
from typing import Any, Callable, Dict, List, Optional

import click

from buildenv.errors import AzureCliError, ValidationError
from buildenv.buildazure.run import run_az

logger = logging.getLogger(__name__)


def _choose(
        items: List[Dict[str, Any]],
        *,
        label: str,
        describe: Callable[[Dict[str, Any]], str],
        interactive: bool,
        default_index: int = 0,
) -> Dict[str, Any]:
    """
    If exactly one entry, return it. Otherwise prompt for a numbered choice, or fail
    when prompting is not allowed.
    """
    if not items:
        raise ValidationError(f"No {label} available to choose from.")
    if len(items) == 1:
        return items[0]
    if not interactive:
        raise ValidationError(f"Several {label}s are available; pass one explicitly.")

    click.echo(f"Available {label}s:")
    for i, item in enumerate(items, 1):
        click.echo(f"  {i}. {describe(item)}")
    choice = click.prompt(
        f"Select {label}",
        type=click.IntRange(1, len(items)),
        default=default_index + 1,
    )
    return items[choice - 1]


class AzureAccount:
    """
    The Azure CLI login the run operates under.
    """

    @staticmethod
    def current() -> Optional[Dict[str, Any]]:
        """
        Return `az account show`, or None if the CLI is not logged in.
        """
        try:
            return run_az(["az", "account", "show"])
        except AzureCliError as ex:
            logger.debug(f"[AzureAccount] Not logged in: {ex}")
            return None

    @staticmethod
    def ensure_login(interactive: bool = True) -> Dict[str, Any]:
        account = AzureAccount.current()
        if account:
            user = (account.get("user") or {}).get("name", "<unknown>")
            logger.info(f"[AzureAccount] Logged in as {user}")
            return account

        if not interactive:
            raise ValidationError("Azure CLI is not logged in. Run 'az login' first.")

        logger.info("[AzureAccount] No Azure CLI session; starting 'az login'...")
        try:
            run_az(["az", "login"], expect_json=False, capture_output=False)
        except AzureCliError as ex:
            raise ValidationError(f"Azure login failed: {ex}")

        account = AzureAccount.current()
        if not account:
            raise ValidationError("Azure login did not produce an active account.")
        return account


class AzureSubscription:
    """
    Lists enabled subscriptions, picks one (given, single, or prompted) and makes it
    the CLI's active subscription.
    """

    @staticmethod
    def list() -> List[Dict[str, Any]]:
        subs = run_az(["az", "account", "list", "--all"])
        if not isinstance(subs, list):
            raise AzureCliError(["az", "account", "list"], 0, stderr=f"Expected JSON array, got: {subs!r}")
        return [s for s in subs if s.get("state", "Enabled") == "Enabled"]

    @staticmethod
    def pick(subs: List[Dict[str, Any]], wanted: Optional[str] = None, interactive: bool = True) -> Dict[str, Any]:
        if wanted:
            for s in subs:
                if wanted.lower() in (s.get("id", "").lower(), s.get("name", "").lower()):
                    return s
            raise ValidationError(f"Subscription '{wanted}' not found or not enabled for this account.")

        default_index = next((i for i, s in enumerate(subs) if s.get("isDefault")), 0)
        return _choose(
            subs,
            label="subscription",
            describe=lambda s: f"{s.get('name', '<unnamed>')} ({s.get('id', '<no-id>')})",
            interactive=interactive,
            default_index=default_index,
        )

    @staticmethod
    def select(wanted: Optional[str] = None, interactive: bool = True) -> Dict[str, Any]:
        chosen = AzureSubscription.pick(AzureSubscription.list(), wanted, interactive)
        sub_id = chosen.get("id")
        if not sub_id:
            raise ValidationError(f"Malformed subscription entry: {chosen!r}")

        run_az(["az", "account", "set", "--subscription", sub_id], expect_json=False)
        logger.info(f"[AzureSubscription] Using subscription {chosen.get('name')} ({sub_id})")
        return chosen


class AzureRegion:
    @staticmethod
    def list() -> List[Dict[str, Any]]:
        locations = run_az(["az", "account", "list-locations"]) or []
        physical = [
            loc for loc in locations
            if (loc.get("metadata") or {}).get("regionType", "Physical") == "Physical"
        ]
        return sorted(physical, key=lambda loc: loc.get("name", ""))

    @staticmethod
    def select(wanted: Optional[str] = None, interactive: bool = True) -> str:
        regions = AzureRegion.list()
        if wanted:
            normalized = wanted.replace(" ", "").lower()
            for loc in regions:
                if normalized in (loc.get("name", "").lower(), loc.get("displayName", "").replace(" ", "").lower()):
                    return loc["name"]
            raise ValidationError(f"Region '{wanted}' is not available for this subscription.")

        chosen = _choose(
            regions,
            label="region",
            describe=lambda loc: f"{loc.get('name')} ({loc.get('displayName', '')})",
            interactive=interactive,
        )
        return chosen["name"]


class AzureVmSize:
    @staticmethod
    def list(location: str) -> List[Dict[str, Any]]:
        sizes = run_az(["az", "vm", "list-sizes", "--location", location]) or []
        return sorted(sizes, key=lambda s: (s.get("numberOfCores", 0), s.get("memoryInMb", 0), s.get("name", "")))

    @staticmethod
    def select(location: str, wanted: Optional[str] = None, interactive: bool = True) -> str:
        sizes = AzureVmSize.list(location)
        if wanted:
            for s in sizes:
                if s.get("name", "").lower() == wanted.lower():
                    return s["name"]
            raise ValidationError(f"VM size '{wanted}' is not offered in {location}.")

        chosen = _choose(
            sizes,
            label="VM size",
            describe=lambda s: f"{s.get('name')} ({s.get('numberOfCores')} cores, {s.get('memoryInMb')} MB)",
            interactive=interactive,
        )
        return chosen["name"]
