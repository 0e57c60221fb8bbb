import hashlib
import re

STORAGE_NAME_MAX = 24
STORAGE_NAME_MIN = 3
RESOURCE_NAME_MAX = 64


class Sanitization:
    """
    Utility class to sanitize names for Azure resources by removing or replacing
    invalid characters.
    """

    @staticmethod
    def short_hash(value: str, length: int = 8) -> str:
        """
        Stable lowercase hex digest of `value`, truncated to `length` characters.
        """
        if not isinstance(value, str):
            raise TypeError("Sanitization.short_hash: input must be a string")
        return hashlib.md5(value.lower().encode("utf-8")).hexdigest()[:length]

    @staticmethod
    def resource_name(*parts: str) -> str:
        """
        Join parts into a resource group / network style name:
        - Only lowercase alphanumerics and hyphens
        - No consecutive hyphens, no leading or trailing hyphen
        - At most 64 characters
        """
        raw = "-".join(str(p) for p in parts if p)
        value = re.sub(r"[^a-z0-9\-]", "-", raw.lower())
        value = re.sub(r"-{2,}", "-", value).strip("-")
        if not value:
            raise ValueError(f"Sanitization.resource_name: nothing left of {parts!r}")
        return value[:RESOURCE_NAME_MAX].rstrip("-")

    @staticmethod
    def storage_account_name(*parts: str, suffix: str = "") -> str:
        """
        Build a storage account name from `parts` plus a uniqueness `suffix`:
        - 3-24 characters
        - Only lowercase letters and digits
        - The suffix is always kept whole; the prefix is truncated to fit

        Args:
            parts: Readable name components (prefix, purpose, location).
            suffix: Uniqueness suffix, usually Sanitization.short_hash(subscription_id).

        Returns:
            str: Sanitized storage account name.
        """
        suffix = Sanitization.purge(suffix)
        if len(suffix) > STORAGE_NAME_MAX:
            raise ValueError(f"Storage suffix longer than {STORAGE_NAME_MAX} characters: {suffix!r}")

        head = Sanitization.purge("".join(str(p) for p in parts if p))
        head = head[:STORAGE_NAME_MAX - len(suffix)]
        value = head + suffix

        if len(value) < STORAGE_NAME_MIN:
            value = value + "x" * (STORAGE_NAME_MIN - len(value))
        return value

    @staticmethod
    def is_valid_storage_account_name(value: str) -> bool:
        return bool(re.fullmatch(r"[a-z0-9]{3,24}", value or ""))

    @staticmethod
    def purge(value: str) -> str:
        """
        Remove everything except alphanumeric characters and lowercase the result.
        """
        return re.sub(r"[^a-zA-Z0-9]", "", value).lower()


short_hash = Sanitization.short_hash
resource_name = Sanitization.resource_name
storage_account_name = Sanitization.storage_account_name
