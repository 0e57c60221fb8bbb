import logging
from typing import Any, Dict, Optional

from buildenv.ci.client import CIClient
from buildenv.errors import CIServiceError

logger = logging.getLogger(__name__)


class BuildWorkerImage:
    """
    Get-or-create of a build worker image record: the name builds select the image by,
    and its OS type.
    """

    @staticmethod
    def ensure(client: CIClient, name: str, os_type: str) -> Optional[Dict[str, Any]]:
        try:
            existing = CIClient.find_by_name(client.list_build_worker_images(), name)
            if existing is None:
                logger.info(f"[BuildWorkerImage] Creating '{name}' ({os_type})")
                return client.create_build_worker_image({"name": name, "osType": os_type})

            if existing.get("osType") != os_type:
                logger.info(f"[BuildWorkerImage] Updating '{name}' OS type {existing.get('osType')} -> {os_type}")
                return client.update_build_worker_image({**existing, "osType": os_type})

            logger.info(f"[BuildWorkerImage] '{name}' already exists")
            return existing
        except CIServiceError as ex:
            logger.warning(f"[BuildWorkerImage] Could not ensure '{name}': {ex}")
            return None
