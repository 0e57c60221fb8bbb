import logging
from typing import Any, Callable, Dict, List, Optional

import requests

from buildenv.backend_methods.http import Requests
from buildenv.errors import CIServiceError, ValidationError

logger = logging.getLogger(__name__)


class CIClient:
    """
    REST client for the CI service's build-cloud and build-worker-image endpoints,
    authenticated with a bearer token.
    """

    BUILD_CLOUDS = "/api/build-clouds"
    BUILD_WORKER_IMAGES = "/api/build-worker-images"
    HEALTH = "/api/projects"

    def __init__(self, url: str, token: str, *, retries: int = 1, timeout: float = 30.0):
        if not url:
            raise ValueError("[CIClient] url is required")
        self.url = url.rstrip("/")
        self.retries = retries
        self.timeout = timeout
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def __repr__(self) -> str:
        return f"CIClient(url={self.url!r})"

    def _endpoint(self, path: str) -> str:
        return f"{self.url}{path}"

    def _call(self, verb: str, path: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            body = e.response.text[:300] if e.response is not None else ""
            raise CIServiceError(f"{verb} {path} failed with HTTP {status}: {body}", status_code=status) from e
        except requests.RequestException as e:
            raise CIServiceError(f"{verb} {path} failed: {e}") from e

    def _get(self, path: str) -> Any:
        return self._call("GET", path, lambda: Requests.http_get(
            self._endpoint(path), headers=self._headers, retries=self.retries,
            timeout=self.timeout, expect_json=True,
        ))

    def _post(self, path: str, data: dict) -> Any:
        return self._call("POST", path, lambda: Requests.http_post(
            self._endpoint(path), data, headers=self._headers, retries=self.retries,
            timeout=self.timeout, expect_json=True,
        ))

    def _put(self, path: str, data: dict) -> Any:
        return self._call("PUT", path, lambda: Requests.http_put(
            self._endpoint(path), data, headers=self._headers, retries=self.retries,
            timeout=self.timeout, expect_json=True,
        ))

    def validate(self) -> None:
        """
        Health/auth check: the service must answer and accept the token.

        Raises:
            ValidationError: On an unreachable service or a rejected token.
        """
        try:
            self._get(self.HEALTH)
        except CIServiceError as e:
            if e.status_code in (401, 403):
                raise ValidationError(f"CI service at {self.url} rejected the API token.") from e
            raise ValidationError(f"CI service at {self.url} is not reachable: {e}") from e
        logger.info(f"[CIClient] Connected to {self.url}")

    # ─── Build clouds ─────────────────────────────────────────────────────────

    def list_build_clouds(self) -> List[Dict[str, Any]]:
        return self._get(self.BUILD_CLOUDS) or []

    def get_build_cloud(self, build_cloud_id: int) -> Dict[str, Any]:
        return self._get(f"{self.BUILD_CLOUDS}/{build_cloud_id}")

    def create_build_cloud(self, document: Dict[str, Any]) -> Dict[str, Any]:
        return self._post(self.BUILD_CLOUDS, document) or document

    def update_build_cloud(self, document: Dict[str, Any]) -> Dict[str, Any]:
        return self._put(self.BUILD_CLOUDS, document) or document

    # ─── Build worker images ──────────────────────────────────────────────────

    def list_build_worker_images(self) -> List[Dict[str, Any]]:
        return self._get(self.BUILD_WORKER_IMAGES) or []

    def create_build_worker_image(self, document: Dict[str, Any]) -> Dict[str, Any]:
        return self._post(self.BUILD_WORKER_IMAGES, document) or document

    def update_build_worker_image(self, document: Dict[str, Any]) -> Dict[str, Any]:
        return self._put(self.BUILD_WORKER_IMAGES, document) or document

    @staticmethod
    def find_by_name(items: List[Dict[str, Any]], name: str) -> Optional[Dict[str, Any]]:
        wanted = name.lower()
        return next((i for i in items if str(i.get("name", "")).lower() == wanted), None)
