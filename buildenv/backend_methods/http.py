import logging
from typing import Any, Optional

import requests

from buildenv.util.error_handling import attempt, check_types

logger = logging.getLogger(__name__)


class Requests:
    """
    JSON-over-HTTP helpers on one shared session.

    Each call makes `retries` tries (a single one by default). A non-2xx status raises
    requests.HTTPError; REST clients translate it into their own errors.
    """

    session = requests.Session()

    @staticmethod
    def send(
            method: str,
            url: str,
            *,
            payload: Optional[dict] = None,
            headers: Optional[dict] = None,
            timeout: float = 30.0,
            expect_json: bool = False,
    ) -> Any:
        """
        One request. With `expect_json` the decoded body is returned (None when empty),
        otherwise the Response.
        """
        check_types(method, str, "method")
        check_types(url, str, "url")

        verb = method.upper()
        logger.debug(f"[Requests] {verb} {url}")
        resp = Requests.session.request(verb, url, json=payload, headers=headers, timeout=timeout)
        resp.raise_for_status()

        if not expect_json:
            return resp
        return resp.json() if resp.content else None

    @staticmethod
    def _send_with_retries(method: str, url: str, payload: Optional[dict], headers: Optional[dict],
                           retries: int, timeout: float, expect_json: bool) -> Any:
        return attempt(
            lambda: Requests.send(
                method, url, payload=payload, headers=headers, timeout=timeout, expect_json=expect_json
            ),
            retries=retries,
            handled=(requests.RequestException,),
            label=f"http_{method.lower()}",
        )

    @staticmethod
    def http_get(url: str, headers: dict = None, retries: int = 1, timeout: float = 30.0,
                 expect_json: bool = False) -> Any:
        return Requests._send_with_retries("GET", url, None, headers, retries, timeout, expect_json)

    @staticmethod
    def http_post(url: str, data: dict, headers: dict = None, retries: int = 1, timeout: float = 30.0,
                  expect_json: bool = False) -> Any:
        check_types(data, dict, "data")
        return Requests._send_with_retries("POST", url, data, headers, retries, timeout, expect_json)

    @staticmethod
    def http_put(url: str, data: dict, headers: dict = None, retries: int = 1, timeout: float = 30.0,
                 expect_json: bool = False) -> Any:
        check_types(data, dict, "data")
        return Requests._send_with_retries("PUT", url, data, headers, retries, timeout, expect_json)

    @staticmethod
    def ensure_endpoint(url: str, headers: dict = None, timeout: float = 10.0,
                        healthy: range = range(200, 400)) -> bool:
        """
        True when `url` answers a GET with a status in `healthy`.
        """
        try:
            status = Requests.session.request("GET", url, headers=headers, timeout=timeout).status_code
        except requests.RequestException as e:
            logger.warning(f"[Requests] {url} is unreachable: {e}")
            return False

        if status not in healthy:
            logger.warning(f"[Requests] {url} answered HTTP {status}")
            return False
        return True
