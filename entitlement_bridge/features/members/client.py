"""
Memberstack admin API client.

Credentials are selected per environment: ``live`` / ``test`` keys when
configured, otherwise the shared ``MEMBERSTACK_API_KEY``. The fallback is
logged so a missing per-environment key is visible rather than silent.

patch_custom_fields never retries; redelivery of the webhook is the retry.
Member lookups (by email) retry on 429/5xx with linear backoff.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterator, List, Optional
from urllib.parse import quote

import httpx

from entitlement_bridge.core.errors import ProviderError
from entitlement_bridge.core.logging import LOGGER_NAME, key_prefix


MEMBERSTACK_TIMEOUT_SECONDS = 10.0
LOOKUP_ATTEMPTS = 3
LOOKUP_BACKOFF_SECONDS = 0.5

logger = logging.getLogger(LOGGER_NAME)


def _unwrap(data: Any) -> Any:
    if isinstance(data, dict) and "data" in data:
        return data["data"]
    return data


class MemberstackClient:
    def __init__(
        self,
        api_keys: Dict[str, str],
        shared_key: Optional[str] = None,
        *,
        base_url: str = "https://admin.memberstack.com",
        client: Optional[httpx.Client] = None,
        timeout: float = MEMBERSTACK_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        lookup_attempts: int = LOOKUP_ATTEMPTS,
        lookup_backoff: float = LOOKUP_BACKOFF_SECONDS,
    ):
        self.api_keys = dict(api_keys or {})
        self.shared_key = shared_key
        self.base_url = base_url.rstrip("/")
        self._client = client
        self.timeout = timeout
        self._sleep = sleep
        self.lookup_attempts = max(1, lookup_attempts)
        self.lookup_backoff = lookup_backoff

    def api_key(self, env: str) -> str:
        key = self.api_keys.get(env)
        if key:
            return key
        if self.shared_key:
            logger.warning(
                "memberstack.key.fallback",
                extra={"env": env, "reason": f"no MEMBERSTACK_API_KEY_{env.upper()}, using shared key"},
            )
            return self.shared_key
        raise ProviderError(f"Missing Memberstack API key for env={env}")

    def _request(self, method: str, env: str, path: str, **kwargs) -> httpx.Response:
        key = self.api_key(env)
        headers = {"X-API-KEY": key, "Content-Type": "application/json"}
        url = f"{self.base_url}{path}"
        logger.info(f"memberstack.{method.lower()}", extra={"env": env, "path": path, "key_prefix": key_prefix(key)})
        try:
            if self._client is not None:
                return self._client.request(method, url, headers=headers, **kwargs)
            with httpx.Client(timeout=self.timeout) as client:
                return client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise ProviderError(f"Memberstack {method} {path} transport error: {e}")

    @staticmethod
    def _raise_for_status(response: httpx.Response, what: str) -> None:
        if response.status_code >= 300:
            raise ProviderError(
                f"Memberstack {what} {response.status_code}: {response.text[:300]}",
                status=response.status_code,
                body=response.text,
            )

    def patch_custom_fields(self, env: str, member_id: str, fields: Dict[str, str]) -> None:
        response = self._request(
            "PATCH", env, f"/members/{quote(member_id, safe='')}", json={"customFields": fields}
        )
        self._raise_for_status(response, "update")

    def get_member(self, env: str, member_id: str) -> Dict[str, Any]:
        response = self._request("GET", env, f"/members/{quote(member_id, safe='')}")
        self._raise_for_status(response, "get")
        member = _unwrap(response.json() if response.content else {})
        return member if isinstance(member, dict) else {}

    def find_member_id_by_email(self, env: str, email: str) -> Optional[str]:
        """Look a member up by email; None on 404. Retries throttling and 5xx."""
        path = f"/members/{quote(email, safe='')}"
        for attempt in range(1, self.lookup_attempts + 1):
            response = self._request("GET", env, path)
            if response.status_code == 404:
                return None
            retryable = response.status_code == 429 or response.status_code >= 500
            if retryable and attempt < self.lookup_attempts:
                self._sleep(self.lookup_backoff * attempt)
                continue
            self._raise_for_status(response, "query")
            data = _unwrap(response.json() if response.content else {})
            if isinstance(data, list):
                data = data[0] if data else {}
            member_id = data.get("id") if isinstance(data, dict) else None
            return member_id or None
        return None

    def iter_members(self, env: str, page_size: int = 100) -> Iterator[Dict[str, Any]]:
        after: Optional[str] = None
        while True:
            params: Dict[str, Any] = {"limit": page_size}
            if after:
                params["after"] = after
            response = self._request("GET", env, "/members", params=params)
            self._raise_for_status(response, "list")
            body = response.json() if response.content else {}
            items = _unwrap(body)
            if isinstance(items, dict):
                items = items.get("items", [])
            for item in items or []:
                yield item
            if not isinstance(body, dict):
                break
            after = body.get("endCursor") or body.get("nextCursor")
            if not after or body.get("hasNextPage") is False:
                break

    def list_members(self, env: str, page_size: int = 100) -> List[Dict[str, Any]]:
        return list(self.iter_members(env, page_size=page_size))
