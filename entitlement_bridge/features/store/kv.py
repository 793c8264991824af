"""
REST key-value store client (Upstash / Vercel KV).

Commands are sent as a JSON array (``["SET", key, value, "EX", ttl]``) to the
store's base URL. Values are JSON-serialized on write and parsed on read.
Reads normalize the envelopes different backends produce:

- ``{"result": "<json text>"}``                 (Upstash)
- ``{"result": "{\\"value\\": \\"<json text>\\"}"}`` (Vercel KV written with a
  ``{value: ...}`` body)
- ``{"result": {...}}``                         (already-decoded result)
"""
import json
from typing import Any, Optional

import httpx

from entitlement_bridge.core.errors import StoreError


KV_TIMEOUT_SECONDS = 10.0


def _decode(raw: Any) -> Any:
    """Parse a stored value, unwrapping a ``{"value": ...}`` wrapper."""
    value = raw
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return value
    if isinstance(value, dict) and set(value.keys()) == {"value"}:
        return _decode(value["value"])
    return value


def normalize_result(payload: Any) -> Any:
    """Extract the value from a store response envelope; None when absent."""
    if payload is None:
        return None
    if isinstance(payload, dict):
        if "result" in payload:
            result = payload["result"]
        elif "value" in payload:
            result = payload["value"]
        else:
            return None
    else:
        result = payload
    if result is None:
        return None
    return _decode(result)


class KVStore:
    """Typed get / set-with-expiry over the store's REST API."""

    def __init__(self, url: Optional[str], token: Optional[str], *, client: Optional[httpx.Client] = None, timeout: float = KV_TIMEOUT_SECONDS):
        self.url = (url or "").rstrip("/")
        self.token = token
        self._client = client
        self.timeout = timeout

    def _command(self, *args: Any) -> Any:
        if not self.url or not self.token:
            missing = [
                name for name, val in (
                    ("UPSTASH_REDIS_REST_URL/KV_REST_API_URL", self.url),
                    ("UPSTASH_REDIS_REST_TOKEN/KV_REST_API_TOKEN", self.token),
                ) if not val
            ]
            raise StoreError(f"KV missing config: {' & '.join(missing)}")

        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }
        try:
            if self._client is not None:
                response = self._client.post(self.url, headers=headers, json=list(args))
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(self.url, headers=headers, json=list(args))
        except httpx.HTTPError as e:
            raise StoreError(f"KV {args[0]} transport error: {e}")

        if response.status_code >= 300:
            raise StoreError(
                f"KV {args[0]} {response.status_code}: {response.text[:300]}",
                status=response.status_code,
                body=response.text,
            )
        try:
            data = response.json()
        except ValueError:
            return None
        if isinstance(data, dict) and data.get("error"):
            raise StoreError(
                f"KV {args[0]} error: {data['error']}",
                status=response.status_code,
                body=response.text,
            )
        return data

    def get(self, key: str) -> Any:
        """Return the parsed value stored under ``key``, or None if absent."""
        return normalize_result(self._command("GET", key))

    def set_with_expiry(self, key: str, value: Any, ttl_seconds: int) -> None:
        serialized = value if isinstance(value, str) else json.dumps(value, separators=(",", ":"))
        self._command("SET", key, serialized, "EX", int(ttl_seconds))
