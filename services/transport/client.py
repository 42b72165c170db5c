from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from shared.logging.logger import get_logger

log = get_logger("transport.client")


class TransportError(RuntimeError):
    """Non-success response, network failure or undecodable body."""

    def __init__(self, message: str, *, status_code: int = 0, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


@dataclass
class PullPage:
    envelopes: List[Dict[str, Any]]
    next_since: int
    count: int


@dataclass
class SendResult:
    ok: bool
    status_code: int
    raw: str = ""
    provider_ids: Dict[str, str] = field(default_factory=dict)
    error: Optional[Dict[str, Any]] = None


def provider_ids(body: Any) -> Dict[str, str]:
    """Extract provider ids from a successful send response body."""
    ids: Dict[str, str] = {}
    if not isinstance(body, dict):
        return ids
    contacts = body.get("contacts")
    if isinstance(contacts, list) and contacts and isinstance(contacts[0], dict):
        ids["wa_id"] = str(contacts[0].get("wa_id", ""))
    messages = body.get("messages")
    if isinstance(messages, list) and messages and isinstance(messages[0], dict):
        ids["message_id"] = str(messages[0].get("id", ""))
    return ids


def provider_error(body: Any, raw: str = "") -> Dict[str, Any]:
    """Extract the provider error block from a failed send response body."""
    if not isinstance(body, dict) or not isinstance(body.get("error"), dict):
        return {"message": "non-JSON or empty response", "raw": raw}

    error = body["error"]
    details: Dict[str, Any] = {
        "code": error.get("code", 0),
        "type": error.get("type", ""),
        "message": error.get("message", ""),
        "fbtrace_id": error.get("fbtrace_id", ""),
    }
    error_data = error.get("error_data")
    if isinstance(error_data, dict):
        details["details"] = error_data.get("details", "")
    return details


class TransportClient:
    """
    Thin client for the remote transport worker.

    Endpoints:
      GET  {worker}/pull?since=&limit=            bulk history page
      GET  {worker}/lp?since=&timeout=&limit=     long-poll for new envelopes
      POST {worker}/send                           outbound text message
    """

    def __init__(
        self,
        worker: str,
        phone_id: str,
        *,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not worker:
            raise RuntimeError("Transport worker URL is required")
        self.worker = worker.rstrip("/")
        self.phone_id = phone_id
        self._timeout = timeout
        self.client = client or httpx.Client(
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _get_json(self, path: str, params: Dict[str, Any], timeout: float) -> Dict[str, Any]:
        url = f"{self.worker}{path}"
        try:
            response = self.client.get(url, params=params, timeout=timeout)
        except httpx.HTTPError as e:
            raise TransportError(f"GET {path} failed: {e}") from e

        if response.status_code // 100 != 2:
            raise TransportError(
                f"GET {path} http {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(
                f"GET {path} returned non-JSON body",
                status_code=response.status_code,
                body=response.text,
            ) from e

        if not isinstance(data, dict):
            raise TransportError(
                f"GET {path} returned non-object body",
                status_code=response.status_code,
                body=response.text,
            )
        return data

    @staticmethod
    def _envelopes(data: Dict[str, Any]) -> List[Dict[str, Any]]:
        messages = data.get("messages")
        if not isinstance(messages, list):
            return []
        return [m for m in messages if isinstance(m, dict)]

    @staticmethod
    def _as_int(value: Any, default: int) -> int:
        if isinstance(value, bool):
            return default
        if isinstance(value, int):
            return value
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def pull(self, since: int, limit: int) -> PullPage:
        data = self._get_json(
            "/pull",
            {"since": since, "limit": limit},
            timeout=self._timeout,
        )
        return PullPage(
            envelopes=self._envelopes(data),
            next_since=self._as_int(data.get("next_since"), since),
            count=self._as_int(data.get("count"), 0),
        )

    def longpoll(self, since: int, timeout: int, limit: int) -> PullPage:
        # client-side timeout must outlast the server-side wait
        data = self._get_json(
            "/lp",
            {"since": since, "timeout": timeout, "limit": limit},
            timeout=max(self._timeout, float(timeout) + 10.0),
        )
        envelopes = self._envelopes(data)
        return PullPage(
            envelopes=envelopes,
            next_since=self._as_int(data.get("next_since"), since),
            count=self._as_int(data.get("count"), len(envelopes)),
        )

    def send(self, to: str, text: str) -> SendResult:
        payload = {"phone_number_id": self.phone_id, "to": to, "text": text}
        try:
            response = self.client.post(f"{self.worker}/send", json=payload)
        except httpx.HTTPError as e:
            log.error(f"Send to {to} failed: {e}")
            return SendResult(ok=False, status_code=0, error={"message": str(e)})

        raw = response.text
        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code // 100 == 2:
            return SendResult(
                ok=True,
                status_code=response.status_code,
                raw=raw,
                provider_ids=provider_ids(body),
            )

        log.error(f"Send failed [{response.status_code}]")
        return SendResult(
            ok=False,
            status_code=response.status_code,
            raw=raw,
            error=provider_error(body, raw),
        )

    def close(self) -> None:
        self.client.close()


__all__ = [
    "PullPage",
    "SendResult",
    "TransportClient",
    "TransportError",
    "provider_error",
    "provider_ids",
]
