from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx


class HueTransportError(Exception):
    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason or message


class HueUpstreamError(Exception):
    def __init__(self, *, status_code: int, body: Any) -> None:
        super().__init__(f"Hue upstream error: {status_code}")
        self.status_code = status_code
        self.body = body


class HueRegistrationError(Exception):
    def __init__(self, *, description: str, error_type: int | None = None) -> None:
        super().__init__(description)
        self.description = description
        self.error_type = error_type

    @property
    def link_button_not_pressed(self) -> bool:
        return self.error_type == 101


def _classify(exc: Exception) -> str:
    message = str(exc)
    lowered = message.lower()
    if isinstance(exc, httpx.ConnectError) and "refused" in lowered:
        return "Connection refused"
    if isinstance(exc, (httpx.RemoteProtocolError, httpx.ReadError)) or "reset by peer" in lowered:
        return "Socket hang up"
    return message or exc.__class__.__name__


@dataclass(frozen=True)
class HueJSONishResult:
    status_code: int
    body: Any


class HueClient:
    """Client for the bridge's v1 REST API (``/api/<user>/...``)."""

    def __init__(
        self,
        *,
        bridge_ip: str | None,
        bridge_user: str | None,
        bridge_port: int = 80,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._bridge_ip = bridge_ip
        self._bridge_port = bridge_port
        self._bridge_user = bridge_user
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def bridge_ip(self) -> str | None:
        return self._bridge_ip

    @property
    def bridge_user(self) -> str | None:
        return self._bridge_user

    def _base_url(self) -> str:
        if not self._bridge_ip:
            raise HueTransportError("bridge_ip not configured")
        return f"http://{self._bridge_ip}:{self._bridge_port}/api/"

    def _user_path(self, path: str = "") -> str:
        if not self._bridge_user:
            raise HueTransportError("bridge_user not configured")
        return f"{self._bridge_user}/{path.lstrip('/')}"

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client:
            return self._client
        self._client = httpx.AsyncClient(
            base_url=self._base_url(),
            timeout=httpx.Timeout(10.0, connect=3.0),
            transport=self._transport,
        )
        return self._client

    async def request_jsonish(self, *, method: str, path: str, json_body: Any | None = None) -> HueJSONishResult:
        client = await self._get_client()
        try:
            resp = await client.request(method, path, json=json_body)
        except httpx.TransportError as exc:
            raise HueTransportError(str(exc), reason=_classify(exc)) from exc

        body: Any
        try:
            body = resp.json()
        except ValueError:
            body = resp.text

        if resp.status_code >= 400:
            raise HueUpstreamError(status_code=resp.status_code, body=body)
        return HueJSONishResult(status_code=resp.status_code, body=body)

    async def get_payload(self) -> Any:
        """Full resource graph of the bridge (lights, groups, scenes, ...)."""
        result = await self.request_jsonish(method="GET", path=self._user_path())
        return result.body

    async def send(self, *, trigger: str, body: Any, method: str = "PUT") -> Any:
        result = await self.request_jsonish(method=method, path=self._user_path(trigger), json_body=body)
        return result.body

    async def register(self, devicetype: str) -> str:
        """Create a bridge user. Requires the link button to have been pressed."""
        result = await self.request_jsonish(method="POST", path="", json_body={"devicetype": devicetype})
        response = result.body
        # Expected: [{"success": {"username": ...}}] or [{"error": {"type": 101, "description": ...}}]
        if isinstance(response, list) and response:
            first = response[0]
            if isinstance(first, dict) and "error" in first:
                err = first["error"] if isinstance(first["error"], dict) else {}
                try:
                    error_type = int(err.get("type", 0))
                except (TypeError, ValueError):
                    error_type = None
                raise HueRegistrationError(
                    description=str(err.get("description", "unknown error")),
                    error_type=error_type,
                )
            if isinstance(first, dict) and isinstance(first.get("success"), dict):
                username = first["success"].get("username")
                if isinstance(username, str):
                    return username
        raise HueRegistrationError(description=f"Unexpected registration response: {response!r}")
