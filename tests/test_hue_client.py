import json

import httpx
import pytest

from hue_extended.hue_client import HueClient, HueRegistrationError, HueTransportError, HueUpstreamError


def _client(handler) -> HueClient:
    return HueClient(bridge_ip="bridge.test", bridge_user="user", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_get_payload_reads_the_user_root():
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "GET"
        assert request.url.path == "/api/user/"
        return httpx.Response(200, json={"lights": {}})

    client = _client(handler)
    try:
        assert await client.get_payload() == {"lights": {}}
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_send_puts_json_body_to_trigger_address():
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PUT"
        assert request.url.path == "/api/user/lights/1/state"
        assert json.loads(request.content) == {"on": True}
        return httpx.Response(200, json=[{"success": {"/lights/1/state/on": True}}])

    client = _client(handler)
    try:
        body = await client.send(trigger="lights/1/state", body={"on": True})
        assert body == [{"success": {"/lights/1/state/on": True}}]
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_non_json_body_is_returned_as_text():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="not json")

    client = _client(handler)
    try:
        result = await client.request_jsonish(method="GET", path="user/")
        assert result.body == "not json"
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_raises_upstream_error_and_exposes_body():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "busy"})

    client = _client(handler)
    try:
        with pytest.raises(HueUpstreamError) as exc:
            await client.get_payload()
        assert exc.value.status_code == 500
        assert exc.value.body == {"error": "busy"}
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_transport_errors_are_classified():
    async def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("[Errno 111] Connection refused", request=request)

    async def hang_up(request: httpx.Request) -> httpx.Response:
        raise httpx.RemoteProtocolError("Server disconnected without sending a response.", request=request)

    for handler, reason in ((refused, "Connection refused"), (hang_up, "Socket hang up")):
        client = _client(handler)
        try:
            with pytest.raises(HueTransportError) as exc:
                await client.get_payload()
            assert exc.value.reason == reason
        finally:
            await client.close()


@pytest.mark.asyncio
async def test_missing_settings_raise_transport_error():
    client = HueClient(bridge_ip=None, bridge_user=None)
    with pytest.raises(HueTransportError):
        await client.get_payload()
    await client.close()


@pytest.mark.asyncio
async def test_register_returns_username():
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/api/"
        assert json.loads(request.content) == {"devicetype": "hue-extended#test"}
        return httpx.Response(200, json=[{"success": {"username": "new-user"}}])

    client = _client(handler)
    try:
        assert await client.register("hue-extended#test") == "new-user"
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_register_reports_link_button():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"error": {"type": 101, "address": "", "description": "link button not pressed"}}])

    client = _client(handler)
    try:
        with pytest.raises(HueRegistrationError) as exc:
            await client.register("hue-extended#test")
        assert exc.value.link_button_not_pressed is True
        assert exc.value.description == "link button not pressed"
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_every_transport_failure_becomes_transport_error():
    failures = (
        (httpx.WriteTimeout, "timed out"),
        (httpx.PoolTimeout, "no connection available"),
        (httpx.LocalProtocolError, "illegal header"),
        (httpx.ProxyError, "proxy refused"),
    )
    for error_class, message in failures:

        async def handler(request: httpx.Request, error_class=error_class, message=message) -> httpx.Response:
            raise error_class(message, request=request)

        client = _client(handler)
        try:
            with pytest.raises(HueTransportError) as exc:
                await client.send(trigger="lights/1/state", body={"on": True})
            assert isinstance(exc.value.__cause__, error_class)
            assert exc.value.reason == message
        finally:
            await client.close()
