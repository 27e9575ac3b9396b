import json

import httpx
import pytest

from hue_extended.engine import RETRY_LIMIT, RETRY_SECONDS


def _payload_handler(payload):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    return handler


@pytest.mark.asyncio
async def test_poll_maps_every_synced_channel(make_engine, bridge_payload):
    engine = make_engine(handler=_payload_handler(bridge_payload))
    try:
        assert await engine.poll() is True
    finally:
        engine.stop()
        await engine.hue.close()

    store = engine.store
    assert engine.cycles == 1
    assert engine.retry == 0
    assert store.get("info.syncing") is True
    assert isinstance(store.get("info.timestamp"), int)
    assert store.get("lights.syncing") is True
    assert store.node("lights").meta.description == "Lights"
    assert store.get("lights.001-lamp.action.bri") == 200
    assert store.get("lights.001-lamp.action.level") == 79
    assert store.get("groups.005-living_room.action.bri") == 127
    assert store.get("config.name") == "Philips hue"


@pytest.mark.asyncio
async def test_payload_is_mapped_idempotently(make_engine, bridge_payload):
    engine = make_engine()
    engine.apply_payload(bridge_payload)
    first = engine.store.values()
    engine.apply_payload(bridge_payload)
    second = engine.store.values()

    def _stable(values):
        return {k: v for k, v in values.items() if not k.endswith(("datetime", "timestamp"))}

    assert _stable(first) == _stable(second)
    assert sorted(first) == sorted(second)


def test_all_lights_group_is_synthesized(make_engine, bridge_payload):
    engine = make_engine()
    engine.apply_payload(bridge_payload)
    store = engine.store

    assert store.node("groups.000-all_lights").meta.description == "All Lights"
    assert store.get("groups.000-all_lights.uid") == "0"
    assert store.get("groups.000-all_lights.lights") == "1,2"
    assert store.get("groups.000-all_lights.state.all_on") is False
    assert store.get("groups.000-all_lights.state.any_on") is True
    assert store.get("groups.000-all_lights.action.on") is False


def test_all_lights_group_without_known_lights(make_engine, bridge_payload):
    engine = make_engine()
    engine.apply_payload({"groups": bridge_payload["groups"]})

    assert engine.store.get("groups.000-all_lights.name") == "All Lights"
    assert engine.store.node("groups.000-all_lights.state.all_on") is None


def test_disabled_channel_is_only_marked(make_engine, bridge_payload):
    engine = make_engine(sync_channels=frozenset({"lights"}))
    engine.apply_payload(bridge_payload)

    assert engine.store.node("rules") is not None
    assert engine.store.get("rules.syncing") is False
    assert engine.store.get("rules.001-switch.name") is None
    assert engine.store.get("lights.syncing") is True


@pytest.mark.asyncio
async def test_upstream_error_payload_keeps_polling(make_engine):
    engine = make_engine(
        handler=_payload_handler([{"error": {"type": 1, "address": "/", "description": "unauthorized user"}}])
    )
    scheduled: list[float] = []
    engine._schedule_poll = scheduled.append
    try:
        assert await engine.poll() is False
    finally:
        await engine.hue.close()

    assert scheduled == [30]
    assert engine.retry == 0
    assert engine.terminated is False
    assert engine.cycles == 0


@pytest.mark.asyncio
async def test_transport_failures_retry_ten_times_then_terminate(make_engine):
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    engine = make_engine(handler=handler)
    scheduled: list[float] = []
    engine._schedule_poll = scheduled.append
    try:
        for _ in range(RETRY_LIMIT):
            assert await engine.poll() is False
        assert scheduled == [RETRY_SECONDS] * RETRY_LIMIT
        assert engine.terminated is False
        assert engine.store.get("info.syncing") is False

        assert await engine.poll() is False
    finally:
        await engine.hue.close()

    assert len(scheduled) == RETRY_LIMIT
    assert engine.terminated is True
    assert "Connection refused" in engine.terminate_reason
    assert engine.store.get("info.connection") is False


@pytest.mark.asyncio
async def test_busy_bridge_is_retried(make_engine):
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="busy")

    engine = make_engine(handler=handler)
    scheduled: list[float] = []
    engine._schedule_poll = scheduled.append
    try:
        await engine.poll()
    finally:
        await engine.hue.close()

    assert scheduled == [RETRY_SECONDS]
    assert engine.retry == 1


@pytest.mark.asyncio
async def test_successful_poll_resets_retry_counter(make_engine, bridge_payload):
    engine = make_engine(handler=_payload_handler(bridge_payload))
    engine._schedule_poll = lambda delay: None
    engine.retry = 4
    try:
        await engine.poll()
    finally:
        await engine.hue.close()
    assert engine.retry == 0


@pytest.mark.asyncio
async def test_start_without_settings_terminates(make_engine):
    engine = make_engine(bridge_user=None)
    engine.start()

    assert engine.terminated is True
    assert engine.terminate_reason == "Please provide connection settings for Hue Bridge!"
    assert engine.store.get("info.connection") is False
    assert engine._poll_handle is None
    assert engine._queue_handle is None


@pytest.mark.asyncio
async def test_stop_cancels_timers_and_in_flight_poll_does_not_apply(make_engine, bridge_payload):
    engine = make_engine(handler=_payload_handler(bridge_payload))
    engine.start()
    assert engine._queue_handle is not None

    await engine.close()
    await engine.hue.close()

    assert engine._poll_handle is None
    assert engine._queue_handle is None
    assert engine.cycles == 0
    assert engine.store.node("lights") is None


@pytest.mark.asyncio
async def test_short_refresh_is_clamped(make_engine):
    engine = make_engine(handler=_payload_handler({}), refresh_seconds=1)
    engine.start()
    try:
        assert engine.refresh_seconds == 3
    finally:
        await engine.close()
        await engine.hue.close()


@pytest.mark.asyncio
async def test_zero_refresh_disables_rescheduling(make_engine, bridge_payload):
    engine = make_engine(handler=_payload_handler(bridge_payload), refresh_seconds=0)
    engine.refresh_seconds = 0
    try:
        assert await engine.poll() is True
        assert engine._poll_handle is None
    finally:
        engine.stop()
        await engine.hue.close()


@pytest.mark.asyncio
async def test_write_is_queued_then_flushed_with_action_record(make_engine, bridge_payload):
    bodies: list[tuple[str, dict]] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json=bridge_payload)
        bodies.append((request.url.path, json.loads(request.content)))
        return httpx.Response(200, json=[{"success": {"/lights/1/state/bri": 127}}])

    engine = make_engine(handler=handler)
    engine.store.add_listener(engine.handle_state_change)
    engine._schedule_poll = lambda delay: None
    try:
        await engine.poll()
        await engine.store.write("lights.001-lamp.action.level", 50)
        assert engine.queue.get("lights/1/state").commands == {"on": True, "bri": 127}
        assert bodies == []

        await engine.flush_queue()
        assert engine.cache.get("lights.001-lamp.action.bri") == ""
    finally:
        engine.stop()
        await engine.hue.close()

    assert bodies == [("/api/user/lights/1/state", {"on": True, "bri": 127})]
    store = engine.store
    assert store.get("lights.001-lamp.action.lastAction.error") is False
    assert store.get("info.lastAction.lastCommand") == '{"on":true,"bri":127}'


@pytest.mark.asyncio
async def test_write_is_sent_directly_without_queue(make_engine, bridge_payload):
    sent: list[dict] = []

    async def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(200, json=[{"success": {"/groups/5/action/scene": "3"}}])

    engine = make_engine(handler=handler, use_queue=False)
    engine.apply_payload(bridge_payload)
    try:
        result = await engine.handle_state_change("scenes.relax.GroupScene-5_3.action.trigger", True)
    finally:
        await engine.hue.close()

    assert result.trigger == "groups/5/action"
    assert sent == [{"scene": "3"}]
    assert len(engine.queue) == 0


@pytest.mark.asyncio
async def test_invalid_write_is_discarded(make_engine, bridge_payload):
    engine = make_engine()
    engine.apply_payload(bridge_payload)

    assert await engine.handle_state_change("lights.001-lamp.action._commands", "{broken") is None
    assert len(engine.queue) == 0
    assert engine.store.get("lights.001-lamp.action.lastAction.error") is None


def test_action_records_are_ignored_after_stop(make_engine, bridge_payload):
    engine = make_engine()
    engine.apply_payload(bridge_payload)
    engine.stop()

    engine.record_action("info", {"timestamp": 1, "datetime": "x", "lastCommand": "{}", "lastResult": "[]", "error": False})
    assert engine.store.get("info.lastAction.lastCommand") is None


@pytest.mark.asyncio
async def test_write_and_pool_timeouts_are_retried(make_engine):
    async def write_timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.WriteTimeout("timed out", request=request)

    async def pool_timeout(request: httpx.Request) -> httpx.Response:
        raise httpx.PoolTimeout("no connection available", request=request)

    for handler in (write_timeout, pool_timeout):
        engine = make_engine(handler=handler)
        scheduled: list[float] = []
        engine._schedule_poll = scheduled.append
        try:
            assert await engine.poll() is False
        finally:
            await engine.hue.close()

        assert scheduled == [RETRY_SECONDS]
        assert engine.retry == 1
        assert engine.terminated is False
        assert engine.store.get("info.syncing") is False


def test_stop_clears_the_device_mirror(make_engine, bridge_payload):
    engine = make_engine()
    engine.apply_payload(bridge_payload)
    assert engine.cache.devices("lights") is not None
    assert engine.cache.get("lights.001-lamp.action.real_bri") == 200

    engine.stop()

    assert engine.cache.devices("lights") is None
    assert engine.cache.get("lights.001-lamp.action.real_bri") is None
    assert engine.cache.get("lights.001-lamp.uid") is None
