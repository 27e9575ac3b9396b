from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse

from hue_extended.cache import StateCache
from hue_extended.config import AppConfig
from hue_extended.engine import SyncEngine
from hue_extended.hue_client import HueClient, HueRegistrationError, HueTransportError, HueUpstreamError
from hue_extended.schemas import (
    ErrorResponse,
    HealthResponse,
    PairRequest,
    PairResponse,
    ReadinessResponse,
    StateListResponse,
    StateNodeResponse,
    StateWriteRequest,
    UnauthorizedResponse,
)
from hue_extended.security import AuthContext, require_auth
from hue_extended.store import MemoryStateStore, ReadOnlyStateError, StateNode


@dataclass
class AppState:
    config: AppConfig
    hue: HueClient
    store: MemoryStateStore
    cache: StateCache
    engine: SyncEngine


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = AppConfig.from_env()
    hue = HueClient(bridge_ip=config.bridge_ip, bridge_user=config.bridge_user, bridge_port=config.bridge_port)
    store = MemoryStateStore()
    cache = StateCache()
    engine = SyncEngine(config=config, hue=hue, store=store, cache=cache)
    store.add_listener(engine.handle_state_change)

    app.state.state = AppState(config=config, hue=hue, store=store, cache=cache, engine=engine)
    engine.start()
    try:
        yield
    finally:
        await engine.close()
        await app.state.state.hue.close()


app = FastAPI(
    title="Hue Extended",
    version="0.1.0",
    description=(
        "# Hue Extended\n\n"
        "Mirrors a Philips Hue bridge (lights, groups, scenes, schedules, rules, sensors, config) into a "
        "path-addressed state tree and forwards writes on controllable states back to the bridge.\n\n"
        "## Auth\n"
        "All `/v1/*` endpoints require **one** of:\n\n"
        "- `Authorization: Bearer <token>`\n"
        "- `X-API-Key: <key>`\n\n"
        "If auth is missing/invalid: **401** `{ \"detail\": {\"error\":\"unauthorized\"} }`.\n\n"
        "## Endpoints\n"
        "- `GET /healthz` liveness\n"
        "- `GET /readyz` readiness (bridge settings + at least one applied poll)\n"
        "- `GET /v1/states` list state nodes (optionally below `prefix`)\n"
        "- `GET /v1/states/{path}` read one state node\n"
        "- `PUT /v1/states/{path}` write a controllable state, e.g. `lights.001-lamp.action.level`\n"
        "- `POST /v1/bridge/pair` create a bridge user (press the link button first)\n\n"
        "## Controllable states\n"
        "`on`, `bri`, `level`, `hue`, `hue_degrees`, `sat`, `ct`, `xy`, `effect`, `alert`, `transitiontime`, "
        "`scene`, the color spaces `_rgb`, `_hsv`, `_cmyk`, `_xyz`, `_hex`, the bulk field `_commands` "
        "(JSON object, e.g. `{\"on\": true, \"level\": 50}`) and `trigger` on scenes, schedules and rules.\n"
    ),
    lifespan=lifespan,
)

logger = logging.getLogger("hue_extended")


@app.middleware("http")
async def access_log(request: Request, call_next: Callable[[Request], Response]):
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s -> %s (%.1fms)",
        request.method,
        request.url.path,
        response.status_code,
        duration_ms,
    )
    return response


def _node_response(node: StateNode) -> StateNodeResponse:
    return StateNodeResponse(
        path=node.path,
        type=node.meta.type,
        role=node.meta.role,
        description=node.meta.description,
        writable=node.meta.writable,
        value=node.value,
        ack=node.ack,
        updatedAt=node.updated_at,
    )


def _not_found(path: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"error": "not_found", "message": f"State {path} does not exist."},
    )


@app.get(
    "/healthz",
    summary="Liveness check",
    description="Returns `ok=true` if the process is alive.",
    response_model=HealthResponse,
    tags=["meta"],
)
async def healthz() -> HealthResponse:
    return {"ok": True}


@app.get(
    "/readyz",
    summary="Readiness check",
    description=(
        "Returns `ready=true` once a bridge payload has been applied to the state tree.\n\n"
        "Not-ready reasons:\n"
        "- `missing_bridge_settings`\n"
        "- `terminated` (retry budget exhausted; restart required)\n"
        "- `not_synced`\n"
    ),
    response_model=ReadinessResponse,
    tags=["meta"],
)
async def readyz() -> ReadinessResponse:
    state: AppState = app.state.state
    if not state.config.bridge_ip or not state.config.bridge_user:
        return JSONResponse({"ready": False, "reason": "missing_bridge_settings"}, status_code=503)
    if state.engine.terminated:
        return JSONResponse(
            {"ready": False, "reason": "terminated", "details": state.engine.terminate_reason},
            status_code=503,
        )
    if not state.engine.cycles:
        return JSONResponse({"ready": False, "reason": "not_synced"}, status_code=503)
    return {"ready": True, "details": {"syncing": state.engine.syncing, "cycles": state.engine.cycles}}


@app.get(
    "/v1/states",
    summary="List state nodes",
    response_model=StateListResponse,
    responses={401: {"description": "Unauthorized.", "model": UnauthorizedResponse}},
    tags=["states"],
)
async def list_states(
    prefix: str = Query("", description="Only return nodes at or below this path.", examples=["lights"]),
    _: AuthContext = Depends(require_auth),
) -> StateListResponse:
    state: AppState = app.state.state
    return StateListResponse(states=[_node_response(node) for node in state.store.items(prefix)])


@app.get(
    "/v1/states/{path:path}",
    summary="Read one state node",
    response_model=StateNodeResponse,
    responses={
        401: {"description": "Unauthorized.", "model": UnauthorizedResponse},
        404: {"description": "Unknown state path.", "model": ErrorResponse},
    },
    tags=["states"],
)
async def get_state(path: str, _: AuthContext = Depends(require_auth)) -> StateNodeResponse:
    state: AppState = app.state.state
    node = state.store.node(path)
    if node is None:
        raise _not_found(path)
    return _node_response(node)


@app.put(
    "/v1/states/{path:path}",
    summary="Write a controllable state",
    description=(
        "Stores the value un-acknowledged and hands it to the sync engine, which normalizes it into a bridge "
        "command. With the queue enabled, commands for the same device are merged and sent on the next flush."
    ),
    response_model=StateNodeResponse,
    responses={
        401: {"description": "Unauthorized.", "model": UnauthorizedResponse},
        404: {"description": "Unknown state path.", "model": ErrorResponse},
        409: {"description": "State is read-only.", "model": ErrorResponse},
    },
    tags=["states"],
)
async def put_state(
    path: str,
    payload: StateWriteRequest = Body(
        ...,
        openapi_examples={
            "level": {"summary": "Dim to 50%", "value": {"val": 50}},
            "rgb": {"summary": "Set color", "value": {"val": "255,0,0"}},
            "bulk": {"summary": "Several fields at once", "value": {"val": "{\"on\": true, \"level\": 80}"}},
        },
    ),
    auth: AuthContext = Depends(require_auth),
) -> StateNodeResponse:
    state: AppState = app.state.state
    try:
        node = await state.store.write(path, payload.val)
    except KeyError:
        raise _not_found(path)
    except ReadOnlyStateError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "read_only", "message": f"State {path} is read-only."},
        )
    logger.debug("State %s written via %s.", path, auth.scheme)
    return _node_response(node)


@app.post(
    "/v1/bridge/pair",
    summary="Create a bridge user",
    description="Press the link button on the bridge, then call this within 30 seconds.",
    response_model=PairResponse,
    responses={
        401: {"description": "Unauthorized.", "model": UnauthorizedResponse},
        409: {"description": "Link button not pressed.", "model": ErrorResponse},
        424: {"description": "Bridge unreachable.", "model": ErrorResponse},
        502: {"description": "Bridge returned an error.", "model": ErrorResponse},
    },
    tags=["bridge"],
)
async def pair(
    payload: PairRequest | None = Body(default=None),
    _: AuthContext = Depends(require_auth),
) -> PairResponse:
    state: AppState = app.state.state
    devicetype = (payload.devicetype if payload else None) or state.config.devicetype
    try:
        username = await state.hue.register(devicetype)
    except HueRegistrationError as exc:
        if exc.link_button_not_pressed:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail={"error": "link_button_not_pressed", "message": exc.description},
            )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "bridge_error", "message": exc.description},
        )
    except HueTransportError as exc:
        logger.warning("Failed retrieving user (%s)!", exc.reason)
        raise HTTPException(
            status_code=status.HTTP_424_FAILED_DEPENDENCY,
            detail={"error": "bridge_unreachable", "message": exc.reason},
        )
    except HueUpstreamError as exc:
        logger.warning("Failed retrieving user (%s)!", exc)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "bridge_error", "message": str(exc)},
        )

    logger.info("Retrieved user from Hue Bridge.")
    return PairResponse(ok=True, username=username)
