"""
Risk Score Endpoints.

- ``GET /api/risk/scores``: the read-only "current scores for these ids"
  query polled by dashboards every sync interval
- ``/api/risk/stream``: websocket push of rescored ids
"""

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from revcycle.api.deps import Actor, actor_from_token, get_engine, require_permission
from revcycle.api.websocket import get_risk_event_manager
from revcycle.api.websocket.manager import IdFilter
from revcycle.core.enums import Permission
from revcycle.core.permissions import has_permission
from revcycle.schemas import RiskSnapshot
from revcycle.services.engine import RevenueCycleEngine
from revcycle.utils.errors import AuthenticationError
from revcycle.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/risk",
    tags=["risk"],
)

MAX_IDS_PER_QUERY = 200


@router.get("/scores", response_model=list[RiskSnapshot])
async def current_scores(
    ids: str = Query(..., description="Comma-separated entity ids"),
    actor: Actor = Depends(require_permission(Permission.RISK_READ)),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> list[RiskSnapshot]:
    wanted = list(dict.fromkeys(i.strip() for i in ids.split(",") if i.strip()))
    snapshots = engine.claims.current_scores(wanted[:MAX_IDS_PER_QUERY])
    if actor.is_patient:
        owned = {c.id for c in engine.claims.list_claims(patient_id=actor.patient_id)}
        snapshots = [s for s in snapshots if s.entity_id in owned]
    return snapshots


@router.websocket("/stream")
async def risk_stream(
    websocket: WebSocket,
    token: str = Query(...),
    engine: RevenueCycleEngine = Depends(get_engine),
) -> None:
    """
    Push ``risk_updated`` messages naming rescored ids.

    Message Format (Server -> Client):
    ```json
    {"type": "risk_updated", "ids": ["..."], "message": "", "timestamp": "..."}
    ```

    Client Messages:
    - `{"type": "ping"}`: keepalive, server responds with pong
    - `{"type": "subscribe", "ids": [...]}`: only push these ids

    Patients only hear about their own claims. Clients keep polling
    ``/api/risk/scores`` as the fallback.
    """
    try:
        actor = actor_from_token(token)
    except AuthenticationError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    if not has_permission(actor.role, Permission.RISK_READ):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    manager = get_risk_event_manager()
    manager.attach(engine.events)
    visible = _owned_claims_filter(engine, actor.patient_id) if actor.is_patient else None

    try:
        await manager.connect(websocket, user_id=actor.user_id, visible=visible)
        while True:
            data = await websocket.receive_text()
            await manager.handle_client_message(websocket, data)
    except WebSocketDisconnect:
        logger.info("Risk stream client disconnected")
    finally:
        await manager.disconnect(websocket)


def _owned_claims_filter(engine: RevenueCycleEngine, patient_id: str) -> IdFilter:
    def visible(ids: list[str]) -> list[str]:
        owned = {c.id for c in engine.claims.list_claims(patient_id=patient_id)}
        return [i for i in ids if i in owned]

    return visible
