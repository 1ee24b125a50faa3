"""Live event stream over WebSocket."""

import anyio
from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketState

from proxyfleet.server._deps import BroadcasterDep

router = APIRouter(prefix="", tags=["events"])


@router.websocket("/ws")
async def stream_events(websocket: WebSocket, broadcaster: BroadcasterDep) -> None:
    """Send the instance snapshot, then every event, until either side ends."""
    await websocket.accept()

    async with anyio.create_task_group() as tg:

        async def drain_incoming() -> None:
            # Clients only listen; reading is how a disconnect is noticed
            async for _ in websocket.iter_text():
                pass
            tg.cancel_scope.cancel()

        tg.start_soon(drain_incoming)
        await broadcaster.serve(websocket)
        tg.cancel_scope.cancel()

    if (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    ):
        await websocket.close()
