"""
router_stream.py — WebSocket endpoint for live network status.
==============================================================
    ws://host/ws?networkId=1

Pushes {"type": "networkStatus" | "trainingProgress", "data": {...}}
until the client disconnects.  Without `networkId` the first network is
streamed.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from hydrocontrol.services.container import Services

from .deps import get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Live Status"])


@router.websocket("/ws")
async def status_stream(
    websocket: WebSocket,
    network_id: Optional[int] = Query(default=None, alias="networkId"),
    services: Services = Depends(get_services),
):
    if network_id is None:
        networks = await services.repository.list_networks()
        network_id = networks[0].id if networks else None
    if network_id is None or await services.repository.get_network(network_id) is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    subscription = await services.broadcaster.subscribe(network_id, websocket.send_json)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("WebSocket client for network %d disconnected", network_id)
    finally:
        subscription.close()
        await subscription.wait_closed()
