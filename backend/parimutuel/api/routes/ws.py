import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from redis.asyncio import Redis

from parimutuel.core.config import get_settings

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)


@router.websocket("/pools")
async def pools_websocket(websocket: WebSocket):
    await websocket.accept()
    await websocket.send_json({"type": "connected", "channel": settings.notifications_channel})

    redis = Redis.from_url(settings.redis_url, decode_responses=True)
    pubsub = redis.pubsub()
    await pubsub.subscribe(settings.notifications_channel)

    try:
        while True:
            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if not message:
                continue
            if message.get("type") != "message":
                continue

            await websocket.send_text(message["data"])
    except WebSocketDisconnect:
        logger.info("Pool updates websocket disconnected")
    except Exception:
        logger.exception("Pool updates websocket error")
    finally:
        await pubsub.unsubscribe(settings.notifications_channel)
        await pubsub.aclose()
        await redis.aclose()
