"""
WebSocket Authentication Utility
Handles JWT authentication for WebSocket connections
"""

from typing import Optional

from fastapi import WebSocket
import logging

from utils.jwt_utils import verify_token

logger = logging.getLogger(__name__)


def _extract_token(websocket: WebSocket) -> Optional[str]:
    # Browsers cannot set headers on websocket upgrades, so the query wins
    token = websocket.query_params.get("token")
    if token:
        return token

    auth_header = websocket.headers.get("authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]
    return None


async def authenticate_websocket(websocket: WebSocket) -> Optional[dict]:
    """
    Authenticate WebSocket connection using JWT token

    Args:
        websocket: WebSocket connection (not yet accepted)

    Returns:
        {"user_id", "role"} on success, None if the connection was rejected
    """
    token = _extract_token(websocket)
    if not token:
        logger.warning("WebSocket connection rejected: Missing authentication token")
        await websocket.close(code=1008, reason="Missing authentication token")
        return None

    payload = verify_token(token, websocket.app.state.settings)
    if payload is None:
        logger.warning("WebSocket connection rejected: Invalid or expired token")
        await websocket.close(code=1008, reason="Invalid or expired token")
        return None

    user_id = payload.get("user_id")
    role = payload.get("role")
    if not user_id or not role:
        logger.warning(
            f"WebSocket connection rejected: Invalid token payload - user_id={user_id}, role={role}"
        )
        await websocket.close(code=1008, reason="Invalid token payload")
        return None

    logger.info(f"WebSocket authenticated: user_id={user_id}, role={role}")
    return {"user_id": user_id, "role": role}
