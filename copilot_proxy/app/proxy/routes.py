"""
Proxy Routes - Copilot Request Forwarding
=========================================

Chat endpoints that forward requests to the copilot upstream.

Endpoints:
----------
- POST /chat: Forward a chat message to the copilot service
- POST /copilot: Same handler, kept for clients still using the older path
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response

from .forwarder import CopilotForwarder

logger = logging.getLogger(__name__)

# Create router
proxy_router = APIRouter()


# ============================================================================
# Dependencies
# ============================================================================

def get_forwarder(request: Request) -> CopilotForwarder:
    """
    Dependency to get the forwarder from app state.

    Raises:
        HTTPException: If the application was built without a forwarder
    """
    forwarder = getattr(request.app.state, "forwarder", None)
    if forwarder is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Copilot forwarder not initialized"
        )
    return forwarder


# ============================================================================
# Proxy Endpoints
# ============================================================================

async def proxy_to_copilot(
    request: Request,
    forwarder: CopilotForwarder = Depends(get_forwarder),
) -> Response:
    """
    Proxy a chat request to the copilot upstream.

    The upstream status, headers and body are relayed unchanged. If the
    upstream cannot be reached a 500 with {error, message} is returned.
    """
    return await forwarder.forward(request)


proxy_router.add_api_route("/chat", proxy_to_copilot, methods=["POST"], tags=["Copilot Proxy"])
proxy_router.add_api_route("/copilot", proxy_to_copilot, methods=["POST"], tags=["Copilot Proxy"])
