"""
Proxy Package
=============

Forwards chat requests to the copilot upstream and streams the reply back.

Main Components:
----------------
- forwarder.py: CopilotForwarder, header whitelist and streaming relay
- routes.py: FastAPI router with proxy endpoints (/chat, /copilot)

Usage:
------
    from copilot_proxy.app.proxy import proxy_router
    app.include_router(proxy_router)
"""

from .forwarder import FORWARDED_HEADERS, CopilotForwarder
from .routes import proxy_router

__all__ = ["CopilotForwarder", "FORWARDED_HEADERS", "proxy_router"]
