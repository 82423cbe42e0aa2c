"""
Copilot Proxy Application
=========================

FastAPI application forwarding chat requests to the copilot upstream.

Usage:
------
    from copilot_proxy.app import create_app
    app = create_app()
"""

from .main import create_app

__all__ = ["create_app"]
