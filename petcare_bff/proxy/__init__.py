"""
Proxy Package
=============

This package forwards resource requests from the PetCare UI to the
upstream API.

Main Components:
----------------
- client.py: UpstreamClient interface and its httpx implementation
- dispatcher.py: Path rewrite, response relay and failure handling
- routes.py: Catch-all routes per proxied prefix

Usage:
------
    from petcare_bff.proxy import build_proxy_router
    app.include_router(build_proxy_router(settings.proxy_prefixes_list))
"""

from .routes import build_proxy_router

__all__ = ["build_proxy_router"]
