# faceclock/web/__init__.py
"""
Web module - Flask JSON API.
"""
from .server import api_bp, create_app, run_server

__all__ = [
    'api_bp',
    'create_app',
    'run_server',
]
