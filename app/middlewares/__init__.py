"""
Middlewares package initialization.

- error_handler.py: maps ledger exceptions to JSON error responses
- auth.py: gateway identity headers and service token for the HTTP API
- admin.py: admin-only access for Telegram commands
"""
from app.middlewares.error_handler import error_middleware
from app.middlewares.auth import auth_middleware

__all__ = ['error_middleware', 'auth_middleware']
