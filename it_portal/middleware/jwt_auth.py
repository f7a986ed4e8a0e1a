"""
JWT Auth Middleware: parses JWT from Authorization header, sets g.jwt_*.

  Authorization: Bearer <token>  →  g.jwt_user_id (employee number), g.jwt_roles

Missing, expired or invalid tokens leave g.jwt_user_id as None; the request
continues and the endpoint falls back to the identifiers in the body.
"""

import logging

import jwt as pyjwt
from flask import g, request

from it_portal.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_roles = []

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.debug("Expired JWT ignored", extra={"path": path})
            return
        except pyjwt.InvalidTokenError:
            logger.debug("Invalid JWT ignored", extra={"path": path})
            return

        g.jwt_user_id = payload.get("sub")
        g.jwt_roles = payload.get("roles", [])
