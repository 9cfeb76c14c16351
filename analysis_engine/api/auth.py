"""
Stock Intel — Auth Gate
─────────────────────────
Optional bearer token. With API_TOKEN unset every request passes;
with it set, /api/* needs `Authorization: Bearer <API_TOKEN>`.
"""

import hmac
from typing import Optional

from fastapi import Header, HTTPException, Request


async def require_token(request: Request, authorization: Optional[str] = Header(None)):
    expected = request.app.state.services.settings.api_token
    if not expected:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(token.strip(), expected):
        raise HTTPException(401, "Unauthorized", headers={"WWW-Authenticate": "Bearer"})
