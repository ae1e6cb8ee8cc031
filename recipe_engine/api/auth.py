"""
Bearer token authentication for mutating endpoints.

The verifier is injectable (create_app(token_verifier=...)); the default maps
static tokens from API_TOKENS ("token:user,...") to user ids.
"""

import hmac
from typing import Dict, Optional

from fastapi import HTTPException, Request, status

ANONYMOUS_USER = "anonymous"


class TokenVerifier:
    """Maps a bearer token to a user id, or None when the token is invalid"""

    def verify(self, token: str) -> Optional[str]:
        raise NotImplementedError


class StaticTokenVerifier(TokenVerifier):
    def __init__(self, tokens: Dict[str, str]):
        self.tokens = dict(tokens)

    def verify(self, token: str) -> Optional[str]:
        for known, user_id in self.tokens.items():
            if hmac.compare_digest(known, token):
                return user_id
        return None


class AllowAllVerifier(TokenVerifier):
    """AUTH_DISABLED=true: every request runs as the anonymous user"""

    def verify(self, token: str) -> Optional[str]:
        return ANONYMOUS_USER


def require_user(request: Request) -> str:
    """FastAPI dependency returning the authenticated user id"""
    verifier: TokenVerifier = request.app.state.token_verifier
    if isinstance(verifier, AllowAllVerifier):
        return ANONYMOUS_USER

    authz = request.headers.get("Authorization", "")
    if not authz.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header"
        )

    user_id = verifier.verify(authz.split(" ", 1)[1].strip())
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    return user_id
