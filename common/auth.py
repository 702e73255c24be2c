from dataclasses import dataclass
from typing import Any, Dict

import jwt
from fastapi import Header, HTTPException, status

from .secrets import api_tokens, jwt_secret


@dataclass(frozen=True)
class Principal:
    """Authenticated caller; ``name`` is recorded as the actor on audit rows."""

    name: str
    claims: Dict[str, Any]


def _forbidden() -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


def require_token(authorization: str | None = Header(None)) -> Principal:
    """Validate a Bearer token against static per-user tokens or an HS256 JWT."""

    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        raise _forbidden()

    if token.count(".") == 2:
        secret = jwt_secret()
        if not secret:
            raise _forbidden()
        try:
            claims = jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.PyJWTError as exc:
            raise _forbidden() from exc
        return Principal(name=str(claims.get("sub", "jwt")), claims=claims)

    for user, expected in api_tokens().items():
        if token == expected:
            return Principal(name=user, claims={"sub": user})
    raise _forbidden()
