from typing import Dict, List

from fastapi import Depends, HTTPException, status, Request
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError, JWTError

# === Token Configuration ===
# Tokens are issued by the registration service's auth endpoint and signed
# with a shared secret. Keep the secret in the environment, never in code.
import os
from dotenv import load_dotenv

load_dotenv()

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# =================================================================


def get_current_user(request: Request) -> Dict[str, any]:
    """
    FastAPI dependency to validate the JWT from the Authorization header.

    Usage:
        @router.get("/payments/", dependencies=[Depends(get_current_user)])
        def list_payments():
            ...
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header is missing",
        )

    # The token is expected to be in the format "Bearer <token>"
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
        )

    token = parts[1]

    # Decode and validate the token
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
        return payload
    except ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired"
        )
    except JWTClaimsError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token claims: {e}"
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Token validation failed: {e}"
        )


def get_user_identifier(user: Dict[str, any]) -> str:
    """Identifier recorded as the actor (changed_by / verified_by) for this user."""
    for claim in ("id", "user_id", "sub", "email"):
        value = user.get(claim)
        if value:
            return str(value)
    return "unknown"


def get_user_groups(user: Dict[str, any]) -> List[str]:
    groups = list(user.get("groups") or [])
    role = user.get("role")
    if role:
        groups.append(role)
    return groups


def require_group(allowed_groups: List[str]):
    """
    Dependency factory restricting an endpoint to users in one of the given groups.

    Usage:
        user: dict = Depends(require_group(["admin"]))
    """
    def checker(user: Dict[str, any] = Depends(get_current_user)) -> Dict[str, any]:
        if not set(get_user_groups(user)) & set(allowed_groups):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action",
            )
        return user
    return checker


def create_access_token(claims: Dict[str, any]) -> str:
    """Sign a token with the shared secret (used by the auth service and by tests)."""
    return jwt.encode(claims, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)
