"""
=============================================================================
AUTH.PY — Authentication
=============================================================================
Login itself happens at the identity provider (OIDC). What reaches us is a
signed JWT in the "Authorization: Bearer <token>" header.

Flow:
  1. The provider signs a token with SESSION_SECRET
  2. The frontend sends it on every request
  3. We verify it and read the claims (sub, email, first_name...)
  4. The user row is upserted from those claims, so the first authenticated
     request creates the account and later ones refresh the profile
"""

import os
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from database import get_db
from models import User

# ─────────────────────────────────────────────────────────────────────────────
# CONFIGURATION
# ─────────────────────────────────────────────────────────────────────────────

SECRET_KEY = os.getenv("SESSION_SECRET", "greenstreak-dev-secret-change-in-production")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_DAYS = 7

PROFILE_CLAIMS = ("email", "first_name", "last_name", "profile_image_url")


# ─────────────────────────────────────────────────────────────────────────────
# JWT TOKENS
# ─────────────────────────────────────────────────────────────────────────────

def create_access_token(subject: str, email: Optional[str] = None, **claims) -> str:
    """
    Signs a token the same way the identity provider does.
    Used by local tooling and the test suite.
    """
    expire = datetime.utcnow() + timedelta(days=ACCESS_TOKEN_EXPIRE_DAYS)
    to_encode = {"sub": str(subject), "exp": expire}
    if email is not None:
        to_encode["email"] = email
    to_encode.update(claims)
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Returns the claims, or None when the token is invalid or expired."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None


# ─────────────────────────────────────────────────────────────────────────────
# USER UPSERT
# ─────────────────────────────────────────────────────────────────────────────

def upsert_user(db: Session, claims: dict) -> User:
    """Creates the user on first sight, refreshes the profile afterwards."""
    user = db.query(User).filter(User.id == claims["sub"]).first()
    if user is None:
        user = User(id=claims["sub"])
        db.add(user)

    for claim in PROFILE_CLAIMS:
        if claims.get(claim) is not None:
            setattr(user, claim, claims[claim])

    db.commit()
    db.refresh(user)
    return user


# ─────────────────────────────────────────────────────────────────────────────
# DEPENDENCY: CURRENT USER
# ─────────────────────────────────────────────────────────────────────────────

security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Resolves the authenticated user, or answers 401.

      @app.get("/api/me")
      def me(user: User = Depends(get_current_user)):
          return user
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"}
        )

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    if not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject"
        )

    return upsert_user(db, payload)
