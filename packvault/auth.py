"""Bearer tokens issued by the auth service.

A token is ``<base64url(json claims)>.<hex hmac-sha256>``; the claims carry
``userId``, ``username``, ``email`` and an ``exp`` timestamp.
"""
import base64
import hashlib
import hmac
import json
import time

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from . import models
from .config import get_settings
from .database import get_db


def _sign(raw: str) -> str:
    secret = get_settings().token_secret
    return hmac.new(secret.encode(), raw.encode(), hashlib.sha256).hexdigest()


def sign_token(user: models.User, expires_sec: int | None = None) -> str:
    ttl = expires_sec if expires_sec is not None else get_settings().token_ttl_seconds
    claims = {
        "userId": user.id,
        "username": user.username,
        "email": user.email,
        "exp": int(time.time()) + ttl,
    }
    raw = base64.urlsafe_b64encode(json.dumps(claims, separators=(",", ":")).encode()).decode()
    return f"{raw}.{_sign(raw)}"


def verify_token(token: str) -> dict:
    raw, _, sig = token.partition(".")
    if not raw or not sig:
        raise HTTPException(status_code=401, detail="Invalid token")
    if not hmac.compare_digest(_sign(raw), sig):
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        claims = json.loads(base64.urlsafe_b64decode(raw.encode()))
        user_id = int(claims["userId"])
        expires = int(claims["exp"])
    except (ValueError, KeyError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid token")
    if expires < int(time.time()):
        raise HTTPException(status_code=401, detail="Token expired")
    claims["userId"] = user_id
    return claims


def get_current_user(
    authorization: str | None = Header(None), db: Session = Depends(get_db)
) -> models.User:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Unauthorized")
    claims = verify_token(authorization.split(" ", 1)[1])
    user = db.query(models.User).filter(models.User.id == claims["userId"]).first()
    if not user:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user


def require_admin(admin_secret: str | None = Header(None)):
    if admin_secret is None or not hmac.compare_digest(admin_secret, get_settings().admin_secret):
        raise HTTPException(status_code=401, detail="Admin unauthorized")
