import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import jwt
from fastapi import Depends, Header, HTTPException
from passlib.hash import bcrypt

import config
from database import get_db
from utils import oid

logger = logging.getLogger(__name__)

password_hasher = bcrypt.using(rounds=config.BCRYPT_ROUNDS)


def hash_password(password: str) -> str:
    return password_hasher.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password_hash:
        return False
    try:
        return bcrypt.verify(password, password_hash)
    except ValueError:
        return False


def permissions_for(role: str) -> Dict[str, bool]:
    return {
        "can_access_teams": role in ("admin", "teacher"),
        "can_access_users": role == "admin",
        "can_access_decks": True,
        "can_access_system": role == "admin",
    }


def create_token(user: dict) -> str:
    role = user.get("role", "student")
    payload = {
        "sub": str(user["_id"]),
        "role": role,
        "username": user.get("username"),
        "permissions": permissions_for(role),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=config.JWT_EXP_MIN),
    }
    return jwt.encode(payload, config.SECRET_KEY, algorithm="HS256")


def get_current_user(authorization: Optional[str] = Header(None), db=Depends(get_db)) -> dict:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    try:
        scheme, token = authorization.split(" ", 1)
        if scheme.lower() != "bearer":
            raise ValueError("Invalid scheme")
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=["HS256"])
        user_id = payload.get("sub")
        if not user_id:
            raise ValueError("No sub in token")
        user = db["user"].find_one({"_id": oid(user_id)})
        if not user:
            raise ValueError("User not found")
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except (jwt.InvalidTokenError, ValueError, HTTPException) as e:
        logger.info("Rejected token: %s", e)
        raise HTTPException(status_code=401, detail="Invalid token")
    if not user.get("active", True):
        raise HTTPException(status_code=403, detail="Account disabled")
    return user


def require_role(user: dict, roles: List[str]):
    # admins pass every role check
    if user.get("role") == "admin":
        return
    if user.get("role") not in roles:
        raise HTTPException(status_code=403, detail=f"Access denied. Required role: {' or '.join(roles)}")
