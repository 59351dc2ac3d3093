"""API Dependencies - Authentication and roles"""
from typing import Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from domain.auth import User, UserInDB
from infrastructure.security import decode_access_token, get_password_hash, verify_password

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")

# Stand-in for the hotel's account service: one front-desk admin, one guest
fake_users_db = {
    "admin": {
        "user_id": "123e4567-e89b-12d3-a456-426614174000",
        "username": "admin",
        "full_name": "Admin User",
        "email": "admin@example.com",
        "plain_password": "admin123",
        "is_admin": True,
    },
    "guest": {
        "user_id": "223e4567-e89b-12d3-a456-426614174001",
        "username": "guest",
        "full_name": "Guest User",
        "email": "guest@example.com",
        "plain_password": "guest123",
    },
}

# bcrypt is slow, so each demo password is hashed once on first login
_hashed_passwords: Dict[str, str] = {}


def _hashed_password(username: str, plain_password: str) -> str:
    if username not in _hashed_passwords:
        _hashed_passwords[username] = get_password_hash(plain_password)
    return _hashed_passwords[username]


def get_user(db, username: str) -> Optional[UserInDB]:
    record = db.get(username)
    if record is None:
        return None
    fields = {k: v for k, v in record.items() if k != "plain_password"}
    if "plain_password" in record:
        fields["hashed_password"] = _hashed_password(username, record["plain_password"])
    return UserInDB(**fields)


def authenticate_user(db, username: str, password: str) -> Optional[UserInDB]:
    user = get_user(db, username)
    if user is None or not verify_password(password, user.hashed_password):
        return None
    return user


async def get_current_user(token: str = Depends(oauth2_scheme)) -> UserInDB:
    username = decode_access_token(token)
    user = get_user(fake_users_db, username) if username else None
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    if current_user.disabled:
        raise HTTPException(status_code=400, detail="Inactive user")
    return current_user


async def require_admin(current_user: User = Depends(get_current_active_user)) -> User:
    """Dashboard endpoints: search, stats and room schedules"""
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
    return current_user
