from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request
from jose import jwt, JWTError
from passlib.context import CryptContext

from config import Settings
from database import canonical_id
from errors import NotFoundError, ValidationError

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def get_context(request: Request):
    return request.app.state.context


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(data: dict, settings: Settings, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def get_current_user(request: Request, ctx=Depends(get_context)) -> Dict[str, Any]:
    """Resolve the bearer token to the stored user document."""
    auth = request.headers.get("authorization") or request.headers.get("Authorization")
    if not auth or not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = auth.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, ctx.settings.jwt_secret, algorithms=[ctx.settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        return ctx.users.get(payload.get("sub", ""))
    except (NotFoundError, ValidationError):
        raise HTTPException(status_code=401, detail="User no longer exists")


def require_roles(*roles: str):
    def _dep(user: Dict[str, Any] = Depends(get_current_user)):
        if roles and user.get("role") not in roles:
            raise HTTPException(status_code=403, detail="Forbidden for role")
        return user
    return _dep


def ensure_self_or_teacher(user: Dict[str, Any], student_id: str) -> None:
    if user.get("role") != "teacher" and str(user.get("_id")) != canonical_id(student_id):
        raise HTTPException(status_code=403, detail="Not authorized to access this resource")
