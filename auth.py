import os
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from errors import AuthorizationError
from schemas import Role

# ---------- Auth setup ----------
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
ACCESS_TTL_MIN = int(os.getenv("ACCESS_TTL_MIN", "60"))

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
security = HTTPBearer()


class Permission(str, Enum):
    shop = "shop"                      # cart, checkout, favorites, own orders
    sell = "sell"                      # create and manage own listings
    view_sales = "view_sales"
    moderate_listings = "moderate_listings"
    manage_all_orders = "manage_all_orders"


ROLE_PERMISSIONS = {
    Role.buyer: frozenset({Permission.shop}),
    Role.seller: frozenset({Permission.shop, Permission.sell, Permission.view_sales}),
    Role.admin: frozenset({Permission.shop, Permission.moderate_listings, Permission.manage_all_orders}),
}

DENIED_MESSAGES = {
    Permission.sell: "Only sellers can manage listings",
    Permission.view_sales: "Only sellers can view sales",
    Permission.moderate_listings: "Admin access required",
    Permission.manage_all_orders: "Admin access required",
}


def role_of(user: dict) -> Optional[Role]:
    try:
        return Role(user.get("role"))
    except ValueError:
        return None


def has_permission(user: dict, permission: Permission) -> bool:
    role = role_of(user)
    return role is not None and permission in ROLE_PERMISSIONS[role]


def authorize(user: dict, permission: Permission) -> None:
    if not user or not has_permission(user, permission):
        raise AuthorizationError(DENIED_MESSAGES.get(permission, "Not permitted"))


def ensure_owner(user: dict, owner_id: str, message: str = "Not permitted") -> None:
    if str(owner_id) != str(user["_id"]):
        raise AuthorizationError(message)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash or "")


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TTL_MIN))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALG)


def get_db(request: Request):
    if request.app.state.db is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return request.app.state.db


def verify_token(credentials: HTTPAuthorizationCredentials = Depends(security)):
    token = credentials.credentials
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
        return payload
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")


def current_user(payload: dict = Depends(verify_token), db=Depends(get_db)):
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    try:
        user = db["user"].find_one({"_id": ObjectId(user_id)})
    except InvalidId:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    if not user or not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="User not found or inactive")
    user["_id"] = str(user["_id"])  # stringify
    user.pop("password_hash", None)
    return user


def optional_user(request: Request, db=Depends(get_db)):
    """The caller when a valid bearer token is present, otherwise None."""
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
        user = db["user"].find_one({"_id": ObjectId(payload.get("sub"))})
    except (JWTError, InvalidId, TypeError):
        return None
    if not user:
        return None
    user["_id"] = str(user["_id"])  # stringify
    user.pop("password_hash", None)
    return user
