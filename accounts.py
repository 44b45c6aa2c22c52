import logging
import secrets
from datetime import timedelta, timezone
from typing import Optional

from pymongo.errors import DuplicateKeyError

from auth import create_access_token, hash_password, verify_password
from database import create_document, now, stringify, to_object_id
from errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from hooks import PostCommit
from mailer import password_reset
from schemas import ProfileUpdate, RegisterRequest, Role, User

logger = logging.getLogger(__name__)

RESET_CODE_TTL = timedelta(minutes=10)
PRIVATE_FIELDS = ("password_hash", "password_reset_code", "password_reset_expires")


def public_user(user: dict) -> dict:
    user = stringify(dict(user))
    for key in PRIVATE_FIELDS:
        user.pop(key, None)
    return user


def as_utc(value):
    # pymongo hands back naive datetimes unless the client is tz_aware
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AccountService:
    def __init__(self, db, mailer, media):
        self.db = db
        self.mailer = mailer
        self.media = media

    def register(self, payload: RegisterRequest) -> dict:
        email = payload.email.lower().strip()
        if self.db["user"].find_one({"email": email}):
            raise ValidationError("Email already registered")
        user = User(
            name=payload.name,
            email=email,
            password_hash=hash_password(payload.password),
            phone=payload.phone,
            role=Role(payload.role),
        )
        try:
            user_id = create_document(self.db, "user", user)
        except DuplicateKeyError:
            raise ValidationError("Email already registered")
        logger.info("registered %s as %s", user_id, user.role)
        access = create_access_token({"sub": user_id})
        return {"token": access, "user": public_user(self.db["user"].find_one({"_id": to_object_id(user_id)}))}

    def login(self, email: str, password: str) -> dict:
        user = self.db["user"].find_one({"email": email.lower().strip()})
        if not user or not verify_password(password, user.get("password_hash", "")):
            raise AuthenticationError("Invalid credentials")
        if not user.get("is_active", True):
            raise AuthorizationError("Account is inactive")
        stamp = now()
        self.db["user"].update_one({"_id": user["_id"]}, {"$set": {"last_login_at": stamp}})
        user["last_login_at"] = stamp
        access = create_access_token({"sub": str(user["_id"])})
        return {"token": access, "user": public_user(user)}

    def profile(self, user: dict) -> dict:
        doc = self.db["user"].find_one({"_id": to_object_id(user["_id"])})
        if not doc:
            raise NotFoundError("User not found")
        return public_user(doc)

    def update_profile(self, user: dict, data: ProfileUpdate) -> dict:
        update = data.model_dump(exclude_none=True)
        current = self.profile(user)
        if not update:
            return current
        update["updated_at"] = now()
        self.db["user"].update_one({"_id": to_object_id(user["_id"])}, {"$set": update})

        hooks = PostCommit()
        old_picture = current.get("profile_picture")
        if "profile_picture" in update and old_picture and old_picture != update["profile_picture"]:
            hooks.add("media_delete", self.media.delete, [old_picture])
        hooks.run()
        return self.profile(user)

    def request_password_reset(self, email: str) -> None:
        user = self.db["user"].find_one({"email": email.lower().strip()})
        if not user:
            raise NotFoundError("No account found with this email address")
        code = f"{secrets.randbelow(900000) + 100000}"
        self.db["user"].update_one(
            {"_id": user["_id"]},
            {"$set": {"password_reset_code": code, "password_reset_expires": now() + RESET_CODE_TTL}},
        )
        hooks = PostCommit()
        subject, body = password_reset(user["name"], code)
        hooks.add("password_reset_mail", self.mailer.send, user["email"], subject, body)
        hooks.run()

    def reset_password(self, email: str, code: str, new_password: str) -> None:
        user = self.db["user"].find_one({"email": email.lower().strip()})
        stored: Optional[str] = user.get("password_reset_code") if user else None
        expires = as_utc(user.get("password_reset_expires")) if user else None
        if not stored or not secrets.compare_digest(stored.encode(), code.strip().encode()):
            raise ValidationError("Invalid or expired verification code")
        if expires is None or expires < now():
            raise ValidationError("Invalid or expired verification code")
        self.db["user"].update_one(
            {"_id": user["_id"]},
            {
                "$set": {"password_hash": hash_password(new_password), "updated_at": now()},
                "$unset": {"password_reset_code": "", "password_reset_expires": ""},
            },
        )
        logger.info("password reset for %s", user["_id"])
