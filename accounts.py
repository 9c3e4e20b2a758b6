"""
Accounts: signup with e-mail verification, login and profile.
"""
import logging
import secrets
from datetime import timedelta
from typing import Any, Dict, Mapping, Optional

import jwt
from passlib.context import CryptContext
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from database import as_utc, create_document, parse_object_id, serialize, utcnow
from errors import (
    AccountNotVerifiedError,
    DuplicateEmailError,
    InvalidCredentialsError,
    InvalidTokenError,
    MissingFieldError,
    UserNotFoundError,
)
from mailer import EmailQueue, OutboundEmail
from schemas import EmailVerificationToken, User

logger = logging.getLogger(__name__)

password_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")

PROFILE_FIELDS = ("first_name", "last_name", "address", "city", "country", "phone")


def hash_password(password: str) -> str:
    return password_ctx.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    return password_ctx.verify(password, hashed)


def create_token(user: dict, secret: Optional[str] = None, expires: Optional[timedelta] = None) -> str:
    now = utcnow()
    payload = {
        "sub": str(user["_id"]),
        "email": user.get("email"),
        "first_name": user.get("first_name"),
        "last_name": user.get("last_name"),
        "exp": now + (expires or timedelta(minutes=config.JWT_EXPIRES_MIN)),
        "iat": now,
    }
    return jwt.encode(payload, secret or config.JWT_SECRET, algorithm="HS256")


def create_refresh_token(user: dict) -> str:
    return create_token(user, config.JWT_REFRESH_SECRET, timedelta(days=config.JWT_REFRESH_EXPIRES_DAYS))


def public_user(user: Mapping[str, Any]) -> Dict[str, Any]:
    out = serialize(dict(user))
    out.pop("hashed_password", None)
    return out


def signup(db: Database, email_queue: EmailQueue, first_name: Optional[str], last_name: Optional[str],
           email: Optional[str], password: Optional[str], address: Optional[str] = None) -> Dict[str, Any]:
    if not first_name or not last_name or not email or not password:
        raise MissingFieldError("First name, last name, email and password are required")
    email = email.strip().lower()
    if db["user"].find_one({"email": email}):
        raise DuplicateEmailError()

    user = User(
        first_name=first_name,
        last_name=last_name,
        email=email,
        address=address,
        hashed_password=hash_password(password),
        is_verified=False,
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise DuplicateEmailError()

    token = secrets.token_hex(32)
    create_document(db, "email_verification_token", EmailVerificationToken(user_id=user_id, token=token))
    verification_url = f"{config.SERVER_URL}/auth/verify-email?token={token}"
    logger.info("Verification link for %s: %s", email, verification_url)

    email_queue.enqueue(OutboundEmail(
        to=email,
        subject="Verify your email address",
        text=(
            f"Hello {first_name},\n\n"
            "Thanks for signing up.\n\n"
            f"Open this link to verify your email address and activate your account:\n{verification_url}\n\n"
            "If you did not sign up, you can ignore this email."
        ),
        html=(
            f"<p>Hello {first_name},</p>"
            "<p>Thanks for signing up.</p>"
            f'<p><a href="{verification_url}">Verify my email address</a></p>'
            "<p>If you did not sign up, you can ignore this email.</p>"
        ),
    ))
    return {"message": "Account created. Check your inbox to activate your account."}


def verify_email(db: Database, email_queue: EmailQueue, token: Optional[str]) -> Dict[str, Any]:
    if not token:
        raise MissingFieldError("Verification token is missing")
    token_doc = db["email_verification_token"].find_one({"token": token.strip()})
    if not token_doc:
        raise InvalidTokenError()
    # the TTL index removes stale tokens eventually; don't honour them meanwhile
    if as_utc(token_doc["created_at"]) + timedelta(hours=config.VERIFICATION_TOKEN_TTL_HOURS) < utcnow():
        db["email_verification_token"].delete_one({"_id": token_doc["_id"]})
        raise InvalidTokenError()

    user_oid = parse_object_id(token_doc["user_id"])
    user = db["user"].find_one({"_id": user_oid}) if user_oid else None
    if not user:
        raise UserNotFoundError()
    if user.get("is_verified"):
        raise InvalidTokenError("Account already verified")

    db["user"].update_one({"_id": user["_id"]}, {"$set": {"is_verified": True, "updated_at": utcnow()}})
    db["email_verification_token"].delete_one({"_id": token_doc["_id"]})
    logger.info("Account %s verified", user["email"])

    email_queue.enqueue(OutboundEmail(
        to=user["email"],
        subject="Welcome!",
        text=f"Hello {user['first_name']},\n\nYour account is now active. You can log in and start shopping.",
        html=(
            f"<p>Hello {user['first_name']},</p>"
            "<p>Your account is now <strong>active</strong>. You can log in and start shopping.</p>"
        ),
    ))
    return public_user(db["user"].find_one({"_id": user["_id"]}))


def login(db: Database, email: Optional[str], password: Optional[str]) -> Dict[str, Any]:
    if not email or not password:
        raise MissingFieldError("Email and password are required")
    user = db["user"].find_one({"email": email.strip().lower()})
    if not user or not verify_password(password, user.get("hashed_password", "")):
        raise InvalidCredentialsError()
    if not user.get("is_verified"):
        raise AccountNotVerifiedError()
    return {
        "message": "Logged in",
        "user": public_user(user),
        "token": create_token(user),
        "refresh_token": create_refresh_token(user),
    }


def get_profile(db: Database, user_id: str) -> Dict[str, Any]:
    oid = parse_object_id(user_id)
    user = db["user"].find_one({"_id": oid}) if oid else None
    if not user:
        raise UserNotFoundError()
    return public_user(user)


def update_profile(db: Database, user_id: str, data: Mapping[str, Any]) -> Dict[str, Any]:
    oid = parse_object_id(user_id)
    if not oid or not db["user"].find_one({"_id": oid}, {"_id": 1}):
        raise UserNotFoundError()
    update = {k: v for k, v in data.items() if k in PROFILE_FIELDS}
    update["updated_at"] = utcnow()
    db["user"].update_one({"_id": oid}, {"$set": update})
    return get_profile(db, user_id)
