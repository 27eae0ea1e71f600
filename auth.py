"""
Credential & session handling: registration, login and bearer tokens.
"""

import logging
from datetime import timedelta

import jwt
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from config import Settings
from database import create_document, to_object_id, utcnow
from errors import AuthError, ValidationError
from schemas import Role, User
from security import check_password, hash_password
from users import public_user
from validation import build, check_email, check_password_length, require

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"
INVALID_CREDENTIALS = "invalid credentials"
INVALID_TOKEN = "invalid or expired token"
SELF_SERVICE_ROLES = (Role.BUYER.value, Role.SELLER.value)


class AuthService:
    def __init__(self, db: Database, settings: Settings):
        self.db = db
        self.secret = settings.jwt_secret
        self.token_ttl = timedelta(minutes=settings.token_ttl_minutes)

    def register(self, profile: dict, raw_password: str) -> dict:
        email = profile.get("email")
        username = profile.get("username")
        check_email(email)
        check_password_length(raw_password)
        require(name=profile.get("name"), username=username)
        role = profile.get("role") or Role.BUYER.value
        if role not in SELF_SERVICE_ROLES:
            raise ValidationError(f"Invalid role: {role}")

        user = build(User, {
            "name": profile["name"],
            "username": username,
            "email": email,
            "password_hash": hash_password(raw_password),
            "role": role,
        })
        if self.db["user"].find_one({"email": email}):
            raise ValidationError("User with this email already exists")
        if self.db["user"].find_one({"username": username}):
            raise ValidationError("Username already taken")

        try:
            user_id = create_document(self.db, "user", user)
        except DuplicateKeyError as e:
            raise ValidationError("User with this email or username already exists") from e

        logger.info("Registered user %s (%s)", user_id, username)
        return public_user(self.db, self.db["user"].find_one({"_id": to_object_id(user_id)}))

    def login(self, email: str, raw_password: str) -> dict:
        if not email or not raw_password:
            raise AuthError(INVALID_CREDENTIALS)
        doc = self.db["user"].find_one({"email": email})
        if not doc or not check_password(raw_password, doc.get("password_hash", "")):
            logger.warning("Failed login attempt")
            raise AuthError(INVALID_CREDENTIALS)

        user = public_user(self.db, doc)
        logger.info("User %s logged in", user["id"])
        return {"user": user, "token": self.issue_token(user["id"])}

    def issue_token(self, user_id: str) -> str:
        now = utcnow()
        claims = {"sub": str(user_id), "iat": now, "exp": now + self.token_ttl}
        return jwt.encode(claims, self.secret, algorithm=TOKEN_ALGORITHM)

    def verify_token(self, token: str) -> str:
        if not token or not isinstance(token, str):
            raise AuthError(INVALID_TOKEN)
        try:
            claims = jwt.decode(token, self.secret, algorithms=[TOKEN_ALGORITHM],
                                options={"require": ["exp", "sub"]})
        except jwt.PyJWTError as e:
            raise AuthError(INVALID_TOKEN) from e
        subject = claims.get("sub")
        if not subject:
            raise AuthError(INVALID_TOKEN)
        return subject
