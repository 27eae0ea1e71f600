import re
from typing import Type, TypeVar

import pydantic
from pydantic import BaseModel

from errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_PASSWORD_LENGTH = 8

M = TypeVar("M", bound=BaseModel)


def check_email(email):
    if not email:
        raise ValidationError("Email is required")
    if not isinstance(email, str) or not EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email format")


def check_password_length(password):
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")


def require(**fields):
    """Raise ValidationError naming the first missing (falsy) field."""
    for name, value in fields.items():
        if value is None or value == "" or value == []:
            raise ValidationError(f"{name} is required")


def build(model: Type[M], data: dict) -> M:
    """Validate a document against its collection schema."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or model.__name__
        raise ValidationError(f"{location}: {first['msg']}") from e
