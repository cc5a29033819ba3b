import logging
import re
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from errors import DuplicateUserError, InvalidCredentials, ValidationError
from journal_utils import create_user, get_user_by_email


logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MIN_NAME_LENGTH = 2
MIN_PASSWORD_LENGTH = 6


def normalize_email(email: str) -> str:
    return email.strip().lower()


def validate_email(email: Optional[str]) -> str:
    if not isinstance(email, str) or not EMAIL_PATTERN.match(email.strip()):
        raise ValidationError("Please enter a valid email address")
    return normalize_email(email)


def register_user(name: Optional[str], email: Optional[str], password: Optional[str]) -> int:
    """Create an account and return its id.

    The first broken rule wins: missing field, short name, malformed email,
    short password. The store is only touched once all of them pass.
    """
    if not name or not email or not password:
        raise ValidationError("All fields are required")
    if not isinstance(name, str) or len(name.strip()) < MIN_NAME_LENGTH:
        raise ValidationError(f"Name must be at least {MIN_NAME_LENGTH} characters long")
    normalized_email = validate_email(email)
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )

    if get_user_by_email(normalized_email):
        raise DuplicateUserError()

    user_id = create_user(name, normalized_email, generate_password_hash(password))
    logger.info("New user registered: %s (ID: %s)", normalized_email, user_id)
    return user_id


def authenticate(email: Optional[str], password: Optional[str]) -> dict:
    """Return ``{id, name, email}`` for valid credentials.

    Unknown email and wrong password raise the same InvalidCredentials.
    """
    if not email or not password:
        raise ValidationError("Email and password are required")
    normalized_email = validate_email(email)
    if not isinstance(password, str):
        raise InvalidCredentials()

    user = get_user_by_email(normalized_email)
    if not user or not check_password_hash(user["password_hash"], password):
        raise InvalidCredentials()

    logger.info("User logged in: %s (ID: %s)", user["email"], user["id"])
    return public_user(user)


def public_user(user: dict) -> dict:
    return {"id": user["id"], "name": user["name"], "email": user["email"]}
