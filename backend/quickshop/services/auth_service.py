# Overview: Service-layer operations for auth; account creation and credential checks.

"""
Accounts and credentials.

Emails are stored lower-cased. Passwords are bcrypt hashes at the cost set by
BCRYPT_ROUNDS; sessions live in session_service.
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..models import User
from ..models.auth import ROLE_CUSTOMER, VALID_ROLES
from ..validation import EMAIL_PATTERN, PHONE_PATTERN
from quickshop.time_utils import utcnow


class PasswordValidationError(Exception):
    """Password too weak to accept."""


class AccountError(ValueError):
    """Bad email, phone or role, or the email is taken."""


MIN_PASSWORD_LENGTH = 8

PASSWORD_RULES = (
    (re.compile(r"[A-Z]"), "an uppercase letter"),
    (re.compile(r"[a-z]"), "a lowercase letter"),
    (re.compile(r"\d"), "a digit"),
    (re.compile(r"[!@#$%^&*(),.'\":{}|<>]"), "a special character"),
)


def validate_password_strength(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    for pattern, label in PASSWORD_RULES:
        if not pattern.search(password):
            raise PasswordValidationError(f"Password must contain {label}")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=current_app.config.get("BCRYPT_ROUNDS", 12))
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    # A corrupt stored hash is treated as a wrong password
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def create_user(
    email: str,
    password: str,
    full_name: str | None = None,
    phone: str | None = None,
    role: str = ROLE_CUSTOMER,
) -> User:
    """
    Create a new user with a bcrypt password hash.

    Raises:
        PasswordValidationError: weak password
        AccountError: invalid email/phone/role or email already registered
    """
    email = normalize_email(email)
    if not EMAIL_PATTERN.match(email):
        raise AccountError("Please enter a valid email address")

    if phone and not PHONE_PATTERN.match(phone):
        raise AccountError("Please enter a valid phone number")

    if role not in VALID_ROLES:
        raise AccountError(f"Invalid role: {role}")

    if db.session.query(User).filter_by(email=email).first():
        raise AccountError("Email is already registered")

    user = User(
        email=email,
        password_hash=hash_password(password),
        full_name=(full_name or "").strip() or None,
        phone=phone or None,
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Return the active user matching the credentials, or None.

    Stamps last_login_at on success.
    """
    user = db.session.query(User).filter_by(email=normalize_email(email)).first()
    if not user or not user.is_active:
        return None

    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def set_role(user_id: int, role: str) -> User:
    if role not in VALID_ROLES:
        raise AccountError(f"Invalid role: {role}")

    user = db.session.get(User, user_id)
    if not user:
        raise AccountError(f"User {user_id} not found")

    user.role = role
    db.session.commit()
    return user
