"""
Account utilities - password generation and hashing for visitor accounts.
"""

import secrets
import string

import bcrypt

_PASSWORD_ALPHABET = string.ascii_letters + string.digits


def generate_password(length: int = 24) -> str:
    """
    Generate a throwaway password for an auto-provisioned visitor account.

    The visitor never sees it; it only satisfies the platform's
    password-based account requirement.
    """
    body = "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))
    # Upper, digit and symbol so platform password policies accept it
    return body + "A1!"


def get_password_hash(password: str) -> str:
    """Hash a password."""
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')
