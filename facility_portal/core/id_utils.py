import secrets
import string

import shortuuid

TEMPORARY_PASSWORD_LENGTH = 16
_PASSWORD_ALPHABET = string.ascii_letters + string.digits


def generate_shortuuid() -> str:
    return shortuuid.uuid()


def generate_temporary_password(length: int = TEMPORARY_PASSWORD_LENGTH) -> str:
    """Random password drawn from 62 symbols; 16 characters give ~95 bits of entropy."""
    if length < 12:
        raise ValueError("Temporary passwords must be at least 12 characters")
    while True:
        candidate = "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))
        if (
            any(c.islower() for c in candidate)
            and any(c.isupper() for c in candidate)
            and any(c.isdigit() for c in candidate)
        ):
            return candidate
