"""Random secret generation."""

import secrets

ALPHANUMERIC = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"
ASCII_PRINTABLE = ALPHANUMERIC + "!@#$%^&*()-_=+[]{}|;:,.<>?"
HEX = "0123456789abcdef"
BASE64 = ALPHANUMERIC + "+/"

CHARSETS = {
    "alphanumeric": ALPHANUMERIC,
    "ascii": ASCII_PRINTABLE,
    "hex": HEX,
    "base64": BASE64,
}

DEFAULT_LENGTH = 32


def generate(length: int = DEFAULT_LENGTH, charset: str = "alphanumeric") -> str:
    """Generate a random secret from one of the named character sets."""
    try:
        alphabet = CHARSETS[charset.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown charset: {charset} (expected one of: {', '.join(CHARSETS)})"
        ) from None

    if length < 1:
        raise ValueError("Length must be at least 1")

    return "".join(secrets.choice(alphabet) for _ in range(length))
