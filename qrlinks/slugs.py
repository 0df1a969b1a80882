"""Slug format rules and random slug generation."""

import re

from nanoid import generate

from qrlinks.exceptions import ValidationError

__all__ = ["SLUG_ALPHABET", "SLUG_PATTERN", "generate_slug", "validate_slug"]

SLUG_ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
SLUG_PATTERN = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?$")


def generate_slug(length: int) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(SLUG_ALPHABET, length)


def validate_slug(slug: str, min_length: int, max_length: int) -> str:
    """Return ``slug`` stripped, or raise ``ValidationError``.

    Allowed: ASCII letters, digits and hyphens, no hyphen at either end,
    ``min_length`` to ``max_length`` characters.
    """
    candidate = (slug or "").strip()
    if len(candidate) < min_length or len(candidate) > max_length:
        raise ValidationError(f"Slug must be between {min_length} and {max_length} characters")
    if not SLUG_PATTERN.fullmatch(candidate):
        raise ValidationError("Slug may only contain letters, digits and inner hyphens")
    return candidate
