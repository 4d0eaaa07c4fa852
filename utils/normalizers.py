"""Text normalization helpers shared by storage keys and carrier status mapping"""

import re
import unicodedata

_SLUG_PATTERN = re.compile(r"[^a-z0-9.-]")


def strip_diacritics(text: str) -> str:
    """Decompose (NFD) and drop combining marks: 'Livré' -> 'Livre'"""
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(char for char in decomposed if not unicodedata.combining(char))


def normalize_status_text(text) -> str:
    if not text:
        return ""
    return " ".join(strip_diacritics(str(text)).lower().split())


def slugify(value: str) -> str:
    """Lowercase and replace every character outside [a-z0-9.-] with '-'"""
    return _SLUG_PATTERN.sub("-", (value or "").lower())


def safe_basename(filename: str) -> str:
    """Last path segment of a client-supplied filename"""
    return (filename or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
