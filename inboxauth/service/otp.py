from __future__ import annotations

import re
import secrets
from typing import Optional

PASSCODE_LENGTH = 6
_LOWEST_PASSCODE = 10 ** (PASSCODE_LENGTH - 1)
_PASSCODE_SPAN = 9 * _LOWEST_PASSCODE

METADATA_PREFIX = "CODE-"
_METADATA_PATTERN = re.compile(rf"{re.escape(METADATA_PREFIX)}(\d+)")


def generate_passcode() -> str:
    """Return a uniformly drawn 6-digit code from the OS CSPRNG."""
    return str(_LOWEST_PASSCODE + secrets.randbelow(_PASSCODE_SPAN))


def embed_passcode(passcode: str) -> str:
    """Challenge metadata carrying ``passcode`` forward to the next attempt."""
    return f"{METADATA_PREFIX}{passcode}"


def extract_passcode(metadata: Optional[str]) -> Optional[str]:
    if not metadata:
        return None
    match = _METADATA_PATTERN.fullmatch(metadata)
    return match.group(1) if match else None
