# backend/room_code.py

import random
import re

ROOM_CODE_PATTERN = re.compile(r"[0-9]{6}")


def generate_room_code() -> str:
    """Generate a 6-digit numeric room code (100000-999999)."""
    return str(random.randint(100000, 999999))


def is_valid_room_code(code) -> bool:
    """Check a room code is exactly six ASCII digits."""
    if not isinstance(code, str):
        return False
    return ROOM_CODE_PATTERN.fullmatch(code) is not None
