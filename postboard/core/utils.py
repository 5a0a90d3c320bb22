"""
Shared utility functions for the postboard service.

This module contains common utilities used across the codebase.
"""

from __future__ import annotations

import re
import secrets
import uuid
from datetime import datetime, timezone


def generate_id(prefix: str = "") -> str:
    """
    Generate a unique ID with optional prefix.
    
    Args:
        prefix: Optional prefix (e.g., "user", "post", "int")
        
    Returns:
        A unique ID like "post_a1b2c3d4e5f6"
    """
    uid = str(uuid.uuid4())[:12]
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def slugify(title: str) -> str:
    """
    Build a unique URL slug from a post title.
    
    The title is lowercased and collapsed to dashes; a timestamp and a
    random suffix keep two posts with the same title apart.
    """
    base = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-") or "post"
    stamp = int(utc_now().timestamp() * 1000)
    return f"{base}-{stamp}-{secrets.token_hex(3)}"
