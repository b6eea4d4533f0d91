# tenant_plexus/utils/slugs.py
import re
import time
from typing import Optional

_NON_ALPHANUMERIC_RUN = re.compile(r"[^a-z0-9]+")


def generate_slug(name: Optional[str], separator: str = "-") -> str:
    """
    Derive a URL-safe slug from a store name.

    Lowercases the name, collapses every run of characters outside [a-z0-9]
    into a single separator and trims separators from both ends. Accented
    letters count as non-alphanumeric, so "Déjà" becomes "d-j".
    A missing name falls back to a timestamped placeholder.
    """
    if not name:
        return f"store{separator}{int(time.time() * 1000)}"

    slug = _NON_ALPHANUMERIC_RUN.sub(separator, name.lower())
    return slug.strip(separator)
