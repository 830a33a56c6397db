"""Composite dedupe key generation for record identity.

Key construction: resource_id|service|region

Normalization rules:
- Unicode NFKD, lowercase
- Collapse internal whitespace, strip leading/trailing whitespace
- Missing components become empty strings; a missing resource id yields no key
"""

from __future__ import annotations

import hashlib
import re
import unicodedata

KEY_SEPARATOR = "|"


def normalize_text(text: object | None) -> str:
    """Normalize a key component to canonical form.

    Args:
        text: Input value (non-strings are converted with ``str``)

    Returns:
        Normalized string (lowercase, Unicode NFKD, whitespace collapsed)
    """
    if text is None:
        return ""

    text = unicodedata.normalize("NFKD", str(text))
    text = text.lower()

    # Separator characters inside components would make keys ambiguous
    text = text.replace(KEY_SEPARATOR, " ")

    text = re.sub(r"\s+", " ", text)

    return text.strip()


def dedupe_key(resource_id: object | None, service: object | None, region: object | None) -> str:
    """Build the composite dedupe key for a resource.

    Args:
        resource_id: Source resource identifier
        service: Service label (e.g. "EC2")
        region: Region code (e.g. "us-east-1")

    Returns:
        ``"<id>|<service>|<region>"`` normalized, or ``""`` when the
        resource id is missing or blank
    """
    id_slug = normalize_text(resource_id)
    if not id_slug:
        return ""

    return KEY_SEPARATOR.join([id_slug, normalize_text(service), normalize_text(region)])


def derived_record_id(resource_id: str, key: str) -> str:
    """Derive a unique record id for a resource whose plain id is taken.

    Used when the same resource id shows up under another service or region.

    Returns:
        ``"<resource_id>:<first 8 hex chars of sha256(key)>"``
    """
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
    return f"{resource_id}:{digest[:8]}"
