from __future__ import annotations

import base64
import gzip
import json
import re
import urllib.parse
from typing import Any, Iterable, List, Optional

# ───────── text helpers ─────────

_WS_RE = re.compile(r"\s+")


def clean_text(value: Any) -> Optional[str]:
    """Collapse whitespace; None for empty or non-scalar values."""
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return None
    text = _WS_RE.sub(" ", str(value)).strip()
    return text or None


# ───────── content sniffing ─────────

def looks_like_json(head: str, content_type: Optional[str]) -> bool:
    """Identify a JSON body from its MIME type or leading characters."""
    ct = (content_type or "").split(";")[0].strip().lower()
    if ct in {"application/json", "application/ld+json", "text/json"} or ct.endswith("+json"):
        return True
    return (head or "").lstrip().startswith(("{", "["))


# ───────── URL utilities ─────────

def resolve_url(url: Optional[str], base_url: Optional[str] = None) -> Optional[str]:
    """Resolve a possibly relative URL; None unless the result is http(s)."""
    if not url:
        return None
    url = url.strip().strip("'\"")
    if not url:
        return None
    lowered = url.lower()
    if lowered.startswith(("data:", "blob:", "javascript:", "about:")):
        return None
    if url.startswith("//"):
        scheme = urllib.parse.urlparse(base_url).scheme if base_url else "https"
        url = f"{scheme or 'https'}:{url}"
    elif base_url and not lowered.startswith(("http://", "https://")):
        url = urllib.parse.urljoin(base_url, url)

    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return urllib.parse.urlunparse(
        (parsed.scheme, parsed.netloc, parsed.path, parsed.params, parsed.query, "")  # Remove fragment
    )


def extract_domain(url: Optional[str]) -> str:
    """Extract domain from URL."""
    try:
        return urllib.parse.urlparse(url or "").netloc.lower()
    except ValueError:
        return ""


# ───────── payload packing ─────────

def gzip_ndjson_b64(rows: Iterable[Any]) -> str:
    """gzip(NDJSON) encoded as base64, one JSON document per row."""
    ndjson = "\n".join(json.dumps(row, ensure_ascii=False, default=str) for row in rows)
    return base64.b64encode(gzip.compress(ndjson.encode("utf-8"))).decode("ascii")


def gunzip_ndjson_b64(payload: str) -> List[Any]:
    """Inverse of :func:`gzip_ndjson_b64`."""
    text = gzip.decompress(base64.b64decode(payload)).decode("utf-8")
    return [json.loads(line) for line in text.splitlines() if line.strip()]
