import re

_SPECIAL_CHARS = re.compile(r"[^\w\s-]", re.ASCII)
_SEPARATORS = re.compile(r"[\s_-]+", re.ASCII)
_NON_LETTERS = re.compile(r"[^a-zA-Z]")
_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def generate_slug(name: str) -> str:
    slug = (name or "").lower().strip()
    slug = _SPECIAL_CHARS.sub("", slug)
    slug = _SEPARATORS.sub("-", slug)
    return slug.strip("-")


def _prefix(value: str) -> str:
    return _NON_LETTERS.sub("", value or "").upper()[:2].ljust(2, "X")


def generate_sku(name: str, category: str, product_id: str) -> str:
    return f"{_prefix(name)}{_prefix(category)}-{product_id[:6].upper()}"


def generate_username_base(name: str) -> str:
    base = _NON_ALNUM.sub("", name or "").lower()[:5]
    if len(base) < 3:
        base += "user"
    return base


def order_number(order_id: int) -> str:
    return f"ORD-{order_id:06d}"
