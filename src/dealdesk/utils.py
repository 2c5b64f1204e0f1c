import re, unicodedata, hashlib
from decimal import Decimal
from typing import Optional


def normalize_text(text: str) -> str:
    if not text:
        return ""
    text = unicodedata.normalize("NFKC", text)
    return " ".join(text.strip().split())


def clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


def format_price(price: Optional[float]) -> str:
    """Render a price without a trailing '.0' so 90.0 reads as '90' in replies and offer ids."""
    if price is None:
        return ""
    if float(price).is_integer():
        return str(int(price))
    # repr keeps every digit the float carries; :g would round to 6 significant digits
    return format(Decimal(repr(float(price))).normalize(), "f")


N_NUM = re.compile(r'(?<![\d.])\$?(\d+(?:\.\d+)?)(?![\d.]*\d)')

def contains_required_price(gen_text: str, required_price: float) -> bool:
    """True when any number in the text ($93, 93, 93.00) equals the required price."""
    cleaned = (gen_text or "").replace(",", "")
    found = [float(m.group(1)) for m in N_NUM.finditer(cleaned)]
    return float(required_price) in found


def seeded_index(seed: str, n: int) -> int:
    """Deterministic (not cryptographic) pick of an index in [0, n) for a seed string.

    Template variety must be reproducible per (deal, round, intent), so Python's
    per-process randomized hash() cannot be used here.
    """
    if n <= 0:
        raise ValueError("n must be positive")
    digest = hashlib.sha256(seed.encode("utf-8")).hexdigest()[:8]
    return int(digest, 16) % n
