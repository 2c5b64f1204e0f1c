import re
from typing import Optional

from .models import Offer, OfferMeta
from .utils import format_price

STANDARD_TERM_DAYS = (30, 60, 90)

_CURRENCY = r'(?:₹|\$|\b(?:rs\.?|inr|usd)(?![a-z]))'
_NUM = r'([0-9]+(?:\.[0-9]+)?)'

CURRENCY_BEFORE_PAT = re.compile(_CURRENCY + r'\s*' + _NUM, re.I)
CURRENCY_AFTER_PAT = re.compile(_NUM + r'\s*(?:₹|\$|(?:rs\.?|inr|usd)\b)', re.I)
PER_UNIT_PAT = re.compile(_NUM + r'\s*(?:per\s+unit|/\s*unit)', re.I)
PRICE_CUE_PAT = re.compile(r'(\$|₹|\binr\b|\busd\b|\brs\b\.?|price|\brate|per\s+unit|/\s*unit)', re.I)
BARE_NUM_PAT = re.compile(r'(?<![\d.])\b([0-9]{2,5}(?:\.[0-9]+)?)(?![\d.]*\d)')
TERMS_WORD_PAT = re.compile(r'net|terms|days', re.I)

NET_STANDARD_PAT = re.compile(r'\bnet\s*(30|60|90)(?:\s*days?)?\b', re.I)
NET_DAYS_PAT = re.compile(r'\bnet\s*(\d+)\s*days?\b', re.I)
TERMS_DAYS_PAT = re.compile(r'\b(?:payment\s+)?terms?\s*(\d+)\s*(?:days?)?\b', re.I)
BARE_DAYS_PAT = re.compile(r'\b(\d+)\s*days?\b', re.I)


def _looks_like_terms(value: float, text: str) -> bool:
    return value in STANDARD_TERM_DAYS and bool(TERMS_WORD_PAT.search(text))


def parse_price(text: str) -> Optional[float]:
    m = CURRENCY_BEFORE_PAT.search(text) or CURRENCY_AFTER_PAT.search(text)
    if m:
        return float(m.group(1))

    m = PER_UNIT_PAT.search(text)
    if m:
        val = float(m.group(1))
        # "30/unit, net 60" has no currency marker: 30 is still read as terms
        if not _looks_like_terms(val, text):
            return val
        return None

    # bare numbers only count when the text talks about price somewhere
    if not PRICE_CUE_PAT.search(text):
        return None
    for m in BARE_NUM_PAT.finditer(text):
        val = float(m.group(1))
        if _looks_like_terms(val, text):
            continue
        return val
    return None


def parse_terms(text: str) -> Optional[OfferMeta]:
    """Return the raw day count found in the text, flagged when it is not Net 30/60/90."""
    days = None
    m = NET_STANDARD_PAT.search(text)
    if m:
        days = int(m.group(1))
    else:
        m = NET_DAYS_PAT.search(text) or TERMS_DAYS_PAT.search(text)
        if m:
            days = int(m.group(1))
        else:
            m = BARE_DAYS_PAT.search(text)
            if m and 15 <= int(m.group(1)) <= 120:
                days = int(m.group(1))
    if days is None:
        return None
    return OfferMeta(raw_terms_days=days, non_standard_terms=days not in STANDARD_TERM_DAYS)


def parse_offer(text: str) -> Offer:
    """Extract a structured offer from free text. Pure: the same text always yields the same offer."""
    if not text:
        return Offer()
    # "$1,200" -> "$1200"
    t = text.replace(",", "").strip()

    unit_price = parse_price(t)
    meta = parse_terms(t)
    payment_terms = None
    if meta is not None and not meta.non_standard_terms:
        payment_terms = f"Net {meta.raw_terms_days}"
    return Offer(unit_price=unit_price, payment_terms=payment_terms, meta=meta)


def merge_offers(raw: Offer, last: Optional[Offer]) -> Offer:
    """Fill fields the vendor did not repeat from the last known offer.

    Terms are not back-filled when the new text carried non-standard terms: the
    vendor changed terms to something we cannot score and must be asked.
    """
    if last is None:
        return raw
    non_standard = raw.meta is not None and raw.meta.non_standard_terms
    unit_price = raw.unit_price if raw.unit_price is not None else last.unit_price
    if raw.payment_terms is not None or non_standard:
        payment_terms = raw.payment_terms
    else:
        payment_terms = last.payment_terms
    return Offer(unit_price=unit_price, payment_terms=payment_terms, meta=raw.meta)


def offer_id(offer: Offer) -> str:
    """Identity of an offer for "already asked about this exact offer" checks."""
    price = format_price(offer.unit_price) if offer.unit_price is not None else "null"
    return f"{price}|{offer.payment_terms or 'null'}"
