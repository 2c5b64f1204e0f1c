import re
from typing import Literal, Optional

Preference = Literal["PRICE", "TERMS", "NEITHER"]
Refusal = Literal["ALREADY_SHARED", "LATER", "NO", "CONFUSED"]

_NO_WORD = re.compile(r"\bno\b")
_REFUSAL_PHRASES = ("nope", "not possible", "can't", "cannot", "final", "fixed", "not flexible")


def _is_flat_refusal(t: str) -> bool:
    return bool(_NO_WORD.search(t)) or any(k in t for k in _REFUSAL_PHRASES)


def classify_preference(text: str) -> Preference:
    """
    Heuristic read of a vendor's answer to "price or payment terms?".
    Refusals and unrecognised answers are NEITHER.
    """
    t = (text or "").lower().strip()

    # only a bare "no" refuses here; "no problem, terms work" is still an answer
    if t.strip(" .!") == "no" or any(k in t for k in _REFUSAL_PHRASES):
        return "NEITHER"

    if any(k in t for k in ("terms", "net", "days", "payment")):
        return "TERMS"

    if any(k in t for k in ("price", "discount", "cost", "rate")):
        return "PRICE"

    return "NEITHER"


def classify_refusal(text: str) -> Optional[Refusal]:
    """Classify a message that carries no offer, once negotiation has started."""
    t = (text or "").lower().strip()

    if any(k in t for k in ("already", "shared", "told you", "mentioned")):
        return "ALREADY_SHARED"

    if any(k in t for k in ("later", "tomorrow", "next week", "soon")):
        return "LATER"

    if _is_flat_refusal(t):
        return "NO"

    if "?" in t or any(k in t for k in ("what", "how", "confused")):
        return "CONFUSED"

    return None
