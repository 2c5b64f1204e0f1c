from __future__ import annotations
import os
import re
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter, Retry

from .models import Offer, ReplyContext
from .utils import contains_required_price, format_price, seeded_index

logger = logging.getLogger("llm_phraser")

# ------------------ Config (env) ------------------
LLM_MODE = os.getenv("LLM_MODE", "TEMPLATE").upper()            # REMOTE | TEMPLATE
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434").strip().rstrip("/")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.1").strip()
LLM_REMOTE_TIMEOUT = float(os.getenv("LLM_REMOTE_TIMEOUT", "20"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.4"))
REPLY_MAX_CHARS = int(os.getenv("REPLY_MAX_CHARS", "550"))

logger.info(
    "[llm_phraser] startup: LLM_MODE=%s OLLAMA_BASE_URL=%s OLLAMA_MODEL=%s LLM_REMOTE_TIMEOUT=%s",
    LLM_MODE, OLLAMA_BASE_URL or "<none>", OLLAMA_MODEL, LLM_REMOTE_TIMEOUT
)

# ------------------ requests session w/ retries ------------------
_session = requests.Session()
_retries = Retry(total=2, backoff_factor=0.25, status_forcelist=[429, 500, 502, 503, 504], allowed_methods=["POST"])
_adapter = HTTPAdapter(max_retries=_retries)
_session.mount("http://", _adapter)
_session.mount("https://", _adapter)

SYSTEM_PROMPT = """
You are a senior procurement manager negotiating with a vendor, professionally and politely.

Style:
- 2-4 short lines max. Natural, human tone, like a real business conversation.

Hard rules:
- Never mention: utility, score, engine, algorithm, AI, model, policy, JSON, thresholds.
- Never invent numbers. Use only numbers present in the context.
- Only ever propose payment terms Net 30, Net 60 or Net 90.
- If intent=COUNTER_DIRECT: state the counterOffer unit price and payment terms exactly.
- If intent=ACCEPT: confirm the vendorOffer price and terms exactly.
- If intent=ASK_PREFERENCE: ask ONE question offering a choice between price and payment terms. No numbers at all.
- If intent=ESCALATE or WALK_AWAY: no numbers; say what happens next.
- If intent=SMALL_TALK: reply to the small talk, then gently ask for an offer.
- If intent=ACKNOWLEDGE_LATER: acknowledge their timing, ask to confirm details before pausing.
- If intent=NEGOTIATION_RESPONSE: acknowledge and propose ONE next step from the last known offer.
- If the vendor used non-standard terms, ask them to confirm Net 30, Net 60 or Net 90.
Return ONLY the message text.
"""

BANNED_PAT = re.compile(
    r"\b(utility|utilities|algorithm|engine|ai|json|thresholds?|scores?|scoring|model|policy)\b", re.I
)
DIGIT_PAT = re.compile(r"\d")


# ------------------ reply validity ------------------
def _mentions_offer(reply: str, offer: Optional[Offer]) -> bool:
    if offer is None or offer.unit_price is None or offer.payment_terms is None:
        return False
    return contains_required_price(reply, offer.unit_price) and offer.payment_terms.lower() in reply.lower()


def validate_reply(ctx: ReplyContext, reply: Optional[str]) -> bool:
    """Check a generated reply against the facts it must (or must not) carry for its intent."""
    if not reply or not reply.strip():
        return False
    if len(reply) > REPLY_MAX_CHARS:
        return False
    if BANNED_PAT.search(reply):
        return False

    intent = ctx.intent
    t = reply.lower()

    if intent in ("COUNTER_DIRECT", "NEGOTIATION_RESPONSE") and ctx.counter_offer is not None:
        return _mentions_offer(reply, ctx.counter_offer)

    if intent == "ACCEPT":
        return _mentions_offer(reply, ctx.vendor_offer)

    if intent in ("ASK_PREFERENCE", "ESCALATE", "WALK_AWAY"):
        return not DIGIT_PAT.search(reply)

    if intent == "ASK_CLARIFY" and ctx.vendor_offer is not None:
        if ctx.vendor_offer.unit_price is None and "price" not in t:
            return False
        if ctx.vendor_offer.payment_terms is None and not ("terms" in t or "net" in t):
            return False

    return True


# ------------------ fallback templates ------------------
_TEMPLATES: Dict[str, List[str]] = {
    "GREET": [
        "Hi there, thanks for reaching out. How are things on your end?",
        "Hello! Good to connect. How's your week going?",
        "Hi, thanks for getting in touch. Hope all is well with you.",
    ],
    "ASK_FOR_OFFER": [
        "Whenever you're ready, could you share your unit price and payment terms (Net 30/60/90)?",
        "To get started, what unit price and payment terms can you offer?",
        "Could you send over your best unit price and the payment terms you'd propose?",
    ],
    "SMALL_TALK": [
        "Doing well, thanks for asking. Whenever you're ready, please share your best unit price and payment terms (Net 30/60/90).",
        "Good to hear from you. When you have a moment, what unit price and payment terms can you offer?",
        "Thanks, all good here. Happy to get going as soon as you can share a unit price and payment terms.",
    ],
    "ASK_CLARIFY": [
        "Thanks, quick check: could you confirm the {missing}?",
        "Just so I have everything: what's the {missing}?",
        "Thanks for that. Could you also share the {missing}?",
    ],
    "ASK_CLARIFY_TERMS": [
        "Thanks. We work with Net 30, Net 60 or Net 90; could you confirm which of those works instead of {days} days?{extra}",
        "Appreciate it. Could you confirm the terms as Net 30, Net 60 or Net 90 rather than {days} days?{extra}",
    ],
    "ASK_PREFERENCE": [
        "Thanks, that's helpful. To make this work, is it easier for you to move a bit on price, or to extend the payment terms?",
        "Appreciate it. Do you have more room on the price, or would longer payment terms be easier on your side?",
        "Thanks for that. Which is more feasible for you: adjusting the price or improving the payment terms?",
    ],
    "COUNTER_DIRECT": [
        "Thanks for the update. If we proceed at {price} per unit, we'd need {terms} to make this work. Does that work for you?",
        "Understood. We can move forward at {price} per unit on {terms}. Can you confirm?",
        "Thanks. To get this done, we'd need {price} per unit with {terms}. Would that work?",
    ],
    "ACCEPT": [
        "Confirmed, we can move forward at {price} per unit on {terms}. Please share next steps and we'll proceed.",
        "Great, {price} per unit on {terms} works for us. What are the next steps?",
        "Perfect, we're good with {price} per unit on {terms}. How would you like to proceed?",
    ],
    "ESCALATE": [
        "Thanks. I need a quick internal review before I can confirm. I'll come back to you shortly with an update.",
        "Thanks for bearing with us. Let me check this internally and get back to you soon.",
        "Appreciate your patience. I need to run this by my team and will follow up shortly.",
    ],
    "WALK_AWAY": [
        "Thanks for sharing this. We won't be able to proceed on these terms. If you can adjust pricing or payment terms, I'm happy to revisit.",
        "Thanks, but we can't move forward on these terms. If you're able to revise the price or terms, let's reconnect.",
        "Appreciate the offer. Unfortunately it doesn't work for us as it stands. If anything changes on price or terms, I'm open to continuing.",
    ],
    "ACKNOWLEDGE_LATER": [
        "No problem. When would be a good time to pick this up? Before we pause, could you confirm the price and payment terms we discussed?",
        "Sure, take your time. When you're back, could you confirm the price and terms so we can wrap this up?",
    ],
    "NEGOTIATION_RESPONSE": [
        "Got it, thanks for confirming. Based on {vendor_part}, could we do {price} per unit on {terms} instead?",
        "Understood. Working from {vendor_part}, would {price} per unit on {terms} be possible?",
    ],
    "NEGOTIATION_RESPONSE_OPEN": [
        "Understood, thanks for confirming {vendor_part}. Is there any flexibility on price or payment terms so we can find a path forward?",
        "Thanks for confirming {vendor_part}. Let's see if we can find a path forward: where do you have the most room?",
    ],
    "ACKNOWLEDGE": [
        "Thanks, noted. Let's keep going: is there any flexibility on price or payment terms?",
        "Thanks for the note. Where do you have the most room, price or payment terms?",
    ],
}

ASK_BEST_OFFER = "Thanks. Could you share your best unit price and payment terms (Net 30/60/90)?"


def _money(price: Optional[float]) -> str:
    return f"${format_price(price)}"


def _vendor_part(offer: Optional[Offer]) -> Optional[str]:
    if offer is None or not offer.has_signal:
        return None
    price = f"{_money(offer.unit_price)} per unit" if offer.unit_price is not None else "that price"
    return f"{price} on {offer.payment_terms or 'those terms'}"


def _pick(ctx: ReplyContext, key: str) -> str:
    variants = _TEMPLATES[key]
    return variants[seeded_index(f"{ctx.deal_id}-{ctx.round}-{ctx.intent}", len(variants))]


def fallback_reply(ctx: ReplyContext) -> str:
    """Deterministic reply for an intent. Variant choice is stable per (deal, round, intent)."""
    intent = ctx.intent
    vendor = ctx.vendor_offer
    counter = ctx.counter_offer

    if intent == "ASK_CLARIFY":
        if vendor is not None and vendor.meta is not None and vendor.meta.non_standard_terms:
            extra = " And what unit price can you do?" if vendor.unit_price is None else ""
            return _pick(ctx, "ASK_CLARIFY_TERMS").format(days=vendor.meta.raw_terms_days, extra=extra)
        missing = []
        if vendor is None or vendor.unit_price is None:
            missing.append("unit price")
        if vendor is None or vendor.payment_terms is None:
            missing.append("payment terms (Net 30, Net 60 or Net 90)")
        if not missing:
            return ASK_BEST_OFFER
        return _pick(ctx, "ASK_CLARIFY").format(missing=" and ".join(missing))

    if intent == "COUNTER_DIRECT":
        if counter is None or counter.unit_price is None or counter.payment_terms is None:
            return ASK_BEST_OFFER
        return _pick(ctx, "COUNTER_DIRECT").format(price=_money(counter.unit_price), terms=counter.payment_terms)

    if intent == "ACCEPT":
        if vendor is None or not vendor.is_complete:
            return "Confirmed. Please share next steps and we'll proceed."
        return _pick(ctx, "ACCEPT").format(price=_money(vendor.unit_price), terms=vendor.payment_terms)

    if intent == "NEGOTIATION_RESPONSE":
        vendor_part = _vendor_part(vendor)
        if vendor_part and counter is not None and counter.is_complete:
            return _pick(ctx, "NEGOTIATION_RESPONSE").format(
                vendor_part=vendor_part, price=_money(counter.unit_price), terms=counter.payment_terms
            )
        if vendor_part:
            return _pick(ctx, "NEGOTIATION_RESPONSE_OPEN").format(vendor_part=vendor_part)
        return "Understood. Let's find a path forward. What would work best for you?"

    if intent in _TEMPLATES:
        return _pick(ctx, intent)
    return "Thanks, let's continue."


# ------------------ remote (Ollama) ------------------
def _extract_text(j: Any) -> Optional[str]:
    """Ollama chat shape first, then OpenAI-compatible choices."""
    if not isinstance(j, dict):
        return None
    msg = j.get("message")
    if isinstance(msg, dict) and isinstance(msg.get("content"), str):
        return msg["content"].strip()
    choices = j.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        c0 = choices[0]
        if isinstance(c0.get("message"), dict) and isinstance(c0["message"].get("content"), str):
            return c0["message"]["content"].strip()
        if isinstance(c0.get("text"), str):
            return c0["text"].strip()
    if isinstance(j.get("response"), str):
        return j["response"].strip()
    return None


def _build_user_prompt(ctx: ReplyContext) -> str:
    payload = {
        "vendorText": ctx.vendor_text,
        "intent": ctx.intent,
        "vendorOffer": ctx.vendor_offer.model_dump(mode="json") if ctx.vendor_offer else None,
        "decision": ctx.decision.model_dump(mode="json") if ctx.decision else None,
        "counterOffer": ctx.counter_offer.model_dump(mode="json") if ctx.counter_offer else None,
    }
    return "Write the next message.\n\nContext JSON:\n" + json.dumps(payload, indent=2)


def call_ollama(ctx: ReplyContext, base_url: str = None, model: str = None, timeout: float = None) -> Optional[str]:
    """POST to Ollama /api/chat. Returns the message text, or None on any transport or shape problem."""
    url = f"{(base_url or OLLAMA_BASE_URL).rstrip('/')}/api/chat"
    payload = {
        "model": model or OLLAMA_MODEL,
        "stream": False,
        "options": {"temperature": LLM_TEMPERATURE},
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": _build_user_prompt(ctx)},
        ],
    }
    try:
        resp = _session.post(url, json=payload, timeout=timeout or LLM_REMOTE_TIMEOUT)
        resp.raise_for_status()
        return _extract_text(resp.json())
    except requests.RequestException as e:
        logger.warning("[llm_phraser] ollama call failed url=%s: %s", url, e)
    except ValueError:
        logger.exception("[llm_phraser] failed to parse JSON from ollama response")
    return None


class LLMPhraser:
    """
    Turns an intent plus offers into reply text.

    In REMOTE mode (or when generate_fn is given) the generated text is checked
    with validate_reply() and replaced by the deterministic fallback when it is
    missing or breaks a rule. Callers never see a generation failure.
    """

    def __init__(self, mode: Optional[str] = None, generate_fn: Optional[Callable[[ReplyContext], Optional[str]]] = None):
        self.mode = (mode or LLM_MODE).upper()
        self.generate_fn = generate_fn

    def generate(self, ctx: ReplyContext) -> str:
        fn = self.generate_fn
        if fn is None and self.mode == "REMOTE":
            fn = call_ollama

        if fn is not None:
            out = None
            try:
                out = fn(ctx)
            except Exception:
                logger.exception("[llm_phraser] reply generation error intent=%s deal=%s", ctx.intent, ctx.deal_id)
            if validate_reply(ctx, out):
                return out.strip()
            logger.warning("[llm_phraser] unusable reply for intent=%s deal=%s; falling back to template", ctx.intent, ctx.deal_id)

        reply = fallback_reply(ctx)
        logger.debug("[llm_phraser] template reply intent=%s deal=%s round=%s", ctx.intent, ctx.deal_id, ctx.round)
        return reply
