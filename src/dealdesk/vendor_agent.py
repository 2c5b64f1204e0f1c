from __future__ import annotations
import os
import re
import json
import logging
from typing import TYPE_CHECKING, Callable, List, Literal, Optional

import requests
from pydantic import BaseModel, ConfigDict, ValidationError
from requests.adapters import HTTPAdapter, Retry

from .errors import DealClosedError, DealNotFoundError
from .llm_phraser import LLM_REMOTE_TIMEOUT, OLLAMA_BASE_URL, OLLAMA_MODEL
from .models import CLOSED_STATUSES, Offer, PaymentTerms, TurnOutcome
from .utils import contains_required_price, format_price

if TYPE_CHECKING:
    from .conversation_engine import NegotiationEngine

logger = logging.getLogger("vendor_agent")

Scenario = Literal["HARD", "SOFT", "WALK_AWAY"]

# ------------------ Config (env) ------------------
VENDOR_MODE = os.getenv("VENDOR_MODE", "TEMPLATE").upper()      # REMOTE | TEMPLATE
VENDOR_SCENARIO = os.getenv("VENDOR_SCENARIO", "HARD").upper()
OPENING_TEXT = "Start negotiation."

_session = requests.Session()
_retries = Retry(total=2, backoff_factor=0.25, status_forcelist=[429, 500, 502, 503, 504], allowed_methods=["POST"])
_adapter = HTTPAdapter(max_retries=_retries)
_session.mount("http://", _adapter)
_session.mount("https://", _adapter)


class VendorPolicy(BaseModel):
    """Seller side of a simulated negotiation: higher price and shorter terms are better."""
    model_config = ConfigDict(frozen=True)

    min_price: float = 82
    start_price: float = 98
    preferred_terms: PaymentTerms = "Net 30"
    worst_terms: PaymentTerms = "Net 90"
    concession_step: float = 2
    max_rounds: int = 6


DEFAULT_VENDOR_POLICY = VendorPolicy()


class VendorContext(BaseModel):
    deal_id: str
    round: int
    buyer_text: str = OPENING_TEXT
    buyer_counter: Optional[Offer] = None
    scenario: Scenario = "HARD"


class VendorReply(BaseModel):
    unit_price: float
    payment_terms: PaymentTerms
    message: str

    @property
    def offer(self) -> Offer:
        return Offer(unit_price=self.unit_price, payment_terms=self.payment_terms)


def _say(price: float, terms: str) -> VendorReply:
    return VendorReply(unit_price=price, payment_terms=terms, message=f"We can do ${format_price(price)} per unit, {terms}.")


def _states_offer(message: str, price: float, terms: str) -> bool:
    return contains_required_price(message, price) and terms.lower() in message.lower()


def rule_based_reply(policy: VendorPolicy, ctx: VendorContext) -> VendorReply:
    """
    Deterministic vendor move for a round.

    HARD concedes one step per round on its preferred terms.
    SOFT concedes two steps, takes the buyer's terms, and agrees to a counter at or above its floor.
    WALK_AWAY raises its price every round.
    """
    rounds_in = max(ctx.round, 1) - 1
    counter = ctx.buyer_counter

    if ctx.scenario == "WALK_AWAY":
        return _say(policy.start_price + rounds_in * policy.concession_step, policy.preferred_terms)

    if ctx.scenario == "SOFT":
        if counter is not None and counter.is_complete and counter.unit_price >= policy.min_price:
            return VendorReply(
                unit_price=counter.unit_price,
                payment_terms=counter.payment_terms,
                message=f"Deal. ${format_price(counter.unit_price)} per unit on {counter.payment_terms} works for us.",
            )
        price = max(policy.min_price, policy.start_price - 2 * rounds_in * policy.concession_step)
        terms = counter.payment_terms if counter is not None and counter.payment_terms else "Net 60"
        return _say(price, terms)

    price = max(policy.min_price, policy.start_price - rounds_in * policy.concession_step)
    return _say(price, policy.preferred_terms)


# ------------------ remote (Ollama /api/generate) ------------------
_SCENARIO_HINTS = {
    "HARD": "- Be firm and resist concessions. Start high and concede very slowly.",
    "SOFT": "- Be more flexible. Willing to negotiate and find middle ground.",
    "WALK_AWAY": "- Be very inflexible. If pressured too much, indicate you may need to walk away.",
}

FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.S)
BARE_JSON = re.compile(r"\{.*\}", re.S)


def _build_vendor_prompt(policy: VendorPolicy, ctx: VendorContext) -> str:
    opening = ctx.round == 1 and ctx.buyer_counter is None
    lines = [
        "You are a vendor sales rep negotiating.",
        "You must follow vendor policy (strict):",
        f"- Never offer unit_price below {format_price(policy.min_price)}",
        f"- Prefer payment terms {policy.preferred_terms}",
        f"- Avoid {policy.worst_terms} unless price is high",
        f"- Concede slowly (step {format_price(policy.concession_step)}) over rounds, not all at once",
    ]
    if opening:
        lines.append(f"- This is the first round. Start with price around {format_price(policy.start_price)}")
    lines.append(_SCENARIO_HINTS[ctx.scenario])
    lines += [
        "Return ONLY JSON in this exact schema:",
        '{"unit_price": number, "payment_terms": "Net 30"|"Net 60"|"Net 90", "message": string}',
        "",
        f"Round: {ctx.round}",
        f"Scenario: {ctx.scenario}",
        "This is the opening offer." if opening else f'Last buyer message: """{ctx.buyer_text}"""',
    ]
    if ctx.buyer_counter is not None:
        lines.append(f"Buyer requested: {json.dumps(ctx.buyer_counter.model_dump(mode='json', exclude={'meta'}))}")
    return "\n".join(lines)


def parse_vendor_json(raw: Optional[str]) -> Optional[VendorReply]:
    """Pull the first JSON object out of model output (fenced or bare) and validate it."""
    if not raw or not raw.strip():
        return None
    fenced = FENCED_JSON.search(raw)
    bare = BARE_JSON.search(raw)
    if fenced:
        blob = fenced.group(1)
    elif bare:
        blob = bare.group(0)
    else:
        return None
    try:
        return VendorReply.model_validate(json.loads(blob))
    except (ValueError, ValidationError) as e:
        logger.warning("[vendor_agent] unusable vendor JSON: %s", e)
        return None


def call_ollama_generate(policy: VendorPolicy, ctx: VendorContext, base_url: str = None, model: str = None,
                         timeout: float = None) -> Optional[str]:
    """POST to Ollama /api/generate. Returns the raw response text, or None on transport problems."""
    url = f"{(base_url or OLLAMA_BASE_URL).rstrip('/')}/api/generate"
    payload = {"model": model or OLLAMA_MODEL, "prompt": _build_vendor_prompt(policy, ctx), "stream": False}
    try:
        resp = _session.post(url, json=payload, timeout=timeout or LLM_REMOTE_TIMEOUT)
        resp.raise_for_status()
        data = resp.json()
    except requests.RequestException as e:
        logger.warning("[vendor_agent] ollama call failed url=%s: %s", url, e)
        return None
    except ValueError:
        logger.exception("[vendor_agent] failed to parse JSON from ollama response")
        return None
    out = data.get("response") if isinstance(data, dict) else None
    return out.strip() if isinstance(out, str) else None


class VendorAgent:
    """
    Plays the vendor in simulated negotiations.

    REMOTE output is parsed into a VendorReply; anything unusable falls back to
    rule_based_reply(). A generated price under the floor is raised to the floor,
    and a message that does not state the offer is rewritten to state it.
    """

    def __init__(
        self,
        policy: Optional[VendorPolicy] = None,
        mode: Optional[str] = None,
        generate_fn: Optional[Callable[[VendorPolicy, VendorContext], Optional[str]]] = None,
    ):
        self.policy = policy or DEFAULT_VENDOR_POLICY
        self.mode = (mode or VENDOR_MODE).upper()
        self.generate_fn = generate_fn

    def respond(self, ctx: VendorContext) -> VendorReply:
        fn = self.generate_fn
        if fn is None and self.mode == "REMOTE":
            fn = call_ollama_generate

        if fn is not None:
            raw = None
            try:
                raw = fn(self.policy, ctx)
            except Exception:
                logger.exception("[vendor_agent] vendor generation error deal=%s round=%s", ctx.deal_id, ctx.round)
            reply = parse_vendor_json(raw)
            if reply is not None:
                price = max(reply.unit_price, self.policy.min_price)
                # the engine reads the message, so it must state the offer being made
                if price != reply.unit_price or not _states_offer(reply.message, price, reply.payment_terms):
                    reply = _say(price, reply.payment_terms)
                return reply
            logger.warning("[vendor_agent] falling back to rule-based vendor deal=%s round=%s", ctx.deal_id, ctx.round)

        return rule_based_reply(self.policy, ctx)


def simulate_vendor_turn(engine: "NegotiationEngine", deal_id: str, scenario: Optional[Scenario] = None,
                         agent: Optional[VendorAgent] = None) -> TurnOutcome:
    """Generate the vendor's next message for an open deal and run it through the engine."""
    record = engine.store.get(deal_id)
    if record is None:
        raise DealNotFoundError(deal_id)
    if record.status != "NEGOTIATING":
        raise DealClosedError(deal_id, record.status, reason=f"Deal is {record.status}; vendor turns need a NEGOTIATING deal.")

    last_buyer = next((t for t in reversed(record.turns) if t.role == "BUYER"), None)
    ctx = VendorContext(
        deal_id=deal_id,
        round=record.round + 1,
        buyer_text=last_buyer.text if last_buyer is not None else OPENING_TEXT,
        buyer_counter=last_buyer.decision.counter_offer if last_buyer is not None and last_buyer.decision else None,
        scenario=scenario or VENDOR_SCENARIO,
    )
    reply = (agent or VendorAgent()).respond(ctx)
    out = engine.handle_message(deal_id, reply.message)
    out.meta["vendor_generated"] = reply.model_dump(mode="json")
    return out


def simulate_negotiation(engine: "NegotiationEngine", deal_id: str, scenario: Optional[Scenario] = None,
                         agent: Optional[VendorAgent] = None, max_turns: int = 12) -> List[TurnOutcome]:
    """Play vendor turns until the deal closes or max_turns is reached."""
    agent = agent or VendorAgent()
    outcomes: List[TurnOutcome] = []
    for _ in range(max_turns):
        out = simulate_vendor_turn(engine, deal_id, scenario=scenario, agent=agent)
        outcomes.append(out)
        if out.status in CLOSED_STATUSES:
            break
    logger.info("[vendor_agent] simulation deal=%s scenario=%s turns=%d status=%s",
                deal_id, scenario or VENDOR_SCENARIO, len(outcomes), outcomes[-1].status if outcomes else None)
    return outcomes
