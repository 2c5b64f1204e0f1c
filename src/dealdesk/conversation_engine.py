from __future__ import annotations
import os
import uuid
import hashlib
import logging
from typing import Optional

from .conversation_manager import resolve_intent, resolve_non_offer_turn, should_increment_round
from .decision_model import decide_next_move
from .errors import DealClosedError
from .explainability import compute_explainability
from .llm_phraser import LLMPhraser
from .models import (
    CLOSED_STATUSES,
    ConversationState,
    DealRecord,
    Decision,
    Explainability,
    IntentType,
    Offer,
    ReplyContext,
    Turn,
    TurnOutcome,
)
from .offer_parser import merge_offers, parse_offer
from .policy_provider import DEFAULT_TEMPLATE_ID, PolicyProvider
from .state_store import InMemoryDealStore
from .utils import normalize_text

logger = logging.getLogger("negotiation")
if not logger.handlers:
    logging.basicConfig(level=logging.INFO)

POLICY_VERSION = os.getenv("POLICY_VERSION", "1.0.0")

_STATUS_BY_ACTION = {
    "ACCEPT": "ACCEPTED",
    "WALK_AWAY": "WALKED_AWAY",
    "ESCALATE": "ESCALATED",
}


def _hash_id(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()[:8]


class NegotiationEngine:
    """
    One vendor message in, one buyer reply out.

    Wires the pure pieces together (parse, merge, decide, frame, explain) and
    owns the only side effects: reading and writing the deal record and asking
    the phraser for text.
    """

    def __init__(
        self,
        store: Optional[InMemoryDealStore] = None,
        policies: Optional[PolicyProvider] = None,
        phraser: Optional[LLMPhraser] = None,
    ):
        self.store = store if store is not None else InMemoryDealStore()
        self.policies = policies if policies is not None else PolicyProvider.from_env()
        self.phraser = phraser if phraser is not None else LLMPhraser()

    # ------------------ deal lifecycle ------------------
    def create_deal(self, deal_id: Optional[str] = None, template_id: str = DEFAULT_TEMPLATE_ID) -> DealRecord:
        # unknown or invalid templates fail here, before any turn is taken
        self.policies.get(template_id)
        deal_id = deal_id or uuid.uuid4().hex
        record = self.store.create(deal_id, template_id)
        logger.info("[negotiation] created deal=%s template=%s", deal_id, template_id)
        return record

    def start(self, deal_id: str) -> TurnOutcome:
        """Greet and ask for an offer. Calling it again returns the opening message without sending a second greeting."""
        record = self.store.require(deal_id)
        self._ensure_open(record)

        if record.turns:
            opening = next((t for t in record.turns if t.role == "BUYER"), None)
            logger.info("[negotiation] start called on deal=%s with %d turns; not greeting again", deal_id, len(record.turns))
            return TurnOutcome(
                deal_id=deal_id,
                reply=opening.text if opening else "",
                intent="ASK_FOR_OFFER",
                status=record.status,
                round=record.round,
                meta={"already_started": True},
            )

        greet = self.phraser.generate(ReplyContext(deal_id=deal_id, round=0, intent="GREET"))
        ask = self.phraser.generate(ReplyContext(deal_id=deal_id, round=0, intent="ASK_FOR_OFFER"))
        reply = f"{greet} {ask}"

        record.status = "NEGOTIATING"
        record.convo_state = ConversationState(phase="WAITING_FOR_OFFER", last_intent="ASK_FOR_OFFER")
        record = self.store.append_turn(deal_id, Turn(role="BUYER", text=reply, intent="ASK_FOR_OFFER"))
        self.store.upsert(record)
        return TurnOutcome(deal_id=deal_id, reply=reply, intent="ASK_FOR_OFFER", status=record.status, round=record.round)

    def reset(self, deal_id: str) -> DealRecord:
        record = self.store.reset(deal_id)
        self.store.upsert(record)
        return record

    def explain_last(self, deal_id: str) -> Optional[Explainability]:
        return self.store.last_explainability(deal_id)

    # ------------------ turns ------------------
    def handle_message(self, deal_id: str, text: str) -> TurnOutcome:
        record = self.store.require(deal_id)
        self._ensure_open(record)
        config = self.policies.get(record.template_id)
        state = record.convo_state

        text = normalize_text(text)
        raw = parse_offer(text)
        record = self.store.append_turn(
            deal_id, Turn(role="VENDOR", text=text, extracted_offer=raw if raw.has_signal else None)
        )

        # non-standard terms alone ("45 days") still count as an offer signal: they need clarifying
        if not raw.has_signal and raw.meta is None:
            return self._handle_non_offer(record, text)

        offer = merge_offers(raw, state.last_vendor_offer)

        round = record.round
        if should_increment_round(raw, state.last_vendor_offer):
            round += 1

        decision = decide_next_move(config, offer, round)
        round_overflow = round > config.max_rounds
        if round_overflow:
            # the round counter never moves past max_rounds
            round = record.round

        resolved = resolve_intent(state, round, text, offer, decision, config)
        explain = compute_explainability(config, offer, decision)
        reply = self._reply(deal_id, round, text, resolved.intent, offer, decision, resolved.counter_offer)

        record.round = round
        record.status = _STATUS_BY_ACTION.get(decision.action, "NEGOTIATING")
        record.convo_state = resolved.next_state
        record.latest_vendor_offer = offer
        record.latest_decision_action = decision.action
        record.latest_utility = decision.utility_score
        record = self.store.append_turn(
            deal_id,
            Turn(role="BUYER", text=reply, decision=decision, intent=resolved.intent, explainability=explain),
        )
        self.store.upsert(record)

        logger.info("negotiation_log: %s", {
            "deal_id_hash": _hash_id(deal_id),
            "policy_version": POLICY_VERSION,
            "template_id": record.template_id,
            "round": round,
            "round_overflow": round_overflow,
            "action": decision.action,
            "intent": resolved.intent,
            "utility": _rounded(decision.utility_score),
            "status": record.status,
        })

        return TurnOutcome(
            deal_id=deal_id,
            reply=reply,
            intent=resolved.intent,
            status=record.status,
            round=round,
            offer=offer,
            decision=decision,
            round_overflow=round_overflow,
            explainability=explain,
        )

    def _handle_non_offer(self, record: DealRecord, text: str) -> TurnOutcome:
        """Small talk, refusals and "later" replies. Round and status stay as they are."""
        state = record.convo_state
        config = self.policies.get(record.template_id)
        resolved = resolve_non_offer_turn(state, text, config, record.round)
        reply = self._reply(
            record.deal_id, record.round, text, resolved.intent, state.last_vendor_offer, None, resolved.counter_offer
        )

        record.convo_state = resolved.next_state
        record = self.store.append_turn(record.deal_id, Turn(role="BUYER", text=reply, intent=resolved.intent))
        self.store.upsert(record)

        logger.info("negotiation_log: %s", {
            "deal_id_hash": _hash_id(record.deal_id),
            "policy_version": POLICY_VERSION,
            "template_id": record.template_id,
            "round": record.round,
            "action": None,
            "intent": resolved.intent,
            "status": record.status,
        })

        return TurnOutcome(
            deal_id=record.deal_id,
            reply=reply,
            intent=resolved.intent,
            status=record.status,
            round=record.round,
            meta={"refusal_count": resolved.next_state.refusal_count},
        )

    def _reply(
        self,
        deal_id: str,
        round: int,
        vendor_text: str,
        intent: IntentType,
        vendor_offer: Optional[Offer],
        decision: Optional[Decision],
        counter_offer: Optional[Offer],
    ) -> str:
        ctx = ReplyContext(
            deal_id=deal_id,
            round=round,
            vendor_text=vendor_text,
            intent=intent,
            vendor_offer=vendor_offer,
            decision=decision,
            counter_offer=counter_offer,
        )
        return self.phraser.generate(ctx)

    @staticmethod
    def _ensure_open(record: DealRecord) -> None:
        if record.status in CLOSED_STATUSES:
            logger.info("[negotiation] rejected turn for closed deal=%s status=%s", record.deal_id, record.status)
            raise DealClosedError(record.deal_id, record.status)


def _rounded(value: Optional[float], ndigits: int = 4) -> Optional[float]:
    return None if value is None else round(value, ndigits)
