"""Conversation intent resolver.

Sits on top of the decision policy and decides how a decision is said, and
in which order: clarify, ask a one-time price-or-terms preference question,
present a counter directly, or close. It never changes the business decision
itself; it only frames it and returns the next ConversationState.
"""
from __future__ import annotations
from typing import Optional

from .intent_classifier import classify_preference, classify_refusal, Preference
from .models import ConversationState, Decision, IntentResult, Offer
from .offer_parser import offer_id
from .policy_config import PolicyConfig
from .price_guard import next_better_terms, nudge_price

# preference question is only worth asking early in the negotiation
PREFERENCE_MAX_ROUND = 2


def should_increment_round(offer: Offer, last_offer: Optional[Offer]) -> bool:
    """A round is spent on a complete offer, or on an incomplete one that moved away from the last recorded offer."""
    if offer.is_complete:
        return True
    if not offer.has_signal or last_offer is None:
        return False
    return offer.unit_price != last_offer.unit_price or offer.payment_terms != last_offer.payment_terms


def counter_from_preference(config: PolicyConfig, offer: Offer, pref: Preference, round: int) -> Offer:
    if pref == "TERMS":
        # keep price, improve terms one step
        terms = next_better_terms(config, offer.payment_terms) if offer.payment_terms else config.best_terms
        return Offer(unit_price=offer.unit_price, payment_terms=terms)

    # PRICE: keep terms, nudge price toward our position
    price = nudge_price(config, offer.unit_price, round)
    return Offer(unit_price=price, payment_terms=offer.payment_terms or config.best_terms)


def _next_step_counter(config: PolicyConfig, last: Offer, round: int) -> Optional[Offer]:
    """One concrete proposal built from the last known vendor offer, or None if there is nothing to ask for."""
    if last.payment_terms is not None and last.payment_terms != config.best_terms:
        return Offer(unit_price=last.unit_price, payment_terms=config.best_terms)
    if last.unit_price is not None:
        price = nudge_price(config, last.unit_price, round)
        if price < last.unit_price:
            return Offer(unit_price=price, payment_terms=config.best_terms)
    return None


def resolve_intent(
    state: ConversationState,
    round: int,
    vendor_text: str,
    vendor_offer: Offer,
    decision: Decision,
    config: PolicyConfig,
) -> IntentResult:
    """Resolve the intent for a turn that carried an offer signal. Rules are checked in order."""
    # 1. terminal decisions close the conversation
    if decision.is_terminal:
        return IntentResult(
            intent=decision.action,
            counter_offer=None,
            next_state=state.model_copy(update={
                "phase": "TERMINAL",
                "last_vendor_offer": vendor_offer,
                "pending_counter_offer": None,
                "awaiting_preference": False,
                "last_intent": decision.action,
            }),
        )

    # 2. missing information: back to waiting for a usable offer
    if decision.action == "ASK_CLARIFY":
        return IntentResult(
            intent="ASK_CLARIFY",
            counter_offer=None,
            next_state=state.model_copy(update={
                "phase": "WAITING_FOR_OFFER",
                "last_vendor_offer": vendor_offer,
                "last_intent": "ASK_CLARIFY",
            }),
        )

    # 3. the vendor is answering our preference question
    if state.awaiting_preference and state.pending_counter_offer is not None:
        pref = classify_preference(vendor_text)
        if pref == "NEITHER":
            counter = state.pending_counter_offer
        else:
            counter = counter_from_preference(config, vendor_offer, pref, round)
        return IntentResult(
            intent="COUNTER_DIRECT",
            counter_offer=counter,
            next_state=state.model_copy(update={
                "phase": "NEGOTIATING",
                "awaiting_preference": False,
                "pending_counter_offer": None,
                "last_vendor_offer": vendor_offer,
                "last_intent": "COUNTER_DIRECT",
            }),
        )

    # 4. ask price-or-terms once per distinct offer, early on
    oid = offer_id(vendor_offer)
    should_ask = (
        decision.counter_offer is not None
        and state.preference_asked_for_offer_id != oid
        and round <= PREFERENCE_MAX_ROUND
        and vendor_offer.is_complete
    )
    if should_ask:
        return IntentResult(
            intent="ASK_PREFERENCE",
            counter_offer=None,
            next_state=state.model_copy(update={
                "phase": "WAITING_FOR_PREFERENCE",
                "awaiting_preference": True,
                "pending_counter_offer": decision.counter_offer,
                "preference_asked_for_offer_id": oid,
                "last_vendor_offer": vendor_offer,
                "last_intent": "ASK_PREFERENCE",
            }),
        )

    # 5. present the counter
    return IntentResult(
        intent="COUNTER_DIRECT",
        counter_offer=decision.counter_offer,
        next_state=state.model_copy(update={
            "phase": "NEGOTIATING",
            "awaiting_preference": False,
            "pending_counter_offer": None,
            "last_vendor_offer": vendor_offer,
            "last_intent": "COUNTER_DIRECT",
        }),
    )


def resolve_non_offer_turn(
    state: ConversationState,
    vendor_text: str,
    config: PolicyConfig,
    round: int,
) -> IntentResult:
    """
    Resolve a turn with no price or terms in it.

    These turns are conversational filler: the caller must not spend a round
    or change the deal status for them.
    """
    if state.phase == "WAITING_FOR_OFFER":
        return IntentResult(
            intent="SMALL_TALK",
            counter_offer=None,
            next_state=state.model_copy(update={"last_intent": "SMALL_TALK"}),
        )

    refusal = classify_refusal(vendor_text)
    update = {"refusal_count": state.refusal_count + 1}
    last = state.last_vendor_offer
    pending = state.pending_counter_offer
    counter = None

    if refusal == "LATER":
        intent = "ACKNOWLEDGE_LATER"
    elif refusal == "ALREADY_SHARED":
        intent = "NEGOTIATION_RESPONSE"
        if last is not None:
            counter = _next_step_counter(config, last, round)
    elif state.awaiting_preference and pending is not None:
        # an answer like "terms are easier" carries no numbers but still answers the question
        pref = classify_preference(vendor_text)
        if pref != "NEITHER" and last is not None:
            counter = counter_from_preference(config, last, pref, round)
        else:
            counter = pending
        intent = "COUNTER_DIRECT"
        update.update({"awaiting_preference": False, "pending_counter_offer": None, "phase": "NEGOTIATING"})
    elif pending is not None:
        intent = "COUNTER_DIRECT"
        counter = pending
        update.update({"pending_counter_offer": None, "phase": "NEGOTIATING"})
    elif last is not None:
        intent = "NEGOTIATION_RESPONSE"
        counter = _next_step_counter(config, last, round)
    else:
        intent = "ACKNOWLEDGE"

    update["last_intent"] = intent
    return IntentResult(intent=intent, counter_offer=counter, next_state=state.model_copy(update=update))
