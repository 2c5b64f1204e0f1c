"""Decision policy: (policy, vendor offer, round) -> Decision.

Rules are evaluated in a fixed order and the first one that matches wins:

  1. round beyond max_rounds        -> ESCALATE
  2. price or terms missing         -> ASK_CLARIFY
  3. price above max_acceptable     -> WALK_AWAY
  4. utility >= accept threshold    -> ACCEPT
  5. utility <  walk-away threshold -> COUNTER with a strong package
  6. anything else                  -> COUNTER trading terms or price

Low utility never ends a negotiation on its own; it only stiffens the counter.
Comparisons are plain float comparisons: ACCEPT is inclusive of the threshold,
WALK_AWAY is strict (a price equal to max_acceptable is still countered).
"""
from __future__ import annotations

from .models import Decision, Offer
from .policy_config import PolicyConfig
from .price_guard import buyer_position, enforce_counter_bounds, next_better_terms
from .utility import price_utility, terms_utility, total_utility
from .utils import format_price


def _missing_fields(offer: Offer) -> list:
    missing = []
    if offer.unit_price is None:
        missing.append("unit_price")
    if offer.payment_terms is None:
        missing.append("payment_terms")
    return missing


def _clarify_reason(offer: Offer) -> str:
    reason = f"Missing {' and '.join(_missing_fields(offer))} in vendor offer."
    if offer.meta is not None and offer.meta.non_standard_terms:
        reason += f" Non-standard terms ({offer.meta.raw_terms_days} days) need confirmation as Net 30/60/90."
    return reason


def _strong_package(config: PolicyConfig, offer: Offer, round: int) -> Offer:
    price = min(offer.unit_price, buyer_position(config, round))
    return Offer(unit_price=price, payment_terms=config.best_terms)


def _trade_off(config: PolicyConfig, offer: Offer, round: int) -> tuple:
    if offer.payment_terms != config.best_terms:
        # keep the vendor's price; ask for the cheapest terms that reach the accept threshold
        price_contribution = config.price_weight * price_utility(config, offer.unit_price)
        required = (config.accept_threshold - price_contribution) / config.terms_weight
        chosen = None
        for opt in config.term_options:
            if terms_utility(config, opt) >= required:
                chosen = opt
                break
        if chosen is None:
            chosen = next_better_terms(config, offer.payment_terms)
            reason = f"Trade-off: no terms reach target utility at {format_price(offer.unit_price)}; request {chosen}, one step better."
        else:
            reason = f"Trade-off: keep price, request {chosen} to reach target utility."
        return Offer(unit_price=offer.unit_price, payment_terms=chosen), reason

    price = enforce_counter_bounds(config, buyer_position(config, round), offer.unit_price)
    counter = Offer(unit_price=price, payment_terms=config.best_terms)
    return counter, "Best terms already; move price slowly toward target (never above vendor offer)."


def decide_next_move(config: PolicyConfig, vendor_offer: Offer, round: int) -> Decision:
    if round > config.max_rounds:
        return Decision(
            action="ESCALATE",
            utility_score=0.0,
            counter_offer=None,
            reasons=[f"Max rounds ({config.max_rounds}) exceeded"],
        )

    if not vendor_offer.is_complete:
        return Decision(
            action="ASK_CLARIFY",
            utility_score=0.0,
            counter_offer=None,
            reasons=[_clarify_reason(vendor_offer)],
        )

    if vendor_offer.unit_price > config.max_acceptable:
        return Decision(
            action="WALK_AWAY",
            utility_score=0.0,
            counter_offer=None,
            reasons=[f"Price {format_price(vendor_offer.unit_price)} > max acceptable {format_price(config.max_acceptable)}"],
        )

    u = total_utility(config, vendor_offer)

    if u >= config.accept_threshold:
        return Decision(
            action="ACCEPT",
            utility_score=u,
            counter_offer=None,
            reasons=[f"Utility {u:.3f} >= accept threshold {config.accept_threshold}"],
        )

    if u < config.walkaway_threshold:
        return Decision(
            action="COUNTER",
            utility_score=u,
            counter_offer=_strong_package(config, vendor_offer, round),
            reasons=[
                f"Low utility {u:.3f} < walk-away threshold {config.walkaway_threshold}; "
                "proposing a stronger package instead of closing."
            ],
        )

    counter, reason = _trade_off(config, vendor_offer, round)
    return Decision(action="COUNTER", utility_score=u, counter_offer=counter, reasons=[reason])
