from __future__ import annotations

from .models import (
    ConfigSnapshot,
    Decision,
    DecisionSnapshot,
    Explainability,
    Offer,
    UnitPriceSnapshot,
    Utilities,
)
from .policy_config import PolicyConfig
from .utility import price_utility, terms_utility
from .utils import clamp01


def compute_explainability(config: PolicyConfig, vendor_offer: Offer, decision: Decision) -> Explainability:
    """
    Recompute the "why" of a decision from its inputs.

    Utilities are derived from config + offer again rather than read off the
    decision, so a stored decision can be checked against its explanation.
    Pure and idempotent.
    """
    w_p = config.price_weight
    w_t = config.terms_weight

    pu = price_utility(config, vendor_offer.unit_price)
    tu = terms_utility(config, vendor_offer.payment_terms)

    weighted_price = None if pu is None else clamp01(pu * w_p)
    weighted_terms = None if tu is None else clamp01(tu * w_t)
    total = None if weighted_price is None or weighted_terms is None else clamp01(weighted_price + weighted_terms)

    return Explainability(
        vendor_offer=Offer(unit_price=vendor_offer.unit_price, payment_terms=vendor_offer.payment_terms),
        utilities=Utilities(
            price_utility=pu,
            terms_utility=tu,
            weighted_price=weighted_price,
            weighted_terms=weighted_terms,
            total=total,
        ),
        decision=DecisionSnapshot(
            action=decision.action,
            reasons=list(decision.reasons),
            counter_offer=decision.counter_offer,
        ),
        config_snapshot=ConfigSnapshot(
            weights={"price": w_p, "terms": w_t},
            thresholds={"accept": config.accept_threshold, "walkaway": config.walkaway_threshold},
            unit_price=UnitPriceSnapshot(
                anchor=config.anchor,
                target=config.target,
                max=config.max_acceptable,
                step=config.concession_step,
            ),
            term_options=list(config.term_options),
        ),
    )
