"""Buyer-side utility of an offer.

Every function propagates None: a price or term that has not been stated has no
utility, it is never scored as 0. Callers that need a number must check for a
complete offer first.
"""
from __future__ import annotations
from typing import Optional

from .models import Offer
from .policy_config import PolicyConfig


def price_utility(config: PolicyConfig, price: Optional[float]) -> Optional[float]:
    if price is None:
        return None
    if price <= config.anchor:
        return 1.0
    if price >= config.max_acceptable:
        return 0.0
    return 1.0 - (price - config.anchor) / (config.max_acceptable - config.anchor)


def terms_utility(config: PolicyConfig, terms: Optional[str]) -> Optional[float]:
    if terms is None:
        return None
    return config.term_utility.get(terms, 0.0)


def total_utility(config: PolicyConfig, offer: Offer) -> Optional[float]:
    pu = price_utility(config, offer.unit_price)
    tu = terms_utility(config, offer.payment_terms)
    if pu is None or tu is None:
        return None
    return config.price_weight * pu + config.terms_weight * tu
