from typing import Optional

from .policy_config import PolicyConfig


def buyer_position(config: PolicyConfig, round: int) -> float:
    """Buyer's price position for a round: anchor in round 1, one concession step per later round, capped at target."""
    return min(config.target, config.anchor + (round - 1) * config.concession_step)


def enforce_counter_bounds(config: PolicyConfig, price: float, vendor_price: Optional[float]) -> float:
    """Never counter above the vendor's own price, never above max_acceptable."""
    bounded = min(price, config.max_acceptable)
    if vendor_price is not None:
        bounded = min(bounded, vendor_price)
    return bounded


def nudge_price(config: PolicyConfig, vendor_price: Optional[float], round: int) -> float:
    return enforce_counter_bounds(config, buyer_position(config, round), vendor_price)


def next_better_terms(config: PolicyConfig, terms: Optional[str]) -> str:
    opts = config.term_options
    idx = opts.index(terms) if terms in opts else -1
    return opts[min(idx + 1, len(opts) - 1)]

