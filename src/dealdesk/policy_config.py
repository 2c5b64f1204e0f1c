from __future__ import annotations
from typing import Dict, List, Literal, Any, Mapping
from pydantic import BaseModel, ConfigDict

from .errors import PolicyConfigError
from .models import PaymentTerms

WEIGHT_TOLERANCE = 1e-6
MIN_ROUNDS = 1
MAX_ROUNDS = 50


class PolicyConfig(BaseModel):
    """Buyer negotiation policy.

    The model only types the fields; cross-field rules live in validate_config()
    so that an invalid policy can be represented, reported and rejected explicitly.
    term_options is ordered worst -> best for the buyer.
    """
    model_config = ConfigDict(frozen=True)

    price_weight: float
    terms_weight: float
    direction: Literal["lower_better"] = "lower_better"
    anchor: float
    target: float
    max_acceptable: float
    concession_step: float
    term_options: List[PaymentTerms]
    term_utility: Dict[str, float]
    accept_threshold: float
    walkaway_threshold: float
    max_rounds: int

    @property
    def best_terms(self) -> PaymentTerms:
        return self.term_options[-1]

    @classmethod
    def from_template(cls, template: Mapping[str, Any]) -> "PolicyConfig":
        """Build from the stored template shape (parameters.unit_price / parameters.payment_terms)."""
        try:
            params = template["parameters"]
            unit = params["unit_price"]
            terms = params["payment_terms"]
            return cls(
                price_weight=unit["weight"],
                terms_weight=terms["weight"],
                direction=unit.get("direction", "lower_better"),
                anchor=unit["anchor"],
                target=unit["target"],
                max_acceptable=unit["max_acceptable"],
                concession_step=unit["concession_step"],
                term_options=list(terms["options"]),
                term_utility=dict(terms["utility"]),
                accept_threshold=template["accept_threshold"],
                walkaway_threshold=template["walkaway_threshold"],
                max_rounds=template["max_rounds"],
            )
        except KeyError as e:
            raise PolicyConfigError(f"Template missing required field: {e}") from e

    def to_template(self) -> Dict[str, Any]:
        return {
            "parameters": {
                "unit_price": {
                    "weight": self.price_weight,
                    "direction": self.direction,
                    "anchor": self.anchor,
                    "target": self.target,
                    "max_acceptable": self.max_acceptable,
                    "concession_step": self.concession_step,
                },
                "payment_terms": {
                    "weight": self.terms_weight,
                    "options": list(self.term_options),
                    "utility": dict(self.term_utility),
                },
            },
            "accept_threshold": self.accept_threshold,
            "walkaway_threshold": self.walkaway_threshold,
            "max_rounds": self.max_rounds,
        }


def validate_config(cfg: PolicyConfig) -> None:
    w_sum = cfg.price_weight + cfg.terms_weight
    if abs(w_sum - 1) > WEIGHT_TOLERANCE:
        raise PolicyConfigError(f"Invalid config: weights must sum to 1.0 (got {w_sum})")

    if not (cfg.anchor < cfg.target <= cfg.max_acceptable):
        raise PolicyConfigError(
            "Invalid unit_price: require anchor < target <= max_acceptable "
            f"(got anchor={cfg.anchor}, target={cfg.target}, max={cfg.max_acceptable})"
        )
    if cfg.concession_step <= 0:
        raise PolicyConfigError(f"Invalid unit_price: concession_step must be > 0 (got {cfg.concession_step})")

    if not cfg.term_options:
        raise PolicyConfigError("Invalid payment_terms: at least one term option is required")
    for opt in cfg.term_options:
        if opt not in cfg.term_utility:
            raise PolicyConfigError(f"Invalid payment_terms: missing utility for {opt}")
        if not 0.0 <= cfg.term_utility[opt] <= 1.0:
            raise PolicyConfigError(f"Invalid payment_terms: utility for {opt} must be in [0, 1] (got {cfg.term_utility[opt]})")

    if cfg.accept_threshold <= cfg.walkaway_threshold:
        raise PolicyConfigError(
            f"Invalid thresholds: accept_threshold ({cfg.accept_threshold}) "
            f"must be > walkaway_threshold ({cfg.walkaway_threshold})"
        )

    if cfg.max_rounds < MIN_ROUNDS or cfg.max_rounds > MAX_ROUNDS:
        raise PolicyConfigError(f"Invalid max_rounds: must be between {MIN_ROUNDS} and {MAX_ROUNDS} (got {cfg.max_rounds})")


def load_policy(template: Mapping[str, Any]) -> PolicyConfig:
    cfg = PolicyConfig.from_template(template)
    validate_config(cfg)
    return cfg


DEFAULT_TEMPLATE: Dict[str, Any] = {
    "parameters": {
        "unit_price": {
            "weight": 0.6,
            "direction": "lower_better",
            "anchor": 75,
            "target": 85,
            "max_acceptable": 100,
            "concession_step": 2,
        },
        "payment_terms": {
            "weight": 0.4,
            "options": ["Net 30", "Net 60", "Net 90"],
            "utility": {"Net 30": 0.2, "Net 60": 0.6, "Net 90": 1.0},
        },
    },
    "accept_threshold": 0.70,
    "walkaway_threshold": 0.45,
    "max_rounds": 6,
}

DEFAULT_POLICY = load_policy(DEFAULT_TEMPLATE)
