from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Literal, Dict, Any
from datetime import datetime, timezone


PaymentTerms = Literal["Net 30", "Net 60", "Net 90"]

ActionType = Literal[
    "ACCEPT",
    "COUNTER",
    "ASK_CLARIFY",
    "ESCALATE",
    "WALK_AWAY",
]

TERMINAL_ACTIONS = ("ACCEPT", "ESCALATE", "WALK_AWAY")

# conversational framing of a decision; distinct from ActionType
IntentType = Literal[
    "GREET",
    "ASK_FOR_OFFER",
    "ASK_CLARIFY",
    "ASK_PREFERENCE",
    "COUNTER_DIRECT",
    "ACCEPT",
    "ESCALATE",
    "WALK_AWAY",
    "SMALL_TALK",
    "ACKNOWLEDGE_LATER",
    "NEGOTIATION_RESPONSE",
    "ACKNOWLEDGE",
]

Phase = Literal["WAITING_FOR_OFFER", "WAITING_FOR_PREFERENCE", "NEGOTIATING", "TERMINAL"]

DealStatus = Literal["CREATED", "NEGOTIATING", "ACCEPTED", "WALKED_AWAY", "ESCALATED"]

CLOSED_STATUSES = ("ACCEPTED", "WALKED_AWAY", "ESCALATED")


class OfferMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    raw_terms_days: int
    non_standard_terms: bool = False


class Offer(BaseModel):
    """A vendor (or buyer counter) offer. None means "not stated yet" for either field."""
    model_config = ConfigDict(frozen=True)

    unit_price: Optional[float] = None
    payment_terms: Optional[PaymentTerms] = None
    meta: Optional[OfferMeta] = None

    @property
    def is_complete(self) -> bool:
        return self.unit_price is not None and self.payment_terms is not None

    @property
    def has_signal(self) -> bool:
        return self.unit_price is not None or self.payment_terms is not None


class Decision(BaseModel):
    model_config = ConfigDict(frozen=True)

    action: ActionType
    utility_score: float = 0.0
    counter_offer: Optional[Offer] = None
    reasons: List[str] = Field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.action in TERMINAL_ACTIONS


class ConversationState(BaseModel):
    phase: Phase = "WAITING_FOR_OFFER"
    awaiting_preference: bool = False
    last_vendor_offer: Optional[Offer] = None
    pending_counter_offer: Optional[Offer] = None
    last_intent: Optional[str] = None
    preference_asked_for_offer_id: Optional[str] = None
    refusal_count: int = 0


class IntentResult(BaseModel):
    """Adapter between a Decision and the conversation: what to say, and the state after saying it."""
    intent: IntentType
    counter_offer: Optional[Offer] = None
    next_state: ConversationState


class Utilities(BaseModel):
    price_utility: Optional[float] = None
    terms_utility: Optional[float] = None
    weighted_price: Optional[float] = None
    weighted_terms: Optional[float] = None
    total: Optional[float] = None


class DecisionSnapshot(BaseModel):
    action: ActionType
    reasons: List[str] = Field(default_factory=list)
    counter_offer: Optional[Offer] = None


class UnitPriceSnapshot(BaseModel):
    anchor: float
    target: float
    max: float
    step: float


class ConfigSnapshot(BaseModel):
    weights: Dict[str, float]
    thresholds: Dict[str, float]
    unit_price: UnitPriceSnapshot
    term_options: List[PaymentTerms]


class Explainability(BaseModel):
    vendor_offer: Offer
    utilities: Utilities
    decision: DecisionSnapshot
    config_snapshot: ConfigSnapshot


class ReplyContext(BaseModel):
    """Everything the reply writer may use. Numbers in a reply must come from these offers."""
    deal_id: str = ""
    round: int = 0
    vendor_text: str = ""
    intent: IntentType
    vendor_offer: Optional[Offer] = None
    decision: Optional[Decision] = None
    counter_offer: Optional[Offer] = None


class Turn(BaseModel):
    role: Literal["VENDOR", "BUYER"]
    text: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    extracted_offer: Optional[Offer] = None
    decision: Optional[Decision] = None
    intent: Optional[IntentType] = None
    explainability: Optional[Explainability] = None


class DealRecord(BaseModel):
    deal_id: str
    template_id: str
    status: DealStatus = "CREATED"
    round: int = 0
    convo_state: ConversationState = Field(default_factory=ConversationState)
    latest_vendor_offer: Optional[Offer] = None
    latest_decision_action: Optional[ActionType] = None
    latest_utility: Optional[float] = None
    turns: List[Turn] = Field(default_factory=list)


class TurnOutcome(BaseModel):
    deal_id: str
    reply: str
    intent: IntentType
    status: DealStatus
    round: int
    offer: Optional[Offer] = None
    decision: Optional[Decision] = None
    round_overflow: bool = False
    explainability: Optional[Explainability] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
