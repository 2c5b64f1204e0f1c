from __future__ import annotations
import logging
from typing import Dict, Optional

from .errors import DealNotFoundError
from .models import ConversationState, DealRecord, Explainability, Turn

logger = logging.getLogger("state_store")


class InMemoryDealStore:
    """
    Default deal store. Any store with the same methods can be passed to the
    engine; records are plain pydantic models and dump to JSON as-is.
    """

    def __init__(self):
        self._db: Dict[str, DealRecord] = {}

    def create(self, deal_id: str, template_id: str) -> DealRecord:
        record = DealRecord(deal_id=deal_id, template_id=template_id)
        self._db[deal_id] = record
        return record

    def get(self, deal_id: str) -> DealRecord | None:
        return self._db.get(deal_id)

    def require(self, deal_id: str) -> DealRecord:
        record = self.get(deal_id)
        if record is None:
            raise DealNotFoundError(deal_id)
        return record

    def upsert(self, record: DealRecord) -> None:
        self._db[record.deal_id] = record

    def append_turn(self, deal_id: str, turn: Turn) -> DealRecord:
        record = self.require(deal_id)
        record.turns.append(turn)
        return record

    def reset(self, deal_id: str) -> DealRecord:
        """Back to round 0 with a fresh conversation state. The transcript is kept for audit."""
        record = self.require(deal_id)
        record.status = "NEGOTIATING"
        record.round = 0
        record.convo_state = ConversationState()
        record.latest_vendor_offer = None
        record.latest_decision_action = None
        record.latest_utility = None
        logger.info("[state_store] reset deal=%s", deal_id)
        return record

    def last_explainability(self, deal_id: str) -> Optional[Explainability]:
        record = self.require(deal_id)
        for turn in reversed(record.turns):
            if turn.role == "BUYER":
                return turn.explainability
        return None
