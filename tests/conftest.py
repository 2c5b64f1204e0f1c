import copy

import pytest

from dealdesk.conversation_engine import NegotiationEngine
from dealdesk.llm_phraser import LLMPhraser
from dealdesk.policy_config import DEFAULT_POLICY, DEFAULT_TEMPLATE
from dealdesk.policy_provider import PolicyProvider, TTLCache
from dealdesk.state_store import InMemoryDealStore


@pytest.fixture
def policy():
    return DEFAULT_POLICY


@pytest.fixture
def template():
    """A private copy of the default template that tests may mutate."""
    return copy.deepcopy(DEFAULT_TEMPLATE)


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider(template):
    short = copy.deepcopy(template)
    short["max_rounds"] = 2
    return PolicyProvider(templates={"short": short}, cache=TTLCache(ttl_seconds=10))


@pytest.fixture
def engine(provider):
    return NegotiationEngine(store=InMemoryDealStore(), policies=provider, phraser=LLMPhraser(mode="TEMPLATE"))


@pytest.fixture
def started(engine):
    engine.create_deal("deal-1")
    engine.start("deal-1")
    return engine
