import pytest
import requests

from dealdesk import vendor_agent
from dealdesk.errors import DealClosedError, DealNotFoundError
from dealdesk.models import Offer
from dealdesk.utils import format_price
from dealdesk.vendor_agent import (
    VendorAgent,
    VendorContext,
    VendorPolicy,
    call_ollama_generate,
    parse_vendor_json,
    rule_based_reply,
    simulate_negotiation,
    simulate_vendor_turn,
)


def vctx(round=1, counter=None, scenario="HARD", text=vendor_agent.OPENING_TEXT):
    return VendorContext(deal_id="deal-1", round=round, buyer_text=text, buyer_counter=counter, scenario=scenario)


@pytest.mark.parametrize("scenario,status,turns,last_action", [
    ("HARD", "ESCALATED", 7, "ESCALATE"),
    ("SOFT", "ACCEPTED", 4, "ACCEPT"),
    ("WALK_AWAY", "WALKED_AWAY", 3, "WALK_AWAY"),
])
def test_scripted_negotiation_reaches_a_close(started, scenario, status, turns, last_action):
    outcomes = simulate_negotiation(started, "deal-1", scenario=scenario, agent=VendorAgent(mode="TEMPLATE"))

    assert len(outcomes) == turns
    assert outcomes[-1].status == status
    assert outcomes[-1].decision.action == last_action
    assert all(o.status == "NEGOTIATING" for o in outcomes[:-1])
    assert started.store.require("deal-1").status == status
    # every vendor message was read back as the offer it was generated from
    for o in outcomes:
        generated = o.meta["vendor_generated"]
        assert o.offer == Offer(unit_price=generated["unit_price"], payment_terms=generated["payment_terms"])


def test_soft_vendor_closes_at_agreed_price(started):
    outcomes = simulate_negotiation(started, "deal-1", scenario="SOFT", agent=VendorAgent(mode="TEMPLATE"))
    assert outcomes[-1].offer == Offer(unit_price=86, payment_terms="Net 90")
    assert "$86" in outcomes[-1].reply


def test_simulation_needs_an_open_deal(engine):
    with pytest.raises(DealNotFoundError):
        simulate_vendor_turn(engine, "missing")

    engine.create_deal("fresh")
    with pytest.raises(DealClosedError) as exc:
        simulate_vendor_turn(engine, "fresh")
    assert exc.value.status == "CREATED"

    engine.start("fresh")
    simulate_negotiation(engine, "fresh", scenario="WALK_AWAY", agent=VendorAgent(mode="TEMPLATE"))
    with pytest.raises(DealClosedError):
        simulate_vendor_turn(engine, "fresh")


def test_vendor_sees_last_buyer_counter(started):
    seen = []

    def spy(policy, ctx):
        seen.append(ctx)
        return None

    agent = VendorAgent(generate_fn=spy)
    simulate_vendor_turn(started, "deal-1", scenario="HARD", agent=agent)
    simulate_vendor_turn(started, "deal-1", scenario="HARD", agent=agent)

    assert seen[0].round == 1
    assert seen[0].buyer_counter is None
    assert seen[1].round == 2
    assert seen[1].buyer_counter == Offer(unit_price=75, payment_terms="Net 90")


@pytest.mark.parametrize("scenario", ["HARD", "SOFT", "WALK_AWAY"])
def test_rule_based_never_below_floor(scenario):
    policy = VendorPolicy()
    low_counter = Offer(unit_price=60, payment_terms="Net 90")
    for round in range(1, 20):
        reply = rule_based_reply(policy, vctx(round, counter=low_counter, scenario=scenario))
        assert reply.unit_price >= policy.min_price
        assert f"${format_price(reply.unit_price)}" in reply.message


def test_hard_vendor_concedes_one_step_per_round():
    policy = VendorPolicy()
    prices = [rule_based_reply(policy, vctx(r)).unit_price for r in range(1, 5)]
    assert prices == [98, 96, 94, 92]
    assert rule_based_reply(policy, vctx(3)).payment_terms == "Net 30"


def test_soft_vendor_agrees_to_counter_above_floor():
    reply = rule_based_reply(VendorPolicy(), vctx(3, counter=Offer(unit_price=84, payment_terms="Net 60"), scenario="SOFT"))
    assert reply.offer == Offer(unit_price=84, payment_terms="Net 60")


@pytest.mark.parametrize("raw,expected", [
    ('{"unit_price": 95, "payment_terms": "Net 30", "message": "We can do $95, Net 30."}', (95, "Net 30")),
    ('Sure!\n```json\n{"unit_price": 93.5, "payment_terms": "Net 60", "message": "ok"}\n```', (93.5, "Net 60")),
    ('Here you go: {"unit_price": 91, "payment_terms": "Net 90", "message": "fine"} thanks', (91, "Net 90")),
])
def test_parse_vendor_json(raw, expected):
    reply = parse_vendor_json(raw)
    assert (reply.unit_price, reply.payment_terms) == expected


@pytest.mark.parametrize("raw", [
    None,
    "",
    "We can do 95 on Net 30",
    '{"unit_price": 95, "payment_terms": "Net 45", "message": "x"}',
    '{"unit_price": "cheap", "payment_terms": "Net 30", "message": "x"}',
    '{"unit_price": 95, "payment_terms": "Net 30"',
])
def test_parse_vendor_json_rejects(raw):
    assert parse_vendor_json(raw) is None


def test_remote_price_is_raised_to_floor():
    agent = VendorAgent(generate_fn=lambda p, c: '{"unit_price": 70, "payment_terms": "Net 30", "message": "$70 Net 30"}')
    reply = agent.respond(vctx(2))
    assert reply.unit_price == agent.policy.min_price
    assert reply.payment_terms == "Net 30"
    assert "$82" in reply.message and "$70" not in reply.message


def test_remote_failure_falls_back_to_rules():
    def boom(policy, ctx):
        raise RuntimeError("model down")

    ctx = vctx(2, scenario="SOFT")
    assert VendorAgent(generate_fn=boom).respond(ctx) == rule_based_reply(VendorPolicy(), ctx)


def test_template_mode_never_calls_remote(monkeypatch):
    def fail(policy, ctx):
        raise AssertionError("remote called")

    monkeypatch.setattr(vendor_agent, "call_ollama_generate", fail)
    ctx = vctx(1)
    assert VendorAgent(mode="TEMPLATE").respond(ctx) == rule_based_reply(VendorPolicy(), ctx)


class FakeResponse:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


def test_call_ollama_generate_payload(monkeypatch):
    captured = {}

    def fake_post(url, json=None, timeout=None):
        captured.update(url=url, json=json, timeout=timeout)
        return FakeResponse({"response": ' {"unit_price": 97, "payment_terms": "Net 30", "message": "97 it is"} '})

    monkeypatch.setattr(vendor_agent._session, "post", fake_post)
    ctx = vctx(2, counter=Offer(unit_price=75, payment_terms="Net 90"), scenario="WALK_AWAY", text="Could we do $75 on Net 90?")
    raw = call_ollama_generate(VendorPolicy(), ctx, base_url="http://ollama:11434/", model="llama3.1", timeout=3)

    assert raw.startswith("{")
    assert captured["url"] == "http://ollama:11434/api/generate"
    assert captured["timeout"] == 3
    body = captured["json"]
    assert body["model"] == "llama3.1"
    assert body["stream"] is False
    assert "Never offer unit_price below 82" in body["prompt"]
    assert "walk away" in body["prompt"]
    assert "Could we do $75 on Net 90?" in body["prompt"]
    assert '"unit_price": 75' in body["prompt"]


def test_remote_mode_end_to_end(monkeypatch):
    monkeypatch.setattr(
        vendor_agent._session, "post",
        lambda url, json=None, timeout=None: FakeResponse(
            {"response": '```json\n{"unit_price": 99, "payment_terms": "Net 60", "message": "We can do $99 on Net 60."}\n```'}
        ),
    )
    reply = VendorAgent(mode="REMOTE").respond(vctx(1))
    assert reply.offer == Offer(unit_price=99, payment_terms="Net 60")
    assert reply.message == "We can do $99 on Net 60."


@pytest.mark.parametrize("behaviour", [
    requests.ConnectionError("refused"),
    FakeResponse({}, status=503),
    FakeResponse(ValueError("not json")),
    FakeResponse({"unexpected": True}),
])
def test_call_ollama_generate_failures_return_none(monkeypatch, behaviour):
    def fake_post(url, json=None, timeout=None):
        if isinstance(behaviour, Exception):
            raise behaviour
        return behaviour

    monkeypatch.setattr(vendor_agent._session, "post", fake_post)
    assert call_ollama_generate(VendorPolicy(), vctx(1)) is None


def test_remote_message_is_restated_when_it_disagrees():
    raw = '{"unit_price": 95, "payment_terms": "Net 60", "message": "Happy to work with you on this."}'
    reply = VendorAgent(generate_fn=lambda p, c: raw).respond(vctx(2))
    assert reply.offer == Offer(unit_price=95, payment_terms="Net 60")
    assert reply.message == "We can do $95 per unit, Net 60."
