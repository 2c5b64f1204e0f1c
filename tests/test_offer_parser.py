import pytest

from dealdesk.models import Offer, OfferMeta
from dealdesk.offer_parser import merge_offers, offer_id, parse_offer, parse_price, parse_terms


@pytest.mark.parametrize("text,price,terms", [
    ("We can do $90 per unit, Net 60", 90.0, "Net 60"),
    ("Price 1,200 with net 30", 1200.0, "Net 30"),
    ("85/unit net 60", 85.0, "Net 60"),
    ("90 usd, net 30", 90.0, "Net 30"),
    ("price is 88.50, terms net 60", 88.5, "Net 60"),
    ("Net 90 works for us", None, "Net 90"),
    ("$82", 82.0, None),
])
def test_parse_offer(text, price, terms):
    offer = parse_offer(text)
    assert offer.unit_price == price
    assert offer.payment_terms == terms


def test_no_signal_in_small_talk():
    offer = parse_offer("hello, how are you doing today?")
    assert not offer.has_signal
    assert offer.meta is None


def test_empty_text():
    assert parse_offer("") == Offer()


def test_non_standard_terms_are_flagged_not_mapped():
    offer = parse_offer("Rs. 85 and payment in 45 days")
    assert offer.unit_price == 85.0
    assert offer.payment_terms is None
    assert offer.meta == OfferMeta(raw_terms_days=45, non_standard_terms=True)


def test_standard_terms_carry_meta():
    meta = parse_terms("net 60 days")
    assert meta.raw_terms_days == 60
    assert not meta.non_standard_terms


def test_bare_days_outside_range_ignored():
    assert parse_terms("delivery in 7 days") is None


def test_term_number_not_read_as_price():
    # 30 next to "net" is a term, not a price
    assert parse_price("30/unit, net 60") is None
    assert parse_price("rate 88, net 30") == 88.0


def test_bare_number_needs_price_cue():
    assert parse_price("we shipped 500 last month") is None


def test_parse_is_deterministic():
    text = "We can do $90 per unit, Net 60"
    assert parse_offer(text) == parse_offer(text)


def test_merge_backfills_missing_fields():
    last = Offer(unit_price=90.0, payment_terms="Net 60")
    merged = merge_offers(Offer(unit_price=85.0), last)
    assert merged.unit_price == 85.0
    assert merged.payment_terms == "Net 60"

    merged = merge_offers(Offer(payment_terms="Net 90"), last)
    assert merged.unit_price == 90.0
    assert merged.payment_terms == "Net 90"


def test_merge_does_not_backfill_over_non_standard_terms():
    last = Offer(unit_price=90.0, payment_terms="Net 60")
    raw = parse_offer("45 days")
    merged = merge_offers(raw, last)
    assert merged.unit_price == 90.0
    assert merged.payment_terms is None
    assert merged.meta.non_standard_terms


def test_merge_without_history_is_identity():
    raw = Offer(unit_price=85.0)
    assert merge_offers(raw, None) is raw


def test_offer_id():
    assert offer_id(Offer(unit_price=90.0, payment_terms="Net 60")) == "90|Net 60"
    assert offer_id(Offer(unit_price=88.5)) == "88.5|null"
    assert offer_id(Offer()) == "null|null"


def test_offer_id_keeps_full_precision():
    assert offer_id(Offer(unit_price=12345.75, payment_terms="Net 90")) == "12345.75|Net 90"
    assert offer_id(Offer(unit_price=12345.75)) != offer_id(Offer(unit_price=12345.8))
    assert offer_id(Offer(unit_price=0.1 + 0.2)) == "0.30000000000000004|null"
