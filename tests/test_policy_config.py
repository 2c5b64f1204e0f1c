import pytest

from dealdesk.errors import NegotiationError, PolicyConfigError
from dealdesk.policy_config import DEFAULT_POLICY, PolicyConfig, load_policy, validate_config


def test_default_policy():
    assert DEFAULT_POLICY.price_weight == 0.6
    assert DEFAULT_POLICY.terms_weight == 0.4
    assert (DEFAULT_POLICY.anchor, DEFAULT_POLICY.target, DEFAULT_POLICY.max_acceptable) == (75, 85, 100)
    assert DEFAULT_POLICY.term_options == ["Net 30", "Net 60", "Net 90"]
    assert DEFAULT_POLICY.best_terms == "Net 90"
    assert DEFAULT_POLICY.max_rounds == 6


def test_template_round_trip(template):
    cfg = load_policy(template)
    assert load_policy(cfg.to_template()) == cfg


def _set(template, path, value):
    node = template
    for key in path[:-1]:
        node = node[key]
    node[path[-1]] = value


@pytest.mark.parametrize("path,value,message", [
    (("parameters", "unit_price", "weight"), 0.7, "weights must sum to 1.0"),
    (("parameters", "unit_price", "anchor"), 90, "anchor < target <= max_acceptable"),
    (("parameters", "unit_price", "target"), 110, "anchor < target <= max_acceptable"),
    (("parameters", "unit_price", "concession_step"), 0, "concession_step must be > 0"),
    (("parameters", "payment_terms", "options"), [], "at least one term option"),
    (("parameters", "payment_terms", "utility"), {"Net 30": 0.2, "Net 60": 0.6}, "missing utility for Net 90"),
    (("parameters", "payment_terms", "utility"), {"Net 30": 0.2, "Net 60": 0.6, "Net 90": 1.5}, "must be in [0, 1]"),
    (("accept_threshold",), 0.45, "must be > walkaway_threshold"),
    (("max_rounds",), 0, "max_rounds"),
    (("max_rounds",), 51, "max_rounds"),
])
def test_invalid_templates_rejected(template, path, value, message):
    _set(template, path, value)
    with pytest.raises(PolicyConfigError) as exc:
        load_policy(template)
    assert message in str(exc.value)


def test_weights_within_tolerance_accepted(template):
    template["parameters"]["unit_price"]["weight"] = 0.6 + 5e-7
    load_policy(template)


def test_missing_parameters(template):
    del template["parameters"]["payment_terms"]
    with pytest.raises(PolicyConfigError):
        load_policy(template)


def test_config_error_is_a_value_error():
    assert issubclass(PolicyConfigError, ValueError)
    assert issubclass(PolicyConfigError, NegotiationError)


def test_validate_config_on_model():
    cfg = DEFAULT_POLICY.model_copy(update={"walkaway_threshold": 0.9})
    with pytest.raises(PolicyConfigError):
        validate_config(cfg)


def test_policy_is_frozen():
    with pytest.raises(Exception):
        DEFAULT_POLICY.max_rounds = 10
    assert isinstance(DEFAULT_POLICY, PolicyConfig)


@pytest.mark.parametrize("path", [
    ("parameters", "unit_price", "anchor"),
    ("parameters", "payment_terms", "utility"),
    ("accept_threshold",),
    ("max_rounds",),
])
def test_missing_field_is_a_config_error(template, path):
    node = template
    for key in path[:-1]:
        node = node[key]
    del node[path[-1]]
    with pytest.raises(PolicyConfigError) as exc:
        load_policy(template)
    assert path[-1] in str(exc.value)
