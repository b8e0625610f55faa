"""Tests for credit_engines.tracer -- ENGINE_TRACE emission and fingerprints."""

from decimal import Decimal

from credit_config.schema import ConfigKind
from credit_engines import score_weighted
from credit_engines.tracer import compute_input_fingerprint

from tests.factories import default_config, make_record


def _traces(logs):
    return [r for r in logs if r["message"] == "ENGINE_TRACE"]


class TestEngineTrace:
    def test_trace_is_emitted(self, captured_logs):
        config = default_config(ConfigKind.SCORING)
        score_weighted(record=make_record(), config=config)

        traces = _traces(captured_logs())
        assert len(traces) == 1
        trace = traces[0]
        assert trace["engine_name"] == "weighted"
        assert trace["engine_version"] == "1.0"
        assert trace["score"] == 751
        assert len(trace["input_fingerprint"]) == 16
        assert trace["logger"] == "credit_kernel.engines.tracer"

    def test_fingerprint_tracks_inputs(self, captured_logs):
        config = default_config(ConfigKind.SCORING)
        score_weighted(record=make_record(), config=config)
        score_weighted(record=make_record(), config=config)
        score_weighted(record=make_record(credit_mix=Decimal("0.7")), config=config)

        fingerprints = [t["input_fingerprint"] for t in _traces(captured_logs())]
        assert fingerprints[0] == fingerprints[1]
        assert fingerprints[0] != fingerprints[2]


class TestFingerprint:
    def test_decimal_scale_does_not_matter(self):
        a = compute_input_fingerprint(("x",), {"x": Decimal("0.50")})
        b = compute_input_fingerprint(("x",), {"x": Decimal("0.5")})
        assert a == b

    def test_dict_order_does_not_matter(self):
        a = compute_input_fingerprint(("x",), {"x": {"a": 1, "b": 2}})
        b = compute_input_fingerprint(("x",), {"x": {"b": 2, "a": 1}})
        assert a == b

    def test_only_selected_fields(self):
        a = compute_input_fingerprint(("x",), {"x": 1, "y": 1})
        b = compute_input_fingerprint(("x",), {"x": 1, "y": 2})
        assert a == b
