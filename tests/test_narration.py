import pytest

from parcel_insight.domain import PriceTrend, Recommendation, RiskFinding, RiskLevel, Severity
from parcel_insight.narration import (
    SummaryContext,
    SummaryWriter,
    build_summary_messages,
    fallback_summary,
    validate_summary_output,
)


def _ctx(**overrides):
    values = dict(
        overall=72,
        recommendation=Recommendation.BUY,
        scores={"amenities": 80, "planning": 85, "residential": 75, "investment": 70, "risk": 0},
        amenity_counts={"education": 2, "healthcare": 1, "shopping": 0, "entertainment": 3},
        risk_level=RiskLevel.LOW,
        risks=[],
        market_trend=PriceTrend.UP,
        estimated_price="3.5 billion VND",
        area=120,
        orientation="East",
    )
    values.update(overrides)
    return SummaryContext(**values)


class FakeClient:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.messages = None

    def chat(self, messages):
        self.messages = messages
        if self.error:
            raise self.error
        return self.reply


def test_build_messages_carries_precomputed_facts():
    risk = RiskFinding(id="power_close", severity=Severity.HIGH, title="Very close to power", description="d",
                       distance=150, icon="power")
    msgs = build_summary_messages(_ctx(risks=[risk]))
    assert msgs[0]["role"] == "system"
    content = msgs[1]["content"]
    assert "Overall score: 72/100, recommendation: buy" in content
    assert "Very close to power (high, 150 m)" in content
    assert "Market trend: up" in content


def test_validate_summary_output_strips_fences_and_rejects_bad_replies():
    text = "```\nThis parcel is a strong candidate with good schools and rising prices nearby.\n```"
    assert validate_summary_output(text).startswith("This parcel")

    with pytest.raises(ValueError):
        validate_summary_output("Too short.")
    with pytest.raises(ValueError):
        validate_summary_output('{"summary": "structured output is not what we asked for at all"}')
    with pytest.raises(ValueError):
        validate_summary_output("")


def test_fallback_summary_covers_each_topic():
    text = fallback_summary(_ctx())
    assert "72/100" in text
    assert "strong candidate" in text
    assert "6 notable places within 1 km" in text
    assert "none for shopping" in text
    assert "No industrial, power-line or cemetery risks" in text
    assert "rising" in text
    assert "family home" in text


def test_fallback_summary_for_risky_parcel():
    risk = RiskFinding(id="industrial_close", severity=Severity.HIGH, title="Very close to industrial zone",
                       description="d", distance=300, icon="pollution")
    text = fallback_summary(_ctx(overall=40, recommendation=Recommendation.AVOID, risks=[risk],
                                 risk_level=RiskLevel.MEDIUM, market_trend=PriceTrend.DOWN))
    assert "hard to recommend" in text
    assert "Location risk is medium (very close to industrial zone)" in text
    assert "softening" in text


def test_writer_without_client_uses_template():
    assert SummaryWriter().write(_ctx()) == fallback_summary(_ctx())


def test_writer_uses_model_reply_when_valid():
    reply = "A well-located parcel with strong amenities and a rising market; a good family home."
    client = FakeClient(reply=reply)
    assert SummaryWriter(client).write(_ctx()) == reply
    assert client.messages[0]["role"] == "system"


@pytest.mark.parametrize("client", [FakeClient(error=RuntimeError("ollama down")), FakeClient(reply="ok")])
def test_writer_falls_back_on_failure_or_invalid_reply(client):
    assert SummaryWriter(client).write(_ctx()) == fallback_summary(_ctx())


class _NullMessageResponse:
    status_code = 200
    text = '{"message": null}'
    elapsed = type("Elapsed", (), {"total_seconds": lambda self: 0.01})()

    def json(self):
        return {"message": None}


def test_writer_falls_back_when_model_reply_has_no_message(monkeypatch):
    from parcel_insight import ollama_client as oc

    monkeypatch.setattr(oc.requests, "post", lambda url, json=None, timeout=None: _NullMessageResponse())
    writer = SummaryWriter(oc.OllamaClient(retry_backoff_sec=0))
    assert writer.write(_ctx()) == fallback_summary(_ctx())
