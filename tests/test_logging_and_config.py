from adsense_insights.config import DEFAULT_CANDIDATE_MODELS, DashboardConfig
from adsense_insights.logging import redact


def test_redact_scrubs_token_keys_and_inline_secrets():
    out = redact(
        {
            "event": "adsense_error",
            "tokens": {"access_token": "ya29.abcdefghijklmnop"},
            "client_secret": "shh",
            "body": "Authorization: Bearer abcdef123456 with key gsk_ABCDEFGHIJKLMNOP",
            "status_code": 500,
            "detail": "leaked mysecretvalue",
        },
        secrets=["mysecretvalue"],
    )
    assert out["tokens"] == "[REDACTED]"
    assert out["client_secret"] == "[REDACTED]"
    assert "abcdef123456" not in out["body"]
    assert "gsk_" not in out["body"]
    assert out["status_code"] == 500
    assert out["detail"] == "leaked [REDACTED]"


def test_candidate_models_default_and_env_override(monkeypatch):
    monkeypatch.delenv("LLM_CANDIDATE_MODELS", raising=False)
    assert DashboardConfig().candidates() == DEFAULT_CANDIDATE_MODELS

    monkeypatch.setenv("LLM_CANDIDATE_MODELS", "m1, m2 ,,m3")
    assert DashboardConfig().candidates() == ("m1", "m2", "m3")


def test_numeric_settings_read_from_env(monkeypatch):
    monkeypatch.setenv("LLM_TEMPERATURE", "0.2")
    monkeypatch.setenv("ADSENSE_REPORT_ROW_LIMIT", "5")
    cfg = DashboardConfig()
    assert cfg.llm_temperature == 0.2
    assert cfg.report_row_limit == 5
