"""Tests for SecretRedactor."""

from swarm_health.redact import REDACTED, SecretRedactor


class TestRedactDict:
    def test_sensitive_keys_redacted_recursively(self):
        redactor = SecretRedactor()
        data = {
            "api_key": "sk-live-abc",
            "rpc": "https://api.mainnet-beta.solana.com",
            "nested": {"Token": "xyz", "count": 3},
            "headers": [{"authorization": "Bearer abc"}],
        }

        result = redactor.redact_dict(data)

        assert result["api_key"] == REDACTED
        assert result["rpc"] == "https://api.mainnet-beta.solana.com"
        assert result["nested"] == {"Token": REDACTED, "count": 3}
        assert result["headers"] == [{"authorization": REDACTED}]
        assert data["api_key"] == "sk-live-abc"


class TestRedactText:
    def test_env_assignments_redacted(self):
        text = "OPENAI_API_KEY=sk-abc123\nSOLANA_RPC=https://api.mainnet-beta.solana.com"

        result = SecretRedactor().redact_text(text)

        assert "OPENAI_API_KEY=[REDACTED]" in result
        assert "sk-abc123" not in result
        assert "SOLANA_RPC=https://api.mainnet-beta.solana.com" in result

    def test_bearer_token_redacted(self):
        result = SecretRedactor().redact_text("Authorization: Bearer eyJhbGciOi.payload")
        assert "eyJhbGciOi" not in result

    def test_empty_passthrough(self):
        redactor = SecretRedactor()
        assert redactor.redact_text(None) is None
        assert redactor.redact_text("") == ""
