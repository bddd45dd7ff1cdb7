"""
Secret redaction for persisted health records.

Error contexts reported by agents and the prompt/response transcript
kept with each AI-assisted repair can carry credentials (the repair
prompt embeds source, which may include .env files). Everything written
to those columns passes through SecretRedactor first.

Two detection strategies:
1. Key-based: field names like 'password', 'token', 'api_key'
2. Content-based: KEY=value assignments, Bearer tokens, and whatever
   the detect-secrets plugins flag on each line
"""

import re
from typing import Any

from detect_secrets.core.scan import scan_line
from detect_secrets.settings import default_settings

REDACTED = "[REDACTED]"


class SecretRedactor:
    """
    Redacts secrets from dictionaries and free text.

    Example:
        redactor = SecretRedactor()
        redactor.redact_dict({"api_key": "sk-123", "rpc": "ok"})
        # {"api_key": "[REDACTED]", "rpc": "ok"}
        redactor.redact_text("OPENAI_API_KEY=sk-123")
        # "OPENAI_API_KEY=[REDACTED]"
    """

    SENSITIVE_KEYS = {
        "password",
        "passwd",
        "pwd",
        "secret",
        "secrets",
        "token",
        "tokens",
        "api_key",
        "apikey",
        "access_token",
        "refresh_token",
        "bearer",
        "authorization",
        "credentials",
        "private_key",
        "privatekey",
        "secret_key",
        "seed",
        "mnemonic",
        "cookie",
        "jwt",
    }

    ENV_VAR_PATTERN = re.compile(
        r"\b([A-Z0-9_]*(?:API_KEY|APIKEY|TOKEN|PASSWORD|SECRET|PRIVATE_KEY))=([^\s'\"]+)",
        re.IGNORECASE,
    )
    BEARER_PATTERN = re.compile(r"Bearer\s+([^\s'\"]+)", re.IGNORECASE)

    def redact_dict(self, data: dict[str, Any]) -> dict[str, Any]:
        """Recursively redact a dictionary, returning a new one."""
        result: dict[str, Any] = {}
        for key, value in data.items():
            if isinstance(value, dict):
                result[key] = self.redact_dict(value)
            elif str(key).lower() in self.SENSITIVE_KEYS:
                result[key] = REDACTED
            elif isinstance(value, list):
                result[key] = [
                    self.redact_dict(item)
                    if isinstance(item, dict)
                    else self.redact_text(item)
                    if isinstance(item, str)
                    else item
                    for item in value
                ]
            elif isinstance(value, str):
                result[key] = self.redact_text(value)
            else:
                result[key] = value
        return result

    def redact_text(self, text: str | None) -> str | None:
        """Redact secrets from free text, line by line."""
        if not text:
            return text

        text = self.ENV_VAR_PATTERN.sub(rf"\1={REDACTED}", text)
        text = self.BEARER_PATTERN.sub(f"Bearer {REDACTED}", text)

        lines = text.split("\n")
        with default_settings():
            for i, line in enumerate(lines):
                for secret in scan_line(line):
                    value = secret.secret_value
                    if value and value != REDACTED:
                        lines[i] = lines[i].replace(value, REDACTED)
        return "\n".join(lines)
