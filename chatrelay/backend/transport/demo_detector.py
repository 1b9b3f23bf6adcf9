from __future__ import annotations

from typing import Any, Dict, Optional


# Lowercase fragments of the placeholder replies an upstream sends when it runs without a model key.
DEMO_REPLY_MARKERS = (
	"demo mode",
	"demo response",
	"needs an api key",
	"add your openai api key",
	"configure your openai api key",
	"openai api key to enable",
)


def is_demo_reply(text: str) -> bool:
	lowered = (text or "").lower()
	return any(marker in lowered for marker in DEMO_REPLY_MARKERS)


def is_demo_payload(payload: Optional[Dict[str, Any]]) -> bool:
	if not isinstance(payload, dict):
		return False
	return payload.get("demo") is True
