from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Tuple

from chatrelay.backend import constants
from chatrelay.backend.transport.types import TransportConfigError


@dataclass(frozen=True)
class Pacing:
	smart_latency_s: Tuple[float, float] = constants.SMART_LATENCY_RANGE_S
	lite_latency_s: Tuple[float, float] = constants.LITE_LATENCY_RANGE_S
	smart_thinking_s: float = constants.SMART_THINKING_DELAY_S
	lite_thinking_s: float = constants.LITE_THINKING_DELAY_S
	chunk_delay_s: Tuple[float, float] = constants.CHUNK_DELAY_RANGE_S

	@classmethod
	def instant(cls) -> "Pacing":
		return cls(
			smart_latency_s=(0.0, 0.0),
			lite_latency_s=(0.0, 0.0),
			smart_thinking_s=0.0,
			lite_thinking_s=0.0,
			chunk_delay_s=(0.0, 0.0),
		)

	def latency_range(self, quality_mode: bool) -> Tuple[float, float]:
		return self.smart_latency_s if quality_mode else self.lite_latency_s

	def thinking_delay(self, quality_mode: bool) -> float:
		return self.smart_thinking_s if quality_mode else self.lite_thinking_s


@dataclass(frozen=True)
class TransportSettings:
	remote_url: str = ""
	remote_enabled: bool = True
	remote_timeout_s: float = constants.REMOTE_TIMEOUT_S
	remote_stream_timeout_s: float = constants.REMOTE_STREAM_TIMEOUT_S
	pacing: Pacing = field(default_factory=Pacing)

	@property
	def remote_ready(self) -> bool:
		return self.remote_enabled and bool(self.remote_url)

	def with_overrides(self, **changes) -> "TransportSettings":
		return replace(self, **changes)


def _bool_env(name: str, default: bool) -> bool:
	raw = os.getenv(name, "").strip().lower()
	if not raw:
		return default
	return raw not in {"0", "false", "off", "no"}


def _float_env(name: str, default: float) -> float:
	raw = os.getenv(name, "").strip()
	if not raw:
		return default
	try:
		value = float(raw)
	except ValueError as exc:
		raise TransportConfigError(f"{name} must be numeric.") from exc
	if value <= 0:
		raise TransportConfigError(f"{name} must be greater than zero.")
	return value


def load_settings() -> TransportSettings:
	return TransportSettings(
		remote_url=os.getenv("CHAT_REMOTE_URL", "").strip(),
		remote_enabled=_bool_env("CHAT_REMOTE_ENABLED", True),
		remote_timeout_s=_float_env("CHAT_REMOTE_TIMEOUT_S", constants.REMOTE_TIMEOUT_S),
		remote_stream_timeout_s=_float_env("CHAT_REMOTE_STREAM_TIMEOUT_S", constants.REMOTE_STREAM_TIMEOUT_S),
		pacing=Pacing() if _bool_env("CHAT_LOCAL_PACING", True) else Pacing.instant(),
	)
