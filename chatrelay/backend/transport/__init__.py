from chatrelay.backend.transport.cancellation import CancellationSignal, TimeoutSupervisor
from chatrelay.backend.transport.config import Pacing, TransportSettings, load_settings
from chatrelay.backend.transport.coordinator import ChatTransport, chat
from chatrelay.backend.transport.generator import LocalResponder, build_action_prompt
from chatrelay.backend.transport.types import (
	Message,
	StreamFrame,
	TransportCancelled,
	TransportConfigError,
	TransportMeta,
	TransportResult,
)

__all__ = [
	"CancellationSignal",
	"ChatTransport",
	"LocalResponder",
	"Message",
	"Pacing",
	"StreamFrame",
	"TimeoutSupervisor",
	"TransportCancelled",
	"TransportConfigError",
	"TransportMeta",
	"TransportResult",
	"TransportSettings",
	"build_action_prompt",
	"chat",
	"load_settings",
]
