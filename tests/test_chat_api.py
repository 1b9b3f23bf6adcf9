import json
import os
from unittest import TestCase
from unittest.mock import patch

import httpx
from fastapi.testclient import TestClient

from chatrelay.backend.main import app
from chatrelay.backend.transport.coordinator import REASON_UNCONFIGURED
from chatrelay.backend.transport.remote import RemoteChatClient


def _parse_sse_events(raw: str):
	events = []
	for frame in raw.split("\n\n"):
		frame = frame.strip()
		if not frame:
			continue
		event_name = "message"
		data_lines = []
		for line in frame.splitlines():
			if line.startswith("event:"):
				event_name = line.split(":", 1)[1].strip()
			elif line.startswith("data:"):
				data_lines.append(line.split(":", 1)[1].strip())
		data = {}
		if data_lines:
			try:
				data = json.loads("\n".join(data_lines))
			except json.JSONDecodeError:
				data = {"raw": "\n".join(data_lines)}
		events.append((event_name, data))
	return events


class ChatApiTests(TestCase):
	def setUp(self) -> None:
		env = patch.dict(os.environ, {"CHAT_REMOTE_URL": "", "CHAT_LOCAL_PACING": "0"})
		env.start()
		self.addCleanup(env.stop)
		os.environ.pop("CHAT_REMOTE_TIMEOUT_S", None)
		os.environ.pop("CHAT_REMOTE_ENABLED", None)
		self.client = TestClient(app)

	def test_status_reports_local_only_setup(self) -> None:
		response = self.client.get("/api/chat/status", headers={"X-Request-ID": "req-1"})
		self.assertEqual(response.status_code, 200)
		self.assertEqual(response.headers["X-Request-ID"], "req-1")
		self.assertIn("X-Process-Time", response.headers)
		payload = response.json()
		self.assertTrue(payload["ok"])
		self.assertEqual(payload["request_id"], "req-1")
		data = payload["data"]
		self.assertFalse(data["remote_ready"])
		self.assertFalse(data["local_pacing"])
		self.assertEqual(data["remote_timeout_s"], 2.2)
		self.assertIn("react", data["topics"])
		self.assertTrue(any("CHAT_REMOTE_URL" in warning for warning in data["warnings"]))

	def test_respond_uses_local_smart_reply(self) -> None:
		response = self.client.post(
			"/api/chat/respond",
			json={"messages": [{"role": "user", "content": "react vs vue"}]},
		)
		self.assertEqual(response.status_code, 200)
		data = response.json()["data"]
		self.assertIn("### Recommendation", data["reply"])
		self.assertEqual(data["meta"]["source"], "local_smart")
		self.assertEqual(data["meta"]["fallbackReason"], REASON_UNCONFIGURED)
		self.assertFalse(data["meta"]["streamed"])
		self.assertTrue(data["meta"]["qualityMode"])

	def test_respond_lite_mode(self) -> None:
		response = self.client.post(
			"/api/chat/respond",
			json={"messages": [{"role": "user", "content": "react vs vue"}], "quality_mode": False},
		)
		self.assertEqual(response.status_code, 200)
		meta = response.json()["data"]["meta"]
		self.assertEqual(meta["source"], "local_lite")
		self.assertEqual(meta["fallbackReason"], "")

	def test_action_applies_to_last_assistant_message(self) -> None:
		response = self.client.post(
			"/api/chat/respond",
			json={
				"messages": [
					{"role": "user", "content": "how do I speed up lookups by email?"},
					{"role": "assistant", "content": "Use an index on the email column to speed up lookups."},
				],
				"action": "tldr",
			},
		)
		self.assertEqual(response.status_code, 200)
		self.assertIn("### TL;DR", response.json()["data"]["reply"])

	def test_action_without_assistant_message_is_rejected(self) -> None:
		response = self.client.post(
			"/api/chat/respond",
			json={"messages": [{"role": "user", "content": "hello"}], "action": "deeper"},
		)
		self.assertEqual(response.status_code, 400)
		payload = response.json()
		self.assertFalse(payload["ok"])
		self.assertEqual(payload["error"]["code"], "chat_bad_request")

	def test_blank_conversation_is_rejected(self) -> None:
		response = self.client.post(
			"/api/chat/respond",
			json={"messages": [{"role": "user", "content": "   "}]},
		)
		self.assertEqual(response.status_code, 400)
		self.assertEqual(response.json()["error"]["code"], "chat_bad_request")

	def test_validation_error_envelope(self) -> None:
		response = self.client.post("/api/chat/respond", json={"messages": []})
		self.assertEqual(response.status_code, 422)
		payload = response.json()
		self.assertEqual(payload["error"]["code"], "validation_error")
		self.assertTrue(payload["error"]["evidence"])

	def test_bad_timeout_config_is_reported(self) -> None:
		with patch.dict(os.environ, {"CHAT_REMOTE_TIMEOUT_S": "soon"}):
			response = self.client.post(
				"/api/chat/respond",
				json={"messages": [{"role": "user", "content": "hello"}]},
			)
		self.assertEqual(response.status_code, 503)
		self.assertEqual(response.json()["error"]["code"], "chat_transport_unconfigured")

	def test_stream_emits_meta_chunks_done(self) -> None:
		with self.client.stream(
			"POST",
			"/api/chat/stream",
			json={"messages": [{"role": "user", "content": "How do I fix a merge conflict in git?"}]},
		) as response:
			self.assertEqual(response.status_code, 200)
			self.assertTrue(response.headers["content-type"].startswith("text/event-stream"))
			raw = "".join(response.iter_text())

		events = _parse_sse_events(raw)
		names = [name for name, _ in events]
		self.assertEqual(names[0], "meta")
		self.assertEqual(names[-1], "done")
		self.assertIn("chunk", names)
		done = events[-1][1]
		streamed = "".join(data["text"] for name, data in events if name == "chunk")
		self.assertEqual(streamed, done["reply"])
		self.assertTrue(done["meta"]["streamed"])
		self.assertEqual(done["meta"]["source"], "local_smart")

	def test_stream_bad_request_emits_error_event(self) -> None:
		with self.client.stream(
			"POST",
			"/api/chat/stream",
			json={"messages": [{"role": "user", "content": "hello"}], "action": "code"},
		) as response:
			raw = "".join(response.iter_text())

		events = _parse_sse_events(raw)
		self.assertEqual(events[-1][0], "error")
		self.assertEqual(events[-1][1]["code"], "chat_bad_request")

	def test_live_reply_through_gateway(self) -> None:
		def handler(request: httpx.Request) -> httpx.Response:
			return httpx.Response(200, json={"reply": "Live answer."})

		def build_remote(settings):
			return RemoteChatClient(settings.remote_url, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

		with patch.dict(os.environ, {"CHAT_REMOTE_URL": "http://upstream.test/api/chat"}):
			with patch("chatrelay.backend.services.chat_service._build_remote_client", side_effect=build_remote):
				response = self.client.post(
					"/api/chat/respond",
					json={"messages": [{"role": "user", "content": "hello there"}]},
				)
		self.assertEqual(response.status_code, 200)
		data = response.json()["data"]
		self.assertEqual(data["reply"], "Live answer.")
		self.assertEqual(data["meta"]["source"], "live")
