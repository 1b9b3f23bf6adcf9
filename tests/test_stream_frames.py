from unittest import IsolatedAsyncioTestCase, TestCase

from chatrelay.backend.transport.frames import (
	FrameDecoder,
	decode_frame,
	encode_frame,
	iter_frames,
	read_reply_stream,
)
from chatrelay.backend.transport.types import RemoteServiceError, StreamFrame


async def _frames(*frames):
	for frame in frames:
		yield frame


async def _fragments(*fragments):
	for fragment in fragments:
		yield fragment


class FrameDecoderTests(TestCase):
	def test_frame_split_across_fragments_is_reassembled(self) -> None:
		decoder = FrameDecoder()
		self.assertEqual(decoder.feed('event: chunk\ndata: {"text": "hel'), [])
		first = decoder.feed('lo"}\n\nevent: chunk\ndata: {"text": "world"}\n')
		self.assertEqual(first, [StreamFrame(event="chunk", payload={"text": "hello"})])
		second = decoder.feed("\n")
		self.assertEqual(second, [StreamFrame(event="chunk", payload={"text": "world"})])

	def test_any_split_points_give_same_chunks(self) -> None:
		wire = 'event: chunk\ndata: {"text": "hello"}\n\nevent: chunk\ndata: {"text": "world"}\n\nevent: done\ndata: {}\n\n'
		expected = [
			StreamFrame(event="chunk", payload={"text": "hello"}),
			StreamFrame(event="chunk", payload={"text": "world"}),
			StreamFrame(event="done", payload={}),
		]
		for first in range(len(wire)):
			for second in range(first, len(wire), 7):
				decoder = FrameDecoder()
				frames = []
				for fragment in (wire[:first], wire[first:second], wire[second:]):
					frames.extend(decoder.feed(fragment))
				frames.extend(decoder.flush())
				self.assertEqual(frames, expected, msg=f"split at {first}/{second}")

	def test_several_frames_in_one_fragment(self) -> None:
		decoder = FrameDecoder()
		frames = decoder.feed("event: chunk\ndata: a\n\nevent: chunk\ndata: b\n\nevent: done\ndata: {}\n\n")
		self.assertEqual([frame.event for frame in frames], ["chunk", "chunk", "done"])
		self.assertEqual(frames[2].payload, {})

	def test_carriage_returns_are_ignored(self) -> None:
		decoder = FrameDecoder()
		frames = decoder.feed("event: chunk\r\ndata: x\r\n\r\n")
		self.assertEqual(frames, [StreamFrame(event="chunk", payload="x")])

	def test_flush_returns_trailing_frame_without_blank_line(self) -> None:
		decoder = FrameDecoder()
		self.assertEqual(decoder.feed("event: done\ndata: {}"), [])
		self.assertEqual(decoder.flush(), [StreamFrame(event="done", payload={})])
		self.assertEqual(decoder.flush(), [])

	def test_missing_event_defaults_to_message(self) -> None:
		frame = decode_frame("data: plain text")
		self.assertEqual(frame, StreamFrame(event="message", payload="plain text"))

	def test_numeric_data_stays_text(self) -> None:
		frame = decode_frame("event: chunk\ndata: 42")
		self.assertEqual(frame.payload, "42")

	def test_multiline_data_is_joined_with_newlines(self) -> None:
		frame = decode_frame("event: chunk\ndata: line one\ndata: line two")
		self.assertEqual(frame.payload, "line one\nline two")

	def test_comment_only_block_is_skipped(self) -> None:
		self.assertIsNone(decode_frame(": keep-alive"))
		self.assertEqual(FrameDecoder().feed(": ping\n\n"), [])

	def test_encoded_frame_decodes_back(self) -> None:
		encoded = encode_frame("chunk", "first line\nsecond line")
		self.assertEqual(encoded, "event: chunk\ndata: first line\ndata: second line\n\n")
		self.assertEqual(
			FrameDecoder().feed(encoded),
			[StreamFrame(event="chunk", payload="first line\nsecond line")],
		)
		self.assertEqual(encode_frame("done", {"ok": True}), 'event: done\ndata: {"ok": true}\n\n')


class ReplyStreamTests(IsolatedAsyncioTestCase):
	async def test_chunks_until_done(self) -> None:
		seen = []
		outcome = await read_reply_stream(
			_frames(
				StreamFrame("chunk", {"text": "Hello "}),
				StreamFrame("chunk", {"delta": "there"}),
				StreamFrame("done", {}),
				StreamFrame("chunk", {"text": "ignored"}),
			),
			seen.append,
		)
		self.assertEqual(outcome.text, "Hello there")
		self.assertEqual(outcome.terminal, "done")
		self.assertEqual(seen, ["Hello ", "there"])

	async def test_async_callback_is_awaited(self) -> None:
		seen = []

		async def on_text(text: str) -> None:
			seen.append(text)

		await read_reply_stream(_frames(StreamFrame("chunk", "abc"), StreamFrame("done", None)), on_text)
		self.assertEqual(seen, ["abc"])

	async def test_error_before_any_text_raises(self) -> None:
		with self.assertRaises(RemoteServiceError) as ctx:
			await read_reply_stream(_frames(StreamFrame("error", {"message": "boom"})))
		self.assertEqual(ctx.exception.code, "remote_stream_error")
		self.assertEqual(ctx.exception.message, "boom")

	async def test_error_after_text_keeps_partial_reply(self) -> None:
		outcome = await read_reply_stream(
			_frames(StreamFrame("chunk", {"text": "partial"}), StreamFrame("error", {"message": "upstream died"}))
		)
		self.assertEqual(outcome.text, "partial")
		self.assertEqual(outcome.terminal, "error")

	async def test_empty_stream_raises(self) -> None:
		with self.assertRaises(RemoteServiceError) as ctx:
			await read_reply_stream(_frames(StreamFrame("meta", {})))
		self.assertEqual(ctx.exception.code, "remote_empty_stream")

	async def test_done_without_text_raises(self) -> None:
		with self.assertRaises(RemoteServiceError) as ctx:
			await read_reply_stream(_frames(StreamFrame("done", {})))
		self.assertEqual(ctx.exception.code, "remote_empty_stream")

	async def test_whitespace_only_stream_raises(self) -> None:
		for terminal in (StreamFrame("done", {}), StreamFrame("meta", {})):
			with self.subTest(terminal=terminal.event):
				with self.assertRaises(RemoteServiceError) as ctx:
					await read_reply_stream(_frames(StreamFrame("chunk", {"text": "  \n "}), terminal))
				self.assertEqual(ctx.exception.code, "remote_empty_stream")

	async def test_error_after_whitespace_raises(self) -> None:
		with self.assertRaises(RemoteServiceError) as ctx:
			await read_reply_stream(_frames(StreamFrame("chunk", " "), StreamFrame("error", {"message": "boom"})))
		self.assertEqual(ctx.exception.code, "remote_stream_error")

	async def test_eof_after_text_is_reported(self) -> None:
		outcome = await read_reply_stream(_frames(StreamFrame("chunk", "abc")))
		self.assertEqual(outcome.terminal, "eof")

	async def test_iter_frames_decodes_byte_fragments(self) -> None:
		frames = [
			frame
			async for frame in iter_frames(
				_fragments(b"event: chunk\ndata: hi\n", b"\nevent: done\ndata: {}\n\n")
			)
		]
		self.assertEqual(frames, [StreamFrame("chunk", "hi"), StreamFrame("done", {})])
