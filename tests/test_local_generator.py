from datetime import datetime
from unittest import TestCase

from chatrelay.backend.transport.generator import (
	LocalResponder,
	build_action_prompt,
	detect_intent,
	extract_comparison,
)
from chatrelay.backend.transport.topics import TopicCatalog, default_catalog
from chatrelay.backend.transport.types import Message


def _user(text: str) -> Message:
	return Message(role="user", content=text)


def _assistant(text: str) -> Message:
	return Message(role="assistant", content=text)


class SmartReplyTests(TestCase):
	def setUp(self) -> None:
		self.responder = LocalResponder()

	def test_same_input_gives_same_reply(self) -> None:
		text = "How do I speed up a slow query in postgres?"
		first = self.responder.smart(text, [_user(text)])
		second = LocalResponder().smart(text, [_user(text)])
		self.assertEqual(first, second)

	def test_comparison_names_both_options(self) -> None:
		reply = self.responder.smart("react vs vue", [_user("react vs vue")])
		self.assertIn("### Where react shines", reply)
		self.assertIn("### Where vue shines", reply)
		self.assertIn("### Recommendation", reply)
		self.assertIn("recommend react or vue", reply)

	def test_comparison_extraction(self) -> None:
		self.assertEqual(extract_comparison("Which is better: Postgres vs MySQL?"), ("Postgres", "MySQL"))
		self.assertEqual(extract_comparison("compare tabs and spaces"), ("tabs", "spaces"))
		self.assertIsNone(extract_comparison("how do I use git"))
		self.assertIsNone(extract_comparison("vue vs vue"))

	def test_comparison_options_are_trimmed_to_names(self) -> None:
		text = "I want to understand postgres vs mysql for my startup"
		self.assertEqual(extract_comparison(text), ("postgres", "mysql"))
		reply = self.responder.smart(text, [_user(text)])
		self.assertIn("### Where postgres shines", reply)
		self.assertIn("### Where mysql shines", reply)

	def test_greeting_lists_capabilities(self) -> None:
		reply = self.responder.smart("hi", [_user("hi")])
		self.assertIn("Here's what I can help with:", reply)
		bullets = [line for line in reply.splitlines() if line.startswith("- ")]
		self.assertGreaterEqual(len(bullets), 3)
		self.assertFalse(reply.startswith(("Welcome back!", "Hi again!", "Good to see you again!")))

	def test_returning_greeting(self) -> None:
		history = [_user("hi"), _assistant("Hello!"), _user("hello again")]
		reply = self.responder.smart("hello again", history)
		self.assertTrue(reply.startswith(("Welcome back!", "Hi again!", "Good to see you again!")))

	def test_short_follow_up_inherits_previous_topic(self) -> None:
		history = [
			_user("How do I set up docker for my app?"),
			_assistant("Start with a small base image."),
			_user("more"),
		]
		info = self.responder.classify("more", history)
		self.assertEqual(info.branch, "topic")
		self.assertEqual(info.topic.id, "docker")
		self.assertTrue(info.inherited)
		reply = self.responder.smart("more", history)
		self.assertTrue(reply.startswith("Building on your earlier question about Docker images:"))

	def test_unrelated_question_does_not_inherit_topic(self) -> None:
		history = [
			_user("how do I write a dockerfile"),
			_assistant("Start from a slim base image."),
			_user("why is the sky blue during the day"),
		]
		info = self.responder.classify("why is the sky blue during the day", history)
		self.assertEqual(info.branch, "generic")
		self.assertIsNone(info.topic)
		self.assertFalse(info.inherited)

	def test_debug_intent_gets_checklist(self) -> None:
		text = "my docker build fails with an error"
		reply = self.responder.smart(text, [_user(text)])
		self.assertIn("### Debug checklist", reply)
		self.assertIn("Compare against the Docker images basics", reply)
		self.assertIn("### Common mistakes", reply)

	def test_code_request_adds_example_block(self) -> None:
		text = "show me an example of a react component"
		info = self.responder.classify(text, [_user(text)])
		self.assertEqual(info.topic.id, "react")
		self.assertTrue(info.wants_code)
		reply = self.responder.smart(text, [_user(text)])
		self.assertIn("### Example\n```", reply)

	def test_tldr_request_gets_summary(self) -> None:
		reply = self.responder.smart("tldr on sql indexes", [])
		self.assertIn("### TL;DR", reply)
		self.assertIn("**Action:**", reply)

	def test_why_intent(self) -> None:
		reply = self.responder.smart("why does database indexing matter", [])
		self.assertIn("### Why it matters", reply)

	def test_unknown_topic_uses_generic_plan(self) -> None:
		reply = self.responder.smart("plan a garden party", [])
		self.assertIn("### Approach", reply)
		self.assertIn("### Next step", reply)
		self.assertNotIn("### Common mistakes", reply)

	def test_time_uses_injected_clock(self) -> None:
		responder = LocalResponder(now=lambda: datetime(2024, 3, 5, 14, 7))
		reply = responder.smart("what time is it?", [])
		self.assertTrue(reply.startswith("It's 14:07 on Tuesday, March 5, 2024."))

	def test_weather_is_declined_with_alternatives(self) -> None:
		reply = self.responder.smart("what's the weather like today", [])
		self.assertIn("live weather", reply)
		self.assertIn("### Quick ways to check", reply)

	def test_career_request(self) -> None:
		reply = self.responder.smart("can you help with my resume", [])
		self.assertIn("### Draft outline", reply)
		self.assertIn("resume", reply)

	def test_empty_input(self) -> None:
		self.assertTrue(self.responder.smart("   ", []).startswith("Ask me anything"))


class LiteReplyTests(TestCase):
	def test_known_topic_returns_summary(self) -> None:
		responder = LocalResponder()
		reply = responder.respond("How do I handle a git merge conflict?", [], False)
		summary = responder.catalog.get("git").summary
		self.assertTrue(reply.startswith(summary))
		self.assertIn("Switch to Smart mode", reply)

	def test_unknown_topic_echoes_question(self) -> None:
		reply = LocalResponder().lite("purple elephants dancing", [])
		self.assertTrue(reply.startswith('Got it: "purple elephants dancing".'))

	def test_long_question_is_shortened(self) -> None:
		reply = LocalResponder().lite("word " * 40, [])
		self.assertIn('..."', reply)


class IntentAndActionTests(TestCase):
	def test_intent_priority(self) -> None:
		self.assertEqual(detect_intent("why does this example crash"), "debug")
		self.assertEqual(detect_intent("show me why"), "example")
		self.assertEqual(detect_intent("why use indexes"), "why")
		self.assertEqual(detect_intent("how do I start"), "how")
		self.assertEqual(detect_intent("tell me about caching"), "general")

	def test_action_prompt_keeps_first_lines_only(self) -> None:
		answer = "\n".join(f"line {index}" for index in range(1, 11))
		prompt = build_action_prompt("tldr", answer)
		self.assertTrue(prompt.startswith("Summarize your previous answer"))
		context = prompt.split("Context:\n", 1)[1]
		self.assertIn("line 6", context)
		self.assertNotIn("line 7", context)

	def test_action_prompt_context_is_capped(self) -> None:
		prompt = build_action_prompt("deeper", "x" * 1000)
		context = prompt.split("Context:\n", 1)[1]
		self.assertEqual(len(context), 360)

	def test_action_prompt_without_context(self) -> None:
		self.assertNotIn("Context:", build_action_prompt("code", "   "))
		self.assertTrue(build_action_prompt("compare", "").startswith("Compare 2-3 viable options"))


class TopicCatalogTests(TestCase):
	def test_default_catalog(self) -> None:
		catalog = default_catalog()
		self.assertEqual(len(catalog), 11)
		self.assertIs(catalog, default_catalog())

	def test_multi_word_trigger_outranks_single_words(self) -> None:
		catalog = default_catalog()
		self.assertEqual(catalog.match("my shopping cart page is slow").id, "checkout")

	def test_tie_goes_to_catalog_order(self) -> None:
		catalog = default_catalog()
		self.assertEqual(catalog.match("search form").id, "search")

	def test_no_match(self) -> None:
		self.assertIsNone(default_catalog().match("bake a cake"))

	def test_duplicate_ids_are_rejected(self) -> None:
		guide = default_catalog().get("git")
		with self.assertRaises(ValueError):
			TopicCatalog([guide, guide])
