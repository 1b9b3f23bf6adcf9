from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Literal, Optional, Sequence, Tuple

from chatrelay.backend import constants
from chatrelay.backend.transport.topics import TopicCatalog, default_catalog
from chatrelay.backend.transport.types import Intent, Message, TopicGuide


Branch = Literal["greeting", "time", "weather", "comparison", "career", "topic", "generic"]
ActionId = Literal["deeper", "code", "tldr", "compare"]

_GREETING_RE = re.compile(
	r"^(hi|hello|hey|heya|hiya|yo|howdy|greetings|good (morning|afternoon|evening))\b[\s!.,?]*"
)
_TIME_RE = re.compile(
	r"\b(what time|current time|time is it|time now|what day is it|today'?s date|what'?s the date|what is the date)\b"
)
_WEATHER_RE = re.compile(r"\b(weather|forecast|temperature outside|going to rain|is it raining)\b")
_COMPARE_VS_RE = re.compile(r"^(?:compare\s+)?(.+?)\s+(?:vs\.?|versus)\s+(.+?)$", re.IGNORECASE)
_COMPARE_AND_RE = re.compile(r"^compare\s+(.+?)\s+(?:and|with|to)\s+(.+?)$", re.IGNORECASE)
_COMPARE_FILLER_RE = re.compile(
	r"^(?:which is better|what'?s better|what is better|should i use|should i pick|help me choose)[:,]?\s+",
	re.IGNORECASE,
)
_OPTION_LEAD_RE = re.compile(
	r"^.*\b(?:between|about|understand|choose|using|use|pick|of|is|are|to)\s+",
	re.IGNORECASE,
)
_OPTION_TAIL_RE = re.compile(r"\s+(?:for|in|when|with|on|at|because|if|to|as)\b.*$", re.IGNORECASE)
_OPTION_MAX_WORDS = 3
_CAREER_RE = re.compile(
	r"\b(resume|cv|bio|biography|linkedin|cover letter|career|job interview|interview prep|portfolio)\b"
)
_CODE_REQUEST_RE = re.compile(r"\b(code|snippet|example|sample|show me)\b")
_SUMMARY_RE = re.compile(r"(\btl;?dr\b|\bsummari[sz]e\b|\bsummary\b)")

_CONTINUATION_TOKENS = {
	"more",
	"deeper",
	"example",
	"examples",
	"elaborate",
	"continue",
	"again",
	"code",
	"tldr",
}

_INTENT_KEYWORDS: Tuple[Tuple[Intent, Tuple[str, ...]], ...] = (
	(
		"debug",
		(
			"error",
			"bug",
			"broken",
			"not working",
			"doesn't work",
			"crash",
			"exception",
			"traceback",
			"fails",
			"failing",
			"debug",
			"fix",
		),
	),
	("example", ("example", "code", "snippet", "sample", "show me")),
	("why", ("why", "reason", "purpose", "benefit", "matter")),
	("how", ("how", "steps", "setup", "set up", "implement", "build", "create", "start")),
)

_CAPABILITIES = (
	"Step-by-step plans for coding and product questions",
	"Debug checklists when something breaks",
	"Code examples on request",
	"Side-by-side comparisons, e.g. \"react vs vue\"",
	"Short summaries when you ask for a TL;DR",
)


@dataclass(frozen=True)
class Classification:
	branch: Branch
	intent: Intent
	topic: Optional[TopicGuide] = None
	inherited: bool = False
	wants_code: bool = False
	wants_summary: bool = False
	comparison: Optional[Tuple[str, str]] = None


def _normalize(text: str) -> str:
	return " ".join((text or "").split())


def _tokens(text: str) -> List[str]:
	return re.findall(r"[a-z0-9';]+", text.lower())


def _has_phrase(lowered: str, phrase: str) -> bool:
	pattern = r"\b" + re.escape(phrase).replace(r"\ ", r"\s+") + r"\b"
	return re.search(pattern, lowered) is not None


def _stable_pick(options: Sequence[str], seed: str, salt: str) -> str:
	digest = hashlib.sha256(f"{salt}:{seed}".encode("utf-8")).digest()
	return options[int.from_bytes(digest[:8], "big") % len(options)]


def detect_intent(text: str) -> Intent:
	lowered = _normalize(text).lower()
	for intent, keywords in _INTENT_KEYWORDS:
		if any(_has_phrase(lowered, keyword) for keyword in keywords):
			return intent
	return "general"


def _clean_option(value: str) -> str:
	return value.strip().strip("?!.,:;\"'").strip()


# "I want to understand postgres" vs "mysql for my startup" -> postgres, mysql
def _left_option(value: str) -> str:
	trimmed = _clean_option(_OPTION_LEAD_RE.sub("", value)) or _clean_option(value)
	return " ".join(trimmed.split()[-_OPTION_MAX_WORDS:])


def _right_option(value: str) -> str:
	trimmed = _clean_option(_OPTION_TAIL_RE.sub("", value)) or _clean_option(value)
	return " ".join(trimmed.split()[:_OPTION_MAX_WORDS])


def extract_comparison(text: str) -> Optional[Tuple[str, str]]:
	cleaned = _COMPARE_FILLER_RE.sub("", _normalize(text))
	cleaned = cleaned.rstrip("?!.")
	match = _COMPARE_VS_RE.match(cleaned) or _COMPARE_AND_RE.match(cleaned)
	if match is None:
		return None
	left, right = _left_option(match.group(1)), _right_option(match.group(2))
	if not left or not right or left.lower() == right.lower():
		return None
	return left, right


def _previous_user_text(history: Sequence[Message], current: str) -> str:
	skipped_current = False
	for message in reversed(history):
		if message.role != "user":
			continue
		if not skipped_current and _normalize(message.content) == current:
			skipped_current = True
			continue
		return _normalize(message.content)
	return ""


def _is_continuation(text: str) -> bool:
	tokens = _tokens(text)
	return len(tokens) <= 4 or bool(set(tokens) & _CONTINUATION_TOKENS)


def _prior_user_count(history: Sequence[Message], current: str) -> int:
	count = sum(1 for message in history if message.role == "user")
	if history and history[-1].role == "user" and _normalize(history[-1].content) == current:
		count -= 1
	return max(count, 0)


def build_action_prompt(action: ActionId, assistant_text: str) -> str:
	condensed = " ".join(
		[line.strip() for line in assistant_text.split("\n") if line.strip()][: constants.MAX_ACTION_CONTEXT_LINES]
	)[: constants.MAX_ACTION_CONTEXT_CHARS]
	context_block = f"\n\nContext:\n{condensed}" if condensed else ""
	if action == "deeper":
		return f"Go deeper on your previous answer with technical detail, tradeoffs, and edge cases.{context_block}"
	if action == "code":
		return (
			"Turn your previous answer into practical implementation steps and include an example code snippet."
			f"{context_block}"
		)
	if action == "tldr":
		return f"Summarize your previous answer as a concise TL;DR with 3 bullet points and one action step.{context_block}"
	return f"Compare 2-3 viable options for your previous answer, with pros/cons and when to use each.{context_block}"


class LocalResponder:
	"""Deterministic local answers used when the live API is off or failing."""

	def __init__(self, catalog: Optional[TopicCatalog] = None, now: Optional[Callable[[], datetime]] = None):
		self._catalog = catalog or default_catalog()
		self._now = now or datetime.now

	@property
	def catalog(self) -> TopicCatalog:
		return self._catalog

	def respond(self, text: str, history: Sequence[Message], quality_mode: bool) -> str:
		if quality_mode:
			return self.smart(text, history)
		return self.lite(text, history)

	def classify(self, text: str, history: Sequence[Message]) -> Classification:
		cleaned = _normalize(text)
		lowered = cleaned.lower()
		intent = detect_intent(cleaned)
		wants_code = intent == "example" or _CODE_REQUEST_RE.search(lowered) is not None
		wants_summary = _SUMMARY_RE.search(lowered) is not None

		if _GREETING_RE.match(lowered) and len(_tokens(lowered)) <= 4:
			return Classification(branch="greeting", intent="general")
		if _TIME_RE.search(lowered):
			return Classification(branch="time", intent="general")
		if _WEATHER_RE.search(lowered):
			return Classification(branch="weather", intent="general")
		comparison = extract_comparison(cleaned)
		if comparison is not None:
			return Classification(branch="comparison", intent=intent, comparison=comparison)
		if _CAREER_RE.search(lowered):
			return Classification(branch="career", intent=intent, wants_code=False, wants_summary=wants_summary)

		topic = self._catalog.match(lowered)
		inherited = False
		if topic is None and _is_continuation(lowered):
			previous = _previous_user_text(history, cleaned)
			if previous:
				topic = self._catalog.match(previous)
				inherited = topic is not None
		branch: Branch = "topic" if topic is not None else "generic"
		return Classification(
			branch=branch,
			intent=intent,
			topic=topic,
			inherited=inherited,
			wants_code=wants_code,
			wants_summary=wants_summary,
		)

	def smart(self, text: str, history: Sequence[Message]) -> str:
		cleaned = _normalize(text)
		if not cleaned:
			return "Ask me anything: a how-to, a bug you are chasing, or two options to compare."
		info = self.classify(cleaned, history)
		seed = cleaned.lower()
		if info.branch == "greeting":
			return self._greeting(seed, returning=_prior_user_count(history, cleaned) > 0)
		if info.branch == "time":
			return self._time_reply(seed)
		if info.branch == "weather":
			return self._weather_reply(seed)
		if info.branch == "comparison" and info.comparison is not None:
			return self._comparison_reply(seed, *info.comparison)
		if info.branch == "career":
			return self._career_reply(seed, cleaned.lower())
		return self._guided_reply(seed, cleaned, info)

	def lite(self, text: str, history: Sequence[Message]) -> str:
		cleaned = _normalize(text)
		topic = self._catalog.match(cleaned.lower()) if cleaned else None
		if topic is not None:
			return f"{topic.summary}\n\nSwitch to Smart mode for steps, common mistakes, and examples."
		if not cleaned:
			return "Lite mode is on. Ask a question and I will keep the answer short."
		snippet = cleaned if len(cleaned) <= 80 else cleaned[:77].rstrip() + "..."
		return f"Got it: \"{snippet}\". Lite mode keeps replies short; switch to Smart mode for a detailed answer."

	def _greeting(self, seed: str, *, returning: bool) -> str:
		if returning:
			opener = _stable_pick(("Welcome back!", "Hi again!", "Good to see you again!"), seed, "greeting-returning")
		else:
			opener = _stable_pick(("Hi there!", "Hello!", "Hey, nice to meet you!"), seed, "greeting")
		bullets = "\n".join(f"- {item}" for item in _CAPABILITIES)
		closer = _stable_pick(
			("What are you working on?", "What would you like to dig into?", "Where should we start?"),
			seed,
			"greeting-close",
		)
		return f"{opener} I can answer with concrete steps, examples, and tradeoffs.\n\nHere's what I can help with:\n{bullets}\n\n{closer}"

	def _time_reply(self, seed: str) -> str:
		now = self._now()
		stamp = f"{now:%H:%M} on {now:%A, %B} {now.day}, {now:%Y}"
		note = _stable_pick(
			(
				"This is the server's local clock, so your time zone may differ.",
				"That comes from the server clock; check your device if you are in another time zone.",
			),
			seed,
			"time-note",
		)
		return f"It's {stamp}.\n\n{note}"

	def _weather_reply(self, seed: str) -> str:
		intro = _stable_pick(
			(
				"I can't check live weather from here.",
				"I don't have access to live weather data in this mode.",
			),
			seed,
			"weather",
		)
		return (
			f"{intro}\n\n"
			"### Quick ways to check\n"
			"- Your phone's weather app or widget\n"
			"- A search for \"weather\" plus your city\n"
			"- Your national weather service for alerts\n\n"
			"### Next step\n"
			"If you are building a weather feature, ask me how to call a forecast API and cache the results."
		)

	def _comparison_reply(self, seed: str, left: str, right: str) -> str:
		intro = _stable_pick(
			(
				f"Both {left} and {right} are solid choices; the right one depends on your constraints.",
				f"{left} vs {right} is a common decision. Here's how I'd weigh it.",
				f"Choosing between {left} and {right} comes down to team fit and the problem you are solving.",
			),
			seed,
			"compare-intro",
		)
		left_topic = self._catalog.match(left.lower())
		right_topic = self._catalog.match(right.lower())
		left_note = left_topic.summary if left_topic is not None else f"Pick {left} when its ecosystem and defaults match what you already use."
		right_note = right_topic.summary if right_topic is not None else f"Pick {right} when its model fits the problem more naturally."
		return (
			f"{intro}\n\n"
			f"### Where {left} shines\n"
			f"- {left_note}\n"
			f"- Your team already knows {left} or has working code in it.\n\n"
			f"### Where {right} shines\n"
			f"- {right_note}\n"
			f"- You are starting fresh and {right}'s conventions suit the project.\n\n"
			"### Recommendation\n"
			f"1. List the two or three constraints that matter most (team skills, performance, hiring).\n"
			f"2. Build the same small slice in {left} and in {right} and time how long each takes.\n"
			f"3. Choose {left} if familiarity wins; choose {right} if the prototype felt clearly simpler.\n\n"
			"### Next step\n"
			f"Tell me what you are building and I will recommend {left} or {right} for that case."
		)

	def _career_reply(self, seed: str, lowered: str) -> str:
		if "interview" in lowered:
			kind = "interview prep"
			outline = (
				"Research the company, the team, and the role's day-to-day work.",
				"Prepare three stories using situation, action, and measurable result.",
				"Practise explaining one project end to end, including tradeoffs you made.",
				"Write down two thoughtful questions to ask the interviewer.",
			)
		elif re.search(r"\b(bio|biography|linkedin)\b", lowered):
			kind = "professional bio"
			outline = (
				"Open with who you are and what you do in one sentence.",
				"Add two concrete achievements with numbers.",
				"Mention the problems you like to work on next.",
				"Close with how people can reach you.",
			)
		else:
			kind = "resume"
			outline = (
				"Lead with a two-line summary targeted at the role.",
				"List experience in reverse order with impact-first bullet points.",
				"Quantify results: revenue, time saved, users served.",
				"Keep it to one page unless you have ten or more years of experience.",
			)
		intro = _stable_pick(
			(
				f"Here's a structure for a strong {kind}.",
				f"Let's make your {kind} specific and easy to scan.",
			),
			seed,
			"career-intro",
		)
		steps = "\n".join(f"{index}. {item}" for index, item in enumerate(outline, start=1))
		return (
			f"{intro}\n\n"
			"### Draft outline\n"
			f"{steps}\n\n"
			"### Common mistakes\n"
			"- Listing duties instead of results.\n"
			"- Generic wording that could describe anyone.\n"
			"- Typos; read it aloud once before sending.\n\n"
			"### Next step\n"
			f"Paste your current {kind} or the role description and I will tailor it."
		)

	def _guided_reply(self, seed: str, cleaned: str, info: Classification) -> str:
		topic = info.topic
		sections: List[str] = [self._intro(seed, cleaned, info)]

		if info.wants_summary:
			sections.append(self._summary_section(topic))
		elif info.intent == "why":
			sections.append(self._why_section(topic))
		elif info.intent == "debug":
			sections.append(self._debug_section(topic))
		else:
			sections.append(self._approach_section(topic))

		if topic is not None:
			mistakes = "\n".join(f"- {item}" for item in topic.mistakes)
			sections.append(f"### Common mistakes\n{mistakes}")

		if info.wants_code:
			sections.append(self._example_section(topic))

		sections.append(f"### Next step\n{self._next_step(seed, topic, info)}")
		return "\n\n".join(sections)

	def _intro(self, seed: str, cleaned: str, info: Classification) -> str:
		topic = info.topic
		if topic is None:
			subject = cleaned if len(cleaned) <= 60 else cleaned[:57].rstrip() + "..."
			return _stable_pick(
				(
					f"Here's how I'd approach \"{subject}\".",
					f"Let's work through \"{subject}\" step by step.",
					f"Good question. Here's a practical path for \"{subject}\".",
				),
				seed,
				"intro-generic",
			)
		lead = _stable_pick(
			(
				f"Here's a practical way to think about {topic.title}.",
				f"Let's break {topic.title} into concrete steps.",
				f"Good question about {topic.title}.",
			),
			seed,
			"intro-topic",
		)
		if info.inherited:
			lead = f"Building on your earlier question about {topic.title}: {lead[0].lower()}{lead[1:]}"
		return f"{lead} {topic.summary}"

	def _approach_section(self, topic: Optional[TopicGuide]) -> str:
		steps = topic.steps if topic is not None else (
			"Define the outcome you want and how you will know it works.",
			"Break the work into the smallest piece you can build and test on its own.",
			"Build that piece, then check it against the outcome.",
			"Add the next piece only after the previous one is verified.",
		)
		body = "\n".join(f"{index}. {step}" for index, step in enumerate(steps, start=1))
		return f"### Approach\n{body}"

	def _why_section(self, topic: Optional[TopicGuide]) -> str:
		reasons = topic.why if topic is not None else (
			"It turns a vague goal into something you can check.",
			"It surfaces risks early, while they are cheap to fix.",
			"It gives you a shared vocabulary with your team.",
		)
		body = "\n".join(f"- {reason}" for reason in reasons)
		return f"### Why it matters\n{body}"

	def _debug_section(self, topic: Optional[TopicGuide]) -> str:
		checklist = [
			"Reproduce the problem reliably with the smallest possible input.",
			"Read the full error message and stack trace; note the first frame in your code.",
			"Check what changed recently (dependencies, config, code).",
		]
		if topic is not None:
			checklist.append(f"Compare against the {topic.title} basics: {topic.steps[0]}")
		checklist.append("Fix one thing at a time and add a test that fails before the fix.")
		body = "\n".join(f"{index}. {item}" for index, item in enumerate(checklist, start=1))
		return f"### Debug checklist\n{body}"

	def _summary_section(self, topic: Optional[TopicGuide]) -> str:
		if topic is not None:
			bullets = [topic.summary, topic.why[0], topic.mistakes[0]]
			action = topic.steps[0]
		else:
			bullets = [
				"Clarify the outcome before choosing tools.",
				"Ship the smallest testable slice first.",
				"Verify each step before building on it.",
			]
			action = "Write down the outcome in one sentence."
		body = "\n".join(f"- {item}" for item in bullets)
		return f"### TL;DR\n{body}\n\n**Action:** {action}"

	def _example_section(self, topic: Optional[TopicGuide]) -> str:
		if topic is not None:
			return f"### Example\n```{topic.example_language}\n{topic.example_body}\n```"
		return (
			"### Example\n"
			"```python\n"
			"def run(task):\n"
			"    result = task.execute()\n"
			"    assert result.ok, result.error\n"
			"    return result.value\n"
			"```"
		)

	def _next_step(self, seed: str, topic: Optional[TopicGuide], info: Classification) -> str:
		if topic is not None:
			return _stable_pick(topic.follow_ups, seed, "next-topic")
		if info.intent == "debug":
			return "Paste the exact error message and the code around it, and I will narrow it down."
		return _stable_pick(
			(
				"Share a bit more context (stack, constraints, deadline) and I will tailor the plan.",
				"Tell me which step you want to start with and I will go deeper on it.",
				"Ask for an example and I will show the first step in code.",
			),
			seed,
			"next-generic",
		)
