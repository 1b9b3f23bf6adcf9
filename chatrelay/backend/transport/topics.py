from __future__ import annotations

import re
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Tuple

from chatrelay.backend.transport.types import TopicGuide


_MULTI_WORD_WEIGHT = 3
_SINGLE_WORD_WEIGHT = 1


def _trigger_pattern(trigger: str) -> "re.Pattern[str]":
	return re.compile(r"\b" + re.escape(trigger.lower()).replace(r"\ ", r"\s+") + r"\b")


class TopicCatalog:
	"""Read-only lookup over topic guides; safe to share between requests."""

	def __init__(self, guides: Iterable[TopicGuide]):
		self._guides: Tuple[TopicGuide, ...] = tuple(guides)
		self._by_id: Dict[str, TopicGuide] = {guide.id: guide for guide in self._guides}
		if len(self._by_id) != len(self._guides):
			raise ValueError("Topic guide ids must be unique.")
		self._patterns: Tuple[Tuple[TopicGuide, Tuple[Tuple["re.Pattern[str]", int], ...]], ...] = tuple(
			(
				guide,
				tuple(
					(
						_trigger_pattern(trigger),
						_MULTI_WORD_WEIGHT if len(trigger.split()) > 1 else _SINGLE_WORD_WEIGHT,
					)
					for trigger in guide.triggers
				),
			)
			for guide in self._guides
		)

	def __len__(self) -> int:
		return len(self._guides)

	def __iter__(self):
		return iter(self._guides)

	def get(self, topic_id: str) -> Optional[TopicGuide]:
		return self._by_id.get(topic_id)

	def score(self, text: str) -> List[Tuple[TopicGuide, int]]:
		lowered = " ".join((text or "").lower().split())
		scored: List[Tuple[TopicGuide, int]] = []
		for guide, patterns in self._patterns:
			total = sum(weight for pattern, weight in patterns if pattern.search(lowered))
			if total > 0:
				scored.append((guide, total))
		return scored

	def match(self, text: str) -> Optional[TopicGuide]:
		best: Optional[TopicGuide] = None
		best_score = 0
		for guide, total in self.score(text):
			# strict comparison keeps catalog order as the tie-breaker
			if total > best_score:
				best, best_score = guide, total
		return best


_DEFAULT_GUIDES = (
	TopicGuide(
		id="checkout",
		title="checkout flows",
		triggers=("checkout", "cart", "payment", "order", "payment form", "shopping cart"),
		summary="Tighten the payment flow and keep users informed and safe at every step.",
		why=(
			"Checkout is where intent turns into revenue, so every unclear state costs orders.",
			"Payment steps involve third parties (3DS, wallets) that fail in ways users cannot see.",
			"A visible, recoverable flow builds the trust people need to enter card details.",
		),
		steps=(
			"Map every state: empty cart, loading totals, address lookup, 3DS/auth step, success, partial failure.",
			"Show inline field errors on blur and move focus to the first invalid field after submit.",
			"Persist cart and promo codes so a reload or back navigation never loses work.",
			"Keep totals visible while recalculating and disable the pay button only while a request is in flight.",
			"Finish with a receipt screen that offers retry for any partially failed step.",
		),
		mistakes=(
			"Clearing the form after a declined card.",
			"Hiding shipping or tax costs until the last step.",
			"Letting users double-submit because the button stays active.",
		),
		example_language="tsx",
		example_body=(
			"function PayButton({ busy, onPay }) {\n"
			"  return (\n"
			"    <button disabled={busy} onClick={onPay}>\n"
			"      {busy ? 'Processing payment - stay on this page' : 'Pay now'}\n"
			"    </button>\n"
			"  );\n"
			"}"
		),
		follow_ups=(
			"Paste your payment form fields and error copy and I will rewrite them.",
			"Tell me which payment provider you use and I will map its failure states.",
		),
	),
	TopicGuide(
		id="search",
		title="search experiences",
		triggers=("search", "results", "filters", "no results", "search bar"),
		summary="Keep users oriented while searching and fail gracefully when nothing matches.",
		why=(
			"Search is how users recover when navigation fails them.",
			"An empty result page with no guidance reads as a dead end.",
			"Fast, visible feedback makes the system feel responsive even when queries are slow.",
		),
		steps=(
			"Give the empty state examples of good queries or popular filters.",
			"Show a loading skeleton together with the active filters while results load.",
			"Keep the query in the input and debounce typing with visible feedback.",
			"On no results, suggest removing filters or broadening the term.",
			"Handle rate limits and timeouts with a retry that keeps the query.",
		),
		mistakes=(
			"Resetting filters when the query changes.",
			"Showing 'No results' before the request has finished.",
			"Hiding the clear-filters control.",
		),
		example_language="ts",
		example_body=(
			"const debounced = debounce((query: string) => runSearch(query), 250);\n"
			"input.addEventListener('input', (event) => debounced(event.target.value));"
		),
		follow_ups=(
			"Share your current empty or no-results screen and I will draft better copy.",
			"Tell me your typical query volume and I will suggest a debounce and caching setup.",
		),
	),
	TopicGuide(
		id="onboarding",
		title="onboarding",
		triggers=("onboarding", "signup", "sign up", "sign-up", "first run", "profile setup"),
		summary="Smooth the first run with visible progress and easy recovery.",
		why=(
			"First impressions decide whether users come back on day two.",
			"Long setup without progress feedback feels endless.",
			"Letting users skip and return respects their time.",
		),
		steps=(
			"Replace the empty dashboard with a placeholder that explains the next action.",
			"Show a checklist with a completion percentage.",
			"Allow 'do this later' and save drafts for every step.",
			"Prefill sensible defaults so most steps are a single confirm.",
			"Celebrate completion and point to the next best action.",
		),
		mistakes=(
			"Asking for every profile field up front.",
			"Blocking the product until onboarding is complete.",
			"Losing progress on a slow or offline connection.",
		),
		example_language="json",
		example_body=(
			"{\n"
			"  \"steps\": [\"profile\", \"workspace\", \"invite\"],\n"
			"  \"completed\": [\"profile\"],\n"
			"  \"skippable\": [\"invite\"]\n"
			"}"
		),
		follow_ups=(
			"List your onboarding steps and I will map the states and copy for each one.",
			"Tell me where users drop off and I will suggest what to cut first.",
		),
	),
	TopicGuide(
		id="chat_ux",
		title="chat and streaming UX",
		triggers=("chat", "chatbot", "conversation", "assistant", "streaming", "chat ui"),
		summary="Design streaming chat UX with resilient error handling and clear status.",
		why=(
			"Streaming hides latency only if users can see progress.",
			"Model errors are common, so recovery must be one click away.",
			"Users trust answers more when they can copy, retry, and see where replies come from.",
		),
		steps=(
			"Show first-time tips and example prompts in the empty state.",
			"Display a typing indicator until the first chunk, then stream text in place.",
			"Offer a stop button that keeps the partial answer.",
			"On errors keep the input, allow resending the last message, and explain any rate-limit backoff.",
			"Add a copy button per message and label which mode produced the reply.",
		),
		mistakes=(
			"Clearing the composer when a request fails.",
			"Auto-scrolling while the user is reading older messages.",
			"Discarding partial output when the user presses stop.",
		),
		example_language="ts",
		example_body=(
			"const controller = new AbortController();\n"
			"stopButton.onclick = () => controller.abort();\n"
			"await chat(messages, { signal: controller.signal, onChunk: (text) => draft.append(text) });"
		),
		follow_ups=(
			"Tell me which states you show today and I will add the missing ones with copy.",
			"Share your streaming code and I will check its cancellation handling.",
		),
	),
	TopicGuide(
		id="forms",
		title="form design",
		triggers=("form", "forms", "input", "fields", "validation", "form validation"),
		summary="Preserve the user's work and guide them to fix problems quickly.",
		why=(
			"Forms are where users invest effort, so losing input is the worst failure.",
			"Clear, early validation prevents a wall of errors at submit time.",
			"Autosave turns interruptions into minor inconveniences.",
		),
		steps=(
			"Give each field a helpful default or hint.",
			"Validate on blur and show the error next to the field.",
			"After submit, summarise errors at the top and link to each field.",
			"Preserve input on retry and autosave each section.",
			"Distinguish partial save from final submit.",
		),
		mistakes=(
			"Validating on every keystroke before the user finishes typing.",
			"Using placeholder text as the only label.",
			"Wiping the form after a server error.",
		),
		example_language="html",
		example_body=(
			"<label for=\"email\">Email</label>\n"
			"<input id=\"email\" type=\"email\" aria-describedby=\"email-error\" required>\n"
			"<p id=\"email-error\" role=\"alert\"></p>"
		),
		follow_ups=(
			"Share a sample field with its errors and I will rewrite the UX and copy.",
			"Tell me how long the form is and I will suggest how to split it.",
		),
	),
	TopicGuide(
		id="react",
		title="React state and rendering",
		triggers=("react", "usestate", "useeffect", "react hooks", "jsx", "re-render", "react component"),
		summary="Keep React state minimal, derive the rest, and let effects only sync with the outside world.",
		why=(
			"Every piece of duplicated state is a future inconsistency.",
			"Effects that compute values cause extra renders and race conditions.",
			"Stable keys and memoised callbacks keep large lists fast.",
		),
		steps=(
			"Identify the minimal state; derive everything else during render.",
			"Lift state to the closest common parent of the components that need it.",
			"Use effects only for subscriptions, timers, and network calls, and always return a cleanup.",
			"Abort in-flight requests in the cleanup to avoid setting state after unmount.",
			"Profile with React DevTools before reaching for memoisation.",
		),
		mistakes=(
			"Mirroring props into state.",
			"Missing dependencies in useEffect arrays.",
			"Using array indexes as keys for reorderable lists.",
		),
		example_language="jsx",
		example_body=(
			"useEffect(() => {\n"
			"  const controller = new AbortController();\n"
			"  fetch(url, { signal: controller.signal }).then((res) => res.json()).then(setData);\n"
			"  return () => controller.abort();\n"
			"}, [url]);"
		),
		follow_ups=(
			"Paste the component that re-renders too often and I will trace why.",
			"Tell me how your state is shared and I will suggest where it should live.",
		),
	),
	TopicGuide(
		id="python_async",
		title="Python asyncio",
		triggers=("asyncio", "async", "await", "event loop", "coroutine", "python async"),
		summary="Structure asyncio code as tasks with explicit timeouts and cancellation.",
		why=(
			"One blocking call stalls every coroutine on the loop.",
			"Unbounded waits turn slow dependencies into hung requests.",
			"Cancellation that is swallowed leaks tasks and sockets.",
		),
		steps=(
			"Keep blocking I/O off the loop; use async clients or run_in_executor.",
			"Wrap every external wait in a timeout.",
			"Create tasks with clear ownership and await or cancel them on every exit path.",
			"Let CancelledError propagate after cleanup instead of catching it broadly.",
			"Use a semaphore to bound concurrency against external services.",
		),
		mistakes=(
			"Calling time.sleep inside a coroutine.",
			"Catching Exception around await and hiding cancellation.",
			"Fire-and-forget tasks with no reference kept.",
		),
		example_language="python",
		example_body=(
			"async def fetch_all(client, urls):\n"
			"    limit = asyncio.Semaphore(5)\n"
			"\n"
			"    async def fetch(url):\n"
			"        async with limit:\n"
			"            return await asyncio.wait_for(client.get(url), timeout=5)\n"
			"\n"
			"    return await asyncio.gather(*(fetch(url) for url in urls))"
		),
		follow_ups=(
			"Paste the coroutine that hangs and I will look for the blocking call.",
			"Tell me how many concurrent requests you need and I will size the semaphore.",
		),
	),
	TopicGuide(
		id="sql_indexes",
		title="SQL indexing",
		triggers=("sql", "index", "indexes", "query plan", "slow query", "postgres", "database"),
		summary="Index for your real query patterns and confirm with the query plan.",
		why=(
			"A missing index turns a lookup into a full table scan.",
			"Every extra index slows down writes and takes space.",
			"The planner only uses an index when the query shape matches it.",
		),
		steps=(
			"Collect the slowest queries from logs or pg_stat_statements.",
			"Run EXPLAIN ANALYZE to see scans, row estimates, and timings.",
			"Add composite indexes that match WHERE and ORDER BY column order.",
			"Re-run the plan and compare actual timings.",
			"Drop indexes that are never used.",
		),
		mistakes=(
			"Indexing every column separately.",
			"Wrapping indexed columns in functions inside WHERE.",
			"Trusting estimates without EXPLAIN ANALYZE.",
		),
		example_language="sql",
		example_body=(
			"CREATE INDEX CONCURRENTLY idx_orders_customer_created\n"
			"    ON orders (customer_id, created_at DESC);\n"
			"EXPLAIN ANALYZE SELECT * FROM orders WHERE customer_id = 42 ORDER BY created_at DESC LIMIT 20;"
		),
		follow_ups=(
			"Paste the slow query and its plan and I will suggest an index.",
			"Tell me your read/write ratio and I will weigh the index cost.",
		),
	),
	TopicGuide(
		id="git",
		title="Git workflows",
		triggers=("git", "rebase", "merge conflict", "branch", "commit", "pull request"),
		summary="Keep branches short-lived and history readable so merges stay boring.",
		why=(
			"Long-lived branches accumulate conflicts.",
			"Small, focused commits make review and bisecting fast.",
			"A predictable workflow lowers the cost of every release.",
		),
		steps=(
			"Branch from an up-to-date main for each change.",
			"Commit small, self-contained steps with messages that say what changed.",
			"Rebase onto main before opening the pull request.",
			"Resolve conflicts file by file and re-run tests after each resolution.",
			"Squash or merge according to the team convention, then delete the branch.",
		),
		mistakes=(
			"Force-pushing shared branches.",
			"Mixing refactors and behaviour changes in one commit.",
			"Resolving conflicts without re-running tests.",
		),
		example_language="bash",
		example_body=(
			"git fetch origin\n"
			"git rebase origin/main\n"
			"# fix conflicts, then\n"
			"git add -A && git rebase --continue"
		),
		follow_ups=(
			"Paste the conflict markers and I will walk through the resolution.",
			"Tell me your team size and I will suggest a branching convention.",
		),
	),
	TopicGuide(
		id="docker",
		title="Docker images",
		triggers=("docker", "dockerfile", "container", "docker compose", "image size"),
		summary="Build small, cache-friendly images that run the same everywhere.",
		why=(
			"Layer caching makes rebuilds seconds instead of minutes.",
			"Smaller images pull faster and expose less attack surface.",
			"Pinned versions keep builds reproducible.",
		),
		steps=(
			"Start from a slim, pinned base image.",
			"Copy dependency manifests first and install before copying source.",
			"Use a multi-stage build to keep compilers out of the runtime image.",
			"Run as a non-root user and define a health check.",
			"Add a .dockerignore so the build context stays small.",
		),
		mistakes=(
			"Copying the whole repo before installing dependencies.",
			"Using the latest tag for base images.",
			"Baking secrets into image layers.",
		),
		example_language="dockerfile",
		example_body=(
			"FROM python:3.12-slim AS runtime\n"
			"WORKDIR /app\n"
			"COPY requirements.txt .\n"
			"RUN pip install --no-cache-dir -r requirements.txt\n"
			"COPY . .\n"
			"USER 1000\n"
			"CMD [\"uvicorn\", \"main:app\", \"--host\", \"0.0.0.0\"]"
		),
		follow_ups=(
			"Paste your Dockerfile and I will point out cache-breaking steps.",
			"Tell me your deploy target and I will suggest a base image.",
		),
	),
	TopicGuide(
		id="api_design",
		title="HTTP API design",
		triggers=("api", "rest api", "endpoint", "http status", "api design", "pagination"),
		summary="Design predictable endpoints with consistent envelopes, errors, and pagination.",
		why=(
			"Consistent shapes let clients share one error handler.",
			"Clear status codes tell callers whether to retry.",
			"Pagination and timeouts protect the service under load.",
		),
		steps=(
			"Name resources with nouns and keep verbs in HTTP methods.",
			"Return one envelope shape for success and errors, with a machine-readable code.",
			"Use 4xx for caller mistakes and 5xx for server faults, and document retryable codes.",
			"Paginate list endpoints with cursors and a hard page-size cap.",
			"Version the API before the first breaking change.",
		),
		mistakes=(
			"Returning 200 with an error body.",
			"Unbounded list endpoints.",
			"Leaking stack traces in error messages.",
		),
		example_language="json",
		example_body=(
			"{\n"
			"  \"ok\": false,\n"
			"  \"error\": {\"code\": \"validation_error\", \"message\": \"Request validation failed.\"}\n"
			"}"
		),
		follow_ups=(
			"Paste one endpoint contract and I will review it against these rules.",
			"Tell me who calls the API and I will suggest a versioning strategy.",
		),
	),
)


@lru_cache(maxsize=1)
def default_catalog() -> TopicCatalog:
	return TopicCatalog(_DEFAULT_GUIDES)
