from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Optional, Set, TypeVar

from chatrelay.backend.transport.types import (
	TIMED_OUT,
	USER_CANCELLED,
	AbortReason,
	RemoteTimeout,
	TransportCancelled,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationSignal:
	"""Caller-owned stop button shared by every suspension point of one request."""

	def __init__(self) -> None:
		self._event = asyncio.Event()
		self._reason: Optional[AbortReason] = None

	@property
	def cancelled(self) -> bool:
		return self._event.is_set()

	@property
	def reason(self) -> Optional[AbortReason]:
		return self._reason

	def cancel(self, reason: AbortReason = USER_CANCELLED) -> None:
		if self._event.is_set():
			return
		self._reason = reason
		self._event.set()

	def raise_if_cancelled(self) -> None:
		if self._event.is_set():
			raise TransportCancelled(self._reason or USER_CANCELLED)

	async def wait(self) -> None:
		await self._event.wait()

	async def sleep(self, seconds: float) -> None:
		self.raise_if_cancelled()
		if seconds <= 0:
			await asyncio.sleep(0)
			self.raise_if_cancelled()
			return
		try:
			await asyncio.wait_for(self._event.wait(), timeout=seconds)
		except asyncio.TimeoutError:
			return
		self.raise_if_cancelled()


class TimeoutSupervisor:
	"""Races remote work against the caller's signal and a single deadline.

	The deadline is fixed when the context is entered, so a streamed reply
	shares one deadline across every read. After a trigger fires, ``reason``
	tells the coordinator who stopped the request: ``user_cancelled`` is
	re-raised as ``TransportCancelled`` and ``timed_out`` as ``RemoteTimeout``.
	"""

	def __init__(self, signal: Optional[CancellationSignal], timeout_s: float):
		self._signal = signal
		self.timeout_s = timeout_s
		self.reason: Optional[AbortReason] = None
		self._deadline: Optional[float] = None
		self._pending: Set[asyncio.Future] = set()
		self._closed = False

	async def __aenter__(self) -> "TimeoutSupervisor":
		self._deadline = asyncio.get_running_loop().time() + self.timeout_s
		return self

	async def __aexit__(self, exc_type, exc, tb) -> bool:
		await self.close()
		return False

	@property
	def closed(self) -> bool:
		return self._closed

	def remaining(self) -> float:
		if self._deadline is None:
			return self.timeout_s
		return max(0.0, self._deadline - asyncio.get_running_loop().time())

	def _fire(self, reason: AbortReason) -> None:
		if self.reason is None:
			self.reason = reason
			logger.debug("Supervisor fired: %s", reason)

	def _abort(self, reason: AbortReason) -> Exception:
		self._fire(reason)
		if reason == USER_CANCELLED:
			return TransportCancelled(USER_CANCELLED)
		return RemoteTimeout(timeout_s=self.timeout_s)

	async def run(self, awaitable: Awaitable[T]) -> T:
		if self._closed:
			raise RuntimeError("TimeoutSupervisor is closed.")
		if self._signal is not None and self._signal.cancelled:
			_discard(awaitable)
			raise self._abort(USER_CANCELLED)
		if self.reason == TIMED_OUT or self.remaining() <= 0:
			_discard(awaitable)
			raise self._abort(TIMED_OUT)

		work = asyncio.ensure_future(awaitable)
		waiters: Set[asyncio.Future] = {work}
		stop: Optional[asyncio.Future] = None
		if self._signal is not None:
			stop = asyncio.ensure_future(self._signal.wait())
			waiters.add(stop)
		self._pending.update(waiters)
		try:
			done, _ = await asyncio.wait(waiters, timeout=self.remaining(), return_when=asyncio.FIRST_COMPLETED)
			if stop is not None and stop in done:
				raise self._abort(USER_CANCELLED)
			if work in done:
				return work.result()
			raise self._abort(TIMED_OUT)
		finally:
			await self._release(waiters)

	async def _release(self, futures: Set[Any]) -> None:
		for future in futures:
			if not future.done():
				future.cancel()
		await asyncio.gather(*futures, return_exceptions=True)
		self._pending.difference_update(futures)

	async def close(self) -> None:
		if self._closed:
			return
		self._closed = True
		if self._pending:
			await self._release(set(self._pending))


def _discard(awaitable: Awaitable[Any]) -> None:
	close = getattr(awaitable, "close", None)
	if asyncio.iscoroutine(awaitable) and callable(close):
		close()
