from __future__ import annotations

import logging
import random
import re
from typing import List, Optional

from chatrelay.backend import constants
from chatrelay.backend.transport.cancellation import CancellationSignal
from chatrelay.backend.transport.config import Pacing
from chatrelay.backend.transport.frames import TextCallback, deliver_text


logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\s*\S+\s*")
_SENTENCE_END_RE = re.compile(r"[.!?:](?:[\"')\]*_`]*)\s+$")


def _ends_piece(token: str) -> bool:
	return "\n" in token or _SENTENCE_END_RE.search(token) is not None


def split_stream_pieces(text: str, rng: Optional[random.Random] = None) -> List[str]:
	"""Cut text into word-bounded pieces; joining the pieces gives the text back."""
	rng = rng or random.Random()
	tokens = _WORD_RE.findall(text)
	if not tokens:
		return [text] if text else []
	low, high = constants.CHUNK_WORDS_RANGE
	pieces: List[str] = []
	index = 0
	while index < len(tokens):
		target = rng.randint(low, high)
		piece: List[str] = []
		while index < len(tokens) and len(piece) < target:
			token = tokens[index]
			piece.append(token)
			index += 1
			if _ends_piece(token):
				break
		pieces.append("".join(piece))
	return pieces


async def stream_text(
	text: str,
	on_chunk: TextCallback,
	*,
	signal: Optional[CancellationSignal] = None,
	quality_mode: bool = True,
	pacing: Optional[Pacing] = None,
	rng: Optional[random.Random] = None,
) -> int:
	signal = signal or CancellationSignal()
	pacing = pacing or Pacing()
	rng = rng or random.Random()

	await signal.sleep(pacing.thinking_delay(quality_mode))
	pieces = split_stream_pieces(text, rng)
	low, high = pacing.chunk_delay_s
	delivered = 0
	for position, piece in enumerate(pieces):
		signal.raise_if_cancelled()
		await deliver_text(on_chunk, piece)
		delivered += 1
		if position + 1 < len(pieces):
			signal.raise_if_cancelled()
			await signal.sleep(rng.uniform(low, high))
	logger.debug("Simulated stream delivered %d pieces", delivered)
	return delivered
