"""
Mindforge — Content Segmenter
=============================
Splits raw text into thematically coherent segments.

The oracle is asked first; a deterministic sentence-accumulating splitter
takes over whenever the oracle fails or answers with anything other than a
list of strings.
"""

import re
import logging
import textwrap
from typing import List, Optional

from mindforge.ai_engine import TextOracle, ask_oracle, clean_and_parse_json
from mindforge.core.config import settings
from mindforge.core.errors import Ok

logger = logging.getLogger(__name__)

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?؟。])\s+|\n+")

SEGMENT_PROMPT = (
    "You are a knowledge-structuring expert.\n"
    "Split the SOURCE TEXT into at most {max_segments} thematically self-contained segments.\n"
    "Each segment must keep the wording of the source and cover one coherent theme.\n\n"
    "Output MUST be valid JSON matching this EXACT schema:\n"
    '{{"segments": ["first segment text", "second segment text"]}}\n\n'
    "SOURCE TEXT:\n{text}"
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TEXT CHUNKING
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def chunk_text(text: str, chunk_size: int | None = None) -> list[str]:
    """Split text into chunks respecting sentence boundaries."""
    chunk_size = chunk_size or settings.CHUNK_SIZE
    if len(text) <= chunk_size:
        return [text]

    chunks: list[str] = []
    current = ""
    sentences = re.split(r'(?<=[.!?؟。])\s+', text)

    for sentence in sentences:
        if len(current) + len(sentence) + 1 > chunk_size and current:
            chunks.append(current.strip())
            current = sentence
        else:
            current = f"{current} {sentence}" if current else sentence

    if current.strip():
        chunks.append(current.strip())

    return chunks if chunks else [text]


def parse_segments(raw: str, max_segments: int) -> List[str]:
    """Accept ``{"segments": [...]}`` or a bare JSON array of strings."""
    parsed = clean_and_parse_json(raw)
    if isinstance(parsed, dict):
        parsed = parsed.get("segments")
    if not isinstance(parsed, list):
        raise ValueError("segments response is not a list")
    if not all(isinstance(item, str) for item in parsed):
        raise ValueError("segments response contains non-string items")

    segments = [item.strip() for item in parsed if item.strip()]
    if not segments:
        raise ValueError("segments response is empty")
    return segments[:max_segments]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SEGMENTER
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class ContentSegmenter:

    def __init__(
        self,
        oracle: TextOracle,
        max_segments: int = settings.MAX_SEGMENTS,
        segment_chars: int = settings.SEGMENT_CHARS,
        min_segment_chars: int = settings.MIN_SEGMENT_CHARS,
        chunk_size: int = settings.CHUNK_SIZE,
        input_chunks: int = settings.SEGMENTER_INPUT_CHUNKS,
    ):
        self.oracle = oracle
        self.max_segments = max_segments
        self.segment_chars = segment_chars
        self.min_segment_chars = min_segment_chars
        self.chunk_size = chunk_size
        self.input_chunks = input_chunks

    async def segment(self, text: str, max_segments: Optional[int] = None) -> List[str]:
        """
        Return at most ``max_segments`` segments.
        Empty or whitespace-only input yields ``[]`` without calling the oracle;
        any other input yields at least one segment.
        """
        if not text or not text.strip():
            return []

        limit = max(1, max_segments or self.max_segments)
        source_text = " ".join(chunk_text(text.strip(), self.chunk_size)[:self.input_chunks])
        prompt = SEGMENT_PROMPT.format(max_segments=limit, text=source_text)

        outcome = await ask_oracle(
            self.oracle,
            prompt,
            lambda raw: parse_segments(raw, limit),
            tag="SEGMENTER",
        )
        if isinstance(outcome, Ok):
            logger.info(f"[SEGMENTER] ✓ Oracle produced {len(outcome.value)} segments")
            return outcome.value

        segments = self.fallback_segments(text, limit)
        logger.warning(
            f"[SEGMENTER] Falling back to sentence splitting ({outcome.reason}); "
            f"{len(segments)} segments"
        )
        return segments

    def fallback_segments(self, text: str, max_segments: Optional[int] = None) -> List[str]:
        """Deterministic splitter: no external calls."""
        stripped = (text or "").strip()
        if not stripped:
            return []

        limit = max(1, max_segments or self.max_segments)
        budget = self.segment_chars

        pieces: List[str] = []
        for sentence in SENTENCE_BOUNDARY.split(stripped):
            sentence = sentence.strip()
            if not sentence:
                continue
            if len(sentence) > budget:
                pieces.extend(textwrap.wrap(sentence, budget))
            else:
                pieces.append(sentence)

        segments: List[str] = []
        current = ""
        for piece in pieces:
            if current and len(current) + 1 + len(piece) > budget:
                segments.append(current)
                current = piece
            else:
                current = f"{current} {piece}" if current else piece
        if current:
            segments.append(current)

        segments = [s for s in segments if len(s) >= self.min_segment_chars]
        if not segments:
            # Too short to split; the whole text is the only segment.
            segments = [stripped[:budget]]
        return segments[:limit]
