"""
Mindforge — AI Engine
=====================
The text-oracle boundary used by every synthesis step.

  - HybridOracle:  Groq + Gemini with automatic failover
  - GuardedOracle: shared rate limiter + per-call timeout + error normalization
  - ask_oracle:    one oracle round-trip turned into ``Ok(parsed)`` / ``Fallback(reason)``
  - Robust JSON extraction for fenced / chatty model output
"""

import json
import re
import logging
import asyncio
from typing import Any, Callable, Optional, Protocol, TypeVar

import google.generativeai as genai
from groq import AsyncGroq

from mindforge.core.config import Settings, settings as default_settings
from mindforge.core.errors import (
    Fallback,
    Ok,
    OracleError,
    OracleMalformed,
    OracleOutcome,
    OracleTimeout,
    OracleUnavailable,
)
from mindforge.core.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Reserved by the wider system to mean "no usable content".
INSUFFICIENT = "INSUFFICIENT"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# SYSTEM PROMPT — GROUNDING + STRICT JSON
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

GROUNDING_PREAMBLE = (
    "CRITICAL RULES:\n"
    "1. You MUST base everything strictly on the provided text.\n"
    "2. Do NOT use any external knowledge.\n"
    "3. Do NOT hallucinate or invent facts.\n"
    "4. Output ONLY valid JSON — no markdown fences, no commentary.\n"
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# JSON RECOVERY
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def clean_and_parse_json(raw_text: str) -> Any:
    """
    Robust JSON extractor:
    1. Strip markdown code fences (```json ... ```)
    2. Try the text as-is, then the outermost { ... } block, then [ ... ]
    3. Return the first candidate json.loads accepts
    Raises ValueError on failure with diagnostic info.
    """
    if not raw_text or not raw_text.strip():
        raise ValueError("Empty AI response received")

    cleaned = raw_text.strip()
    if cleaned == INSUFFICIENT:
        raise ValueError("AI reported insufficient content")

    # Strategy 1: Remove ```json ... ``` wrapper
    fence_match = re.search(r"```(?:json)?\s*\n?(.*?)\n?\s*```", cleaned, re.DOTALL)
    if fence_match:
        cleaned = fence_match.group(1).strip()

    # Strategy 2: Object span first, then array span
    candidates = [cleaned]
    for opening, closing in (("{", "}"), ("[", "]")):
        start, end = cleaned.find(opening), cleaned.rfind(closing)
        if start != -1 and end > start:
            span = cleaned[start:end + 1]
            if span not in candidates:
                candidates.append(span)

    last_error: Exception | None = None
    for candidate in candidates:
        try:
            return json.loads(candidate)
        except (json.JSONDecodeError, RecursionError) as e:
            last_error = e

    logger.error(f"JSON parse failed. Raw (first 500 chars): {raw_text[:500]}")
    raise ValueError(f"AI returned invalid JSON: {last_error}")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ORACLE BOUNDARY
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class TextOracle(Protocol):
    async def generate(self, prompt: str) -> str:
        ...


class HybridOracle:
    """
    Groq (Llama 3) and Gemini behind one ``generate`` call.
    In 'hybrid' mode the primary provider is tried first, then the other.
    """

    def __init__(self, config: Optional[Settings] = None, primary: str = "gemini"):
        self.config = config or default_settings
        self.primary = primary
        self.groq_client: Optional[AsyncGroq] = None

        logger.info(f"[ORACLE] Provider mode: {self.config.AI_PROVIDER}")

        if self.config.GROQ_API_KEY:
            self.groq_client = AsyncGroq(api_key=self.config.GROQ_API_KEY)
            logger.info("[ORACLE] ✓ Groq client ready")
        else:
            logger.warning("[ORACLE] ✗ Groq API key missing")

        if self.config.GOOGLE_API_KEY:
            genai.configure(api_key=self.config.GOOGLE_API_KEY, transport="rest")
            logger.info("[ORACLE] ✓ Gemini client ready")
        else:
            logger.warning("[ORACLE] ✗ Google API key missing")

    async def _call_groq(self, prompt: str) -> str:
        """Call Groq with JSON mode and a low temperature."""
        if not self.groq_client:
            raise OracleUnavailable("Groq API Key missing")

        logger.info(f"[ORACLE] Calling Groq ({self.config.GROQ_MODEL})...")
        completion = await self.groq_client.chat.completions.create(
            model=self.config.GROQ_MODEL,
            messages=[
                {"role": "system", "content": GROUNDING_PREAMBLE},
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
            temperature=0.2,
            max_tokens=4000,
        )
        result = completion.choices[0].message.content
        logger.info("[ORACLE] ✓ Groq call succeeded")
        return result or ""

    async def _call_gemini(self, prompt: str) -> str:
        """Call Gemini with JSON mode and a low temperature."""
        if not self.config.GOOGLE_API_KEY:
            raise OracleUnavailable("Google API Key missing")

        logger.info(f"[ORACLE] Calling Gemini ({self.config.GEMINI_MODEL})...")
        model = genai.GenerativeModel(
            model_name=self.config.GEMINI_MODEL,
            generation_config={
                "response_mime_type": "application/json",
                "temperature": 0.2,
            },
        )
        full_prompt = f"{GROUNDING_PREAMBLE}\n\nUser Task:\n{prompt}"
        response = await asyncio.to_thread(model.generate_content, full_prompt)
        logger.info("[ORACLE] ✓ Gemini call succeeded")
        return response.text

    async def generate(self, prompt: str) -> str:
        """Execute the call with automatic failover across providers."""
        provider = self.config.AI_PROVIDER

        if provider == "groq":
            callers = [("Groq", self._call_groq)]
        elif provider == "gemini":
            callers = [("Gemini", self._call_gemini)]
        else:  # hybrid
            if self.primary == "groq":
                callers = [("Groq", self._call_groq), ("Gemini", self._call_gemini)]
            else:
                callers = [("Gemini", self._call_gemini), ("Groq", self._call_groq)]

        last_error = None
        for name, caller in callers:
            try:
                return await caller(prompt)
            except Exception as e:
                last_error = e
                logger.warning(f"[ORACLE] {name} failed: {str(e)[:200]}. Trying next...")

        raise OracleUnavailable(f"All AI providers failed. Last error: {last_error}")


class GuardedOracle:
    """
    Wraps any TextOracle with the shared RateLimiter and a per-call timeout.
    Every failure leaves here as an OracleError subclass.
    """

    def __init__(self, oracle: TextOracle, limiter: RateLimiter, timeout: Optional[float] = None):
        self.oracle = oracle
        self.limiter = limiter
        self.timeout = timeout

    async def generate(self, prompt: str) -> str:
        await self.limiter.acquire()
        try:
            if self.timeout:
                text = await asyncio.wait_for(self.oracle.generate(prompt), timeout=self.timeout)
            else:
                text = await self.oracle.generate(prompt)
        except asyncio.TimeoutError as e:
            raise OracleTimeout(f"Oracle timed out after {self.timeout}s") from e
        except OracleError:
            raise
        except Exception as e:
            raise OracleUnavailable(f"Oracle call failed: {e}") from e

        if not isinstance(text, str) or not text.strip():
            raise OracleMalformed("Oracle returned an empty response")
        if text.strip() == INSUFFICIENT:
            raise OracleMalformed("Oracle reported insufficient content")
        return text


def build_default_oracle(
    config: Optional[Settings] = None,
    limiter: Optional[RateLimiter] = None,
) -> GuardedOracle:
    """HybridOracle guarded by the configured delay and timeout."""
    config = config or default_settings
    limiter = limiter or RateLimiter(min_delay=config.ORACLE_MIN_DELAY_SECONDS)
    return GuardedOracle(HybridOracle(config), limiter, timeout=config.AI_TIMEOUT_SECONDS)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TAGGED ROUND-TRIP
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

async def ask_oracle(
    oracle: TextOracle,
    prompt: str,
    parse: Callable[[str], T],
    tag: str = "ORACLE",
) -> OracleOutcome:
    """
    Send ``prompt`` and run ``parse`` on the answer.
    ``parse`` raises ValueError (or TypeError/KeyError/RecursionError) for
    non-conforming output.
    """
    try:
        raw = await oracle.generate(prompt)
    except OracleError as e:
        logger.warning(f"[{tag}] ✗ Oracle failed: {e}")
        return Fallback(f"oracle: {e}", e)
    except Exception as e:
        logger.warning(f"[{tag}] ✗ Oracle raised {type(e).__name__}: {e}")
        return Fallback(f"oracle: {e}", OracleUnavailable(str(e)))

    try:
        return Ok(parse(raw))
    except (ValueError, TypeError, KeyError, RecursionError) as e:
        logger.warning(f"[{tag}] ✗ Malformed response: {e}")
        return Fallback(f"malformed: {e}", OracleMalformed(str(e)))
