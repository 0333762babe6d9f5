"""LLM API wrapper with retry, cost tracking, and JSON response parsing.

Model names select the SDK: "anthropic:<model>" uses the Anthropic SDK,
"openai:<model>" or a bare model name uses the OpenAI SDK. A custom
base_url always goes through the OpenAI-compatible format.
"""

import json
import re
import time
import hashlib
import os
import threading
import unicodedata
from typing import Optional

from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from ..core.logger import PipelineLogger
from ..core.errors import LLMAPIError
from ..core.types import UsageStats

# Import both SDKs — availability determines which format is used
_RETRYABLE_EXCEPTIONS = []

try:
    import anthropic
    _RETRYABLE_EXCEPTIONS.extend([anthropic.RateLimitError, anthropic.APIStatusError])
    HAS_ANTHROPIC = True
except ImportError:
    anthropic = None
    HAS_ANTHROPIC = False

try:
    import openai as _openai_mod
    from openai import OpenAI
    _RETRYABLE_EXCEPTIONS.extend([_openai_mod.RateLimitError, _openai_mod.APIStatusError])
    HAS_OPENAI = True
except ImportError:
    _openai_mod = None
    OpenAI = None
    HAS_OPENAI = False

_RETRYABLE_EXCEPTIONS = tuple(_RETRYABLE_EXCEPTIONS) if _RETRYABLE_EXCEPTIONS else (ConnectionError,)


class CreditExhaustedError(Exception):
    """Raised when API credits are depleted — stops the run immediately."""
    pass


def parse_model_name(model_name: str) -> tuple[str, str]:
    """Split "provider:model" into (provider, model). Bare names are OpenAI."""
    if model_name.startswith("anthropic:"):
        return "anthropic", model_name[len("anthropic:"):]
    if model_name.startswith("openai:"):
        return "openai", model_name[len("openai:"):]
    return "openai", model_name


class LLMClient:
    PRICING = {
        "gpt-4.1-2025-04-14": {"input": 2.0, "output": 8.0},
        "gpt-4.1-mini-2025-04-14": {"input": 0.40, "output": 1.60},
        "claude-sonnet-4-5-20250929": {"input": 3.0, "output": 15.0},
        "claude-sonnet-4-20250514": {"input": 3.0, "output": 15.0},
        "claude-haiku-4-5-20251001": {"input": 0.80, "output": 4.0},
    }

    def __init__(self, api_key: str, model: str = "openai:gpt-4.1-2025-04-14",
                 base_url: Optional[str] = None,
                 logger: Optional[PipelineLogger] = None, cache_dir: Optional[str] = None):
        self.provider, self.model = parse_model_name(model)
        if not api_key:
            key_name = "ANTHROPIC_API_KEY" if self.provider == "anthropic" else "OPENAI_API_KEY"
            raise LLMAPIError(f"{key_name} is not set", retryable=False)

        self.base_url = base_url
        self.logger = logger or PipelineLogger()
        self.cache_dir = cache_dir

        # Choose SDK based on provider and base_url
        if base_url or self.provider == "openai":
            if not HAS_OPENAI:
                raise ImportError(
                    "openai package required for OpenAI models or custom base_url. "
                    "Run: pip install openai"
                )
            if base_url:
                api_base = base_url.rstrip("/")
                if not api_base.endswith("/v1"):
                    api_base = api_base + "/v1"
                self.client = OpenAI(api_key=api_key, base_url=api_base)
            else:
                self.client = OpenAI(api_key=api_key)
            self._use_openai_format = True
        else:
            if not HAS_ANTHROPIC:
                raise ImportError(
                    "anthropic package required. Run: pip install anthropic"
                )
            self.client = anthropic.Anthropic(api_key=api_key)
            self._use_openai_format = False

        # Batches call this client from worker threads
        self._lock = threading.Lock()
        self._local = threading.local()
        self.total_input_tokens = 0
        self.total_output_tokens = 0
        self.total_tokens = 0
        self.total_cost_usd = 0.0
        self.call_count = 0
        self._consecutive_credit_errors = 0
        self._MAX_CREDIT_ERRORS = 3

    @property
    def last_usage(self) -> UsageStats:
        """Usage of the most recent call made from the current thread."""
        return getattr(self._local, "usage", UsageStats())

    def _sanitize_api_text(self, text: str) -> str:
        """Last-resort text cleaning before sending to API.

        Removes characters known to cause 500 errors on proxies
        (null, BOM, control chars, surrogates, PUA).
        """
        if not text:
            return ""

        text = text.encode("utf-8", errors="replace").decode("utf-8", errors="replace")

        # NFC normalize (Arabic and other combining marks)
        text = unicodedata.normalize("NFC", text)

        text = text.replace("\x00", "")
        text = text.replace("\ufeff", "")
        text = re.sub(r"[\x01-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]", "", text)
        text = re.sub(r"[\ud800-\udfff]", "", text)
        text = re.sub(r"[\ue000-\uf8ff]", "", text)
        text = re.sub(r"[\ufffd-\uffff]", "", text)

        return text

    def _cache_key(self, system: str, user: str) -> str:
        return hashlib.sha256((self.model + system + user).encode()).hexdigest()[:16]

    def _get_cached(self, key: str) -> Optional[str]:
        if not self.cache_dir:
            return None
        path = os.path.join(self.cache_dir, f"llm_{key}.json")
        if os.path.exists(path):
            with open(path, 'r', encoding='utf-8') as f:
                return json.load(f).get("response")
        return None

    def _set_cache(self, key: str, response: str) -> None:
        if not self.cache_dir:
            return
        os.makedirs(self.cache_dir, exist_ok=True)
        path = os.path.join(self.cache_dir, f"llm_{key}.json")
        with open(path, 'w', encoding='utf-8') as f:
            json.dump({"response": response}, f, ensure_ascii=False)

    def _check_credit_error(self, error: Exception, phase: str = None) -> None:
        """Detect credit/billing errors and raise CreditExhaustedError after threshold."""
        error_msg = str(error).lower()
        credit_phrases = [
            "credit balance is too low",
            "insufficient_quota",
            "insufficient credits",
            "payment required",
            "billing hard limit",
            "quota exceeded",
        ]
        if any(phrase in error_msg for phrase in credit_phrases):
            with self._lock:
                self._consecutive_credit_errors += 1
                count = self._consecutive_credit_errors
            self.logger.warn(
                f"Credit error ({count}/{self._MAX_CREDIT_ERRORS}): {error}",
                phase=phase,
            )
            if count >= self._MAX_CREDIT_ERRORS:
                raise CreditExhaustedError(
                    f"API credits exhausted after {count} "
                    f"consecutive failures. Add credits and retry."
                )

    def _call_api(self, system: str, user: str, max_tokens: int,
                  temperature: float) -> tuple:
        """Internal: call API using the appropriate SDK format.

        Returns (text, input_tokens, output_tokens, total_tokens).
        """
        if self._use_openai_format:
            response = self.client.chat.completions.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            )
            text = response.choices[0].message.content
            inp_tok = getattr(response.usage, 'prompt_tokens', 0) or 0
            out_tok = getattr(response.usage, 'completion_tokens', 0) or 0
            total_tok = getattr(response.usage, 'total_tokens', 0) or (inp_tok + out_tok)
        else:
            response = self.client.messages.create(
                model=self.model, max_tokens=max_tokens,
                temperature=temperature, system=system,
                messages=[{"role": "user", "content": user}],
            )
            text = response.content[0].text
            inp_tok = response.usage.input_tokens
            out_tok = response.usage.output_tokens
            total_tok = inp_tok + out_tok
        return text, inp_tok, out_tok, total_tok

    @retry(
        stop=stop_after_attempt(5),
        wait=wait_exponential(multiplier=2, min=4, max=120),
        retry=retry_if_exception_type(_RETRYABLE_EXCEPTIONS),
    )
    def call(self, system: str, user: str, max_tokens: int = 4096,
             temperature: float = 0.0, phase: str = None) -> str:
        """Call the LLM. Returns response text."""
        system = self._sanitize_api_text(system)
        user = self._sanitize_api_text(user)
        self._local.usage = UsageStats()

        cache_key = self._cache_key(system, user)
        cached = self._get_cached(cache_key)
        if cached:
            self.logger.debug(f"Cache hit: {cache_key}", phase=phase)
            return cached

        start = time.time()
        try:
            text, inp_tok, out_tok, total_tok = self._call_api(
                system, user, max_tokens, temperature
            )
        except Exception as e:
            is_rate_limit = (
                (HAS_ANTHROPIC and isinstance(e, anthropic.RateLimitError))
                or (HAS_OPENAI and isinstance(e, _openai_mod.RateLimitError))
            )
            if is_rate_limit:
                self._check_credit_error(e, phase)
                self.logger.warn("Rate limited, retrying...", phase=phase)
                raise

            is_api_error = (
                (HAS_ANTHROPIC and isinstance(e, anthropic.APIStatusError))
                or (HAS_OPENAI and isinstance(e, _openai_mod.APIStatusError))
            )
            if is_api_error:
                self._check_credit_error(e, phase)
                status_code = getattr(e, 'status_code', 0)
                if status_code >= 500:
                    self.logger.warn(f"Server error ({status_code}), retrying...", phase=phase)
                    raise
                raise LLMAPIError(str(e), status_code=status_code, retryable=False)

            raise

        pricing = self.PRICING.get(self.model, {"input": 3.0, "output": 15.0})
        cost = (inp_tok * pricing["input"] + out_tok * pricing["output"]) / 1_000_000
        self._local.usage = UsageStats(
            input_tokens=inp_tok, output_tokens=out_tok, total_tokens=total_tok,
        )

        with self._lock:
            self._consecutive_credit_errors = 0
            self.total_input_tokens += inp_tok
            self.total_output_tokens += out_tok
            self.total_tokens += total_tok
            self.total_cost_usd += cost
            self.call_count += 1
            call_number = self.call_count
            total_cost = self.total_cost_usd
            total_tokens = self.total_tokens

        self.logger.debug(
            f"API #{call_number} [{self.model}]: "
            f"{inp_tok}+{out_tok} tok, ${cost:.4f}, {time.time()-start:.1f}s",
            phase=phase)
        self.logger.report_cost(total_cost, total_tokens)

        self._set_cache(cache_key, text)
        return text

    def call_json(self, system: str, user: str, max_tokens: int = 4096,
                  phase: str = None) -> dict | list:
        """Call the LLM expecting JSON. Strips code fences, repairs truncation."""
        raw = self.call(system, user, max_tokens=max_tokens, temperature=0.0,
                        phase=phase)
        return self.parse_json(raw, phase=phase)

    def parse_json(self, raw: str, phase: str = None) -> dict | list:
        text = (raw or "").strip()

        # Strip ```json ... ```
        if text.startswith("```"):
            text = text.split("\n", 1)[1] if "\n" in text else text[3:]
        if text.endswith("```"):
            text = text[:-3]
        text = text.strip()

        try:
            return json.loads(text)
        except json.JSONDecodeError:
            # Fallback 1: extract JSON from mixed content
            match = re.search(r'[\[{].*[\]}]', text, re.DOTALL)
            if match:
                try:
                    return json.loads(match.group())
                except json.JSONDecodeError:
                    pass

            # Fallback 2: repair truncated JSON (missing closing brackets)
            repaired = self._repair_truncated_json(text)
            if repaired is not None:
                self.logger.warn("Repaired truncated JSON response", phase=phase)
                return repaired

            raise LLMAPIError(f"Non-JSON response: {text[:200]}...", retryable=True)

    @staticmethod
    def _repair_truncated_json(text: str) -> dict | list | None:
        """Attempt to repair JSON truncated by the max_tokens limit.

        Handles cases like: {"items": [{"text": "A"}, {"text": "B"
        by closing open strings, arrays, and objects.
        """
        start = -1
        for i, ch in enumerate(text):
            if ch in ('{', '['):
                start = i
                break
        if start < 0:
            return None

        fragment = text[start:]

        in_string = False
        escape_next = False
        stack = []

        for ch in fragment:
            if escape_next:
                escape_next = False
                continue
            if ch == '\\' and in_string:
                escape_next = True
                continue
            if ch == '"':
                in_string = not in_string
                continue
            if in_string:
                continue
            if ch in ('{', '['):
                stack.append('}' if ch == '{' else ']')
            elif ch in ('}', ']'):
                if stack and stack[-1] == ch:
                    stack.pop()

        if not stack:
            return None  # Not truncated or not repairable

        trimmed = fragment.rstrip()
        if in_string:
            trimmed += '"'

        trimmed = re.sub(r'[,:\s]+$', '', trimmed)

        closing = ''.join(reversed(stack))
        candidate = trimmed + closing

        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            return None

    def get_cost_summary(self) -> dict:
        return {
            "calls": self.call_count,
            "input_tokens": self.total_input_tokens,
            "output_tokens": self.total_output_tokens,
            "total_tokens": self.total_tokens,
            "cost_usd": round(self.total_cost_usd, 4),
        }
