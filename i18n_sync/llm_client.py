"""Text-generation service adapters used by the batch orchestrator."""
import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence

import jsonschema
import tiktoken
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    OpenAIError,
    RateLimitError,
)
from openai.types.chat import (
    ChatCompletionSystemMessageParam,
    ChatCompletionUserMessageParam,
)

from i18n_sync.errors import MalformedResponseError, QuotaExceededError, ServiceTransportError

logger = logging.getLogger(__name__)

# full key -> text (single language) or full key -> {language: text}
TRANSLATION_RESPONSE_SCHEMA = {
    "type": "object",
    "additionalProperties": {
        "anyOf": [
            {"type": "string"},
            {"type": "object", "additionalProperties": {"type": "string"}},
        ]
    },
}

_QUOTA_MARKERS = ("quota", "rate limit", "rate_limit", "exceeded", "resource_exhausted")
_CODE_FENCE = re.compile(r'^```(?:json)?\s*([\s\S]*?)\s*```$', re.MULTILINE)
# Tokens kept free for instructions, the batch itself and the response
RESERVED_PROMPT_TOKENS = 1000


def count_tokens(text: str, model_name: str = 'gpt-4o-mini') -> int:
    """Count the number of tokens in ``text`` for ``model_name``.

    ``tiktoken.encoding_for_model`` may need to download encoding data. When
    that is not possible, ``gpt2`` (bundled with tiktoken) is used instead and,
    as a last resort, a whitespace split.
    """
    try:
        encoding = tiktoken.encoding_for_model(model_name)
    except Exception:
        try:
            encoding = tiktoken.get_encoding("gpt2")
        except Exception:
            return len(text.split())

    try:
        return len(encoding.encode(text))
    except Exception:
        return len(text.split())


def trim_context_to_budget(context: str, max_tokens: int, model_name: str) -> str:
    """Drop trailing lines of the project context until it fits in ``max_tokens``."""
    if not context or count_tokens(context, model_name) <= max_tokens:
        return context
    lines = context.splitlines()
    while lines and count_tokens('\n'.join(lines), model_name) > max_tokens:
        lines.pop()
    trimmed = '\n'.join(lines)
    logger.warning("Project context trimmed to %d token(s) to fit the model budget.", count_tokens(trimmed, model_name))
    return trimmed


def _retry_after_seconds(exc: Exception) -> Optional[float]:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None) or getattr(exc, "headers", None) or {}
    value = headers.get("Retry-After") or headers.get("retry-after")
    if not value:
        return None
    value = str(value).strip()
    try:
        if value.endswith("ms"):
            return float(value[:-2]) / 1000
        return float(value)
    except ValueError:
        logger.debug("Ignoring unparseable Retry-After header: %s", value)
        return None


def _looks_like_quota(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _QUOTA_MARKERS)


def extract_json_payload(response_text: str) -> Dict[str, Any]:
    """
    Parse the service's answer as a JSON object.

    Code fences and chatter around the object are tolerated. Raises
    MalformedResponseError when nothing usable is found or the schema does not match.
    """
    text = (response_text or "").strip()
    fenced = _CODE_FENCE.search(text)
    if fenced:
        text = fenced.group(1).strip()
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        start, end = text.find('{'), text.rfind('}')
        if start == -1 or end <= start:
            raise MalformedResponseError("Response did not contain a JSON object.")
        try:
            parsed = json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            raise MalformedResponseError(f"Response was not valid JSON: {e}") from e

    try:
        jsonschema.validate(instance=parsed, schema=TRANSLATION_RESPONSE_SCHEMA)
    except jsonschema.ValidationError as e:
        raise MalformedResponseError(f"Response did not match the expected schema: {e.message}") from e
    return parsed


class TranslationService(ABC):
    """Interface of a text-generation backend."""

    @abstractmethod
    async def translate(
            self,
            source_texts: Dict[str, str],
            target_languages: Sequence[str],
            context: str = "",
            namespace_label: str = ""
    ) -> Dict[str, Any]:
        """Return full key -> {language: text}. May raise TranslationServiceError subclasses."""


class OfflineTranslationService(TranslationService):
    """Answers nothing, so every key goes through the fallback path."""

    async def translate(self, source_texts, target_languages, context="", namespace_label=""):
        logger.debug("Offline mode: returning no translations for %d key(s).", len(source_texts))
        return {}


class OpenAITranslationService(TranslationService):
    """Batch translation through the OpenAI chat completions API in JSON mode."""

    def __init__(
            self,
            client: AsyncOpenAI,
            model_name: str,
            max_model_tokens: int = 8000,
            language_names: Optional[Dict[str, str]] = None,
            reference_language: str = "en",
            temperature: float = 0.3,
            request_timeout: float = 120.0
    ):
        self.client = client
        self.model_name = model_name
        self.max_model_tokens = max_model_tokens
        self.language_names = language_names or {}
        self.reference_language = reference_language
        self.temperature = temperature
        self.request_timeout = request_timeout

    def _describe_language(self, code: str) -> str:
        name = self.language_names.get(code)
        return f"{code} ({name})" if name else code

    def build_system_prompt(self, target_languages: Sequence[str], context: str) -> str:
        languages = ", ".join(self._describe_language(lang) for lang in target_languages)
        prompt = f"""
You are an expert translator specializing in software localization. Translate user interface strings from {self._describe_language(self.reference_language)} into: {languages}.

**Instructions**:
- **Respond with a single flat JSON object.** Each property name is a translation key exactly as given; each value is an object mapping a language code to the translated text.
- **Use exactly these language codes**: {", ".join(target_languages)}.
- **Do not translate or modify placeholders**: tokens such as `:name`, `{{name}}`, `{{0}}`, `%s` and `%1$d` must appear in the translation exactly as often as in the source.
- **Keep pluralization structure**: strings like `{{0}} None|{{1}} One|[2,*] Many` keep their `|` separators and count markers; translate only the words.
- **Do not return the key as the translation.** Translate the provided source text.
- **Preserve formatting**: keep HTML tags, `\\n` and surrounding punctuation.
- Keep translations brief and consistent with typical software terminology.
"""
        if context:
            budget = max(self.max_model_tokens // 4, 0)
            context = trim_context_to_budget(context, budget, self.model_name)
            prompt += f"\n**Project context**:\n{context}\n"
        return prompt

    @staticmethod
    def build_user_prompt(source_texts: Dict[str, str], namespace_label: str) -> str:
        payload = json.dumps(source_texts, ensure_ascii=False, indent=2)
        return f"Namespace: {namespace_label}\n\n**Source strings (key -> text):**\n{payload}\n"

    async def translate(self, source_texts, target_languages, context="", namespace_label=""):
        system_prompt = self.build_system_prompt(target_languages, context)
        user_prompt = self.build_user_prompt(source_texts, namespace_label)

        prompt_tokens = count_tokens(system_prompt + user_prompt, self.model_name)
        if prompt_tokens + RESERVED_PROMPT_TOKENS > self.max_model_tokens:
            logger.warning(
                "Prompt for '%s' uses %d token(s), close to the %d token budget; consider a smaller chunk_size.",
                namespace_label, prompt_tokens, self.max_model_tokens
            )

        try:
            response = await self.client.chat.completions.create(
                model=self.model_name,
                messages=[
                    ChatCompletionSystemMessageParam(role="system", content=system_prompt),
                    ChatCompletionUserMessageParam(role="user", content=user_prompt),
                ],
                temperature=self.temperature,
                response_format={"type": "json_object"},
                timeout=self.request_timeout,
            )
        except RateLimitError as e:
            raise QuotaExceededError(str(e), retry_after=_retry_after_seconds(e)) from e
        except (APITimeoutError, APIConnectionError) as e:
            raise ServiceTransportError(f"{e.__class__.__name__}: {e}") from e
        except APIStatusError as e:
            if e.status_code == 429 or _looks_like_quota(str(e)):
                raise QuotaExceededError(str(e), retry_after=_retry_after_seconds(e)) from e
            if e.status_code in (408, 409) or e.status_code >= 500:
                raise ServiceTransportError(f"HTTP {e.status_code}: {e}", retry_after=_retry_after_seconds(e)) from e
            raise
        except OpenAIError as e:
            if _looks_like_quota(str(e)):
                raise QuotaExceededError(str(e)) from e
            raise

        choice = response.choices[0]
        if getattr(choice, "finish_reason", None) == "length":
            raise MalformedResponseError("Response was truncated at the token limit.")
        response_text = choice.message.content or ""
        try:
            return extract_json_payload(response_text)
        except MalformedResponseError:
            logger.debug("Invalid response for '%s':\n---\n%s\n---", namespace_label, response_text)
            raise
