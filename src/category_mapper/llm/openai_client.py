from __future__ import annotations

import json
import os
import time
from typing import Any, Dict, List, Optional, Sequence, Type

from openai import (
    APIConnectionError,
    BadRequestError,
    InternalServerError,
    OpenAI,
    RateLimitError,
)
from pydantic import BaseModel, ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from category_mapper.exception import ConfigError, CustomException, OracleContractError
from category_mapper.llm.base import OracleSession, SelectionOracle, ensure_member, validate_options
from category_mapper.logger import get_logger
from category_mapper.models import LLMResponse, SelectionOption, build_selection_model
from category_mapper.utils.load_config import load_config_file

logger = get_logger(__name__)

SELECTION_PROMPT = """You are mapping "{query}" to a product taxonomy.

Available {label} options ({count} total):
{options_list}

Select the BEST matching category for "{query}" from the available options.
"""

LEAF_MARKER = " ← LEAF"


def format_options(options: Sequence[SelectionOption]) -> str:
    return "\n".join(
        f"{i}. {o.name}{LEAF_MARKER if o.is_leaf else ''}" for i, o in enumerate(options, start=1)
    )


class OpenAIClient(SelectionOracle):
    """
    Wrapper around the OpenAI Responses API with retry logic and JSON schema
    enforcement. Doubles as the selection oracle for the navigator: every
    `session()` gets its own transcript.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        client: Optional[OpenAI] = None,
        base_url: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> None:
        config = config if config is not None else load_config_file()
        llm_config = config.get("llm", {})

        self.model = model or llm_config.get("navigation_model", "gpt-4o-mini")
        self.temperature = llm_config.get("temperature", 0.2) if temperature is None else temperature
        self.max_output_tokens = llm_config.get("max_output_tokens", 512)
        self.timeout = llm_config.get("timeout_seconds", 30)

        if client is not None:
            self.client = client
            return

        resolved_api_key = api_key or os.getenv("OPENAI_API_KEY")
        resolved_base_url = base_url or os.getenv("OPENAI_BASE_URL") or llm_config.get("base_url")

        if not resolved_api_key:
            raise ConfigError("OPENAI_API_KEY is not set in the environment.")

        self.client = OpenAI(api_key=resolved_api_key, base_url=resolved_base_url, timeout=self.timeout)

    # ------------------------------------------------------------------
    def new_session(self) -> "OpenAISelectionSession":
        return OpenAISelectionSession(self)

    # ------------------------------------------------------------------
    def generate(
        self,
        prompt: str,
        response_model: Optional[Type[BaseModel]] = None,
        history: Optional[List[Dict[str, str]]] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> LLMResponse:
        """
        Send a prompt (after any prior turns in `history`) to the Responses API.

        Args:
            prompt: User message for this turn.
            response_model: Optional pydantic model; its JSON schema is sent as a
                strict output format and the reply is validated against it.
            history: Earlier user/assistant messages of the same conversation.
            model: Override default model from config.
            temperature: Override default temperature from config.

        Returns:
            LLMResponse whose `content` is a `response_model` instance, or the
            raw text when no model was given.

        Raises:
            OracleContractError: the reply did not validate against `response_model`.
            CustomException: the request itself failed.
        """
        request: Dict[str, Any] = {
            "model": model or self.model,
            "input": list(history or []) + [{"role": "user", "content": prompt}],
            "temperature": self.temperature if temperature is None else temperature,
            "max_output_tokens": self.max_output_tokens,
        }

        if response_model is not None:
            request["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": response_model.__name__,
                    "schema": response_model.model_json_schema(),
                    "strict": True,
                }
            }

        try:
            logger.debug("Calling OpenAI with model=%s", request["model"])
            started = time.perf_counter()
            response = self._response_with_retry(request=request)
            latency_ms = (time.perf_counter() - started) * 1000
            output_text = self._extract_text(response)
        except BadRequestError as exc:
            logger.error("OpenAI rejected the request: %s", exc)
            raise CustomException(exc)
        except Exception as exc:
            logger.error("OpenAI call failed: %s", exc)
            raise CustomException(exc)

        content: Any = output_text
        if response_model is not None:
            try:
                content = response_model.model_validate_json(output_text)
            except ValidationError as exc:
                logger.error("OpenAI output did not match %s: %s", response_model.__name__, output_text)
                raise OracleContractError(
                    f"Model output does not satisfy {response_model.__name__}: {exc.errors(include_url=False)}"
                )

        usage = getattr(response, "usage", None)
        return LLMResponse(
            content=content,
            raw_response=output_text,
            model_name=request["model"],
            provider=type(self).__name__,
            input_tokens=getattr(usage, "input_tokens", 0) or 0,
            output_tokens=getattr(usage, "output_tokens", 0) or 0,
            total_tokens=getattr(usage, "total_tokens", 0) or 0,
            latency_ms=latency_ms,
        )

    # ------------------------------------------------------------------
    @retry(
        reraise=True,
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type((APIConnectionError, RateLimitError, InternalServerError)),
    )
    def _response_with_retry(self, *, request: Dict[str, Any]):
        """Issue the API request with exponential backoff on transient errors."""
        return self.client.responses.create(**request)

    # ------------------------------------------------------------------
    @staticmethod
    def _extract_text(response: Any) -> str:
        """
        Normalize text output from a Responses API payload.

        The Responses client exposes `output_text` for convenience; if unavailable,
        we attempt to read the first output content block.
        """
        text = getattr(response, "output_text", None)
        if isinstance(text, str):
            return text

        output = getattr(response, "output", None)
        if output:
            content = output[0].content[0]
            text_content = getattr(content, "text", None)
            if isinstance(text_content, str):
                return text_content
            parsed = getattr(content, "parsed", None)
            if parsed is not None:
                return json.dumps(parsed)

        raise CustomException("OpenAI response contained no text output.")


class OpenAISelectionSession(OracleSession):
    """One navigation's transcript against OpenAIClient."""

    def __init__(self, client: OpenAIClient):
        self._client = client
        self._history: List[Dict[str, str]] = []
        self.calls = 0
        self.usage_tokens = 0

    def select(self, query: str, options: Sequence[SelectionOption], label: str) -> str:
        names = validate_options(options)

        prompt = SELECTION_PROMPT.format(
            query=query,
            label=label,
            count=len(options),
            options_list=format_options(options),
        )
        response = self._client.generate(
            prompt=prompt,
            response_model=build_selection_model(names, label),
            history=self._history,
        )

        selected = ensure_member(getattr(response.content, "category", None), names)
        logger.debug(f"LLM selected '{selected}' in {response.latency_ms:.0f}ms")

        self._history.append({"role": "user", "content": prompt})
        self._history.append({"role": "assistant", "content": response.raw_response})
        self.calls += 1
        self.usage_tokens += response.total_tokens
        return selected

    def close(self) -> None:
        if self.calls:
            logger.info(f"Oracle session closed: {self.calls} calls, {self.usage_tokens} tokens ({self._client.model})")
        self._history = []
