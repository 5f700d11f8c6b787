from typing import Any

from pydantic import BaseModel


class LLMResponse(BaseModel):
    """
    Provider-neutral result of one model call.

    `content` holds the validated response model instance when one was
    requested, otherwise the raw text.
    """
    content: Any
    raw_response: str
    model_name: str
    provider: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    latency_ms: float = 0.0
