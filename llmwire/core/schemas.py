"""
llmwire - Response Schemas

Pydantic models for the non-streaming endpoints the engine talks to.
Passing one as `response_model` makes the engine validate 2xx bodies;
a body that does not match is reported as MALFORMED_RESPONSE.

Only the fields the client relies on are declared. Extra fields are kept.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="allow")


# ============================================================
# Chat completions (delta-JSON family)
# ============================================================

class ChatToolFunction(_Lenient):
    name: str
    arguments: str = ""


class ChatToolCall(_Lenient):
    id: str
    type: str = "function"
    function: ChatToolFunction


class ChatMessage(_Lenient):
    role: str
    content: Optional[str] = None
    tool_calls: Optional[List[ChatToolCall]] = None


class ChatChoice(_Lenient):
    index: int = 0
    message: ChatMessage
    finish_reason: Optional[str] = None


class ChatUsage(_Lenient):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionResponse(_Lenient):
    id: Optional[str] = None
    object: Optional[str] = None
    model: Optional[str] = None
    choices: List[ChatChoice] = Field(..., min_length=1)
    usage: Optional[ChatUsage] = None


# ============================================================
# Messages (typed-event family)
# ============================================================

class MessageContentBlock(_Lenient):
    type: str
    text: Optional[str] = None
    id: Optional[str] = None
    name: Optional[str] = None
    input: Optional[Dict[str, Any]] = None


class MessageUsage(_Lenient):
    input_tokens: int = 0
    output_tokens: int = 0


class MessagesResponse(_Lenient):
    id: Optional[str] = None
    type: str = "message"
    role: str = "assistant"
    model: Optional[str] = None
    content: List[MessageContentBlock]
    stop_reason: Optional[str] = None
    usage: Optional[MessageUsage] = None


# ============================================================
# Embeddings & images
# ============================================================

class EmbeddingItem(_Lenient):
    index: int = 0
    embedding: Union[List[float], str]


class EmbeddingResponse(_Lenient):
    object: Optional[str] = None
    model: Optional[str] = None
    data: List[EmbeddingItem] = Field(..., min_length=1)
    usage: Optional[Dict[str, Any]] = None


class ImageItem(_Lenient):
    url: Optional[str] = None
    b64_json: Optional[str] = None
    revised_prompt: Optional[str] = None


class ImageGenerationResponse(_Lenient):
    created: Optional[int] = None
    data: List[ImageItem] = Field(..., min_length=1)
