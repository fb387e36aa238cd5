from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ToolDefinition(BaseModel):
    """A function the model may call, in OpenAI function format."""
    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})


class CustomPrompt(BaseModel):
    """
    User-authored prompt text added to the system instruction.

    With override_system_prompt set, the content replaces the built-in
    instruction instead of extending it.
    """
    name: str = ""
    content: str
    override_system_prompt: bool = False


class ConversationRequest(BaseModel):
    """
    Standardized request object for a completion.

    A request with user_message set is a conversation turn: it gets a
    synthesized system instruction, the normalized history and the new
    user message. Otherwise `prompt` is sent as a single user message.
    """
    prompt: str = ""
    model: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    user_message: Optional[str] = None
    conversation_history: List[Dict[str, Any]] = Field(default_factory=list)
    available_tools: List[ToolDefinition] = Field(default_factory=list)
    custom_prompt: Optional[CustomPrompt] = None
    image_attachments: List[Any] = Field(default_factory=list)

    @property
    def is_conversation(self) -> bool:
        return self.user_message is not None


class ToolCall(BaseModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None


class StreamChunk(BaseModel):
    text: str


class ModelResponse(BaseModel):
    """
    Standardized response object from the client.
    `markdown` is the accumulated text; `rendered` is reserved for hosts
    that render markdown themselves.
    """
    markdown: str = ""
    rendered: str = ""
    tool_calls: Optional[List[ToolCall]] = None
