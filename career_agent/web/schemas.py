"""Request and response contracts for the v1 web API."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator


class MessagePartModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["text", "file", "image"]
    text: Optional[str] = None
    url: Optional[str] = None
    name: Optional[str] = None
    media_type: Optional[str] = Field(default=None, alias="mediaType")

    @model_validator(mode="after")
    def _check_payload(self) -> "MessagePartModel":
        if self.type == "text" and self.text is None:
            raise ValueError("text parts need a 'text' field")
        if self.type in ("file", "image") and not self.url:
            raise ValueError("file parts need a 'url' field")
        return self

    def to_part(self) -> Dict[str, Any]:
        if self.type == "text":
            return {"type": "text", "text": self.text}
        return {"type": self.type, "url": self.url, "name": self.name, "media_type": self.media_type}


class ChatMessageModel(BaseModel):
    id: str = Field(min_length=1, max_length=128)
    role: Literal["user"] = "user"
    parts: List[MessagePartModel] = Field(min_length=1)


class PostChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    chat_id: str = Field(min_length=1, max_length=128, validation_alias=AliasChoices("chatId", "id", "chat_id"))
    message: ChatMessageModel
    selected_persona_hint: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("selectedPersonaHint", "selected_persona_hint"),
    )
    visibility: Literal["private", "public"] = Field(
        default="private",
        validation_alias=AliasChoices("visibility", "selectedVisibilityType"),
    )


class StopTurnRequest(BaseModel):
    turn_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("turnId", "turn_id"))


class StopTurnResponse(BaseModel):
    turn_id: str
    status: str
    stop_requested: bool


class HandoffRequest(BaseModel):
    persona_id: str = Field(min_length=1, validation_alias=AliasChoices("personaId", "targetAgent", "persona_id"))
    context: Optional[str] = None


class PersonaResponse(BaseModel):
    id: str
    name: str
    description: str
    specialization: str
    model: str
    tools: List[str]
    handoffs: List[str]


class HandoffResponse(BaseModel):
    success: bool
    persona: PersonaResponse
    previous_persona_id: str
    handoff_message: str


class ChatResponse(BaseModel):
    id: str
    user_id: str
    title: str
    visibility: str
    created_at: str


class MessageResponse(BaseModel):
    id: str
    chat_id: str
    role: str
    parts: List[Dict[str, Any]]
    created_at: str
    status: str
    persona_id: Optional[str]
    metadata: Dict[str, Any]


class MessagesResponse(BaseModel):
    items: List[MessageResponse]


class AgentsResponse(BaseModel):
    items: List[PersonaResponse]
    entry_persona_id: str
