"""
learnchat/models/conversation.py

Conversation, message and compaction summary models.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant"]
ConversationMode = Literal["explanation", "generation", "brainstorm"]


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    attachments: Optional[List[Dict[str, Any]]] = None
    timestamp: Optional[datetime] = None

    def for_provider(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class CompactSummary(BaseModel):
    """
    Summary that stands in for messages[0 .. last_summarized_message_index].

    Stored in conversation metadata and replaced wholesale on regeneration.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    content: str
    generated_at: datetime = Field(alias="generatedAt")
    last_summarized_message_index: int = Field(alias="lastSummarizedMessageIndex")
    summarized_message_count: int = Field(alias="summarizedMessageCount")
    summary_tokens: int = Field(alias="summaryTokens")


class Conversation(BaseModel):
    model_config = ConfigDict(frozen=True)

    conversation_id: str
    user_id: str
    mode: ConversationMode
    title: Optional[str] = None
    messages: List[Message] = Field(default_factory=list)
    compact_summary: Optional[CompactSummary] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
