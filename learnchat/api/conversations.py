"""
Conversation API routes.

- POST /v1/conversations                 create
- GET  /v1/conversations/{id}            fetch (owner only)
- POST /v1/conversations/{id}/prepare    provider-bound history (compaction)
- POST /v1/conversations/{id}/turns      full turn: admission, generation, debit
- POST /v1/conversations/{id}/title      regenerate title
- POST /v1/conversations/{id}/summary    brainstorm summary
"""
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel, field_validator

from learnchat.core.auth import get_current_account
from learnchat.features.conversations.service import (
    create_conversation,
    generate_title,
    get_conversation,
    prepare_turn,
    run_turn,
    summarize_brainstorm,
)
from learnchat.models.account import Account
from learnchat.models.conversation import Conversation, Message

router = APIRouter(prefix="/v1/conversations", tags=["conversations"])


class MessageIn(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    attachments: Optional[List[Dict[str, Any]]] = None

    def to_message(self) -> Message:
        return Message(role=self.role, content=self.content, attachments=self.attachments)


class CreateConversationRequest(BaseModel):
    mode: Literal["explanation", "generation", "brainstorm"]
    title: Optional[str] = None
    messages: Optional[List[MessageIn]] = None

    @field_validator("title")
    @classmethod
    def _trim(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class PrepareRequest(BaseModel):
    messages: Optional[List[MessageIn]] = None


class TurnRequest(BaseModel):
    content: str
    model: Optional[Literal["standard", "advanced"]] = None

    @field_validator("content")
    @classmethod
    def _trim(cls, value: str) -> str:
        return value.strip()


class SummaryRequest(BaseModel):
    sub_mode: Literal["casual", "planning"] = "casual"
    brainstorm_state: Optional[Dict[str, Any]] = None


def _message_out(message: Message) -> Dict:
    out = {"role": message.role, "content": message.content}
    if message.attachments:
        out["attachments"] = message.attachments
    if message.timestamp:
        out["timestamp"] = message.timestamp.isoformat()
    return out


def _conversation_out(conversation: Conversation) -> Dict:
    summary = conversation.compact_summary
    return {
        "id": conversation.conversation_id,
        "mode": conversation.mode,
        "title": conversation.title,
        "messages": [_message_out(m) for m in conversation.messages],
        "compactSummary": summary.model_dump(mode="json", by_alias=True) if summary else None,
        "createdAt": conversation.created_at.isoformat() if conversation.created_at else None,
        "updatedAt": conversation.updated_at.isoformat() if conversation.updated_at else None,
    }


@router.post("", status_code=201)
def create_conversation_endpoint(body: CreateConversationRequest, account: Account = Depends(get_current_account)) -> Dict:
    messages = [m.to_message() for m in body.messages or []]
    conversation = create_conversation(account.user_id, body.mode, title=body.title, messages=messages)
    return _conversation_out(conversation)


@router.get("/{conversation_id}")
def get_conversation_endpoint(
    conversation_id: str = Path(..., description="Conversation ID"),
    account: Account = Depends(get_current_account),
) -> Dict:
    return _conversation_out(get_conversation(conversation_id, account.user_id))


@router.post("/{conversation_id}/prepare")
def prepare_turn_endpoint(
    body: PrepareRequest,
    conversation_id: str = Path(..., description="Conversation ID"),
    account: Account = Depends(get_current_account),
) -> Dict:
    """Messages to send to the provider, compacted when the history is long."""
    conversation = get_conversation(conversation_id, account.user_id)
    messages = [m.to_message() for m in body.messages] if body.messages is not None else list(conversation.messages)
    result = prepare_turn(conversation_id, messages, conversation.mode)
    return {
        "messagesForApi": result.messages_for_api,
        "wasCompacted": result.was_compacted,
        "decision": result.decision.value,
        "newSummary": result.new_summary.model_dump(mode="json", by_alias=True) if result.new_summary else None,
    }


@router.post("/{conversation_id}/turns")
def run_turn_endpoint(
    body: TurnRequest,
    conversation_id: str = Path(..., description="Conversation ID"),
    account: Account = Depends(get_current_account),
) -> Dict:
    result = run_turn(account, conversation_id, body.content, model_key=body.model)
    return {
        "conversationId": result.conversation_id,
        "message": _message_out(result.reply),
        "model": result.model_key,
        "pointsDebited": result.points_debited,
        "wasCompacted": result.was_compacted,
        "usage": {"inputTokens": result.input_tokens, "outputTokens": result.output_tokens},
    }


@router.post("/{conversation_id}/title")
def generate_title_endpoint(
    conversation_id: str = Path(..., description="Conversation ID"),
    account: Account = Depends(get_current_account),
) -> Dict:
    return generate_title(account, conversation_id)


@router.post("/{conversation_id}/summary")
def summarize_endpoint(
    body: SummaryRequest,
    conversation_id: str = Path(..., description="Conversation ID"),
    account: Account = Depends(get_current_account),
) -> Dict:
    return summarize_brainstorm(account, conversation_id, sub_mode=body.sub_mode, state=body.brainstorm_state)
