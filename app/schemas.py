"""
Pydantic schemas for request/response validation.

This module contains:
- Inbound webhook payload models (Evolution API message shape)
- Values passed between pipeline stages
- Response models for API responses
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Inbound Webhook Models
# =============================================================================

class MessageKey(BaseModel):
    """Routing part of an inbound message."""
    remote_jid: str = Field(
        ...,
        alias="remoteJid",
        min_length=1,
        description="Sender JID, e.g. 5511999999999@s.whatsapp.net or ...@g.us for groups"
    )
    from_me: bool = Field(
        False,
        alias="fromMe",
        description="True when the message was sent by the bot's own account"
    )

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ExtendedTextMessage(BaseModel):
    text: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class MessageContent(BaseModel):
    """Message body. Only the text-bearing fields are modelled."""
    conversation: Optional[str] = None
    extended_text_message: Optional[ExtendedTextMessage] = Field(
        None,
        alias="extendedTextMessage"
    )

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class InboundMessage(BaseModel):
    """
    Pydantic model for an inbound WhatsApp message.

    Exists only for the duration of one pipeline invocation.
    """
    key: MessageKey
    message: Optional[MessageContent] = None
    push_name: Optional[str] = Field(None, alias="pushName")
    # Epoch seconds; some Baileys versions send a Long object instead
    message_timestamp: Optional[Any] = Field(None, alias="messageTimestamp")

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        json_schema_extra={
            "examples": [
                {
                    "key": {"remoteJid": "5511999999999@s.whatsapp.net", "fromMe": False},
                    "message": {"conversation": "frontal do galaxy s20"},
                    "pushName": "Cliente Teste",
                    "messageTimestamp": 1736935200,
                }
            ]
        },
    )


class WebhookEnvelope(BaseModel):
    """Evolution API event wrapper: the message sits under 'data'."""
    event: Optional[str] = None
    instance: Optional[str] = None
    data: InboundMessage

    model_config = ConfigDict(extra="ignore")


# =============================================================================
# Pipeline Values
# =============================================================================

class BotSettings(BaseModel):
    """
    Immutable snapshot of the settings row, taken once per message.
    """
    nome_ia: str
    ia_ativa: bool
    openrouter_api: Optional[str] = None
    openrouter_model: Optional[str] = None
    evolution_token: Optional[str] = None
    instancia_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)


class IntentAnalysis(BaseModel):
    """Structured result of the intent analysis call."""
    has_product_intent: bool = Field(False, alias="hasProductIntent")
    extracted_model: Optional[str] = Field(None, alias="extractedModel")
    extracted_part: Optional[str] = Field(None, alias="extractedPart")
    confidence: float = Field(0.0, description="Model-reported certainty, 0 to 1")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @field_validator("confidence")
    @classmethod
    def clamp_confidence(cls, v: float) -> float:
        return min(max(v, 0.0), 1.0)

    @field_validator("extracted_model", "extracted_part")
    @classmethod
    def blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            return None
        return v


class AnalyzerUnavailable(BaseModel):
    """The analysis call failed; reason is for logs only."""
    reason: str


AnalysisResult = Union[IntentAnalysis, AnalyzerUnavailable]


class InstanceStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class PipelineOutcome(str, Enum):
    INELIGIBLE = "ineligible"
    NO_SETTINGS = "no_settings"
    DISABLED = "disabled"
    SENT = "sent"
    SEND_FAILED = "send_failed"


class ReplyPath(str, Enum):
    PRODUCT_FOUND = "product_found"
    PRODUCT_NOT_FOUND = "product_not_found"
    CONVERSATION = "conversation"
    ERROR = "error"


class PipelineResult(BaseModel):
    """What happened to one inbound message."""
    outcome: PipelineOutcome
    path: Optional[ReplyPath] = None
    numero: Optional[str] = None
    response: Optional[str] = None
    sent: bool = False
    log_id: Optional[int] = None


# =============================================================================
# Pydantic Response Models
# =============================================================================

class WebhookResponse(BaseModel):
    """Response model for webhook processing."""
    status: str = Field(default="ok", description="Operation status")
    result: Optional[str] = Field(None, description="Pipeline outcome for the message")


class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class MessageLogResponse(BaseModel):
    """A single message log row."""
    id: int
    numero_usuario: str = Field(..., description="Sender number")
    mensagem_usuario: str = Field(..., description="Inbound message text")
    resposta_ia: Optional[str] = Field(None, description="Delivered reply, null when not delivered")
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageLogsListResponse(BaseModel):
    """
    Response model for GET /logs with pagination.

    - data: log rows matching filters, newest first
    - total: total count of rows matching filters (ignoring pagination)
    """
    data: list[MessageLogResponse] = Field(default_factory=list)
    total: int = Field(..., ge=0)
    limit: int = Field(..., ge=1, le=100)
    offset: int = Field(..., ge=0)


class WebhookStatusResponse(BaseModel):
    """Response model for GET /status."""
    status: str = Field(..., description="active or error")
    last_message: Optional[datetime] = Field(None, description="Timestamp of the latest log row")
    message_count: int = Field(0, ge=0, description="Log rows in the last 24 hours")
    instance_status: Optional[InstanceStatus] = Field(
        None,
        description="Messaging instance state, null when no settings row exists"
    )


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
