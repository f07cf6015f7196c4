"""
Inbound message pipeline.

Received -> eligibility -> settings gate -> intent analysis ->
(catalog search + template) or (conversational reply) -> send -> log.

Two entry points share MessagePipeline: process_webhook_payload() for
in-process callers and POST /webhook in app.main.
"""

import logging
from typing import Callable, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.config import settings
from app.formatting import format_error, format_not_found, format_product_found
from app.metrics import record_intent_analysis, record_reply_path, record_webhook_outcome
from app.normalization import normalize_model, normalize_part_type
from app.openrouter import ConversationalResponder, IntentAnalyzer, OpenRouterClient
from app.schemas import (
    AnalyzerUnavailable,
    BotSettings,
    InboundMessage,
    IntentAnalysis,
    PipelineOutcome,
    PipelineResult,
    ReplyPath,
    WebhookEnvelope,
)
from app.storage import create_message_log, get_bot_settings, search_products
from app.whatsapp import EvolutionClient, extract_message_text, extract_user_number, is_eligible

logger = logging.getLogger(__name__)

OpenRouterFactory = Callable[[BotSettings], OpenRouterClient]
TransportFactory = Callable[[BotSettings], EvolutionClient]


def parse_webhook_payload(payload: dict) -> InboundMessage:
    """
    Accept either a bare message or an Evolution event envelope.

    Raises:
        ValidationError: when the payload does not have the message shape.
    """
    if isinstance(payload, dict) and "data" in payload and "key" not in payload:
        return WebhookEnvelope.model_validate(payload).data
    return InboundMessage.model_validate(payload)


class MessagePipeline:
    """
    Processes one inbound message end to end.

    Settings are read once per message and handed to the OpenRouter and
    Evolution clients through the factories; no component reads them again.
    """

    def __init__(
        self,
        db: Session,
        openrouter_factory: Optional[OpenRouterFactory] = None,
        transport_factory: Optional[TransportFactory] = None,
        product_threshold: Optional[float] = None,
        context_threshold: Optional[float] = None,
    ):
        self.db = db
        self._openrouter_factory = openrouter_factory or OpenRouterClient.from_settings
        self._transport_factory = transport_factory or EvolutionClient.from_settings
        self.product_threshold = (
            product_threshold if product_threshold is not None else settings.PRODUCT_INTENT_THRESHOLD
        )
        self.context_threshold = (
            context_threshold if context_threshold is not None else settings.CONTEXT_HINT_THRESHOLD
        )

    def process(self, message: InboundMessage) -> PipelineResult:
        result = self._process(message)
        record_webhook_outcome(result.outcome.value)
        return result

    def _process(self, message: InboundMessage) -> PipelineResult:
        if not is_eligible(message):
            logger.info(f"Ignoring ineligible message from {message.key.remote_jid}")
            return PipelineResult(outcome=PipelineOutcome.INELIGIBLE)

        bot_settings = get_bot_settings(self.db)
        if bot_settings is None:
            return PipelineResult(outcome=PipelineOutcome.NO_SETTINGS)
        if not bot_settings.ia_ativa:
            logger.info("AI disabled, ignoring message")
            return PipelineResult(outcome=PipelineOutcome.DISABLED)

        text = extract_message_text(message)
        numero = extract_user_number(message)
        user_name = message.push_name or "Cliente"
        logger.info(f"Processing message from {user_name} ({numero})")

        openrouter = self._openrouter_factory(bot_settings)
        transport = self._transport_factory(bot_settings)

        transport.send_typing(numero)

        reply, path = self.build_reply(text, user_name, bot_settings, openrouter)
        record_reply_path(path.value)

        sent = transport.send_text(numero, reply)

        log = create_message_log(
            self.db,
            numero_usuario=numero,
            mensagem_usuario=text,
            resposta_ia=reply if sent else None,
        )

        outcome = PipelineOutcome.SENT if sent else PipelineOutcome.SEND_FAILED
        logger.info(f"Message from {numero} done: path={path.value}, outcome={outcome.value}")
        return PipelineResult(
            outcome=outcome,
            path=path,
            numero=numero,
            response=reply,
            sent=sent,
            log_id=log.id if log is not None else None,
        )

    def build_reply(
        self,
        text: str,
        user_name: str,
        bot_settings: BotSettings,
        openrouter: OpenRouterClient,
    ) -> Tuple[str, ReplyPath]:
        """Pick a reply for the message. Never raises; errors map to the error template."""
        ai_name = bot_settings.nome_ia
        try:
            analysis = self._analyze(text, openrouter)

            if (
                analysis is not None
                and analysis.has_product_intent
                and analysis.confidence > self.product_threshold
            ):
                return self._product_reply(analysis, ai_name)

            no_products_hint = (
                analysis is not None
                and analysis.has_product_intent
                and analysis.confidence > self.context_threshold
            )
            responder = ConversationalResponder(openrouter, ai_name)
            reply, ok = responder.reply(text, user_name, no_products_found=no_products_hint)
            return reply, ReplyPath.CONVERSATION if ok else ReplyPath.ERROR
        except Exception as e:
            logger.exception(f"Unexpected error building reply: {e}")
            return format_error(ai_name), ReplyPath.ERROR

    def _analyze(self, text: str, openrouter: OpenRouterClient) -> Optional[IntentAnalysis]:
        result = IntentAnalyzer(openrouter).analyze(text)
        if isinstance(result, AnalyzerUnavailable):
            record_intent_analysis("unavailable")
            logger.warning(f"Analyzer unavailable ({result.reason}), using conversational reply")
            return None
        record_intent_analysis("intent" if result.has_product_intent else "no_intent")
        return result

    def _product_reply(self, analysis: IntentAnalysis, ai_name: str) -> Tuple[str, ReplyPath]:
        model = normalize_model(analysis.extracted_model) if analysis.extracted_model else None
        part = normalize_part_type(analysis.extracted_part) if analysis.extracted_part else None

        products = search_products(self.db, model=model, part=part)
        if products:
            # Highest stock first
            return format_product_found(products[0]), ReplyPath.PRODUCT_FOUND
        return format_not_found(ai_name), ReplyPath.PRODUCT_NOT_FOUND


def process_webhook_payload(payload: dict, db: Session, **pipeline_kwargs) -> PipelineResult:
    """
    In-process entry point: parse a raw webhook payload and run the pipeline.

    A payload without the message shape is treated as ineligible.
    """
    try:
        message = parse_webhook_payload(payload)
    except ValidationError as e:
        logger.warning(f"Malformed webhook payload ignored: {e.error_count()} errors")
        record_webhook_outcome(PipelineOutcome.INELIGIBLE.value)
        return PipelineResult(outcome=PipelineOutcome.INELIGIBLE)
    return MessagePipeline(db, **pipeline_kwargs).process(message)
