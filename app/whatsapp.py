"""
Evolution API transport for WhatsApp.

- EvolutionClient: outbound calls (send text, typing indicator, instance status)
- extract_message_text / extract_user_number / is_eligible: inbound payload helpers
"""

import logging
from typing import Optional

import requests

from app.config import settings
from app.schemas import BotSettings, InboundMessage, InstanceStatus

logger = logging.getLogger(__name__)

USER_SUFFIX = "@s.whatsapp.net"
GROUP_MARKER = "@g.us"

SEND_DELAY_MS = 1200
PRESENCE_COMPOSING = "composing"


# =============================================================================
# Inbound Payload Helpers
# =============================================================================

def extract_message_text(message: InboundMessage) -> str:
    """Plain text of a message: conversation first, then extended text, else ''."""
    content = message.message
    if content is None:
        return ""
    if content.conversation:
        return content.conversation
    if content.extended_text_message and content.extended_text_message.text:
        return content.extended_text_message.text
    return ""


def extract_user_number(message: InboundMessage) -> str:
    """'5511999999999@s.whatsapp.net' -> '5511999999999'"""
    return message.key.remote_jid.replace(USER_SUFFIX, "")


def is_eligible(message: InboundMessage) -> bool:
    """
    Whether a message qualifies for AI processing.

    Rejects messages sent by the bot itself, group conversations and
    messages without text.
    """
    if message.key.from_me:
        return False
    if GROUP_MARKER in message.key.remote_jid:
        return False
    return bool(extract_message_text(message).strip())


# =============================================================================
# Outbound Client
# =============================================================================

class EvolutionClient:
    """
    Client for one Evolution API instance.

    Every method handles its own errors: nothing here raises.
    """

    def __init__(
        self,
        instance_id: str,
        token: str,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self._instance_id = instance_id
        self._token = token
        self._base_url = (base_url or settings.EVOLUTION_API_URL).rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS

    @classmethod
    def from_settings(cls, bot_settings: BotSettings, **kwargs) -> "EvolutionClient":
        return cls(
            instance_id=bot_settings.instancia_id or "",
            token=bot_settings.evolution_token or "",
            **kwargs,
        )

    def _headers(self, json_body: bool = True) -> dict:
        headers = {"Authorization": f"Bearer {self._token}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def send_text(self, number: str, text: str) -> bool:
        """
        Send a text message.

        Returns:
            True if the API accepted the message, False otherwise.
        """
        payload = {
            "number": number,
            "options": {
                "delay": SEND_DELAY_MS,
                "presence": PRESENCE_COMPOSING,
            },
            "textMessage": {
                "text": text,
            },
        }
        try:
            response = self._session.post(
                f"{self._base_url}/message/sendText/{self._instance_id}",
                headers=self._headers(),
                json=payload,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to send WhatsApp message to {number}: {e}")
            return False

        logger.info(f"WhatsApp message sent to {number}")
        return True

    def send_typing(self, number: str) -> None:
        """Best-effort 'composing' presence indicator."""
        try:
            response = self._session.put(
                f"{self._base_url}/chat/presence/{self._instance_id}",
                headers=self._headers(),
                json={"number": number, "presence": PRESENCE_COMPOSING},
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            logger.warning(f"Failed to send typing indicator to {number}: {e}")

    def get_instance_status(self) -> InstanceStatus:
        try:
            response = self._session.get(
                f"{self._base_url}/instance/fetchInstances/{self._instance_id}",
                headers=self._headers(json_body=False),
                timeout=self._timeout,
            )
            if not response.ok:
                logger.warning(f"Instance status request returned {response.status_code}")
                return InstanceStatus.ERROR
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Failed to fetch instance status: {e}")
            return InstanceStatus.ERROR

        instance = data.get("instance") if isinstance(data, dict) else None
        if isinstance(instance, dict) and instance.get("state") == "open":
            return InstanceStatus.CONNECTED
        return InstanceStatus.DISCONNECTED
