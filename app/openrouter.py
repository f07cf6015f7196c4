"""
OpenRouter chat-completion client, intent analyzer and conversational responder.

OpenRouter exposes an OpenAI-compatible /chat/completions endpoint.
"""

import json
import logging
import re
from typing import Iterable, List, Optional, Tuple

import requests
from pydantic import ValidationError

from app.config import settings
from app.formatting import format_error, format_price
from app.schemas import AnalysisResult, AnalyzerUnavailable, BotSettings, IntentAnalysis

logger = logging.getLogger(__name__)


ANALYSIS_PROMPT = """Analise esta mensagem de cliente e determine se ele está procurando por uma peça/produto específico:

Mensagem: "{message}"

Responda APENAS no formato JSON:
{{
  "hasProductIntent": boolean,
  "extractedModel": "modelo exato se identificado",
  "extractedPart": "tipo de peça se identificado",
  "confidence": numero de 0 a 1
}}

Exemplos:
"frontal do galaxy s20" → {{"hasProductIntent": true, "extractedModel": "Galaxy S20", "extractedPart": "frontal", "confidence": 0.9}}
"oi, bom dia" → {{"hasProductIntent": false, "confidence": 0.1}}"""

ASSISTANT_PROMPT = """Você é o {ai_name}, um assistente especializado em assistência técnica de dispositivos eletrônicos, especialmente celulares, tablets e dispositivos móveis.

Suas responsabilidades:
1. Analisar mensagens de clientes procurando por peças/componentes
2. Extrair modelo específico do aparelho mencionado
3. Identificar qual peça o cliente precisa
4. Responder de forma técnica mas amigável

Quando receber uma mensagem:
- Se o cliente mencionar um produto/peça específica, extraia: MODELO do aparelho e TIPO de peça
- Se não conseguir identificar claramente, peça mais informações
- Seja sempre educado e profissional
- Use emojis moderadamente para ser mais amigável

Responda sempre em português brasileiro."""

USER_PROMPT = """Cliente {user_name} disse: "{message}"{context}

Como {ai_name}, responda de forma útil e profissional."""

PRODUCTS_FOUND_CONTEXT = "\n\nProdutos encontrados no estoque: {products}"
NO_PRODUCTS_CONTEXT = "\n\nNenhum produto encontrado no estoque para a consulta."

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class OpenRouterError(Exception):
    """Raised when a chat completion cannot be obtained."""
    pass


class OpenRouterClient:
    """
    Thin wrapper around POST {base_url}/chat/completions.

    USAGE:
        client = OpenRouterClient(api_key="sk-or-...", model="openai/gpt-4o-mini")
        text = client.chat_completion([{"role": "user", "content": "oi"}], 100, 0.5)
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ):
        self._api_key = api_key
        self._model = model
        self._base_url = (base_url or settings.OPENROUTER_BASE_URL).rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout if timeout is not None else settings.HTTP_TIMEOUT_SECONDS

    @classmethod
    def from_settings(cls, bot_settings: BotSettings, **kwargs) -> "OpenRouterClient":
        return cls(
            api_key=bot_settings.openrouter_api or "",
            model=bot_settings.openrouter_model or "",
            **kwargs,
        )

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": settings.OPENROUTER_REFERER,
            "X-Title": settings.OPENROUTER_TITLE,
        }

    def chat_completion(
        self,
        messages: List[dict],
        max_tokens: int,
        temperature: float,
        **params
    ) -> str:
        """
        Request a completion and return choices[0].message.content.

        Raises:
            OpenRouterError: on network errors, non-2xx status or a response
                without content.
        """
        payload = {
            "model": self._model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            **params,
        }

        try:
            response = self._session.post(
                f"{self._base_url}/chat/completions",
                headers=self._headers(),
                json=payload,
                timeout=self._timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise OpenRouterError(f"OpenRouter request failed: {e}") from e
        except ValueError as e:
            raise OpenRouterError(f"OpenRouter returned invalid JSON: {e}") from e

        content = _extract_content(data)
        if not content:
            raise OpenRouterError("OpenRouter response has no content")
        return content

    def test_connection(self) -> Tuple[bool, Optional[str]]:
        """Check the API key against GET /models."""
        try:
            response = self._session.get(
                f"{self._base_url}/models",
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            return False, f"Erro de rede: {e}"

        if not response.ok:
            return False, f"API Key inválida ou erro de conexão: {response.status_code}"
        return True, None


def _extract_content(data) -> str:
    """Extract text content from a chat-completion response body."""
    try:
        choices = data.get("choices") or []
        if choices:
            message = choices[0].get("message") or {}
            return (message.get("content") or "").strip()
    except (AttributeError, KeyError, IndexError, TypeError):
        pass
    return ""


def parse_analysis(content: str) -> IntentAnalysis:
    """
    Parse the analyzer reply into an IntentAnalysis.

    Raises:
        ValueError: when the content is not a JSON object of the expected shape.
    """
    fenced = _FENCE_RE.match(content.strip())
    if fenced:
        content = fenced.group(1)

    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return IntentAnalysis.model_validate(data)


class IntentAnalyzer:
    """
    Decides whether a message asks for a catalog item.

    Never raises: failures come back as AnalyzerUnavailable so the caller
    can tell them apart from a genuine "no intent" answer.
    """

    MAX_TOKENS = 200
    TEMPERATURE = 0.3

    def __init__(self, client: OpenRouterClient):
        self._client = client

    def analyze(self, message: str) -> AnalysisResult:
        prompt = ANALYSIS_PROMPT.format(message=message)
        try:
            content = self._client.chat_completion(
                [{"role": "system", "content": prompt}],
                max_tokens=self.MAX_TOKENS,
                temperature=self.TEMPERATURE,
                top_p=1,
                frequency_penalty=0,
                presence_penalty=0,
            )
        except OpenRouterError as e:
            logger.warning(f"Intent analysis unavailable: {e}")
            return AnalyzerUnavailable(reason=str(e))

        try:
            analysis = parse_analysis(content)
        except (ValueError, ValidationError) as e:
            logger.warning(f"Could not parse intent analysis: {e}")
            return AnalyzerUnavailable(reason=f"unparseable analysis: {content[:100]}")

        logger.info(
            f"Intent analysis: intent={analysis.has_product_intent}, "
            f"confidence={analysis.confidence:.2f}, model={analysis.extracted_model!r}, "
            f"part={analysis.extracted_part!r}"
        )
        return analysis


def _product_context(products: Iterable) -> str:
    summary = [
        {
            "nome": p.nome,
            "modelo_aparelho": p.modelo_aparelho,
            "preco": format_price(p.preco),
            "quantidade": p.quantidade,
        }
        for p in products
    ]
    return PRODUCTS_FOUND_CONTEXT.format(products=json.dumps(summary, ensure_ascii=False))


class ConversationalResponder:
    """
    Free-form reply for messages without a strong product intent.

    On any failure the fixed error template is returned instead of raising.
    """

    MAX_TOKENS = 500
    TEMPERATURE = 0.7

    def __init__(self, client: OpenRouterClient, ai_name: str):
        self._client = client
        self._ai_name = ai_name

    def build_messages(
        self,
        message: str,
        user_name: Optional[str] = None,
        found_products: Optional[list] = None,
        no_products_found: bool = False,
    ) -> List[dict]:
        context = ""
        if found_products:
            context = _product_context(found_products)
        elif no_products_found:
            context = NO_PRODUCTS_CONTEXT

        user_prompt = USER_PROMPT.format(
            user_name=user_name or "usuário",
            message=message,
            context=context,
            ai_name=self._ai_name,
        )
        return [
            {"role": "system", "content": ASSISTANT_PROMPT.format(ai_name=self._ai_name)},
            {"role": "user", "content": user_prompt},
        ]

    def reply(
        self,
        message: str,
        user_name: Optional[str] = None,
        found_products: Optional[list] = None,
        no_products_found: bool = False,
    ) -> Tuple[str, bool]:
        """
        Returns:
            (reply text, True) on success or (error template, False).
        """
        messages = self.build_messages(message, user_name, found_products, no_products_found)
        try:
            text = self._client.chat_completion(
                messages,
                max_tokens=self.MAX_TOKENS,
                temperature=self.TEMPERATURE,
                top_p=0.9,
                frequency_penalty=0.3,
                presence_penalty=0.3,
            )
        except OpenRouterError as e:
            logger.error(f"Conversational reply failed: {e}")
            return format_error(self._ai_name), False
        return text, True
