"""
Pytest configuration and shared fixtures.

Test environment defaults are set before any app import so the settings
singleton and the engine pick them up. Outbound HTTP goes through
FakeSession objects injected into the OpenRouter and Evolution clients.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_assistente.db")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("WEBHOOK_SECRET", "")
os.environ.setdefault("EVOLUTION_API_URL", "https://evolution.test")
os.environ.setdefault("OPENROUTER_BASE_URL", "https://openrouter.test/api/v1")

import json
from decimal import Decimal

import pytest
import requests
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.config import get_settings

get_settings.cache_clear()

from app.main import app, get_pipeline, get_transport_factory
from app.models import BotSettingsRecord, Product
from app.openrouter import OpenRouterClient
from app.pipeline import MessagePipeline
from app.storage import Base, SessionLocal, engine, get_db
from app.whatsapp import EvolutionClient


# =============================================================================
# HTTP Fakes
# =============================================================================

class FakeResponse:
    """Just enough of requests.Response for the clients."""

    def __init__(self, status_code: int = 200, json_data=None):
        self.status_code = status_code
        self._json_data = json_data

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self):
        if self._json_data is None:
            raise ValueError("No JSON body")
        return self._json_data

    def raise_for_status(self) -> None:
        if not self.ok:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)


class FakeSession:
    """
    Records calls and answers from routes registered per (method, url suffix).

    A route value can be a FakeResponse, an exception instance (raised) or a
    list of those consumed in order. Unrouted calls get a 404.
    """

    def __init__(self):
        self.calls = []
        self._routes = {}

    def route(self, method: str, suffix: str, answer) -> None:
        self._routes[(method.upper(), suffix)] = answer

    def calls_to(self, suffix: str) -> list:
        return [call for call in self.calls if call["url"].endswith(suffix)]

    def _request(self, method: str, url: str, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        for (route_method, suffix), answer in self._routes.items():
            if route_method == method and url.endswith(suffix):
                if isinstance(answer, list):
                    answer = answer.pop(0)
                if isinstance(answer, Exception):
                    raise answer
                return answer
        return FakeResponse(404)

    def get(self, url, **kwargs):
        return self._request("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._request("POST", url, **kwargs)

    def put(self, url, **kwargs):
        return self._request("PUT", url, **kwargs)


def chat_response(content: str) -> FakeResponse:
    """A successful chat-completion response carrying `content`."""
    return FakeResponse(200, {"choices": [{"message": {"role": "assistant", "content": content}}]})


def analysis_response(**fields) -> FakeResponse:
    return chat_response(json.dumps(fields))


def inbound_payload(
    text: str = "frontal do galaxy s20",
    remote_jid: str = "5511999999999@s.whatsapp.net",
    from_me: bool = False,
    push_name: str = "Cliente Teste",
) -> dict:
    return {
        "key": {"remoteJid": remote_jid, "fromMe": from_me},
        "message": {"conversation": text},
        "pushName": push_name,
        "messageTimestamp": 1736935200,
    }


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def db():
    """Session on a fresh schema for each test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_settings(db: Session):
    def _make(**overrides) -> BotSettingsRecord:
        values = {
            "nome_ia": "TecBot",
            "ia_ativa": True,
            "openrouter_api": "sk-or-test",
            "openrouter_model": "openai/gpt-4o-mini",
            "evolution_token": "evo-token",
            "instancia_id": "loja1",
        }
        values.update(overrides)
        record = BotSettingsRecord(**values)
        db.add(record)
        db.commit()
        return record
    return _make


@pytest.fixture
def make_product(db: Session):
    def _make(nome: str, modelo_aparelho: str, preco: str = "100.00", quantidade: int = 1, descricao: str = None) -> Product:
        product = Product(
            nome=nome,
            modelo_aparelho=modelo_aparelho,
            preco=Decimal(preco),
            quantidade=quantidade,
            descricao=descricao,
        )
        db.add(product)
        db.commit()
        return product
    return _make


@pytest.fixture
def openrouter_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def evolution_session() -> FakeSession:
    session = FakeSession()
    session.route("POST", "/message/sendText/loja1", FakeResponse(201, {"key": {"id": "out1"}}))
    session.route("PUT", "/chat/presence/loja1", FakeResponse(200, {}))
    return session


@pytest.fixture
def pipeline_kwargs(openrouter_session, evolution_session) -> dict:
    return {
        "openrouter_factory": lambda s: OpenRouterClient.from_settings(s, session=openrouter_session),
        "transport_factory": lambda s: EvolutionClient.from_settings(s, session=evolution_session),
    }


@pytest.fixture
def pipeline(db, pipeline_kwargs) -> MessagePipeline:
    return MessagePipeline(db, **pipeline_kwargs)


@pytest.fixture
def client(db, pipeline_kwargs, evolution_session):
    """Test client whose pipeline and /status use the fake HTTP sessions."""

    def override_pipeline(session: Session = Depends(get_db)) -> MessagePipeline:
        return MessagePipeline(session, **pipeline_kwargs)

    app.dependency_overrides[get_pipeline] = override_pipeline
    app.dependency_overrides[get_transport_factory] = lambda: pipeline_kwargs["transport_factory"]

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
