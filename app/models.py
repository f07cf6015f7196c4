"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, Numeric, String, Text, func

from app.storage import Base


class BotSettingsRecord(Base):
    """
    Singleton row holding the assistant configuration.

    Table: settings
    Edited by the admin dashboard; the webhook pipeline only reads it.
    """
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    nome_ia = Column(String, nullable=False, default="Assistente Técnico")
    ia_ativa = Column(Boolean, nullable=False, default=False)
    openrouter_api = Column(String, nullable=True)
    openrouter_model = Column(String, nullable=True)
    evolution_token = Column(String, nullable=True)
    instancia_id = Column(String, nullable=True)
    # Scale peripheral fields, unused by the pipeline
    balanca_status = Column(String, nullable=True)
    balanca_modelo = Column(String, nullable=True)


class Product(Base):
    """
    Catalog row for a spare part.

    Table: produtos
    """
    __tablename__ = "produtos"
    __table_args__ = (
        CheckConstraint("quantidade >= 0", name="ck_produtos_quantidade_non_negative"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    nome = Column(String, nullable=False, index=True)
    modelo_aparelho = Column(String, nullable=False, index=True)
    descricao = Column(Text, nullable=True)
    preco = Column(Numeric(10, 2), nullable=False)
    quantidade = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class MessageLog(Base):
    """
    One row per processed inbound message.

    Table: logs_mensagens
    resposta_ia is NULL when the reply could not be delivered.
    """
    __tablename__ = "logs_mensagens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    numero_usuario = Column(String, nullable=False, index=True)
    mensagem_usuario = Column(Text, nullable=False)
    resposta_ia = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), index=True)
