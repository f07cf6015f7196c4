import logging
from datetime import datetime, timedelta, timezone
from typing import Generator, List, Optional, Tuple

from sqlalchemy import create_engine, func, inspect, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from app.config import settings
from app.normalization import normalize_search_term
from app.schemas import BotSettings

logger = logging.getLogger(__name__)

# check_same_thread=False is required for SQLite to work with FastAPI's threadpool
_connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    settings.DATABASE_URL,
    connect_args=_connect_args,
    echo=False,
)

# Create SessionLocal class for creating database sessions
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for SQLAlchemy models
Base = declarative_base()

REQUIRED_TABLES = ("settings", "produtos", "logs_mensagens")


def init_db() -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {engine.url.render_as_string(hide_password=True)}")
    try:
        # Import models to register them with Base.metadata
        from app import models  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def get_db() -> Generator[Session, None, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and all tables exist, False otherwise.
    """
    try:
        with SessionLocal() as db:
            db.execute(text("SELECT 1"))
        inspector = inspect(engine)
        missing = [name for name in REQUIRED_TABLES if not inspector.has_table(name)]
        if missing:
            logger.error(f"Database schema not applied, missing tables: {missing}")
            return False
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


# =============================================================================
# Settings Repository Functions
# =============================================================================

def get_bot_settings(db: Session) -> Optional[BotSettings]:
    """
    Fetch the singleton settings row.

    Returns:
        BotSettings snapshot, or None when the row is missing or the query fails.
    """
    from app.models import BotSettingsRecord

    try:
        record = db.query(BotSettingsRecord).order_by(BotSettingsRecord.id.asc()).first()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to fetch settings: {e}")
        return None

    if record is None:
        logger.error("Settings row not found")
        return None
    return BotSettings.model_validate(record)


# =============================================================================
# Catalog Repository Functions
# =============================================================================

def search_products(
    db: Session,
    model: Optional[str] = None,
    part: Optional[str] = None,
    limit: int = 3
) -> list:
    """
    Find in-stock products matching a device model and/or part name.

    Both terms are normalized and matched as case-insensitive substrings:
    model against modelo_aparelho, part against nome. When both are given
    both filters apply.

    Returns:
        Up to `limit` products ordered by quantidade descending; [] when no
        term is given or the query fails.
    """
    from app.models import Product

    if not model and not part:
        return []

    try:
        query = db.query(Product)

        if model:
            normalized_model = normalize_search_term(model)
            query = query.filter(Product.modelo_aparelho.ilike(f"%{normalized_model}%"))
            logger.debug(f"Applied model filter: {normalized_model}")

        if part:
            normalized_part = normalize_search_term(part)
            query = query.filter(Product.nome.ilike(f"%{normalized_part}%"))
            logger.debug(f"Applied part filter: {normalized_part}")

        query = query.filter(Product.quantidade > 0)
        query = query.order_by(Product.quantidade.desc())
        products = query.limit(limit).all()
    except Exception as e:
        db.rollback()
        logger.error(f"Product search failed: {e}")
        return []

    logger.info(f"Product search model={model!r} part={part!r}: {len(products)} found")
    return products


# =============================================================================
# Message Log Repository Functions
# =============================================================================

def create_message_log(
    db: Session,
    numero_usuario: str,
    mensagem_usuario: str,
    resposta_ia: Optional[str] = None
):
    """
    Append a message log row. Replayed webhooks produce new rows.

    Returns:
        The persisted MessageLog, or None if the insert failed.
    """
    from app.models import MessageLog

    try:
        log = MessageLog(
            numero_usuario=numero_usuario,
            mensagem_usuario=mensagem_usuario,
            resposta_ia=resposta_ia,
        )
        db.add(log)
        db.commit()
        db.refresh(log)
        logger.info(f"Message log saved: id={log.id}, numero={numero_usuario}")
        return log
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to save message log for {numero_usuario}: {e}")
        return None


def get_message_logs(
    db: Session,
    limit: int = 50,
    offset: int = 0,
    numero: Optional[str] = None,
    q: Optional[str] = None
) -> Tuple[List, int]:
    """
    Retrieve message logs with pagination and filtering.

    Args:
        db: Database session
        limit: Maximum number of rows to return (1-100)
        offset: Number of rows to skip
        numero: Filter by sender number (exact match)
        q: Free-text search in inbound and reply text (case-insensitive)

    Returns:
        Tuple of (rows newest first, total count matching filters)
    """
    from app.models import MessageLog

    query = db.query(MessageLog)

    if numero:
        query = query.filter(MessageLog.numero_usuario == numero)

    if q:
        pattern = f"%{q}%"
        query = query.filter(
            MessageLog.mensagem_usuario.ilike(pattern) | MessageLog.resposta_ia.ilike(pattern)
        )

    total = query.count()

    query = query.order_by(MessageLog.timestamp.desc(), MessageLog.id.desc())
    rows = query.offset(offset).limit(limit).all()
    logger.info(f"Retrieved {len(rows)} of {total} message logs")

    return rows, total


def get_webhook_status(db: Session, now: Optional[datetime] = None) -> dict:
    """
    Summarize recent webhook activity from the message log.

    Returns:
        Dictionary with status ("active" or "error"), last_message and
        message_count over the last 24 hours.
    """
    from app.models import MessageLog

    now = now or datetime.now(timezone.utc)
    since = now - timedelta(hours=24)

    try:
        last_message = db.query(func.max(MessageLog.timestamp)).scalar()
        message_count = (
            db.query(func.count(MessageLog.id))
            .filter(MessageLog.timestamp >= since)
            .scalar()
        ) or 0
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to compute webhook status: {e}")
        return {"status": "error", "last_message": None, "message_count": 0}

    return {
        "status": "active",
        "last_message": last_message,
        "message_count": message_count,
    }
