"""Database engine builder.

Supabase pooler policy:
- Default: NullPool (the Supabase transaction pooler does the pooling)
- pool_pre_ping=True always
- Supabase host: sslmode enforced via connect_args (URL value wins if set,
  otherwise "require"); an unencrypted sslmode is rejected in production
- ENV: SAASKIT_DB_POOL=nullpool|queuepool (default: nullpool)
"""

import logging
import os
import re
from typing import Any

from sqlalchemy import Engine, NullPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

from saaskit_api.config.env import is_production_env
from saaskit_api.db.url_policy import SAFE_SSL_MODES, get_sslmode_from_url, is_supabase_host

logger = logging.getLogger(__name__)


def _mask_password(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r"://([^:]+):([^@]+)@", r"://\1:***@", url)


def _supabase_connect_args(url: str) -> dict[str, Any]:
    """Resolve SSL connect_args for a Supabase host.

    Raises:
        RuntimeError: Production URL asks for an unencrypted sslmode.
    """
    sslmode = get_sslmode_from_url(url) or os.getenv("SAASKIT_DB_SSLMODE") or "require"
    if sslmode not in SAFE_SSL_MODES:
        if is_production_env():
            raise RuntimeError(
                f"PRODUCTION GUARDRAIL: Supabase DB connection requires an encrypted sslmode, got '{sslmode}'. "
                "Use sslmode=require (or verify-full with a CA bundle)."
            )
        logger.warning(
            "db.engine.insecure_sslmode",
            extra={"sslmode": sslmode},
        )
    return {"sslmode": sslmode}


def build_engine(database_url: str | None = None) -> Engine:
    """
    Build SQLAlchemy engine with the Supabase pool/SSL policy.

    Args:
        database_url: Database URL. If None, reads from env DATABASE_URL.

    Returns:
        SQLAlchemy Engine instance.

    Raises:
        ValueError: If DATABASE_URL not provided, or SAASKIT_DB_POOL is invalid.

    Environment Variables:
        DATABASE_URL: Runtime connection string (required if not passed as arg)
        SAASKIT_DB_POOL: "nullpool" (default) | "queuepool"
        SAASKIT_DB_POOL_SIZE: QueuePool size (default: 5, only for queuepool)
        SAASKIT_DB_MAX_OVERFLOW: QueuePool overflow (default: 10, only for queuepool)
        SAASKIT_DB_APPLICATION_NAME: Postgres application_name tag
    """
    url = database_url or os.getenv("DATABASE_URL")
    if not url:
        raise ValueError(
            "DATABASE_URL is required. "
            "Pass as argument or set DATABASE_URL environment variable."
        )

    connect_args: dict[str, Any] = {}
    if is_supabase_host(url):
        connect_args = _supabase_connect_args(url)

    if url.startswith("postgresql"):
        app_name = os.getenv("SAASKIT_DB_APPLICATION_NAME", "saaskit-api")
        if app_name:
            connect_args["application_name"] = app_name

    pool_mode = os.getenv("SAASKIT_DB_POOL", "nullpool").lower()

    if pool_mode == "nullpool":
        engine = create_engine(
            url,
            poolclass=NullPool,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
    elif pool_mode == "queuepool":
        pool_size = int(os.getenv("SAASKIT_DB_POOL_SIZE", "5"))
        max_overflow = int(os.getenv("SAASKIT_DB_MAX_OVERFLOW", "10"))
        engine = create_engine(
            url,
            pool_pre_ping=True,
            pool_size=pool_size,
            max_overflow=max_overflow,
            connect_args=connect_args,
        )
    else:
        raise ValueError(
            f"Invalid SAASKIT_DB_POOL value: {pool_mode}. "
            "Must be 'nullpool' or 'queuepool'."
        )

    logger.debug(
        "Database engine created: pool=%s, url=%s",
        engine.pool.__class__.__name__,
        _mask_password(url),
    )

    return engine


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    """Build SQLAlchemy sessionmaker (autocommit=False, autoflush=False)."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
