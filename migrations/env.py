from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from scriptgate.db.base import Base, import_models
from scriptgate.db.session import _normalize_dsn

# ------------------------------------------------------------
# Configurazione Alembic
# ------------------------------------------------------------
config = context.config

# Carica file di configurazione del logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

# ------------------------------------------------------------
# Metadata dei modelli (devices, script_versions, payments, audit)
# ------------------------------------------------------------
import_models()
target_metadata = Base.metadata

# ------------------------------------------------------------
# Normalizzazione URL database (Railway / locale)
# ------------------------------------------------------------
db_url = os.environ.get("DATABASE_URL")
if db_url:
    config.set_main_option("sqlalchemy.url", _normalize_dsn(db_url))
else:
    logger.warning("⚠️ DATABASE_URL non impostato; verifica alembic.ini o env var.")

# ------------------------------------------------------------
# Modalità offline (solo generazione SQL)
# ------------------------------------------------------------
def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        compare_server_default=True,
    )

    with context.begin_transaction():
        context.run_migrations()

# ------------------------------------------------------------
# Modalità online (connessione diretta al DB)
# ------------------------------------------------------------
def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            compare_server_default=True,
        )

        with context.begin_transaction():
            context.run_migrations()

# ------------------------------------------------------------
# Esecuzione principale
# ------------------------------------------------------------
if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
