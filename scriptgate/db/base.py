from sqlalchemy.orm import declarative_base

# ------------------------------------------------------------
# BASE DICHIARATIVA SQLALCHEMY
# ------------------------------------------------------------
Base = declarative_base()


def import_models() -> None:
    """
    Importa i modelli per registrarli su Base.metadata
    (usato da Alembic e da create_all nei test).
    Se in futuro aggiungiamo nuovi modelli, vanno importati qui.
    """
    from scriptgate.models import audit_event, device, payment, script_version  # noqa: F401
