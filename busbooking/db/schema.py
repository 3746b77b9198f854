"""Migration-level schema flag, resolved once per process.

Components never inspect tables or columns at request time; they receive the
:class:`SchemaState` computed here at startup.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

# Bump together with every new file in alembic/versions
EXPECTED_REVISION = "0002_trip_ops_audit"


@dataclass(frozen=True)
class SchemaState:
    revision: str | None

    @property
    def is_current(self) -> bool:
        return self.revision == EXPECTED_REVISION


class SchemaMismatch(RuntimeError):
    pass


def resolve_schema_state(engine) -> SchemaState:
    try:
        with engine.connect() as conn:
            rev = conn.execute(text("SELECT version_num FROM alembic_version")).scalar()
    except SQLAlchemyError:
        logger.warning("alembic_version table not readable; treating schema as unmigrated")
        rev = None
    return SchemaState(revision=rev)


def require_current_schema(state: SchemaState) -> None:
    if not state.is_current:
        raise SchemaMismatch(
            f"database schema is at {state.revision!r}, expected {EXPECTED_REVISION!r} (run alembic upgrade head)"
        )
