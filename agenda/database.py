from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from agenda.core import config


Base = declarative_base()

_schema_lock = Lock()
_schema_checked_urls: set[str] = set()

SCHEDULING_INDEXES = {
    'appointments': [
        'CREATE INDEX IF NOT EXISTS idx_appointments_professional_window '
        'ON appointments(tenant_id, professional_id, scheduled_at, ends_at)',
        'CREATE INDEX IF NOT EXISTS idx_appointments_tenant_status ON appointments(tenant_id, status)',
        'CREATE INDEX IF NOT EXISTS idx_appointments_client ON appointments(tenant_id, client_id)',
    ],
    'appointment_reminders': [
        'CREATE INDEX IF NOT EXISTS idx_appointment_reminders_due '
        'ON appointment_reminders(status, scheduled_for)',
    ],
    'availability_rules': [
        'CREATE INDEX IF NOT EXISTS idx_availability_rules_lookup '
        'ON availability_rules(tenant_id, professional_id, day_of_week, is_active)',
    ],
    'availability_blocks': [
        'CREATE INDEX IF NOT EXISTS idx_availability_blocks_window '
        'ON availability_blocks(tenant_id, professional_id, start_at, end_at)',
    ],
}


def create_db_engine(database_url: str | None = None) -> Engine:
    url = database_url or config.DATABASE_URL
    if not url:
        raise RuntimeError('DATABASE_URL is not configured.')

    if url.startswith('sqlite'):
        return create_engine(url, connect_args={'check_same_thread': False}, pool_pre_ping=True)

    return create_engine(
        url,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=engine,
    )


def ensure_scheduling_schema(engine: Engine) -> None:
    engine_key = str(engine.url)
    if engine_key in _schema_checked_urls:
        return

    with _schema_lock:
        if engine_key in _schema_checked_urls:
            return

        from agenda.models import appointment, availability  # noqa: F401

        Base.metadata.create_all(bind=engine)

        existing_tables = set(inspect(engine).get_table_names())
        with engine.begin() as connection:
            for table_name, statements in SCHEDULING_INDEXES.items():
                if table_name not in existing_tables:
                    continue
                for statement in statements:
                    connection.execute(text(statement))

        _schema_checked_urls.add(engine_key)
