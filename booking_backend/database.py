from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from booking_backend.core import config


def build_engine(database_url: str):
    connect_args = {}
    if database_url.startswith('sqlite'):
        connect_args['check_same_thread'] = False
    return create_engine(database_url, connect_args=connect_args)


engine = build_engine(config.DATABASE_URL)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_indexes_checked = False

SCHEDULING_INDEXES = {
    'availability_slots': [
        'CREATE INDEX IF NOT EXISTS idx_slots_provider_date ON availability_slots(provider_id, date, start_time)',
    ],
    'appointments': [
        'CREATE INDEX IF NOT EXISTS idx_appointments_provider_start ON appointments(provider_id, scheduled_start)',
        'CREATE INDEX IF NOT EXISTS idx_appointments_client_status ON appointments(client_id, status)',
        'CREATE INDEX IF NOT EXISTS idx_appointments_provider_status ON appointments(provider_id, status)',
    ],
}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ensure_scheduling_indexes(bind=None) -> None:
    global _scheduling_indexes_checked

    if _scheduling_indexes_checked and bind is None:
        return

    with _schema_lock:
        if _scheduling_indexes_checked and bind is None:
            return

        target = bind or engine
        existing_tables = set(inspect(target).get_table_names())

        with target.begin() as connection:
            for table_name, statements in SCHEDULING_INDEXES.items():
                if table_name not in existing_tables:
                    continue
                for statement in statements:
                    connection.execute(text(statement))

        if bind is None:
            _scheduling_indexes_checked = True
