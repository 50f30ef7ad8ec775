from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from telehealth.core import config


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(config.DATABASE_URL, echo=config.SQL_ECHO, **_engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_scheduling_schema_checked = False


def ensure_scheduling_schema() -> None:
    """Bring tables created by older deployments up to the current shape."""
    global _scheduling_schema_checked

    if _scheduling_schema_checked:
        return

    with _schema_lock:
        if _scheduling_schema_checked:
            return

        inspector = inspect(engine)
        table_names = inspector.get_table_names()

        if 'appointments' not in table_names:
            _scheduling_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('reminder_sent', 'ALTER TABLE appointments ADD COLUMN reminder_sent BOOLEAN DEFAULT FALSE'),
            ('version', 'ALTER TABLE appointments ADD COLUMN version INTEGER DEFAULT 1'),
            ('duration_minutes', 'ALTER TABLE appointments ADD COLUMN duration_minutes INTEGER DEFAULT 30'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            # Older deployments let no_show rows release the slot.
            connection.execute(text('DROP INDEX IF EXISTS uq_appointments_doctor_slot'))
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_appointments_doctor_instant '
                    'ON appointments(doctor_id, appointment_date) '
                    "WHERE status IN ('scheduled', 'confirmed', 'in_progress', 'completed', 'no_show')"
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient_date ON appointments(patient_id, appointment_date)')
            )
            if 'payments' in table_names:
                connection.execute(
                    text(
                        'CREATE UNIQUE INDEX IF NOT EXISTS uq_payments_completed_per_appointment '
                        "ON payments(appointment_id) WHERE payment_status = 'completed'"
                    )
                )

        _scheduling_schema_checked = True
