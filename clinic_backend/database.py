from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_backend.core import config


connect_args = {"check_same_thread": False} if config.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(config.DATABASE_URL, echo=config.DATABASE_ECHO, connect_args=connect_args)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_appointment_schema_checked = False
_time_block_schema_checked = False
_patient_schema_checked = False


def ensure_appointment_schema() -> None:
    global _appointment_schema_checked

    if _appointment_schema_checked:
        return

    with _schema_lock:
        if _appointment_schema_checked:
            return

        inspector = inspect(engine)

        if 'appointments' not in inspector.get_table_names():
            _appointment_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('appointments')}
        migration_steps = [
            ('cancellation_reason', 'ALTER TABLE appointments ADD COLUMN cancellation_reason VARCHAR'),
            ('cancelled_at', 'ALTER TABLE appointments ADD COLUMN cancelled_at TIMESTAMP'),
            ('cancelled_by', 'ALTER TABLE appointments ADD COLUMN cancelled_by VARCHAR'),
        ]

        with engine.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_owner_date ON appointments(owner_id, date)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_patient ON appointments(patient_id)')
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_appointments_owner_status ON appointments(owner_id, status)')
            )

        _appointment_schema_checked = True


def ensure_time_block_schema() -> None:
    global _time_block_schema_checked

    if _time_block_schema_checked:
        return

    with _schema_lock:
        if _time_block_schema_checked:
            return

        inspector = inspect(engine)

        if 'time_blocks' not in inspector.get_table_names():
            _time_block_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('time_blocks')}

        with engine.begin() as connection:
            if 'type' not in existing_columns:
                connection.execute(text("ALTER TABLE time_blocks ADD COLUMN type VARCHAR DEFAULT 'other'"))
            if 'recurrence' not in existing_columns:
                connection.execute(text('ALTER TABLE time_blocks ADD COLUMN recurrence JSON'))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_time_blocks_owner_date ON time_blocks(owner_id, date)')
            )

        _time_block_schema_checked = True


def ensure_patient_schema() -> None:
    global _patient_schema_checked

    if _patient_schema_checked:
        return

    with _schema_lock:
        if _patient_schema_checked:
            return

        inspector = inspect(engine)

        if 'patients' not in inspector.get_table_names():
            _patient_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('patients')}

        with engine.begin() as connection:
            if 'status' not in existing_columns:
                connection.execute(text("ALTER TABLE patients ADD COLUMN status VARCHAR NOT NULL DEFAULT 'active'"))
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_patients_owner_status ON patients(owner_id, status)')
            )

        _patient_schema_checked = True
