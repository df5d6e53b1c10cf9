import os

from sqlalchemy import inspect

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinic_backend import main  # noqa: E402
from clinic_backend.database import build_engine  # noqa: E402


def test_startup_creates_tables_and_tenant_indexes(tmp_path, monkeypatch) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'startup.db'}")
    monkeypatch.setattr(main, 'engine', engine)

    try:
        main.initialize_database()

        inspector = inspect(engine)
        assert {'users', 'patients', 'appointments'} <= set(inspector.get_table_names())
        columns = {column['name'] for column in inspector.get_columns('appointments')}
        assert {'notes', 'room', 'updated_at'} <= columns
        indexes = {index['name'] for index in inspector.get_indexes('appointments')}
        assert indexes == {
            'idx_appointments_tenant_dentist_start',
            'idx_appointments_tenant_patient_start',
        }
    finally:
        engine.dispose()
