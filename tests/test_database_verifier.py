from pathlib import Path

from sqlalchemy import create_engine, text

from routeaudit.config import DatabaseSettings
from routeaudit.domain.results import Err, Ok
from routeaudit.verifiers.database import SQLDatabaseVerifier


def _make_db(path: Path, *tables: str) -> str:
    url = f"sqlite:///{path}"
    engine = create_engine(url)
    with engine.begin() as conn:
        for t in tables:
            conn.execute(text(f"CREATE TABLE {t} (id INTEGER PRIMARY KEY)"))
    engine.dispose()
    return url


def test_verify_connection_sqlite(tmp_path: Path):
    url = _make_db(tmp_path / "app.db", "users")
    verifier = SQLDatabaseVerifier(DatabaseSettings(url=url))
    try:
        out = verifier.verify_connection()
        assert isinstance(out, Ok)
        assert out.value.connected
        assert out.value.dialect == "sqlite"
        assert out.value.database.endswith("app.db")
        assert out.value.server_version
    finally:
        verifier.close()


def test_verify_tables_reports_missing_and_extra(tmp_path: Path):
    url = _make_db(tmp_path / "app.db", "users", "tasks", "alembic_version")
    cfg = DatabaseSettings(url=url, expected_tables=["users", "tasks", "clients"])
    verifier = SQLDatabaseVerifier(cfg)
    try:
        out = verifier.verify_tables()
        assert isinstance(out, Ok)
        check = out.value
        assert check.tables == ["alembic_version", "tasks", "users"]
        assert check.missing == ["clients"]
        assert check.extra == ["alembic_version"]
        assert not check.complete
    finally:
        verifier.close()


def test_verify_tables_without_expectations_has_no_extras(tmp_path: Path):
    url = _make_db(tmp_path / "app.db", "users")
    verifier = SQLDatabaseVerifier(DatabaseSettings(url=url))
    out = verifier.verify_tables()
    verifier.close()
    assert isinstance(out, Ok)
    assert out.value.extra == []
    assert out.value.complete


def test_unreachable_database_is_an_err(tmp_path: Path):
    # parent directory does not exist, so sqlite cannot open the file
    url = f"sqlite:///{tmp_path / 'missing' / 'dir' / 'app.db'}"
    verifier = SQLDatabaseVerifier(DatabaseSettings(url=url))
    out = verifier.verify_connection()
    verifier.close()
    assert isinstance(out, Err)
    assert out.reason.startswith("Database connection failed")


def test_close_is_idempotent():
    verifier = SQLDatabaseVerifier(DatabaseSettings(url="sqlite://"))
    verifier.close()
    verifier.close()
