"""Alembic migration tests.

File named test_zzz_alembic.py to sort LAST in pytest collection order.
"""

import os
import subprocess
from pathlib import Path

from sqlalchemy import create_engine, inspect

REPO_ROOT = Path(__file__).resolve().parent.parent


def _alembic(*args: str, db_path: Path) -> subprocess.CompletedProcess:
    env = {**os.environ, "CTRACK_DATABASE_URL": f"sqlite+aiosqlite:///{db_path}"}
    return subprocess.run(
        ["alembic", *args],
        capture_output=True,
        text=True,
        cwd=REPO_ROOT,
        env=env,
    )


def test_alembic_upgrade_head(tmp_path: Path) -> None:
    """alembic upgrade head creates every table."""
    db_path = tmp_path / "migrated.db"
    result = _alembic("upgrade", "head", db_path=db_path)
    assert result.returncode == 0, f"alembic upgrade failed: {result.stderr}"

    engine = create_engine(f"sqlite:///{db_path}")
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert {"users", "user_stats", "challenges", "challenge_participants", "check_in_notes"} <= tables


def test_alembic_current_shows_head(tmp_path: Path) -> None:
    """alembic current shows the latest revision."""
    db_path = tmp_path / "current.db"
    assert _alembic("upgrade", "head", db_path=db_path).returncode == 0
    result = _alembic("current", db_path=db_path)
    assert result.returncode == 0
    assert "001_challenge_tables" in result.stdout


def test_alembic_downgrade_base(tmp_path: Path) -> None:
    """The schema migration is reversible."""
    db_path = tmp_path / "downgrade.db"
    assert _alembic("upgrade", "head", db_path=db_path).returncode == 0
    result = _alembic("downgrade", "base", db_path=db_path)
    assert result.returncode == 0, result.stderr
