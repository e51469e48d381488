from pathlib import Path
import re

VERSIONS_DIR = Path(__file__).resolve().parents[2] / "alembic" / "versions"


def _read_revisions() -> dict[str, str | None]:
    revisions = {}
    for migration_file in VERSIONS_DIR.glob("*.py"):
        text = migration_file.read_text(encoding="utf-8")
        revision = re.search(r'^revision = "([^"]+)"', text, re.MULTILINE)
        if not revision:
            continue
        down = re.search(r'^down_revision = "([^"]+)"', text, re.MULTILINE)
        revisions[revision.group(1)] = down.group(1) if down else None
    return revisions


def test_alembic_revision_ids_fit_version_table_limit():
    """Postgres alembic_version.version_num is varchar(32)."""
    too_long = [revision for revision in _read_revisions() if len(revision) > 32]

    assert not too_long, f"Alembic revision IDs must be <= 32 chars. Found: {too_long}"


def test_migrations_form_a_single_chain():
    revisions = _read_revisions()

    roots = [revision for revision, down in revisions.items() if down is None]
    assert len(roots) == 1
    for down in revisions.values():
        assert down is None or down in revisions
