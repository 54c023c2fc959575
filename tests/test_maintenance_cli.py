import json

import pytest
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.pool import StaticPool

from storefront_media import maintenance
from storefront_media.image_paths import OwnerKind
from storefront_media.infrastructure.persistence.sqlalchemy.repositories.image_repository_sql import SqlImageRepository


@pytest.fixture
def engine(monkeypatch):
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    monkeypatch.setattr(maintenance, "engine", engine)
    monkeypatch.setattr(maintenance, "create_db_and_tables", lambda: SQLModel.metadata.create_all(engine))
    return engine


@pytest.fixture
def dirs(tmp_path, storage):
    return ["--upload-dir", str(storage.root), "--backup-dir", str(tmp_path / "backups")]


def test_scan_json_reports_orphan(engine, storage, dirs, jpeg_bytes, capsys):
    storage.write_atomic("stores/9/thumbnails/x.jpg", jpeg_bytes)

    code = maintenance.main(dirs + ["scan", "--json"])

    data = json.loads(capsys.readouterr().out)
    assert code == 1
    assert data["potential_orphans"] == ["stores/9/thumbnails/x.jpg"]


def test_scan_clean_tree_exits_zero(engine, storage, dirs, capsys):
    assert maintenance.main(dirs + ["scan"]) == 0
    assert "Integrity scan of all stores" in capsys.readouterr().out


def test_reconcile_defaults_to_dry_run(engine, storage, dirs, jpeg_bytes, capsys):
    storage.write_atomic("stores/9/x.jpg", jpeg_bytes)

    assert maintenance.main(dirs + ["reconcile"]) == 0

    assert "planned" in capsys.readouterr().out
    assert storage.exists("stores/9/x.jpg")


def test_reconcile_apply(engine, storage, dirs, jpeg_bytes, capsys):
    storage.write_atomic("stores/9/x.jpg", jpeg_bytes)
    with Session(engine) as session:
        SQLModel.metadata.create_all(engine)
        SqlImageRepository(session).create(OwnerKind.STORE, 4, None, "missing.jpg", None)

    code = maintenance.main(dirs + ["reconcile", "--apply", "--dangling", "delete", "--json"])

    report = json.loads(capsys.readouterr().out)
    assert code == 0
    assert report["counts"]["succeeded"] == 2
    assert not storage.exists("stores/9/x.jpg")


def test_no_backup_requires_confirmation(engine, storage, dirs, jpeg_bytes):
    storage.write_atomic("stores/9/x.jpg", jpeg_bytes)

    assert maintenance.main(dirs + ["reconcile", "--apply", "--no-backup"]) == 2
    assert storage.exists("stores/9/x.jpg")

    assert maintenance.main(dirs + ["reconcile", "--apply", "--no-backup", "--yes"]) == 0
    assert not storage.exists("stores/9/x.jpg")


@pytest.mark.parametrize("store_id", ["0", "-3", "four"])
def test_store_id_must_be_positive(engine, dirs, store_id, capsys):
    with pytest.raises(SystemExit) as exc:
        maintenance.main(dirs + ["scan", "--store-id", store_id])
    assert exc.value.code == 2
    assert "--store-id" in capsys.readouterr().err
