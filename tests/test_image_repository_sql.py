import pytest
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool

from storefront_media.db.models import ImageAsset  # noqa: F401
from storefront_media.image_paths import OwnerKind
from storefront_media.infrastructure.persistence.sqlalchemy.repositories.image_repository_sql import SqlImageRepository


@pytest.fixture
def repo():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield SqlImageRepository(session)


def test_create_and_get(repo):
    rec = repo.create(OwnerKind.PRODUCT, 4, 11, "a.jpg", "a.jpg", is_primary=True)
    got = repo.get(rec.id)
    assert got.owner_kind == OwnerKind.PRODUCT
    assert (got.store_id, got.product_id, got.filename, got.thumbnail_filename) == (4, 11, "a.jpg", "a.jpg")
    assert got.is_primary
    assert got.created_at is not None
    assert repo.get(999) is None


def test_display_order_increments_per_owner(repo):
    a = repo.create(OwnerKind.STORE, 4, None, "a.jpg", None)
    b = repo.create(OwnerKind.STORE, 4, None, "b.jpg", None)
    other = repo.create(OwnerKind.STORE, 5, None, "c.jpg", None)
    assert (a.display_order, b.display_order, other.display_order) == (0, 1, 0)
    assert [r.filename for r in repo.list_for_owner(OwnerKind.STORE, 4, None)] == ["a.jpg", "b.jpg"]


def test_store_and_product_images_are_separate_owners(repo):
    repo.create(OwnerKind.STORE, 4, None, "store.jpg", None, is_primary=True)
    repo.create(OwnerKind.PRODUCT, 4, 11, "product.jpg", None, is_primary=True)
    assert repo.get_primary(OwnerKind.STORE, 4, None).filename == "store.jpg"
    assert repo.get_primary(OwnerKind.PRODUCT, 4, 11).filename == "product.jpg"
    assert repo.get_primary(OwnerKind.PRODUCT, 4, 12) is None


def test_only_one_primary_per_owner(repo):
    a = repo.create(OwnerKind.STORE, 4, None, "a.jpg", None, is_primary=True)
    b = repo.create(OwnerKind.STORE, 4, None, "b.jpg", None, is_primary=True)
    assert not repo.get(a.id).is_primary
    assert repo.get_primary(OwnerKind.STORE, 4, None).id == b.id

    repo.set_primary(a.id)
    primaries = [r.id for r in repo.list_for_owner(OwnerKind.STORE, 4, None) if r.is_primary]
    assert primaries == [a.id]
    assert repo.set_primary(999) is None


def test_find_by_basename_matches_exact_names_and_legacy_paths(repo):
    a = repo.create(OwnerKind.STORE, 4, None, "x_1.jpg", None)
    b = repo.create(OwnerKind.STORE, 5, None, "/uploads/stores/4/x_1.jpg", None)
    repo.create(OwnerKind.STORE, 6, None, "xa1.jpg", None)
    c = repo.create(OwnerKind.STORE, 7, None, "y.jpg", "x_1.jpg")
    assert [r.id for r in repo.find_by_basename("x_1.jpg")] == [a.id, b.id, c.id]


def test_update_filenames_and_delete(repo):
    rec = repo.create(OwnerKind.STORE, 4, None, "stores/7/a.jpg", None)
    updated = repo.update_filenames(rec.id, "a.jpg", "a.jpg")
    assert (updated.filename, updated.thumbnail_filename) == ("a.jpg", "a.jpg")
    assert repo.delete(rec.id)
    assert not repo.delete(rec.id)
    assert repo.update_filenames(rec.id, "b.jpg", None) is None
    assert list(repo.list_all()) == []


def test_promote_latest_picks_newest_remaining_image(repo):
    a = repo.create(OwnerKind.PRODUCT, 4, 11, "a.jpg", None, is_primary=True)
    repo.create(OwnerKind.PRODUCT, 4, 11, "b.jpg", None)
    c = repo.create(OwnerKind.PRODUCT, 4, 11, "c.jpg", None)
    repo.create(OwnerKind.PRODUCT, 4, 12, "other.jpg", None)
    repo.delete(a.id)

    promoted = repo.promote_latest(OwnerKind.PRODUCT, 4, 11)

    assert promoted.id == c.id
    assert repo.get_primary(OwnerKind.PRODUCT, 4, 11).id == c.id
    assert repo.promote_latest(OwnerKind.STORE, 9, None) is None


def test_failed_commit_rolls_back_session(repo, monkeypatch):
    rec = repo.create(OwnerKind.STORE, 4, None, "a.jpg", None)
    original_commit = repo.session.commit

    def failing_commit():
        raise OperationalError("UPDATE image_assets", {}, Exception("database unavailable"))

    monkeypatch.setattr(repo.session, "commit", failing_commit)
    with pytest.raises(OperationalError):
        repo.update_filenames(rec.id, "b.jpg", None)
    with pytest.raises(OperationalError):
        repo.delete(rec.id)
    monkeypatch.setattr(repo.session, "commit", original_commit)

    assert repo.get(rec.id).filename == "a.jpg"
    assert repo.delete(rec.id)
