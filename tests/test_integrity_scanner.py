from storefront_media.application.services.image_service import ImageService
from storefront_media.application.services.integrity_service import IntegrityScanner
from storefront_media.image_paths import ImageKind, OwnerKind


def test_clean_tree(image_repo, storage, jpeg_bytes):
    writer = ImageService(image_repo=image_repo, storage_repo=storage)
    a = writer.store(OwnerKind.STORE, 4, None, jpeg_bytes)
    b = writer.store(OwnerKind.PRODUCT, 4, 11, jpeg_bytes)

    diff = IntegrityScanner(image_repo, storage).scan()

    assert diff.is_clean
    assert sorted(diff.valid_system_images) == sorted([
        f"stores/4/{a.filename}", f"stores/4/thumbnails/{a.filename}",
        f"stores/4/products/11/{b.filename}", f"stores/4/products/11/thumbnails/{b.filename}",
    ])


def test_orphan_thumbnail(image_repo, storage, jpeg_bytes):
    storage.write_atomic("stores/9/thumbnails/x.jpg", jpeg_bytes)

    diff = IntegrityScanner(image_repo, storage).scan()

    assert [o.rel_path for o in diff.potential_orphans] == ["stores/9/thumbnails/x.jpg"]
    orphan = diff.potential_orphans[0]
    assert (orphan.store_id, orphan.product_id, orphan.kind) == (9, None, ImageKind.THUMBNAIL)


def test_foreign_files_are_ignored(image_repo, storage, jpeg_bytes):
    storage.write_atomic("legacy.jpg", jpeg_bytes)
    storage.write_atomic("stores/4/readme.txt", b"keep me")
    storage.write_atomic("originals/x.jpg", jpeg_bytes)

    diff = IntegrityScanner(image_repo, storage).scan()

    assert diff.potential_orphans == []
    assert sorted(diff.foreign_files) == ["legacy.jpg", "originals/x.jpg", "stores/4/readme.txt"]


def test_dangling_record(image_repo, storage):
    rec = image_repo.create(OwnerKind.STORE, 4, None, "missing.jpg", None, is_primary=True)

    diff = IntegrityScanner(image_repo, storage).scan()

    assert len(diff.dangling_records) == 1
    assert diff.dangling_records[0].record.id == rec.id
    assert diff.dangling_records[0].expected_path == "stores/4/missing.jpg"


def test_cross_tenant_mismatch(image_repo, storage, jpeg_bytes):
    writer = ImageService(image_repo=image_repo, storage_repo=storage)
    victim = writer.store(OwnerKind.STORE, 7, None, jpeg_bytes)
    rec = writer.store(OwnerKind.PRODUCT, 4, 11, jpeg_bytes)
    image_repo.update_filenames(rec.id, f"/uploads/stores/7/{victim.filename}", None)

    diff = IntegrityScanner(image_repo, storage).scan()

    assert len(diff.cross_tenant_mismatches) == 1
    mismatch = diff.cross_tenant_mismatches[0]
    assert mismatch.record.id == rec.id
    assert mismatch.current_path == f"stores/7/{victim.filename}"
    assert mismatch.expected_path == f"stores/4/products/11/{victim.filename}"
    # The tampered record is not also counted as dangling
    assert diff.dangling_records == []
    # rec's own files lost their reference
    assert sorted(o.rel_path for o in diff.potential_orphans) == sorted([
        f"stores/4/products/11/{rec.filename}", f"stores/4/products/11/thumbnails/{rec.filename}",
    ])


def test_missing_thumbnail(image_repo, storage, jpeg_bytes):
    writer = ImageService(image_repo=image_repo, storage_repo=storage)
    rec = writer.store(OwnerKind.STORE, 4, None, jpeg_bytes)
    storage.delete(f"stores/4/thumbnails/{rec.filename}")

    diff = IntegrityScanner(image_repo, storage).scan()

    assert [t.record.id for t in diff.missing_thumbnails] == [rec.id]
    assert diff.missing_thumbnails[0].expected_path == f"stores/4/thumbnails/{rec.filename}"
    assert diff.dangling_records == []


def test_legacy_full_path_filename_matches_by_basename(image_repo, storage, jpeg_bytes):
    storage.write_atomic("stores/4/abc.jpg", jpeg_bytes)
    storage.write_atomic("stores/4/thumbnails/abc.jpg", jpeg_bytes)
    image_repo.create(OwnerKind.STORE, 4, None, "uploads/old/abc.jpg", "abc.jpg")

    diff = IntegrityScanner(image_repo, storage).scan()

    assert diff.is_clean
    assert len(diff.valid_system_images) == 2


def test_duplicate_basenames_fall_back_to_full_paths(image_repo, storage, jpeg_bytes):
    storage.write_atomic("stores/4/dup.jpg", jpeg_bytes)
    storage.write_atomic("stores/5/dup.jpg", jpeg_bytes)
    image_repo.create(OwnerKind.STORE, 4, None, "dup.jpg", None)

    diff = IntegrityScanner(image_repo, storage).scan()

    assert diff.valid_system_images == ["stores/4/dup.jpg"]
    assert [o.rel_path for o in diff.potential_orphans] == ["stores/5/dup.jpg"]


def test_store_scan_counts_copies_outside_the_store(image_repo, storage, jpeg_bytes):
    writer = ImageService(image_repo=image_repo, storage_repo=storage)
    rec = writer.store(OwnerKind.STORE, 4, None, jpeg_bytes)
    copy = f"stores/5/{rec.filename}"
    storage.write_atomic(copy, jpeg_bytes)

    full = IntegrityScanner(image_repo, storage).scan()
    scoped = IntegrityScanner(image_repo, storage).scan(store_id=5)

    assert [o.rel_path for o in full.potential_orphans] == [copy]
    assert [o.rel_path for o in scoped.potential_orphans] == [copy]
    assert scoped.valid_system_images == []


def test_partial_scan_still_reports_mismatches(image_repo, storage, jpeg_bytes):
    writer = ImageService(image_repo=image_repo, storage_repo=storage)
    storage.write_atomic("stores/9/thumbnails/x.jpg", jpeg_bytes)
    image_repo.create(OwnerKind.STORE, 9, None, "missing.jpg", None)
    victim = writer.store(OwnerKind.STORE, 7, None, jpeg_bytes)
    rec = writer.store(OwnerKind.STORE, 4, None, jpeg_bytes)
    image_repo.update_filenames(rec.id, f"stores/7/{victim.filename}", None)

    diff = IntegrityScanner(image_repo, storage).scan(store_id=7)

    assert diff.store_id == 7
    assert [m.record.id for m in diff.cross_tenant_mismatches] == [rec.id]
    assert diff.potential_orphans == []
    assert diff.dangling_records == []
    assert all(path.startswith("stores/7/") for path in diff.valid_system_images)


def test_to_dict_summary(image_repo, storage):
    image_repo.create(OwnerKind.STORE, 4, None, "missing.jpg", None)
    data = IntegrityScanner(image_repo, storage).scan().to_dict()
    assert data["summary"]["dangling_records"] == 1
    assert data["dangling_records"][0]["filename"] == "missing.jpg"
