# Unit tests for:
#   - IndexLoader directory traversal and grouping
#   - Per-photo failure handling (every WarningKind)
#   - Versioning and fatal root errors

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import FakeDetector, FakeRecognizer, write_face_image
from core.exceptions import DatabaseLoadError
from core.recognizer.identity_store import WarningKind
from core.recognizer.index_loader import IndexLoader


def _kinds(warnings):
    return [w.kind for w in warnings]


def _loader(detector=None, recognizer=None, **kwargs) -> IndexLoader:
    det = detector or FakeDetector()
    rec = recognizer or FakeRecognizer()
    det.load_model()
    rec.load_model()
    return IndexLoader(det, rec, **kwargs)


class TestLoadHappyPath:

    def test_loads_every_identity(self, loader, db_root):
        store, warnings = loader.load(db_root)
        assert store.names == ("Alice", "Bob", "Carol")
        assert store.total_descriptors == 3
        assert warnings == []

    def test_first_load_is_version_zero(self, loader, db_root):
        store, _ = loader.load(db_root)
        assert store.version == 0
        assert store.root == str(db_root)

    def test_version_follows_previous(self, loader, db_root):
        store, _ = loader.load(db_root, previous_version=4)
        assert store.version == 5

    def test_accepts_str_root(self, loader, db_root):
        store, _ = loader.load(str(db_root))
        assert store.count == 3

    def test_multiple_photos_per_identity(self, loader, tmp_path, build_db):
        root = build_db(tmp_path / "db", {"Alice": [1, 2, 3]})
        store, _ = loader.load(root)
        alice = store.get("Alice")
        assert alice.num_descriptors == 3
        assert [p.rsplit("/", 1)[-1] for p in alice.source_paths] == [
            "photo_0.png", "photo_1.png", "photo_2.png",
        ]

    def test_descriptor_records_source_path(self, loader, db_root):
        store, _ = loader.load(db_root)
        assert store.get("Bob").descriptors[0].source_path == str(db_root / "Bob" / "photo_0.png")

    def test_empty_root_gives_empty_store(self, loader, tmp_path):
        root = tmp_path / "db"
        root.mkdir()
        store, warnings = loader.load(root)
        assert store.is_empty
        assert warnings == []

    def test_extension_is_case_insensitive(self, loader, tmp_path):
        root = tmp_path / "db"
        src = write_face_image(root / "Alice" / "a.png", seed=1)
        src.rename(root / "Alice" / "A.PNG")
        store, warnings = loader.load(root)
        assert store.get("Alice").num_descriptors == 1
        assert warnings == []


class TestTraversal:

    def test_hidden_entries_ignored(self, loader, db_root):
        write_face_image(db_root / ".cache" / "x.png", seed=9)
        write_face_image(db_root / "Alice" / ".hidden.png", seed=9)
        store, warnings = loader.load(db_root)
        assert ".cache" not in store
        assert store.get("Alice").num_descriptors == 1
        assert warnings == []

    def test_files_at_root_ignored(self, loader, db_root):
        write_face_image(db_root / "stray.png", seed=9)
        (db_root / "README.txt").write_text("notes")
        store, warnings = loader.load(db_root)
        assert store.count == 3
        assert warnings == []

    def test_nested_directories_ignored(self, loader, db_root):
        write_face_image(db_root / "Alice" / "old" / "x.png", seed=9)
        store, warnings = loader.load(db_root)
        assert store.get("Alice").num_descriptors == 1
        assert warnings == []

    def test_visualize_copies_skipped_silently(self, loader, db_root):
        write_face_image(db_root / "Alice" / "photo_0_visualize.png", seed=1, faces=3)
        store, warnings = loader.load(db_root)
        assert store.get("Alice").num_descriptors == 1
        assert warnings == []

    def test_custom_skip_suffixes(self, tmp_path, build_db):
        root = build_db(tmp_path / "db", {"Alice": [1]})
        write_face_image(root / "Alice" / "thumb_small.png", seed=2)
        store, _ = _loader(skip_suffixes=("_small",)).load(root)
        assert store.get("Alice").num_descriptors == 1

    def test_names_are_trimmed_and_merged(self, loader, tmp_path):
        root = tmp_path / "db"
        write_face_image(root / "Alice" / "a.png", seed=1)
        write_face_image(root / "Alice " / "b.png", seed=2)
        store, warnings = loader.load(root)
        assert store.names == ("Alice",)
        assert store.get("Alice").num_descriptors == 2
        assert warnings == []

    def test_names_are_case_sensitive(self, loader, tmp_path):
        root = tmp_path / "db"
        write_face_image(root / "alice" / "a.png", seed=1)
        write_face_image(root / "Alice" / "a.png", seed=2)
        store, _ = loader.load(root)
        assert store.names == ("Alice", "alice")

    @pytest.mark.parametrize("dirname", ["unknown", "Unknown", "UNKNOWN", "   "])
    def test_reserved_or_blank_name_rejected(self, loader, db_root, dirname):
        write_face_image(db_root / dirname / "a.png", seed=9)
        store, warnings = loader.load(db_root)
        assert store.count == 3
        assert _kinds(warnings) == [WarningKind.INVALID_NAME]
        assert warnings[0].identity is None


class TestPhotoWarnings:

    def test_unsupported_extension(self, loader, db_root):
        (db_root / "Alice" / "notes.txt").write_text("hi")
        store, warnings = loader.load(db_root)
        assert store.get("Alice").num_descriptors == 1
        assert _kinds(warnings) == [WarningKind.UNSUPPORTED_FORMAT]
        assert warnings[0].identity == "Alice"
        assert warnings[0].path.endswith("notes.txt")

    def test_undecodable_image(self, loader, db_root):
        (db_root / "Bob" / "broken.jpg").write_bytes(b"not an image")
        store, warnings = loader.load(db_root)
        assert store.get("Bob").num_descriptors == 1
        assert _kinds(warnings) == [WarningKind.UNREADABLE_IMAGE]

    def test_empty_image_file(self, loader, db_root):
        (db_root / "Bob" / "empty.png").write_bytes(b"")
        _, warnings = loader.load(db_root)
        assert _kinds(warnings) == [WarningKind.UNREADABLE_IMAGE]

    def test_no_face(self, loader, db_root):
        write_face_image(db_root / "Alice" / "landscape.png", seed=5, faces=0)
        store, warnings = loader.load(db_root)
        assert store.get("Alice").num_descriptors == 1
        assert _kinds(warnings) == [WarningKind.NO_FACE]

    def test_multiple_faces(self, loader, db_root):
        write_face_image(db_root / "Alice" / "group.png", seed=5, faces=2)
        store, warnings = loader.load(db_root)
        assert store.get("Alice").num_descriptors == 1
        assert _kinds(warnings) == [WarningKind.MULTIPLE_FACES]

    def test_detector_exception(self, tmp_path, build_db):
        root = build_db(tmp_path / "db", {"Alice": [1, 7]})
        store, warnings = _loader(detector=FakeDetector(fail_seeds={7})).load(root)
        assert store.get("Alice").num_descriptors == 1
        assert _kinds(warnings) == [WarningKind.DETECTION_FAILED]

    def test_recognizer_returns_none(self, tmp_path, build_db):
        root = build_db(tmp_path / "db", {"Alice": [1, 7]})
        store, warnings = _loader(recognizer=FakeRecognizer(none_seeds={7})).load(root)
        assert store.get("Alice").num_descriptors == 1
        assert _kinds(warnings) == [WarningKind.EMBEDDING_FAILED]

    def test_recognizer_exception(self, tmp_path, build_db):
        root = build_db(tmp_path / "db", {"Alice": [1, 7]})
        store, warnings = _loader(recognizer=FakeRecognizer(fail_seeds={7})).load(root)
        assert store.get("Alice").num_descriptors == 1
        assert _kinds(warnings) == [WarningKind.EMBEDDING_FAILED]

    def test_dimension_mismatch(self, tmp_path, build_db):
        root = build_db(tmp_path / "db", {"Alice": [1], "Bob": [2, 5]})
        store, warnings = _loader(recognizer=FakeRecognizer(dims={5: 64})).load(root)
        assert store.dim == 128
        assert store.get("Bob").num_descriptors == 1
        assert _kinds(warnings) == [WarningKind.DIMENSION_MISMATCH]
        assert warnings[0].identity == "Bob"

    def test_one_bad_photo_does_not_abort_load(self, loader, db_root):
        (db_root / "Alice" / "broken.jpg").write_bytes(b"xx")
        write_face_image(db_root / "Bob" / "group.png", seed=5, faces=3)
        store, warnings = loader.load(db_root)
        assert store.names == ("Alice", "Bob", "Carol")
        assert sorted(w.kind.value for w in warnings) == ["multiple_faces", "unreadable_image"]


class TestEmptyIdentity:

    def test_directory_without_photos(self, loader, db_root):
        (db_root / "Dave").mkdir()
        store, warnings = loader.load(db_root)
        assert "Dave" not in store
        assert _kinds(warnings) == [WarningKind.EMPTY_IDENTITY]
        assert warnings[0].identity == "Dave"

    def test_directory_with_only_bad_photos(self, loader, db_root):
        write_face_image(db_root / "Dave" / "none.png", seed=5, faces=0)
        store, warnings = loader.load(db_root)
        assert "Dave" not in store
        assert _kinds(warnings) == [WarningKind.NO_FACE, WarningKind.EMPTY_IDENTITY]

    def test_unlistable_identity_directory(self, loader, db_root, monkeypatch):
        real_iterdir = Path.iterdir

        def iterdir(self):
            if self.name == "Bob":
                raise PermissionError("Permission denied")
            return real_iterdir(self)

        monkeypatch.setattr(Path, "iterdir", iterdir)
        store, warnings = loader.load(db_root)
        assert store.names == ("Alice", "Carol")
        assert _kinds(warnings) == [
            WarningKind.UNREADABLE_DIRECTORY,
            WarningKind.EMPTY_IDENTITY,
        ]
        assert warnings[0].identity == "Bob"


class TestFatalErrors:

    def test_missing_root(self, loader, tmp_path):
        with pytest.raises(DatabaseLoadError) as exc_info:
            loader.load(tmp_path / "missing")
        assert exc_info.value.details["root"] == str(tmp_path / "missing")

    def test_root_is_a_file(self, loader, tmp_path):
        f = tmp_path / "db.txt"
        f.write_text("x")
        with pytest.raises(DatabaseLoadError, match="not a directory"):
            loader.load(f)


class TestLoaderMisc:

    def test_extensions_lowercased(self):
        loader = _loader(image_extensions=(".JPG", ".Png"))
        assert loader.image_extensions == (".jpg", ".png")

    def test_restricted_extensions(self, tmp_path, build_db):
        root = build_db(tmp_path / "db", {"Alice": [1]})
        store, warnings = _loader(image_extensions=(".jpg",)).load(root)
        assert "Alice" not in store
        assert _kinds(warnings) == [WarningKind.UNSUPPORTED_FORMAT, WarningKind.EMPTY_IDENTITY]

    def test_show_progress(self, tmp_path, build_db):
        root = build_db(tmp_path / "db", {"Alice": [1]})
        store, _ = _loader(show_progress=True).load(root)
        assert store.count == 1

    def test_repr(self, loader):
        assert "FakeDetector" in repr(loader)
