# Tests for roostlib.db_format
# Covers: Document/Entry schema mapping, DatabaseFile read/write/create,
#         atomic replace, permissions, format errors

import json
import os
import stat

import pytest

from roostlib.db_format import DatabaseFile, Document, Entry
from roostlib.exceptions import (
    AlreadyExists,
    FormatError,
    NotFound,
    StorageError,
    UnsupportedCipher,
)

SALT_HEX = "00112233445566778899aabbccddeeff"
TAG_HEX = "ab" * 32


def make_document(entries=None):
    return Document(
        name="vault.json",
        description="Personal password database",
        verification_tag=TAG_HEX,
        salt=SALT_HEX,
        entries=entries or [],
    )


def make_entry(title="email"):
    return Entry(
        id="7f1c0a52-1d35-4bb4-9b1f-d0f5f1d4b2a1",
        title=title,
        secret_ciphertext="AAAAAAAAAAAAAAAAAAAAAA==",
        created="2025-01-15T14:30:45+00:00",
    )


def write_raw(path, data):
    path.write_text(json.dumps(data), encoding="utf-8")


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "vault.json"


# ── Document mapping ─────────────────────────────────────────────────


class TestDocumentMapping:
    def test_to_dict_layout(self):
        data = make_document([make_entry()]).to_dict()

        assert data["header"] == {"crypto": {"cipher": "AES-256", "compression": "none"}}
        meta = data["database"]["meta"]
        assert meta == {
            "name": "vault.json",
            "description": "Personal password database",
            "hash": TAG_HEX,
            "salt": SALT_HEX,
        }
        entry = data["database"]["entries"][0]
        assert list(entry) == ["id", "title", "username", "password", "url", "notes", "created"]
        assert entry["password"] == "AAAAAAAAAAAAAAAAAAAAAA=="

    def test_from_dict_accepts_own_output(self):
        original = make_document([make_entry("a"), make_entry("b")])
        parsed = Document.from_dict(original.to_dict())
        assert parsed == original

    def test_salt_bytes(self):
        assert make_document().salt_bytes == bytes.fromhex(SALT_HEX)

    def test_legacy_gzip_compression_accepted(self):
        data = make_document().to_dict()
        data["header"]["crypto"]["compression"] = "GZip"
        assert Document.from_dict(data).compression_id == "GZip"

    def test_unknown_compression_rejected(self):
        data = make_document().to_dict()
        data["header"]["crypto"]["compression"] = "zstd"
        with pytest.raises(FormatError):
            Document.from_dict(data)

    def test_other_cipher_is_hard_error(self):
        data = make_document().to_dict()
        data["header"]["crypto"]["cipher"] = "ChaCha20"
        with pytest.raises(UnsupportedCipher):
            Document.from_dict(data)

    def test_null_entries_treated_as_empty(self):
        data = make_document().to_dict()
        data["database"]["entries"] = None
        assert Document.from_dict(data).entries == []

    def test_optional_entry_fields_default_empty(self):
        data = make_document().to_dict()
        data["database"]["entries"] = [{"id": "1", "title": "t", "password": "AAAA"}]
        entry = Document.from_dict(data).entries[0]
        assert (entry.username, entry.url, entry.notes, entry.created) == ("", "", "", "")

    @pytest.mark.parametrize("mutate", [
        lambda d: d.pop("header"),
        lambda d: d["database"].pop("meta"),
        lambda d: d["database"]["meta"].pop("hash"),
        lambda d: d["database"]["meta"].update(salt="xyz"),
        lambda d: d["database"]["meta"].update(salt="0011"),
        lambda d: d["database"]["meta"].update(name=42),
        lambda d: d["database"].update(entries={}),
        lambda d: d["database"]["entries"].append({"id": "1", "title": "t"}),
        lambda d: d["database"]["entries"].append("not an object"),
    ])
    def test_schema_violations(self, mutate):
        data = make_document().to_dict()
        mutate(data)
        with pytest.raises(FormatError):
            Document.from_dict(data)

    def test_root_must_be_object(self):
        with pytest.raises(FormatError):
            Document.from_dict([])


# ── DatabaseFile.read ────────────────────────────────────────────────


class TestRead:
    def test_missing_file(self, db_path):
        with pytest.raises(NotFound):
            DatabaseFile(str(db_path)).read()

    def test_invalid_json(self, db_path):
        db_path.write_text("{not json", encoding="utf-8")
        with pytest.raises(FormatError):
            DatabaseFile(str(db_path)).read()

    def test_directory_is_storage_error(self, tmp_path):
        with pytest.raises(StorageError):
            DatabaseFile(str(tmp_path)).read()

    def test_reads_document_written_by_older_files(self, db_path):
        # Field values as written by the earlier implementation
        write_raw(db_path, {
            "header": {"crypto": {"cipher": "AES-256", "compression": "GZip"}},
            "database": {
                "meta": {
                    "name": "vault.json",
                    "description": "Personal password database",
                    "hash": TAG_HEX,
                    "salt": SALT_HEX,
                },
                "entries": [{
                    "id": "1", "title": "email", "username": "", "password": "AAAA",
                    "url": "", "notes": "", "created": "0001-01-01T00:00:00Z",
                }],
            },
        })
        document = DatabaseFile(str(db_path)).read()
        assert document.entries[0].title == "email"
        assert document.entries[0].created == "0001-01-01T00:00:00Z"


# ── DatabaseFile.write / create ──────────────────────────────────────


class TestWrite:
    def test_write_then_read(self, db_path):
        document = make_document([make_entry()])
        DatabaseFile(str(db_path)).write(document)
        assert DatabaseFile(str(db_path)).read() == document

    def test_output_is_indented_and_stable(self, db_path):
        db_file = DatabaseFile(str(db_path))
        db_file.write(make_document([make_entry()]))
        first = db_path.read_bytes()
        db_file.write(make_document([make_entry()]))

        assert db_path.read_bytes() == first
        assert first.startswith(b'{\n  "header": {\n')
        assert first.endswith(b"}\n")

    def test_no_temp_files_left(self, db_path):
        DatabaseFile(str(db_path)).write(make_document())
        assert os.listdir(db_path.parent) == ["vault.json"]

    def test_rewrite_is_owner_only(self, db_path):
        db_path.write_text("{}", encoding="utf-8")
        os.chmod(db_path, 0o644)
        DatabaseFile(str(db_path)).write(make_document())
        assert stat.S_IMODE(os.stat(db_path).st_mode) == 0o600

    def test_failed_replace_keeps_old_content(self, db_path, monkeypatch):
        db_file = DatabaseFile(str(db_path))
        db_file.write(make_document())
        before = db_path.read_bytes()

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("roostlib.db_format.os.replace", broken_replace)
        with pytest.raises(StorageError):
            db_file.write(make_document([make_entry()]))

        assert db_path.read_bytes() == before
        assert os.listdir(db_path.parent) == ["vault.json"]

    def test_write_into_missing_directory(self, tmp_path):
        with pytest.raises(StorageError):
            DatabaseFile(str(tmp_path / "missing" / "vault.json")).write(make_document())


class TestCreate:
    def test_create_new_file(self, db_path):
        DatabaseFile(str(db_path)).create(make_document())
        assert DatabaseFile(str(db_path)).read() == make_document()
        assert stat.S_IMODE(os.stat(db_path).st_mode) == 0o600

    def test_create_makes_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "vault.json"
        DatabaseFile(str(path)).create(make_document())
        assert path.exists()

    def test_create_refuses_to_overwrite(self, db_path):
        db_path.write_text("original", encoding="utf-8")
        with pytest.raises(AlreadyExists):
            DatabaseFile(str(db_path)).create(make_document())
        assert db_path.read_text(encoding="utf-8") == "original"

    def test_failed_create_removes_reservation(self, db_path, monkeypatch):
        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr("roostlib.db_format.os.replace", broken_replace)
        with pytest.raises(StorageError):
            DatabaseFile(str(db_path)).create(make_document())
        assert not db_path.exists()

    def test_failed_fdopen_closes_descriptor(self, db_path, monkeypatch):
        closed = []
        real_close = os.close

        def broken_fdopen(fd, mode):
            raise OSError("no buffer")

        def tracking_close(fd):
            closed.append(fd)
            real_close(fd)

        monkeypatch.setattr("roostlib.db_format.os.fdopen", broken_fdopen)
        monkeypatch.setattr("roostlib.db_format.os.close", tracking_close)
        with pytest.raises(StorageError):
            DatabaseFile(str(db_path)).write(make_document())

        assert len(closed) == 1
        assert os.listdir(db_path.parent) == []

    def test_directory_synced_after_replace(self, db_path, monkeypatch):
        synced = []
        monkeypatch.setattr("roostlib.db_format._fsync_directory", synced.append)
        DatabaseFile(str(db_path)).write(make_document())
        assert synced == [str(db_path.parent)]
