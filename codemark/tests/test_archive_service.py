"""
Upload validation and archive extraction tests
"""
import io
import tarfile
import zipfile

import pytest

from codemark.config import settings
from codemark.errors import ErrorCode, ValidationError
from codemark.services import archive_service


def _write(path, data: bytes):
    path.write_bytes(data)
    return path


def test_classification():
    assert archive_service.get_file_type("index.html") == "Web"
    assert archive_service.get_file_type("app.PY") == "Backend"
    assert archive_service.get_file_type("settings.yaml") == "Configuration"
    assert archive_service.get_file_type("schema.sql") == "Database"
    assert archive_service.get_file_type("README.md") == "Document"
    assert archive_service.get_file_type("binary.exe") == "Unknown"

    assert archive_service.detect_language("Main.java") == "Java"
    assert archive_service.detect_language("view.tsx") == "TypeScript (React)"
    assert archive_service.detect_language("Makefile") is None

    assert archive_service.is_archive("work.zip")
    assert archive_service.is_archive("work.tgz")
    assert not archive_service.is_archive("work.py")


def test_sanitize_filename_strips_directories():
    assert archive_service.sanitize_filename("../../etc/passwd.py") == "passwd.py"
    assert archive_service.sanitize_filename("C:\\Users\\me\\main.go") == "main.go"

    with pytest.raises(ValidationError):
        archive_service.sanitize_filename("")
    with pytest.raises(ValidationError):
        archive_service.sanitize_filename(None)


def test_validate_upload_rejections(monkeypatch):
    with pytest.raises(ValidationError) as exc_info:
        archive_service.validate_upload("main.py", b"")
    assert exc_info.value.code == ErrorCode.INVALID_INPUT

    with pytest.raises(ValidationError) as exc_info:
        archive_service.validate_upload("virus.exe", b"MZ")
    assert exc_info.value.code == ErrorCode.UNSUPPORTED_FILE_TYPE

    monkeypatch.setattr(settings, "MAX_UPLOAD_SIZE", 8)
    with pytest.raises(ValidationError) as exc_info:
        archive_service.validate_upload("main.py", b"print('too long')")
    assert exc_info.value.code == ErrorCode.FILE_TOO_LARGE

    archive_service.validate_upload("main.py", b"pass")


def test_extract_zip_lists_files(tmp_path, make_zip):
    archive = _write(tmp_path / "report.zip", make_zip({
        "src/app.py": "print('hi')\n",
        "src/static/site.css": "body {}\n",
        "__MACOSX/src/._app.py": "junk",
        "src/.DS_Store": "junk",
    }))

    entries = archive_service.extract_archive(archive, tmp_path / "out")

    assert sorted(e["relative_path"] for e in entries) == ["src/app.py", "src/static/site.css"]
    app_entry = next(e for e in entries if e["name"] == "app.py")
    assert app_entry["language"] == "Python"
    assert app_entry["file_type"] == "Backend"
    assert app_entry["size"] == len("print('hi')\n")
    assert (tmp_path / "out" / "src" / "static" / "site.css").read_text() == "body {}\n"


def test_extract_tar(tmp_path):
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        data = b"SELECT 1;\n"
        info = tarfile.TarInfo("db/init.sql")
        info.size = len(data)
        archive.addfile(info, io.BytesIO(data))
    path = _write(tmp_path / "work.tgz", buffer.getvalue())

    entries = archive_service.extract_archive(path, tmp_path / "out")

    assert entries == [{
        "name": "init.sql",
        "relative_path": "db/init.sql",
        "file_type": "Database",
        "language": "SQL",
        "size": len(data),
    }]


def test_zip_slip_rejected(tmp_path):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("ok.py", "pass")
        archive.writestr("../escape.py", "import os")
    path = _write(tmp_path / "evil.zip", buffer.getvalue())

    with pytest.raises(ValidationError) as exc_info:
        archive_service.extract_archive(path, tmp_path / "out")

    assert exc_info.value.code == ErrorCode.INVALID_ARCHIVE
    assert not (tmp_path / "escape.py").exists()


def test_empty_archive_rejected(tmp_path, make_zip):
    path = _write(tmp_path / "empty.zip", make_zip({}))

    with pytest.raises(ValidationError) as exc_info:
        archive_service.extract_archive(path, tmp_path / "out")
    assert exc_info.value.code == ErrorCode.INVALID_ARCHIVE


def test_corrupt_archive_rejected(tmp_path):
    path = _write(tmp_path / "broken.zip", b"this is not an archive at all")

    with pytest.raises(ValidationError) as exc_info:
        archive_service.extract_archive(path, tmp_path / "out")
    assert exc_info.value.code == ErrorCode.INVALID_ARCHIVE


def test_extracted_size_ceiling(tmp_path, make_zip, monkeypatch):
    monkeypatch.setattr(settings, "MAX_EXTRACTED_SIZE", 10)
    path = _write(tmp_path / "big.zip", make_zip({"big.py": "x = 1\n" * 10}))

    with pytest.raises(ValidationError) as exc_info:
        archive_service.extract_archive(path, tmp_path / "out")
    assert exc_info.value.code == ErrorCode.INVALID_ARCHIVE


def test_store_and_remove_payload(upload_dir):
    key, path = archive_service.store_payload("main.py", b"print(1)")

    assert path == upload_dir / key / "main.py"
    assert path.read_bytes() == b"print(1)"
    assert len(archive_service.calculate_file_hash(path)) == 64

    archive_service.remove_storage(key)
    assert not (upload_dir / key).exists()
