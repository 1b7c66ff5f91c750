"""
codemark/services/archive_service.py
Payload storage, archive extraction and file classification for uploads
"""
import hashlib
import logging
import shutil
import tarfile
import uuid
import zipfile
from pathlib import Path, PurePosixPath
from typing import List, Dict, Optional, Tuple

from codemark.config import settings
from codemark.errors import ErrorCode, ValidationError

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSIONS = {'.zip', '.tar', '.gz', '.tgz'}
WEB_EXTENSIONS = {'.html', '.css', '.js', '.jsx', '.ts', '.tsx'}
BACKEND_EXTENSIONS = {'.php', '.py', '.rb', '.java', '.c', '.cpp', '.cs', '.go'}
CONFIG_EXTENSIONS = {'.json', '.xml', '.yml', '.yaml', '.toml', '.ini'}
DATABASE_EXTENSIONS = {'.sql'}
IMAGE_EXTENSIONS = {'.png', '.jpg', '.jpeg', '.gif', '.svg'}
DOCUMENT_EXTENSIONS = {'.md', '.txt', '.pdf'}

ALLOWED_EXTENSIONS = (
    ARCHIVE_EXTENSIONS | WEB_EXTENSIONS | BACKEND_EXTENSIONS
    | CONFIG_EXTENSIONS | DATABASE_EXTENSIONS
)

LANGUAGE_MAP = {
    '.html': 'HTML',
    '.css': 'CSS',
    '.js': 'JavaScript',
    '.jsx': 'JavaScript (React)',
    '.ts': 'TypeScript',
    '.tsx': 'TypeScript (React)',
    '.php': 'PHP',
    '.py': 'Python',
    '.rb': 'Ruby',
    '.java': 'Java',
    '.c': 'C',
    '.cpp': 'C++',
    '.cs': 'C#',
    '.go': 'Go',
    '.json': 'JSON',
    '.xml': 'XML',
    '.yml': 'YAML',
    '.yaml': 'YAML',
    '.toml': 'TOML',
    '.ini': 'INI',
    '.sql': 'SQL',
    '.md': 'Markdown',
    '.txt': 'Plain Text',
}

# Archive members that are packaging noise, not student work
IGNORED_PREFIXES = ('__MACOSX/',)
IGNORED_NAMES = {'.DS_Store', 'Thumbs.db'}


# ================= CLASSIFICATION =================

def get_file_extension(filename: str) -> str:
    """Get lowercase file extension"""
    return Path(filename).suffix.lower()


def is_allowed_file(filename: str) -> bool:
    return get_file_extension(filename) in ALLOWED_EXTENSIONS


def is_archive(filename: str) -> bool:
    return get_file_extension(filename) in ARCHIVE_EXTENSIONS


def get_file_type(filename: str) -> str:
    """Broad category used in file listings."""
    ext = get_file_extension(filename)
    if ext in WEB_EXTENSIONS:
        return "Web"
    if ext in BACKEND_EXTENSIONS:
        return "Backend"
    if ext in CONFIG_EXTENSIONS:
        return "Configuration"
    if ext in DATABASE_EXTENSIONS:
        return "Database"
    if ext in ARCHIVE_EXTENSIONS:
        return "Archive"
    if ext in IMAGE_EXTENSIONS:
        return "Image"
    if ext in DOCUMENT_EXTENSIONS:
        return "Document"
    return "Unknown"


def detect_language(filename: str) -> Optional[str]:
    return LANGUAGE_MAP.get(get_file_extension(filename))


def format_file_size(size_bytes: int) -> str:
    """Format file size for display"""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    else:
        return f"{size_bytes / (1024 * 1024):.1f} MB"


# ================= VALIDATION & STORAGE =================

def sanitize_filename(filename: Optional[str]) -> str:
    """Strip any client-supplied directory components."""
    name = Path((filename or "").replace("\\", "/")).name.strip()
    if not name or name in {".", ".."}:
        raise ValidationError("No file provided", code=ErrorCode.INVALID_INPUT)
    return name


def validate_upload(filename: str, content: bytes) -> None:
    if not content:
        raise ValidationError("Uploaded file is empty", code=ErrorCode.INVALID_INPUT)

    if len(content) > settings.MAX_UPLOAD_SIZE:
        raise ValidationError(
            f"File too large. Max size: {format_file_size(settings.MAX_UPLOAD_SIZE)}",
            code=ErrorCode.FILE_TOO_LARGE,
            details={"size": len(content), "max_size": settings.MAX_UPLOAD_SIZE}
        )

    if not is_allowed_file(filename):
        raise ValidationError(
            f"File type not allowed. Use: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
            code=ErrorCode.UNSUPPORTED_FILE_TYPE,
            details={"extension": get_file_extension(filename)}
        )


def calculate_file_hash(file_path: Path) -> str:
    """Calculate SHA-256 hash of file for integrity"""
    sha256_hash = hashlib.sha256()
    with open(file_path, "rb") as f:
        for byte_block in iter(lambda: f.read(4096), b""):
            sha256_hash.update(byte_block)
    return sha256_hash.hexdigest()


def store_payload(filename: str, content: bytes) -> Tuple[str, Path]:
    """
    Write the payload under a fresh storage directory.

    Returns the storage key (directory name) and the stored file path.
    """
    storage_key = uuid.uuid4().hex
    storage_dir = Path(settings.UPLOAD_DIR) / storage_key
    storage_dir.mkdir(parents=True, exist_ok=False)

    file_path = storage_dir / filename
    with open(file_path, "wb") as f:
        f.write(content)

    return storage_key, file_path


def remove_storage(storage_key: str) -> None:
    """Delete everything stored for one submission."""
    storage_dir = Path(settings.UPLOAD_DIR) / storage_key
    if storage_dir.exists():
        shutil.rmtree(storage_dir)
        logger.info(f"Removed stored payload {storage_key}")


# ================= EXTRACTION =================

def _is_ignored(member_name: str) -> bool:
    return member_name.startswith(IGNORED_PREFIXES) or PurePosixPath(member_name).name in IGNORED_NAMES


def _safe_target(target_dir: Path, member_name: str) -> Path:
    """Resolve an archive member path, rejecting any that escape target_dir."""
    destination = (target_dir / member_name).resolve()
    if not destination.is_relative_to(target_dir.resolve()):
        raise ValidationError(
            "Archive contains a path outside the extraction directory",
            code=ErrorCode.INVALID_ARCHIVE,
            details={"member": member_name}
        )
    return destination


def _check_total_size(total: int) -> None:
    if total > settings.MAX_EXTRACTED_SIZE:
        raise ValidationError(
            f"Archive expands beyond {format_file_size(settings.MAX_EXTRACTED_SIZE)}",
            code=ErrorCode.INVALID_ARCHIVE
        )


def _entry(relative_path: str, size: int) -> Dict:
    name = PurePosixPath(relative_path).name
    return {
        "name": name,
        "relative_path": relative_path,
        "file_type": get_file_type(name),
        "language": detect_language(name),
        "size": size,
    }


def _extract_zip(archive_path: Path, target_dir: Path) -> List[Dict]:
    entries = []
    with zipfile.ZipFile(archive_path) as archive:
        members = [m for m in archive.infolist() if not m.is_dir() and not _is_ignored(m.filename)]
        _check_total_size(sum(m.file_size for m in members))
        for member in members:
            destination = _safe_target(target_dir, member.filename)
            destination.parent.mkdir(parents=True, exist_ok=True)
            with archive.open(member) as source, open(destination, "wb") as out:
                shutil.copyfileobj(source, out)
            entries.append(_entry(member.filename, member.file_size))
    return entries


def _extract_tar(archive_path: Path, target_dir: Path) -> List[Dict]:
    entries = []
    with tarfile.open(archive_path) as archive:
        members = [m for m in archive.getmembers() if m.isfile() and not _is_ignored(m.name)]
        _check_total_size(sum(m.size for m in members))
        for member in members:
            destination = _safe_target(target_dir, member.name)
            destination.parent.mkdir(parents=True, exist_ok=True)
            source = archive.extractfile(member)
            with source, open(destination, "wb") as out:
                shutil.copyfileobj(source, out)
            entries.append(_entry(member.name, member.size))
    return entries


def extract_archive(archive_path: Path, target_dir: Path) -> List[Dict]:
    """
    Extract a zip or tar archive and describe each regular file in it.

    Raises:
        ValidationError: corrupt archive, no files, unsafe member path,
            or uncompressed size over the ceiling
    """
    target_dir.mkdir(parents=True, exist_ok=True)
    try:
        if zipfile.is_zipfile(archive_path):
            entries = _extract_zip(archive_path, target_dir)
        elif tarfile.is_tarfile(archive_path):
            entries = _extract_tar(archive_path, target_dir)
        else:
            raise ValidationError("File is not a readable archive", code=ErrorCode.INVALID_ARCHIVE)
    except (zipfile.BadZipFile, tarfile.TarError, EOFError) as e:
        raise ValidationError(f"Archive is corrupt: {e}", code=ErrorCode.INVALID_ARCHIVE)

    if not entries:
        raise ValidationError("Archive contains no files", code=ErrorCode.INVALID_ARCHIVE)

    logger.info(f"Extracted {len(entries)} files from {archive_path.name}")
    return entries
