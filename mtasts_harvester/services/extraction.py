"""
Archive extraction for compressed TLS-RPT reports

Every compressed report in the working folder is turned into a JSON file
with the same base name, using the first available backend:

1. 7-Zip command line (located via settings, the Windows registry or PATH)
2. Python library decompression (gzip / tarfile / zipfile)
"""
import gzip
import logging
import os
import shutil
import subprocess
import tarfile
import tempfile
import zipfile
import zlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from mtasts_harvester.errors import ExtractionError

logger = logging.getLogger(__name__)

GZIP_MAGIC = b'\x1f\x8b'

# Searched in order; the second key covers 32-bit installs on 64-bit Windows
SEVEN_ZIP_REGISTRY_KEYS = (
    r"SOFTWARE\7-Zip",
    r"SOFTWARE\WOW6432Node\7-Zip",
)
SEVEN_ZIP_REGISTRY_VALUES = ("Path", "Path64")
SEVEN_ZIP_COMMANDS = ("7z", "7za")

# Corrupt deflate data behind a valid gzip header raises zlib.error, which is not an OSError
DECOMPRESSION_ERRORS = (OSError, EOFError, ValueError, zlib.error, tarfile.TarError, zipfile.BadZipFile)


def canonical_json_name(archive: Path, suffixes: Sequence[str] = (".gz", ".gzip")) -> str:
    """
    JSON file name for a compressed report

    'report.json.gz' and 'report.gz' both become 'report.json'.
    """
    name = archive.name
    lower = name.lower()
    for suffix in sorted(suffixes, key=len, reverse=True):
        if lower.endswith(suffix):
            name = name[:-len(suffix)]
            break
    if name.lower().endswith(".json"):
        name = name[:-len(".json")]
    return f"{name}.json"


def find_compressed_reports(directory: Path, suffixes: Sequence[str] = (".gz", ".gzip")) -> List[Path]:
    """Find compressed report files directly inside a directory"""
    return sorted(
        p for p in Path(directory).iterdir()
        if p.is_file() and p.name.lower().endswith(tuple(suffixes))
    )


def _is_gzip(path: Path) -> bool:
    with open(path, 'rb') as f:
        return f.read(2) == GZIP_MAGIC


def unwrap_payload(path: Path, scratch_dir: Path) -> Path:
    """
    Peel nested archive layers until a plain file remains

    Handles gzip, tar and zip layers. Intermediate files are written to
    scratch_dir. Returns the innermost file, which is `path` itself when it
    is not an archive.
    """
    current = path
    # Bounded so a malicious archive cannot loop forever
    for _ in range(8):
        if _is_gzip(current):
            inner = scratch_dir / f"{current.name}.layer"
            with gzip.open(current, 'rb') as src, open(inner, 'wb') as dst:
                shutil.copyfileobj(src, dst)
        elif zipfile.is_zipfile(current):
            with zipfile.ZipFile(current) as zf:
                names = [n for n in zf.namelist() if not n.endswith('/')]
                if not names:
                    raise ValueError("Empty zip file")
                inner = scratch_dir / f"{current.name}.layer"
                with zf.open(names[0]) as src, open(inner, 'wb') as dst:
                    shutil.copyfileobj(src, dst)
        elif tarfile.is_tarfile(current):
            with tarfile.open(current) as tf:
                members = [m for m in tf.getmembers() if m.isfile()]
                if not members:
                    raise ValueError("Empty tar archive")
                inner = scratch_dir / f"{current.name}.layer"
                src = tf.extractfile(members[0])
                with src, open(inner, 'wb') as dst:
                    shutil.copyfileobj(src, dst)
        else:
            return current
        current = inner

    raise ValueError("Too many nested archive layers")


class ExtractionBackend(ABC):
    """A way of decompressing report archives"""

    name = "backend"

    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    def extract(self, archive: Path, output_dir: Path, suffixes: Sequence[str] = (".gz", ".gzip")) -> Path:
        """
        Decompress one archive into output_dir

        Returns:
            Path of the produced '<base>.json' file

        Raises:
            ExtractionError: if the archive cannot be decompressed
        """


class SevenZipBackend(ExtractionBackend):
    """Decompress with the 7-Zip command line tool"""

    name = "7-zip"

    def __init__(self, executable: Optional[str] = None, timeout: int = 120):
        self.executable = executable
        self.timeout = timeout
        self._located: Optional[str] = None

    def locate(self) -> Optional[str]:
        """Find the 7z executable, or None if it is not installed"""
        if self._located:
            return self._located

        if self.executable:
            if Path(self.executable).is_file():
                self._located = self.executable
            else:
                self._located = shutil.which(self.executable)
            return self._located

        for install_dir in registry_install_dirs():
            candidate = Path(install_dir) / "7z.exe"
            if candidate.is_file():
                self._located = str(candidate)
                return self._located

        for command in SEVEN_ZIP_COMMANDS:
            found = shutil.which(command)
            if found:
                self._located = found
                return self._located

        return None

    def is_available(self) -> bool:
        return self.locate() is not None

    def extract(self, archive: Path, output_dir: Path, suffixes: Sequence[str] = (".gz", ".gzip")) -> Path:
        executable = self.locate()
        if not executable:
            raise ExtractionError(archive, "7-Zip is not installed")

        target = output_dir / canonical_json_name(archive, suffixes)

        with tempfile.TemporaryDirectory(dir=output_dir, prefix=".7z-") as scratch:
            scratch_dir = Path(scratch)
            try:
                result = subprocess.run(
                    [executable, "e", str(archive), f"-o{scratch_dir}", "-y"],
                    capture_output=True,
                    text=True,
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired:
                raise ExtractionError(archive, f"7-Zip timed out after {self.timeout} seconds")

            if result.returncode != 0:
                error_message = (result.stderr or result.stdout).strip()
                raise ExtractionError(archive, f"7-Zip exited with {result.returncode}: {error_message}")

            produced = [p for p in scratch_dir.iterdir() if p.is_file()]
            if len(produced) != 1:
                raise ExtractionError(archive, f"expected one extracted file, got {len(produced)}")

            try:
                payload = unwrap_payload(produced[0], scratch_dir)
            except DECOMPRESSION_ERRORS as e:
                raise ExtractionError(archive, str(e))
            os.replace(payload, target)

        return target


class GzipLibraryBackend(ExtractionBackend):
    """Decompress in-process with the standard compression libraries"""

    name = "gzip-library"

    def is_available(self) -> bool:
        return True

    def extract(self, archive: Path, output_dir: Path, suffixes: Sequence[str] = (".gz", ".gzip")) -> Path:
        target = output_dir / canonical_json_name(archive, suffixes)

        with tempfile.TemporaryDirectory(dir=output_dir, prefix=".gz-") as scratch:
            try:
                payload = unwrap_payload(archive, Path(scratch))
            except DECOMPRESSION_ERRORS as e:
                raise ExtractionError(archive, str(e))

            if payload == archive:
                raise ExtractionError(archive, "not a recognised compressed file")
            os.replace(payload, target)

        return target


def registry_install_dirs() -> List[str]:
    """
    7-Zip install directories recorded in the Windows registry

    Only runs on Windows; returns an empty list elsewhere.
    """
    if os.name != "nt":
        return []

    import winreg

    dirs = []
    for key_path in SEVEN_ZIP_REGISTRY_KEYS:
        try:
            key = winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, key_path)
        except OSError:
            continue

        with key:
            for value_name in SEVEN_ZIP_REGISTRY_VALUES:
                try:
                    value, _ = winreg.QueryValueEx(key, value_name)
                except OSError:
                    continue
                if value:
                    dirs.append(value)

    return dirs


def select_backend(backends: Sequence[ExtractionBackend]) -> Optional[ExtractionBackend]:
    """Return the first available backend in priority order"""
    for backend in backends:
        if backend.is_available():
            logger.info(f"Using extraction backend: {backend.name}", extra={"backend": backend.name})
            return backend
        logger.debug(f"Extraction backend unavailable: {backend.name}")
    return None


@dataclass
class ExtractionResult:
    backend: Optional[str] = None
    extracted: List[Tuple[Path, Path]] = field(default_factory=list)
    failed: List[Tuple[Path, str]] = field(default_factory=list)


class ArchiveExtractor:
    """Decompress every compressed report in a working folder"""

    def __init__(
        self,
        backends: Sequence[ExtractionBackend],
        suffixes: Sequence[str] = (".gz", ".gzip"),
    ):
        self.backends = list(backends)
        self.suffixes = tuple(suffixes)

    def extract_all(self, working_dir: Path, archives: Optional[List[Path]] = None) -> ExtractionResult:
        """
        Extract archives into JSON files next to them

        Args:
            working_dir: Folder holding the archives
            archives: Archives to extract (default: all compressed reports in the folder)

        Returns:
            ExtractionResult listing extracted and failed archives
        """
        working_dir = Path(working_dir)
        if archives is None:
            archives = find_compressed_reports(working_dir, self.suffixes)

        result = ExtractionResult()

        backend = select_backend(self.backends)
        if backend is None:
            logger.error(
                "No extraction backend available; install 7-Zip or check the Python installation. "
                "Skipping extraction."
            )
            return result

        result.backend = backend.name

        for archive in archives:
            try:
                json_path = backend.extract(archive, working_dir, self.suffixes)
            except ExtractionError as e:
                logger.error(e.message, extra={"file_name": archive.name, "stage": "extract"})
                result.failed.append((archive, e.message))
                continue
            except (OSError, zlib.error) as e:
                logger.error(
                    f"Failed to extract {archive.name}: {e}",
                    extra={"file_name": archive.name, "stage": "extract"}
                )
                result.failed.append((archive, str(e)))
                continue

            logger.info(f"Extracted {archive.name} -> {json_path.name}", extra={"file_name": archive.name})
            result.extracted.append((archive, json_path))

        logger.info(
            f"Extraction complete: {len(result.extracted)} extracted, {len(result.failed)} failed"
        )
        return result
