"""
ConfSync Config Document File.

Reads and atomically replaces the local YAML configuration file.
Requires Python 3.11+.
"""

import hashlib
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path

import yaml

from config_store.base import NEVER, ConfigDocument
from utils.exceptions import LocalIOFailure
from utils.logger import LoggerMixin


@dataclass(frozen=True, slots=True)
class FileSignature:
    """Identifies one exact version of the file on disk."""

    mtime_ns: int
    digest: str  # SHA-256 of the raw bytes


@dataclass(frozen=True)
class LocalSnapshot:
    """The file's content together with the state it was read in."""

    document: ConfigDocument
    signature: FileSignature

    @property
    def modified_at(self) -> int:
        """Last-modified time in epoch milliseconds."""
        return self.signature.mtime_ns // 1_000_000


def _digest(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class ConfigFile(LoggerMixin):
    """
    The local configuration file.

    Always read and replaced as a whole document. Writes go to a temporary
    file in the same directory which then replaces the original, so a
    crash leaves either the old or the new content, never a partial file.
    Not thread-safe on its own: callers serialize access.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def last_modified(self) -> int:
        """Last-modified time in epoch milliseconds, or NEVER if missing."""
        try:
            return self._path.stat().st_mtime_ns // 1_000_000
        except FileNotFoundError:
            return NEVER
        except OSError as e:
            raise LocalIOFailure("cannot stat config file", self._path, cause=e) from e

    def read(self) -> LocalSnapshot | None:
        """
        Read and parse the file.

        Returns:
            The snapshot, or None if the file does not exist

        Raises:
            LocalIOFailure: If the file cannot be read or is not a YAML mapping
        """
        try:
            with open(self._path, "rb") as f:
                stat = os.fstat(f.fileno())
                data = f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise LocalIOFailure("cannot read config file", self._path, cause=e) from e

        try:
            document = yaml.safe_load(data)
        except yaml.YAMLError as e:
            raise LocalIOFailure("config file is not valid YAML", self._path, cause=e) from e

        if document is None:
            document = {}
        if not isinstance(document, dict):
            raise LocalIOFailure(
                f"config file holds {type(document).__name__}, expected mapping",
                self._path,
            )

        return LocalSnapshot(
            document=document,
            signature=FileSignature(mtime_ns=stat.st_mtime_ns, digest=_digest(data)),
        )

    def write(self, document: ConfigDocument, modified_at: int | None = None) -> FileSignature:
        """
        Replace the file with document.

        Args:
            document: Document to write
            modified_at: Epoch milliseconds to stamp as the file's mtime

        Returns:
            Signature of the written file

        Raises:
            LocalIOFailure: If any step fails; the original file is untouched
        """
        data = yaml.safe_dump(document, sort_keys=False, allow_unicode=True).encode("utf-8")
        directory = self._path.parent
        tmp_name: str | None = None

        try:
            directory.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                dir=directory,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            self._copy_mode(tmp_name)
            if modified_at is not None:
                self._stamp(tmp_name, modified_at)
            os.replace(tmp_name, self._path)
            tmp_name = None
            stat = self._path.stat()
        except OSError as e:
            raise LocalIOFailure("cannot write config file", self._path, cause=e) from e
        finally:
            if tmp_name is not None:
                self._discard(tmp_name)

        self.log.debug("config_file_written", path=str(self._path), size=len(data))
        return FileSignature(mtime_ns=stat.st_mtime_ns, digest=_digest(data))

    def touch(self, modified_at: int) -> FileSignature | None:
        """
        Set the file's mtime without changing content.

        Returns:
            Signature after the change, or None if the file is gone
        """
        try:
            self._stamp(self._path, modified_at)
            with open(self._path, "rb") as f:
                stat = os.fstat(f.fileno())
                data = f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise LocalIOFailure("cannot update config file mtime", self._path, cause=e) from e
        return FileSignature(mtime_ns=stat.st_mtime_ns, digest=_digest(data))

    @staticmethod
    def _stamp(path: Path | str, modified_at: int) -> None:
        ns = modified_at * 1_000_000
        os.utime(path, ns=(ns, ns))

    def _copy_mode(self, tmp_name: str) -> None:
        try:
            mode = self._path.stat().st_mode & 0o777
        except FileNotFoundError:
            mode = 0o644
        os.chmod(tmp_name, mode)

    def _discard(self, tmp_name: str) -> None:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.log.warning("temp_file_cleanup_failed", path=tmp_name, error=str(e))
