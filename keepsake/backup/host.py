"""
Host application collaborators.

The backup manager never looks inside a backup artifact. It asks the host
for a fresh artifact as a byte buffer and hands a buffer back to restore it.

DirectoryHost is the built-in host: it packs a set of files and directories
into a zip archive held in memory, and restores by extracting an archive
into a target directory.
"""

import io
import zipfile
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import List


class ArtifactError(Exception):
    """Raised when the host cannot create or restore an artifact."""
    pass


class ArtifactHost(ABC):
    """Interface of the application whose state is being backed up."""

    @abstractmethod
    def create_artifact(self) -> bytes:
        pass

    @abstractmethod
    def restore_artifact(self, data: bytes):
        pass


class DirectoryHost(ArtifactHost):
    """
    Backs up plain files and directories as a zip archive.
    """

    def __init__(self, paths: List[str], restore_dir: str = None):
        """
        Initialize directory host.

        Args:
            paths: Files/directories to include in every artifact
            restore_dir: Directory archives are extracted into on restore
        """
        self.paths = paths
        self.restore_dir = restore_dir

    def create_artifact(self) -> bytes:
        """
        Pack the configured paths into a zip archive.

        Returns:
            Archive contents

        Raises:
            ArtifactError: If no paths are configured or a path is missing
        """
        if not self.paths:
            raise ArtifactError("No source paths configured")

        buffer = io.BytesIO()

        try:
            with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as zipf:
                for path in self.paths:
                    source = Path(path).expanduser()

                    if source.is_file():
                        zipf.write(source, source.name)
                    elif source.is_dir():
                        _add_directory_to_zip(zipf, source)
                    else:
                        raise ArtifactError(f"Path does not exist: {path}")
        except ArtifactError:
            raise
        except Exception as e:
            raise ArtifactError(f"Failed to create archive: {e}")

        return buffer.getvalue()

    def restore_artifact(self, data: bytes):
        """
        Extract an archive into the restore directory.

        Args:
            data: Archive contents

        Raises:
            ArtifactError: If no restore directory is configured, the archive
                is invalid or a member would land outside the directory
        """
        if not self.restore_dir:
            raise ArtifactError("No restore directory configured")

        target = Path(self.restore_dir).expanduser()

        try:
            with zipfile.ZipFile(io.BytesIO(data)) as zipf:
                for member in zipf.namelist():
                    member_path = PurePosixPath(member)
                    if member_path.is_absolute() or '..' in member_path.parts:
                        raise ArtifactError(f"Unsafe path in archive: {member}")

                target.mkdir(parents=True, exist_ok=True)
                zipf.extractall(target)
        except ArtifactError:
            raise
        except zipfile.BadZipFile as e:
            raise ArtifactError(f"Invalid backup archive: {e}")
        except Exception as e:
            raise ArtifactError(f"Failed to restore archive: {e}")


def _add_directory_to_zip(zipf: zipfile.ZipFile, directory: Path):
    """
    Recursively add directory to zip archive.

    Args:
        zipf: ZipFile object
        directory: Directory to add, stored under its own name
    """
    for item in sorted(directory.rglob('*')):
        if item.is_file():
            zipf.write(item, item.relative_to(directory.parent))
