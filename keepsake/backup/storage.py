"""
Storage backends for backup archives.

Supports:
- LocalStorage: Backup directory on the local filesystem
- SMBStorage: Directory on an SMB/CIFS network share
- SFTPStorage: Directory on a remote host reachable over SSH/SFTP

All backends expose the same operations: list_backups, store, fetch, delete
and test_connection. Remote backends open a new session for every operation
and close it afterwards, so a backend object never holds a stale connection.
"""

import logging
import os
import posixpath
import shutil
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, Dict, Any, List

import paramiko
import smbclient
from smbprotocol.exceptions import SMBException

from .naming import BACKUP_EXTENSION


logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when storage operation fails."""
    pass


class ConfigurationError(StorageError):
    """Raised when a backend is constructed with missing or invalid parameters."""
    pass


class NotSupportedError(StorageError):
    """Raised when a backend does not implement an operation."""
    pass


def _int_option(config: Dict[str, Any], key: str, default: int) -> int:
    value = config.get(key)
    if value in (None, ''):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")


def _str_option(config: Dict[str, Any], key: str) -> str:
    value = config.get(key)
    if value is None:
        return ''
    if not isinstance(value, str):
        raise ConfigurationError(f"{key} must be a string, got {value!r}")
    return value


def _check_name(name: str):
    """Reject names that would address anything outside the target directory."""
    if not name or name in ('.', '..') or '/' in name or '\\' in name:
        raise StorageError(f"Invalid backup name: {name!r}")


class StorageBackend(ABC):
    """
    Common interface of all backup destinations.

    Subclasses set `name`, used as a tag in log messages and results.
    """

    name = 'storage'

    @abstractmethod
    def list_backups(self, prefix: str) -> List[str]:
        """
        List backup file names currently present in the target directory.

        Args:
            prefix: Series prefix (only LocalStorage filters on it)

        Returns:
            File names carrying the backup extension

        Raises:
            StorageError: If listing fails
        """

    @abstractmethod
    def store(self, source_path: str, dest_name: str) -> str:
        """
        Copy a local archive into the backend.

        Args:
            source_path: Path of the local archive
            dest_name: File name to store it under

        Returns:
            Location of the stored file

        Raises:
            StorageError: If the transfer fails
        """

    @abstractmethod
    def fetch(self, name: str) -> bytes:
        """
        Read a stored backup.

        Raises:
            StorageError: If the backup cannot be read
            NotSupportedError: If the backend cannot serve backups
        """

    @abstractmethod
    def delete(self, name: str):
        """
        Delete one stored backup.

        Raises:
            StorageError: If deletion fails
        """

    @abstractmethod
    def test_connection(self) -> bool:
        """
        Check that the target directory is reachable.

        Raises:
            StorageError: If the target cannot be reached
        """


class LocalStorage(StorageBackend):
    """
    Handler for storing backups in local filesystem.

    Archives are kept flat in one directory, named by the backup naming
    scheme. The directory is created on the first write.
    """

    name = 'local'

    def __init__(self, base_path: str):
        """
        Initialize local storage handler.

        Args:
            base_path: Base directory for local backups
        """
        if not base_path:
            raise ConfigurationError("Local backup directory is required")

        self.base_path = Path(base_path)

    def _ensure_directory(self):
        if self.base_path.exists():
            return

        logger.info(f"Creating backups dir at: {self.base_path}")
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            raise StorageError(f"Failed to create local storage directory: {e}")

    def get_full_path(self, name: str) -> str:
        """
        Get full filesystem path of a stored backup.

        Args:
            name: Backup file name

        Returns:
            Full filesystem path
        """
        _check_name(name)
        return str(self.base_path / name)

    def list_backups(self, prefix: str) -> List[str]:
        if not self.base_path.exists():
            return []

        try:
            return [
                entry.name for entry in self.base_path.iterdir()
                if entry.is_file()
                and entry.name.startswith(prefix)
                and entry.name.endswith(BACKUP_EXTENSION)
            ]
        except Exception as e:
            raise StorageError(f"Failed to list local files: {e}")

    def write_bytes(self, name: str, data: bytes) -> str:
        """
        Write a backup buffer into the backup directory.

        Args:
            name: Backup file name
            data: Archive contents

        Returns:
            Full path of the written file

        Raises:
            StorageError: If the write fails
        """
        dest_path = Path(self.get_full_path(name))
        self._ensure_directory()

        try:
            dest_path.write_bytes(data)
            return str(dest_path)
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}")
        except Exception as e:
            raise StorageError(f"Failed to store locally: {e}")

    def store(self, source_path: str, dest_name: str) -> str:
        if not os.path.exists(source_path):
            raise StorageError(f"Source file not found: {source_path}")

        dest_path = Path(self.get_full_path(dest_name))
        self._ensure_directory()

        # Already in place, e.g. the file was written by write_bytes()
        if dest_path.exists() and os.path.samefile(source_path, dest_path):
            return str(dest_path)

        try:
            shutil.copy2(source_path, dest_path)
            return str(dest_path)
        except PermissionError as e:
            raise StorageError(f"Permission denied writing to {dest_path}: {e}")
        except Exception as e:
            raise StorageError(f"Failed to store locally: {e}")

    def fetch(self, name: str) -> bytes:
        full_path = Path(self.get_full_path(name))
        logger.info(f"Looking for the backup {name}")

        try:
            return full_path.read_bytes()
        except FileNotFoundError:
            raise StorageError(f"Backup not found: {name}")
        except Exception as e:
            raise StorageError(f"Failed to read local backup {name}: {e}")

    def delete(self, name: str):
        full_path = Path(self.get_full_path(name))

        try:
            if full_path.exists():
                full_path.unlink()
        except PermissionError as e:
            raise StorageError(f"Permission denied deleting {full_path}: {e}")
        except Exception as e:
            raise StorageError(f"Failed to delete local file: {e}")

    def test_connection(self) -> bool:
        self._ensure_directory()
        if not os.access(self.base_path, os.W_OK):
            raise StorageError(f"Backup directory is not writable: {self.base_path}")
        return True


class SMBStorage(StorageBackend):
    """
    Handler for backups on an SMB network share.

    The share is given as an address like //server/share (or \\\\server\\share),
    optionally with a directory inside the share.
    """

    name = 'smb'

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize SMB storage handler.

        Args:
            config: SMB configuration dict with keys:
                - address: Share address, //server/share (required)
                - username: Account name (optional)
                - password: Account password (optional)
                - domain: Account domain (optional)
                - port: SMB port (default 445)
                - directory: Directory inside the share (optional)
                - timeout: Connection timeout in seconds (default 60)
                - encrypt: Require SMB encryption (optional)

        Raises:
            ConfigurationError: If the address is missing or malformed, or a
                field has the wrong type
        """
        address = _str_option(config, 'address').strip()
        if not address:
            raise ConfigurationError("Address is required")

        parts = [part for part in address.replace('\\', '/').split('/') if part]
        if len(parts) < 2:
            raise ConfigurationError(f"Address must name a server and a share: {address}")

        self.server = parts[0]
        self.share = parts[1]
        directory = _str_option(config, 'directory').replace('\\', '/').strip('/')
        self.directory_parts = parts[2:] + [part for part in directory.split('/') if part]

        self.username = _str_option(config, 'username') or None
        domain = _str_option(config, 'domain')
        if self.username and domain:
            self.username = f"{domain}\\{self.username}"
        self.password = _str_option(config, 'password') or None
        self.port = _int_option(config, 'port', 445)
        self.timeout = _int_option(config, 'timeout', 60)
        self.encrypt = True if config.get('encrypt') else None

    def _unc_path(self, name: Optional[str] = None) -> str:
        segments = [self.server, self.share] + self.directory_parts
        if name is not None:
            segments.append(name)
        return '\\\\' + '\\'.join(segments)

    @contextmanager
    def _session(self):
        """
        Open a dedicated SMB session for one operation.

        Yields:
            Connection cache to pass to smbclient calls
        """
        connection_cache = {}
        try:
            smbclient.register_session(
                self.server,
                username=self.username,
                password=self.password,
                port=self.port,
                encrypt=self.encrypt,
                connection_timeout=self.timeout,
                connection_cache=connection_cache
            )
            yield connection_cache
        except StorageError:
            raise
        except SMBException as e:
            raise StorageError(f"SMB operation on {self._unc_path()} failed: {e}")
        except Exception as e:
            raise StorageError(f"Failed to access {self._unc_path()}: {e}")
        finally:
            smbclient.reset_connection_cache(fail_on_error=False, connection_cache=connection_cache)

    def list_backups(self, prefix: str) -> List[str]:
        with self._session() as cache:
            names = smbclient.listdir(self._unc_path(), connection_cache=cache)
        return [name for name in names if name.endswith(BACKUP_EXTENSION)]

    def store(self, source_path: str, dest_name: str) -> str:
        if not os.path.exists(source_path):
            raise StorageError(f"Source file not found: {source_path}")

        _check_name(dest_name)
        dest = self._unc_path(dest_name)
        logger.info(f"Uploading file to SMB. Source path is {source_path}, destination is {dest}")

        with self._session() as cache:
            with open(source_path, 'rb') as src:
                with smbclient.open_file(dest, mode='wb', connection_cache=cache) as dst:
                    shutil.copyfileobj(src, dst)
        return dest

    def fetch(self, name: str) -> bytes:
        raise NotSupportedError("SMB storage cannot serve backups. Use local source")

    def delete(self, name: str):
        _check_name(name)
        with self._session() as cache:
            smbclient.remove(self._unc_path(name), connection_cache=cache)

    def test_connection(self) -> bool:
        with self._session() as cache:
            smbclient.listdir(self._unc_path(), connection_cache=cache)
        return True


class SFTPStorage(StorageBackend):
    """
    Handler for backups on a remote host via SSH/SFTP.
    """

    name = 'sftp'

    def __init__(self, config: Dict[str, Any]):
        """
        Initialize SFTP storage handler.

        Args:
            config: SFTP configuration dict with keys:
                - host: SSH hostname or IP (required)
                - port: SSH port (default 22)
                - username: SSH username
                - password: SSH password (optional if using key)
                - private_key: Path to private key file (optional)
                - directory: Target directory on the host (default '.')
                - timeout: Connection timeout in seconds (default 30)

        Raises:
            ConfigurationError: If the host is missing or a field has the wrong type
        """
        self.host = (_str_option(config, 'host') or _str_option(config, 'hostname')).strip()
        if not self.host:
            raise ConfigurationError("Host is required")

        self.port = _int_option(config, 'port', 22)
        self.username = _str_option(config, 'username') or None
        self.password = _str_option(config, 'password') or None
        self.private_key_path = _str_option(config, 'private_key') or None
        self.directory = _str_option(config, 'directory') or '.'
        self.timeout = _int_option(config, 'timeout', 30)

    def _remote_path(self, name: str) -> str:
        _check_name(name)
        return posixpath.join(self.directory, name)

    @contextmanager
    def _connect(self):
        """
        Open a dedicated SSH/SFTP session for one operation.

        Yields:
            paramiko SFTPClient

        Raises:
            StorageError: If connection or the operation fails
        """
        ssh_client = paramiko.SSHClient()
        ssh_client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        sftp_client = None

        connect_kwargs = {
            'hostname': self.host,
            'port': self.port,
            'username': self.username,
            'timeout': self.timeout
        }

        if self.password:
            connect_kwargs['password'] = self.password
        elif self.private_key_path:
            key_path = Path(self.private_key_path).expanduser()
            if not key_path.exists():
                raise StorageError(f"Private key not found: {self.private_key_path}")
            connect_kwargs['key_filename'] = str(key_path)

        try:
            ssh_client.connect(**connect_kwargs)
            sftp_client = ssh_client.open_sftp()
            yield sftp_client
        except StorageError:
            raise
        except paramiko.AuthenticationException as e:
            raise StorageError(f"SSH authentication failed: {e}")
        except paramiko.SSHException as e:
            raise StorageError(f"SSH connection failed: {e}")
        except Exception as e:
            raise StorageError(f"SFTP operation on {self.host} failed: {e}")
        finally:
            if sftp_client is not None:
                sftp_client.close()
            ssh_client.close()

    def list_backups(self, prefix: str) -> List[str]:
        with self._connect() as sftp:
            names = sftp.listdir(self.directory)
        return [name for name in names if name.endswith(BACKUP_EXTENSION)]

    def store(self, source_path: str, dest_name: str) -> str:
        if not os.path.exists(source_path):
            raise StorageError(f"Source file not found: {source_path}")

        dest = self._remote_path(dest_name)
        logger.info(f"Uploading file to SFTP. Source path is {source_path}, destination is {dest}")

        with self._connect() as sftp:
            sftp.put(source_path, dest)
        return dest

    def fetch(self, name: str) -> bytes:
        raise NotSupportedError("SFTP storage cannot serve backups. Use local source")

    def delete(self, name: str):
        path = self._remote_path(name)
        with self._connect() as sftp:
            sftp.remove(path)

    def test_connection(self) -> bool:
        with self._connect() as sftp:
            sftp.stat(self.directory)
        return True


STORAGE_KINDS = ('local', 'smb', 'sftp')


def create_storage(kind: str, config: Dict[str, Any]) -> StorageBackend:
    """
    Factory function to create appropriate storage handler.

    Args:
        kind: 'local', 'smb' or 'sftp'
        config: Configuration dict for the backend

    Returns:
        StorageBackend instance

    Raises:
        ConfigurationError: If kind is invalid or required parameters are missing
    """
    if kind == 'local':
        return LocalStorage(config.get('path') or config.get('directory'))
    elif kind == 'smb':
        return SMBStorage(config)
    elif kind == 'sftp':
        return SFTPStorage(config)
    else:
        raise ConfigurationError(f"Invalid storage kind: {kind}")
