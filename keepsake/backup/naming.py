"""
Backup file naming.

Every backup is stored under a name that carries its own creation time:

    {prefix}-{year}_{month}_{day}_{hour}_{minute}_{second}.zip

Fields are plain decimal integers (no zero padding), month is 1-based and
the values are local wall-clock time. The file name is the only metadata
kept for a backup, so retention relies entirely on decoding it.

The prefix must not contain the field delimiter ('_'); names built from
such a prefix cannot be decoded reliably. This is left to the caller.
"""

from datetime import datetime


BACKUP_EXTENSION = '.zip'
FIELD_DELIMITER = '_'
PREFIX_SEPARATOR = '-'


class MalformedNameError(ValueError):
    """Raised when a file name cannot be decoded for the expected prefix."""
    pass


def encode_backup_name(prefix: str, timestamp: datetime) -> str:
    """
    Build the file name for a backup taken at the given time.

    Args:
        prefix: Logical name of the backup series
        timestamp: Creation time (microseconds are dropped)

    Returns:
        File name including the extension
    """
    fields = (
        timestamp.year,
        timestamp.month,
        timestamp.day,
        timestamp.hour,
        timestamp.minute,
        timestamp.second,
    )
    date_part = FIELD_DELIMITER.join(str(field) for field in fields)
    return f"{prefix}{PREFIX_SEPARATOR}{date_part}{BACKUP_EXTENSION}"


def decode_backup_name(name: str, prefix: str) -> datetime:
    """
    Recover the creation time encoded in a backup file name.

    Args:
        name: File name as listed by a storage backend
        prefix: Expected series prefix

    Returns:
        Naive datetime with second precision

    Raises:
        MalformedNameError: If the name does not belong to the prefix or
            does not carry exactly six numeric date fields
    """
    head = f"{prefix}{PREFIX_SEPARATOR}"
    if not name.startswith(head):
        raise MalformedNameError(f"Name '{name}' does not start with prefix '{prefix}'")

    if not name.endswith(BACKUP_EXTENSION):
        raise MalformedNameError(f"Name '{name}' does not end with {BACKUP_EXTENSION}")

    date_part = name[len(head):-len(BACKUP_EXTENSION)]
    fields = date_part.split(FIELD_DELIMITER)

    if len(fields) != 6 or not all(field.isascii() and field.isdigit() for field in fields):
        raise MalformedNameError(
            f"Name '{name}' must contain six numeric date fields, got '{date_part}'"
        )

    try:
        year, month, day, hour, minute, second = (int(field) for field in fields)
        return datetime(year, month, day, hour, minute, second)
    except ValueError as e:
        raise MalformedNameError(f"Name '{name}' encodes an invalid date: {e}")
