"""
Encryption of stored remote storage credentials.

Uses Fernet symmetric encryption with a key derived from the application
SECRET_KEY and a salt persisted in the database, so that credentials survive
restarts as long as SECRET_KEY does.
"""

import os
import base64
import logging
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


logger = logging.getLogger(__name__)


class CredentialCipher:
    """Encrypts and decrypts credential strings."""

    def __init__(self):
        self._fernet = None

    def initialize(self, secret: str, salt: bytes = None) -> bytes:
        """
        Derive the encryption key.

        Args:
            secret: Application secret to derive the key from
            salt: Persisted salt (if None, generates a new one)

        Returns:
            The salt used (store it on first setup)
        """
        if salt is None:
            salt = os.urandom(16)

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=480000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret.encode()))

        self._fernet = Fernet(key)
        return salt

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.

        Raises:
            RuntimeError: If the cipher is not initialized
        """
        if not self._fernet:
            raise RuntimeError("CredentialCipher not initialized. Call initialize() first.")

        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        """
        Decrypt a string produced by encrypt().

        Raises:
            RuntimeError: If the cipher is not initialized
            cryptography.fernet.InvalidToken: If the token was produced with another key
        """
        if not self._fernet:
            raise RuntimeError("CredentialCipher not initialized. Call initialize() first.")

        return self._fernet.decrypt(token.encode()).decode()

    @property
    def is_initialized(self) -> bool:
        return self._fernet is not None


def init_credential_cipher(app):
    """
    Initialize the global cipher from SECRET_KEY and the stored salt.

    Creates and stores the salt on first start. Must run after the schema exists.
    """
    from keepsake import db
    from keepsake.models import EncryptionKey

    with app.app_context():
        record = EncryptionKey.query.first()

        if record:
            credential_cipher.initialize(app.config['SECRET_KEY'], record.salt)
        else:
            salt = credential_cipher.initialize(app.config['SECRET_KEY'])
            db.session.add(EncryptionKey(salt=salt))
            db.session.commit()
            logger.info("Generated new credential encryption salt")


# Global instance, initialized by create_app()
credential_cipher = CredentialCipher()
