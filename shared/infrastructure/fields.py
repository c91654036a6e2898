"""
Custom Django model fields for secrets.

EncryptedCharField encrypts values before they reach the database and
decrypts them on load, so channel tokens are never stored in plain text.
"""

import logging

from django.db import models

from .encryption import DecryptionError, decrypt_string, encrypt_string

logger = logging.getLogger(__name__)


class EncryptedCharField(models.TextField):
    """
    Text column holding a Fernet token; Python side sees the plain value.

    A value that cannot be decrypted (e.g. after ENCRYPTION_KEY rotation)
    loads as an empty string and is reported in the log, so the owning row
    behaves as "not configured" instead of breaking every query.
    """

    description = "Encrypted text field"

    def from_db_value(self, value, expression, connection):
        if value is None:
            return value
        try:
            return decrypt_string(value)
        except DecryptionError:
            logger.warning("Failed to decrypt %s; treating as empty", self.name)
            return ''

    def get_prep_value(self, value):
        if value is None or value == '':
            return ''
        return encrypt_string(str(value))

    def to_python(self, value):
        if value is None:
            return value
        return str(value)
