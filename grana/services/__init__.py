"""
Infrastructure Services Package.

Secure credential storage used by the session core.  The backends share
one interface (``CredentialStore``) and one error taxonomy
(``grana.services.credential_errors``).
"""

from grana.services.credential_errors import (
    CredentialStoreError,
    DecodingFailed,
    DeletionFailed,
    InvalidInput,
    RetrievalFailed,
    SaveFailed,
    StoreStatus,
)
from grana.services.credential_store import (
    CredentialStore,
    EncryptedFileCredentialStore,
    InMemoryCredentialStore,
    KeyringCredentialStore,
    create_credential_store,
)

__all__ = [
    "CredentialStore",
    "CredentialStoreError",
    "DecodingFailed",
    "DeletionFailed",
    "EncryptedFileCredentialStore",
    "InMemoryCredentialStore",
    "InvalidInput",
    "KeyringCredentialStore",
    "RetrievalFailed",
    "SaveFailed",
    "StoreStatus",
    "create_credential_store",
]
