"""Remote storage collaborators: signature, upload and persistence."""

from .persistence_client import PersistenceClient, extract_public_id
from .storage_signature import SignatureClient
from .storage_upload import RemoteUploader

__all__ = [
    "PersistenceClient",
    "RemoteUploader",
    "SignatureClient",
    "extract_public_id",
]
