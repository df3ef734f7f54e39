"""User directory and attachment collaborators consumed by the chat layer."""

from .schemas import AttachmentInfo, SenderInfo, UserPresence, UserProfile
from .service import (
    AttachmentCatalog,
    DuckDBAttachmentCatalog,
    DuckDBUserDirectory,
    UserDirectory,
)

__all__ = [
    "AttachmentCatalog",
    "AttachmentInfo",
    "DuckDBAttachmentCatalog",
    "DuckDBUserDirectory",
    "SenderInfo",
    "UserDirectory",
    "UserPresence",
    "UserProfile",
]
