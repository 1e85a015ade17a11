"""Shared API dependencies for authentication and collaborator access."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from sealhub.core.security import decode_access_token
from sealhub.storage.blobs import BlobStore, get_blob_store
from sealhub.storage.documents import DocumentStore, SqlDocumentStore

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()


def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> str:
    """Return the opaque user id carried by the bearer token.

    Raises:
        HTTPException: If the token is invalid or expired
    """
    try:
        return decode_access_token(credentials.credentials)
    except JWTError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err


def get_document_store() -> DocumentStore:
    """Return the document store backed by the configured database."""
    return SqlDocumentStore()


def get_blob_store_dep() -> BlobStore:
    """Return the shared blob store."""
    return get_blob_store()


# Type aliases for dependencies
CurrentUserIdDep = Annotated[str, Depends(get_current_user_id)]
DocumentStoreDep = Annotated[DocumentStore, Depends(get_document_store)]
BlobStoreDep = Annotated[BlobStore, Depends(get_blob_store_dep)]
