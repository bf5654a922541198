"""Client and credential handling for the GET campus commerce service."""

from .client import CommerceAccount, CommerceClient, CommerceTransaction
from .credentials import CommerceCredentialService, CommerceDiagnostics, CredentialStatus, LivePayload
from .errors import (
    CommerceAPIError,
    ErrorKind,
    ExternalFatalError,
    ExternalTransientError,
    MissingResponseError,
    is_transient_error,
)
from .session_cache import CommerceSessionCache
from .sessions import CommerceSessionResolver

__all__ = [
    "CommerceAPIError",
    "CommerceAccount",
    "CommerceClient",
    "CommerceCredentialService",
    "CommerceDiagnostics",
    "CommerceSessionCache",
    "CommerceSessionResolver",
    "CommerceTransaction",
    "CredentialStatus",
    "ErrorKind",
    "ExternalFatalError",
    "ExternalTransientError",
    "LivePayload",
    "MissingResponseError",
    "is_transient_error",
]
