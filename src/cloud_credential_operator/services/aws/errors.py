"""Translation of botocore failures into the provisioning error taxonomy."""

from __future__ import annotations

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from ...constants import REASON_ROOT_CREDENTIAL_INVALID
from ...exceptions import AuthorizationError, CredentialsError, TransientCloudError, ValidationError

TRANSIENT_CODES = {
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "SlowDown",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "ServiceFailure",
    "InternalError",
    "InternalFailure",
    "RequestTimeout",
    "RequestTimeoutException",
    "ConcurrentModification",
    "PriorRequestNotComplete",
}

AUTHORIZATION_CODES = {
    "AccessDenied",
    "AccessDeniedException",
    "UnauthorizedOperation",
    "UnrecognizedClientException",
    "InvalidAccessKeyId",
    "ExpiredToken",
    "ExpiredTokenException",
}

INVALID_CREDENTIAL_CODES = {
    "InvalidClientTokenId",
    "SignatureDoesNotMatch",
    "AuthFailure",
}

VALIDATION_CODES = {
    "MalformedPolicyDocument",
    "ValidationError",
    "InvalidInput",
    "LimitExceeded",
}


def error_code(error: ClientError) -> str:
    """Extract the service error code from a ClientError."""
    return error.response.get("Error", {}).get("Code", "")


def is_not_found(error: ClientError) -> bool:
    """Check whether a ClientError means the entity does not exist."""
    return error_code(error) in {"NoSuchEntity", "NoSuchEntityException", "NoSuchKey", "404"}


def is_already_exists(error: ClientError) -> bool:
    """Check whether a ClientError means the entity already exists."""
    return error_code(error) in {"EntityAlreadyExists", "EntityAlreadyExistsException"}


def translate_error(error: Exception, provider: str, operation: str) -> CredentialsError:
    """Classify a boto3/botocore failure as transient or permanent.

    Args:
        error: The original exception
        provider: Provider platform name, for the message
        operation: Cloud operation that failed

    Returns:
        The classified error; unknown client error codes are treated as transient
    """
    if isinstance(error, ClientError):
        code = error_code(error)
        message = error.response.get("Error", {}).get("Message", str(error))
        text = f"{provider} {operation} failed ({code}): {message}"
        if code in INVALID_CREDENTIAL_CODES:
            return AuthorizationError(text, reason=REASON_ROOT_CREDENTIAL_INVALID)
        if code in AUTHORIZATION_CODES:
            return AuthorizationError(text)
        if code in VALIDATION_CODES:
            return ValidationError(text)
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        if code in TRANSIENT_CODES or status >= 500 or status == 429:
            return TransientCloudError(text)
        if status in (401, 403):
            return AuthorizationError(text)
        return TransientCloudError(text)
    if isinstance(error, NoCredentialsError):
        return AuthorizationError(f"{provider} {operation} failed: no credentials configured")
    if isinstance(error, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError, ConnectionClosedError)):
        return TransientCloudError(f"{provider} {operation} failed: {error}")
    if isinstance(error, BotoCoreError):
        return TransientCloudError(f"{provider} {operation} failed: {error}")
    return TransientCloudError(f"{provider} {operation} failed: {error}")
