"""Constants for the Cloud Credential Operator."""

# API Group
API_GROUP = "credentials.cloud37.dev"
API_VERSION = "v1alpha1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"

# Resource Kinds
KIND_CREDENTIALS_REQUEST = "CredentialsRequest"
KIND_CLOUD_CREDENTIAL = "CloudCredential"

# Plurals
PLURAL_CREDENTIALS_REQUESTS = "credentialsrequests"
PLURAL_CLOUD_CREDENTIALS = "cloudcredentials"

# Labels
LABEL_MANAGED_BY = f"{API_GROUP}/managed-by"

# Annotations
ANNOTATION_CREDENTIALS_REQUEST = f"{API_GROUP}/credentials-request"
ANNOTATION_CONTENT_HASH = f"{API_GROUP}/content-hash"
ANNOTATION_LAST_ROTATION = f"{API_GROUP}/last-rotation"
ANNOTATION_FORCE_ROTATION = f"{API_GROUP}/rotate"

# Finalizers
FINALIZER = f"{API_GROUP}/finalizer"

# Field Manager
FIELD_MANAGER = "cloud-credential-operator"
CONTROLLER_NAME = "cloud-credential-operator"

# Provider kinds (providerSpec variant tags)
PROVIDER_KIND_AWS = "AWSProviderSpec"
PROVIDER_KIND_WASABI = "WasabiProviderSpec"
PROVIDER_KIND_S3_COMPATIBLE = "S3CompatibleProviderSpec"

# Platforms
PLATFORM_AWS = "aws"
PLATFORM_WASABI = "wasabi"
PLATFORM_S3_COMPATIBLE = "s3compatible"

# Condition Types
COND_READY = "Ready"
COND_CREDENTIALS_PROVISIONED = "CredentialsProvisioned"
COND_DEGRADED = "Degraded"

# Condition Reasons
REASON_PROVISIONED = "CredentialsProvisioned"
REASON_MANUALLY_PROVISIONED = "ManuallyProvisioned"
REASON_NOT_PROVISIONED = "NotProvisioned"
REASON_AS_EXPECTED = "AsExpected"
REASON_VALIDATION_FAILED = "ValidationFailed"
REASON_AUTHORIZATION_FAILED = "AuthorizationFailed"
REASON_ROOT_CREDENTIAL_INVALID = "RootCredentialInvalid"
REASON_INSUFFICIENT_ROOT_PERMISSIONS = "InsufficientRootPermissions"
REASON_CLOUD_UNAVAILABLE = "CloudProviderUnavailable"
REASON_SECRET_CONFLICT = "SecretOwnershipConflict"
REASON_STORE_CONFLICT = "StoreConflict"
REASON_MANUAL_ACTION_REQUIRED = "ManualActionRequired"
REASON_TARGET_NAMESPACE_MISSING = "TargetNamespaceMissing"
REASON_PROVIDER_NOT_ACTIVE = "ProviderNotActive"
REASON_DELETION_FAILED = "DeletionFailed"
REASON_STORE_UNAVAILABLE = "StoreUnavailable"
REASON_INTERNAL_ERROR = "InternalError"

# Event Reasons
EVENT_REASON_RECONCILE_STARTED = "ReconcileStarted"
EVENT_REASON_RECONCILE_FAILED = "ReconcileFailed"
EVENT_REASON_VALIDATE_FAILED = "ValidateFailed"
EVENT_REASON_CREDENTIALS_CREATED = "CredentialsCreated"
EVENT_REASON_CREDENTIALS_ROTATED = "CredentialsRotated"
EVENT_REASON_SECRET_SYNCED = "SecretSynced"
EVENT_REASON_DRIFT_REPAIRED = "DriftRepaired"
EVENT_REASON_CREDENTIALS_DELETED = "CredentialsDeleted"
EVENT_REASON_MANUAL_ACTION_REQUIRED = "ManualActionRequired"

# Root credential secret keys
ROOT_ACCESS_KEY_ID = "aws_access_key_id"
ROOT_SECRET_ACCESS_KEY = "aws_secret_access_key"

# Default root credential secret names per platform
DEFAULT_ROOT_SECRET_NAMES = {
    PLATFORM_AWS: "aws-creds",
    PLATFORM_WASABI: "wasabi-creds",
    PLATFORM_S3_COMPATIBLE: "s3-creds",
}

# Web identity token path projected into workloads in TokenExchange mode
DEFAULT_WEB_IDENTITY_TOKEN_FILE = "/var/run/secrets/cloud37.dev/serviceaccount/token"
