"""boto3-backed clients for IAM-compatible providers."""
