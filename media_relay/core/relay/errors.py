"""
Error taxonomy for the relay pipeline.

Every stage raises a subclass of RelayError. The orchestrator turns these
into a PipelineFailure value tagged with the stage and the error kind, so
callers never have to inspect exception text.
"""


class RelayError(Exception):
    """Base class for all pipeline errors."""
    kind = "RelayError"


class InvalidKeyMaterial(RelayError):
    """Media key is not base64 or decodes to fewer than 16 bytes."""
    kind = "InvalidKeyMaterial"


class InvalidSourceUrl(RelayError):
    """Source URL is not an absolute http(s) URL."""
    kind = "InvalidSourceUrl"


class InvalidObjectKey(RelayError):
    """Object key would be empty or contains a traversal sequence."""
    kind = "InvalidObjectKey"


class FetchFailed(RelayError):
    """
    Network or HTTP error while retrieving the ciphertext.
    
    Usually transient: the caller may retry with the same inputs.
    """
    kind = "FetchFailed"


class DecryptionFailed(RelayError):
    """
    MAC mismatch or malformed ciphertext.
    
    Permanent: retrying with the same key and payload will fail again.
    """
    kind = "DecryptionFailed"


class UploadFailed(RelayError):
    """Source read or storage write failed during the upload."""
    kind = "UploadFailed"


class InvalidTTL(RelayError):
    """Signed URL lifetime is not a positive number of seconds."""
    kind = "InvalidTTL"


class SigningFailed(RelayError):
    """Storage backend could not presign the object URL."""
    kind = "SigningFailed"
