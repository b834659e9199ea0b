"""
Exceptions for the VaultShare service.

Every error carries the HTTP status and the fixed message a client is
allowed to see. Internal detail goes to the server log, never into
``message``.
"""
from typing import Optional


class VaultShareError(Exception):
    # general container for errors
    status_code = 500
    message = "Internal server error."

    def __init__(self, message: Optional[str] = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)


class ValidationFailed(VaultShareError):
    # malformed or missing input; not audited
    status_code = 400
    message = "Invalid request."


class InvalidPublicKeyError(ValidationFailed):
    # requester public key is not a usable RSA-2048+ PEM key
    message = "Invalid public key."


class InvalidCredentials(VaultShareError):
    # unknown email or wrong password, deliberately indistinguishable
    status_code = 401
    message = "Invalid credentials."


class InvalidSession(VaultShareError):
    # missing, expired or wrong-type session token
    status_code = 401
    message = "Authentication required."


class InvalidMfaCode(VaultShareError):
    status_code = 401
    message = "Invalid MFA code."


class AccountLocked(VaultShareError):
    status_code = 423
    message = "Account temporarily locked due to too many failed attempts. Please try again later."


class PermissionDenied(VaultShareError):
    # raised by the role, resource and ownership gates
    status_code = 403
    message = "You do not have permission to perform this action."

    def __init__(self, gate: str, message: Optional[str] = None):
        self.gate = gate
        super().__init__(message)


class NotFound(VaultShareError):
    status_code = 404
    message = "Not found."


class BlobNotFound(NotFound):
    # stored file record exists but its ciphertext blob does not
    message = "File content not found."


class Conflict(VaultShareError):
    status_code = 409
    message = "Conflict."


class PayloadTooLarge(VaultShareError):
    status_code = 413
    message = "File too large."


class WrongDecryptionPassword(VaultShareError):
    # wrapped key did not authenticate under the derived master key
    status_code = 401
    message = "Invalid decryption password."


class IntegrityFailure(VaultShareError):
    # ciphertext failed AEAD authentication or plaintext digest mismatch
    status_code = 500
    message = "File integrity check failed. File may be corrupted."


class EncryptionMetadataMissing(VaultShareError):
    # neither per-file nor owner salt available
    status_code = 500
    message = "File encryption metadata missing."


class StorageUnavailable(VaultShareError):
    # blob store could not be read or written
    status_code = 500


class DecryptionAuthError(VaultShareError):
    # AES-GCM tag mismatch (wrong key or modified ciphertext/iv/tag)
    status_code = 500
    message = "AUTH_FAILED"
