"""
M-Pesa credential helpers.

- STK push password: base64(short_code + pass_key + timestamp)
- Reversal SecurityCredential: initiator password encrypted with the
  gateway's RSA public key (PKCS#1 v1.5), base64 encoded
"""

import base64
from datetime import datetime

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from payments_backend.app.core.exceptions import CryptoError

MPESA_TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(MPESA_TIMESTAMP_FORMAT)


def generate_password(short_code: str, pass_key: str, timestamp: str) -> str:
    return base64.b64encode(f"{short_code}{pass_key}{timestamp}".encode("utf-8")).decode("ascii")


def load_rsa_public_key(pem_bytes: bytes) -> rsa.RSAPublicKey:
    """
    Load the gateway key from PEM.

    Accepts a SubjectPublicKeyInfo public key or an X.509 certificate, which
    is how the gateway distributes it.
    """
    try:
        key = serialization.load_pem_public_key(pem_bytes)
    except ValueError:
        try:
            key = x509.load_pem_x509_certificate(pem_bytes).public_key()
        except ValueError as e:
            raise CryptoError(f"invalid public key PEM: {e}")

    if not isinstance(key, rsa.RSAPublicKey):
        raise CryptoError("public key is not RSA")
    return key


def encrypt_security_credential(secret: str, public_key_path: str) -> str:
    """
    Encrypt the initiator secret for the reversal API.

    Raises:
        CryptoError: key file unreadable, malformed, or not RSA
    """
    try:
        with open(public_key_path, "rb") as fh:
            pem_bytes = fh.read()
    except OSError as e:
        raise CryptoError(f"failed to read public key: {e}")

    public_key = load_rsa_public_key(pem_bytes)
    try:
        encrypted = public_key.encrypt(secret.encode("utf-8"), padding.PKCS1v15())
    except ValueError as e:
        raise CryptoError(f"rsa encryption failed: {e}")
    return base64.b64encode(encrypted).decode("ascii")
