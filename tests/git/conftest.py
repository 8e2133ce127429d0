"""Shared key fixtures for git tests."""

from __future__ import annotations

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, rsa


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    """Generate one RSA key for the session."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def pkcs1_pem(rsa_key: rsa.RSAPrivateKey) -> bytes:
    """RSA key in PKCS#1 PEM (``RSA PRIVATE KEY``)."""
    return rsa_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )


@pytest.fixture
def pkcs8_pem(rsa_key: rsa.RSAPrivateKey) -> bytes:
    """RSA key in PKCS#8 PEM (``PRIVATE KEY``)."""
    return rsa_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


@pytest.fixture
def ec_pkcs8_pem() -> bytes:
    """Non-RSA key in PKCS#8 PEM."""
    key = ec.generate_private_key(ec.SECP256R1())
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


@pytest.fixture
def openssh_pem() -> bytes:
    """Ed25519 key in OpenSSH format."""
    key = ed25519.Ed25519PrivateKey.generate()
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.OpenSSH,
        serialization.NoEncryption(),
    )
