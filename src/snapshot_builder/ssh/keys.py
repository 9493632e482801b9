"""Ephemeral SSH key generation."""

from __future__ import annotations

import io
from dataclasses import dataclass

import paramiko

from .session import load_private_key

DEFAULT_KEY_BITS = 4096


@dataclass
class GeneratedKey:
    private_key: str
    public_key: str


def generate_keypair(bits: int = DEFAULT_KEY_BITS, comment: str = "") -> GeneratedKey:
    """Create an RSA keypair; the private half never touches the disk."""
    key = paramiko.RSAKey.generate(bits)
    buffer = io.StringIO()
    key.write_private_key(buffer)
    public_key = f"{key.get_name()} {key.get_base64()}"
    if comment:
        public_key = f"{public_key} {comment}"
    return GeneratedKey(private_key=buffer.getvalue(), public_key=public_key)


def public_key_for(private_key: str, comment: str = "") -> str:
    """OpenSSH public key line for a private key held in memory."""
    key = load_private_key(private_key)
    public_key = f"{key.get_name()} {key.get_base64()}"
    if comment:
        public_key = f"{public_key} {comment}"
    return public_key
