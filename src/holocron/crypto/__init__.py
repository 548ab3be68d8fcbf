"""
Holocron crypto -- envelope keys, machine-bound secrets, per-file AEAD.

    passphrase --PBKDF2--> KEK --AES-GCM--> wrapped DEK   (config.json)
    DEK --AES-GCM(aad=relative path)--> notes/**/*.enc    (git)
    machine id --PBKDF2--> machine key                    (.holocron/local only)
"""

from .codec import ENCRYPTED_SUFFIX, decrypt_file, encrypt_file
from .envelope import derive_kek, generate_dek, generate_salt, unwrap_dek, wrap_dek

__all__ = [
    "ENCRYPTED_SUFFIX",
    "decrypt_file",
    "derive_kek",
    "encrypt_file",
    "generate_dek",
    "generate_salt",
    "unwrap_dek",
    "wrap_dek",
]
