"""Encryption key provisioning: ``python -m mindlens.core.crypto.keygen``.

Prints a fresh ``ENCRYPTION_KEY_BASE64`` line for the environment or a
secret manager. Losing the key makes every encrypted record unreadable.
"""

from __future__ import annotations

import sys
from typing import TextIO

from mindlens.core.crypto.encryption import CryptoService

_NOTICE = """\
# Keep this key secret and out of version control.
# Store it in a secret manager; losing it makes encrypted records unrecoverable.
# Rotating it makes existing records and the stored AI credential unreadable."""


def run(out: TextIO | None = None) -> str:
    """Write a new key assignment to ``out`` (stdout by default) and return the key."""
    out = out or sys.stdout
    key = CryptoService.generate_key()
    print(f"ENCRYPTION_KEY_BASE64={key}", file=out)
    print(_NOTICE, file=out)
    return key


if __name__ == "__main__":
    run()
