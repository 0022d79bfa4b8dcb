"""Value encryption, age and Azure Key Vault master keys, format detection, key-group diffs, auditing and command execution for encrypted configuration files."""

__version__ = "0.1.0"

__all__ = [
    "agecrypt",
    "agekey",
    "audit",
    "azkv",
    "cipher",
    "codes",
    "execute",
    "formats",
    "keydiff",
]