import secrets

from pwdlib import PasswordHash


password_hash = PasswordHash.recommended()

_BASE36_DIGITS = '0123456789abcdefghijklmnopqrstuvwxyz'
# Appended so every temporary password carries a symbol, an upper-case letter and a digit.
TEMP_PASSWORD_SUFFIX = '!A9'


def hash_password(raw_password: str) -> str:
    return password_hash.hash(raw_password)


def verify_password(raw_password: str, hashed_password: str | None) -> bool:
    if not hashed_password:
        return False
    return password_hash.verify(raw_password, hashed_password)


def generate_temporary_password() -> str:
    return ''.join(_BASE36_DIGITS[b % 36] for b in secrets.token_bytes(12)) + TEMP_PASSWORD_SUFFIX
