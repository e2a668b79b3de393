"""Admin credential registry.

Passwords are stored as scrypt hashes in the form `<hex digest>.<hex salt>`,
the same layout the tournament site used, so existing hashes keep working.

Admins can be seeded from the environment:

- `ADMIN_USERS`: comma-separated `username:password` pairs. Users already
  present in the store keep their stored hash.
"""
from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
import secrets

from courtside_node.entities.match import AdminCredential
from courtside_node.errors import InvalidCredentials, StorageUnavailable, ValidationError
from courtside_node.services.interfaces.admin_repository import AdminRepository

logger = logging.getLogger(__name__)

_SCRYPT_N = 16384
_SCRYPT_R = 8
_SCRYPT_P = 1
_KEY_LENGTH = 64


def _derive(password: str, salt: str) -> bytes:
    return hashlib.scrypt(
        password.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=_SCRYPT_N,
        r=_SCRYPT_R,
        p=_SCRYPT_P,
        dklen=_KEY_LENGTH,
    )


def hash_password(password: str, salt: str | None = None) -> str:
    salt = salt or secrets.token_hex(16)
    return f"{_derive(password, salt).hex()}.{salt}"


def check_password(password: str, stored_hash: str) -> bool:
    digest, sep, salt = stored_hash.partition(".")
    if not sep or not digest or not salt:
        return False
    try:
        expected = bytes.fromhex(digest)
    except ValueError:
        return False
    return hmac.compare_digest(_derive(password, salt), expected)


def parse_admin_users(raw: str) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        username, sep, password = item.partition(":")
        if not sep or not username.strip() or not password:
            raise ValidationError(f"ADMIN_USERS entry {item.split(':')[0]!r} must be username:password")
        pairs.append((username.strip(), password))
    return pairs


class AdminRegistry:
    def __init__(self, repository: AdminRepository):
        self.repository = repository

    async def verify_admin_credentials(self, username: str, password: str) -> AdminCredential:
        if not username or not password:
            raise InvalidCredentials(username)
        try:
            credential = await asyncio.to_thread(self.repository.get, username)
        except StorageUnavailable:
            raise
        except Exception as exc:
            raise StorageUnavailable(f"admin lookup failed: {exc}") from exc

        if credential is None:
            logger.warning("admin login rejected: unknown user %s", username)
            raise InvalidCredentials(username)
        if not await asyncio.to_thread(check_password, password, credential.password_hash):
            logger.warning("admin login rejected: bad password for %s", username)
            raise InvalidCredentials(username)
        return credential

    def list_admin_usernames(self) -> list[str]:
        return self.repository.list_usernames()

    def create_admin(self, username: str, password: str) -> AdminCredential:
        if not username or not password:
            raise ValidationError("username and password are required")
        credential = AdminCredential(username=username, password_hash=hash_password(password))
        self.repository.save(credential)
        logger.info("admin %s registered", username)
        return credential

    async def update_password(
        self, username: str, current_password: str, new_password: str,
    ) -> AdminCredential:
        """Rotate an admin's password after checking the current one."""
        if not new_password:
            raise ValidationError("new password is required")
        await self.verify_admin_credentials(username, current_password)
        credential = AdminCredential(
            username=username,
            password_hash=await asyncio.to_thread(hash_password, new_password),
        )
        try:
            await asyncio.to_thread(self.repository.save, credential)
        except StorageUnavailable:
            raise
        except Exception as exc:
            raise StorageUnavailable(f"admin password update failed: {exc}") from exc
        logger.info("admin %s changed password", username)
        return credential

    def seed(self, raw: str) -> int:
        created = 0
        for username, password in parse_admin_users(raw):
            if self.repository.get(username) is not None:
                continue
            self.create_admin(username, password)
            created += 1
        return created
