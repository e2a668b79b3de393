from __future__ import annotations

import unittest

from courtside_node.db.memory import InMemoryAdminRepository
from courtside_node.entities.match import AdminCredential
from courtside_node.errors import InvalidCredentials, ValidationError
from courtside_node.services.admin_auth import (
    AdminRegistry,
    check_password,
    hash_password,
    parse_admin_users,
)


class TestPasswordHashing(unittest.TestCase):
    def test_hash_format_is_hex_digest_dot_salt(self):
        stored = hash_password("hunter2", salt="abcd")
        digest, salt = stored.split(".")
        self.assertEqual(salt, "abcd")
        self.assertEqual(len(digest), 128)
        int(digest, 16)

    def test_same_salt_same_hash(self):
        self.assertEqual(hash_password("pw", "s1"), hash_password("pw", "s1"))
        self.assertNotEqual(hash_password("pw", "s1"), hash_password("pw", "s2"))

    def test_check_password(self):
        stored = hash_password("hunter2")
        self.assertTrue(check_password("hunter2", stored))
        self.assertFalse(check_password("hunter3", stored))

    def test_malformed_hash_never_matches(self):
        for stored in ("", "nodot", "zz.salt", ".salt", "abcd."):
            with self.subTest(stored=stored):
                self.assertFalse(check_password("pw", stored))


class TestParseAdminUsers(unittest.TestCase):
    def test_pairs(self):
        self.assertEqual(
            parse_admin_users("alice:pw1, bob:p:w2,"),
            [("alice", "pw1"), ("bob", "p:w2")],
        )

    def test_missing_password(self):
        with self.assertRaises(ValidationError):
            parse_admin_users("alice")


class TestAdminRegistry(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.repository = InMemoryAdminRepository([
            AdminCredential("alice", hash_password("wonderland")),
        ])
        self.registry = AdminRegistry(self.repository)

    async def test_verify_valid(self):
        credential = await self.registry.verify_admin_credentials("alice", "wonderland")
        self.assertEqual(credential.username, "alice")

    async def test_verify_invalid(self):
        for username, password in [("alice", "nope"), ("mallory", "wonderland"), ("alice", "")]:
            with self.subTest(username=username, password=password):
                with self.assertRaises(InvalidCredentials):
                    await self.registry.verify_admin_credentials(username, password)

    async def test_update_password(self):
        await self.registry.update_password("alice", "wonderland", "looking-glass")

        await self.registry.verify_admin_credentials("alice", "looking-glass")
        with self.assertRaises(InvalidCredentials):
            await self.registry.verify_admin_credentials("alice", "wonderland")

    async def test_update_password_requires_current_password(self):
        with self.assertRaises(InvalidCredentials):
            await self.registry.update_password("alice", "guess", "looking-glass")
        with self.assertRaises(ValidationError):
            await self.registry.update_password("alice", "wonderland", "")
        await self.registry.verify_admin_credentials("alice", "wonderland")

    async def test_seed_skips_existing_users(self):
        created = self.registry.seed("alice:other,bob:builder")
        self.assertEqual(created, 1)
        self.assertEqual(self.registry.list_admin_usernames(), ["alice", "bob"])
        await self.registry.verify_admin_credentials("alice", "wonderland")
        await self.registry.verify_admin_credentials("bob", "builder")


if __name__ == "__main__":
    unittest.main()
