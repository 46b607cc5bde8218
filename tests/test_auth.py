import json
import tempfile
import unittest
from pathlib import Path

from ossdesk.auth import (
    CURRENT_USER_KEY,
    INVALID_LOGIN_MESSAGE,
    LOGIN_TIME_KEY,
    LoginGate,
    UserRecord,
    encrypt_user_file,
    load_users,
)
from ossdesk.crypto import CredentialCodec
from ossdesk.errors import ConfigurationError
from ossdesk.kvstore import MemoryStore


class _Clock:
    def __init__(self) -> None:
        self.now = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now


class TestLoginGate(unittest.TestCase):
    def setUp(self) -> None:
        self.codec = CredentialCodec()
        self.kv = MemoryStore()
        self.clock = _Clock()
        users = [
            UserRecord(
                id="1",
                username="admin",
                name="Administrator",
                role="admin",
                password=self.codec.encrypt("admin123"),
            )
        ]
        self.gate = LoginGate(users, self.kv, self.codec, session_hours=24, clock=self.clock)

    def test_login_success_persists_user(self) -> None:
        result = self.gate.login("admin", "admin123")
        self.assertTrue(result.success)
        self.assertEqual(result.user.role, "admin")
        self.assertTrue(self.gate.is_authenticated)
        saved = json.loads(self.kv.get(CURRENT_USER_KEY))
        self.assertNotIn("password", saved)
        self.assertEqual(self.kv.get(LOGIN_TIME_KEY), str(int(self.clock.now * 1000)))

    def test_login_failure_has_single_message(self) -> None:
        for username, password in [("admin", "wrong"), ("ghost", "admin123")]:
            with self.subTest(username=username):
                result = self.gate.login(username, password)
                self.assertFalse(result.success)
                self.assertEqual(result.message, INVALID_LOGIN_MESSAGE)
        self.assertIsNone(self.kv.get(CURRENT_USER_KEY))

    def test_plaintext_stored_password_never_matches(self) -> None:
        gate = LoginGate(
            [UserRecord("2", "bob", "Bob", "user", "plain")], self.kv, self.codec
        )
        self.assertFalse(gate.login("bob", "plain").success)

    def test_restore_within_session_window(self) -> None:
        self.gate.login("admin", "admin123")
        self.clock.now += 23 * 3600
        fresh = LoginGate([], self.kv, self.codec, clock=self.clock)
        user = fresh.restore()
        self.assertEqual(user.username, "admin")
        self.assertTrue(fresh.is_authenticated)

    def test_restore_after_expiry_forgets_login(self) -> None:
        self.gate.login("admin", "admin123")
        self.clock.now += 24 * 3600
        fresh = LoginGate([], self.kv, self.codec, clock=self.clock)
        self.assertIsNone(fresh.restore())
        self.assertIsNone(self.kv.get(CURRENT_USER_KEY))
        self.assertIsNone(self.kv.get(LOGIN_TIME_KEY))

    def test_restore_discards_unreadable_state(self) -> None:
        self.kv.set(CURRENT_USER_KEY, "{broken")
        self.kv.set(LOGIN_TIME_KEY, "123")
        with self.assertLogs("ossdesk.auth", level="WARNING"):
            self.assertIsNone(self.gate.restore())
        self.assertEqual(self.kv.snapshot(), {})

    def test_logout(self) -> None:
        self.gate.login("admin", "admin123")
        self.gate.logout()
        self.assertFalse(self.gate.is_authenticated)
        self.assertIsNone(self.gate.current_user)
        self.assertEqual(self.kv.snapshot(), {})


class TestUserFile(unittest.TestCase):
    def test_encrypt_user_file_is_idempotent(self) -> None:
        codec = CredentialCodec()
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "users.json"
            path.write_text(
                json.dumps(
                    [
                        {"id": 1, "username": "admin", "password": "admin123"},
                        {"id": 2, "username": "guest", "password": codec.encrypt("g")},
                    ]
                )
            )
            self.assertEqual(encrypt_user_file(path, codec), 1)
            self.assertEqual(encrypt_user_file(path, codec), 0)

            users = load_users(path)
            self.assertEqual([user.username for user in users], ["admin", "guest"])
            self.assertEqual(codec.decrypt(users[0].password), "admin123")
            self.assertEqual(users[0].id, "1")
            self.assertEqual(users[1].role, "user")

    def test_missing_user_file_is_empty(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            self.assertEqual(load_users(Path(temp_dir) / "users.json"), [])

    def test_malformed_user_file_raises(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "users.json"
            path.write_text(json.dumps({"username": "admin"}))
            with self.assertRaises(ConfigurationError):
                load_users(path)


if __name__ == "__main__":
    unittest.main()
