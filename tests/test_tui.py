import asyncio
import unittest
from unittest.mock import patch

from ossdesk.app import BucketBrowser, LoginScreen, ProfileSelectDialog
from ossdesk.auth import LoginGate, UserRecord
from ossdesk.crypto import CredentialCodec
from ossdesk.kvstore import MemoryStore
from ossdesk.profiles import ProfileStore
from ossdesk.session import SessionManager, SessionState
from ossdesk.storage import ObjectMetadata, ProviderResult


class _StubHandle:
    def __init__(self, profile, objects, fail_probe=False) -> None:
        self.profile = profile
        self.objects = objects
        self.fail_probe = fail_probe
        self.list_calls = 0

    def probe_exists(self) -> None:
        if self.fail_probe:
            raise RuntimeError("connection reset")

    def list_page(self, prefix, max_keys):
        self.list_calls += 1
        return [
            ObjectMetadata(name=name, size=10, last_modified=None)
            for name in self.objects
            if name.startswith(prefix)
        ][:max_keys]

    def put(self, path, blob):
        self.objects.append(path)
        return ProviderResult(name=path)

    def delete(self, path):
        self.objects.remove(path)
        return ProviderResult(name=path)

    def sign_url(self, path, expires_seconds):
        return f"https://signed/{path}"


class _StubFactory:
    def __init__(self, objects=None) -> None:
        self.objects = objects if objects is not None else []
        self.handles: list[_StubHandle] = []
        self.fail_next = 0

    def __call__(self, profile):
        handle = _StubHandle(profile, self.objects, fail_probe=self.fail_next > 0)
        self.fail_next = max(0, self.fail_next - 1)
        self.handles.append(handle)
        return handle


def _session(objects=None, with_profile=True, factory=None) -> SessionManager:
    store = ProfileStore(MemoryStore())
    if with_profile:
        store.add(
            {
                "name": "prod",
                "access_key_id": "AKID",
                "access_key_secret": "SECRET",
                "bucket": "assets",
            }
        )
    return SessionManager(store, factory or _StubFactory(objects))


async def _settle(app, pilot) -> None:
    await pilot.pause()
    await app.workers.wait_for_complete()
    await pilot.pause()


class TestTuiMount(unittest.IsolatedAsyncioTestCase):
    async def test_app_mounts_headless_without_profiles(self) -> None:
        app = BucketBrowser(_session(with_profile=False))
        async with app.run_test() as pilot:
            await _settle(app, pilot)
            self.assertIs(app.session.state, SessionState.DISCONNECTED)
            self.assertEqual(app.table.row_count, 0)

    async def test_listing_groups_folders(self) -> None:
        app = BucketBrowser(_session(["docs/a.md", "docs/deep/b.md", "top.txt"]))
        async with app.run_test() as pilot:
            await _settle(app, pilot)
            self.assertTrue(app.session.is_connected)
            self.assertEqual(app.table.row_count, 2)
            self.assertEqual(
                [info.kind for info in app._row_info.values()], ["prefix", "object"]
            )

    async def test_enter_opens_folder_and_backspace_goes_up(self) -> None:
        app = BucketBrowser(_session(["docs/a.md", "top.txt"]))
        async with app.run_test() as pilot:
            await _settle(app, pilot)
            app.set_focus(app.table)
            await pilot.press("enter")
            await _settle(app, pilot)
            self.assertEqual(app.prefix, "docs/")
            self.assertEqual(
                [info.kind for info in app._row_info.values()], ["parent", "object"]
            )
            await pilot.press("backspace")
            await _settle(app, pilot)
            self.assertEqual(app.prefix, "")

    async def test_refresh_bypasses_cache(self) -> None:
        session = _session(["top.txt"])
        app = BucketBrowser(session)
        async with app.run_test() as pilot:
            await _settle(app, pilot)
            handle = session.handle
            self.assertEqual(handle.list_calls, 1)
            await pilot.press("r")
            await _settle(app, pilot)
            self.assertEqual(handle.list_calls, 2)

    async def test_refresh_retries_failed_connection(self) -> None:
        factory = _StubFactory(["top.txt"])
        factory.fail_next = 1
        session = _session(factory=factory)
        app = BucketBrowser(session)
        async with app.run_test() as pilot:
            await _settle(app, pilot)
            self.assertIs(session.state, SessionState.FAILED)
            await pilot.press("r")
            await _settle(app, pilot)
            self.assertIs(session.state, SessionState.CONNECTED)
            self.assertEqual(app.table.row_count, 1)

    async def test_picking_failed_active_profile_reconnects(self) -> None:
        factory = _StubFactory(["top.txt"])
        factory.fail_next = 1
        session = _session(factory=factory)
        app = BucketBrowser(session)
        async with app.run_test() as pilot:
            await _settle(app, pilot)
            self.assertIs(session.state, SessionState.FAILED)
            await pilot.press("p")
            await pilot.pause()
            await pilot.press("enter")
            await _settle(app, pilot)
            self.assertIs(session.state, SessionState.CONNECTED)
            self.assertEqual(len(factory.handles), 2)

    async def test_profile_key_opens_picker(self) -> None:
        app = BucketBrowser(_session(["top.txt"]))
        async with app.run_test() as pilot:
            await _settle(app, pilot)
            await pilot.press("p")
            await pilot.pause()
            self.assertIsInstance(app.screen, ProfileSelectDialog)
            await pilot.press("escape")
            await pilot.pause()
            self.assertNotIsInstance(app.screen, ProfileSelectDialog)

    async def test_double_escape_quits(self) -> None:
        app = BucketBrowser(_session(with_profile=False))
        with patch.object(app, "exit") as exit_mock:
            async with app.run_test() as pilot:
                await pilot.press("escape")
                exit_mock.assert_not_called()
                await pilot.press("escape")
                exit_mock.assert_called_once()

    async def test_escape_quit_window_expires(self) -> None:
        app = BucketBrowser(_session(with_profile=False))
        with patch.object(app, "exit") as exit_mock:
            async with app.run_test() as pilot:
                await pilot.press("escape")
                await asyncio.sleep(1.1)
                await pilot.press("escape")
                exit_mock.assert_not_called()

    async def test_login_screen_gates_connection(self) -> None:
        codec = CredentialCodec()
        gate = LoginGate(
            [UserRecord("1", "admin", "Admin", "admin", codec.encrypt("pw"))],
            MemoryStore(),
            codec,
        )
        session = _session(["top.txt"])
        app = BucketBrowser(session, login_gate=gate)
        async with app.run_test() as pilot:
            await _settle(app, pilot)
            self.assertIsInstance(app.screen, LoginScreen)
            self.assertIs(session.state, SessionState.DISCONNECTED)
            app.screen.query_one("#login-username").value = "admin"
            app.screen.query_one("#login-password").value = "pw"
            app.screen.query_one("#login-password").focus()
            await pilot.press("enter")
            await _settle(app, pilot)
            self.assertTrue(gate.is_authenticated)
            self.assertTrue(session.is_connected)


if __name__ == "__main__":
    unittest.main()
