import io
import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from rich.console import Console

from ossdesk import app as app_module
from ossdesk.app import main
from ossdesk.crypto import CredentialCodec
from ossdesk.settings import Settings
from ossdesk.storage import ObjectMetadata, ProviderResult


class _FakeHandle:
    def __init__(self, profile) -> None:
        self.profile = profile
        self.deleted: list[str] = []

    def probe_exists(self) -> None:
        return None

    def list_page(self, prefix, max_keys):
        return [ObjectMetadata(name=f"{prefix}report.csv", size=2048, last_modified=None)]

    def put(self, path, blob):
        return ProviderResult(name=path)

    def delete(self, path):
        self.deleted.append(path)
        return ProviderResult(name=path)

    def sign_url(self, path, expires_seconds):
        return f"https://signed.example/{path}?e={expires_seconds}"


class _FakeFactory:
    def __init__(self, default_region: str = "") -> None:
        self.default_region = default_region

    def __call__(self, profile):
        return _FakeHandle(profile)


class TestCliDispatch(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.config_dir = Path(self._temp_dir.name)
        self.output = io.StringIO()
        patches = [
            patch.object(
                app_module, "console", Console(file=self.output, width=200)
            ),
            patch.object(app_module, "Boto3ClientFactory", _FakeFactory),
        ]
        for patcher in patches:
            patcher.start()
            self.addCleanup(patcher.stop)
        self.addCleanup(self._temp_dir.cleanup)

    def run_cli(self, *argv: str) -> int:
        return main(["--config-dir", str(self.config_dir), *argv])

    def add_profile(self, name: str = "prod", bucket: str = "assets") -> None:
        code = self.run_cli(
            "profiles",
            "add",
            "--name",
            name,
            "--access-key-id",
            "AKID",
            "--access-key-secret",
            "SECRET",
            "--bucket",
            bucket,
        )
        self.assertEqual(code, 0)

    def state(self) -> dict:
        return json.loads((self.config_dir / "state.json").read_text())

    def test_default_cli_runs_tui(self) -> None:
        with patch("ossdesk.app._run_browser_command", return_value=0) as run_browser:
            code = self.run_cli()

        self.assertEqual(code, 0)
        settings, config_dir = run_browser.call_args.args
        self.assertIsInstance(settings, Settings)
        self.assertEqual(config_dir, self.config_dir)

    def test_settings_file_is_honoured(self) -> None:
        (self.config_dir / "config.json").write_text(json.dumps({"default_max_keys": 5}))
        with patch("ossdesk.app._run_browser_command", return_value=0) as run_browser:
            self.run_cli("browse")
        settings, _ = run_browser.call_args.args
        self.assertEqual(settings.default_max_keys, 5)

    def test_invalid_settings_exit_with_error(self) -> None:
        (self.config_dir / "config.json").write_text(json.dumps({"default_max_keys": 0}))
        self.assertEqual(self.run_cli("profiles", "list"), 1)
        self.assertIn("Error", self.output.getvalue())

    def test_profiles_add_stores_encrypted_record(self) -> None:
        self.add_profile()
        state = self.state()
        records = json.loads(state["ossConfigs"])
        self.assertEqual(records[0]["name"], "prod")
        self.assertEqual(state["currentOssConfigId"], records[0]["id"])
        self.assertEqual(CredentialCodec().decrypt(records[0]["accessKeyId"]), "AKID")

        self.assertEqual(self.run_cli("profiles", "list"), 0)
        self.assertIn("assets", self.output.getvalue())

    def test_profiles_copy_clones_under_new_id(self) -> None:
        self.add_profile("prod", "assets")
        source_id = json.loads(self.state()["ossConfigs"])[0]["id"]
        self.assertEqual(self.run_cli("profiles", "copy", source_id), 0)
        records = json.loads(self.state()["ossConfigs"])
        self.assertEqual([record["name"] for record in records], ["prod", "prod - copy"])
        self.assertNotEqual(records[1]["id"], source_id)
        self.assertEqual(records[1]["bucket"], "assets")
        self.assertEqual(CredentialCodec().decrypt(records[1]["accessKeySecret"]), "SECRET")
        self.assertEqual(self.state()["currentOssConfigId"], records[1]["id"])

        self.assertEqual(self.run_cli("profiles", "copy", source_id, "--name", "dr"), 0)
        self.assertEqual(json.loads(self.state()["ossConfigs"])[2]["name"], "dr")
        self.assertEqual(self.run_cli("profiles", "copy", "missing"), 1)

    def test_profiles_switch_and_remove(self) -> None:
        self.add_profile("a", "bucket-a")
        self.add_profile("b", "bucket-b")
        first_id = json.loads(self.state()["ossConfigs"])[0]["id"]
        self.assertEqual(self.run_cli("profiles", "switch", first_id), 0)
        self.assertEqual(self.state()["currentOssConfigId"], first_id)
        self.assertEqual(self.run_cli("profiles", "remove", first_id), 0)
        records = json.loads(self.state()["ossConfigs"])
        self.assertEqual([record["name"] for record in records], ["b"])
        self.assertEqual(self.run_cli("profiles", "remove", "missing"), 1)

    def test_profiles_export_import_round_trip(self) -> None:
        self.add_profile("a", "bucket-a")
        self.add_profile("b", "bucket-b")
        export_path = self.config_dir / "export.json"
        self.assertEqual(self.run_cli("profiles", "export", str(export_path)), 0)
        self.assertEqual(self.run_cli("profiles", "clear"), 0)
        self.assertNotIn("ossConfigs", self.state())

        self.assertEqual(self.run_cli("profiles", "import", str(export_path)), 0)
        records = json.loads(self.state()["ossConfigs"])
        self.assertEqual([record["name"] for record in records], ["a", "b"])
        active = self.state()["currentOssConfigId"]
        self.assertEqual(active, records[1]["id"])

    def test_ls_without_profile_fails(self) -> None:
        self.assertEqual(self.run_cli("ls"), 1)
        self.assertIn("No active profile", self.output.getvalue())

    def test_ls_url_and_rm(self) -> None:
        self.add_profile()
        self.assertEqual(self.run_cli("ls", "docs/"), 0)
        self.assertIn("docs/report.csv", self.output.getvalue())
        self.assertIn("2.0 KB", self.output.getvalue())
        self.assertEqual(self.run_cli("url", "docs/report.csv", "--expires", "60"), 0)
        self.assertIn("https://signed.example/docs/report.csv?e=60", self.output.getvalue())
        self.assertEqual(self.run_cli("rm", "docs/report.csv"), 0)
        self.assertIn("Deleted docs/report.csv", self.output.getvalue())

    def test_put_rejects_missing_file(self) -> None:
        self.add_profile()
        self.assertEqual(self.run_cli("put", str(self.config_dir / "nope.bin")), 1)

    def test_encrypt_passwords_command(self) -> None:
        users = self.config_dir / "users.json"
        users.write_text(json.dumps([{"username": "admin", "password": "admin123"}]))
        self.assertEqual(self.run_cli("encrypt-passwords"), 0)
        stored = json.loads(users.read_text())[0]["password"]
        self.assertEqual(CredentialCodec().decrypt(stored), "admin123")


if __name__ == "__main__":
    unittest.main()
