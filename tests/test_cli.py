"""
Tests for the CLI commands.

Uses Python's unittest module.
Tests argument parsing and runs the commands against a temporary
configuration.
"""

from __future__ import annotations

import io
import json
import os
import shutil
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import patch

from storesync.cli import create_parser, format_timestamp, main
from storesync.config.settings import Settings, save_config
from storesync.storage import PreferenceStore, Product, RecordStore
from storesync.storage.preferences import USER_DATA


class TestArgumentParser(unittest.TestCase):
    """Tests for CLI argument parsing."""

    def setUp(self) -> None:
        """Set up parser for tests."""
        self.parser = create_parser()

    def test_version_argument(self) -> None:
        """Test --version argument."""
        with redirect_stdout(io.StringIO()):
            with self.assertRaises(SystemExit) as cm:
                self.parser.parse_args(["--version"])

        self.assertEqual(cm.exception.code, 0)

    def test_no_command_defaults(self) -> None:
        args = self.parser.parse_args([])

        self.assertIsNone(args.command)
        self.assertEqual(args.verbose, 0)
        self.assertFalse(args.quiet)
        self.assertIsNone(args.user)

    def test_global_options(self) -> None:
        args = self.parser.parse_args(["-vv", "--user", "u1", "--config", "/c.yaml", "info"])

        self.assertEqual(args.verbose, 2)
        self.assertEqual(args.user, "u1")
        self.assertEqual(args.config, "/c.yaml")
        self.assertEqual(args.command, "info")

    def test_backup_output(self) -> None:
        args = self.parser.parse_args(["backup", "-o", "/tmp/out"])
        self.assertEqual(args.output, "/tmp/out")

    def test_restore_arguments(self) -> None:
        args = self.parser.parse_args(["restore", "backup.tar.gz", "--force"])

        self.assertEqual(args.backup_file, "backup.tar.gz")
        self.assertTrue(args.force)

    def test_restore_requires_file(self) -> None:
        with redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                self.parser.parse_args(["restore"])

    def test_images_action_choices(self) -> None:
        self.assertEqual(self.parser.parse_args(["images", "diagnose"]).action, "diagnose")
        with redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit):
                self.parser.parse_args(["images", "delete"])

    def test_cloud_restore_force(self) -> None:
        args = self.parser.parse_args(["cloud-restore", "--force"])
        self.assertEqual(args.command, "cloud-restore")
        self.assertTrue(args.force)


class TestFormatTimestamp(unittest.TestCase):
    """Tests for timestamp formatting."""

    def test_never(self) -> None:
        self.assertEqual(format_timestamp(None), "never")
        self.assertEqual(format_timestamp(0), "never")

    def test_formatted(self) -> None:
        self.assertRegex(format_timestamp(1_700_000_000_000), r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")


class TestCommands(unittest.TestCase):
    """Runs commands against a configuration in a temp directory."""

    def setUp(self) -> None:
        self.temp_dir = tempfile.mkdtemp()
        base = Path(self.temp_dir)
        settings = Settings()
        settings.storage.data_dir = str(base / "data")
        settings.assets.cache_dir = str(base / "cache")
        settings.assets.external_dir = str(base / "files")
        settings.backup.output_dir = str(base / "backups")
        self.settings = settings
        self.config_path = base / "config.yaml"
        save_config(settings, self.config_path)

        RecordStore(settings.database_path).save_records(
            [Product(id="p1", name="Coffee"), Product(id="p2", name="Tea", photo_url="/x/p2.jpg")]
        )
        PreferenceStore(settings.preferences_path).namespace(USER_DATA).put("user_id", "user-1")

        self.env = patch.dict(os.environ, {}, clear=True)
        self.env.start()

    def tearDown(self) -> None:
        self.env.stop()
        shutil.rmtree(self.temp_dir)

    def run_cli(self, *argv: str) -> tuple[int, str, str]:
        stdout, stderr = io.StringIO(), io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            with self.assertRaises(SystemExit) as cm:
                main(["--config", str(self.config_path), *argv])
        return cm.exception.code, stdout.getvalue(), stderr.getvalue()

    def test_no_command_prints_help(self) -> None:
        code, out, _ = self.run_cli()
        self.assertEqual(code, 0)
        self.assertIn("usage:", out)

    def test_info_json(self) -> None:
        code, out, _ = self.run_cli("info", "--json")

        self.assertEqual(code, 0)
        info = json.loads(out)
        self.assertEqual(info["user_id"], "user-1")
        self.assertEqual(info["counts"]["products"], 2)
        self.assertIsNone(info["last_backup_time"])

    def test_user_override(self) -> None:
        code, out, _ = self.run_cli("--user", "someone-else", "info", "--json")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["user_id"], "someone-else")

    def test_export_json_stdout(self) -> None:
        code, out, _ = self.run_cli("export-json")

        self.assertEqual(code, 0)
        document = json.loads(out)
        self.assertEqual([p["id"] for p in document["products"]], ["p1", "p2"])
        self.assertEqual(document["productPhotos"], [{"productId": "p2", "fileName": "p2.jpg"}])

    def test_export_then_restore_json(self) -> None:
        snapshot_file = Path(self.temp_dir) / "out" / "snapshot.json"
        code, _, _ = self.run_cli("-q", "export-json", "-o", str(snapshot_file))
        self.assertEqual(code, 0)
        RecordStore(self.settings.database_path).save_records([Product(id="extra")])

        code, out, _ = self.run_cli("restore-json", str(snapshot_file), "--force")

        self.assertEqual(code, 0)
        self.assertIn("Restore completed successfully!", out)
        products = RecordStore(self.settings.database_path).list_records(Product)
        self.assertEqual([p.id for p in products], ["p1", "p2"])

    def test_backup_verify_restore(self) -> None:
        code, out, _ = self.run_cli("backup")
        self.assertEqual(code, 0, out)
        archives = list(Path(self.settings.backup.output_dir).glob("*.tar.gz"))
        self.assertEqual(len(archives), 1)

        code, out, _ = self.run_cli("verify", str(archives[0]))
        self.assertEqual(code, 0)
        self.assertIn("verified successfully", out)

        code, out, _ = self.run_cli("restore", str(archives[0]), "--force")
        self.assertEqual(code, 0)
        self.assertIn("products: 2", out)

    def test_restore_missing_file(self) -> None:
        code, _, err = self.run_cli("restore", "nope.tar.gz", "--force")
        self.assertEqual(code, 1)
        self.assertIn("Backup file not found", err)

    def test_verify_corrupt_file(self) -> None:
        bogus = Path(self.temp_dir) / "bogus.tar.gz"
        bogus.write_bytes(b"garbage")

        code, _, err = self.run_cli("verify", str(bogus))

        self.assertEqual(code, 1)
        self.assertIn("verification failed", err)

    def test_images_diagnose_json(self) -> None:
        code, out, _ = self.run_cli("images", "diagnose", "--json")

        self.assertEqual(code, 0)
        diagnosis = json.loads(out)
        self.assertEqual(diagnosis["totalProducts"], 2)
        self.assertEqual(diagnosis["withLocalImages"], 1)

    def test_images_resync_without_bucket(self) -> None:
        code, _, err = self.run_cli("images", "resync")
        self.assertEqual(code, 1)
        self.assertIn("bucket", err)

    def test_cloud_backup_without_endpoint(self) -> None:
        code, _, err = self.run_cli("cloud-backup")
        self.assertEqual(code, 2)
        self.assertIn("remote.endpoint", err)

    def test_invalid_config(self) -> None:
        self.config_path.write_text("log_level: LOUD\n")
        code, _, err = self.run_cli("info")
        self.assertEqual(code, 2)
        self.assertIn("Configuration error", err)


if __name__ == "__main__":
    unittest.main()
