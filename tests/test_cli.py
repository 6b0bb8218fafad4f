import io
import json
import sys
import tempfile
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
import unittest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT / "src") not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT / "src"))

from godot_helper.cli.main import main

from fixtures import symbol_document, write_project


OUTPUT_PARTS = (".godot", "godot_helper")


class CliTest(unittest.TestCase):
    def run_cli(self, *argv):
        stdout = io.StringIO()
        stderr = io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            exit_code = main(list(argv))
        return exit_code, stdout.getvalue(), stderr.getvalue()

    def test_generate_writes_fragments(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            project_dir = Path(tmpdir).resolve()
            write_project(project_dir)

            exit_code, stdout, stderr = self.run_cli("generate", "--project", str(project_dir))
            self.assertEqual(exit_code, 0, stderr)
            output_dir = project_dir.joinpath(*OUTPUT_PARTS)
            self.assertTrue((output_dir / "HelperGenerator_AutoLoad.g.cs").is_file())
            self.assertTrue((output_dir / "Game.Player_GodotHelper.g.cs").is_file())
            self.assertIn("7 fragment(s): 7 written, 0 removed", stdout)

            exit_code, stdout, _stderr = self.run_cli("generate", "--project", str(project_dir))
            self.assertEqual(exit_code, 0)
            self.assertIn("7 fragment(s): 0 written, 0 removed", stdout)

    def test_check_reports_out_of_date_output(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            project_dir = Path(tmpdir).resolve()
            write_project(project_dir)
            output_dir = project_dir.joinpath(*OUTPUT_PARTS)

            exit_code, _stdout, stderr = self.run_cli("generate", "--project", str(project_dir), "--check")
            self.assertEqual(exit_code, 1)
            self.assertIn("out of date", stderr)

            self.run_cli("generate", "--project", str(project_dir))
            exit_code, stdout, _stderr = self.run_cli("generate", "--project", str(project_dir), "--check")
            self.assertEqual(exit_code, 0)
            self.assertIn("up to date", stdout)

            (output_dir / "Game.Player_GodotHelper.g.cs").write_text("// edited\n", encoding="utf-8")
            exit_code, _stdout, stderr = self.run_cli("generate", "--project", str(project_dir), "--check")
            self.assertEqual(exit_code, 1)
            self.assertIn("* Game.Player_GodotHelper.g.cs", stderr)

    def test_generate_removes_stale_fragments(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            project_dir = Path(tmpdir).resolve()
            write_project(project_dir)
            output_dir = project_dir / "generated"
            output_dir.mkdir()
            (output_dir / "Game.Gone_GodotHelper.g.cs").write_text("// stale\n", encoding="utf-8")

            exit_code, _stdout, stderr = self.run_cli(
                "generate", "--project", str(project_dir), "--out", str(output_dir), "--check"
            )
            self.assertEqual(exit_code, 1)
            self.assertIn("- Game.Gone_GodotHelper.g.cs", stderr)

            exit_code, stdout, _stderr = self.run_cli("generate", "--project", str(project_dir), "--out", str(output_dir))
            self.assertEqual(exit_code, 0)
            self.assertIn("  - Game.Gone_GodotHelper.g.cs", stdout)
            self.assertFalse((output_dir / "Game.Gone_GodotHelper.g.cs").exists())

    def test_missing_manifest_fails(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            exit_code, _stdout, stderr = self.run_cli("generate", "--project", tmpdir)
            self.assertEqual(exit_code, 1)
            self.assertIn("manifest not found", stderr)

    def test_malformed_symbols_fail(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            project_dir = Path(tmpdir).resolve()
            write_project(project_dir)
            (project_dir / "symbols.json").write_text("{broken", encoding="utf-8")

            exit_code, _stdout, stderr = self.run_cli("generate", "--project", str(project_dir))
            self.assertEqual(exit_code, 1)
            self.assertTrue(stderr.startswith("godot-helper: "))

    def test_generation_errors_set_exit_code(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            project_dir = Path(tmpdir).resolve()
            broken_signal = {
                "name": "Enemy", "namespace": "Game", "assembly": "Game", "base_type": "Godot.Node",
                "members": [{"kind": "delegate", "name": "Died",
                             "markers": [{"name": "Godot.SignalAttribute"}]}],
            }
            write_project(project_dir, document=symbol_document(broken_signal))
            exit_code, _stdout, stderr = self.run_cli("generate", "--project", str(project_dir))
            self.assertEqual(exit_code, 1)
            self.assertIn("error GH0002", stderr)
            self.assertTrue(project_dir.joinpath(*OUTPUT_PARTS, "Game.Player_GodotHelper.g.cs").is_file())

    def test_scan_prints_json(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            project_dir = Path(tmpdir).resolve()
            write_project(project_dir)

            exit_code, stdout, _stderr = self.run_cli("scan", "--project", str(project_dir))
            self.assertEqual(exit_code, 0)
            document = json.loads(stdout)
            self.assertEqual(
                sorted(entry["name"] for entry in document["manifest"]),
                ["Audio", "GameState", "jump", "move_up"],
            )
            self.assertEqual(document["scenes"][0]["connections"][0]["method"], "OnButtonPressed")
            self.assertEqual(
                [scanned["qualified_name"] for scanned in document["classes"]],
                ["Game.GameState", "Game.Plain", "Game.Player"],
            )


if __name__ == "__main__":
    unittest.main()
