import os
import subprocess
import sys
import unittest
from pathlib import Path

SRC = str(Path(__file__).resolve().parent.parent / "src")


class TestGtidfixModuleEntry(unittest.TestCase):

    def _run(self, *args):
        env = dict(os.environ, GTIDFIX_LOG_DISABLED="1")
        env["PYTHONPATH"] = os.pathsep.join(filter(None, [SRC, env.get("PYTHONPATH")]))
        return subprocess.run(
            [sys.executable, "-m", "gtidfix", *args],
            capture_output=True, text=True, env=env
        )

    def test_module_help_flag(self):
        result = self._run("--help")
        self.assertIn("fix", result.stdout)
        self.assertIn("topology", result.stdout)
        self.assertEqual(result.returncode, 0)

    def test_module_fix_missing_option_file(self):
        # NOTE: This should fail cleanly before any connection attempt
        result = self._run("fix", "-c", "/not/real/my.cnf", "--monitor-user", "monitor")
        self.assertIn("option file not found", result.stderr.lower())
        self.assertEqual(result.returncode, 1)


if __name__ == "__main__":
    unittest.main()
