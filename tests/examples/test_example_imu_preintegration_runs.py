"""Smoke tests for the IMU preintegration example script.

Verifies that the example runs without errors with the Agg backend and
prints a well-formed [PREINT_SUMMARY] JSON line.
"""

import json
import os
import re
import subprocess
import sys
import unittest
from pathlib import Path
from typing import Any, Dict, Optional


def parse_preint_summary(stdout: str) -> Optional[Dict[str, Any]]:
    """Parse the [PREINT_SUMMARY] JSON line from script output."""
    match = re.search(r"\[PREINT_SUMMARY\]\s*(\{.*\})", stdout)
    if not match:
        return None
    try:
        return json.loads(match.group(1))
    except json.JSONDecodeError as e:
        raise ValueError(f"Malformed PREINT_SUMMARY JSON: {e}")


class TestExampleImuPreintegrationRuns(unittest.TestCase):
    """Smoke tests: the example script should run without errors."""

    def setUp(self):
        self.python_exe = sys.executable
        self.workspace_root = Path(__file__).parent.parent.parent
        self.script_path = self.workspace_root / "ch_preintegration" / "example_imu_preintegration.py"
        self.assertTrue(self.script_path.exists(), f"Script not found: {self.script_path}")

    def run_example(self, *args, figs_dir):
        env = os.environ.copy()
        env.update({
            "MPLBACKEND": "Agg",
            "PYTHONPATH": str(self.workspace_root),
        })
        return subprocess.run(
            [self.python_exe, "-m", "ch_preintegration.example_imu_preintegration",
             "--duration", "2.0", "--figs-dir", str(figs_dir), *args],
            cwd=self.workspace_root,
            capture_output=True,
            text=True,
            timeout=120,
            env=env,
        )

    def test_default_run(self):
        import tempfile

        with tempfile.TemporaryDirectory() as tmp:
            result = self.run_example(figs_dir=tmp)
            self.assertEqual(result.returncode, 0, f"Script failed with stderr:\n{result.stderr}")
            self.assertTrue((Path(tmp) / "preintegration_covariance.svg").exists())

        summary = parse_preint_summary(result.stdout)
        self.assertIsNotNone(summary, "Missing [PREINT_SUMMARY] JSON line in output")
        self.assertEqual(summary["n_factors"], 4)
        self.assertGreater(summary["mean_chi2"], 0.0)
        self.assertLess(summary["max_position_error"], 0.1)

    def test_run_with_json_config(self):
        import tempfile

        with tempfile.TemporaryDirectory() as tmp:
            config = Path(tmp) / "imu.json"
            config.write_text(json.dumps({
                "accelerometer_noise_density": 0.02,
                "gyroscope_noise_density": 0.002,
                "integration_uncertainty": 1e-4,
                "use_2nd_order_integration": True,
            }))
            result = self.run_example("--config", str(config), figs_dir=tmp)
            self.assertEqual(result.returncode, 0, f"Script failed with stderr:\n{result.stderr}")

        summary = parse_preint_summary(result.stdout)
        self.assertIsNotNone(summary)
        self.assertEqual(summary["n_factors"], 4)


if __name__ == "__main__":
    unittest.main()
