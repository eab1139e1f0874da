from __future__ import annotations

import subprocess
import sys


def _python() -> str:
    # Use the same interpreter running the tests
    return sys.executable


def test_module_entrypoint_help():
    """Running `python -m shareServer --help` should exit 0 and print usage/help."""
    proc = subprocess.run([_python(), "-m", "shareServer", "--help"], capture_output=True, text=True, timeout=10)
    assert proc.returncode == 0
    out = proc.stdout + proc.stderr
    assert "usage" in out.lower() or "serve-folder" in out
    assert "--idle-timeout" in out


def test_module_entrypoint_missing_root(tmp_path):
    """A missing root directory exits with status 2 before binding anything."""
    proc = subprocess.run(
        [_python(), "-m", "shareServer", "--root-dir", str(tmp_path / "absent")],
        capture_output=True,
        text=True,
        timeout=10,
    )
    assert proc.returncode == 2
    assert "not a directory" in proc.stderr
