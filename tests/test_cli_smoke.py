import subprocess
import sys


def test_cli_help() -> None:
    cp = subprocess.run(
        [sys.executable, "-m", "scclonemix", "--help"],
        check=True,
        capture_output=True,
        text=True,
    )
    assert "scclonemix" in cp.stdout.lower()
    assert "assign" in cp.stdout
