"""Tests for package structure and entry point."""

import subprocess
import sys


class TestPackageImportable:
    """Test that the ralph_loop package is properly importable."""

    def test_package_has_version(self):
        import ralph_loop

        assert isinstance(ralph_loop.__version__, str)
        assert len(ralph_loop.__version__) > 0


class TestCLIEntryPoint:
    """Test that the CLI entry point works correctly."""

    def test_module_help_works(self):
        result = subprocess.run(
            [sys.executable, "-m", "ralph_loop", "--help"],
            capture_output=True,
            text=True,
            timeout=30,
        )

        assert result.returncode == 0
        assert "Usage" in result.stdout
