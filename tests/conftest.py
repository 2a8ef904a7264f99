# UPS Fleet Monitor
# Created by Matthew Valancy, Valpatel Software LLC
# Copyright 2026 MIT License

"""Pytest configuration -- HTML report metadata with git info."""

import platform
import subprocess
from datetime import datetime


def _git(cmd: str) -> str:
    """Run a git command and return stripped output, or '' on failure."""
    try:
        return subprocess.check_output(
            ["git"] + cmd.split(), stderr=subprocess.DEVNULL
        ).decode().strip()
    except Exception:
        return ""


def pytest_configure(config):
    """Add project metadata to HTML report (only if pytest-metadata installed)."""
    try:
        from pytest_metadata.plugin import metadata_key
    except ImportError:
        return

    config.stash[metadata_key]["Project"] = "UPS Fleet Monitor"
    config.stash[metadata_key]["Git Commit"] = _git("rev-parse --short HEAD")
    config.stash[metadata_key]["Git Branch"] = _git("rev-parse --abbrev-ref HEAD")
    config.stash[metadata_key]["Python"] = platform.python_version()
    config.stash[metadata_key]["Timestamp"] = datetime.now().isoformat(timespec="seconds")


# Only registered when pytest-html is available
try:
    import pytest_html  # noqa: F401

    def pytest_html_report_title(report):
        report.title = "UPS Fleet Monitor -- Test Report"
except ImportError:
    pass
