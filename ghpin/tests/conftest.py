"""
conftest.py - Pytest fixtures for ghpin tests
"""

import tempfile
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml

from ghpin.core.checker import UpdateCheck
from ghpin.core.context import RunContext

OLD_SHA = "a" * 40
NEW_SHA = "deadbeef" * 5


@pytest.fixture
def temp_dir():
    """Create a temporary directory that is removed after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def ctx():
    """A run context without deadline."""
    return RunContext.background()


@pytest.fixture
def sample_workflow_content():
    """Sample GitHub Actions workflow content."""
    return """name: Sample Workflow

on:
  push:
    branches: [ main ]

jobs:
  build:
    runs-on: ubuntu-latest
    steps:
      # - uses: commented/out@v1
      - uses: actions/checkout@v2
      - name: Set up Python
        uses: actions/setup-python@v4 # pinned by hand
        with:
          python-version: '3.10'
      - uses: ./local-action
      - uses: docker://alpine:3.18
      - name: Install dependencies
        run: |
          uses: not/an-action@v1
          pip install -e .
      - uses: "github/codeql-action/init@v3"
      - name: Run tests
        run: pytest
"""


@pytest.fixture
def sample_workflow_file(temp_dir, sample_workflow_content):
    """Create a sample workflow file in a temporary directory."""
    workflows_dir = Path(temp_dir) / ".github" / "workflows"
    workflows_dir.mkdir(parents=True, exist_ok=True)

    workflow_file = workflows_dir / "sample.yml"
    workflow_file.write_text(sample_workflow_content, encoding="utf-8")

    return str(workflow_file)


@pytest.fixture
def mock_repo(temp_dir, sample_workflow_file):
    """Create a mock repository with a workflow file and a config file."""
    git_dir = Path(temp_dir) / ".git"
    git_dir.mkdir(exist_ok=True)

    config_file = Path(temp_dir) / "ghpin.yml"
    with open(config_file, "w") as f:
        yaml.dump({"max_workers": 2, "history_limit": 4}, f)

    return temp_dir


@pytest.fixture
def mock_checker():
    """Version resolver double reporting v4 for every action."""
    checker = MagicMock()
    checker.is_update_available.side_effect = lambda ctx, ref: UpdateCheck(
        available=True, latest_version="v4", latest_hash=NEW_SHA, current_hash=OLD_SHA
    )
    return checker
