"""
file_handler.py - Utilities for file operations

This module provides file handling utilities for ghpin, including
workflow discovery, byte-exact reads, atomic writes with optional backups,
and mapping local paths to repository paths.
"""

import os
import posixpath
import shutil
import tempfile
from typing import List, Optional

WORKFLOW_EXTENSIONS = (".yml", ".yaml")


def is_git_repository(path: str) -> bool:
    """
    Check if a directory is a git repository

    Args:
        path: Directory path to check

    Returns:
        True if the directory contains a .git directory
    """
    git_dir = os.path.join(path, ".git")
    return os.path.isdir(git_dir)


def find_repository_root(start_path: str) -> Optional[str]:
    """
    Find the root of a git repository

    Args:
        start_path: Path to start searching from

    Returns:
        Root directory of the repository, or None if not found
    """
    current_path = os.path.abspath(start_path)

    # Handle file paths by using the parent directory
    if os.path.isfile(current_path):
        current_path = os.path.dirname(current_path)

    # Walk up the directory tree
    while True:
        if is_git_repository(current_path):
            return current_path

        parent_path = os.path.dirname(current_path)
        if parent_path == current_path:
            # Reached root directory
            return None

        current_path = parent_path


def list_workflow_files(root: str) -> List[str]:
    """
    List all workflow files beneath a directory

    Args:
        root: Directory to search recursively

    Returns:
        Sorted list of workflow file paths; empty if root does not exist

    Raises:
        NotADirectoryError: If root exists but is not a directory
        OSError: If root or one of its subdirectories cannot be read
    """
    if not os.path.lexists(root):
        return []

    if not os.path.isdir(root):
        raise NotADirectoryError(f"Not a directory: {root}")

    # os.walk swallows listing errors unless given an onerror hook
    def _raise(error: OSError) -> None:
        raise error

    # Listing the top level first surfaces permission problems on root itself
    os.listdir(root)

    result = []
    for dirpath, _dirnames, filenames in os.walk(root, onerror=_raise):
        for filename in filenames:
            if filename.endswith(WORKFLOW_EXTENSIONS):
                result.append(os.path.join(dirpath, filename))

    return sorted(result)


def read_text_file(file_path: str) -> str:
    """
    Read a file as UTF-8 text without translating line endings

    Args:
        file_path: Path to the file

    Returns:
        The decoded content

    Raises:
        OSError: If the file cannot be read
        UnicodeDecodeError: If the file is not valid UTF-8
    """
    with open(file_path, "rb") as f:
        return f.read().decode("utf-8")


def create_file_backup(file_path: str, suffix: str = ".bak") -> str:
    """
    Create a backup of a file

    Args:
        file_path: Path to the file to backup
        suffix: Suffix to append to the backup file name

    Returns:
        Path to the backup file

    Raises:
        FileNotFoundError: If the source file doesn't exist
    """
    backup_path = f"{file_path}{suffix}"
    shutil.copy2(file_path, backup_path)
    return backup_path


def safe_write_file(file_path: str, content: str, create_backup: bool = False) -> Optional[str]:
    """
    Atomically replace a file's content

    The content is written to a temporary file in the same directory which
    then replaces the original, so readers never observe a partial write.
    The original file mode is preserved.

    Args:
        file_path: Path to the file to write
        content: Content to write
        create_backup: Whether to keep a .bak copy of the original file

    Returns:
        Path to the backup file, if one was created

    Raises:
        OSError: If the file cannot be written
    """
    directory = os.path.dirname(os.path.abspath(file_path))

    backup_path = None
    if create_backup and os.path.exists(file_path):
        backup_path = create_file_backup(file_path)

    fd, temp_path = tempfile.mkstemp(dir=directory, prefix=".ghpin-")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)

        if os.path.exists(file_path):
            shutil.copymode(file_path, temp_path)

        os.replace(temp_path, file_path)
    finally:
        # Clean up the temporary file if it still exists
        if os.path.exists(temp_path):
            os.unlink(temp_path)

    return backup_path


def is_within_directory(path: str, base_dir: str) -> bool:
    """
    Check if a path resolves to a location inside a base directory

    Args:
        path: Path to check
        base_dir: Directory the path must stay within

    Returns:
        True if path is base_dir itself or below it
    """
    abs_path = os.path.realpath(os.path.abspath(path))
    abs_base = os.path.realpath(os.path.abspath(base_dir))
    return os.path.commonpath([abs_path, abs_base]) == abs_base


def to_repository_path(
    file_path: str, repo_root: Optional[str] = None, workflows_path: str = ".github/workflows"
) -> str:
    """
    Convert a local workflow path to a repository-relative POSIX path

    Args:
        file_path: Local path to a workflow file
        repo_root: Local repository root, if known
        workflows_path: Workflows directory relative to the repository root

    Returns:
        Repository-relative path such as ".github/workflows/ci.yml"
    """
    if repo_root and os.path.isabs(file_path) and is_within_directory(file_path, repo_root):
        relative = os.path.relpath(os.path.realpath(file_path), os.path.realpath(repo_root))
        return relative.replace(os.sep, "/")

    normalized = file_path.replace(os.sep, "/")
    if not os.path.isabs(file_path):
        return posixpath.normpath(normalized).lstrip("/")

    marker = "/" + workflows_path.strip("/") + "/"
    index = normalized.rfind(marker)
    if index < 0:
        # Without the workflows directory in the path, fall back to the file name
        return posixpath.join(workflows_path.strip("/"), posixpath.basename(normalized))

    return workflows_path.strip("/") + "/" + normalized[index + len(marker) :]
