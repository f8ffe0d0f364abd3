"""
scanner.py - Workflow discovery and action reference extraction

This module finds workflow files and extracts every ``uses: owner/name@ref``
pin with the exact position of its token, so the reference can later be
replaced without touching the rest of the file. Extraction is line-oriented
and does not require the document to be valid YAML.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..utils.file_handler import list_workflow_files, read_text_file
from ..utils.version import is_commit_sha, parse_github_ref, short_sha
from .errors import DiscoveryError, ParseError
from .provenance import parse_annotation

logger = logging.getLogger(__name__)

USES_PATTERN = re.compile(
    r"""^(?P<lead>[ \t]*(?:-[ \t]+)?)"""
    r"""(?P<kq>["']?)uses(?P=kq)[ \t]*:[ \t]+"""
    r"""(?P<quote>["']?)(?P<ref>[^\s"'#]+)(?P=quote)"""
    r"""(?P<rest>.*)$"""
)

TRAILING_COMMENT_PATTERN = re.compile(r"^[ \t]+#[ \t]?(?P<comment>.*?)[ \t]*$")

# "key: |", "- key: >-", "key: |2 # note"
BLOCK_SCALAR_KEY_PATTERN = re.compile(
    r"""^(?P<lead>[ \t]*(?:-[ \t]+)?)[^\s#'"][^#]*?[ \t]*:[ \t]+[|>][0-9+-]*[ \t]*(?:#.*)?$"""
)

# "- |" as a sequence item
BLOCK_SCALAR_ITEM_PATTERN = re.compile(r"^(?P<lead>[ \t]*)-[ \t]+[|>][0-9+-]*[ \t]*(?:#.*)?$")


@dataclass(frozen=True)
class ActionReference:
    """A pinned action reference and the position of its token"""

    owner: str
    name: str
    version: str
    comment: str
    file_path: str
    line: int
    column: int
    end_column: int

    def __post_init__(self) -> None:
        """Validate the owner/name invariant"""
        if not self.owner or not self.name:
            raise ValueError("Action reference requires a non-empty owner and name")
        if self.end_column <= self.column:
            raise ValueError("Action reference span must not be empty")

    @property
    def repo(self) -> str:
        """Repository name; sub-path actions like codeql-action/init live in codeql-action"""
        return self.name.split("/", 1)[0]

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def token(self) -> str:
        """The exact text at the recorded span"""
        return f"{self.owner}/{self.name}@{self.version}"

    @property
    def is_sha_pinned(self) -> bool:
        return is_commit_sha(self.version)

    @property
    def label(self) -> Optional[str]:
        """
        Display version of the pin

        For tag and branch pins this is the ref itself; for commit pins it is
        the version recorded in the trailing annotation, if any.
        """
        if not self.is_sha_pinned:
            return self.version
        return parse_annotation(self.comment)[0]

    @property
    def display_version(self) -> str:
        return self.label or short_sha(self.version)

    @property
    def history(self) -> Tuple[str, ...]:
        return parse_annotation(self.comment)[1]

    @property
    def original_version(self) -> str:
        """First version ever recorded for this reference"""
        history = self.history
        return history[0] if history else self.display_version

    @property
    def key(self) -> Tuple[str, str, int]:
        return (self.file_path, self.full_name, self.line)


class WorkflowScanner:
    """Finds workflow files and extracts the action references they pin"""

    def __init__(self, repository: Optional[str] = None) -> None:
        """
        Initialize the scanner

        Args:
            repository: "owner/name" of the repository being scanned; references
                back into it are skipped
        """
        self.repository = repository.lower() if repository else None

    def scan_workflows(self, root: str) -> List[str]:
        """
        List workflow files beneath a directory

        Args:
            root: Workflows directory

        Returns:
            Sorted list of workflow file paths, empty if root does not exist

        Raises:
            DiscoveryError: If root exists but cannot be read
        """
        try:
            files = list_workflow_files(root)
        except OSError as e:
            raise DiscoveryError(f"Error reading workflows directory {root}: {e}") from e

        logger.info("Found %d workflow file(s) in %s", len(files), root)
        return files

    def parse_action_references(self, file_path: str) -> List[ActionReference]:
        """
        Extract action references from a workflow file

        Args:
            file_path: Path to the workflow file

        Returns:
            One reference per remote ``uses:`` pin, in file order

        Raises:
            ParseError: If the file cannot be read or is not valid UTF-8
        """
        try:
            content = read_text_file(file_path)
        except UnicodeDecodeError as e:
            raise ParseError(f"{file_path} is not valid UTF-8: {e}", file_path=file_path) from e
        except OSError as e:
            raise ParseError(f"Error reading {file_path}: {e}", file_path=file_path) from e

        references = self.parse_content(content, file_path)
        logger.debug("Parsed %d action reference(s) from %s", len(references), file_path)
        return references

    def parse_content(self, content: str, file_path: str) -> List[ActionReference]:
        """
        Extract action references from workflow text

        Args:
            content: Workflow file content
            file_path: Path recorded on each reference

        Returns:
            List of action references in file order
        """
        references: List[ActionReference] = []
        block_indent: Optional[int] = None

        for index, raw_line in enumerate(content.split("\n")):
            line = raw_line[:-1] if raw_line.endswith("\r") else raw_line
            stripped = line.strip()

            # Skip the body of block scalars such as "run: |" scripts
            if block_indent is not None:
                if not stripped:
                    continue
                indent = len(line) - len(line.lstrip(" \t"))
                if indent > block_indent:
                    continue
                block_indent = None

            if not stripped or stripped.startswith("#"):
                continue

            match = USES_PATTERN.match(line)
            if match:
                reference = self._build_reference(match, file_path, index + 1)
                if reference is not None:
                    references.append(reference)
                continue

            block = BLOCK_SCALAR_KEY_PATTERN.match(line)
            if block:
                block_indent = len(block.group("lead"))
                continue

            item = BLOCK_SCALAR_ITEM_PATTERN.match(line)
            if item:
                block_indent = len(item.group("lead"))

        return references

    def _build_reference(
        self, match: "re.Match[str]", file_path: str, line_number: int
    ) -> Optional[ActionReference]:
        """Turn a matched ``uses:`` line into a reference, or None if it is skipped"""
        value = match.group("ref")

        if value.startswith("./") or value.startswith("../") or value.startswith("docker://"):
            logger.debug("Skipping local/docker action %s at %s:%d", value, file_path, line_number)
            return None

        if "${{" in value:
            logger.debug("Skipping expression %s at %s:%d", value, file_path, line_number)
            return None

        rest = match.group("rest")
        comment = ""
        if rest.strip():
            comment_match = TRAILING_COMMENT_PATTERN.match(rest)
            if not comment_match:
                logger.debug("Skipping unrecognised uses value at %s:%d", file_path, line_number)
                return None
            comment = comment_match.group("comment")

        parsed = parse_github_ref(value)
        if not parsed["valid"]:
            logger.debug("Skipping non-action uses reference %s at %s:%d", value, file_path, line_number)
            return None

        if self.repository and f"{parsed['owner']}/{parsed['repo']}".lower() == self.repository:
            logger.debug("Skipping same-repository reference %s at %s:%d", value, file_path, line_number)
            return None

        return ActionReference(
            owner=parsed["owner"],
            name=parsed["name"],
            version=parsed["version"],
            comment=comment,
            file_path=file_path,
            line=line_number,
            column=match.start("ref"),
            end_column=match.end("ref"),
        )


def scan_workflows(root: str) -> List[str]:
    """
    List workflow files beneath a directory

    Args:
        root: Workflows directory

    Returns:
        Sorted list of workflow file paths
    """
    return WorkflowScanner().scan_workflows(root)


def parse_action_references(
    file_path: str, repository: Optional[str] = None
) -> List[ActionReference]:
    """
    Extract action references from a workflow file

    Args:
        file_path: Path to the workflow file
        repository: "owner/name" of the scanned repository, to skip self references

    Returns:
        List of action references
    """
    return WorkflowScanner(repository=repository).parse_action_references(file_path)
