"""
Changelog checksum post-processing.

Replaces ``sha256:<filename>`` placeholders in a changelog with the digest
listed for that file in a checksum table, or removes the placeholder when the
file is not listed.

Checksum table format, one record per line::

    <64 lowercase hex digest><one or more spaces><filename>
"""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import Dict, Mapping, Union

from releaseflow.core.exceptions import PostProcessError
from releaseflow.core.logger import get_logger

CHECKSUMS_FILE_NAME = "checksums_sha256.txt"
DIGEST_LENGTH = 64
# digest plus at least one separator character
MIN_RECORD_LENGTH = DIGEST_LENGTH + 1
DIGEST_DELIMITER = "`"

_PLACEHOLDER = re.compile(r"sha256:([\w.\-]+)")
_HEX_DIGEST = re.compile(r"[0-9a-f]{64}")

log = get_logger(__name__)


def parse_checksums(text: str) -> Dict[str, str]:
    """Parse a checksum table into ``{filename: digest}``.

    Raises:
        PostProcessError: on the first malformed line; nothing is returned
            for a partially valid table.
    """
    checksums: Dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        if len(line) < MIN_RECORD_LENGTH:
            raise PostProcessError(
                f"Checksum line {lineno} is shorter than {MIN_RECORD_LENGTH} characters: {line!r}"
            )
        digest = line[:DIGEST_LENGTH]
        if not _HEX_DIGEST.fullmatch(digest):
            raise PostProcessError(f"Checksum line {lineno} does not start with a sha256 hex digest: {line!r}")
        if not line[DIGEST_LENGTH].isspace():
            raise PostProcessError(f"Checksum line {lineno} has no separator after the digest: {line!r}")
        filename = line[DIGEST_LENGTH:].strip()
        if not filename:
            raise PostProcessError(f"Checksum line {lineno} has no filename: {line!r}")
        checksums[filename] = digest
    return checksums


def replace_checksums(line: str, checksums: Mapping[str, str]) -> str:
    """Resolve every ``sha256:<filename>`` placeholder of one line independently."""

    def _repl(match: "re.Match[str]") -> str:
        digest = checksums.get(match.group(1))
        if digest is None:
            return ""
        return f"sha256:{DIGEST_DELIMITER}{digest}{DIGEST_DELIMITER}"

    return _PLACEHOLDER.sub(_repl, line)


def rewrite_changelog(text: str, checksums: Mapping[str, str]) -> str:
    """Apply ``replace_checksums`` line by line, keeping the original line endings."""
    return "".join(replace_checksums(line, checksums) for line in text.splitlines(keepends=True))


def _write_atomic(path: Path, content: str) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def adjust_changelog(checksums_file: Union[str, Path], changelog_file: Union[str, Path]) -> int:
    """
    Rewrite ``changelog_file`` in place using the digests of ``checksums_file``.

    The new document is computed completely before anything is written, and
    written through a temporary file, so on any error the changelog is left
    byte-for-byte unchanged.

    Args:
        checksums_file: Checksum table (see module docstring).
        changelog_file: Document containing ``sha256:<filename>`` placeholders.

    Returns:
        Number of placeholders found in the changelog.

    Raises:
        PostProcessError: If either file is missing or unreadable, or the
            checksum table is malformed.
    """
    checksums_path = Path(checksums_file)
    changelog_path = Path(changelog_file)

    if not checksums_path.is_file():
        raise PostProcessError(f"Checksums file does not exist. {checksums_path.absolute()}")
    if not changelog_path.is_file():
        raise PostProcessError(f"Changelog file does not exist. {changelog_path.absolute()}")

    try:
        checksums = parse_checksums(checksums_path.read_text(encoding="utf-8"))
        with open(changelog_path, "r", encoding="utf-8", newline="") as f:
            original = f.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise PostProcessError(f"Unexpected error reading checksums or changelog. {exc}") from exc

    placeholders = len(_PLACEHOLDER.findall(original))
    updated = rewrite_changelog(original, checksums)
    if updated != original:
        try:
            _write_atomic(changelog_path, updated)
        except OSError as exc:
            raise PostProcessError(f"Unexpected error replacing checksums. {exc}") from exc

    log.info(f"Resolved {placeholders} checksum placeholder(s) in {changelog_path} using {len(checksums)} digest(s)")
    return placeholders


def adjust_changelog_from_directory(checksum_directory: Union[str, Path], changelog_file: Union[str, Path]) -> int:
    """Same as ``adjust_changelog`` with the table read from ``<dir>/checksums_sha256.txt``."""
    directory = Path(checksum_directory)
    if not directory.is_dir():
        raise PostProcessError(f"Checksum directory does not exist. {directory.absolute()}")
    return adjust_changelog(directory / CHECKSUMS_FILE_NAME, changelog_file)
