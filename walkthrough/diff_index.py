"""Diff parsing — unified diff text to a stable-identifier DiffIndex.

The parser is lenient: anything it does not recognise is skipped, so the
only symptom of a malformed diff is a file or hunk missing from the index.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from walkthrough.models import DiffFileEntry, DiffHunk, DiffIndex, FileStatus

logger = logging.getLogger(__name__)

_QUOTED = r'"(?:[^"\\]|\\.)*"'
_DIFF_HEADER_RE = re.compile(
    rf"^diff --git (?P<old>{_QUOTED}|a/\S+) (?P<new>{_QUOTED}|b/\S+)$"
)
# Unquoted paths containing spaces: split at the first " b/"
_LOOSE_DIFF_HEADER_RE = re.compile(r"^diff --git (?P<old>a/.+?) (?P<new>b/.+)$")
_HUNK_HEADER_RE = re.compile(r"^@@ -(\d+)(?:,\d+)? \+(\d+)(?:,\d+)? @@")

_NULL_DEVICE = "/dev/null"
_BINARY_MARKERS = ("Binary files ", "Binary file ", "GIT binary patch")
_META_PREFIXES = (
    "new file mode",
    "deleted file mode",
    "rename from ",
    "rename to ",
    "copy from ",
    "copy to ",
)

# git's C-style quoting of unusual path characters
_C_ESCAPES = {
    "a": 0x07,
    "b": 0x08,
    "t": 0x09,
    "n": 0x0A,
    "v": 0x0B,
    "f": 0x0C,
    "r": 0x0D,
    '"': 0x22,
    "\\": 0x5C,
}


@dataclass
class _WorkingFile:
    """Accumulator for the ``diff --git`` section currently being read."""

    old_path: Optional[str]
    new_path: Optional[str]
    status: FileStatus = FileStatus.MODIFIED
    binary: bool = False
    # Set by rename/copy metadata; such paths win over ---/+++ lines
    old_path_fixed: bool = False
    new_path_fixed: bool = False
    hunks: list[tuple[int, int, str]] = field(default_factory=list)


# ── Public API ───────────────────────────────────────────────────────────────


def parse_unified_diff(diff_text: str) -> DiffIndex:
    """Parse a unified diff into a DiffIndex. Never raises on bad input."""
    files: list[DiffFileEntry] = []
    current: Optional[_WorkingFile] = None

    for line in diff_text.replace("\r\n", "\n").split("\n"):
        current = _consume_line(current, line, files)

    _flush(current, files)

    logger.debug(
        "Parsed diff index: %d files, %d hunks",
        len(files),
        sum(len(f.hunks) for f in files),
    )
    return DiffIndex(files=files)


def detect_language(path: str) -> Optional[str]:
    """Lowercase extension of the last path segment, or None."""
    filename = path.rsplit("/", 1)[-1]
    dot = filename.rfind(".")
    if dot <= 0 or dot == len(filename) - 1:
        return None
    return filename[dot + 1 :].lower()


# ── Line State Machine ───────────────────────────────────────────────────────


def _consume_line(
    current: Optional[_WorkingFile],
    line: str,
    files: list[DiffFileEntry],
) -> Optional[_WorkingFile]:
    """Advance the parser by one line and return the new accumulator."""
    if line.startswith("diff --git "):
        _flush(current, files)
        return _open_file(line)

    if current is None or current.binary:
        return current

    if line.startswith(_BINARY_MARKERS):
        current.binary = True
    elif line.startswith("@@"):
        _register_hunk(line, current)
    elif current.hunks:
        # Past the header: everything else is hunk content
        pass
    elif line.startswith(("--- ", "+++ ")):
        _register_path_marker(line, current)
    elif line.startswith(_META_PREFIXES):
        _register_meta_line(line, current)

    return current


def _flush(current: Optional[_WorkingFile], files: list[DiffFileEntry]) -> None:
    entry = _finalize(current)
    if entry is not None:
        files.append(entry)


def _open_file(line: str) -> Optional[_WorkingFile]:
    paths = _parse_diff_header(line)
    if paths is None:
        logger.debug("Skipping unparseable diff header: %r", line)
        return None
    old_path, new_path = paths
    return _WorkingFile(old_path=old_path, new_path=new_path)


def _finalize(current: Optional[_WorkingFile]) -> Optional[DiffFileEntry]:
    if current is None or current.binary or not current.hunks:
        return None

    if current.status == FileStatus.DELETED:
        file_id = current.old_path or current.new_path
    else:
        file_id = current.new_path or current.old_path
    if not file_id:
        return None

    hunks = [
        DiffHunk(
            hunk_id=f"{file_id}#h{index}",
            old_start=old_start,
            new_start=new_start,
            header=header,
        )
        for index, (old_start, new_start, header) in enumerate(current.hunks)
    ]

    return DiffFileEntry(
        file_id=file_id,
        status=current.status,
        language=detect_language(file_id),
        hunks=hunks,
    )


# ── Line Handlers ────────────────────────────────────────────────────────────


def _register_hunk(line: str, current: _WorkingFile) -> None:
    match = _HUNK_HEADER_RE.match(line)
    if not match:
        return
    current.hunks.append((int(match.group(1)), int(match.group(2)), line))


def _register_path_marker(line: str, current: _WorkingFile) -> None:
    """Handle ``--- old`` / ``+++ new`` file marker lines."""
    raw = line[4:]
    is_null = _strip_marker_suffix(raw) == _NULL_DEVICE
    path = None if is_null else _normalize_path(raw)
    keeps_status = current.status in (FileStatus.RENAMED, FileStatus.COPIED)

    if line.startswith("--- "):
        if is_null:
            if not current.old_path_fixed:
                current.old_path = None
            if not keeps_status:
                current.status = FileStatus.ADDED
        elif path and not current.old_path_fixed:
            current.old_path = path
        return

    if is_null:
        if not current.new_path_fixed:
            current.new_path = None
        if not keeps_status:
            current.status = FileStatus.DELETED
    elif path and not current.new_path_fixed:
        current.new_path = path


def _register_meta_line(line: str, current: _WorkingFile) -> None:
    if line.startswith("new file mode"):
        current.status = FileStatus.ADDED
    elif line.startswith("deleted file mode"):
        current.status = FileStatus.DELETED
    elif line.startswith("rename from "):
        current.status = FileStatus.RENAMED
        _fix_old_path(current, line[len("rename from ") :])
    elif line.startswith("rename to "):
        current.status = FileStatus.RENAMED
        _fix_new_path(current, line[len("rename to ") :])
    elif line.startswith("copy from "):
        current.status = FileStatus.COPIED
        _fix_old_path(current, line[len("copy from ") :])
    elif line.startswith("copy to "):
        current.status = FileStatus.COPIED
        _fix_new_path(current, line[len("copy to ") :])


def _fix_old_path(current: _WorkingFile, raw: str) -> None:
    path = _normalize_path(raw, strip_prefix=False)
    if path:
        current.old_path = path
        current.old_path_fixed = True


def _fix_new_path(current: _WorkingFile, raw: str) -> None:
    path = _normalize_path(raw, strip_prefix=False)
    if path:
        current.new_path = path
        current.new_path_fixed = True


# ── Path Helpers ─────────────────────────────────────────────────────────────


def _parse_diff_header(line: str) -> Optional[tuple[Optional[str], Optional[str]]]:
    match = _DIFF_HEADER_RE.match(line) or _LOOSE_DIFF_HEADER_RE.match(line)
    if not match:
        return None
    return _normalize_path(match.group("old")), _normalize_path(match.group("new"))


def _strip_marker_suffix(raw: str) -> str:
    # Non-git diffs append "\t<timestamp>"; git appends "\t" to paths with spaces
    return raw.split("\t", 1)[0].strip()


def _normalize_path(raw: str, strip_prefix: bool = True) -> Optional[str]:
    """Unquote a diff path and drop its a/ or b/ prefix. /dev/null -> None."""
    path = _strip_marker_suffix(raw)
    if not path or path == _NULL_DEVICE:
        return None

    if len(path) >= 2 and path.startswith('"') and path.endswith('"'):
        path = _unescape_c_string(path[1:-1])

    if strip_prefix and path.startswith(("a/", "b/")):
        path = path[2:]

    return path or None


def _unescape_c_string(body: str) -> str:
    """Decode git's quoted path escapes (``\\t``, ``\\"``, octal UTF-8 bytes)."""
    if "\\" not in body:
        return body

    out = bytearray()
    i = 0
    while i < len(body):
        ch = body[i]
        if ch != "\\" or i + 1 >= len(body):
            out.extend(ch.encode("utf-8"))
            i += 1
            continue

        nxt = body[i + 1]
        octal = body[i + 1 : i + 4]
        if len(octal) == 3 and all(c in "01234567" for c in octal):
            out.append(int(octal, 8) & 0xFF)
            i += 4
        elif nxt in _C_ESCAPES:
            out.append(_C_ESCAPES[nxt])
            i += 2
        else:
            out.extend(nxt.encode("utf-8"))
            i += 2

    return out.decode("utf-8", errors="replace")
