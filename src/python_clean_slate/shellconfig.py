"""Edit shared shell configuration files without disturbing foreign lines.

Files are read and written with ``newline=""`` and ``surrogateescape`` so
every line outside the tool's own block or matched tokens survives byte for
byte. Writes go to a temporary file in the same directory followed by
``os.replace``, so an interrupted run never leaves a truncated file.
"""

from __future__ import annotations

import os
import re
import shutil
import tempfile
from collections.abc import Iterable, Sequence
from pathlib import Path

BLOCK_START = "# >>> python-clean-slate >>>"
BLOCK_END = "# <<< python-clean-slate <<<"

_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


def read_config(path: Path) -> str:
    """Read a config file exactly as stored. Missing files read as empty."""
    try:
        with path.open(encoding=_ENCODING, errors=_ERRORS, newline="") as f:
            return f.read()
    except FileNotFoundError:
        return ""


def atomic_write(path: Path, content: str) -> None:
    """Replace a file's content via write-to-temp and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
    )
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=_ENCODING, errors=_ERRORS, newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if path.exists():
            shutil.copymode(path, tmp)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def _newline(content: str) -> str:
    return "\r\n" if "\r\n" in content else "\n"


def _is_marker(line: str, marker: str) -> bool:
    return line.strip() == marker


def _block_mask(lines: list[str]) -> list[bool]:
    """Flag the lines that belong to a complete managed block, markers included."""
    mask = [False] * len(lines)
    i = 0
    while i < len(lines):
        if _is_marker(lines[i], BLOCK_START):
            end = next(
                (
                    j
                    for j in range(i + 1, len(lines))
                    if _is_marker(lines[j], BLOCK_END)
                ),
                None,
            )
            if end is not None:
                mask[i : end + 1] = [True] * (end + 1 - i)
                i = end + 1
                continue
        i += 1
    return mask


def _split_block(lines: list[str]) -> tuple[list[str], int | None]:
    """Remove every managed block and any orphaned marker.

    Returns:
        The remaining lines and the index where the first block started.

    """
    remaining: list[str] = []
    first: int | None = None
    for line, inside in zip(lines, _block_mask(lines)):
        if inside:
            if first is None:
                first = len(remaining)
            continue
        if _is_marker(line, BLOCK_START) or _is_marker(line, BLOCK_END):
            continue
        remaining.append(line)
    return remaining, first


def render_block(block_lines: Sequence[str], newline: str = "\n") -> list[str]:
    return [
        BLOCK_START + newline,
        *(line + newline for line in block_lines),
        BLOCK_END + newline,
    ]


def replace_block(content: str, block_lines: Sequence[str]) -> str:
    """Return content with exactly one, refreshed managed block.

    An existing block is replaced where it stands; otherwise the block is
    appended at the end.
    """
    newline = _newline(content)
    lines = content.splitlines(keepends=True)
    remaining, first = _split_block(lines)
    block = render_block(block_lines, newline)

    if first is None:
        if remaining and not remaining[-1].endswith(("\n", "\r")):
            remaining[-1] += newline
        return "".join(remaining + block)

    return "".join(remaining[:first] + block + remaining[first:])


def write_block(path: Path, block_lines: Sequence[str]) -> bool:
    """Write or refresh the managed block in a config file.

    Returns:
        True if the file changed. An unchanged file is not rewritten.

    """
    content = read_config(path)
    updated = replace_block(content, block_lines)
    if updated == content and path.exists():
        return False
    atomic_write(path, updated)
    return True


def strip_tokens(
    content: str, tokens: Iterable[str], *, keep_block: bool = False
) -> tuple[str, int]:
    """Remove every line mentioning one of the tokens.

    The managed block goes too, unless ``keep_block`` is set, in which case
    it is left exactly as it is. Orphaned markers are always removed.

    Returns:
        The new content and the number of lines removed.

    """
    pattern = re.compile(r"\b(?:" + "|".join(re.escape(t) for t in tokens) + r")\b")
    lines = content.splitlines(keepends=True)
    in_block = _block_mask(lines)
    kept = []
    for line, inside in zip(lines, in_block):
        if inside:
            if keep_block:
                kept.append(line)
            continue
        orphan_marker = _is_marker(line, BLOCK_START) or _is_marker(line, BLOCK_END)
        if orphan_marker or pattern.search(line):
            continue
        kept.append(line)
    return "".join(kept), len(lines) - len(kept)


def strip_file(path: Path, tokens: Iterable[str], *, keep_block: bool = False) -> int:
    """Strip tool lines from a config file in place.

    Returns:
        Number of lines removed; the file is untouched when this is zero.

    """
    content = read_config(path)
    updated, removed = strip_tokens(content, tokens, keep_block=keep_block)
    if removed:
        atomic_write(path, updated)
    return removed
