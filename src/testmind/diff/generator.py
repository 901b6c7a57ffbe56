"""Line diffs between two text snapshots, rendered as unified diff text."""

import re
from dataclasses import dataclass

from ..errors import DiffParseError
from ..models import DiffHunk, DiffLine, DiffLineKind, DiffOperation, FileDiff

HUNK_HEADER = re.compile(r"^@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@")


@dataclass
class _Op:
    kind: DiffLineKind
    content: str
    old_before: int  # old lines consumed before this op
    new_before: int


def split_lines(text: str) -> list[str]:
    """Split on newlines. Empty text has no lines."""
    return text.split("\n") if text else []


class DiffGenerator:
    """Computes line-level diffs.

    The walk is a bounded approximation, not a minimal edit script: on a
    mismatch only ``lookahead`` lines ahead in each text are searched for a
    resynchronisation point.
    """

    def __init__(self, context_lines: int = 3, lookahead: int = 10):
        self.context_lines = context_lines
        self.lookahead = lookahead

    def compute_diff(
        self,
        old_text: str,
        new_text: str,
        context_lines: int | None = None,
        file_path: str = "",
    ) -> FileDiff:
        """Diff two full-text snapshots of one file."""
        if context_lines is None:
            context_lines = self.context_lines

        if not old_text and new_text:
            operation = DiffOperation.CREATE
        elif old_text and not new_text:
            operation = DiffOperation.DELETE
        else:
            operation = DiffOperation.MODIFY

        diff = FileDiff(
            file_path=file_path,
            old_content=old_text,
            new_content=new_text,
            operation=operation,
        )
        if old_text == new_text:
            return diff

        ops = self._walk(split_lines(old_text), split_lines(new_text))
        diff.hunks = self._group(ops, context_lines)
        return diff

    def _walk(self, old: list[str], new: list[str]) -> list[_Op]:
        ops: list[_Op] = []
        i = j = 0

        def emit(kind: DiffLineKind, content: str) -> None:
            ops.append(_Op(kind, content, i, j))

        while i < len(old) or j < len(new):
            if i < len(old) and j < len(new) and old[i] == new[j]:
                emit(DiffLineKind.CONTEXT, old[i])
                i += 1
                j += 1
            elif i >= len(old):
                emit(DiffLineKind.ADDITION, new[j])
                j += 1
            elif j >= len(new):
                emit(DiffLineKind.DELETION, old[i])
                i += 1
            else:
                sync = self._resync(old, new, i, j)
                if sync is None:
                    emit(DiffLineKind.DELETION, old[i])
                    i += 1
                    emit(DiffLineKind.ADDITION, new[j])
                    j += 1
                    continue
                di, dj = sync
                for _ in range(di):
                    emit(DiffLineKind.DELETION, old[i])
                    i += 1
                for _ in range(dj):
                    emit(DiffLineKind.ADDITION, new[j])
                    j += 1
        return ops

    def _resync(self, old: list[str], new: list[str], i: int, j: int) -> tuple[int, int] | None:
        """Nearest (di, dj) with old[i+di] == new[j+dj]; ties go to smaller di."""
        limit = self.lookahead
        for total in range(1, 2 * limit + 1):
            for di in range(max(0, total - limit), min(total, limit) + 1):
                dj = total - di
                if i + di < len(old) and j + dj < len(new) and old[i + di] == new[j + dj]:
                    return di, dj
        return None

    def _group(self, ops: list[_Op], context_lines: int) -> list[DiffHunk]:
        changed = [k for k, op in enumerate(ops) if op.kind is not DiffLineKind.CONTEXT]
        if not changed:
            return []

        # Runs of changes whose gap is small enough share a hunk; the gap
        # lines become the hunk's context.
        spans: list[tuple[int, int]] = []
        start = prev = changed[0]
        for k in changed[1:]:
            if k - prev - 1 > 2 * context_lines:
                spans.append((start, prev))
                start = k
            prev = k
        spans.append((start, prev))

        return [self._make_hunk(ops[first:last + 1]) for first, last in spans]

    @staticmethod
    def _make_hunk(ops: list[_Op]) -> DiffHunk:
        lines: list[DiffLine] = []
        old_count = new_count = 0
        for op in ops:
            line = DiffLine(kind=op.kind, content=op.content)
            if op.kind is not DiffLineKind.ADDITION:
                line.old_line_number = op.old_before + 1
                old_count += 1
            if op.kind is not DiffLineKind.DELETION:
                line.new_line_number = op.new_before + 1
                new_count += 1
            lines.append(line)

        # With no lines on a side, the start names the line after which the
        # change happens (0 at the top of the file).
        first = ops[0]
        old_start = first.old_before + 1 if old_count else first.old_before
        new_start = first.new_before + 1 if new_count else first.new_before
        return DiffHunk(
            old_start=old_start,
            old_line_count=old_count,
            new_start=new_start,
            new_line_count=new_count,
            lines=lines,
        )


def format_unified(diff: FileDiff) -> str:
    """Render a diff as unified diff text."""
    out = [f"--- a/{diff.file_path}", f"+++ b/{diff.file_path}"]
    for hunk in diff.hunks:
        out.append(hunk.header)
        out.extend(f"{line.prefix}{line.content}" for line in hunk.lines)
    return "\n".join(out)


def summarize(diff: FileDiff) -> str:
    """One-line change summary such as ``+2 -1``."""
    if diff.is_empty:
        return "No changes"
    return f"+{diff.additions} -{diff.deletions}"


def _strip_path(raw: str) -> str:
    path = raw.split("\t", 1)[0].strip()
    if path.startswith(("a/", "b/")):
        path = path[2:]
    return path


def parse_unified(text: str) -> list[FileDiff]:
    """Parse unified diff text into file diffs.

    Parsed diffs carry hunks only; ``old_content`` and ``new_content`` are
    empty. Lines outside file sections and hunks are ignored.
    """
    diffs: list[FileDiff] = []
    current: FileDiff | None = None
    hunk: DiffHunk | None = None
    old_left = new_left = 0
    old_no = new_no = 0

    lines = text.split("\n")
    idx = 0
    while idx < len(lines):
        raw = lines[idx]
        idx += 1

        if hunk is not None and (old_left > 0 or new_left > 0):
            if raw.startswith("\\"):
                continue
            marker, content = (raw[:1], raw[1:]) if raw else (" ", "")
            if marker == " ":
                hunk.lines.append(DiffLine(DiffLineKind.CONTEXT, content, old_no, new_no))
                old_no += 1
                new_no += 1
                old_left -= 1
                new_left -= 1
                continue
            if marker == "-":
                hunk.lines.append(DiffLine(DiffLineKind.DELETION, content, old_no, None))
                old_no += 1
                old_left -= 1
                continue
            if marker == "+":
                hunk.lines.append(DiffLine(DiffLineKind.ADDITION, content, None, new_no))
                new_no += 1
                new_left -= 1
                continue
            # Truncated hunk; fall through and treat the line as a header.
            _close_hunk(hunk)
            hunk = None

        if raw.startswith("--- "):
            if idx >= len(lines) or not lines[idx].startswith("+++ "):
                raise DiffParseError("expected '+++' after '---'", idx)
            old_path = _strip_path(raw[4:])
            new_path = _strip_path(lines[idx][4:])
            idx += 1
            if hunk is not None:
                _close_hunk(hunk)
                hunk = None
            if old_path == "/dev/null":
                operation, path = DiffOperation.CREATE, new_path
            elif new_path == "/dev/null":
                operation, path = DiffOperation.DELETE, old_path
            else:
                operation, path = DiffOperation.MODIFY, new_path
            current = FileDiff(file_path=path, old_content="", new_content="", operation=operation)
            diffs.append(current)
            continue

        if raw.startswith("@@"):
            match = HUNK_HEADER.match(raw)
            if not match:
                raise DiffParseError(f"malformed hunk header: {raw!r}", idx)
            if current is None:
                raise DiffParseError("hunk header before file header", idx)
            if hunk is not None:
                _close_hunk(hunk)
            old_start = int(match.group(1))
            old_count = int(match.group(2)) if match.group(2) is not None else 1
            new_start = int(match.group(3))
            new_count = int(match.group(4)) if match.group(4) is not None else 1
            hunk = DiffHunk(old_start, old_count, new_start, new_count)
            current.hunks.append(hunk)
            old_left, new_left = old_count, new_count
            old_no, new_no = old_start, new_start
            continue

        # Anything else (diff --git, index lines, trailing noise) is skipped.

    if hunk is not None:
        _close_hunk(hunk)
    return diffs


def _close_hunk(hunk: DiffHunk) -> None:
    """Make header counts agree with the lines actually read."""
    hunk.old_line_count = sum(1 for line in hunk.lines if line.kind is not DiffLineKind.ADDITION)
    hunk.new_line_count = sum(1 for line in hunk.lines if line.kind is not DiffLineKind.DELETION)
