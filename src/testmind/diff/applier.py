"""Apply file diffs with conflict detection, backups and rollback."""

import re
from datetime import datetime
from pathlib import Path
from typing import Literal

import structlog

from ..config import DiffConfig
from ..models import ApplyResult, Conflict, DiffHunk, DiffLineKind, DiffOperation, FileDiff
from .generator import split_lines

logger = structlog.get_logger(__name__)

ValidationMode = Literal["strict", "fuzzy"]

BACKUP_DIR_NAME = ".testmind-backups"
END_OF_FILE = "<end of file>"

_WHITESPACE = re.compile(r"\s+")


def _normalize(line: str) -> str:
    return _WHITESPACE.sub(" ", line.strip())


def _splice_index(hunk: DiffHunk, old_count: int) -> int:
    # A hunk without old lines inserts after line old_start.
    return hunk.old_start - 1 if old_count else hunk.old_start


def _old_side(hunk: DiffHunk) -> list[str]:
    return [line.content for line in hunk.lines if line.kind is not DiffLineKind.ADDITION]


def _new_side(hunk: DiffHunk) -> list[str]:
    return [line.content for line in hunk.lines if line.kind is not DiffLineKind.DELETION]


class DiffApplier:
    """Validates and applies ``FileDiff`` objects to text or files."""

    def __init__(
        self,
        create_backup: bool = True,
        backup_dir: Path | str | None = None,
        validation_mode: ValidationMode = "strict",
        allow_partial: bool = False,
        dry_run: bool = False,
    ):
        self.create_backup = create_backup
        self.backup_dir = Path(backup_dir) if backup_dir else None
        self.validation_mode = validation_mode
        self.allow_partial = allow_partial
        self.dry_run = dry_run

    @classmethod
    def from_config(cls, config: DiffConfig) -> "DiffApplier":
        return cls(
            create_backup=config.create_backup,
            backup_dir=config.backup_dir,
            validation_mode=config.validation_mode,
            allow_partial=config.allow_partial,
            dry_run=config.dry_run,
        )

    def validate(
        self,
        diff: FileDiff,
        current_text: str,
        mode: ValidationMode | None = None,
    ) -> list[Conflict]:
        """Check every hunk against the current text. Never raises."""
        mode = mode or self.validation_mode
        file_lines = split_lines(current_text)
        conflicts: list[Conflict] = []

        for index, hunk in enumerate(diff.hunks):
            conflicts.extend(self._validate_hunk(index, hunk, file_lines, mode))
        return conflicts

    @staticmethod
    def _validate_hunk(
        index: int,
        hunk: DiffHunk,
        file_lines: list[str],
        mode: ValidationMode,
    ) -> list[Conflict]:
        expected_lines = _old_side(hunk)
        pos = _splice_index(hunk, len(expected_lines))
        if pos < 0 or pos > len(file_lines):
            return [Conflict(
                hunk_index=index,
                line_number=hunk.old_start,
                reason="Hunk start line out of range",
                expected=f"line {hunk.old_start}",
                actual=f"file has {len(file_lines)} lines",
            )]

        conflicts = []
        for expected in expected_lines:
            if pos >= len(file_lines):
                conflicts.append(Conflict(
                    hunk_index=index,
                    line_number=pos + 1,
                    reason="Line number exceeds file length",
                    expected=expected,
                    actual=END_OF_FILE,
                ))
                break
            actual = file_lines[pos]
            if mode == "fuzzy":
                matches = _normalize(actual) == _normalize(expected)
            else:
                matches = actual == expected
            if not matches:
                conflicts.append(Conflict(
                    hunk_index=index,
                    line_number=pos + 1,
                    reason="Line content mismatch",
                    expected=expected,
                    actual=actual,
                ))
            pos += 1
        return conflicts

    def apply(
        self,
        diff: FileDiff,
        current_text: str,
        allow_partial: bool | None = None,
        mode: ValidationMode | None = None,
    ) -> ApplyResult:
        """Apply a diff to text. Pure: touches no files."""
        if allow_partial is None:
            allow_partial = self.allow_partial

        conflicts = self.validate(diff, current_text, mode)
        if conflicts and not allow_partial:
            return ApplyResult(
                success=True,
                applied=False,
                conflicts=conflicts,
                file_path=diff.file_path or None,
                new_content=current_text,
            )

        skipped = {conflict.hunk_index for conflict in conflicts}
        lines = split_lines(current_text)
        order = sorted(range(len(diff.hunks)), key=lambda k: diff.hunks[k].old_start, reverse=True)
        for index in order:
            if index in skipped:
                continue
            hunk = diff.hunks[index]
            old_count = len(_old_side(hunk))
            start = _splice_index(hunk, old_count)
            lines[start:start + old_count] = _new_side(hunk)

        return ApplyResult(
            success=True,
            applied=True,
            conflicts=conflicts,
            file_path=diff.file_path or None,
            new_content="\n".join(lines),
        )

    def apply_file(
        self,
        diff: FileDiff,
        path: Path | str | None = None,
        allow_partial: bool | None = None,
        mode: ValidationMode | None = None,
        dry_run: bool | None = None,
    ) -> ApplyResult:
        """Apply a diff to a file on disk. Validation happens before any write."""
        target = Path(path or diff.file_path)
        if dry_run is None:
            dry_run = self.dry_run

        try:
            if target.exists():
                current_text = target.read_text(encoding="utf-8")
            elif diff.operation is DiffOperation.CREATE:
                current_text = ""
            else:
                return ApplyResult(
                    success=False,
                    applied=False,
                    error=f"File not found: {target}",
                    file_path=str(target),
                )

            result = self.apply(diff, current_text, allow_partial=allow_partial, mode=mode)
            result.file_path = str(target)
            if not result.applied:
                logger.warning("diff_conflicts", file=str(target), conflicts=len(result.conflicts))
                return result
            if dry_run or diff.is_empty:
                return result

            if self.create_backup and current_text:
                result.backup_path = str(self.create_backup_file(target, current_text))

            if diff.operation is DiffOperation.DELETE and not result.new_content:
                target.unlink()
            else:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(result.new_content or "", encoding="utf-8")
        except OSError as e:
            logger.error("diff_apply_failed", file=str(target), error=str(e))
            return ApplyResult(success=False, applied=False, error=str(e), file_path=str(target))

        logger.info(
            "diff_applied",
            file=str(target),
            hunks=len(diff.hunks),
            conflicts=len(result.conflicts),
            backup=result.backup_path,
        )
        return result

    def apply_many(
        self,
        diffs: list[FileDiff],
        allow_partial: bool | None = None,
        mode: ValidationMode | None = None,
        dry_run: bool | None = None,
    ) -> list[ApplyResult]:
        """Apply diffs file by file; stop at the first failure unless partial."""
        if allow_partial is None:
            allow_partial = self.allow_partial

        results = []
        for diff in diffs:
            result = self.apply_file(diff, allow_partial=allow_partial, mode=mode, dry_run=dry_run)
            results.append(result)
            if not (result.success and result.applied) and not allow_partial:
                break
        return results

    def backup_path_for(self, target: Path, when: datetime | None = None) -> Path:
        stamp = re.sub(r"[:.]", "-", (when or datetime.now()).isoformat())
        backup_dir = self.backup_dir or target.parent / BACKUP_DIR_NAME
        return backup_dir / f"{target.name}.backup.{stamp}"

    def create_backup_file(self, target: Path, content: str) -> Path:
        backup = self.backup_path_for(target)
        backup.parent.mkdir(parents=True, exist_ok=True)
        backup.write_text(content, encoding="utf-8")
        return backup

    def rollback(self, original_path: Path | str, backup_path: Path | str) -> None:
        """Restore a file from its backup. I/O errors propagate."""
        content = Path(backup_path).read_text(encoding="utf-8")
        Path(original_path).write_text(content, encoding="utf-8")
        logger.info("diff_rolled_back", file=str(original_path), backup=str(backup_path))

    def discard_backup(self, backup_path: Path | str) -> None:
        Path(backup_path).unlink(missing_ok=True)

    def generate_report(self, results: list[ApplyResult]) -> str:
        """Markdown summary of a set of apply results."""
        applied = [r for r in results if r.success and r.applied and not r.conflicts]
        partial = [r for r in results if r.success and r.applied and r.conflicts]
        failed = [r for r in results if not (r.success and r.applied)]

        lines = [
            "# Diff Application Report",
            "",
            f"- Total: {len(results)}",
            f"- Applied: {len(applied)}",
            f"- Partial: {len(partial)}",
            f"- Failed: {len(failed)}",
        ]
        if self.dry_run:
            lines += ["", "_Dry run: no files were modified._"]

        for result in results:
            name = result.file_path or "<unknown>"
            if result.error:
                status = "error"
            elif not result.applied:
                status = "conflict"
            elif result.conflicts:
                status = "partial"
            else:
                status = "applied"
            lines += ["", f"## {name} ({status})"]
            if result.error:
                lines.append(f"- Error: {result.error}")
            if result.backup_path:
                lines.append(f"- Backup: `{result.backup_path}`")
            for conflict in result.conflicts:
                lines.append(
                    f"- Hunk {conflict.hunk_index + 1}, line {conflict.line_number}: "
                    f"{conflict.reason} (expected `{conflict.expected}`, got `{conflict.actual}`)"
                )
        return "\n".join(lines)
