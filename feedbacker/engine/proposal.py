"""
Change proposal generation: model output -> validated, applicable edits.

The model answers either with file blocks::

    --- FILE: src/app.py (modify)
    <<<<<<< SEARCH
    old text
    =======
    new text
    >>>>>>> REPLACE
    --- END FILE

or with a JSON document ``{"rationale": ..., "edits": [...]}`` (optionally in
a ```json fence). Text outside file blocks is the rationale.

Every path is normalized and checked before anything touches a workspace:
no absolute paths, no ``..`` segments, nothing under ``.git``. When the
repository's file listing is known, declared operations are checked against
it as well (modify/delete need an existing file, create needs a new one).
Any violation raises ``PatchError`` carrying the raw model output.
"""

import json
import re
from collections.abc import Collection, Iterable
from typing import Any

import structlog

from feedbacker.enums import EditOperation
from feedbacker.exceptions import PatchError
from feedbacker.models.domain import ChangeProposal, FileEdit, Replacement

log = structlog.get_logger(__name__)

FILE_HEADER = re.compile(r"^---\s*FILE:\s*(?P<path>.+?)\s*\((?P<op>create|modify|delete)\)\s*$", re.IGNORECASE)
FILE_FOOTER = re.compile(r"^---\s*END FILE\s*$", re.IGNORECASE)
SEARCH_MARKER = "<<<<<<< SEARCH"
DIVIDER_MARKER = "======="
REPLACE_MARKER = ">>>>>>> REPLACE"
JSON_FENCE = re.compile(r"```(?:json)?\s*\n(?P<body>\{.*\})\s*\n```", re.DOTALL)
_DRIVE_LETTER = re.compile(r"^[A-Za-z]:")

VCS_METADATA_DIR = ".git"


def normalize_repo_path(path: Any, raw_output: str | None = None) -> str:
    """Return the canonical repository-relative form of ``path``.

    Raises:
        PatchError: If the path is empty, absolute, escapes the repository
            root, or points into the version-control metadata directory
    """
    if not isinstance(path, str) or not path.strip():
        raise PatchError("Edit has an empty path", raw_output=raw_output)
    if "\x00" in path:
        raise PatchError("Path contains a NUL byte", raw_output=raw_output, path=repr(path))

    candidate = path.strip().replace("\\", "/")
    if candidate.startswith(("/", "~")) or _DRIVE_LETTER.match(candidate):
        raise PatchError("Absolute paths are not allowed", raw_output=raw_output, path=path)

    parts = [part for part in candidate.split("/") if part not in ("", ".")]
    if not parts:
        raise PatchError("Path resolves to the repository root", raw_output=raw_output, path=path)
    if ".." in parts:
        raise PatchError("Path escapes the repository root", raw_output=raw_output, path=path)
    if any(part.lower() == VCS_METADATA_DIR for part in parts):
        raise PatchError("Edits under .git are not allowed", raw_output=raw_output, path=path)

    return "/".join(parts)


class ChangeProposalGenerator:
    """Turns raw model output into a ``ChangeProposal`` or fails with ``PatchError``."""

    def normalize(self, raw_output: str, known_paths: Collection[str] | None = None) -> ChangeProposal:
        """Parse and validate model output.

        Args:
            raw_output: Text returned by the model, unmodified
            known_paths: Files present at the base branch, when available

        Returns:
            Validated proposal whose ``raw_output`` is the input text

        Raises:
            PatchError: If the output cannot be parsed or fails validation
        """
        if not raw_output or not raw_output.strip():
            raise PatchError("Model output is empty", raw_output=raw_output)

        document = self._extract_json(raw_output)
        if document is not None:
            edits, rationale = self._parse_json(document, raw_output)
        else:
            edits, rationale = self._parse_blocks(raw_output)

        validated = self.validate(edits, known_paths=known_paths, raw_output=raw_output)
        log.info("proposal_normalized", edits=len(validated), paths=[edit.path for edit in validated])
        return ChangeProposal(edits=tuple(validated), rationale=rationale.strip(), raw_output=raw_output)

    def validate(
        self,
        edits: Iterable[FileEdit],
        known_paths: Collection[str] | None = None,
        raw_output: str | None = None,
    ) -> list[FileEdit]:
        """Check every edit; return them with normalized paths.

        Raises:
            PatchError: On the first violation found
        """
        known = {normalize_repo_path(path) for path in known_paths} if known_paths is not None else None
        result: list[FileEdit] = []
        operations_by_path: dict[str, EditOperation] = {}

        for edit in edits:
            path = normalize_repo_path(edit.path, raw_output)

            previous = operations_by_path.get(path)
            if previous is not None and not (previous == edit.operation == EditOperation.MODIFY):
                raise PatchError("Conflicting edits for the same path", raw_output=raw_output, path=path)
            operations_by_path[path] = edit.operation

            if edit.operation == EditOperation.MODIFY:
                if not edit.replacements and not edit.content:
                    raise PatchError("Modify edit has no hunks and no content", raw_output=raw_output, path=path)
                if any(not hunk.search for hunk in edit.replacements):
                    raise PatchError("SEARCH text must not be empty", raw_output=raw_output, path=path)

            if known is not None:
                exists = path in known
                if edit.operation in (EditOperation.MODIFY, EditOperation.DELETE) and not exists:
                    raise PatchError(
                        f"Cannot {edit.operation.value} a file that does not exist",
                        raw_output=raw_output,
                        path=path,
                    )
                if edit.operation == EditOperation.CREATE and exists:
                    raise PatchError("Cannot create a file that already exists", raw_output=raw_output, path=path)

            result.append(FileEdit(path, edit.operation, edit.content, edit.replacements))

        if not result:
            raise PatchError("Proposal contains no edits", raw_output=raw_output)
        return result

    @staticmethod
    def _extract_json(raw_output: str) -> dict[str, Any] | None:
        """Return the JSON document if the output is one; None for block output."""
        stripped = raw_output.strip()
        if stripped.startswith("{"):
            candidate = stripped
        else:
            match = JSON_FENCE.search(raw_output)
            if match is None or FILE_HEADER.search(raw_output) is not None:
                return None
            candidate = match.group("body")

        try:
            document = json.loads(candidate)
        except json.JSONDecodeError as e:
            if stripped.startswith("{"):
                raise PatchError(f"Invalid JSON output: {e.msg}", raw_output=raw_output) from e
            return None
        if not isinstance(document, dict):
            raise PatchError("JSON output must be an object", raw_output=raw_output)
        return document

    @staticmethod
    def _parse_json(document: dict[str, Any], raw_output: str) -> tuple[list[FileEdit], str]:
        raw_edits = document.get("edits")
        if not isinstance(raw_edits, list):
            raise PatchError("JSON output has no 'edits' list", raw_output=raw_output)

        rationale = document.get("rationale") or ""
        if not isinstance(rationale, str):
            raise PatchError("'rationale' must be a string", raw_output=raw_output)

        edits: list[FileEdit] = []
        for index, item in enumerate(raw_edits):
            if not isinstance(item, dict):
                raise PatchError(f"Edit #{index} is not an object", raw_output=raw_output)
            try:
                operation = EditOperation(str(item.get("operation", "")).lower())
            except ValueError as e:
                raise PatchError(
                    f"Edit #{index} has unknown operation {item.get('operation')!r}", raw_output=raw_output
                ) from e

            content = item.get("content") or ""
            if not isinstance(content, str):
                raise PatchError(f"Edit #{index} content must be a string", raw_output=raw_output)

            replacements: list[Replacement] = []
            for hunk in item.get("replacements") or []:
                if not isinstance(hunk, dict) or not isinstance(hunk.get("search"), str):
                    raise PatchError(f"Edit #{index} has a malformed replacement", raw_output=raw_output)
                replace = hunk.get("replace", "")
                if not isinstance(replace, str):
                    raise PatchError(f"Edit #{index} has a malformed replacement", raw_output=raw_output)
                replacements.append(Replacement(hunk["search"], replace))

            edits.append(FileEdit(item.get("path"), operation, content, tuple(replacements)))  # type: ignore[arg-type]
        return edits, rationale

    def _parse_blocks(self, raw_output: str) -> tuple[list[FileEdit], str]:
        edits: list[FileEdit] = []
        rationale: list[str] = []
        header: re.Match[str] | None = None
        body: list[str] = []

        for line in raw_output.splitlines():
            if header is None:
                match = FILE_HEADER.match(line.strip())
                if match:
                    header, body = match, []
                else:
                    rationale.append(line)
            elif FILE_FOOTER.match(line.strip()):
                edits.append(self._build_edit(header, body, raw_output))
                header = None
            else:
                body.append(line)

        if header is not None:
            raise PatchError("Unterminated file block", raw_output=raw_output, path=header.group("path"))
        if not edits:
            raise PatchError("No file blocks found in model output", raw_output=raw_output)
        return edits, "\n".join(rationale)

    def _build_edit(self, header: re.Match[str], body: list[str], raw_output: str) -> FileEdit:
        path = header.group("path").strip().strip("`'\"")
        operation = EditOperation(header.group("op").lower())

        if operation == EditOperation.DELETE:
            return FileEdit(path, operation)

        if operation == EditOperation.MODIFY and any(line.rstrip() == SEARCH_MARKER for line in body):
            return FileEdit(path, operation, replacements=tuple(self._parse_hunks(body, path, raw_output)))

        return FileEdit(path, operation, content=_block_content(body))

    @staticmethod
    def _parse_hunks(body: list[str], path: str, raw_output: str) -> list[Replacement]:
        hunks: list[Replacement] = []
        search: list[str] = []
        replace: list[str] = []
        state = "outside"

        for line in body:
            marker = line.rstrip()
            if state == "outside":
                if marker == SEARCH_MARKER:
                    state, search, replace = "search", [], []
                elif marker and not marker.startswith("```"):
                    raise PatchError("Unexpected text outside SEARCH/REPLACE hunk", raw_output=raw_output, path=path)
            elif state == "search":
                if marker == DIVIDER_MARKER:
                    state = "replace"
                else:
                    search.append(line)
            elif marker == REPLACE_MARKER:
                hunks.append(Replacement("\n".join(search), "\n".join(replace)))
                state = "outside"
            else:
                replace.append(line)

        if state != "outside":
            raise PatchError("Unterminated SEARCH/REPLACE hunk", raw_output=raw_output, path=path)
        return hunks


def _block_content(body: list[str]) -> str:
    """Full file content of a block, without an enclosing code fence."""
    lines = list(body)
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    if len(lines) >= 2 and lines[0].lstrip().startswith("```") and lines[-1].strip() == "```":
        lines = lines[1:-1]
    if not lines:
        return ""
    return "\n".join(lines) + "\n"
