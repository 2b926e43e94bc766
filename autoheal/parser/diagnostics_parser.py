"""
Diagnostics Parser
==================
Extracts per-file compiler / type-checker errors from combined build+test output.

Recognised formats:
    tsc (plain)     src/a.ts(12,5): error TS2322: Type 'x' is not assignable ...
    tsc (pretty)    src/a.ts:12:5 - error TS2322: Type 'x' is not assignable ...
    mypy / gcc      pkg/mod.py:12: error: Incompatible types ...  [assignment]
                    src/main.c:3:9: error: expected ';' before '}' token
    Python          File "pkg/mod.py", line 7 ... NameError: name 'x' is not defined

Contract:
    - Deterministic: same output → same diagnostics, in first-seen order.
    - Regex only; unparseable lines are skipped, never raised on.
    - Paths are normalised to workspace-relative forward-slash form.
    - Duplicate (file, line, column, code, message) entries are collapsed.
"""
import re
import logging
from typing import Dict, List, Optional

from autoheal.models.diagnostics import Diagnostic, DiagnoseResult

logger = logging.getLogger(__name__)


_IGNORE_PARTS = ("node_modules", "site-packages", "__pycache__", ".venv", "venv", "dist", ".git")


def _should_ignore(file_path: str) -> bool:
    wrapped = f"/{file_path}/"
    return any(f"/{part}/" in wrapped for part in _IGNORE_PARTS)


def normalize_path(raw_path: str, workspace_path: str = "") -> str:
    """Strip quotes, workspace / container prefixes and leading ``./`` from a path."""
    path = raw_path.strip().strip("'\"").replace("\\", "/")

    if workspace_path:
        ws = workspace_path.replace("\\", "/").rstrip("/")
        if path.startswith(ws + "/"):
            path = path[len(ws) + 1:]

    if path.startswith("/workspace/"):
        path = path[len("/workspace/"):]
    while path.startswith("./"):
        path = path[2:]
    return path


# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------
_TSC_PAREN = re.compile(r"^(?P<file>[^\s(][^(]*?)\((?P<line>\d+),(?P<col>\d+)\):\s*error\s+(?P<code>TS\d+):\s*(?P<msg>.+)$")
_TSC_PRETTY = re.compile(r"^(?P<file>\S+?):(?P<line>\d+):(?P<col>\d+)\s+-\s+error\s+(?P<code>TS\d+):\s*(?P<msg>.+)$")
_GENERIC = re.compile(
    r"^(?P<file>[^\s:][^:]*?):(?P<line>\d+)(?::(?P<col>\d+))?:\s*(?:fatal\s+)?error:\s*(?P<msg>.+?)(?:\s+\[(?P<code>[\w-]+)\])?$"
)
_PY_FRAME = re.compile(r'^\s*File\s+"(?P<file>[^"]+)",\s+line\s+(?P<line>\d+)')
_PY_ERROR = re.compile(r"^(?P<code>[A-Za-z_][\w.]*(?:Error|Exception)):\s*(?P<msg>.*)$")


def _match_line(line: str) -> Optional[dict]:
    for pattern in (_TSC_PAREN, _TSC_PRETTY):
        m = pattern.match(line)
        if m:
            return {
                "file": m.group("file"),
                "line": int(m.group("line")),
                "column": int(m.group("col")),
                "code": m.group("code"),
                "message": m.group("msg").strip(),
            }

    m = _GENERIC.match(line)
    if m:
        return {
            "file": m.group("file"),
            "line": int(m.group("line")),
            "column": int(m.group("col") or 0),
            "code": m.group("code") or "error",
            "message": m.group("msg").strip(),
        }
    return None


def parse_build_errors(output: str, workspace_path: str = "") -> DiagnoseResult:
    """
    Parse ``output`` into a DiagnoseResult.

    Parameters
    ----------
    output : str
        Combined build + test output.
    workspace_path : str
        Absolute workspace root, stripped from reported paths.

    Returns
    -------
    DiagnoseResult
        ``errors`` in first-seen order, ``by_file`` grouping them, and a
        ``"N errors in M files"`` summary.
    """
    errors: List[Diagnostic] = []
    seen = set()
    last_frame: Optional[dict] = None

    def _add(raw: dict) -> None:
        raw["file"] = normalize_path(raw["file"], workspace_path)
        if not raw["file"] or _should_ignore(raw["file"]):
            return
        key = (raw["file"], raw["line"], raw["column"], raw["code"], raw["message"])
        if key in seen:
            return
        seen.add(key)
        errors.append(Diagnostic(**raw))

    for line in (output or "").splitlines():
        line = line.rstrip()
        if not line:
            continue

        frame = _PY_FRAME.match(line)
        if frame:
            last_frame = {"file": frame.group("file"), "line": int(frame.group("line"))}
            continue

        if last_frame is not None:
            py_error = _PY_ERROR.match(line)
            if py_error:
                _add({
                    "file": last_frame["file"],
                    "line": last_frame["line"],
                    "column": 0,
                    "code": py_error.group("code").rsplit(".", 1)[-1],
                    "message": py_error.group("msg").strip(),
                })
                last_frame = None
                continue

        matched = _match_line(line.strip())
        if matched:
            _add(matched)

    by_file: Dict[str, List[Diagnostic]] = {}
    for diagnostic in errors:
        by_file.setdefault(diagnostic.file, []).append(diagnostic)

    result = DiagnoseResult(
        errors=errors,
        by_file=by_file,
        summary=f"{len(errors)} errors in {len(by_file)} files",
    )
    logger.debug("Diagnostics: %s", result.summary)
    return result
