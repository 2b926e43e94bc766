"""
File Fix Agent
==============
Rewrites one source file so that its reported build errors go away.

Flow:
    1. Resolve the file inside the workspace (paths escaping it are refused)
    2. Prompt the LLM with the file content and the error strings
    3. Extract the fenced code block from the reply
    4. Write it back, leaving the file untouched when nothing usable came back

The self-heal engine treats this as a black box: it only looks at
``FileFixOutcome.success``. Nothing here raises.
"""
import logging
import os
from dataclasses import dataclass
from typing import List, Optional

from autoheal.llm.client import LLMClient, extract_code
from autoheal.llm.prompts import SYSTEM_PROMPT, build_fix_prompt

logger = logging.getLogger(__name__)


@dataclass
class FileFixOutcome:
    success: bool
    output: str = ""


def _resolve_in_workspace(file_path: str, base_path: str) -> Optional[str]:
    base = os.path.abspath(base_path)
    abs_path = os.path.normpath(os.path.join(base, file_path))
    if abs_path != base and not abs_path.startswith(base + os.sep):
        return None
    return abs_path


async def fix_file_with_agent(
    file_path: str,
    errors: List[str],
    base_path: str,
    client: Optional[LLMClient] = None,
) -> FileFixOutcome:
    """
    Ask the LLM to fix ``errors`` in ``file_path`` (relative to ``base_path``).

    Returns
    -------
    FileFixOutcome
        ``success=True`` with "Fixed N errors in <file>" when the file was
        rewritten, otherwise ``success=False`` and the reason.
    """
    abs_path = _resolve_in_workspace(file_path, base_path)
    if abs_path is None:
        logger.error("Security violation: refusing to fix file outside workspace: %s", file_path)
        return FileFixOutcome(False, "File outside workspace")
    if not os.path.isfile(abs_path):
        return FileFixOutcome(False, "File not found")

    with open(abs_path, "r", encoding="utf-8", errors="replace") as f:
        original = f.read()

    client = client or LLMClient()
    reply = await client.complete(SYSTEM_PROMPT, build_fix_prompt(file_path, original, errors))
    if not reply.success:
        return FileFixOutcome(False, f"LLM call failed: {reply.error}")
    if not reply.text.strip():
        return FileFixOutcome(False, "LLM returned empty response")

    fixed = extract_code(reply.text)
    if not fixed.strip():
        return FileFixOutcome(False, "Could not extract code")

    if not fixed.endswith("\n") and original.endswith("\n"):
        fixed += "\n"
    if fixed == original:
        return FileFixOutcome(False, "No changes produced")

    with open(abs_path, "w", encoding="utf-8") as f:
        f.write(fixed)

    logger.info("Fixed %d error(s) in %s", len(errors), file_path)
    return FileFixOutcome(True, f"Fixed {len(errors)} errors in {file_path}")


class LLMFileFixer:
    """File fixer bound to one LLMClient, for injection into SelfHealEngine."""

    def __init__(self, client: LLMClient):
        self.client = client

    async def __call__(self, file_path: str, errors: List[str], base_path: str) -> FileFixOutcome:
        return await fix_file_with_agent(file_path, errors, base_path, client=self.client)
