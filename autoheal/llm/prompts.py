"""
LLM Prompts
===========
Prompts for the per-file fixer.

Prompt Design Rules:
    - Fix only the reported errors; no refactoring or renaming
    - Preserve comments and formatting
    - Return the COMPLETE file inside one fenced code block
"""
from typing import List

SYSTEM_PROMPT = (
    "You are a minimal build fixer. Your ONLY job is to make the reported "
    "compiler and type-checker errors go away.\n"
    "\n"
    "HARD RULES:\n"
    "1. Fix ONLY the reported errors. Nothing else.\n"
    "2. Change as few lines as possible.\n"
    "3. Preserve all comments and formatting.\n"
    "4. Do NOT rename, reorganise or refactor unrelated code.\n"
    "5. Return the COMPLETE corrected file in a single ``` fenced code block, "
    "with no explanation before or after it."
)


def build_fix_prompt(file_path: str, content: str, errors: List[str]) -> str:
    error_lines = "\n".join(f"- {error}" for error in errors)
    return (
        f"File: {file_path}\n"
        f"\n"
        f"Errors ({len(errors)}):\n"
        f"{error_lines}\n"
        f"\n"
        f"Current content:\n"
        f"```\n{content}\n```\n"
    )
