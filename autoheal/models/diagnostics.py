"""
Diagnostic Model
================
A single compiler / type-checker / interpreter error extracted from build output.
"""
from dataclasses import dataclass, field
from typing import Dict, List

from pydantic import BaseModel


class Diagnostic(BaseModel):
    file: str
    line: int = 0
    column: int = 0
    code: str = "error"
    message: str = ""

    def describe(self) -> str:
        """Format used when handing the error to the file fixer."""
        return f"{self.code} (line {self.line}): {self.message}"


@dataclass
class DiagnoseResult:
    errors: List[Diagnostic] = field(default_factory=list)
    by_file: Dict[str, List[Diagnostic]] = field(default_factory=dict)
    summary: str = "0 errors in 0 files"

    @property
    def count(self) -> int:
        return len(self.errors)
