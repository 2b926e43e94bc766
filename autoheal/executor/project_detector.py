"""
Project Detector
================
Detects the project type from marker files in the workspace root.

First match in SIGNAL_MAP wins, so more specific signals come first
(a TypeScript project also has a package.json).
"""
import os
from typing import List, Optional, Tuple

SIGNAL_MAP: List[Tuple[str, str]] = [
    ("tsconfig.json",    "typescript"),
    ("package.json",     "node"),
    ("pyproject.toml",   "python"),
    ("requirements.txt", "python"),
    ("setup.py",         "python"),
    ("go.mod",           "go"),
    ("Cargo.toml",       "rust"),
    ("pom.xml",          "java"),
]


def detect_project_type(workspace_path: str) -> Optional[str]:
    """Return the project type for ``workspace_path`` or None when nothing matches."""
    if not os.path.isdir(workspace_path):
        return None

    for signal_file, project_type in SIGNAL_MAP:
        if os.path.isfile(os.path.join(workspace_path, signal_file)):
            return project_type

    return None
