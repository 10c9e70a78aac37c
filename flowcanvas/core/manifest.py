"""Checkpoint manifest: compiled graphs for a set of files plus a version.

Instrumented builds ship the manifest version with every checkpoint; the
session registry ignores checkpoints whose version no longer matches the
code it holds.
"""

from __future__ import annotations

import fnmatch
import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from ..config import EXTENSION_TO_LANGUAGE
from ..parser.compiler import compile_source
from .identity import file_checksum, manifest_hash

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDES = ["node_modules", ".git", "dist", "build", "coverage", "*.min.js"]


def build_manifest(sources: Mapping[str, str]) -> Dict[str, Any]:
    """Compile every `{path: source}` entry and version the result."""
    files: Dict[str, Any] = {}
    checksums: List[str] = []
    for path in sorted(sources):
        source = sources[path]
        checksum = file_checksum(source)
        checksums.append(checksum)
        result = compile_source(source, path)
        if result.error:
            logger.warning("Failed to compile %s: %s", path, result.error)
        files[path] = {
            "checksum": checksum,
            "functions": list(result.functions),
            "error": result.error,
            "graph": result.to_dict(),
        }
    return {
        "version": manifest_hash(checksums),
        "generatedAt": time.time(),
        "files": files,
    }


def collect_sources(root: Path, exclude_patterns: Optional[List[str]] = None) -> Dict[str, str]:
    """Read every JavaScript file under `root`, keyed by POSIX relative path."""
    exclude_patterns = exclude_patterns or DEFAULT_EXCLUDES
    root = Path(root)
    if root.is_file():
        return {root.name: root.read_text(encoding="utf-8", errors="replace")}

    out: Dict[str, str] = {}
    for path in sorted(root.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in EXTENSION_TO_LANGUAGE:
            continue
        rel = path.relative_to(root)
        # Match path components, not substrings.
        if any(fnmatch.fnmatch(part, pat) for part in rel.parts for pat in exclude_patterns):
            continue
        try:
            out[rel.as_posix()] = path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Failed to read %s: %s", path, e)
    return out


def write_manifest(path: Path, manifest: Dict[str, Any]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(manifest, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp_path.replace(path)


def read_manifest(path: Path) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None
