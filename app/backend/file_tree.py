"""
Helpers for the nested project file tree.

A tree maps a path segment to either a file leaf or a directory::

    {
        "package.json": {"file": {"contents": "{...}"}},
        "src": {"directory": {"App.jsx": {"file": {"contents": "..."}}}},
    }
"""

from typing import Any, Dict, Iterator, Tuple


def is_file_tree(tree: Any) -> bool:
    if not isinstance(tree, dict):
        return False
    for name, node in tree.items():
        if not isinstance(name, str) or not name or "/" in name:
            return False
        if not isinstance(node, dict):
            return False
        if "file" in node:
            leaf = node["file"]
            if not isinstance(leaf, dict) or not isinstance(leaf.get("contents", ""), str):
                return False
        elif "directory" in node:
            if not is_file_tree(node["directory"]):
                return False
        else:
            return False
    return True


def iter_files(tree: Dict[str, Any], prefix: str = "") -> Iterator[Tuple[str, str]]:
    """Yield ``(path, contents)`` for every file leaf, depth first in key order."""
    for name, node in tree.items():
        path = f"{prefix}/{name}" if prefix else name
        if "file" in node:
            yield path, node["file"].get("contents", "")
        elif "directory" in node:
            yield from iter_files(node["directory"], path)


def count_files(tree: Dict[str, Any]) -> int:
    return sum(1 for _ in iter_files(tree))
