"""Tests for conflict detection in worker outputs."""

from __future__ import annotations

from autodev.core.conflicts import (
    ConflictKind,
    dedupe_imports,
    duplicate_declarations,
    find_conflicts,
    has_merge_markers,
    language_for,
)
from autodev.core.session import ProducedFile, WorkerResult


def result(worker_id: int, *files: tuple[str, str], success: bool = True) -> WorkerResult:
    return WorkerResult(
        worker_id=worker_id,
        success=success,
        produced_files=[ProducedFile(path=p, content=c) for p, c in files],
    )


class TestSignatures:
    """Tests for the individual conflict checks."""

    def test_language_for(self):
        assert language_for("pkg/mod.py") == "python"
        assert language_for("web/app.tsx") == "javascript"
        assert language_for("README.md") is None
        assert language_for("Makefile") is None

    def test_merge_markers(self):
        assert has_merge_markers("a\n<<<<<<< HEAD\nb\n=======\nc\n>>>>>>> branch\n")
        assert not has_merge_markers("x = '<<<<<<<'\n")

    def test_duplicate_python_functions(self):
        content = "def load():\n    pass\n\n\ndef load():\n    pass\n"
        assert duplicate_declarations("a.py", content) == ["load"]

    def test_methods_with_same_name_are_fine(self):
        content = "class A:\n    def run(self):\n        pass\n\n\nclass B:\n    def run(self):\n        pass\n"
        assert duplicate_declarations("a.py", content) == []

    def test_duplicate_javascript_declarations(self):
        content = "export const api = 1;\nfunction api() {}\n"
        assert duplicate_declarations("a.js", content) == ["api"]

    def test_unknown_language_is_not_scanned(self):
        assert duplicate_declarations("notes.txt", "def a():\ndef a():\n") == []


class TestDedupeImports:
    """Tests for dedupe_imports."""

    def test_keeps_first_occurrence(self):
        content = "import os\nfrom pathlib import Path\nimport os\n\nx = os.sep\n"
        assert dedupe_imports("a.py", content) == "import os\nfrom pathlib import Path\n\nx = os.sep\n"

    def test_indented_imports_untouched(self):
        content = "import os\n\ndef f():\n    import os\n    return os\n"
        assert dedupe_imports("a.py", content) == content

    def test_javascript_imports(self):
        content = "import React from 'react';\nimport React from 'react';\n"
        assert dedupe_imports("a.jsx", content) == "import React from 'react';\n"


class TestFindConflicts:
    """Tests for find_conflicts."""

    def test_clean_results(self):
        results = [result(0, ("a.py", "x = 1\n")), result(1, ("b.py", "y = 2\n"))]
        assert find_conflicts(results) == []

    def test_same_path_from_two_workers(self):
        results = [result(0, ("a.py", "x = 1\n")), result(1, ("a.py", "x = 2\n"))]

        conflicts = find_conflicts(results)

        assert len(conflicts) == 1
        assert conflicts[0].kind == ConflictKind.DUPLICATE_PATH
        assert conflicts[0].worker_ids == [0, 1]
        assert "workers 0, 1" in str(conflicts[0])

    def test_failed_results_ignored(self):
        results = [result(0, ("a.py", "x\n")), result(1, ("a.py", "x\n"), success=False)]
        assert find_conflicts(results) == []

    def test_markers_and_declarations_reported(self):
        results = [
            result(0, ("a.py", "<<<<<<< HEAD\n")),
            result(1, ("b.py", "class A:\n    pass\nclass A:\n    pass\n")),
        ]

        kinds = {c.kind for c in find_conflicts(results)}

        assert kinds == {ConflictKind.MERGE_MARKER, ConflictKind.DUPLICATE_DECLARATION}
