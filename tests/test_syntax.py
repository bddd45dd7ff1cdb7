"""Tests for SyntaxChecker."""

from unittest.mock import patch

import pytest

from swarm_health.repair.syntax import SyntaxChecker


class TestSyntaxChecker:
    @pytest.mark.asyncio
    async def test_python(self, project_root, write):
        checker = SyntaxChecker(project_root)

        assert (await checker.check(write("ok.py", "x = 1\n"))).passed
        result = await checker.check(write("bad.py", "def f(:\n"))
        assert not result.passed
        assert result.output.startswith("Python syntax error at line 1")

    @pytest.mark.asyncio
    async def test_json(self, project_root, write):
        checker = SyntaxChecker(project_root)

        assert (await checker.check(write("a.json", '{"a": 1}'))).passed
        assert not (await checker.check(write("b.json", '{"a": }'))).passed

    @pytest.mark.asyncio
    async def test_typescript_without_tsconfig_passes(self, project_root, write):
        result = await SyntaxChecker(project_root).check(write("src/a.ts", "const x: = ;"))
        assert result.passed
        assert "tsconfig" in result.output

    @pytest.mark.asyncio
    async def test_unknown_suffix_passes(self, project_root, write):
        assert (await SyntaxChecker(project_root).check(write(".env", "A=1\n"))).passed

    @pytest.mark.asyncio
    async def test_missing_checker_binary_skips(self, project_root, write):
        path = write("a.js", "const = ;")
        with patch("swarm_health.repair.syntax.shutil.which", return_value=None):
            result = await SyntaxChecker(project_root).check(path)
        assert result.passed
        assert "node not available" in result.output

    @pytest.mark.asyncio
    async def test_shell_script(self, project_root, write):
        checker = SyntaxChecker(project_root)

        assert (await checker.check(write("ok.sh", "echo hi\n"))).passed
        assert not (await checker.check(write("bad.sh", "if then fi\n"))).passed
