"""Syntax-only validation of a patched file.

The check is scoped to the single file that was patched and never runs
the project's tests:
  - .py        compile() in-process
  - .json      json.loads()
  - .js/.mjs/.cjs  node --check
  - .ts/.tsx   npx tsc --noEmit (only when the project has a tsconfig.json)
  - .sh        bash -n
Anything else passes. An external checker that times out is a failure.
"""

import asyncio
import json
import shutil
from dataclasses import dataclass
from pathlib import Path


@dataclass
class SyntaxCheckResult:
    """Result of a syntax check.

    Attributes:
        passed: Whether the file is syntactically valid
        output: Checker output, or a note about which checker ran
    """

    passed: bool
    output: str


class SyntaxChecker:
    """Language-aware syntax gate for patched files."""

    JS_SUFFIXES = {".js", ".mjs", ".cjs"}
    TS_SUFFIXES = {".ts", ".tsx"}

    def __init__(self, project_root: Path, timeout_seconds: float = 30.0) -> None:
        self.project_root = project_root
        self.timeout = timeout_seconds

    async def check(self, path: Path) -> SyntaxCheckResult:
        """Check one file's syntax."""
        suffix = path.suffix.lower()
        if suffix == ".py":
            return self._check_python(path)
        if suffix == ".json":
            return self._check_json(path)
        if suffix in self.JS_SUFFIXES:
            return await self._run_checker(["node", "--check", str(path)])
        if suffix in self.TS_SUFFIXES:
            if not (self.project_root / "tsconfig.json").is_file():
                return SyntaxCheckResult(True, "OK (no tsconfig.json, TypeScript check skipped)")
            return await self._run_checker(
                ["npx", "tsc", "--noEmit", "--pretty", "false", str(path)]
            )
        if suffix == ".sh":
            return await self._run_checker(["bash", "-n", str(path)])
        return SyntaxCheckResult(True, f"OK (no syntax checker for '{suffix or path.name}')")

    def _check_python(self, path: Path) -> SyntaxCheckResult:
        try:
            compile(path.read_text(encoding="utf-8"), str(path), "exec")
        except SyntaxError as e:
            return SyntaxCheckResult(False, f"Python syntax error at line {e.lineno}: {e.msg}")
        return SyntaxCheckResult(True, "OK")

    def _check_json(self, path: Path) -> SyntaxCheckResult:
        try:
            json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            return SyntaxCheckResult(False, f"JSON error at line {e.lineno}: {e.msg}")
        return SyntaxCheckResult(True, "OK")

    async def _run_checker(self, command: list[str]) -> SyntaxCheckResult:
        if shutil.which(command[0]) is None:
            return SyntaxCheckResult(True, f"OK ({command[0]} not available, check skipped)")

        proc = await asyncio.create_subprocess_exec(
            *command,
            cwd=self.project_root,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            return SyntaxCheckResult(
                False, f"{command[0]} syntax check timed out after {self.timeout:.0f}s"
            )

        output = (stdout.decode() + stderr.decode()).strip()
        if proc.returncode != 0:
            return SyntaxCheckResult(False, output or f"{command[0]} exited {proc.returncode}")
        return SyntaxCheckResult(True, output or "OK")
