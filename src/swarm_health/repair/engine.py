"""
Two-tier code repair engine.

For each reported error:
1. Skip it if an identical error (file, type, message prefix) was
   attempted in the last 30 minutes
2. Tier 1: first matching deterministic pattern from PatternLibrary
3. Tier 2: AI-proposed patch, only for classifiable errors with a file

A concrete fix is recorded as a CodeRepairRecord. Paths covered by the
approval policy are held for an operator (and a repair_request is put on
the bus); everything else is auto-approved and applied at once.

apply_repair is the only code that writes source files. It always writes
a <file>.backup.<epoch-ms> copy first, restores the original on a failed
syntax check or any exception, and never leaves a partial patch behind.
"""

import asyncio
import logging
import re
import time
from pathlib import Path

import httpx

from swarm_health.config import HealthConfig
from swarm_health.db.health import HealthDB
from swarm_health.exceptions import LLMUnavailableError
from swarm_health.repair.files import needs_approval, resolve_file
from swarm_health.repair.fixes import RepairContext
from swarm_health.repair.llm import RepairLLM
from swarm_health.repair.patterns import PatternLibrary
from swarm_health.repair.prompt import (
    build_code_context,
    build_repair_prompt,
    parse_repair_response,
)
from swarm_health.repair.syntax import SyntaxChecker
from swarm_health.types import (
    AgentError,
    CodeRepairRecord,
    MessagePriority,
    RepairCategory,
    RepairOutcome,
    RepairResult,
)

logger = logging.getLogger(__name__)

APPROVAL_RECIPIENT = "supervisor"

PYTHON_FRAME = re.compile(r'File "([^"]+\.py)", line (\d+)')
SCRIPT_FRAME = re.compile(r"(/[^\s:()'\"]+\.(?:ts|tsx|js|mjs|cjs|py)):(\d+)")

# Checked in order; first hit wins
CATEGORY_KEYWORDS: list[tuple[RepairCategory, re.Pattern[str]]] = [
    (RepairCategory.CONFIG_FIX, re.compile(r"\benv\b|\.env\b|environ")),
    (RepairCategory.API_ENDPOINT, re.compile(r"404|enotfound")),
    (RepairCategory.RPC_ROTATION, re.compile(r"solana|rpc|blockhash")),
    (RepairCategory.MODEL_FALLBACK, re.compile(r"openai|model.*not found")),
    (RepairCategory.RATE_LIMIT_ADJUST, re.compile(r"429|rate limit")),
    (RepairCategory.IMPORT_FIX, re.compile(r"cannot find module|no module named")),
    (RepairCategory.QUERY_FIX, re.compile(r"column|relation")),
    (RepairCategory.TYPE_FIX, re.compile(r"typeerror|is not a function|attributeerror")),
    (RepairCategory.RETRY_LOGIC, re.compile(r"timeout|etimedout|timed out")),
]


def classify_error(error: AgentError) -> RepairCategory | None:
    """Map an error to a repair category by keyword, or None if unknown."""
    text = f"{error.error_type} {error.error_message} {error.stack_trace or ''}".lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if keywords.search(text):
            return category
    return None


def extract_file_path(text: str) -> tuple[str, int | None] | None:
    """Find the first source path (and line) mentioned in a message or stack."""
    for pattern in (PYTHON_FRAME, SCRIPT_FRAME):
        match = pattern.search(text)
        if match:
            return match.group(1), int(match.group(2))
    return None


def _leading_ws(line: str) -> str:
    return line[: len(line) - len(line.lstrip())]


def _fuzzy_apply(source: str, original: str, repaired: str) -> str | None:
    """
    Replace original in source ignoring whitespace differences.

    Matches the non-blank lines of original against consecutive
    non-blank lines of source, then re-indents repaired to the first
    matched line.
    """
    def normalize(text: str) -> str:
        return re.sub(r"\s+", " ", text).strip()

    if normalize(original) not in normalize(source):
        return None

    wanted_raw = [line for line in original.split("\n") if line.strip()]
    wanted = [line.strip() for line in wanted_raw]
    if not wanted:
        return None
    src_lines = source.split("\n")

    for start, line in enumerate(src_lines):
        if line.strip() != wanted[0]:
            continue
        pos, matched = start, 0
        while pos < len(src_lines) and matched < len(wanted):
            stripped = src_lines[pos].strip()
            if not stripped:
                pos += 1
                continue
            if stripped != wanted[matched]:
                break
            pos += 1
            matched += 1
        if matched < len(wanted):
            continue

        indent = _leading_ws(src_lines[start])
        frame = _leading_ws(wanted_raw[0])
        replacement = []
        for new_line in repaired.split("\n"):
            if not new_line.strip():
                replacement.append("")
            elif new_line.startswith(frame):
                replacement.append(indent + new_line[len(frame):])
            else:
                replacement.append(indent + new_line.lstrip())
        return "\n".join(src_lines[:start] + replacement + src_lines[pos:])
    return None


def locate_patch(source: str, original: str, repaired: str) -> str | None:
    """
    Produce patched source, or None if original cannot be placed.

    Exact replacement of the first occurrence wins; otherwise a
    whitespace-insensitive line match is tried.
    """
    if not original:
        return None
    if original in source:
        return source.replace(original, repaired, 1)
    return _fuzzy_apply(source, original, repaired)


class CodeRepairEngine:
    """
    Orchestrates Tier 1/Tier 2 repair and the safe apply path.

    Dedup keys, pattern counters and stats live on this instance;
    construct one per monitor process.

    Example:
        engine = CodeRepairEngine(db, config, llm=repair_llm)
        outcome = await engine.evaluate_and_repair(error, error_id)
        if outcome.needs_approval:
            ...  # operator approves, monitor later calls apply_approved()
    """

    DEDUP_WINDOW_SECONDS = 1800.0
    MIN_CONFIDENCE = 0.5
    BACKUP_RETENTION_SECONDS = 86400.0

    def __init__(
        self,
        db: HealthDB,
        config: HealthConfig,
        patterns: PatternLibrary | None = None,
        llm: RepairLLM | None = None,
        syntax: SyntaxChecker | None = None,
        http: httpx.AsyncClient | None = None,
        clock=time.monotonic,
    ) -> None:
        self.db = db
        self.config = config
        self.project_root = Path(config.project_root)
        self.patterns = patterns or PatternLibrary()
        self.llm = llm
        self.syntax = syntax or SyntaxChecker(
            self.project_root, timeout_seconds=config.syntax_check_timeout_seconds
        )
        self.http = http
        self._clock = clock
        self._recent: dict[str, float] = {}
        self._cleanups: set[asyncio.TimerHandle] = set()
        self.stats = {"tier1": 0, "tier2": 0, "skipped": 0, "failed": 0}

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    @staticmethod
    def dedup_key(error: AgentError) -> str:
        return f"{error.file_path or 'unknown'}:{error.error_type}:{error.error_message[:50]}"

    def _recently_attempted(self, key: str) -> bool:
        now = self._clock()
        for stale in [k for k, t in self._recent.items() if now - t >= self.DEDUP_WINDOW_SECONDS]:
            del self._recent[stale]
        return key in self._recent

    async def evaluate_and_repair(
        self, error: AgentError, error_id: int | None = None
    ) -> RepairOutcome:
        """
        Try to repair the code behind a reported error.

        Returns:
            RepairOutcome; attempted=False when repair is disabled, the
            error was attempted recently, or neither tier could act
        """
        if not self.config.repair_enabled:
            return RepairOutcome(attempted=False)

        key = self.dedup_key(error)
        if self._recently_attempted(key):
            self.stats["skipped"] += 1
            logger.info("Skipping repair of recently attempted error %s", key)
            return RepairOutcome(attempted=False)

        error_id = error_id if error_id is not None else error.id
        outcome = await self._try_tier1(error, error_id)
        if outcome is None:
            outcome = await self._try_tier2(error, error_id)
        if outcome is None:
            self.stats["skipped"] += 1
            return RepairOutcome(attempted=False)

        self._recent[key] = self._clock()
        return outcome

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    async def _try_tier1(self, error: AgentError, error_id: int | None) -> RepairOutcome | None:
        ctx = RepairContext(
            error_type=error.error_type,
            error_message=error.error_message,
            project_root=self.project_root,
            stack_trace=error.stack_trace,
            file_path=error.file_path,
            line_number=error.line_number,
            backup_rpc_urls=list(self.config.backup_rpc_urls),
            http=self.http,
        )
        pattern = self.patterns.find_matching(ctx)
        if pattern is None:
            return None

        try:
            result = await self.patterns.execute(pattern, ctx)
        except (OSError, UnicodeDecodeError):
            logger.exception("Repair pattern %s failed to inspect the project", pattern.id)
            return None

        if result is None:
            return None
        if not result.is_concrete or not result.file_path:
            logger.info("Pattern %s diagnosis only: %s", pattern.id, result.diagnosis)
            return None

        logger.info("Tier 1 repair via %s: %s", pattern.id, result.diagnosis)
        return await self._commit(
            tier=1,
            error=error,
            error_id=error_id,
            result=result,
            model_used=f"tier1:{pattern.id}",
            prompt=f"Pattern: {pattern.name}",
            raw_response=result.diagnosis,
        )

    async def _try_tier2(self, error: AgentError, error_id: int | None) -> RepairOutcome | None:
        if self.llm is None:
            return None

        file_path, line_number = error.file_path, error.line_number
        if not file_path:
            found = extract_file_path(f"{error.stack_trace or ''}\n{error.error_message}")
            if not found:
                return None
            file_path, line_number = found

        category = classify_error(error)
        if category is None:
            return None

        path = resolve_file(file_path, self.project_root)
        if path is None:
            return None

        source = path.read_text(encoding="utf-8")
        prompt = build_repair_prompt(
            error_type=error.error_type,
            error_message=error.error_message,
            stack_trace=error.stack_trace,
            file_path=str(path),
            line_number=line_number,
            category=category.value,
            code_context=build_code_context(source.split("\n"), line_number),
        )

        logger.info("Tier 2 analysis of %s in %s", error.error_type, path)
        try:
            text, model = await self.llm.complete(prompt)
        except LLMUnavailableError as e:
            logger.warning("Tier 2 repair unavailable: %s", e)
            self.stats["failed"] += 1
            return RepairOutcome(attempted=True, tier=2)

        proposal = parse_repair_response(text)
        if proposal is None:
            logger.warning("Discarding unparseable Tier 2 response for %s", path)
            self.stats["failed"] += 1
            return RepairOutcome(attempted=True, tier=2)

        if proposal.confidence < self.MIN_CONFIDENCE:
            logger.info(
                "Discarding Tier 2 proposal for %s (confidence %.2f)", path, proposal.confidence
            )
            return RepairOutcome(attempted=True, tier=2, diagnosis=proposal.diagnosis)

        if locate_patch(source, proposal.original_code, proposal.repaired_code) in (None, source):
            logger.warning("Tier 2 proposal for %s does not match the file", path)
            self.stats["failed"] += 1
            return RepairOutcome(attempted=True, tier=2, diagnosis=proposal.diagnosis)

        result = RepairResult(
            diagnosis=proposal.diagnosis,
            category=category.value,
            original_code=proposal.original_code,
            repaired_code=proposal.repaired_code,
            file_path=str(path),
            confidence=proposal.confidence,
        )
        return await self._commit(
            tier=2,
            error=error,
            error_id=error_id,
            result=result,
            model_used=model,
            prompt=prompt,
            raw_response=text,
        )

    async def _commit(
        self,
        *,
        tier: int,
        error: AgentError,
        error_id: int | None,
        result: RepairResult,
        model_used: str,
        prompt: str,
        raw_response: str,
    ) -> RepairOutcome:
        """Record a concrete fix, then hold it for approval or apply it."""
        requires_approval = result.requires_approval or needs_approval(
            result.file_path,
            self.project_root,
            self.config.repair_requires_approval,
            self.config.repair_auto_approve,
        )
        repair_id = await self.db.log_repair_attempt(
            error_id=error_id,
            agent_name=error.agent_name,
            file_path=result.file_path,
            error_type=error.error_type,
            error_message=error.error_message,
            result=result,
            model_used=model_used,
            requires_approval=requires_approval,
            prompt=prompt,
            raw_response=raw_response,
        )

        if requires_approval:
            await self._request_approval(repair_id, tier, error, result)
            return RepairOutcome(
                attempted=True,
                tier=tier,
                repair_id=repair_id,
                needs_approval=True,
                diagnosis=result.diagnosis,
            )

        await self.db.approve_repair(repair_id, f"tier{tier}-auto")
        applied = await self.apply_repair(repair_id, Path(result.file_path), result)
        if applied:
            self.stats[f"tier{tier}"] += 1
        return RepairOutcome(
            attempted=True,
            tier=tier,
            repair_id=repair_id,
            applied=applied,
            diagnosis=result.diagnosis,
        )

    async def _request_approval(
        self, repair_id: int, tier: int, error: AgentError, result: RepairResult
    ) -> None:
        await self.db.send_message(
            from_agent=self.config.monitor_name,
            to_agent=APPROVAL_RECIPIENT,
            message_type="repair_request",
            payload={
                "repair_id": repair_id,
                "tier": tier,
                "agent_name": error.agent_name,
                "file_path": result.file_path,
                "diagnosis": result.diagnosis,
                "category": result.category,
                "confidence": result.confidence,
            },
            priority=MessagePriority.HIGH,
        )
        logger.info("Repair #%d needs approval (%s)", repair_id, result.file_path)

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    async def apply_approved(self, record: CodeRepairRecord) -> bool:
        """Apply an operator-approved repair through the normal apply path."""
        result = RepairResult(
            diagnosis=record.diagnosis,
            category=record.repair_category,
            original_code=record.original_code,
            repaired_code=record.repaired_code,
            file_path=record.file_path,
        )
        applied = await self.apply_repair(record.id, Path(record.file_path), result)
        if applied:
            tier = 1 if record.model_used.startswith("tier1:") else 2
            self.stats[f"tier{tier}"] += 1
        return applied

    async def apply_repair(self, repair_id: int, file_path: Path, result: RepairResult) -> bool:
        """
        Back up, patch, syntax-check and (on failure) restore a file.

        Returns:
            True if the patch is live and passed the syntax check

        Raises:
            Any unexpected exception after the file was modified, once the
            original contents have been restored and the rollback recorded
        """
        if not file_path.is_file():
            await self.db.mark_repair_applied(repair_id, False, "File not found")
            self.stats["failed"] += 1
            return False

        original_bytes = file_path.read_bytes()
        source = original_bytes.decode("utf-8")
        backup = file_path.with_name(f"{file_path.name}.backup.{int(time.time() * 1000)}")
        backup.write_bytes(original_bytes)

        patched = locate_patch(source, result.original_code, result.repaired_code)
        if patched is None or patched == source:
            await self.db.mark_repair_applied(
                repair_id, False, "Could not locate code to replace"
            )
            backup.unlink(missing_ok=True)
            self.stats["failed"] += 1
            logger.warning("Repair #%d: could not locate code in %s", repair_id, file_path)
            return False

        try:
            file_path.write_bytes(patched.encode("utf-8"))
            check = await self.syntax.check(file_path)
            if not check.passed:
                file_path.write_bytes(original_bytes)
                await self.db.mark_repair_applied(repair_id, False, check.output)
                await self.db.mark_repair_rolled_back(
                    repair_id, f"Syntax check failed: {check.output[:200]}"
                )
                backup.unlink(missing_ok=True)
                self.stats["failed"] += 1
                logger.warning(
                    "Repair #%d rolled back, syntax check failed for %s", repair_id, file_path
                )
                return False
            await self.db.mark_repair_applied(repair_id, True, check.output)
        except Exception as e:
            file_path.write_bytes(original_bytes)
            logger.exception("Repair #%d: apply failed, restored %s", repair_id, file_path)
            self.stats["failed"] += 1
            await self.db.mark_repair_rolled_back(
                repair_id, f"Exception during apply: {str(e)[:200]}"
            )
            raise

        self._schedule_backup_removal(backup)
        logger.info("Repair #%d applied to %s", repair_id, file_path)
        return True

    def _schedule_backup_removal(self, backup: Path) -> None:
        loop = asyncio.get_running_loop()
        handle: asyncio.TimerHandle | None = None

        def remove() -> None:
            backup.unlink(missing_ok=True)
            self._cleanups.discard(handle)

        handle = loop.call_later(self.BACKUP_RETENTION_SECONDS, remove)
        self._cleanups.add(handle)

    def close(self) -> None:
        """Cancel pending backup removals (backups stay on disk)."""
        for handle in self._cleanups:
            handle.cancel()
        self._cleanups.clear()

    def get_stats(self) -> dict[str, int]:
        return dict(self.stats)
