"""
Tier 1 repair pattern library.

A RepairPattern pairs match predicates over an error with a fix
strategy. Patterns are tried in declaration order and the first full
match wins. Each pattern carries its own hourly application cap,
enforced by a sliding-window counter owned by the PatternLibrary
instance (one per monitor process).

Fix strategies are either an async inspection function from
swarm_health.repair.fixes or a declarative RegexFileReplace.
"""

import logging
import re
import time
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace

from swarm_health.repair import fixes
from swarm_health.repair.files import resolve_file
from swarm_health.repair.fixes import RepairContext
from swarm_health.types import RepairCategory, RepairResult

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 3600.0

FixFunction = Callable[[RepairContext], Awaitable[RepairResult | None]]


@dataclass
class PatternMatch:
    """
    Match predicates over an error. Unset predicates match anything;
    a set predicate never matches a missing value.
    """

    error_type: re.Pattern[str] | None = None
    error_message: re.Pattern[str] | None = None
    stack_trace: re.Pattern[str] | None = None
    file_path: re.Pattern[str] | None = None

    def matches(self, ctx: RepairContext) -> bool:
        checks = (
            (self.error_type, ctx.error_type),
            (self.error_message, ctx.error_message),
            (self.stack_trace, ctx.stack_trace),
            (self.file_path, ctx.file_path),
        )
        for predicate, value in checks:
            if predicate is None:
                continue
            if value is None or not predicate.search(value):
                return False
        return True


@dataclass
class RegexFileReplace:
    """Declarative fix: apply search/replace to a file under the project root."""

    file_path: str
    search: re.Pattern[str]
    replace: str
    diagnosis: str


@dataclass
class RepairPattern:
    """A deterministic error-to-fix rule."""

    id: str
    name: str
    category: RepairCategory
    match: PatternMatch
    fix: FixFunction | RegexFileReplace
    requires_approval: bool = False
    confidence: float = 0.8
    max_per_hour: int = 5


class PatternLibrary:
    """
    Selects and executes Tier 1 patterns under per-pattern hourly caps.

    A pattern counts against its cap when it is selected, so a pattern
    with max_per_hour = N is selected at most N times in any rolling
    hour.

    Example:
        library = PatternLibrary()
        pattern = library.find_matching(ctx)
        if pattern:
            result = await library.execute(pattern, ctx)
    """

    def __init__(
        self,
        patterns: list[RepairPattern] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.patterns = patterns if patterns is not None else list(DEFAULT_PATTERNS)
        self._clock = clock
        self._applications: dict[str, deque[float]] = defaultdict(deque)

    def applications_in_window(self, pattern_id: str) -> int:
        """Selections of a pattern in the trailing hour."""
        window = self._applications[pattern_id]
        cutoff = self._clock() - WINDOW_SECONDS
        while window and window[0] <= cutoff:
            window.popleft()
        return len(window)

    def find_matching(self, ctx: RepairContext) -> RepairPattern | None:
        """
        Return the first pattern under its cap whose predicates all match.

        The selection is recorded against the pattern's hourly cap.
        """
        for pattern in self.patterns:
            if self.applications_in_window(pattern.id) >= pattern.max_per_hour:
                continue
            if pattern.match.matches(ctx):
                self._applications[pattern.id].append(self._clock())
                logger.info("Repair pattern %s matched %s", pattern.id, ctx.error_type)
                return pattern
        return None

    async def execute(self, pattern: RepairPattern, ctx: RepairContext) -> RepairResult | None:
        """Run a pattern's fix strategy, stamping its confidence and approval flag."""
        if isinstance(pattern.fix, RegexFileReplace):
            result = self._execute_replace(pattern, pattern.fix, ctx)
        else:
            result = await pattern.fix(ctx)
        if result is None:
            return None
        return replace(
            result,
            category=pattern.category.value,
            confidence=pattern.confidence,
            requires_approval=pattern.requires_approval,
        )

    def _execute_replace(
        self, pattern: RepairPattern, fix: RegexFileReplace, ctx: RepairContext
    ) -> RepairResult | None:
        path = resolve_file(fix.file_path, ctx.project_root)
        if not path:
            return None
        match = fix.search.search(path.read_text(encoding="utf-8"))
        if not match:
            return None
        return RepairResult(
            diagnosis=fix.diagnosis,
            category=pattern.category.value,
            original_code=match.group(0),
            repaired_code=match.expand(fix.replace),
            file_path=str(path),
        )


DEFAULT_PATTERNS: list[RepairPattern] = [
    RepairPattern(
        id="solana-rpc-rotate",
        name="Solana RPC Rotation",
        category=RepairCategory.RPC_ROTATION,
        match=PatternMatch(
            error_message=re.compile(
                r"(?:failed to get recent blockhash|ECONNREFUSED|ETIMEDOUT|503|FetchError)"
                r".*(?:solana|mainnet|helius|rpc)",
                re.IGNORECASE,
            )
        ),
        fix=fixes.rotate_rpc_endpoint,
        confidence=0.9,
        max_per_hour=3,
    ),
    RepairPattern(
        id="twitter-rate-limit",
        name="Twitter Rate Limit Backoff",
        category=RepairCategory.RATE_LIMIT_ADJUST,
        match=PatternMatch(
            error_message=re.compile(
                r"(?:429|rate limit|too many requests).*(?:twitter|x\.com|api\.twitter)",
                re.IGNORECASE,
            )
        ),
        fix=fixes.halve_rate_limit,
        confidence=0.95,
        max_per_hour=2,
    ),
    RepairPattern(
        id="openai-model-swap",
        name="Deprecated Model Swap",
        category=RepairCategory.MODEL_FALLBACK,
        match=PatternMatch(
            error_message=re.compile(
                r"(?:model.*not found|does not exist|deprecated|decommissioned).*(?:openai|gpt)",
                re.IGNORECASE,
            )
        ),
        fix=fixes.swap_deprecated_model,
        confidence=0.9,
        max_per_hour=3,
    ),
    RepairPattern(
        id="timeout-increase",
        name="Timeout Increase",
        category=RepairCategory.RETRY_LOGIC,
        match=PatternMatch(
            error_message=re.compile(
                r"(?:ETIMEDOUT|timeout|timed out|AbortError|request.*timeout)",
                re.IGNORECASE,
            )
        ),
        fix=fixes.double_timeout,
        confidence=0.7,
        max_per_hour=5,
    ),
    RepairPattern(
        id="import-fix",
        name="Import Path Fix",
        category=RepairCategory.IMPORT_FIX,
        match=PatternMatch(
            error_message=re.compile(
                r"(?:Cannot find module|Module not found|ERR_MODULE_NOT_FOUND)",
                re.IGNORECASE,
            )
        ),
        fix=fixes.fix_import_path,
        confidence=0.8,
        max_per_hour=10,
    ),
    RepairPattern(
        id="db-column-fix",
        name="Database Column Fix",
        category=RepairCategory.QUERY_FIX,
        match=PatternMatch(
            error_message=re.compile(
                r"(?:column.*does not exist|undefined column|unknown column|no such column)",
                re.IGNORECASE,
            )
        ),
        fix=fixes.fix_column_name,
        confidence=0.75,
        max_per_hour=5,
    ),
    RepairPattern(
        id="property-access-fix",
        name="Property Access Fix",
        category=RepairCategory.TYPE_FIX,
        match=PatternMatch(
            error_message=re.compile(
                r"(?:Cannot read propert(?:y|ies) of (?:undefined|null)"
                r"|TypeError.*undefined.*(?:reading|property))",
                re.IGNORECASE,
            )
        ),
        fix=fixes.add_optional_chaining,
        confidence=0.65,
        max_per_hour=10,
    ),
    RepairPattern(
        id="json-parse-guard",
        name="JSON Parse Guard",
        category=RepairCategory.TYPE_FIX,
        match=PatternMatch(
            error_message=re.compile(
                r"(?:SyntaxError.*JSON|Unexpected token.*JSON|JSON\.parse|JSONDecodeError)",
                re.IGNORECASE,
            )
        ),
        fix=fixes.guard_json_parse,
        # Changes control flow
        requires_approval=True,
        confidence=0.7,
        max_per_hour=5,
    ),
    RepairPattern(
        id="port-conflict",
        name="Port Conflict Resolution",
        category=RepairCategory.CONFIG_FIX,
        match=PatternMatch(
            error_message=re.compile(
                r"(?:EADDRINUSE|address already in use|port.*(?:in use|unavailable))",
                re.IGNORECASE,
            )
        ),
        fix=fixes.bump_conflicting_port,
        confidence=0.85,
        max_per_hour=3,
    ),
    RepairPattern(
        id="api-endpoint-404",
        name="API Endpoint 404 Fix",
        category=RepairCategory.API_ENDPOINT,
        match=PatternMatch(
            error_message=re.compile(r"(?:404|Not Found).*(?:https?://)", re.IGNORECASE)
        ),
        fix=fixes.heal_endpoint_404,
        confidence=0.85,
        max_per_hour=5,
    ),
]
