"""Tests for the Tier 1 pattern library and fix strategies."""

import re

import httpx
import pytest

from swarm_health.repair import fixes
from swarm_health.repair.engine import locate_patch
from swarm_health.repair.files import needs_approval
from swarm_health.repair.fixes import RepairContext
from swarm_health.repair.patterns import (
    PatternLibrary,
    PatternMatch,
    RegexFileReplace,
    RepairPattern,
)
from swarm_health.types import RepairCategory


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def context(project_root, message: str, **kwargs) -> RepairContext:
    return RepairContext(
        error_type=kwargs.pop("error_type", "Error"),
        error_message=message,
        project_root=project_root,
        **kwargs,
    )


class TestPatternMatch:
    def test_unset_predicates_match_anything(self, project_root):
        assert PatternMatch().matches(context(project_root, "anything"))

    def test_set_predicate_rejects_missing_value(self, project_root):
        match = PatternMatch(stack_trace=re.compile("at run"))
        assert not match.matches(context(project_root, "boom"))
        assert match.matches(context(project_root, "boom", stack_trace="    at run (x.js:1)"))

    def test_all_predicates_must_match(self, project_root):
        match = PatternMatch(
            error_type=re.compile("^FetchError$"), error_message=re.compile("solana")
        )
        assert match.matches(context(project_root, "solana down", error_type="FetchError"))
        assert not match.matches(context(project_root, "solana down", error_type="TypeError"))


class TestPatternLibrary:
    """Selection order and hourly caps."""

    def test_first_matching_pattern_wins(self, project_root):
        library = PatternLibrary()

        pattern = library.find_matching(
            context(project_root, "429 Too Many Requests from api.twitter.com")
        )

        assert pattern.id == "twitter-rate-limit"

    def test_hourly_cap_counts_selections(self, project_root):
        clock = FakeClock()
        library = PatternLibrary(clock=clock)
        ctx = context(project_root, "429 rate limit exceeded twitter")

        assert library.find_matching(ctx).id == "twitter-rate-limit"
        assert library.find_matching(ctx).id == "twitter-rate-limit"
        # max_per_hour is 2 for this pattern
        assert library.find_matching(ctx) is None
        assert library.applications_in_window("twitter-rate-limit") == 2

        clock.now += 3601
        assert library.find_matching(ctx).id == "twitter-rate-limit"

    def test_no_match(self, project_root):
        assert PatternLibrary().find_matching(context(project_root, "all good")) is None

    @pytest.mark.asyncio
    async def test_execute_stamps_pattern_metadata(self, project_root, write):
        write("config/limits.ts", "maxRepliesPerHour: 8\n")
        library = PatternLibrary()
        ctx = context(project_root, "429 rate limit exceeded twitter")

        result = await library.execute(library.find_matching(ctx), ctx)

        assert result.original_code == "maxRepliesPerHour: 8"
        assert result.repaired_code == "maxRepliesPerHour: 4"
        assert result.confidence == 0.95
        assert result.requires_approval is False

    @pytest.mark.asyncio
    async def test_regex_file_replace(self, project_root, write):
        write("src/constants.ts", "export const POLL_MS = 500;\n")
        pattern = RepairPattern(
            id="poll-interval",
            name="Poll Interval",
            category=RepairCategory.CONFIG_FIX,
            match=PatternMatch(error_message=re.compile("polling too fast")),
            fix=RegexFileReplace(
                file_path="src/constants.ts",
                search=re.compile(r"POLL_MS = (\d+)"),
                replace=r"POLL_MS = 5000",
                diagnosis="Polling interval too short.",
            ),
            requires_approval=True,
        )
        library = PatternLibrary([pattern])
        ctx = context(project_root, "polling too fast")

        result = await library.execute(library.find_matching(ctx), ctx)

        assert result.original_code == "POLL_MS = 500"
        assert result.repaired_code == "POLL_MS = 5000"
        assert result.file_path == str(project_root / "src/constants.ts")
        assert result.requires_approval is True


class TestFixes:
    """Individual fix strategies."""

    @pytest.mark.asyncio
    async def test_rotate_rpc_skips_same_host(self, project_root, write):
        write(".env", "SOLANA_RPC=https://api.mainnet-beta.solana.com\n")

        result = await fixes.rotate_rpc_endpoint(context(project_root, "rpc down"))

        assert result.original_code == "SOLANA_RPC=https://api.mainnet-beta.solana.com"
        assert result.repaired_code == "SOLANA_RPC=https://rpc.helius.xyz/?api-key="

    @pytest.mark.asyncio
    async def test_rate_limit_floor(self, project_root, write):
        write("config/limits.ts", "maxRepliesPerHour: 2\n")

        assert await fixes.halve_rate_limit(context(project_root, "429")) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("retired", "replacement"),
        [
            ("gpt-4-0613", "gpt-4o"),
            ("gpt-3.5-turbo", "gpt-4o-mini"),
            ("gpt-4-turbo-preview", "gpt-4o"),
            ("gpt-4-1106-preview", "gpt-4o"),
            ("gpt-4o-2024-05-13", "gpt-4o"),
        ],
    )
    async def test_swap_deprecated_model(self, project_root, write, retired, replacement):
        write("src/llm.ts", f"const model = '{retired}';\n")

        result = await fixes.swap_deprecated_model(
            context(project_root, f"The model '{retired}' has been deprecated (openai)")
        )

        assert result.repaired_code == f"const model = '{replacement}';"

    @pytest.mark.asyncio
    async def test_double_timeout_capped(self, project_root, write):
        path = write("src/client.ts", "const opts = {\n  timeout: 40000,\n};\n")

        result = await fixes.double_timeout(
            context(project_root, "ETIMEDOUT", file_path=str(path), line_number=2)
        )

        assert result.repaired_code == "  timeout: 60000,"

    @pytest.mark.asyncio
    async def test_missing_package_is_diagnosis_only(self, project_root):
        result = await fixes.fix_import_path(
            context(project_root, "Error: Cannot find module 'left-pad'")
        )

        assert result.diagnosis == "Package 'left-pad' is not installed. Run: npm install left-pad"
        assert not result.is_concrete

    @pytest.mark.asyncio
    async def test_fix_import_path_variant(self, project_root, write):
        write("src/utils/format.ts", "export const f = 1;\n")
        source = write("src/index.ts", "import { f } from './utils/format.js';\n")

        result = await fixes.fix_import_path(
            context(
                project_root,
                "Error: Cannot find module './utils/format.js'",
                file_path=str(source),
            )
        )

        assert result.repaired_code == "import { f } from './utils/format.ts';"

    @pytest.mark.asyncio
    async def test_fix_column_name(self, project_root, write):
        path = write("src/db.ts", "const q = `SELECT userId FROM memories`;\n")

        result = await fixes.fix_column_name(
            context(project_root, 'column "userId" does not exist', file_path=str(path))
        )

        assert result.repaired_code == "const q = `SELECT user_id FROM memories`;"

    @pytest.mark.asyncio
    async def test_optional_chaining(self, project_root, write):
        path = write("src/feed.js", "const id = tweet.author.id;\n")

        result = await fixes.add_optional_chaining(
            context(
                project_root,
                "TypeError: Cannot read properties of undefined (reading 'id')",
                file_path=str(path),
                line_number=1,
            )
        )

        assert result.repaired_code == "const id = tweet?.author?.id;"

    @pytest.mark.asyncio
    async def test_guard_python_json_loads(self, project_root, write):
        path = write("app/parse.py", "def parse(raw):\n    data = json.loads(raw)\n    return data\n")

        result = await fixes.guard_json_parse(
            context(project_root, "JSONDecodeError", file_path=str(path), line_number=2)
        )

        assert result.original_code == "data = json.loads(raw)"
        assert result.repaired_code.startswith("try:\n        data = json.loads(raw)")

    @pytest.mark.asyncio
    async def test_guard_typescript_json_parse(self, project_root, write):
        source = "export function load(body: string) {\n  const data = JSON.parse(body);\n  return data;\n}\n"
        path = write("src/feed.ts", source)

        result = await fixes.guard_json_parse(
            context(
                project_root,
                "SyntaxError: Unexpected token < in JSON at position 0",
                file_path=str(path),
                line_number=2,
            )
        )

        assert result.original_code == "const data = JSON.parse(body);"
        assert locate_patch(source, result.original_code, result.repaired_code) == (
            "export function load(body: string) {\n"
            "  let data;\n"
            "  try {\n"
            "    data = JSON.parse(body);\n"
            "  } catch (parseErr) {\n"
            "    console.error('[health] JSON parse failed, using fallback:', parseErr.message);\n"
            "    data = typeof body === 'object' ? body : {};\n"
            "  }\n"
            "  return data;\n"
            "}\n"
        )

    @pytest.mark.asyncio
    async def test_bump_conflicting_port(self, project_root, write):
        write(".env", "PORT=3000\n")

        result = await fixes.bump_conflicting_port(
            context(project_root, "listen EADDRINUSE: address already in use :::3000")
        )

        assert result.original_code == "PORT=3000"
        assert result.repaired_code == "PORT=3001"

    @pytest.mark.asyncio
    async def test_heal_endpoint_404(self, project_root, write):
        path = write("src/api.ts", "const URL = 'https://api.example.com/v1/pairs';\n")

        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/v2/pairs":
                return httpx.Response(200)
            return httpx.Response(404)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            result = await fixes.heal_endpoint_404(
                context(
                    project_root,
                    "404 Not Found: https://api.example.com/v1/pairs",
                    file_path=str(path),
                    http=client,
                )
            )

        assert result.original_code == "https://api.example.com/v1/pairs"
        assert result.repaired_code == "https://api.example.com/v2/pairs"


class TestApprovalPolicy:
    def test_deny_glob_beats_allow_glob(self, project_root):
        path = str(project_root / "wallet" / "config" / "rpc.ts")
        assert needs_approval(path, project_root, ["**/wallet/**"], ["**/config/**"])

    def test_allow_glob_at_root(self, project_root):
        assert not needs_approval(str(project_root / ".env"), project_root, [], ["**/*.env*"])

    def test_unmatched_requires_approval(self, project_root):
        assert needs_approval(str(project_root / "src" / "bot.ts"), project_root, [], ["**/config/**"])
