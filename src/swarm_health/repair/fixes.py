"""
Deterministic fix strategies for known error signatures.

Each strategy inspects the project tree for the code implicated by an
error and returns a RepairResult with an exact original/repaired code
pair, a diagnosis-only RepairResult, or None when it cannot help.
Strategies never write files; the repair engine applies results.
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

import httpx

from swarm_health.config import DEFAULT_BACKUP_RPCS
from swarm_health.repair.files import find_files_containing, resolve_file
from swarm_health.types import RepairCategory, RepairResult

logger = logging.getLogger(__name__)

CONFIG_EXTENSIONS = (".ts", ".js", ".env", ".py", ".json")
SOURCE_EXTENSIONS = (".ts", ".js", ".mjs", ".py")

MAX_TIMEOUT_MS = 60_000
MIN_RATE_LIMIT = 2
PROBE_TIMEOUT_SECONDS = 5.0

MODEL_MIGRATIONS = {
    "gpt-4": "gpt-4o",
    "gpt-4-0314": "gpt-4o",
    "gpt-4-0613": "gpt-4o",
    "gpt-4-32k": "gpt-4o",
    "gpt-3.5-turbo-0301": "gpt-4o-mini",
    "gpt-3.5-turbo-0613": "gpt-4o-mini",
    "gpt-3.5-turbo": "gpt-4o-mini",
    "gpt-4-turbo-preview": "gpt-4o",
    "gpt-4-1106-preview": "gpt-4o",
    "gpt-4o-2024-05-13": "gpt-4o",
}

COLUMN_MIGRATIONS = {
    "userId": "user_id",
    "user_id": "userId",
    "roomId": "room_id",
    "room_id": "roomId",
    "agentId": "agent_id",
    "agent_id": "agentId",
    "createdAt": "created_at",
    "created_at": "createdAt",
    "updatedAt": "updated_at",
    "updated_at": "updatedAt",
}

RPC_REFERENCE = re.compile(r"SOLANA_RPC|RPC_URL|rpcEndpoint|rpc_url")
URL_PATTERN = re.compile(r"https?://[^\s'\"`,;)]+")
RATE_LIMIT_SETTING = re.compile(
    r"(maxRepliesPerHour|MAX_REPLIES_PER_HOUR|maxTotalRepliesPerHour|max_replies_per_hour)"
    r"(\s*[:=]\s*)(\d+)"
)
TIMEOUT_SETTING = re.compile(r"(timeout\w*\s*[:=]\s*)(\d+)", re.IGNORECASE)
MODEL_NAME = re.compile(r"(?:model|model_id)[:\s]*['\"`]*([a-z0-9\-_.]+)['\"`]", re.IGNORECASE)
MISSING_MODULE = re.compile(
    r"(?:Cannot find module|Module not found)[:\s]*['\"]([^'\"]+)['\"]", re.IGNORECASE
)
MISSING_COLUMN = re.compile(r"column\s+['\"]*(\w+)['\"]", re.IGNORECASE)
READ_PROPERTY = re.compile(r"reading\s+['\"](\w+)['\"]", re.IGNORECASE)
PROPERTY_CHAIN = re.compile(r"\w+(?:\.\w+)+")
PORT_IN_MESSAGE = re.compile(r"(?:port\s*|:)(\d{4,5})", re.IGNORECASE)
JS_JSON_PARSE = re.compile(r"^(?:const|let|var)\s+(\w+)\s*=\s*(?:await\s+)?JSON\.parse\(([^)]+)\);?$")
PY_JSON_LOADS = re.compile(r"^(\w+)\s*=\s*json\.loads\(([^)]+)\)$")


@dataclass
class RepairContext:
    """Everything a fix strategy may inspect about an error."""

    error_type: str
    error_message: str
    project_root: Path
    stack_trace: str | None = None
    file_path: str | None = None
    line_number: int | None = None
    backup_rpc_urls: list[str] = field(default_factory=lambda: list(DEFAULT_BACKUP_RPCS))
    http: httpx.AsyncClient | None = None


def _lines(path: Path) -> list[str]:
    return path.read_text(encoding="utf-8").splitlines()


def _line_at(ctx: RepairContext) -> tuple[Path, list[str], str] | None:
    """Resolve ctx to (file, lines, reported line), if all are available."""
    if not ctx.file_path or not ctx.line_number:
        return None
    path = resolve_file(ctx.file_path, ctx.project_root)
    if not path:
        return None
    lines = _lines(path)
    if ctx.line_number > len(lines):
        return None
    return path, lines, lines[ctx.line_number - 1]


def _near(lines: list[str], line_number: int | None, radius: int = 20) -> list[str]:
    """Lines within radius of line_number (1-based), or the whole file."""
    if not line_number:
        return lines
    start = max(0, line_number - 1 - radius)
    return lines[start:line_number - 1 + radius]


async def rotate_rpc_endpoint(ctx: RepairContext) -> RepairResult | None:
    """Swap a failing RPC URL for a backup on a different host."""
    for path in find_files_containing(ctx.project_root, RPC_REFERENCE, CONFIG_EXTENSIONS):
        for line in _lines(path):
            if not RPC_REFERENCE.search(line):
                continue
            url_match = URL_PATTERN.search(line)
            if not url_match:
                continue
            current = url_match.group(0)
            current_host = urlparse(current).hostname
            for backup in ctx.backup_rpc_urls:
                if urlparse(backup).hostname == current_host:
                    continue
                return RepairResult(
                    diagnosis=(
                        f"RPC endpoint {current} is unreachable. "
                        f"Rotated to backup endpoint {backup}."
                    ),
                    category=RepairCategory.RPC_ROTATION.value,
                    original_code=line,
                    repaired_code=line.replace(current, backup),
                    file_path=str(path),
                )
    return None


async def halve_rate_limit(ctx: RepairContext) -> RepairResult | None:
    """Halve a per-hour operation cap (never below 2)."""
    for path in find_files_containing(ctx.project_root, RATE_LIMIT_SETTING, CONFIG_EXTENSIONS):
        for line in _lines(path):
            match = RATE_LIMIT_SETTING.search(line)
            if not match:
                continue
            current = int(match.group(3))
            reduced = max(MIN_RATE_LIMIT, current // 2)
            if reduced == current:
                continue
            return RepairResult(
                diagnosis=(
                    f"Rate limited by the API. Reduced {match.group(1)} "
                    f"from {current} to {reduced}."
                ),
                category=RepairCategory.RATE_LIMIT_ADJUST.value,
                original_code=match.group(0),
                repaired_code=f"{match.group(1)}{match.group(2)}{reduced}",
                file_path=str(path),
            )
    return None


async def swap_deprecated_model(ctx: RepairContext) -> RepairResult | None:
    """Replace a retired model identifier using the migration table."""
    match = MODEL_NAME.search(ctx.error_message)
    if not match:
        return None
    bad_model = match.group(1)
    replacement = MODEL_MIGRATIONS.get(bad_model)
    if not replacement:
        return None

    quoted = re.compile(rf"(['\"`]){re.escape(bad_model)}\1")
    files = find_files_containing(ctx.project_root, quoted, CONFIG_EXTENSIONS)
    if not files:
        return None
    for line in _lines(files[0]):
        if quoted.search(line):
            return RepairResult(
                diagnosis=f"Model '{bad_model}' is deprecated. Switched to '{replacement}'.",
                category=RepairCategory.MODEL_FALLBACK.value,
                original_code=line,
                repaired_code=quoted.sub(rf"\g<1>{replacement}\g<1>", line),
                file_path=str(files[0]),
            )
    return None


async def double_timeout(ctx: RepairContext) -> RepairResult | None:
    """Double a timeout literal near the failing line, capped at 60s."""
    if not ctx.file_path:
        return None
    path = resolve_file(ctx.file_path, ctx.project_root)
    if not path:
        return None

    for line in _near(_lines(path), ctx.line_number):
        match = TIMEOUT_SETTING.search(line)
        if not match:
            continue
        current = int(match.group(2))
        doubled = min(MAX_TIMEOUT_MS, current * 2)
        if doubled == current:
            return None
        return RepairResult(
            diagnosis=f"Request timed out. Increased timeout from {current}ms to {doubled}ms.",
            category=RepairCategory.RETRY_LOGIC.value,
            original_code=line,
            repaired_code=line.replace(match.group(0), f"{match.group(1)}{doubled}", 1),
            file_path=str(path),
        )
    return None


def _import_variants(broken: str) -> list[str]:
    variants = [
        re.sub(r"\.js$", ".ts", broken),
        re.sub(r"\.ts$", ".js", broken),
        broken + "/index",
        re.sub(r"/index$", "", broken),
        broken.replace("/dist/", "/src/"),
        broken.replace("/src/", "/dist/"),
    ]
    seen: list[str] = []
    for variant in variants:
        if variant != broken and variant not in seen:
            seen.append(variant)
    return seen


async def fix_import_path(ctx: RepairContext) -> RepairResult | None:
    """Point a broken relative import at a variant that exists on disk."""
    match = MISSING_MODULE.search(ctx.error_message)
    if not match:
        return None
    broken = match.group(1)

    if not broken.startswith((".", "/")):
        if (ctx.project_root / "node_modules" / broken).exists():
            return None
        return RepairResult(
            diagnosis=f"Package '{broken}' is not installed. Run: npm install {broken}",
            category=RepairCategory.IMPORT_FIX.value,
            file_path=ctx.file_path,
        )

    if not ctx.file_path:
        return None
    source = resolve_file(ctx.file_path, ctx.project_root)
    if not source:
        return None

    import_line = next(
        (line for line in _lines(source) if f"'{broken}'" in line or f'"{broken}"' in line),
        None,
    )
    if import_line is None:
        return None

    for variant in _import_variants(broken):
        base = str((source.parent / variant).resolve())
        for suffix in ("", ".ts", ".js", ".mjs", "/index.ts", "/index.js"):
            candidate = Path(base + suffix)
            if candidate.is_file():
                return RepairResult(
                    diagnosis=(
                        f"Import path '{broken}' not found. Fixed to '{variant}' "
                        f"(file exists at {candidate})."
                    ),
                    category=RepairCategory.IMPORT_FIX.value,
                    original_code=import_line,
                    repaired_code=import_line.replace(broken, variant),
                    file_path=str(source),
                )
    return None


async def fix_column_name(ctx: RepairContext) -> RepairResult | None:
    """Swap camelCase/snake_case column names when the bad one is in the file."""
    match = MISSING_COLUMN.search(ctx.error_message)
    if not match:
        return None
    bad_column = match.group(1)
    replacement = COLUMN_MIGRATIONS.get(bad_column)
    if not replacement or not ctx.file_path:
        return None
    path = resolve_file(ctx.file_path, ctx.project_root)
    if not path:
        return None

    token = re.compile(rf"\b{re.escape(bad_column)}\b")
    lines = _lines(path)
    for line in _near(lines, ctx.line_number) + lines:
        if token.search(line):
            return RepairResult(
                diagnosis=(
                    f"Database column '{bad_column}' doesn't exist. Likely renamed to "
                    f"'{replacement}' (snake_case/camelCase migration)."
                ),
                category=RepairCategory.QUERY_FIX.value,
                original_code=line,
                repaired_code=token.sub(replacement, line),
                file_path=str(path),
            )
    return None


async def add_optional_chaining(ctx: RepairContext) -> RepairResult | None:
    """Soften the property chain that read from undefined/null."""
    located = _line_at(ctx)
    if not located:
        return None
    path, _, line = located
    if path.suffix == ".py":
        return None

    chains = PROPERTY_CHAIN.findall(line)
    if not chains:
        return None
    prop_match = READ_PROPERTY.search(ctx.error_message)
    prop = prop_match.group(1) if prop_match else None
    target = next((c for c in chains if prop and f".{prop}" in c), chains[0])
    safe = "?.".join(target.split("."))

    return RepairResult(
        diagnosis=(
            f"Property access on undefined/null object. "
            f"Added optional chaining: '{target}' -> '{safe}'."
        ),
        category=RepairCategory.TYPE_FIX.value,
        original_code=line,
        repaired_code=line.replace(target, safe, 1),
        file_path=str(path),
    )


async def guard_json_parse(ctx: RepairContext) -> RepairResult | None:
    """Wrap a JSON parse statement in try/catch with a typed fallback."""
    located = _line_at(ctx)
    if not located:
        return None
    path, _, line = located
    stripped = line.strip()
    indent = line[: len(line) - len(line.lstrip())]

    if path.suffix == ".py":
        match = PY_JSON_LOADS.match(stripped)
        if not match:
            return None
        var, arg = match.groups()
        repaired = "\n".join(
            [
                "try:",
                f"{indent}    {var} = json.loads({arg})",
                f"{indent}except (TypeError, ValueError):",
                f"{indent}    {var} = {arg} if isinstance({arg}, dict) else {{}}",
            ]
        )
    else:
        match = JS_JSON_PARSE.match(stripped)
        if not match:
            return None
        var, arg = match.groups()
        repaired = "\n".join(
            [
                f"let {var};",
                f"{indent}try {{",
                f"{indent}  {var} = JSON.parse({arg});",
                f"{indent}}} catch (parseErr) {{",
                f"{indent}  console.error('[health] JSON parse failed, using fallback:', parseErr.message);",
                f"{indent}  {var} = typeof {arg} === 'object' ? {arg} : {{}};",
                f"{indent}}}",
            ]
        )

    return RepairResult(
        diagnosis=(
            "JSON parse failed on an unexpected response format. "
            "Added a guarded parse with an object fallback."
        ),
        category=RepairCategory.TYPE_FIX.value,
        original_code=stripped,
        repaired_code=repaired,
        file_path=str(path),
    )


async def bump_conflicting_port(ctx: RepairContext) -> RepairResult | None:
    """Move a configured port that is already in use to the next one."""
    match = PORT_IN_MESSAGE.search(ctx.error_message)
    if not match:
        return None
    port = int(match.group(1))
    setting = re.compile(rf"((?:PORT|port)\s*[:=]\s*){port}\b")

    files = find_files_containing(ctx.project_root, setting, (".ts", ".js", ".env", ".py"))
    if not files:
        return None
    for line in _lines(files[0]):
        found = setting.search(line)
        if found:
            return RepairResult(
                diagnosis=f"Port {port} already in use. Changed to {port + 1}.",
                category=RepairCategory.CONFIG_FIX.value,
                original_code=found.group(0),
                repaired_code=f"{found.group(1)}{port + 1}",
                file_path=str(files[0]),
            )
    return None


def _endpoint_variants(url: str) -> list[str]:
    variants = [
        url.replace("/v1/", "/v2/"),
        url.replace("/v2/", "/v3/"),
        url.replace("/api/", "/api/v1/"),
        url.replace("http://", "https://"),
    ]
    return [v for i, v in enumerate(variants) if v != url and v not in variants[:i]]


async def _endpoint_reachable(client: httpx.AsyncClient, url: str) -> bool:
    try:
        response = await client.head(url, timeout=PROBE_TIMEOUT_SECONDS)
    except httpx.HTTPError as e:
        logger.debug("Probe of %s failed: %s", url, e)
        return False
    return response.is_success or response.status_code == 401


async def heal_endpoint_404(ctx: RepairContext) -> RepairResult | None:
    """Adopt the first versioned URL variant that answers."""
    url_match = URL_PATTERN.search(ctx.error_message)
    if not url_match or not ctx.file_path:
        return None
    bad_url = url_match.group(0)
    path = resolve_file(ctx.file_path, ctx.project_root)
    if not path or bad_url not in path.read_text(encoding="utf-8"):
        return None

    async def first_working(client: httpx.AsyncClient) -> str | None:
        for variant in _endpoint_variants(bad_url):
            if await _endpoint_reachable(client, variant):
                return variant
        return None

    if ctx.http is not None:
        working = await first_working(ctx.http)
    else:
        async with httpx.AsyncClient() as client:
            working = await first_working(client)

    if not working:
        return None
    return RepairResult(
        diagnosis=f"API endpoint returned 404 at '{bad_url}'. Found working endpoint at '{working}'.",
        category=RepairCategory.API_ENDPOINT.value,
        original_code=bad_url,
        repaired_code=working,
        file_path=str(path),
    )
