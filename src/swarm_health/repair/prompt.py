"""
Prompt builder and response parser for AI-assisted (Tier 2) repair.

The backend is asked for one fenced ```json block holding a minimal
original/repaired code pair and a confidence score. Its reply is
untrusted text: parse_repair_response locates that single block, then
validates it against RepairProposal, and returns None on any failure.
"""

import re

from pydantic import BaseModel, Field, ValidationError

MAX_STACK_CHARS = 1000
MAX_CONTEXT_CHARS = 2000
CONTEXT_RADIUS = 40
HEAD_LINES = 80

SYSTEM_PROMPT = """You are a senior engineer repairing a bug in a running production service.
You are given an error and the code around where it happened.
Propose the smallest possible edit that fixes the error.

Rules:
- original_code must be copied EXACTLY from the code shown (without line numbers or markers)
- repaired_code replaces original_code and must keep the surrounding indentation
- Change as little as possible; never refactor or reformat unrelated code
- If you are not confident in a fix, say so with a low confidence score
- Reply with a single ```json fenced block and nothing else"""

JSON_BLOCK = re.compile(r"```json\s*\n(.*?)\n?```", re.DOTALL)


class RepairProposal(BaseModel):
    """Structured repair proposed by a text-generation backend."""

    model_config = {"extra": "forbid"}

    diagnosis: str = Field(min_length=1, description="Root cause in one or two sentences")
    confidence: float = Field(ge=0.0, le=1.0, description="Confidence the edit fixes the error")
    original_code: str = Field(min_length=1, description="Exact code to replace")
    repaired_code: str = Field(min_length=1, description="Replacement code")


def build_code_context(lines: list[str], line_number: int | None) -> str:
    """
    Number the lines around the failing line, marking it with '>>>'.

    Without a line number, the head of the file is used.
    """
    if line_number and 0 < line_number <= len(lines):
        start = max(0, line_number - 1 - CONTEXT_RADIUS)
        end = min(len(lines), line_number + CONTEXT_RADIUS)
    else:
        start, end = 0, min(len(lines), HEAD_LINES)

    numbered = []
    for i in range(start, end):
        marker = ">>>" if line_number and i == line_number - 1 else "   "
        numbered.append(f"{marker} {i + 1:4d} | {lines[i]}")
    return "\n".join(numbered)


def build_repair_prompt(
    *,
    error_type: str,
    error_message: str,
    stack_trace: str | None,
    file_path: str,
    line_number: int | None,
    category: str,
    code_context: str,
) -> str:
    """Build the user prompt for a Tier 2 repair request."""
    stack = (stack_trace or "(no stack trace)")[:MAX_STACK_CHARS]
    return f"""{SYSTEM_PROMPT}

## Error
Type: {error_type}
Message: {error_message}
Repair category: {category}
File: {file_path}{f":{line_number}" if line_number else ""}

## Stack trace
{stack}

## Code
{code_context[:MAX_CONTEXT_CHARS]}

## Response format
```json
{{
  "diagnosis": "what is wrong and why",
  "confidence": 0.0,
  "original_code": "exact lines to replace",
  "repaired_code": "replacement lines"
}}
```"""


def parse_repair_response(text: str) -> RepairProposal | None:
    """
    Extract a RepairProposal from backend output.

    Returns None unless the text holds exactly one fenced json block
    that validates.
    """
    blocks = JSON_BLOCK.findall(text or "")
    if len(blocks) != 1:
        return None
    try:
        return RepairProposal.model_validate_json(blocks[0])
    except ValidationError:
        return None
