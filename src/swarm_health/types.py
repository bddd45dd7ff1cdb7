"""
Record types for the health control plane.

This module defines the data structures shared by the store, the
heartbeat client, the repair engine and the monitor:
- Status/severity/priority enums (str enums for direct SQLite storage)
- Row dataclasses for heartbeats, errors, restarts, API health,
  repairs and bus messages
- RepairResult/RepairOutcome exchanged between repair tiers and callers
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AgentStatus(str, Enum):
    """Health state of a monitored agent."""

    ALIVE = "alive"
    DEGRADED = "degraded"
    DEAD = "dead"
    DISABLED = "disabled"


class Severity(str, Enum):
    """Severity of a reported agent error."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ApiStatus(str, Enum):
    """Reachability of an external dependency."""

    UP = "up"
    SLOW = "slow"
    DOWN = "down"
    UNKNOWN = "unknown"


class MessagePriority(str, Enum):
    """Bus message priority, highest first."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class RestartType(str, Enum):
    """Kind of recovery action recorded in agent_restarts."""

    FULL = "full"
    SOFT = "soft"
    FEATURE_DISABLE = "feature_disable"
    RPC_ROTATE = "rpc_rotate"
    MODEL_SWITCH = "model_switch"


class ReportType(str, Enum):
    """Why a health report was produced."""

    PERIODIC = "periodic"
    INCIDENT = "incident"
    RECOVERY = "recovery"
    MANUAL = "manual"


class RepairCategory(str, Enum):
    """Categories of code repair the engine knows how to attempt."""

    CONFIG_FIX = "config_fix"
    API_ENDPOINT = "api_endpoint"
    RPC_ROTATION = "rpc_rotation"
    MODEL_FALLBACK = "model_fallback"
    RATE_LIMIT_ADJUST = "rate_limit_adjust"
    IMPORT_FIX = "import_fix"
    QUERY_FIX = "query_fix"
    TYPE_FIX = "type_fix"
    RETRY_LOGIC = "retry_logic"


BROADCAST = "broadcast"


@dataclass
class AgentHeartbeat:
    """
    Latest liveness beat for one agent (one row per agent).

    Attributes:
        agent_name: Unique agent identity
        status: Stored health status
        last_beat: When the agent last reported in
        uptime_started: When the agent first reported in
        memory_mb: Resident memory at last beat
        cpu_percent: CPU usage at last beat
        error_count_last_5min: Errors the agent saw in its local window
        current_task: Task the agent was running, if any
        version: Agent build/version string
    """

    agent_name: str
    status: AgentStatus
    last_beat: datetime
    uptime_started: datetime | None = None
    memory_mb: float = 0.0
    cpu_percent: float = 0.0
    error_count_last_5min: int = 0
    current_task: str | None = None
    version: str | None = None


@dataclass
class AgentError:
    """An error reported by an agent."""

    agent_name: str
    error_type: str
    error_message: str
    severity: Severity = Severity.ERROR
    stack_trace: str | None = None
    file_path: str | None = None
    line_number: int | None = None
    context: dict[str, Any] = field(default_factory=dict)
    id: int | None = None
    resolved: bool = False
    created_at: datetime | None = None


@dataclass
class AgentRestart:
    """A triggered restart and its eventual outcome."""

    id: int
    agent_name: str
    reason: str
    restart_type: RestartType
    error_id: int | None
    success: bool | None
    recovery_time_ms: int | None
    created_at: datetime


@dataclass
class ApiHealthEntry:
    """Result of probing one external dependency."""

    api_name: str
    endpoint: str
    status: ApiStatus
    response_time_ms: int | None = None
    consecutive_failures: int = 0
    last_failure_reason: str | None = None
    last_check: datetime | None = None


@dataclass
class CodeRepairRecord:
    """
    A diagnosed code repair and its approval/apply lifecycle.

    Created at diagnosis time. Approved automatically or by an operator,
    applied only after approval, and possibly rolled back when the
    syntax gate fails or an exception interrupts the apply.
    """

    id: int
    error_id: int | None
    agent_name: str
    file_path: str
    error_type: str
    error_message: str
    diagnosis: str
    repair_category: str
    original_code: str
    repaired_code: str
    model_used: str
    prompt: str | None = None
    raw_response: str | None = None
    requires_approval: bool = True
    approved: bool | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    applied: bool = False
    applied_at: datetime | None = None
    test_passed: bool | None = None
    test_output: str | None = None
    rolled_back: bool = False
    rollback_reason: str | None = None
    rolled_back_at: datetime | None = None
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
        return result


@dataclass
class AgentMessage:
    """A command or alert travelling over the agent message bus."""

    id: int
    from_agent: str
    to_agent: str
    message_type: str
    priority: MessagePriority
    payload: dict[str, Any]
    expires_at: datetime | None = None
    acknowledged: bool = False
    created_at: datetime | None = None


@dataclass
class RepairResult:
    """
    A concrete or diagnosis-only fix proposed by a repair tier.

    A result with empty original_code/repaired_code is diagnosis-only
    and is never applied.
    """

    diagnosis: str
    category: str
    original_code: str = ""
    repaired_code: str = ""
    file_path: str | None = None
    confidence: float = 0.0
    requires_approval: bool = False

    @property
    def is_concrete(self) -> bool:
        return bool(self.original_code and self.repaired_code)


@dataclass
class RepairOutcome:
    """What evaluate_and_repair did with an error."""

    attempted: bool
    tier: int | None = None
    repair_id: int | None = None
    applied: bool = False
    needs_approval: bool = False
    diagnosis: str | None = None


@dataclass
class HealthReport:
    """A rendered snapshot of fleet and dependency health."""

    report_type: ReportType
    overall_status: str
    agents: dict[str, str]
    apis: dict[str, str]
    errors_24h: int
    restarts_24h: int
    repairs_24h: int
    pending_approvals: int
    memory_total_mb: float
    text: str
    id: int | None = None
    created_at: datetime | None = None
