"""
SQLite schema for health records.

This module defines the database schema for:
- Agent liveness (one heartbeat row per agent)
- Reported errors with resolution tracking
- Restart attempts and their recovery outcome
- External dependency health
- Code repair records (diagnosis -> approval -> apply -> rollback)
- Periodic/incident health reports
- The inter-agent command/message bus
- The agent registry and key/value control plane settings

Timestamps are ISO8601 text written by the application so that range
comparisons are plain string comparisons.
"""

SCHEMA_SQL = """
-- One row per agent, upserted on every beat
CREATE TABLE IF NOT EXISTS agent_heartbeats (
    agent_name TEXT PRIMARY KEY,
    status TEXT NOT NULL DEFAULT 'alive',   -- alive, degraded, dead, disabled
    last_beat TEXT NOT NULL,
    uptime_started TEXT NOT NULL,
    memory_mb REAL NOT NULL DEFAULT 0,
    cpu_percent REAL NOT NULL DEFAULT 0,
    error_count_last_5min INTEGER NOT NULL DEFAULT 0,
    current_task TEXT,
    version TEXT,
    created_at TEXT NOT NULL
);

-- Errors reported by agents or the monitor itself
CREATE TABLE IF NOT EXISTS agent_errors (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_name TEXT NOT NULL,
    error_type TEXT NOT NULL,
    error_message TEXT NOT NULL,
    stack_trace TEXT,
    file_path TEXT,
    line_number INTEGER,
    severity TEXT NOT NULL DEFAULT 'error',  -- info, warning, error, critical
    context TEXT,                            -- JSON object
    resolved BOOLEAN NOT NULL DEFAULT 0,
    resolved_by TEXT,
    resolved_at TEXT,
    resolution_method TEXT,
    resolution_notes TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_agent_errors_agent_time
ON agent_errors(agent_name, created_at);

CREATE INDEX IF NOT EXISTS idx_agent_errors_unresolved
ON agent_errors(created_at) WHERE resolved = 0;

-- Restart attempts; success/recovery filled in once recovery resolves
CREATE TABLE IF NOT EXISTS agent_restarts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    agent_name TEXT NOT NULL,
    reason TEXT NOT NULL,
    restart_type TEXT NOT NULL DEFAULT 'full',  -- full, soft, feature_disable, rpc_rotate, model_switch
    error_id INTEGER REFERENCES agent_errors(id),
    success BOOLEAN,
    recovery_time_ms INTEGER,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_agent_restarts_agent_time
ON agent_restarts(agent_name, created_at);

-- One row per probed dependency
CREATE TABLE IF NOT EXISTS api_health (
    api_name TEXT PRIMARY KEY,
    endpoint TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'unknown',  -- up, slow, down, unknown
    response_time_ms INTEGER,
    consecutive_failures INTEGER NOT NULL DEFAULT 0,
    last_failure_reason TEXT,
    last_check TEXT NOT NULL
);

-- Code repairs from diagnosis through apply/rollback
CREATE TABLE IF NOT EXISTS code_repairs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    error_id INTEGER REFERENCES agent_errors(id),
    agent_name TEXT NOT NULL,
    file_path TEXT NOT NULL,
    error_type TEXT NOT NULL,
    error_message TEXT NOT NULL,
    diagnosis TEXT NOT NULL,
    repair_category TEXT NOT NULL,
    original_code TEXT NOT NULL,
    repaired_code TEXT NOT NULL,
    model_used TEXT NOT NULL,                -- tier1:<pattern id> or provider model
    prompt TEXT,
    raw_response TEXT,
    requires_approval BOOLEAN NOT NULL DEFAULT 1,
    approved BOOLEAN,                        -- NULL until decided
    approved_by TEXT,
    approved_at TEXT,
    applied BOOLEAN NOT NULL DEFAULT 0,
    applied_at TEXT,
    apply_attempted_at TEXT,                 -- set once any apply ran
    test_passed BOOLEAN,
    test_output TEXT,
    rolled_back BOOLEAN NOT NULL DEFAULT 0,
    rollback_reason TEXT,
    rolled_back_at TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_code_repairs_pending
ON code_repairs(created_at) WHERE approved IS NULL;

-- Rendered health reports
CREATE TABLE IF NOT EXISTS health_reports (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    report_type TEXT NOT NULL DEFAULT 'periodic',  -- periodic, incident, recovery, manual
    overall_status TEXT NOT NULL,
    agents_summary TEXT NOT NULL,            -- JSON object
    apis_summary TEXT NOT NULL,              -- JSON object
    errors_24h INTEGER NOT NULL DEFAULT 0,
    restarts_24h INTEGER NOT NULL DEFAULT 0,
    repairs_24h INTEGER NOT NULL DEFAULT 0,
    pending_approvals INTEGER NOT NULL DEFAULT 0,
    memory_total_mb REAL NOT NULL DEFAULT 0,
    report_text TEXT NOT NULL,
    posted_to TEXT,                          -- JSON list of delivery targets
    created_at TEXT NOT NULL
);

-- Command/alert bus between the control plane and agents
CREATE TABLE IF NOT EXISTS agent_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    from_agent TEXT NOT NULL,
    to_agent TEXT NOT NULL,                  -- agent name or 'broadcast'
    message_type TEXT NOT NULL,              -- command, repair_request, alert, ...
    priority TEXT NOT NULL DEFAULT 'medium', -- critical, high, medium, low
    payload TEXT NOT NULL,                   -- JSON object
    expires_at TEXT,
    acknowledged BOOLEAN NOT NULL DEFAULT 0,
    acknowledged_at TEXT,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_agent_messages_inbox
ON agent_messages(to_agent, acknowledged);

-- Known agents and their kind (long-running vs per-task child)
CREATE TABLE IF NOT EXISTS agent_registry (
    agent_name TEXT PRIMARY KEY,
    agent_type TEXT NOT NULL DEFAULT 'service',  -- service, token-child, ...
    parent_agent TEXT,                           -- supervisor for child agents
    enabled BOOLEAN NOT NULL DEFAULT 1,
    auto_restart BOOLEAN NOT NULL DEFAULT 1,
    max_memory_mb REAL,
    start_command TEXT,
    config TEXT,                                 -- JSON object
    created_at TEXT NOT NULL
);

-- Control plane settings that survive restarts (e.g. active AI provider)
CREATE TABLE IF NOT EXISTS health_config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""
