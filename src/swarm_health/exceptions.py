"""
Exception classes for the health control plane.

- HealthError: base for everything raised by swarm_health
- InvalidAgentNameError: agent name unsafe to interpolate into a command
- RestartError: one restart mechanism failed
- RestartEscalationError: every restart mechanism failed
- LLMUnavailableError: no text-generation provider produced a response

Exceptions carry their context as attributes so callers can log or
record them without parsing messages.
"""


class HealthError(Exception):
    """Base class for control plane errors."""


class InvalidAgentNameError(HealthError):
    """
    Raised when an agent name cannot be safely used as a process,
    container or unit name.

    Attributes:
        agent_name: The rejected name
        reason: Why it was rejected
    """

    def __init__(self, agent_name: str, reason: str) -> None:
        self.agent_name = agent_name
        self.reason = reason
        super().__init__(f"Invalid agent name {agent_name!r}: {reason}")


class RestartError(HealthError):
    """
    Raised by a restart strategy that could not restart the agent.

    Attributes:
        strategy: Name of the mechanism that failed
        agent_name: Agent being restarted
        detail: Error output or exception text
    """

    def __init__(self, strategy: str, agent_name: str, detail: str) -> None:
        self.strategy = strategy
        self.agent_name = agent_name
        self.detail = detail
        super().__init__(f"{strategy} restart of {agent_name} failed: {detail}")


class RestartEscalationError(HealthError):
    """
    Raised when every restart mechanism failed.

    Attributes:
        agent_name: Agent being restarted
        failures: The individual RestartError from each mechanism
    """

    def __init__(self, agent_name: str, failures: list[RestartError]) -> None:
        self.agent_name = agent_name
        self.failures = failures
        tried = ", ".join(f.strategy for f in failures)
        super().__init__(f"All restart mechanisms failed for {agent_name} ({tried})")


class LLMUnavailableError(HealthError):
    """
    Raised when no configured provider returned a completion.

    Attributes:
        errors: Provider name mapped to the error it raised
    """

    def __init__(self, errors: dict[str, str]) -> None:
        self.errors = errors
        if errors:
            detail = "; ".join(f"{name}: {err}" for name, err in errors.items())
        else:
            detail = "no provider configured"
        super().__init__(f"No text-generation provider available ({detail})")
