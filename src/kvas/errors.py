"""KVAS error taxonomy."""


class KvasError(Exception):
    """Base error for KVAS operations."""

    def __init__(self, message: str, code: str = "KVAS_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class ConfigurationError(KvasError):
    """Required credentials or environment are missing at startup."""

    def __init__(self, message: str):
        super().__init__(message, "CONFIGURATION_ERROR")


class ProvisionError(KvasError):
    """Cloud resource acquisition failed."""

    def __init__(self, role: str, task_id: str, reason: str):
        super().__init__(
            f"Could not provision {role} VM for task {task_id}: {reason}",
            "PROVISION_ERROR",
        )
        self.role = role
        self.task_id = task_id
        self.reason = reason


class RemoteConnectionError(KvasError):
    """Remote shell channel could not be established."""

    def __init__(self, instance: str, attempts: int):
        super().__init__(
            f"{instance} - could not establish ssh connection after {attempts} attempts",
            "CONNECTION_ERROR",
        )
        self.instance = instance
        self.attempts = attempts


class CommandError(KvasError):
    """Remote command exited with a non-zero status."""

    def __init__(self, instance: str, command: str, exit_code: int, stderr_excerpt: str = ""):
        super().__init__(
            f"{instance} - `{command}` exited with code {exit_code}",
            "COMMAND_ERROR",
        )
        self.instance = instance
        self.command = command
        self.exit_code = exit_code
        self.stderr_excerpt = stderr_excerpt


class TaskNotFound(KvasError):
    """Task does not exist."""

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}", "TASK_NOT_FOUND")
        self.task_id = task_id


class InvalidStateTransition(KvasError):
    """Invalid task state transition."""

    def __init__(self, current_state: str, requested_state: str):
        super().__init__(
            f"Invalid transition from {current_state} to {requested_state}",
            "INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.requested_state = requested_state


class UnknownTopology(KvasError):
    """Requested cluster topology is not supported."""

    def __init__(self, value: str):
        super().__init__(f"Unknown cluster topology: {value}", "UNKNOWN_TOPOLOGY")
        self.value = value
