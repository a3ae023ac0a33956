"""
Exceptions raised by the deployment simulator.
"""


class DeploymentError(Exception):
    """Base class for all deployment simulator errors."""


class MalformedMessageError(DeploymentError):
    """A received message has an unexpected type or payload shape."""

    def __init__(self, msg_type, reason: str):
        self.msg_type = msg_type
        self.reason = reason
        super().__init__(f"Malformed {getattr(msg_type, 'name', msg_type)} message: {reason}")


class ConfigurationError(DeploymentError):
    """Configuration values are missing, unknown or inconsistent."""
