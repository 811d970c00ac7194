"""
Exception types for the agent.

Startup errors abort the process before the scheduler starts. Everything
else is recoverable within a single collection cycle.
"""

from typing import Optional


class AgentError(Exception):
    """Base class for all agent errors"""
    pass


class StartupError(AgentError):
    """Fatal error raised before the collection loop starts"""
    pass


class ConfigError(StartupError):
    """Configuration is missing or invalid"""
    pass


class HostnameError(StartupError):
    """Local hostname could not be determined"""
    pass


class RegistrationError(StartupError):
    """Remote host registration failed"""
    pass


class IdentityError(StartupError):
    """Identity store exists but could not be read"""
    pass


class IdentityPersistError(StartupError):
    """Newly registered identity could not be written to the store"""
    pass


class CollectorError(AgentError):
    """A domain collector failed or timed out during a cycle"""

    def __init__(self, collector: str, message: str):
        super().__init__(f"{collector}: {message}")
        self.collector = collector


class ApiError(AgentError):
    """Remote API call failed"""

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable


class DeliveryError(AgentError):
    """Metrics batch could not be delivered after all attempts"""
    pass
