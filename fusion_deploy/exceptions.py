"""
Custom exceptions for the Fusion 2018 deployment.
"""


class DeploymentError(Exception):
    """Base exception for all deployment errors."""
    pass


class ConfigurationError(DeploymentError):
    """Raised when the deployment plan is invalid or missing."""
    pass


class ValidationError(DeploymentError):
    """Raised when plan validation fails."""
    pass


class ExecutionError(DeploymentError):
    """Raised when a command cannot be started or a side effect fails."""
    
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


class ToolkitError(DeploymentError):
    """Raised when the deployment toolkit module cannot be loaded."""
    pass
