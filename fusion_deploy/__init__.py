"""
Fusion 2018 Deployment Library
Core modules for the install/uninstall orchestrator.
"""

# Exit codes
EXIT_SUCCESS = 0
EXIT_REBOOT_REQUIRED = 3010
EXIT_REBOOT_INITIATED = 1641
EXIT_DEPLOYMENT_FAILED = 60001
EXIT_TOOLKIT_MISSING = 60008
EXIT_INTERRUPTED = 130

__all__ = [
    'EXIT_SUCCESS',
    'EXIT_REBOOT_REQUIRED',
    'EXIT_REBOOT_INITIATED',
    'EXIT_DEPLOYMENT_FAILED',
    'EXIT_TOOLKIT_MISSING',
    'EXIT_INTERRUPTED',
]
