"""
The Supervisor package.
Manages the lifecycle of the wrapped PocketBase process.

This package contains the central ProcessSupervisor class and its helper modules,
which together handle validation, provisioning, migrations, backups, spawning,
the readiness handshake and shutdown of the backend.
"""
from .supervisor import ProcessState, ProcessSupervisor

__all__ = ['ProcessState', 'ProcessSupervisor']
