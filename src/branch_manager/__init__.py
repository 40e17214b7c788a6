"""branch-manager: Git branch workflows with validation, snapshots and an audit trail."""

# Guard against deleted CWD (e.g. directory removed by another process).
# rich crashes on import if os.getcwd() fails, so recover before any imports.
import os

try:
    os.getcwd()
except (OSError, PermissionError):
    os.chdir(os.path.expanduser("~"))

from ._version import __version__
from .audit import AuditEntry, AuditLog, OperationStats, OperationStatus, setup_logging
from .backup import BackupManager, RestoreResult, Snapshot
from .branches import BranchEngine, CleanupReport
from .cli import app
from .config import Config, ConfigStore, StatePaths, resolve_state_dir
from .context import EngineContext, OperationResult
from .errors import BranchManagerError, ErrorCategory, LockHeldError, OperationCancelled
from .executor import CommandExecutor, CommandResult, classify_failure
from .formatters import OutputFormatter
from .inspector import (
    BranchSyncInfo,
    RepositoryInspector,
    SyncStatus,
    UpstreamRef,
    WorkingTreeReport,
)
from .locking import operation_lock
from .manager import BranchManager, RepositoryStatus, WorkflowReport
from .menu import MenuMachine, MenuState
from .merge import (
    Conflict,
    ConflictComplexity,
    MergeEngine,
    MergeOutcome,
    MergePreview,
    MergeStatus,
    MergeStrategy,
)
from .prompts import AutoPrompter, Choice, ConsolePrompter, Prompter
from .sync import SyncAction, SyncEngine, SyncOutcome, SyncStrategy
from .workflow import BranchType, WorkflowName, WorkflowPatterns

__all__ = [
    # Version
    "__version__",
    # CLI
    "app",
    "MenuMachine",
    "MenuState",
    # Models
    "AuditEntry",
    "BranchSyncInfo",
    "CleanupReport",
    "Config",
    "Conflict",
    "ConflictComplexity",
    "MergeOutcome",
    "MergePreview",
    "MergeStatus",
    "MergeStrategy",
    "OperationResult",
    "OperationStats",
    "OperationStatus",
    "RepositoryStatus",
    "RestoreResult",
    "Snapshot",
    "StatePaths",
    "SyncAction",
    "SyncOutcome",
    "SyncStatus",
    "SyncStrategy",
    "UpstreamRef",
    "WorkflowReport",
    "WorkingTreeReport",
    # Errors
    "BranchManagerError",
    "ErrorCategory",
    "LockHeldError",
    "OperationCancelled",
    # Operations
    "AuditLog",
    "BackupManager",
    "BranchEngine",
    "BranchManager",
    "CommandExecutor",
    "CommandResult",
    "ConfigStore",
    "EngineContext",
    "MergeEngine",
    "RepositoryInspector",
    "SyncEngine",
    # Workflow
    "BranchType",
    "WorkflowName",
    "WorkflowPatterns",
    # Prompts
    "AutoPrompter",
    "Choice",
    "ConsolePrompter",
    "Prompter",
    # Functions
    "classify_failure",
    "operation_lock",
    "resolve_state_dir",
    "setup_logging",
    # Formatters
    "OutputFormatter",
]
