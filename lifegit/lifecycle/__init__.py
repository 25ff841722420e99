"""Goal-branch lifecycle state machine."""

from lifegit.lifecycle.manager import BranchLifecycleManager
from lifegit.lifecycle.versioning import VersionEvaluator, next_version

__all__ = ["BranchLifecycleManager", "VersionEvaluator", "next_version"]
