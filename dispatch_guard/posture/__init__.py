"""Security posture — score, bounded event log and recommendations."""

from dispatch_guard.posture.monitor import (
    CHECK_TASK,
    RECOVERY_TASK,
    PostureSnapshot,
    SecurityPostureMonitor,
)

__all__ = ["SecurityPostureMonitor", "PostureSnapshot", "CHECK_TASK", "RECOVERY_TASK"]
