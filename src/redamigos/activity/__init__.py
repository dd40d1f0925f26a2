"""Activity feed for network-changing actions.

Entries are append-only; recording is best-effort so a failed write never
undoes the referral or registration that triggered it.
"""

from redamigos.activity.recorder import ActivityAction, ActivityRecorder, activity_recorder

__all__ = ["ActivityAction", "ActivityRecorder", "activity_recorder"]
