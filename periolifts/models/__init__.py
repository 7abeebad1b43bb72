from periolifts.models.offline import CachedQuery, CachedRecord, PendingAction, PendingOperation


__all__ = [
    "CachedRecord",
    "CachedQuery",
    "PendingAction",
    "PendingOperation",
]
