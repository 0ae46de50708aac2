from notam_dashboard.models.notam import (
    Category,
    ChangeEvent,
    FetchResult,
    FetchStatus,
    FreeformItem,
    NewNotamMarker,
    NotamRecord,
    RawItem,
    ScheduleQueueEntry,
    Source,
    StructuredItem,
)

__all__ = [
    "Category",
    "ChangeEvent",
    "FetchResult",
    "FetchStatus",
    "FreeformItem",
    "NewNotamMarker",
    "NotamRecord",
    "RawItem",
    "ScheduleQueueEntry",
    "Source",
    "StructuredItem",
]
