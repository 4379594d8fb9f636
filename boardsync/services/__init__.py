from boardsync.services import (
    asana_service,
    custom_field_service,
    reconciler,
)


__all__ = [
    "asana_service",
    "custom_field_service",
    "reconciler",
]
