"""Activity event model."""

from .models import ActivityEvent, ActivityKind, activity_from_document  # noqa: F401
