"""Notification admission exports."""

from .controller import NotificationAdmissionController, NotificationCenter, get_center  # noqa: F401
from .models import AdmissionDecision, NotificationPreferences, RejectReason  # noqa: F401
