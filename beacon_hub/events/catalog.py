from __future__ import annotations

from enum import Enum


class EventType(str, Enum):
    """Known event names. The catalog is open: producers may send any string."""

    # User
    USER_SIGNED_UP = "user_signed_up"
    USER_SIGNED_IN = "user_signed_in"
    USER_SIGNED_OUT = "user_signed_out"
    USER_UPDATED_PROFILE = "user_updated_profile"
    USER_DELETED_ACCOUNT = "user_deleted_account"

    # Feature usage
    FEATURE_VIEWED = "feature_viewed"
    FEATURE_INTERACTION = "feature_interaction"
    FEATURE_COMPLETED = "feature_completed"
    FEATURE_ERROR = "feature_error"

    # Content
    CONTENT_VIEWED = "content_viewed"
    CONTENT_CREATED = "content_created"
    CONTENT_UPDATED = "content_updated"
    CONTENT_DELETED = "content_deleted"
    CONTENT_SHARED = "content_shared"

    # Navigation
    PAGE_VIEWED = "page_viewed"
    NAVIGATION_CLICKED = "navigation_clicked"
    EXTERNAL_LINK_CLICKED = "external_link_clicked"
    SEARCH_PERFORMED = "search_performed"

    # Settings
    SETTINGS_UPDATED = "settings_updated"
    PREFERENCES_CHANGED = "preferences_changed"
    NOTIFICATION_TOGGLED = "notification_toggled"

    # Subscription / payment
    SUBSCRIPTION_STARTED = "subscription_started"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    PAYMENT_INITIATED = "payment_initiated"
    PAYMENT_COMPLETED = "payment_completed"
    PAYMENT_FAILED = "payment_failed"

    # Errors
    APP_ERROR = "app_error"
    API_ERROR = "api_error"
    VALIDATION_ERROR = "validation_error"
    # reserved for track_error
    CONFIGURATION_ERROR = "configuration_error"


def event_name(event_type: "EventType | str") -> str:
    if isinstance(event_type, EventType):
        return event_type.value
    return str(event_type)
