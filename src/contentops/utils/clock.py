from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware UTC now; every timestamp the app writes goes through here."""
    return datetime.now(timezone.utc)
