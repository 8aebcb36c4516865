from milhouse.sessions.models import SessionRecord, SessionStatus
from milhouse.sessions.store import SessionRegistry

__all__ = ["SessionRecord", "SessionRegistry", "SessionStatus"]
