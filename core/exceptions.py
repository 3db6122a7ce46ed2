"""
Domain exceptions

Every business-rule rejection lives here so the API layer can map them in one
place. Each class carries the HTTP status it surfaces as and a stable `kind`
string that clients can switch on.
"""


class DropOneException(Exception):
    """Base class for all game exceptions"""
    status_code = 400
    kind = "GameError"


# ============ NotFound ============

class NotFound(DropOneException):
    """Referenced session / round / participant does not exist"""
    status_code = 404
    kind = "NotFound"


class SessionNotFound(NotFound):
    def __init__(self, session_id):
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class RoundNotFound(NotFound):
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} not found")


class ParticipantNotFound(NotFound):
    def __init__(self, participant_id):
        self.participant_id = participant_id
        super().__init__(f"Participant {participant_id} not found")


# ============ Submission errors ============

class WrongPhase(DropOneException):
    """Operation attempted outside its phase; re-fetch state before retrying"""
    status_code = 409
    kind = "WrongPhase"


class InvalidChoice(DropOneException):
    """Submitted gestures violate a structural rule"""
    status_code = 422
    kind = "InvalidChoice"


class NotLiving(DropOneException):
    """Participant is not active with lives left"""
    status_code = 409
    kind = "NotLiving"


# ============ Lifecycle errors ============

class DuplicateIdentity(DropOneException):
    """Identity already enrolled in this session"""
    status_code = 409
    kind = "DuplicateIdentity"


class SessionLocked(DropOneException):
    """Roster changes are no longer allowed for this session"""
    status_code = 409
    kind = "SessionLocked"


class InvalidTransition(DropOneException):
    """Illegal session / round / participant state transition"""
    status_code = 409
    kind = "InvalidTransition"


# ============ Infrastructure ============

class ConcurrencyConflict(DropOneException):
    """Serialization conflict; the whole operation is safe to retry"""
    status_code = 409
    kind = "ConcurrencyConflict"


class StoreUnavailable(DropOneException):
    """Persistence failure; nothing was applied"""
    status_code = 503
    kind = "StoreUnavailable"
