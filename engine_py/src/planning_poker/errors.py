# engine_py/src/planning_poker/errors.py

class PokerError(Exception):
    """Base exception for session-related errors."""
    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")

# Specific error codes
SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
PLAYER_NOT_FOUND = "PLAYER_NOT_FOUND"
INVALID_NAME = "INVALID_NAME"
INVALID_EVENT = "INVALID_EVENT"
INTERNAL_ERROR = "INTERNAL"

# Helper function to raise common errors
def raise_error(code: str, message: str):
    raise PokerError(code, message)
