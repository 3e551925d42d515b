# ABOUTME: Exception definitions for the session persistence layer.
# ABOUTME: Store backends translate their own errors into PersistenceError.


class PersistenceError(Exception):
    """Raised when a session snapshot cannot be saved, loaded or deleted"""
    pass
