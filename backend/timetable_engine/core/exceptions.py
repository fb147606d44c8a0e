class AppError(Exception):
    """Base class for all engine exceptions."""
    def __init__(self, message: str, code: str = "engine_error", details: dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

class GenerationInProgressError(AppError):
    """Raised when another generation already holds the lock for a section."""
    def __init__(self, department_id: str, year: str, section: str):
        super().__init__(
            f"Timetable generation already running for {department_id}/{year}/{section}",
            code="generation_in_progress",
            details={"department_id": department_id, "year": year, "section": section},
        )

class PersistenceError(AppError):
    """Raised when a generated timetable cannot be stored."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, code="persistence_failed", details=details)
