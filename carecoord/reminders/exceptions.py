class ReminderError(Exception):
    """Base class for reminder lifecycle errors"""


class ReminderNotFoundError(ReminderError):
    def __init__(self, reminder_id: str):
        super().__init__(f"Reminder {reminder_id} not found")
        self.reminder_id = reminder_id


class ReminderPermissionError(ReminderError):
    """Actor is neither the creator nor holds an elevated role"""


class ReminderValidationError(ReminderError):
    def __init__(self, field: str, message: str):
        super().__init__(f"{field}: {message}")
        self.field = field
        self.message = message


class ReminderConflictError(ReminderError):
    """The reminder changed underneath us (version check failed)"""

    def __init__(self, reminder_id: str):
        super().__init__(f"Reminder {reminder_id} was modified concurrently")
        self.reminder_id = reminder_id
