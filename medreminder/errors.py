# medreminder/errors.py


class MedReminderError(Exception):
    pass


class StorageError(MedReminderError):
    def __init__(self, key: str, message: str = ""):
        self.key = key
        super().__init__(f"{key}: {message}" if message else key)


class StorageReadError(StorageError):
    pass


class StorageWriteError(StorageError):
    pass


class MalformedBackup(MedReminderError):
    """Backup text is not JSON, or lacks a usable ``profile`` object."""


class NoActiveProfile(MedReminderError):
    def __init__(self, message: str = "no active profile selected"):
        super().__init__(message)


class InvalidMedication(MedReminderError):
    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")
