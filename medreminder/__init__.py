# medreminder: medication reminders with a dated dose log per profile
from .errors import (InvalidMedication, MalformedBackup, MedReminderError, NoActiveProfile,
                     StorageError, StorageReadError, StorageWriteError)
from .models import Medication, MedicationLog, Profile, Route
from .store import EntityStore, StoreResult

__version__ = "1.0.0"
