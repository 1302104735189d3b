# medreminder/app.py
# Kivy lifecycle shell: daily catch-up on start/resume, plus a background
# thread that re-checks while the app stays open.
from kivy.app import App
from kivy.clock import Clock
from kivy.uix.label import Label

from .config import LOG_FILENAME, app_base_dir
from .errors import NoActiveProfile
from .kvstore import EncryptedFileStore
from .logs import install_file_logging, logger
from .notifier import AndroidAlarmNotifier
from .scheduler import CatchUpThread
from .service import MedicationService
from .store import EntityStore


class MedicationReminderApp(App):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.service = None
        self._status = None
        self.catchup = None

    def build(self):
        self.title = "Medication Reminder"
        self._status = Label(text="Loading…")
        return self._status

    def on_start(self):
        base = app_base_dir()
        install_file_logging(base / LOG_FILENAME)
        logger.info(f"app start base={base}")
        store = EntityStore(EncryptedFileStore.open_default(base))
        self.service = MedicationService(store, AndroidAlarmNotifier())
        Clock.schedule_once(lambda *_: self.activated(), 0.4)
        self.catchup = CatchUpThread(self.service.scheduler)
        self.catchup.start()

    def on_stop(self):
        if self.catchup:
            self.catchup.stop()

    def on_pause(self):
        return True

    def on_resume(self):
        self.activated()

    def activated(self):
        if self.service is None:
            return
        try:
            ran = self.service.on_app_activated()
            profile = self.service.store.active_profile()
            self._status.text = f"{profile.name}: logs {'refreshed' if ran else 'current'}"
        except NoActiveProfile:
            self._status.text = "Select a profile"
        except Exception:
            logger.exception("activation failed")


def main():
    MedicationReminderApp().run()


if __name__ == "__main__":
    main()
