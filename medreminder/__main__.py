# medreminder/__main__.py
# Headless entry point:  python -m medreminder <command> ...
import argparse, sys
from pathlib import Path
from typing import List, Optional

from .config import LOG_FILENAME, app_base_dir
from .errors import InvalidMedication, MalformedBackup, NoActiveProfile
from .kvstore import EncryptedFileStore
from .logs import install_file_logging, recent_lines
from .models import Route
from .notifier import LoggingNotifier
from .service import MedicationService
from .store import EntityStore


def build_service(data_dir: Optional[str] = None) -> MedicationService:
    base = Path(data_dir) if data_dir else app_base_dir()
    install_file_logging(base / LOG_FILENAME)
    store = EntityStore(EncryptedFileStore.open_default(base))
    return MedicationService(store, LoggingNotifier())


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="medreminder", description="Medication reminders and dose log")
    p.add_argument("--data-dir", default="", help="Storage directory (default: app data dir).")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("profiles", help="List profiles; * marks the active one.")

    a = sub.add_parser("add-profile")
    a.add_argument("name")
    a.add_argument("--activate", action="store_true")

    a = sub.add_parser("activate")
    a.add_argument("name")

    a = sub.add_parser("delete-profile")
    a.add_argument("name")

    a = sub.add_parser("add-med", help="Add a medication to the active profile.")
    a.add_argument("--name", required=True)
    a.add_argument("--dose", required=True)
    a.add_argument("--route", default=Route.TABLET.value, choices=[r.value for r in Route])
    a.add_argument("--time", dest="times", action="append", default=[], help="HH:MM, repeatable.")
    a.add_argument("--notes", default="")

    a = sub.add_parser("delete-med")
    a.add_argument("medication_id")

    a = sub.add_parser("generate", help="Run the daily log generation check.")
    a.add_argument("--force", action="store_true", help="Generate even if already run today.")

    a = sub.add_parser("history")
    a.add_argument("--medication", default=None)

    a = sub.add_parser("take")
    a.add_argument("log_id")
    a.add_argument("--undo", action="store_true")

    a = sub.add_parser("export")
    a.add_argument("name", nargs="?", default=None, help="Profile name (default: active).")
    a.add_argument("-o", "--out", default=".")

    a = sub.add_parser("import")
    a.add_argument("path")

    a = sub.add_parser("clear", help="Delete every profile, medication and log.")
    a.add_argument("--yes", action="store_true")

    a = sub.add_parser("log", help="Show recent log lines.")
    a.add_argument("-n", "--lines", type=int, default=None, help="Only the last N lines.")
    return p.parse_args(argv)


def _profile_named(svc: MedicationService, name: Optional[str]):
    if name is None:
        return svc.require_active_profile()
    profile = svc.store.find_profile_by_name(name)
    if profile is None:
        raise SystemExit(f"no profile named {name!r}")
    return profile


def run(svc: MedicationService, a: argparse.Namespace) -> int:
    if a.cmd == "profiles":
        active = svc.store.active_profile()
        for p in svc.store.profiles():
            mark = "*" if active is not None and active.id == p.id else " "
            print(f"{mark} {p.id}  {p.name}")
    elif a.cmd == "add-profile":
        profile = svc.create_profile(a.name)
        if a.activate:
            svc.activate_profile(profile)
        print(profile.id)
    elif a.cmd == "activate":
        svc.activate_profile(_profile_named(svc, a.name))
    elif a.cmd == "delete-profile":
        svc.delete_profile(_profile_named(svc, a.name).id)
    elif a.cmd == "add-med":
        med = svc.add_medication(svc.store.active_profile(), a.name, a.dose, a.route, a.times, a.notes)
        print(med.id)
    elif a.cmd == "delete-med":
        svc.delete_medication(a.medication_id)
    elif a.cmd == "generate":
        profile = svc.require_active_profile()
        if a.force:
            svc.generator.generate(profile.id, svc.days_ahead)
            print("generated")
        else:
            print("generated" if svc.scheduler.ensure_current(profile.id) else "up to date")
    elif a.cmd == "history":
        profile = svc.require_active_profile()
        names = {m.id: m.name for m in svc.store.medications(profile.id)}
        for log in svc.history(profile.id, a.medication):
            status = f"taken {log.taken_time}" if log.taken else "pending"
            print(f"{log.scheduled_time[:16]}  {names.get(log.medication_id, 'Unknown')}  {status}  [{log.id}]")
    elif a.cmd == "take":
        if svc.set_log_taken(a.log_id, not a.undo) is None:
            print(f"no log {a.log_id}", file=sys.stderr)
            return 1
    elif a.cmd == "export":
        print(svc.write_backup(_profile_named(svc, a.name), Path(a.out)))
    elif a.cmd == "import":
        profile = svc.read_backup(Path(a.path))
        print(f"{profile.id}  {profile.name}")
    elif a.cmd == "clear":
        if not a.yes:
            print("refusing to clear without --yes", file=sys.stderr)
            return 1
        svc.clear_all_data()
    elif a.cmd == "log":
        path = Path(a.data_dir or app_base_dir()) / LOG_FILENAME
        print("\n".join(recent_lines(path, a.lines)))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    a = parse_args(argv)
    svc = build_service(a.data_dir or None)
    try:
        return run(svc, a)
    except NoActiveProfile:
        print("no active profile; use `activate NAME` first", file=sys.stderr)
        return 2
    except (InvalidMedication, MalformedBackup, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
