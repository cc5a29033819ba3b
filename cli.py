import argparse
import sys

from dotenv import load_dotenv
from werkzeug.security import generate_password_hash

from auth import register_user
from errors import DuplicateUserError, JournalError
from insights import build_dashboard
from journal_utils import create_entry, create_user, get_user_by_email, list_entries
from reflection import ping
from timeutil import format_display_time, format_hours


CLI_EMAIL = "cli@consciousconsumption.app"
CLI_NAME = "CLI User"


def _ensure_cli_user_id() -> int:
    user = get_user_by_email(CLI_EMAIL)
    if user:
        return user["id"]
    try:
        return create_user(CLI_NAME, CLI_EMAIL, generate_password_hash("cli-local-user"))
    except DuplicateUserError:
        # Created concurrently by another invocation.
        return get_user_by_email(CLI_EMAIL)["id"]


def cmd_register(name: str, email: str, password: str) -> None:
    user_id = register_user(name, email, password)
    print(f"Registered {email.strip().lower()} as user #{user_id}")


def cmd_add(apps: list[str], minutes: int, reflection: str, tags: list[str]) -> None:
    entry_id = create_entry(apps, minutes, reflection, tags, session_user_id=_ensure_cli_user_id())
    print(f"Saved entry #{entry_id} | {', '.join(apps)} | {format_hours(minutes)}")


def cmd_list() -> None:
    entries = list_entries(_ensure_cli_user_id())
    if not entries:
        print("No entries yet.")
        return
    for entry in entries:
        print(
            f"[{format_display_time(entry['created_at'])}] {', '.join(entry['apps'])} "
            f"({format_hours(entry['screen_time'])}) {' '.join(entry['tags'])}: {entry['reflection']}"
        )


def cmd_insights() -> None:
    dashboard = build_dashboard(list_entries(_ensure_cli_user_id()), user_name=CLI_NAME)
    for line in dashboard["summary"]:
        print(line)
    if dashboard["app_minutes"]:
        print("Screen time by app:")
        for app, minutes in dashboard["app_minutes"].items():
            print(f"  {app}: {format_hours(minutes)} across {dashboard['app_counts'][app]} entries")


def cmd_ping_ai() -> int:
    ok, message = ping()
    if ok:
        print(f"Gemini API key is working: {message}")
        return 0
    print(f"Gemini API check failed: {message}", file=sys.stderr)
    return 1


def main() -> int:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Conscious Consumption journal CLI")
    sub = parser.add_subparsers(dest="command")

    register_parser = sub.add_parser("register", help="Create an account")
    register_parser.add_argument("name")
    register_parser.add_argument("email")
    register_parser.add_argument("password")

    add_parser = sub.add_parser("add", help="Add journal entry")
    add_parser.add_argument("--app", dest="apps", action="append", required=True, help="App used (repeatable)")
    add_parser.add_argument("--minutes", type=int, required=True, help="Screen time in minutes")
    add_parser.add_argument("--tag", dest="tags", action="append", default=[], help="Emotional tag (repeatable)")
    add_parser.add_argument("reflection", type=str, help="Reflection text")

    sub.add_parser("list", help="List entries")
    sub.add_parser("insights", help="Show dashboard insights")
    sub.add_parser("ping-ai", help="Check that the Gemini API key works")

    args = parser.parse_args()
    try:
        if args.command == "register":
            cmd_register(args.name, args.email, args.password)
        elif args.command == "add":
            cmd_add(args.apps, args.minutes, args.reflection, args.tags)
        elif args.command == "list":
            cmd_list()
        elif args.command == "insights":
            cmd_insights()
        elif args.command == "ping-ai":
            return cmd_ping_ai()
        else:
            parser.print_help()
    except JournalError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
