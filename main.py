"""Command-line interface for the Kinetic School portal."""

from __future__ import annotations
import argparse
import logging
import sys
from getpass import getpass
from pathlib import Path
from typing import Sequence

from portal.config import PortalConfig, load_config
from portal.directory import CREATABLE_ROLES, UserDirectory
from portal.errors import CorruptPersistedState
from portal.records import RecordStore
from portal.web import build_record_store

logger = logging.getLogger("kinetic.portal.main")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Kinetic School portal utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (default: PORTAL_CONFIG or config/portal.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Create the database and the founding director account")

    serve_parser = subparsers.add_parser("serve", help="Start the portal web server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to listen on (default: 8000)")

    subparsers.add_parser("list-users", help="Print every registered account")

    create_parser = subparsers.add_parser("create-user", help="Create an account as the founding director")
    create_parser.add_argument("name", help="Display name for the user")
    create_parser.add_argument("email", help="Unique email address for login")
    create_parser.add_argument("--role", choices=CREATABLE_ROLES, default="client")

    reset_parser = subparsers.add_parser("reset-data", help="Discard all portal data and reseed it")
    reset_parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "list-users", "create-user", "reset-data"}

    global_args: list[str] = []
    while args_list and args_list[0] == "--config" and len(args_list) > 1:
        global_args.extend(args_list[:2])
        args_list = args_list[2:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(global_args + args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(global_args + args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(global_args + args_list)


def _serve(config: PortalConfig, records: RecordStore, *, host: str, port: int) -> None:
    from portal.web import create_app
    import uvicorn

    logger.info("Starting portal on http://%s:%s", host, port)
    app = create_app(records=records, config=config)
    uvicorn.run(app, host=host, port=port, log_level="info")


def _list_users(records: RecordStore) -> None:
    users = UserDirectory(records).list_users()
    print(f"{len(users)} user(s) found:")
    print(f"{'ID':<22}  {'Name':<24}  {'Email':<32}  {'Role':<9}  Last activity")
    print("-" * 110)
    for user in users:
        last = user.last_activity.strftime("%Y-%m-%d %H:%M:%S %Z")
        print(f"{user.id:<22}  {user.name:<24}  {user.email:<32}  {user.role:<9}  {last}")


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass("Password: ")
        if not password.strip():
            print("Password must not be empty. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _create_user(records: RecordStore, *, name: str, email: str, role: str) -> int:
    directory = UserDirectory(records)
    director = next((u for u in directory.list_users() if u.is_director), None)
    if director is None:
        print("No director account exists; run reset-data to reseed.", file=sys.stderr)
        return 1

    password = _prompt_for_password()
    if password is None:
        print("Aborted creating user.", file=sys.stderr)
        return 1

    try:
        user = directory.create_user(director, email=email.strip(), password=password, name=name.strip(), role=role)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created {user.role} {user.id}: {user.name} <{user.email}>")
    return 0


def _reset_data(records: RecordStore, *, confirmed: bool) -> int:
    if not confirmed:
        answer = input("This deletes every account, application and log entry. Type 'reset' to continue: ")
        if answer.strip() != "reset":
            print("Reset cancelled.")
            return 1
    records.reset()
    print("Portal data reset to the seed state.")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    args = _parse_args(argv)
    config = load_config(Path(args.config) if args.config else None)
    records = build_record_store(config)
    logger.info("Using database at %s", config.database_path)

    if args.command == "reset-data":
        return _reset_data(records, confirmed=args.yes)

    try:
        records.load()
        if args.command == "serve":
            _serve(config, records, host=args.host, port=args.port)
        elif args.command == "list-users":
            _list_users(records)
        elif args.command == "create-user":
            return _create_user(records, name=args.name, email=args.email, role=args.role)
        elif args.command == "init-db":
            print("Database initialisation complete.")
    except CorruptPersistedState as exc:
        logger.exception("Portal data at %s is unreadable", config.database_path)
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
