#!/usr/bin/env python3
"""
authgate -- account and enforcement administration from the command line.

Works directly against the configured database and enforcement file, so it is
usable while the API is down. A server that is running picks up enforcement
changes within ENFORCEMENT_CACHE_SECONDS.

The auth commands only touch the enforcement file and never open the
database, so enforcement can be changed even when DATABASE_URL is unusable.

Usage:
  python main.py add-user alice --role admin
  python main.py list-users
  python main.py set-role alice user
  python main.py deactivate alice
  python main.py reset-password alice
  python main.py delete-user alice            # asks for confirmation
  python main.py delete-user alice --yes
  python main.py auth status
  python main.py auth off --by ops-oncall

Environment variables (see core/config.py):
  DATABASE_URL       SQLAlchemy URL of the users database
  AUTH_CONFIG_PATH   Path of the enforcement JSON file
  BCRYPT_ROUNDS      bcrypt cost factor for new hashes
"""

import argparse
import getpass
import sys

from auth.enforcement import EnforcementToggle
from auth.errors import DuplicateUsername, HashingFailure, NotFound, PersistenceFailure
from auth.models import Role
from auth.passwords import PasswordHasher, assess_strength
from auth.store import UserStore
from core.config import get_settings


def _open_store(hasher: PasswordHasher) -> UserStore:
    settings = get_settings()
    store = UserStore(settings.database_url, timeout=settings.db_timeout_seconds)
    store.initialize(hasher)
    return store


def _confirm(question: str) -> bool:
    answer = input(f"{question} (yes/no): ")
    return answer.strip().lower() == "yes"


def _read_new_password(given: str | None) -> str | None:
    """Return a policy-compliant password, or None after printing why not."""
    if given is None:
        given = getpass.getpass("Password: ")
        if getpass.getpass("Confirm password: ") != given:
            print("  [!] Passwords do not match.")
            return None
    report = assess_strength(given)
    if not report.valid:
        print("  [!] Password does not meet policy:")
        for violation in report.violations:
            print(f"      - {violation}")
        return None
    return given


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_add_user(args: argparse.Namespace, store: UserStore, hasher: PasswordHasher) -> int:
    password = _read_new_password(args.password)
    if password is None:
        return 1
    try:
        user_id = store.create_account(args.username, hasher.hash(password), Role(args.role))
    except DuplicateUsername:
        print(f"  [!] User '{args.username}' already exists (usernames stay reserved after deactivation).")
        return 1
    print(f"  Created user '{args.username}' (id={user_id}, role={args.role}).")
    return 0


def cmd_list_users(args: argparse.Namespace, store: UserStore, hasher: PasswordHasher) -> int:
    views = store.list_all()
    if not views:
        print("  No users found.")
        return 0
    print(f"  {'ID':>4}  {'USERNAME':<24} {'ROLE':<6} {'STATUS':<9} {'CREATED':<26} LAST LOGIN")
    print("  " + "─" * 96)
    for v in views:
        status = "active" if v.is_active else "inactive"
        print(
            f"  {v.id:>4}  {v.username:<24} {v.role.value:<6} {status:<9} "
            f"{(v.created_at or ''):<26} {v.last_login_at or 'Never'}"
        )
    print(f"\n  Total: {len(views)} user(s)")
    return 0


def cmd_set_role(args: argparse.Namespace, store: UserStore, hasher: PasswordHasher) -> int:
    target = store.get_by_username_any_state(args.username)
    if target is None:
        print(f"  [!] User '{args.username}' not found.")
        return 1
    role = Role(args.role)
    if target.role == Role.admin and role != Role.admin and target.is_active and store.count_active_admins() <= 1:
        print("  [!] Refusing to demote the last active admin.")
        return 1
    store.update_role(target.id, role)
    print(f"  '{args.username}' is now {role.value}. Tokens already issued keep the old role until they expire.")
    return 0


def cmd_deactivate(args: argparse.Namespace, store: UserStore, hasher: PasswordHasher) -> int:
    target = store.get_by_username_any_state(args.username)
    if target is None:
        print(f"  [!] User '{args.username}' not found.")
        return 1
    if target.role == Role.admin and target.is_active and store.count_active_admins() <= 1:
        print("  [!] Refusing to deactivate the last active admin.")
        return 1
    store.deactivate(target.id)
    print(f"  Deactivated '{args.username}'. The row is kept for audit.")
    return 0


def cmd_reset_password(args: argparse.Namespace, store: UserStore, hasher: PasswordHasher) -> int:
    target = store.get_by_username_any_state(args.username)
    if target is None:
        print(f"  [!] User '{args.username}' not found.")
        return 1
    password = _read_new_password(args.password)
    if password is None:
        return 1
    store.set_password(target.id, hasher.hash(password))
    print(f"  Password updated for '{args.username}'.")
    return 0


def cmd_delete_user(args: argparse.Namespace, store: UserStore, hasher: PasswordHasher) -> int:
    target = store.get_by_username_any_state(args.username)
    if target is None:
        print(f"  [!] User '{args.username}' not found.")
        return 1
    if target.role == Role.admin and target.is_active and store.count_active_admins() <= 1:
        print("  [!] Refusing to delete the last active admin.")
        return 1
    if not args.yes:
        print("  This permanently removes the account. Use 'deactivate' to keep it for audit.")
        if not _confirm(f"  Are you sure you want to delete user '{args.username}'?"):
            print("  Operation cancelled.")
            return 1
    try:
        store.delete_hard(target.id)
    except NotFound:
        print(f"  [!] User '{args.username}' not found.")
        return 1
    print(f"  Deleted user '{args.username}'.")
    return 0


def cmd_auth(args: argparse.Namespace) -> int:
    settings = get_settings()
    toggle = EnforcementToggle(settings.auth_config_path, cache_seconds=0)
    current = toggle.read()

    if args.action == "status":
        print(f"  Authentication: {'ENABLED' if current.enabled else 'DISABLED'}")
        if current.updated_at:
            print(f"  Last updated:   {current.updated_at} by {current.updated_by}")
        if not current.enabled:
            print("  [!] WARNING: anyone can reach every route without logging in.")
        return 0

    enable = args.action == "on"
    if current.enabled == enable:
        print(f"  Authentication is already {'enabled' if enable else 'disabled'}.")
        return 0
    if not enable and not args.yes:
        print("  You are about to DISABLE authentication. Every route becomes reachable without a token.")
        if not _confirm("  Are you sure you want to continue?"):
            print("  Operation cancelled.")
            return 1
    try:
        toggle.write(enable, updated_by=args.by)
    except PersistenceFailure as exc:
        print(f"  [!] {exc}. The setting is unchanged.")
        return 1
    print(f"  Authentication has been {'ENABLED' if enable else 'DISABLED'}.")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="authgate",
        description="Manage authgate accounts and authentication enforcement.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    roles = [r.value for r in Role]

    p = sub.add_parser("add-user", help="Create an account")
    p.add_argument("username")
    p.add_argument("--role", choices=roles, default=Role.user.value)
    p.add_argument("--password", help="Password (prompted for when omitted)")
    p.set_defaults(func=cmd_add_user)

    p = sub.add_parser("list-users", help="List all accounts, inactive included")
    p.set_defaults(func=cmd_list_users)

    p = sub.add_parser("set-role", help="Change an account's role")
    p.add_argument("username")
    p.add_argument("role", choices=roles)
    p.set_defaults(func=cmd_set_role)

    p = sub.add_parser("deactivate", help="Soft-delete an account")
    p.add_argument("username")
    p.set_defaults(func=cmd_deactivate)

    p = sub.add_parser("reset-password", help="Set a new password for an account")
    p.add_argument("username")
    p.add_argument("--password", help="New password (prompted for when omitted)")
    p.set_defaults(func=cmd_reset_password)

    p = sub.add_parser("delete-user", help="Permanently delete an account")
    p.add_argument("username")
    p.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")
    p.set_defaults(func=cmd_delete_user)

    p = sub.add_parser("auth", help="Show or change authentication enforcement")
    p.add_argument("action", choices=["on", "off", "status"])
    p.add_argument("--by", default="admin", help="Name recorded as updatedBy (default: admin)")
    p.add_argument("--yes", action="store_true", help="Skip the confirmation prompt when disabling")
    p.set_defaults(func=cmd_auth, needs_store=False)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    if not getattr(args, "needs_store", True):
        return args.func(args)

    hasher = PasswordHasher(rounds=get_settings().bcrypt_rounds)
    try:
        store = _open_store(hasher)
    except HashingFailure:
        print("  [!] Could not hash the bootstrap password; database left untouched.")
        return 1
    try:
        return args.func(args, store, hasher)
    except HashingFailure:
        print("  [!] Password hashing failed; nothing was changed.")
        return 1
    finally:
        store.shutdown()


if __name__ == "__main__":
    sys.exit(main())
