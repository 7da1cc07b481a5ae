#!/usr/bin/env python3
"""
Account Licence Notifier - Main Entry Point.

Usage:
    python main.py accounts list [--status <status>]
    python main.py accounts show <account_number>
    python main.py accounts add <account_number> --license <l> --expire "DD/MM/YYYY HH:MM" [options]
    python main.py accounts renew <account_number> --expire "DD/MM/YYYY HH:MM"
    python main.py accounts set-status <account_number> <status>
    python main.py accounts expired
    python main.py reconcile run
    python main.py users list [--inactive|--all] [--limit N]
    python main.py users stats
    python main.py serve [--port <port>]
"""

import argparse
import json
import logging
import sys
from datetime import datetime

from dotenv import load_dotenv
load_dotenv()  # Load .env file if present

from config.settings import LOG_FORMAT, LOG_LEVEL, PORT
from tracker.account import Account, AccountStatus
from tracker.audit import AuditAction
from tracker.context import EngineContext
from tracker.errors import JobCycleError
from tracker.status import StatusEvaluator
from tracker.thai_date import resolve_expire_date


def _print_accounts(accounts):
    if not accounts:
        print("No accounts found.")
        return
    print(f"\n{'Account':14s} {'License':20s} {'Expires':18s} {'Status':15s} {'Linked':7s} {'Notified':8s}")
    print("-" * 86)
    for a in accounts:
        print(
            f"{a.account_number:14s} {a.license:20s} {a.expire_date_raw:18s} "
            f"{a.status.value:15s} {'yes' if a.is_linked else 'no':7s} "
            f"{'yes' if a.notified else 'no':8s}"
        )
    print(f"\nTotal: {len(accounts)} account(s)")


# ============================================================
# Account Commands
# ============================================================

def cmd_accounts_list(args, ctx):
    """List accounts."""
    if args.status:
        accounts = ctx.store.by_status(AccountStatus(args.status))
    else:
        accounts = ctx.store.list_all()
    _print_accounts(accounts)


def cmd_accounts_show(args, ctx):
    """Show one account as JSON."""
    account = ctx.store.get(args.account_number)
    if not account:
        print(f"Account not found: {args.account_number}")
        return 1
    print(json.dumps(account.to_dict(), indent=2, ensure_ascii=False))


def cmd_accounts_add(args, ctx):
    """Add a customer account."""
    resolved = resolve_expire_date(args.expire)
    if not resolved.ok:
        print(f"Invalid expiry date {args.expire!r}: {resolved.error}")
        return 1

    account = Account(
        account_number=args.account_number,
        license=args.license,
        expire_date_raw=args.expire,
        user=args.user or "",
        platform=args.platform or "",
        plan=args.plan or 0,
        activated_at=datetime.now(),
        created_by="cli",
        admin_generated=True,
    )
    try:
        account = ctx.store.add(account)
    except ValueError as exc:
        print(str(exc))
        return 1
    ctx.audit_log.log(
        AuditAction.ACCOUNT_ADD, account.account_number,
        f"License {account.license}, expires {account.expire_date_raw}", user="cli",
    )
    print(f"Account added: {account.account_number} ({account.license})")
    print(f"  Expires: {account.expire_date_resolved.strftime('%Y-%m-%d %H:%M')}")


def cmd_accounts_renew(args, ctx):
    """Replace an account's expiry date."""
    resolved = resolve_expire_date(args.expire)
    if not resolved.ok:
        print(f"Invalid expiry date {args.expire!r}: {resolved.error}")
        return 1
    account = ctx.store.update(args.account_number, expire_date_raw=args.expire)
    if not account:
        print(f"Account not found: {args.account_number}")
        return 1
    print(f"Account {account.account_number} now expires {account.expire_date_raw}")


def cmd_accounts_set_status(args, ctx):
    """Administratively set an account's status."""
    account = ctx.store.get(args.account_number)
    if not account:
        print(f"Account not found: {args.account_number}")
        return 1
    new_status = AccountStatus(args.status)
    ctx.store.update(
        account.account_number, **StatusEvaluator.transition(account, new_status)
    )
    ctx.audit_log.log(
        AuditAction.STATUS_CHANGE, account.account_number,
        f"{account.status.value} -> {new_status.value}", user="cli",
    )
    print(f"Account {account.account_number}: {account.status.value} -> {new_status.value}")


def cmd_accounts_expired(args, ctx):
    """List accounts whose expiry date has passed."""
    _print_accounts(ctx.store.expired(datetime.now()))


# ============================================================
# LINE User Commands
# ============================================================

def cmd_users_list(args, ctx):
    """List chat users, most recently active first."""
    is_friend = False if args.inactive else (None if args.all else True)
    users, total = ctx.users.list_users(is_friend=is_friend, limit=args.limit)
    if not users:
        print("No users found.")
        return
    print(f"\n{'User ID':36s} {'Name':24s} {'Friend':7s} {'Messages':>8s}")
    print("-" * 78)
    for u in users:
        print(
            f"{u.user_id:36s} {(u.display_name or '-'):24s} "
            f"{('yes' if u.is_friend else 'no'):7s} {u.message_count:8d}"
        )
    print(f"\nShowing {len(users)} of {total} user(s)")


def cmd_users_stats(args, ctx):
    """Print user and message totals."""
    print(json.dumps(ctx.users.stats(), indent=2))


# ============================================================
# Reconciliation / Server Commands
# ============================================================

def cmd_reconcile_run(args, ctx):
    """Run one reconciliation cycle now."""
    try:
        result = ctx.job.run_once()
    except JobCycleError as exc:
        print(f"Reconciliation failed: {exc}")
        return 1
    if result is None:
        print("A reconciliation cycle is already running, nothing done.")
        return 1
    print(json.dumps(result.to_dict(), indent=2))


def cmd_serve(args, ctx):
    """Run the webhook/API server with the scheduler."""
    from web import create_app

    app = create_app(context=ctx)
    app.run(host="0.0.0.0", port=args.port, use_reloader=False)


# ============================================================
# Argument parsing
# ============================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Account Licence Notifier")
    sub = parser.add_subparsers(dest="command", required=True)

    accounts = sub.add_parser("accounts", help="Manage customer accounts")
    acc_sub = accounts.add_subparsers(dest="action", required=True)

    p = acc_sub.add_parser("list", help="List accounts")
    p.add_argument("--status", choices=[s.value for s in AccountStatus])
    p.set_defaults(func=cmd_accounts_list)

    p = acc_sub.add_parser("show", help="Show one account")
    p.add_argument("account_number")
    p.set_defaults(func=cmd_accounts_show)

    p = acc_sub.add_parser("add", help="Add an account")
    p.add_argument("account_number")
    p.add_argument("--license", required=True)
    p.add_argument("--expire", required=True, help='Buddhist Era, e.g. "31/12/2568 23:59"')
    p.add_argument("--user")
    p.add_argument("--platform")
    p.add_argument("--plan", type=int)
    p.set_defaults(func=cmd_accounts_add)

    p = acc_sub.add_parser("renew", help="Change an account's expiry date")
    p.add_argument("account_number")
    p.add_argument("--expire", required=True)
    p.set_defaults(func=cmd_accounts_renew)

    p = acc_sub.add_parser("set-status", help="Set an account's status")
    p.add_argument("account_number")
    p.add_argument("status", choices=[s.value for s in AccountStatus])
    p.set_defaults(func=cmd_accounts_set_status)

    p = acc_sub.add_parser("expired", help="List accounts past their expiry date")
    p.set_defaults(func=cmd_accounts_expired)

    reconcile = sub.add_parser("reconcile", help="Reconciliation job")
    rec_sub = reconcile.add_subparsers(dest="action", required=True)
    p = rec_sub.add_parser("run", help="Run one cycle now")
    p.set_defaults(func=cmd_reconcile_run)

    users = sub.add_parser("users", help="LINE users who follow or message the bot")
    usr_sub = users.add_subparsers(dest="action", required=True)
    p = usr_sub.add_parser("list", help="List users")
    group = p.add_mutually_exclusive_group()
    group.add_argument("--inactive", action="store_true", help="Only users who unfollowed")
    group.add_argument("--all", action="store_true", help="Friends and former friends")
    p.add_argument("--limit", type=int, default=50)
    p.set_defaults(func=cmd_users_list)
    p = usr_sub.add_parser("stats", help="User and message totals")
    p.set_defaults(func=cmd_users_stats)

    p = sub.add_parser("serve", help="Run the web server")
    p.add_argument("--port", type=int, default=PORT)
    p.set_defaults(func=cmd_serve)

    return parser


def main(argv=None) -> int:
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    args = build_parser().parse_args(argv)
    ctx = EngineContext.from_settings()
    try:
        return args.func(args, ctx) or 0
    finally:
        ctx.close()


if __name__ == "__main__":
    sys.exit(main())
