"""REST API v1: JSON endpoints for accounts, chat users and configuration."""

import secrets
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from tracker.account import Account, AccountStatus
from tracker.audit import AuditAction
from tracker.errors import AccountLookupError, JobCycleError
from tracker.thai_date import resolve_expire_date
from web import get_engine

bp = Blueprint("api", __name__)


@bp.before_request
def api_auth():
    """Require the admin API key when one is configured."""
    expected = current_app.config.get("ADMIN_API_KEY")
    if not expected:
        return None
    api_key = request.headers.get("X-API-Key") or request.args.get("api_key") or ""
    if secrets.compare_digest(api_key, expected):
        return None
    return jsonify({"error": "Authentication required. Provide X-API-Key header."}), 401


def _error(message, status=400):
    return jsonify({"error": message}), status


# ── Accounts ─────────────────────────────────────────────────────────

@bp.route("/accounts")
def list_accounts():
    store = get_engine().store
    status = request.args.get("status")
    if status:
        try:
            accounts = store.by_status(AccountStatus(status))
        except ValueError:
            return _error(f"Invalid status: {status}")
    else:
        accounts = store.list_all()
    return jsonify([a.to_dict() for a in accounts])


@bp.route("/accounts/expired")
def list_expired_accounts():
    accounts = get_engine().store.expired(datetime.now())
    return jsonify([a.to_dict() for a in accounts])


@bp.route("/accounts/summary")
def accounts_summary():
    return jsonify(get_engine().store.summary())


@bp.route("/accounts/<account_number>")
def get_account(account_number):
    account = get_engine().store.get(account_number)
    if not account:
        return _error("Account not found", 404)
    return jsonify(account.to_dict())


@bp.route("/accounts/<account_number>/history")
def account_history(account_number):
    engine = get_engine()
    if not engine.store.get(account_number):
        return _error("Account not found", 404)
    if engine.audit_log is None:
        return jsonify([])
    return jsonify([e.to_dict() for e in engine.audit_log.history(account_number)])


@bp.route("/accounts", methods=["POST"])
def add_account():
    engine = get_engine()
    data = request.get_json(silent=True) or {}
    required = ["account_number", "license", "expire_date"]
    missing = [f for f in required if not data.get(f)]
    if missing:
        return _error(f"Missing required fields: {', '.join(missing)}")

    account_number = str(data["account_number"]).strip()
    if not account_number.isdigit():
        return _error("account_number must contain digits only")

    resolved = resolve_expire_date(data["expire_date"])
    if not resolved.ok:
        return _error(f"Invalid expire_date: {resolved.error}")

    try:
        plan = int(data.get("plan") or 0)
    except (TypeError, ValueError):
        return _error("plan must be an integer")

    account = Account(
        account_number=account_number,
        license=data["license"],
        expire_date_raw=str(data["expire_date"]).strip(),
        user=data.get("user", ""),
        platform=data.get("platform", ""),
        plan=plan,
        activated_at=datetime.now(),
        created_by=data.get("created_by", "api"),
        admin_generated=bool(data.get("admin_generated", False)),
    )
    try:
        account = engine.store.add(account)
    except ValueError as exc:
        return _error(str(exc), 409)
    except AccountLookupError as exc:
        return _error(str(exc), 503)

    if engine.audit_log is not None:
        engine.audit_log.log(
            AuditAction.ACCOUNT_ADD, account.account_number,
            f"License {account.license}, expires {account.expire_date_raw}",
            user=account.created_by,
        )
    return jsonify(account.to_dict()), 201


# ── Reconciliation ───────────────────────────────────────────────────

@bp.route("/reconciliation/run", methods=["POST"])
def run_reconciliation():
    job = get_engine().job
    try:
        result = job.run_once()
    except JobCycleError as exc:
        return _error(str(exc), 503)
    if result is None:
        return _error("A reconciliation cycle is already running", 409)
    return jsonify(result.to_dict())


# ── LINE users and messages ──────────────────────────────────────────

def _int_arg(name, default, maximum=1000):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    value = int(raw)
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return min(value, maximum)


def _user_store():
    users = get_engine().users
    if users is None:
        return None, _error("LINE user registry is not configured", 503)
    return users, None


@bp.route("/users/stats")
def user_stats():
    users, err = _user_store()
    if err:
        return err
    return jsonify(users.stats())


@bp.route("/users")
def list_users():
    users, err = _user_store()
    if err:
        return err
    is_friend = request.args.get("is_friend")
    if is_friend in (None, ""):
        friend_filter = None
    elif is_friend.lower() in ("true", "1"):
        friend_filter = True
    elif is_friend.lower() in ("false", "0"):
        friend_filter = False
    else:
        return _error(f"Invalid is_friend: {is_friend}")
    try:
        limit = _int_arg("limit", 50)
        skip = _int_arg("skip", 0, maximum=10**9)
    except ValueError:
        return _error("limit and skip must be non-negative integers")

    page, total = users.list_users(is_friend=friend_filter, limit=limit, skip=skip)
    return jsonify({
        "users": [u.to_dict() for u in page],
        "pagination": {
            "total": total,
            "limit": limit,
            "skip": skip,
            "has_more": skip + limit < total,
        },
    })


@bp.route("/users/<user_id>")
def get_user(user_id):
    users, err = _user_store()
    if err:
        return err
    user = users.get(user_id)
    if not user:
        return _error("User not found", 404)
    return jsonify(user.to_dict())


@bp.route("/users/<user_id>/messages")
def user_messages(user_id):
    users, err = _user_store()
    if err:
        return err
    try:
        limit = _int_arg("limit", 50)
    except ValueError:
        return _error("limit must be a non-negative integer")
    user = users.get(user_id)
    if not user:
        return _error("User not found", 404)
    messages = users.messages_for(user_id, limit=limit)
    return jsonify({
        "user": user.to_dict(),
        "messages": [m.to_dict() for m in messages],
        "count": len(messages),
    })


@bp.route("/messages")
def list_messages():
    users, err = _user_store()
    if err:
        return err
    try:
        limit = _int_arg("limit", 100)
        skip = _int_arg("skip", 0, maximum=10**9)
    except ValueError:
        return _error("limit and skip must be non-negative integers")
    page, total = users.list_messages(limit=limit, skip=skip)
    return jsonify({
        "messages": [m.to_dict() for m in page],
        "pagination": {
            "total": total,
            "limit": limit,
            "skip": skip,
            "has_more": skip + limit < total,
        },
    })


# ── Configuration ────────────────────────────────────────────────────

# Lengths below these usually mean a truncated copy-paste
MIN_CHANNEL_SECRET_LENGTH = 30
MIN_ACCESS_TOKEN_LENGTH = 100


@bp.route("/config-check")
def config_check():
    """Report whether LINE credentials look usable, without revealing them."""
    from config import settings

    secret = get_engine().channel_secret or ""
    token = settings.LINE_CHANNEL_ACCESS_TOKEN or ""
    warnings = []
    if not secret:
        warnings.append("LINE_CHANNEL_SECRET is not set")
    elif len(secret) < MIN_CHANNEL_SECRET_LENGTH:
        warnings.append("LINE_CHANNEL_SECRET looks too short")
    if not token:
        warnings.append("LINE_CHANNEL_ACCESS_TOKEN is not set")
    elif len(token) < MIN_ACCESS_TOKEN_LENGTH:
        warnings.append("LINE_CHANNEL_ACCESS_TOKEN looks too short")

    return jsonify({
        "has_channel_secret": bool(secret),
        "has_access_token": bool(token),
        "channel_secret_length": len(secret),
        "access_token_length": len(token),
        "port": settings.PORT,
        "dry_run": settings.LINE_DRY_RUN,
        "warnings": warnings,
        "ok": not warnings,
    })
