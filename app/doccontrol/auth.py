from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from sqlalchemy import select
from werkzeug.security import check_password_hash

from app.doccontrol.audit import record_event
from app.doccontrol.db import db_session
from app.doccontrol.models import User

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie and assigns a
    per-request request_id for audit/log correlation.
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    user = db_session().get(User, int(user_id))
    if not user or not user.is_active:
        session.pop("user_id", None)
        g.current_user = None
        return
    g.current_user = user


@bp.post("/login")
def login():
    body = request.get_json(silent=True) or request.form
    email = (body.get("email") or "").strip().lower()
    password = body.get("password") or ""
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return jsonify({"ok": False, "error": {"code": "rate_limited", "message": "Too many login attempts"}}), 429
    _login_attempts[ip].append(datetime.utcnow())

    s = db_session()
    user = s.execute(select(User).where(User.email == email)).scalar_one_or_none()
    if not user or not user.is_active or not check_password_hash(user.password_hash, password):
        record_event(
            s,
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason="Invalid credentials",
            tenant_id=user.tenant_id if user else None,
        )
        s.commit()
        current_app.logger.info("Failed login for %s", email)
        return jsonify({"ok": False, "error": {"code": "invalid_credentials", "message": "Invalid credentials"}}), 401

    session["user_id"] = user.id
    _login_attempts[ip].clear()
    record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return jsonify({"ok": True, "user": {"id": user.id, "email": user.email, "tenant_id": user.tenant_id}})


@bp.post("/logout")
def logout():
    user = getattr(g, "current_user", None)
    if user:
        s = db_session()
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return jsonify({"ok": True})
