from __future__ import annotations

from typing import Any

from flask import Blueprint, current_app, g, jsonify, request, send_file

from app.doccontrol.audit import audit_details, document_history
from app.doccontrol.db import db_session
from app.doccontrol.errors import DocControlError, ValidationError
from app.doccontrol.models import User
from app.doccontrol.rbac import require_permission
from app.doccontrol.scanning import scanner_from_config
from app.doccontrol.storage import storage_from_config

from . import document_types, service
from .models import Approver, Document, DocumentFile, DocumentType

bp = Blueprint("doc_control", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _body() -> dict[str, Any]:
    return request.get_json(silent=True) or {}


def _iso(value) -> str | None:
    return value.isoformat(timespec="seconds") if value else None


def _type_json(dt: DocumentType) -> dict[str, Any]:
    return {
        "id": dt.id,
        "name": dt.name,
        "prefix": dt.prefix,
        "description": dt.description,
        "is_active": dt.is_active,
    }


def _approver_json(a: Approver) -> dict[str, Any]:
    return {
        "id": a.id,
        "document_id": a.document_id,
        "user_id": a.user_id,
        "user_email": a.user_email,
        "status": a.status,
        "comments": a.comments,
        "action_date": _iso(a.action_date),
    }


def _file_json(f: DocumentFile) -> dict[str, Any]:
    return {
        "id": f.id,
        "filename": f.filename,
        "content_type": f.content_type,
        "sha256": f.sha256,
        "size_bytes": f.size_bytes,
        "scan_status": f.scan_status,
        "uploaded_at": _iso(f.uploaded_at),
    }


def _document_json(d: Document, *, detail: bool = False) -> dict[str, Any]:
    out: dict[str, Any] = {
        "id": d.id,
        "document_number": d.document_number,
        "version": d.version,
        "label": d.label,
        "is_production": d.is_production,
        "title": d.title,
        "description": d.description,
        "project_code": d.project_code,
        "status": d.status,
        "document_type_id": d.document_type_id,
        "created_by_user_id": d.created_by_user_id,
        "created_at": _iso(d.created_at),
        "released_at": _iso(d.released_at),
        "promoted_from_document_number": d.promoted_from_document_number,
    }
    if detail:
        out["approvers"] = [_approver_json(a) for a in d.approvers]
        out["files"] = [_file_json(f) for f in d.files]
    return out


def _ok(payload: dict[str, Any] | None = None, status: int = 200):
    return jsonify({"ok": True, **(payload or {})}), status


@bp.errorhandler(DocControlError)
def _doc_control_error(e: DocControlError):
    s = getattr(g, "db_session", None)
    if s is not None:
        s.rollback()
    current_app.logger.info(
        "Document control request failed: %s %s (request_id=%s)", e.code, e.message, getattr(g, "request_id", None)
    )
    return jsonify({"ok": False, "error": e.to_dict()}), e.http_status


# Document types


@bp.get("/document-types")
@require_permission("docs.view")
def list_document_types():
    u = _current_user()
    include_inactive = request.args.get("all") == "1"
    types = document_types.list_document_types(db_session(), tenant_id=u.tenant_id, include_inactive=include_inactive)
    return _ok({"document_types": [_type_json(dt) for dt in types]})


@bp.post("/document-types")
@require_permission("docs.admin")
def create_document_type():
    s = db_session()
    body = _body()
    dt = document_types.create_document_type(
        s,
        name=body.get("name") or "",
        prefix=body.get("prefix") or "",
        description=body.get("description"),
        actor=_current_user(),
    )
    s.commit()
    return _ok({"document_type": _type_json(dt)}, 201)


@bp.patch("/document-types/<int:type_id>")
@require_permission("docs.admin")
def update_document_type(type_id: int):
    s = db_session()
    body = _body()
    dt = document_types.update_document_type(
        s, type_id, name=body.get("name"), description=body.get("description"), actor=_current_user()
    )
    s.commit()
    return _ok({"document_type": _type_json(dt)})


@bp.post("/document-types/<int:type_id>/toggle")
@require_permission("docs.admin")
def toggle_document_type(type_id: int):
    s = db_session()
    dt = document_types.toggle_document_type(s, type_id, actor=_current_user())
    s.commit()
    return _ok({"document_type": _type_json(dt)})


# Documents


@bp.post("/documents")
@require_permission("docs.create")
def create_document():
    s = db_session()
    body = _body()
    try:
        type_id = int(body.get("document_type_id"))
    except (TypeError, ValueError):
        raise ValidationError("document_type_id is required")
    d = service.create_document(
        s,
        document_type_id=type_id,
        title=body.get("title") or "",
        description=body.get("description"),
        project_code=body.get("project_code"),
        is_production=bool(body.get("is_production")),
        actor=_current_user(),
    )
    s.commit()
    return _ok({"document": _document_json(d, detail=True)}, 201)


@bp.get("/documents/<int:doc_id>")
@require_permission("docs.view")
def document_detail(doc_id: int):
    d = service.get_document(db_session(), doc_id, actor=_current_user())
    return _ok({"document": _document_json(d, detail=True)})


@bp.patch("/documents/<int:doc_id>")
@require_permission("docs.create")
def update_document(doc_id: int):
    s = db_session()
    body = _body()
    d = service.update_document(
        s,
        doc_id,
        title=body.get("title"),
        description=body.get("description"),
        project_code=body.get("project_code"),
        actor=_current_user(),
    )
    s.commit()
    return _ok({"document": _document_json(d, detail=True)})


@bp.delete("/documents/<int:doc_id>")
@require_permission("docs.create")
def delete_document(doc_id: int):
    s = db_session()
    removed = service.delete_document(
        s, doc_id, actor=_current_user(), storage=storage_from_config(current_app.config)
    )
    s.commit()
    return _ok({"files_removed": removed})


@bp.get("/documents/<int:doc_id>/lineage")
@require_permission("docs.view")
def document_lineage(doc_id: int):
    docs = service.document_lineage(db_session(), doc_id, actor=_current_user())
    return _ok({"documents": [_document_json(d) for d in docs]})


@bp.get("/documents/<int:doc_id>/history")
@require_permission("docs.view")
def document_audit_history(doc_id: int):
    s = db_session()
    service.get_document(s, doc_id, actor=_current_user())
    events = [
        {
            "action": ev.action,
            "actor_email": ev.actor_user_email,
            "created_at": _iso(ev.created_at),
            "reason": ev.reason,
            "details": audit_details(ev),
        }
        for ev in document_history(s, doc_id)
    ]
    return _ok({"events": events})


@bp.get("/released/<document_number>")
@require_permission("docs.view")
def latest_released(document_number: str):
    d = service.latest_released_version(db_session(), document_number, actor=_current_user())
    return _ok({"document": _document_json(d) if d else None})


@bp.post("/documents/<int:doc_id>/approvers")
@require_permission("docs.create")
def add_approver(doc_id: int):
    s = db_session()
    try:
        user_id = int(_body().get("user_id"))
    except (TypeError, ValueError):
        raise ValidationError("user_id is required")
    a = service.add_approver(s, doc_id, user_id=user_id, actor=_current_user())
    s.commit()
    return _ok({"approver": _approver_json(a)}, 201)


@bp.delete("/documents/<int:doc_id>/approvers/<int:approver_id>")
@require_permission("docs.create")
def remove_approver(doc_id: int, approver_id: int):
    s = db_session()
    service.remove_approver(s, doc_id, approver_id, actor=_current_user())
    s.commit()
    return _ok()


@bp.post("/documents/<int:doc_id>/submit")
@require_permission("docs.create")
def submit(doc_id: int):
    s = db_session()
    d = service.submit_for_approval(s, doc_id, actor=_current_user())
    s.commit()
    return _ok({"document": _document_json(d, detail=True)})


@bp.post("/documents/<int:doc_id>/withdraw")
@require_permission("docs.create")
def withdraw(doc_id: int):
    s = db_session()
    d = service.withdraw_from_approval(s, doc_id, actor=_current_user())
    s.commit()
    return _ok({"document": _document_json(d, detail=True)})


@bp.post("/documents/<int:doc_id>/release")
@require_permission("docs.create")
def release(doc_id: int):
    s = db_session()
    d = service.release_directly(
        s, doc_id, actor=_current_user(), bypass_approval=bool(_body().get("bypass_approval"))
    )
    s.commit()
    return _ok({"document": _document_json(d, detail=True)})


@bp.post("/documents/<int:doc_id>/approvers/<int:approver_id>/decision")
@require_permission("docs.approve")
def decide(doc_id: int, approver_id: int):
    s = db_session()
    body = _body()
    all_approved = service.record_approval_decision(
        s,
        doc_id,
        approver_id,
        (body.get("decision") or "").strip().capitalize(),
        body.get("comments"),
        actor=_current_user(),
    )
    s.commit()
    d = service.get_document(s, doc_id, actor=_current_user())
    return _ok({"all_approved": all_approved, "document": _document_json(d, detail=True)})


@bp.post("/documents/<int:doc_id>/new-version")
@require_permission("docs.create")
def new_version(doc_id: int):
    s = db_session()
    d = service.create_new_version(s, doc_id, actor=_current_user())
    s.commit()
    return _ok({"document": _document_json(d, detail=True)}, 201)


@bp.post("/documents/<int:doc_id>/promote")
@require_permission("docs.create")
def promote(doc_id: int):
    s = db_session()
    d = service.promote_to_production(s, doc_id, actor=_current_user())
    s.commit()
    return _ok({"document": _document_json(d, detail=True)}, 201)


@bp.post("/documents/<int:doc_id>/files")
@require_permission("docs.create")
def upload_file(doc_id: int):
    s = db_session()
    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationError("A file is required")
    stored = service.attach_file(
        s,
        doc_id,
        filename=f.filename,
        data=f.read(),
        content_type=f.mimetype,
        actor=_current_user(),
        storage=storage_from_config(current_app.config),
        scanner=scanner_from_config(current_app.config),
    )
    s.commit()
    return _ok({"file": _file_json(stored)}, 201)


@bp.get("/documents/<int:doc_id>/files/<int:file_id>")
@require_permission("docs.view")
def download_file(doc_id: int, file_id: int):
    s = db_session()
    stored, fobj = service.open_file(
        s, doc_id, file_id, actor=_current_user(), storage=storage_from_config(current_app.config)
    )
    s.commit()
    return send_file(
        fobj,
        mimetype=stored.content_type,
        as_attachment=True,
        download_name=stored.filename,
        max_age=0,
    )


@bp.get("/approvals/pending")
@require_permission("docs.view")
def pending_approvals():
    s = db_session()
    rows = service.pending_approvals(s, actor=_current_user())
    return _ok(
        {
            "approvals": [
                {**_approver_json(a), "document": _document_json(a.document)} for a in rows
            ]
        }
    )
