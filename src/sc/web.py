"""Flask web API: public signing links and the admin contract endpoints.

Admin authentication happens in front of this app; the signing routes are
public and authorized only by the token in the URL.
"""
from __future__ import annotations

import logging

from flask import Blueprint, Flask, current_app, jsonify, request
from pydantic import ValidationError as PydanticValidationError
from werkzeug.middleware.proxy_fix import ProxyFix

from sc import store
from sc.config import Settings, get_settings
from sc.engine import workflow
from sc.engine.signing import submit_signature
from sc.engine.tokens import resolve, signer_statuses, signing_view
from sc.engine.templates import template_keys
from sc.errors import ContractError, TemplateInvalid, TemplateNotFound, ValidationError
from sc.models import ContractStatus, ContractTemplate, Deal, SignatureSubmission
from sc.store import Database

logger = logging.getLogger(__name__)

_MAX_BODY_MB = 5  # signature canvases are small PNGs
_CSP_POLICY = (
    "default-src 'self'; "
    "script-src 'self' 'unsafe-inline'; "
    "style-src 'self' 'unsafe-inline'; "
    "img-src 'self' data: blob:; "
    "font-src 'self' data:; "
    "connect-src 'self'; "
    "object-src 'none'; "
    "base-uri 'self'; "
    "form-action 'self'; "
    "frame-ancestors 'none'"
)

api = Blueprint("api", __name__, url_prefix="/api")


# ── App factory ──────────────────────────────────────────────────────────────

def create_app(db: Database | None = None, notifier=None, mailer=None,
               settings: Settings | None = None) -> Flask:
    """Build the app around its collaborators (store, notifier, mailer)."""
    settings = settings or get_settings()
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = _MAX_BODY_MB * 1024 * 1024
    if settings.trusted_proxies:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=settings.trusted_proxies)
    app.extensions["sc"] = {
        "db": db or Database(settings.database_file),
        "notifier": notifier,
        "mailer": mailer,
        "settings": settings,
    }
    app.register_blueprint(api)

    @app.errorhandler(ContractError)
    def contract_error(err: ContractError):
        if err.status_code >= 500:
            logger.error("%s: %s", err.code, err.message)
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(404)
    def not_found(_err):
        return jsonify({"error": "not found", "code": "not_found"}), 404

    @app.errorhandler(413)
    def too_large(_err):
        return jsonify({"error": f"Request too large. Max size is {_MAX_BODY_MB} MB.",
                        "code": "too_large"}), 413

    @app.after_request
    def set_security_headers(resp):
        resp.headers.setdefault("Content-Security-Policy", _CSP_POLICY)
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Cache-Control", "no-store")
        return resp

    return app


def _ctx(name: str):
    return current_app.extensions["sc"][name]


# ── Helpers ──────────────────────────────────────────────────────────────────

def _body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _deal(body: dict) -> Deal:
    try:
        return Deal.model_validate(body.get("deal") or {})
    except PydanticValidationError as e:
        raise ValidationError([
            f"deal.{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]) from e


def _overrides(body: dict) -> dict:
    overrides = body.get("overrides") or body.get("field_values") or {}
    if not isinstance(overrides, dict):
        raise ValidationError(["overrides must be an object"])
    return overrides


def _title(body: dict) -> str | None:
    title = body.get("title")
    if title is None or title == "":
        return None
    if not isinstance(title, str):
        raise ValidationError(["title must be a string"])
    return title


def _client_ip() -> str:
    # X-Forwarded-For is honoured only through ProxyFix (settings.trusted_proxies)
    return request.remote_addr or ""


def _contract_json(contract) -> dict:
    return contract.model_dump(mode="json")


# ── Public signing ───────────────────────────────────────────────────────────

@api.route("/sign/<token>")
def signing_page(token: str):
    res = resolve(_ctx("db"), token)
    return jsonify(signing_view(res).model_dump(mode="json"))


@api.route("/sign/<token>", methods=["POST"])
def sign(token: str):
    body = _body()
    submission = SignatureSubmission(
        name=str(body.get("signer_name") or ""),
        email=str(body.get("signer_email") or ""),
        title=str(body.get("signer_title") or ""),
        image_data=str(body.get("signature_image") or body.get("signature_data") or ""),
        ip_address=_client_ip(),
        user_agent=request.headers.get("User-Agent", ""),
    )
    result = submit_signature(_ctx("db"), token, submission, notifier=_ctx("notifier"))
    return jsonify({
        "contract": {
            "contract_number": result.contract.contract_number,
            "title": result.contract.title,
            "status": result.contract.status.value,
        },
        "executed": result.executed,
        "signatures": [s.model_dump(mode="json")
                       for s in signer_statuses(result.contract, result.signatures)],
    })


# ── Templates ────────────────────────────────────────────────────────────────

@api.route("/templates")
def templates():
    with _ctx("db").connect() as c:
        items = store.list_templates(c)
    return jsonify([
        {"id": t.id, "name": t.name, "description": t.description,
         "version": t.version, "event_types": t.event_types}
        for t in items
    ])


@api.route("/templates/<template_id>")
def template_detail(template_id: str):
    version = request.args.get("version", type=int)
    with _ctx("db").connect() as c:
        t = store.get_template(c, template_id, version)
    if t is None:
        raise TemplateNotFound(f"Template '{template_id}' not found")
    out = t.model_dump(mode="json")
    out["keys"] = template_keys(t)
    return jsonify(out)


@api.route("/templates/<template_id>", methods=["PUT"])
def template_save(template_id: str):
    """Add or edit a template; edits to a template in use become a new version."""
    try:
        template = ContractTemplate.model_validate({**_body(), "id": template_id})
    except PydanticValidationError as e:
        raise TemplateInvalid(f"{template_id}: {e.errors()[0]['msg']}") from e
    saved = workflow.save_template(_ctx("db"), template)
    out = saved.model_dump(mode="json")
    out["keys"] = template_keys(saved)
    return jsonify(out)


@api.route("/templates/<template_id>/preview", methods=["POST"])
def template_preview(template_id: str):
    body = _body()
    document = workflow.preview_contract(_ctx("db"), template_id, _deal(body), _overrides(body))
    return jsonify({"document_body": document})


# ── Contracts (admin) ────────────────────────────────────────────────────────

@api.route("/contracts")
def contracts():
    status = request.args.get("status")
    try:
        wanted = ContractStatus(status) if status else None
    except ValueError:
        raise ValidationError([f"unknown status: {status}"]) from None
    items = workflow.list_contracts(_ctx("db"), wanted)
    return jsonify([
        {"id": c.id, "contract_number": c.contract_number, "title": c.title,
         "status": c.status.value, "client": c.client.company or c.client.name,
         "speaker": c.speaker.name, "created_at": c.created_at.isoformat()}
        for c in items
    ])


@api.route("/contracts", methods=["POST"])
def create_contract():
    body = _body()
    contract = workflow.create_contract(
        _ctx("db"),
        body.get("template_id") or None,
        _deal(body),
        _overrides(body),
        requires_admin_signature=body.get("requires_admin_signature") is True,
        created_by=str(body.get("created_by") or ""),
        title=_title(body),
    )
    return jsonify(_contract_json(contract)), 201


@api.route("/contracts/<int:contract_id>")
def contract_detail(contract_id: int):
    detail = workflow.get_contract_detail(_ctx("db"), contract_id)
    return jsonify(detail.model_dump(mode="json"))


def _sent(contract, tokens) -> dict:
    settings = _ctx("settings")
    return {
        "contract": _contract_json(contract),
        "signing_links": {t.signer_type.value: settings.signing_url(t.token) for t in tokens},
    }


@api.route("/contracts/<int:contract_id>/send", methods=["POST"])
def send(contract_id: int):
    contract, tokens = workflow.send_contract(
        _ctx("db"), contract_id, mailer=_ctx("mailer"), settings=_ctx("settings"))
    return jsonify(_sent(contract, tokens))


@api.route("/contracts/<int:contract_id>/review", methods=["POST"])
def review(contract_id: int):
    return jsonify(_contract_json(workflow.request_review(_ctx("db"), contract_id)))


@api.route("/contracts/<int:contract_id>/approve", methods=["POST"])
def approve(contract_id: int):
    contract, tokens = workflow.approve_review(
        _ctx("db"), contract_id, mailer=_ctx("mailer"), settings=_ctx("settings"))
    return jsonify(_sent(contract, tokens))


@api.route("/contracts/<int:contract_id>/cancel", methods=["POST"])
def cancel(contract_id: int):
    reason = str(_body().get("reason") or "")
    return jsonify(_contract_json(workflow.cancel_contract(_ctx("db"), contract_id, reason)))


@api.route("/contracts/<int:contract_id>/activate", methods=["POST"])
def activate(contract_id: int):
    return jsonify(_contract_json(workflow.activate_contract(_ctx("db"), contract_id)))


@api.route("/contracts/<int:contract_id>/complete", methods=["POST"])
def complete(contract_id: int):
    return jsonify(_contract_json(workflow.complete_contract(_ctx("db"), contract_id)))
