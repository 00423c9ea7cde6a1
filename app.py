import io
import logging
import mimetypes
from datetime import timedelta
from functools import wraps

from apscheduler.schedulers.background import BackgroundScheduler
from flask import Blueprint, Flask, current_app, g, jsonify, request, send_file
from werkzeug.utils import secure_filename

from accounts import AccountManager
from alerts import AlertEvaluator
from auth import TOKEN_COOKIE, Authenticator
from blobstore import LocalBlobStore, S3BlobStore
from config import Config
from contracts import (
    DocumentRequest, HeaderRequest, ItemRequest, LoginRequest,
    RegisterRequest, ReminderRequest, parse_date,
)
from datastore import Datastore
from documents import DocumentManager
from errors import NotFoundOrForbidden, RecordVaultError, ValidationError
from models import db, seed_remind_me
from records import RecordsManager
from sweep import sweep_orphans
from utils import configure_logging, load_encryption_key, utcnow

logger = logging.getLogger(__name__)

bp = Blueprint("records", __name__)


# ==========================================================
# ⚙️ APP SETUP
# ==========================================================
def build_blobstore(config):
    backend = config["BLOB_BACKEND"]
    if backend == "s3":
        return S3BlobStore(
            config["S3_BUCKET"],
            prefix=config["S3_PREFIX"],
            region=config["S3_REGION"],
            endpoint_url=config["S3_ENDPOINT_URL"],
            connect_timeout=config["BLOB_CONNECT_TIMEOUT"],
            read_timeout=config["BLOB_READ_TIMEOUT"],
        )
    if backend == "local":
        return LocalBlobStore(
            config["UPLOAD_FOLDER"],
            load_encryption_key(config["ENCRYPTION_KEY_B64"]),
            config["SECRET_KEY"],
        )
    raise RuntimeError(f"unknown BLOB_BACKEND {backend!r}")


def start_sweeper(app):
    """Run the orphan-blob sweep every ORPHAN_SWEEP_MINUTES in the background."""
    grace = timedelta(minutes=app.config["ORPHAN_GRACE_MINUTES"])

    def run_sweep_job():
        with app.app_context():
            sweep_orphans(Datastore(db.session), app.extensions["blobstore"], grace=grace)

    scheduler = BackgroundScheduler()
    scheduler.add_job(run_sweep_job, "interval", minutes=app.config["ORPHAN_SWEEP_MINUTES"],
                      id="orphan_sweep", replace_existing=True)
    scheduler.start()
    app.extensions["scheduler"] = scheduler
    return scheduler


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)
    configure_logging(app.config["LOG_LEVEL"])

    if not app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite"):
        app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {
            "pool_size": app.config["DB_POOL_SIZE"],
            "pool_timeout": app.config["DB_POOL_TIMEOUT"],
            "pool_pre_ping": True,
        })
    db.init_app(app)
    with app.app_context():
        db.create_all()
        seed_remind_me(db.session)

    app.extensions["blobstore"] = build_blobstore(app.config)
    app.extensions["authenticator"] = Authenticator(app.config["SECRET_KEY"], app.config["SESSION_TOKEN_MAX_AGE"])
    app.register_blueprint(bp)

    if app.config["ORPHAN_SWEEP_MINUTES"] > 0 and not app.config.get("TESTING"):
        start_sweeper(app)
    return app


# ==========================================================
# 🔒 HELPER FUNCTIONS
# ==========================================================
class Services:
    """Managers for one request, sharing the request's datastore session."""

    def __init__(self, datastore, blobs, config):
        self.datastore = datastore
        self.accounts = AccountManager(datastore)
        self.records = RecordsManager(
            datastore, blobs,
            purge_blobs=config["PURGE_BLOBS_ON_ITEM_DELETE"],
            recent_limit=config["RECENT_DOCUMENTS_LIMIT"],
        )
        self.documents = DocumentManager(
            datastore, blobs,
            link_ttl=config["DOWNLOAD_LINK_TTL"],
            max_link_ttl=config["MAX_DOWNLOAD_LINK_TTL"],
            max_bytes=config["MAX_UPLOAD_BYTES"],
            allowed_mime=config["ALLOWED_MIME"],
        )
        self.alerts = AlertEvaluator(datastore)


def services():
    if "services" not in g:
        g.services = Services(Datastore(db.session), current_app.extensions["blobstore"], current_app.config)
    return g.services


def payload():
    return request.get_json(silent=True) or request.form


def login_required(func):
    """Resolves the caller's identity and passes it as the first argument."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        user = current_app.extensions["authenticator"].authenticate(request)
        services().accounts.get_active(user.account_id)
        return func(user, *args, **kwargs)
    return wrapper


@bp.app_errorhandler(RecordVaultError)
def handle_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


@bp.app_errorhandler(413)
def handle_too_large(exc):
    return jsonify({"error": "file too large", "code": "VALIDATION_ERROR"}), 413


# ==========================================================
# 🚪 AUTHENTICATION ROUTES
# ==========================================================
@bp.route("/register", methods=["POST"])
def register():
    req = RegisterRequest.from_payload(payload())
    account_id = services().accounts.register(req.name, req.email, req.password, req.mobile)
    return jsonify({"message": "registered", "id": account_id}), 201


@bp.route("/login", methods=["POST"])
def login():
    req = LoginRequest.from_payload(payload())
    identity = services().accounts.login(req.email, req.password)
    token = current_app.extensions["authenticator"].issue(identity)
    response = jsonify({
        "message": "logged in",
        "token": token,
        "user": {"id": identity.account_id, "name": identity.display_name, "email": identity.email},
    })
    response.set_cookie(
        TOKEN_COOKIE, token,
        httponly=True,
        secure=not (current_app.debug or current_app.testing),
        max_age=current_app.config["SESSION_TOKEN_MAX_AGE"],
    )
    return response


@bp.route("/logout", methods=["POST"])
def logout():
    response = jsonify({"message": "logged out"})
    response.delete_cookie(TOKEN_COOKIE)
    return response


@bp.route("/account/disable", methods=["POST"])
@login_required
def disable_account(user):
    services().accounts.disable(user.account_id)
    response = jsonify({"message": "account disabled"})
    response.delete_cookie(TOKEN_COOKIE)
    return response


# ==========================================================
# 🗂 HEADERS & ITEMS
# ==========================================================
@bp.route("/records")
@login_required
def list_records(user):
    return jsonify(services().records.list_all(user.account_id))


@bp.route("/search")
@login_required
def search(user):
    items = services().records.search_items(user.account_id, request.args.get("q"))
    return jsonify({"items": [item.to_dict() for item in items]})


@bp.route("/headers", methods=["POST"])
@login_required
def create_header(user):
    req = HeaderRequest.from_payload(payload())
    header_id = services().records.create_header(user.account_id, req.name)
    return jsonify({"id": header_id}), 201


@bp.route("/headers/<int:header_id>", methods=["DELETE"])
@login_required
def delete_header(user, header_id):
    services().records.delete_header(user.account_id, header_id)
    return jsonify({"message": "deleted"})


@bp.route("/items", methods=["POST"])
@login_required
def create_item(user):
    req = ItemRequest.from_payload(payload())
    item_id = services().records.create_item(
        user.account_id, req.header_id, req.title,
        req.short_description, req.long_description, req.highlights,
    )
    return jsonify({"id": item_id}), 201


@bp.route("/items/<int:item_id>")
@login_required
def get_item(user, item_id):
    svc = services()
    item = svc.records.get_item(user.account_id, item_id)
    return jsonify({
        **item.to_dict(),
        "reminders": [r.to_dict() for r in svc.records.list_reminders(user.account_id, item_id)],
        "documents": [d.to_dict() for d in svc.documents.list_for_item(user.account_id, item_id)],
    })


@bp.route("/items/<int:item_id>", methods=["PUT"])
@login_required
def update_item(user, item_id):
    req = ItemRequest.from_payload(payload(), partial=True)
    services().records.update_item(user.account_id, item_id, header_id=req.header_id, **req.fields())
    return jsonify({"message": "updated"})


@bp.route("/items/<int:item_id>", methods=["DELETE"])
@login_required
def delete_item(user, item_id):
    services().records.delete_item(user.account_id, item_id)
    return jsonify({"message": "deleted"})


# ==========================================================
# ⏰ REMINDERS
# ==========================================================
@bp.route("/items/<int:item_id>/reminders", methods=["POST"])
@login_required
def create_reminder(user, item_id):
    req = ReminderRequest.from_payload(payload())
    kwargs = {"before": req.before} if req.before is not None else {}
    reminder_id = services().records.create_reminder(user.account_id, item_id, req.name, req.remind_date, **kwargs)
    return jsonify({"id": reminder_id}), 201


@bp.route("/reminders/<int:reminder_id>", methods=["PUT"])
@login_required
def update_reminder(user, reminder_id):
    req = ReminderRequest.from_payload(payload())
    services().records.update_reminder(user.account_id, reminder_id, req.name, req.remind_date, req.before)
    return jsonify({"message": "updated"})


@bp.route("/reminders/<int:reminder_id>", methods=["DELETE"])
@login_required
def delete_reminder(user, reminder_id):
    services().records.delete_reminder(user.account_id, reminder_id)
    return jsonify({"message": "deleted"})


@bp.route("/reminders/due")
@login_required
def due_reminders(user):
    on = request.args.get("on")
    now = parse_date(on, field="on") if on else utcnow()
    due = services().alerts.evaluate_due(user.account_id, now)
    return jsonify({"reminders": [r.to_dict() for r in due]})


# ==========================================================
# 📁 DOCUMENT MANAGEMENT ROUTES
# ==========================================================
@bp.route("/items/<int:item_id>/documents", methods=["POST"])
@login_required
def upload(user, item_id):
    if "file" not in request.files:
        raise ValidationError("no file provided", field="file")
    file = request.files["file"]
    if not file.filename:
        raise ValidationError("empty filename", field="file")

    form = DocumentRequest.from_payload(request.form, partial=True)
    document_id = services().documents.create(
        user.account_id, item_id,
        form.name or secure_filename(file.filename),
        file.filename, file.read(), file.mimetype,
        renewal_required=bool(form.renewal_required),
    )
    return jsonify({"id": document_id}), 201


@bp.route("/documents/<int:document_id>", methods=["PUT"])
@login_required
def replace_document(user, document_id):
    form = DocumentRequest.from_payload(request.form, partial=True)
    file = request.files.get("file")
    filename = content = content_type = None
    if file is not None and file.filename:
        filename, content, content_type = file.filename, file.read(), file.mimetype

    services().documents.replace(
        user.account_id, document_id,
        name=form.name, filename=filename, content=content, content_type=content_type,
        renewal_required=form.renewal_required,
    )
    return jsonify({"message": "updated"})


@bp.route("/documents/<int:document_id>", methods=["DELETE"])
@login_required
def delete_document(user, document_id):
    services().documents.delete(user.account_id, document_id)
    return jsonify({"message": "deleted"})


@bp.route("/documents/<int:document_id>/link")
@login_required
def document_link(user, document_id):
    link = services().documents.get_download_link(user.account_id, document_id, request.args.get("ttl", type=int))
    return jsonify({"url": link.url, "expires_in": link.expires_in})


@bp.route("/blobs/<token>")
def download_blob(token):
    """Serves local-store blobs; the signed token is the only credential."""
    store = current_app.extensions["blobstore"]
    if not isinstance(store, LocalBlobStore):
        raise NotFoundOrForbidden("blob")
    key = store.resolve_link(token)
    content = store.get(key)
    mimetype = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return send_file(io.BytesIO(content), mimetype=mimetype, as_attachment=True, download_name=key)


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=8080, debug=True)
