import posixpath

from flask import Blueprint, abort, redirect, send_file, url_for

from app.retail.storage import LocalStorage
from app.retail.stores import get_stores

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return redirect(url_for("customers.index"))


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for container probes. No storage access, minimal overhead.
    """
    return "ok", 200


def _photo_key(raw: str, prefix: str) -> str | None:
    """Normalised key when it names a file under the photo prefix, else None."""
    key = raw.replace("\\", "/")
    if ".." in key.split("/"):
        return None
    key = posixpath.normpath(key)
    if not key.startswith(prefix) or key == prefix.rstrip("/"):
        return None
    return key


@bp.get("/media/<path:key>")
def media(key: str):
    """Serve customer photos for the local backend; other backends hand out their own URLs."""
    photos = get_stores().photos
    if not isinstance(photos.storage, LocalStorage):
        abort(404)
    photo_key = _photo_key(key, photos.prefix)
    if photo_key is None or not photos.storage.exists(photo_key):
        abort(404)
    return send_file(photos.storage.open(photo_key), mimetype="application/octet-stream", max_age=3600)
