from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, redirect, render_template, request, url_for

from app.retail.modules.customers.models import Customer
from app.retail.modules.customers.service import (
    ValidationError,
    create_customer,
    delete_customer,
    export_log,
    update_customer,
    validate_customer_payload,
)
from app.retail.stores import get_stores

bp = Blueprint("customers", __name__)


def _payload() -> dict[str, str | None]:
    return {
        "partition_key": request.form.get("partition_key"),
        "row_key": request.form.get("row_key"),
        "first_name": request.form.get("first_name"),
        "last_name": request.form.get("last_name"),
        "email": request.form.get("email"),
        "phone_number": request.form.get("phone_number"),
    }


def _errors_by_field(errs: list[ValidationError]) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    for e in errs:
        out.setdefault(e.field, []).append(e.message)
    return out


def _get_customer_or_404(partition_key: str, row_key: str) -> Customer:
    c = get_stores().customers.get(partition_key, row_key)
    if not c:
        abort(404)
    return c


def _report_audit(result) -> None:
    if not result.ok:
        flash("Saved, but the activity log could not be updated.", "warning")


# ---------- List ----------
@bp.get("/")
def index():
    customers = get_stores().customers.list()
    return render_template("customers/index.html", customers=customers)


# ---------- Create ----------
@bp.get("/create")
def create_get():
    return render_template("customers/create.html", form={}, errors={})


@bp.post("/create")
def create_post():
    payload = _payload()
    image = request.files.get("image")
    errs = validate_customer_payload(payload, image=image)
    if errs:
        return render_template("customers/create.html", form=payload, errors=_errors_by_field(errs))

    customer, result = create_customer(get_stores(), payload, image)
    current_app.logger.info("Customer %s created via form", customer.row_key)
    _report_audit(result)
    flash("Customer created.", "success")
    return redirect(url_for("customers.index"))


# ---------- Details ----------
@bp.get("/<partition_key>/<row_key>")
def details(partition_key: str, row_key: str):
    customer = _get_customer_or_404(partition_key, row_key)
    return render_template("customers/details.html", customer=customer)


# ---------- Edit ----------
@bp.get("/<partition_key>/<row_key>/edit")
def edit_get(partition_key: str, row_key: str):
    customer = _get_customer_or_404(partition_key, row_key)
    return render_template("customers/edit.html", form=customer.to_dict(), errors={})


@bp.post("/edit")
def edit_post():
    payload = _payload()
    new_image = request.files.get("new_image")
    errs = validate_customer_payload(payload, image=new_image, require_keys=True)
    if errs:
        # photo_url is echoed back for redisplay only; update_customer never reads it.
        form = {**payload, "photo_url": request.form.get("photo_url")}
        return render_template("customers/edit.html", form=form, errors=_errors_by_field(errs))

    stores = get_stores()
    existing = _get_customer_or_404(payload["partition_key"].strip(), payload["row_key"].strip())
    _, result = update_customer(stores, existing, payload, new_image)
    _report_audit(result)
    flash("Customer updated.", "success")
    return redirect(url_for("customers.index"))


# ---------- Delete ----------
@bp.get("/<partition_key>/<row_key>/delete")
def delete_get(partition_key: str, row_key: str):
    customer = _get_customer_or_404(partition_key, row_key)
    return render_template("customers/delete.html", customer=customer)


@bp.post("/<partition_key>/<row_key>/delete")
def delete_post(partition_key: str, row_key: str):
    customer = _get_customer_or_404(partition_key, row_key)
    photo_ok, result = delete_customer(get_stores(), customer)
    if not photo_ok:
        flash("Customer deleted, but the photo could not be removed.", "warning")
    _report_audit(result)
    flash("Customer deleted.", "success")
    return redirect(url_for("customers.index"))


# ---------- Activity log ----------
@bp.get("/log")
def log():
    messages = get_stores().audit.list()
    return render_template("customers/log.html", messages=messages)


@bp.post("/log/export")
def export_log_post():
    result = export_log(get_stores())
    # Upload failures are only logged (by export_log); the user always lands on the list.
    if result.ok:
        flash(f"Exported {result.message_count} log entries to {result.filename}.", "success")
    return redirect(url_for("customers.index"))
