import random
import re
from datetime import datetime, timezone

import pytest
from fastapi import HTTPException

import invoices
from conftest import make_admin, sign_in

NUMBER = re.compile(r"^[A-Z]{2,3}[0-9]{1,4}$")


class _TakenInvoices:
    """Every number is taken until `free_after` lookups have been made."""

    def __init__(self, free_after=None):
        self.free_after = free_after
        self.lookups = []

    def find_one(self, query, *args, **kwargs):
        self.lookups.append(query["invoiceNumber"])
        if self.free_after is not None and len(self.lookups) > self.free_after:
            return None
        return {"_id": "taken"}


class _FullDb:
    def __init__(self, free_after=None):
        self.invoice = _TakenInvoices(free_after)

    def __getitem__(self, name):
        return getattr(self, name)


def _invoice(**overrides):
    items, sub_total, tax, grand = invoices.compute_totals(
        [{"name": "Registration", "quantity": 1, "amount": 499}], 18,
    )
    data = {
        "invoiceNumber": "AB123",
        "invoiceDate": datetime(2025, 3, 1, tzinfo=timezone.utc),
        "paymentStatus": "paid",
        "yourCompany": {"name": "AOTF", "address": "Kolkata", "phone": "000"},
        "billTo": {"name": "Asha", "address": "Howrah", "phone": "111"},
        "items": items,
        "subTotal": sub_total,
        "taxPercentage": 18,
        "taxAmount": tax,
        "grandTotal": grand,
        "notes": "Thank you",
        "currency": "INR",
        "websiteUrl": "https://aotf.in",
    }
    data.update(overrides)
    return data


def test_generated_numbers_are_well_formed_and_unique(db):
    rng = random.Random(7)
    seen = set()
    for _ in range(30):
        number = invoices.generate_invoice_number(db, rng)
        assert NUMBER.match(number)
        assert 4 <= len(number) <= 6
        assert number not in seen
        seen.add(number)
        db.invoice.insert_one({"invoiceNumber": number})


def test_number_falls_back_when_space_is_exhausted():
    full = _FullDb(free_after=invoices.MAX_NUMBER_ATTEMPTS + 1)
    number = invoices.generate_invoice_number(full, random.Random(1))
    assert re.match(r"^[A-Z][0-9]{4}$", number)
    # the first fallback candidate was taken, so the second one is returned
    fallbacks = full.invoice.lookups[invoices.MAX_NUMBER_ATTEMPTS:]
    assert len(fallbacks) == 2
    assert fallbacks[0] != number
    assert fallbacks[1] == number


def test_fallback_numbers_are_checked_for_uniqueness():
    full = _FullDb()
    with pytest.raises(HTTPException) as exc:
        invoices.generate_invoice_number(full, random.Random(1))
    assert exc.value.status_code == 500
    assert len(full.invoice.lookups) == 2 * invoices.MAX_NUMBER_ATTEMPTS


def test_compute_totals():
    items, sub_total, tax, grand = invoices.compute_totals(
        [{"name": "A", "quantity": 2, "amount": 150.5}, {"name": "B", "quantity": 1, "amount": 99.99}], 18,
    )
    assert [i["total"] for i in items] == [301.0, 99.99]
    assert sub_total == 400.99
    assert tax == 72.18
    assert grand == 473.17


@pytest.mark.parametrize("template", [1, 2, 3, 99])
def test_render_pdf(template):
    pdf = invoices.render_invoice_pdf(_invoice(shipTo={"name": "Asha", "address": "Howrah", "phone": "111"}), template)
    assert pdf.startswith(b"%PDF")


def test_render_pdf_paginates_long_item_lists():
    items = [{"name": f"Session {i}", "description": "Weekly class", "quantity": 1, "amount": 10, "total": 10}
             for i in range(120)]
    pdf = invoices.render_invoice_pdf(_invoice(items=items))
    assert len(re.findall(rb"/Type /Page[^s]", pdf)) > 1


# ----------------- HTTP -----------------
def test_create_and_fetch_invoice(db, admin_client):
    sign_in(admin_client, "admin", make_admin(db))
    resp = admin_client.post("/api/admin/invoices", json={
        "billTo": {"name": "Asha", "address": "Howrah", "phone": "111"},
        "items": [{"name": "Registration", "amount": 499}],
        "taxPercentage": 18,
    })
    invoice = resp.json()["invoice"]
    assert NUMBER.match(invoice["invoiceNumber"])
    assert invoice["grandTotal"] == 588.82
    assert invoice["yourCompany"]["name"]

    number = invoice["invoiceNumber"]
    assert admin_client.get(f"/api/admin/invoices/{number}").json()["invoice"]["_id"] == invoice["_id"]
    listed = admin_client.get("/api/admin/invoices", params={"search": number.lower()}).json()
    assert [i["invoiceNumber"] for i in listed["invoices"]] == [number]

    pdf = admin_client.get(f"/api/admin/invoices/{number}/pdf")
    assert pdf.headers["content-type"] == "application/pdf"
    assert pdf.content.startswith(b"%PDF")


def test_duplicate_invoice_number(db, admin_client):
    sign_in(admin_client, "admin", make_admin(db))
    body = {
        "invoiceNumber": "ab12",
        "billTo": {"name": "Asha", "address": "Howrah", "phone": "111"},
        "items": [{"name": "Fee", "amount": 100}],
    }
    assert admin_client.post("/api/admin/invoices", json=body).json()["invoice"]["invoiceNumber"] == "AB12"
    assert admin_client.post("/api/admin/invoices", json=body).status_code == 400


def test_invoice_requires_items(db, admin_client):
    sign_in(admin_client, "admin", make_admin(db))
    resp = admin_client.post("/api/admin/invoices", json={
        "billTo": {"name": "Asha", "address": "Howrah", "phone": "111"}, "items": [],
    })
    assert resp.status_code == 400


def test_missing_invoice(db, admin_client):
    sign_in(admin_client, "admin", make_admin(db))
    assert admin_client.get("/api/admin/invoices/ZZ999").status_code == 404
