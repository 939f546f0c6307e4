import pytest

from erp_core.models import AccountRole, FeeStructure
from tests.conftest import PASSWORD


@pytest.fixture
def school(db, tenant, make_account, make_student):
    """Branch staff, a parent with one child, and a child in another branch."""
    institution = tenant["institution"]
    branch = tenant["branch"]
    other = tenant["other_branch"]
    db.add(
        FeeStructure(
            institution_id=institution.id,
            branch_id=branch.id,
            class_name="5",
            categories={"Tuition": 1000},
        )
    )
    db.commit()

    parent = make_account("parent@school.test", role=AccountRole.PARENT, institution_id=institution.id)
    child = make_student(
        "REG1",
        class_name="5",
        institution_id=institution.id,
        branch_id=branch.id,
        parent_id=parent.id,
    )
    stranger = make_student("REG2", class_name="5", institution_id=institution.id, branch_id=other.id)
    make_account("staff@school.test", role=AccountRole.STAFF, institution_id=institution.id, branch_id=branch.id)
    make_account(
        "badmin@school.test", role=AccountRole.BRANCH_ADMIN, institution_id=institution.id, branch_id=branch.id
    )
    make_account("iadmin@school.test", role=AccountRole.INSTITUTION_ADMIN, institution_id=institution.id)
    make_account("owner@erp.test", role=AccountRole.COMPANY_ADMIN)
    return {"branch": branch, "other_branch": other, "child": child, "stranger": stranger, "parent": parent}


def _as(login, email):
    return login(email=email, password=PASSWORD)


def test_fee_status_shape(client, login, school):
    headers = _as(login, "staff@school.test")
    child = school["child"]
    client.post(
        "/fees",
        json={"studentId": child.id, "category": "Tuition", "amount": 1200, "mode": "UPI", "note": "Term 1"},
        headers=headers,
    )

    resp = client.get(f"/fees/{child.id}", headers=headers)

    assert resp.status_code == 200
    body = resp.json()
    assert body["feeStructureTotal"] == 1000
    assert body["paidTotal"] == 1200
    assert body["pendingAmount"] == 0
    assert body["feeStructure"] == {"Tuition": 1000}
    assert body["categories"] == [{"category": "Tuition", "total": 1000, "paid": 1200, "due": 0}]
    payment = body["payments"][0]
    assert payment["category"] == "Tuition"
    assert payment["mode"] == "UPI"
    assert payment["note"] == "Term 1"
    assert payment["status"] == "approved"
    assert payment["studentId"] == child.id


def test_record_payment_response(client, login, school):
    headers = _as(login, "staff@school.test")

    resp = client.post(
        "/fees",
        json={"studentId": school["child"].id, "category": "Tuition", "amount": 250},
        headers=headers,
    )

    assert resp.status_code == 201
    assert resp.json()["message"] == "Payment recorded"
    assert resp.json()["payment"]["mode"] == "Cash"


@pytest.mark.parametrize(
    "payload, message",
    [
        ({"category": "Tuition", "amount": 0}, "Amount must be greater than zero"),
        ({"category": "  ", "amount": 10}, "Category is required"),
    ],
)
def test_record_payment_validation(client, login, school, payload, message):
    headers = _as(login, "staff@school.test")

    resp = client.post("/fees", json={"studentId": school["child"].id, **payload}, headers=headers)

    assert resp.status_code == 400
    assert resp.json() == {"message": message}


def test_record_payment_missing_student_id(client, login, school):
    headers = _as(login, "staff@school.test")

    resp = client.post("/fees", json={"category": "Tuition", "amount": 10}, headers=headers)

    assert resp.status_code == 400
    assert resp.json() == {"message": "studentId is required"}


def test_record_payment_unknown_student(client, login, school):
    headers = _as(login, "owner@erp.test")

    resp = client.post("/fees", json={"studentId": 9999, "category": "Tuition", "amount": 10}, headers=headers)

    assert resp.status_code == 404
    assert resp.json() == {"message": "Student not found"}


def test_parent_cannot_record_payments(client, login, school):
    headers = _as(login, "parent@school.test")

    resp = client.post(
        "/fees", json={"studentId": school["child"].id, "category": "Tuition", "amount": 10}, headers=headers
    )

    assert resp.status_code == 403


def test_staff_cannot_reach_other_branch(client, login, school):
    headers = _as(login, "staff@school.test")
    stranger = school["stranger"]

    assert client.get(f"/fees/{stranger.id}", headers=headers).status_code == 403
    resp = client.post("/fees", json={"studentId": stranger.id, "category": "Tuition", "amount": 10}, headers=headers)
    assert resp.status_code == 403


def test_institution_and_company_admins_see_every_branch(client, login, school):
    for email in ("iadmin@school.test", "owner@erp.test"):
        headers = _as(login, email)
        assert client.get(f"/fees/{school['stranger'].id}", headers=headers).status_code == 200


def test_parent_sees_only_own_children(client, login, school):
    headers = _as(login, "parent@school.test")

    assert client.get(f"/fees/{school['child'].id}", headers=headers).status_code == 200
    assert client.get(f"/fees/{school['stranger'].id}", headers=headers).status_code == 403


def test_student_sees_only_self(client, login, school):
    headers = login(registerNumber="REG1", phone="9000000000")

    assert client.get(f"/fees/{school['child'].id}", headers=headers).status_code == 200
    assert client.get(f"/fees/{school['stranger'].id}", headers=headers).status_code == 403


def test_scope_can_be_switched_off(client, login, school, settings):
    object.__setattr__(settings, "enforce_tenant_scope", False)
    headers = _as(login, "staff@school.test")

    assert client.get(f"/fees/{school['stranger'].id}", headers=headers).status_code == 200


def test_fee_status_requires_token(client, school):
    resp = client.get(f"/fees/{school['child'].id}")

    assert resp.status_code == 401
    assert resp.json() == {"message": "Missing Authorization header"}


def test_unknown_student_is_404(client, login, school):
    headers = _as(login, "owner@erp.test")

    resp = client.get("/fees/9999", headers=headers)

    assert resp.status_code == 404
    assert resp.json() == {"message": "Student not found"}


def test_upsert_and_list_structures(client, login, school):
    headers = _as(login, "badmin@school.test")
    branch_id = school["branch"].id

    created = client.put(
        "/fees/structures",
        json={"branchId": branch_id, "class": "LKG", "categories": {"Tuition": 800, "Bus": 200}},
        headers=headers,
    )
    replaced = client.put(
        "/fees/structures",
        json={"branchId": branch_id, "class": "LKG", "categories": {"Tuition": 900}},
        headers=headers,
    )

    assert created.status_code == replaced.status_code == 200
    assert created.json()["id"] == replaced.json()["id"]
    assert replaced.json()["class"] == "LKG"
    assert replaced.json()["total"] == 900

    listing = client.get(f"/fees/structures/branch/{branch_id}", headers=_as(login, "staff@school.test"))
    assert listing.status_code == 200
    assert [item["class"] for item in listing.json()] == ["5", "LKG"]


def test_staff_cannot_edit_structures(client, login, school):
    headers = _as(login, "staff@school.test")

    resp = client.put(
        "/fees/structures",
        json={"branchId": school["branch"].id, "class": "LKG", "categories": {"Tuition": 800}},
        headers=headers,
    )

    assert resp.status_code == 403


def test_branch_admin_limited_to_own_branch_structures(client, login, school):
    headers = _as(login, "badmin@school.test")

    resp = client.put(
        "/fees/structures",
        json={"branchId": school["other_branch"].id, "class": "LKG", "categories": {"Tuition": 800}},
        headers=headers,
    )

    assert resp.status_code == 403


def test_negative_structure_amount(client, login, school):
    headers = _as(login, "badmin@school.test")

    resp = client.put(
        "/fees/structures",
        json={"branchId": school["branch"].id, "class": "LKG", "categories": {"Tuition": -5}},
        headers=headers,
    )

    assert resp.status_code == 400
    assert resp.json() == {"message": "Invalid amount for category 'Tuition'"}


def test_payment_status_update(client, login, school):
    staff = _as(login, "staff@school.test")
    child_id = school["child"].id
    payment = client.post(
        "/fees", json={"studentId": child_id, "category": "Tuition", "amount": 600}, headers=staff
    ).json()["payment"]

    admin = _as(login, "badmin@school.test")
    resp = client.patch(f"/fees/payments/{payment['id']}/status", json={"status": "pending"}, headers=admin)

    assert resp.status_code == 200
    assert resp.json()["status"] == "pending"
    status = client.get(f"/fees/{child_id}", headers=staff).json()
    assert status["paidTotal"] == 0
    assert status["pendingAmount"] == 1000

    assert client.patch(f"/fees/payments/{payment['id']}/status", json={"status": "bogus"}, headers=admin).status_code == 400
    assert client.patch(f"/fees/payments/{payment['id']}/status", json={"status": "approved"}, headers=staff).status_code == 403


def test_fees_due_report(client, login, school):
    headers = _as(login, "staff@school.test")

    resp = client.get(f"/fees/branch/{school['branch'].id}/dues", headers=headers)

    assert resp.status_code == 200
    results = resp.json()["results"]
    assert [item["studentId"] for item in results] == [school["child"].id]
    assert results[0]["pendingAmount"] == 1000
    assert results[0]["registrationNumber"] == "REG1"
    assert client.get(f"/fees/branch/{school['other_branch'].id}/dues", headers=headers).status_code == 403
