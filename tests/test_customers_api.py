import base64

from bson import ObjectId


def create(client, headers, **fields):
    payload = {"name": "Ravi Kumar", "username": "ravi01", "mobile": "9876543210"}
    payload.update(fields)
    return client.post("/api/customers", json=payload, headers=headers)


def test_create_customer_reconciles_payments(client, admin, auth):
    res = create(client, auth(admin), totalAmount=12000, paymentHistory=[{"amount": 5000, "date": "2024-03-01"}])
    assert res.status_code == 201
    customer = res.json()["customer"]
    assert customer["paymentPaid"] == 5000
    assert customer["paymentDue"] == 7000
    assert customer["totalAmount"] == 12000
    assert customer["paymentStatus"] == "partial"
    assert customer["paymentHistory"][0]["date"] == "2024-03-01"
    assert "passwordHash" not in customer


def test_create_customer_requires_admin(client, customer, auth):
    res = create(client, auth(customer))
    assert res.status_code == 403


def test_create_customer_validation_lists_missing_fields(client, admin, auth):
    res = client.post("/api/customers", json={"username": "x1y2"}, headers=auth(admin))
    assert res.status_code == 400
    detail = res.json()["detail"]
    assert "name is required" in detail["errors"]
    assert "mobile is required" in detail["errors"]


def test_username_collision_is_case_insensitive(client, admin, auth):
    assert create(client, auth(admin), username="Ravi01").status_code == 201
    res = create(client, auth(admin), username="RAVI01", mobile="9876500000")
    assert res.status_code == 409


def test_photo_round_trip(client, admin, auth):
    original = bytes(range(256)) * 4
    photo = "data:image/png;base64," + base64.b64encode(original).decode()
    created = create(client, auth(admin), housePhoto=photo).json()["customer"]

    res = client.get(f"/api/customers/{created['_id']}", headers=auth(admin))
    stored = res.json()["user"]["housePhoto"]
    assert stored.startswith("data:image/jpeg;base64,")
    assert base64.b64decode(stored.split(",", 1)[1]) == original
    assert res.json()["user"]["ownerPhoto"] is None


def test_loose_materials_string_on_create(client, admin, auth):
    res = create(client, auth(admin), materials="['Wire', {name: 'Switch', cost: 50, purchasedByAdmin: true}]")
    customer = res.json()["customer"]
    assert customer["materials"] == [
        {"name": "Wire", "cost": None, "purchasedByAdmin": False},
        {"name": "Switch", "cost": 50, "purchasedByAdmin": True},
    ]
    assert customer["materialsTotalCost"] == 50


def test_list_customers_paginates_and_filters(client, admin, make_user, auth):
    make_user("anil", area="Kothrud", workStatus="ongoing")
    make_user("bina", area="Baner")
    make_user("chetan", area="kothrud east", workStatus="completed")

    res = client.get("/api/customers", params={"limit": 2}, headers=auth(admin))
    body = res.json()
    assert res.status_code == 200
    assert len(body["customers"]) == 2
    assert body["pagination"] == {"current": 1, "pages": 2, "total": 3, "hasNext": True, "hasPrev": False}

    res = client.get("/api/customers", params={"page": 2, "limit": 2}, headers=auth(admin))
    assert res.json()["pagination"]["hasPrev"] is True
    assert len(res.json()["customers"]) == 1

    res = client.get("/api/customers", params={"area": "KOTHRUD"}, headers=auth(admin))
    assert {c["username"] for c in res.json()["customers"]} == {"anil", "chetan"}

    res = client.get("/api/customers", params={"search": "bin"}, headers=auth(admin))
    assert [c["username"] for c in res.json()["customers"]] == ["bina"]

    res = client.get("/api/customers", params={"workStatus": "completed"}, headers=auth(admin))
    assert [c["username"] for c in res.json()["customers"]] == ["chetan"]

    res = client.get("/api/customers", params={"sortBy": "username", "sortOrder": "asc"}, headers=auth(admin))
    assert [c["username"] for c in res.json()["customers"]] == ["anil", "bina", "chetan"]


def test_search_text_is_matched_literally(client, admin, make_user, auth):
    make_user("anil")
    res = client.get("/api/customers", params={"search": ".*"}, headers=auth(admin))
    assert res.json()["customers"] == []


def test_stats(client, admin, make_user, auth):
    make_user("anil", area="Kothrud", workStatus="ongoing", totalAmount=10000, paymentPaid=4000, paymentDue=6000)
    make_user("bina", area="Kothrud", totalAmount=2000, paymentPaid=2000, paymentDue=0)
    make_user("chetan", area="Baner", workStatus="completed", totalAmount=500, paymentPaid=0, paymentDue=500)

    body = client.get("/api/customers/stats", headers=auth(admin)).json()
    stats = body["stats"]
    assert stats["totalCustomers"] == 3
    assert stats["totalOngoing"] == 1
    assert stats["totalCompleted"] == 1
    assert stats["totalPending"] == 1
    assert stats["totalRevenue"] == 6000
    assert stats["totalDue"] == 6500
    assert stats["avgPayment"] == 2000
    assert body["areaStats"][0] == {"area": "Kothrud", "count": 2, "totalRevenue": 6000, "totalDue": 6000}


def test_stats_when_there_are_no_customers(client, admin, auth):
    body = client.get("/api/customers/stats", headers=auth(admin)).json()
    assert body["stats"]["totalCustomers"] == 0
    assert body["areaStats"] == []


def test_customer_can_only_view_own_record(client, customer, other_customer, auth):
    assert client.get(f"/api/customers/{customer['_id']}", headers=auth(customer)).status_code == 200
    assert client.get(f"/api/customers/{other_customer['_id']}", headers=auth(customer)).status_code == 403


def test_customer_gets_same_answer_for_unknown_and_foreign_ids(client, customer, other_customer, auth):
    for user_id in (str(other_customer["_id"]), str(ObjectId()), "not-an-id"):
        assert client.get(f"/api/customers/{user_id}", headers=auth(customer)).status_code == 403
        res = client.put(f"/api/customers/{user_id}", json={"name": "x"}, headers=auth(customer))
        assert res.status_code == 403


def test_malformed_and_unknown_ids_are_not_found(client, admin, auth):
    assert client.get("/api/customers/not-an-id", headers=auth(admin)).status_code == 404
    assert client.get(f"/api/customers/{ObjectId()}", headers=auth(admin)).status_code == 404
    assert client.put("/api/customers/123", json={"name": "x"}, headers=auth(admin)).status_code == 404


def test_customer_update_rules(client, customer, other_customer, auth):
    res = client.put(f"/api/customers/{other_customer['_id']}", json={"workStatus": "completed"}, headers=auth(customer))
    assert res.status_code == 403

    res = client.put(
        f"/api/customers/{customer['_id']}",
        json={"name": "Ravi K", "workStatus": "completed", "totalAmount": 1},
        headers=auth(customer),
    )
    assert res.status_code == 200
    user = res.json()["user"]
    assert user["name"] == "Ravi K"
    assert user["workStatus"] == "pending"
    assert user["totalAmount"] == 0


def test_admin_update_recomputes_financials(client, admin, auth):
    created = create(client, auth(admin), totalAmount=12000, paymentHistory=[{"amount": 5000}]).json()["customer"]
    url = f"/api/customers/{created['_id']}"

    user = client.put(url, json={"totalAmount": 15000, "workStatus": "ongoing"}, headers=auth(admin)).json()["user"]
    assert user["paymentDue"] == 10000
    assert user["workStatus"] == "ongoing"

    user = client.put(url, json={"paymentHistory": [{"amount": 6000, "date": "2024-05-05"}, {"amount": 0}]}, headers=auth(admin)).json()["user"]
    assert user["paymentPaid"] == 6000
    assert user["paymentDue"] == 9000
    assert user["paymentHistory"] == [{"date": "2024-05-05", "amount": 6000, "description": ""}]


def test_admin_update_rejects_bad_values(client, admin, customer, auth):
    url = f"/api/customers/{customer['_id']}"
    res = client.put(url, json={"mobile": "12", "workStatus": "nope"}, headers=auth(admin))
    assert res.status_code == 400
    assert len(res.json()["detail"]["errors"]) == 2

    res = client.put(url, json={"paymentDue": -1}, headers=auth(admin))
    assert res.status_code == 400


def test_add_payments_until_paid(client, admin, auth):
    created = create(client, auth(admin), totalAmount=12000, paymentHistory=[{"amount": 5000}]).json()["customer"]
    url = f"/api/customers/{created['_id']}/payments"

    body = client.post(url, json={"amount": 3000, "description": "cash", "date": "2024-06-01"}, headers=auth(admin)).json()
    assert body["customer"]["paymentPaid"] == 8000
    assert body["customer"]["paymentDue"] == 4000
    assert body["payment"] == {"date": "2024-06-01", "amount": 3000, "description": "cash"}

    body = client.post(url, json={"amount": 4000}, headers=auth(admin)).json()
    assert body["customer"]["paymentPaid"] == 12000
    assert body["customer"]["paymentDue"] == 0
    assert body["customer"]["paymentStatus"] == "paid"
    assert len(body["customer"]["paymentHistory"]) == 3


def test_add_payment_validation_and_access(client, admin, customer, auth):
    url = f"/api/customers/{customer['_id']}/payments"
    assert client.post(url, json={"amount": 0}, headers=auth(admin)).status_code == 400
    assert client.post(url, json={}, headers=auth(admin)).status_code == 400
    res = client.post(url, json={"amount": "lots"}, headers=auth(admin))
    assert res.status_code == 400
    assert res.json()["detail"]["message"] == "Payment amount is required and must be greater than 0"
    assert client.post(url, json={"amount": 100}, headers=auth(customer)).status_code == 403
    assert client.post(f"/api/customers/{admin['_id']}/payments", json={"amount": 100}, headers=auth(admin)).status_code == 404


def test_add_single_material(client, admin, customer, auth):
    url = f"/api/customers/{customer['_id']}/materials"
    res = client.post(url, json={"name": "Switch", "cost": 50, "purchasedByAdmin": True}, headers=auth(admin))
    assert res.status_code == 201
    assert res.json()["customer"]["materialsTotalCost"] == 50

    res = client.post(url, json={"name": "switch"}, headers=auth(admin))
    assert res.status_code == 409


def test_soft_delete(client, admin, customer, auth):
    url = f"/api/customers/{customer['_id']}"
    assert client.delete(url, headers=auth(admin)).status_code == 200
    assert client.get(url, headers=auth(admin)).status_code == 404
    assert client.get("/api/customers", headers=auth(admin)).json()["pagination"]["total"] == 0
    assert client.delete(url, headers=auth(admin)).status_code == 404


def test_my_jobs(client, admin, customer, auth):
    body = client.get("/api/customers/me/jobs", headers=auth(customer)).json()
    assert body["total"] == 1
    assert body["jobs"][0]["jobId"] == str(customer["_id"])
    assert client.get("/api/customers/me/jobs", headers=auth(admin)).status_code == 403
