from tests.utils import captured_event, create_order, login_user, order_id_of, post_webhook


def _paid_order(client, user, item_type="course", item_id="c-101", amount=50000, pay="pay_1"):
    login_user(client, user)
    oid = order_id_of(create_order(client, item_type=item_type, item_id=item_id, amount=amount))
    post_webhook(client, captured_event(oid, pay, amount=amount))
    return oid


def test_admin_lists_and_filters_payments(client):
    _paid_order(client, "alice", pay="pay_a")
    login_user(client, "bob")
    order_id_of(create_order(client, item_type="book", item_id="b-1", amount=29900))

    login_user(client, "admin")
    js = client.get("/admin/payments").get_json()
    assert js["data"]["pagination"]["total"] == 2

    js = client.get("/admin/payments?status=completed").get_json()
    assert [i["userId"] for i in js["data"]["items"]] == ["alice"]

    js = client.get("/admin/payments?itemType=book").get_json()
    assert [i["itemId"] for i in js["data"]["items"]] == ["b-1"]

    r = client.get("/admin/payments?status=bogus")
    assert r.status_code == 400


def test_admin_pagination(client):
    login_user(client, "alice")
    for item_type, item_id, amount in (("course", "c-101", 50000), ("book", "b-1", 29900),
                                       ("live_class", "lc-1", 19900)):
        order_id_of(create_order(client, item_type=item_type, item_id=item_id, amount=amount))
    login_user(client, "admin")
    js = client.get("/admin/payments?page=2&limit=2").get_json()["data"]
    assert js["pagination"] == {"total": 3, "page": 2, "limit": 2, "totalPages": 2}
    assert len(js["items"]) == 1


def test_admin_stats(client):
    _paid_order(client, "alice", pay="pay_s1")
    login_user(client, "bob")
    order_id_of(create_order(client, item_type="book", item_id="b-1", amount=29900))

    login_user(client, "admin")
    data = client.get("/admin/payments/stats").get_json()["data"]
    assert data["total"] == 2
    assert data["completed"] == 1 and data["pending"] == 1
    assert data["totalRevenue"] == 50000


def test_admin_routes_forbidden_for_users(client):
    login_user(client, "alice")
    for path in ("/admin/payments", "/admin/payments/stats", "/admin/audit/verify"):
        r = client.get(path)
        assert r.status_code == 403
        assert r.get_json()["error"] == "FORBIDDEN"


def test_admin_routes_need_login(client):
    assert client.get("/admin/payments").status_code == 401


def test_audit_verify_route(client):
    _paid_order(client, "alice", pay="pay_av")
    login_user(client, "admin")
    r = client.get("/admin/audit/verify")
    assert r.status_code == 200
    js = r.get_json()
    assert js["ok"] is True and js["checked"] > 0
