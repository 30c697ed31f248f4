def _start_session(client, table_id, service_type="Ala-carte", occupancy=2):
    response = client.post("/sessions", json={
        "table_id": table_id,
        "service_type": service_type,
        "occupancy_count": occupancy,
    })
    assert response.status_code == 201, response.text
    return response.json()["data"]


def _table_status(client, table_id):
    return client.get(f"/tables/{table_id}").json()["data"]["status"]


def test_dine_in_order_decline_and_payment(client, menu, tables):
    table_id = tables[3]
    session = _start_session(client, table_id)
    assert session["status"] == "Active"
    assert _table_status(client, table_id) == "Occupied"

    response = client.post("/orders/tickets", json={
        "sessionId": session["id"],
        "items": [{
            "id": menu["6pcs Wings"],
            "name": "6pcs Wings",
            "price": 169,
            "quantity": 1,
            "flavors": ["Soy Garlic", "Honey Garlic"],
        }],
    })
    assert response.status_code == 201, response.text
    body = response.json()
    assert body["success"] is True
    ticket = body["data"]
    assert ticket["totalAmount"] == 169.0
    assert ticket["ticketNumber"].startswith("T")

    assert client.get(f"/sessions/{session['id']}").json()["data"]["total_amount"] == 169.0

    response = client.put(f"/orders/tickets/{ticket['ticketId']}/status", json={"status": "Declined"})
    assert response.status_code == 200, response.text
    assert response.json()["data"]["status"] == "Declined"

    assert client.get(f"/sessions/{session['id']}").json()["data"]["total_amount"] == 0.0
    assert _table_status(client, table_id) == "Occupied"

    response = client.post(f"/sessions/{session['id']}/payment", json={"payment_method": "Cash"})
    assert response.status_code == 200, response.text
    assert response.json()["data"]["amount_paid"] == 0.0
    assert _table_status(client, table_id) == "Available"

    response = client.post(f"/sessions/{session['id']}/payment", json={"payment_method": "Cash"})
    assert response.status_code == 409
    assert response.json()["success"] is False


def test_ticket_with_no_items_is_a_bad_request(client, tables):
    session = _start_session(client, tables[1])

    response = client.post("/orders/tickets", json={"sessionId": session["id"], "items": []})

    assert response.status_code == 400
    assert response.json()["success"] is False
    assert response.json()["message"]


def test_ticket_for_missing_session_is_not_found(client, menu):
    response = client.post("/orders/tickets", json={
        "sessionId": 999,
        "items": [{"id": menu["3pcs Wings"], "price": 109, "quantity": 1}],
    })

    assert response.status_code == 404
    assert response.json() == {"success": False, "message": "Session 999 not found"}


def test_busy_table_cannot_be_seated_again(client, tables):
    _start_session(client, tables[2])

    response = client.post("/sessions", json={"table_id": tables[2], "service_type": "Ala-carte", "occupancy_count": 1})

    assert response.status_code == 409


def test_session_request_is_validated(client, tables):
    response = client.post("/sessions", json={"table_id": tables[2], "service_type": "Buffet", "occupancy_count": 1})

    assert response.status_code == 400
    assert "service_type" in response.json()["message"]


def test_unliwings_session_reports_amount_due(client, menu, tables):
    session = _start_session(client, tables[4], "Unliwings", 4)
    assert session["unliwings_total_charge"] == 1156.0

    client.post("/orders/tickets", json={
        "sessionId": session["id"],
        "items": [
            {"name": "Unliwings", "quantity": 1, "flavors": ["Teriyaki"], "isUnliwings": True},
            {"id": menu["Cheese Fries"], "price": 59, "quantity": 1},
        ],
    })

    [active] = client.get("/sessions/active").json()["data"]
    assert active["id"] == session["id"]
    assert active["total_amount"] == 59.0
    assert active["amount_due"] == 1215.0

    response = client.put(f"/sessions/{session['id']}/occupancy", json={"occupancy_count": 5})
    assert response.json()["data"]["unliwings_total_charge"] == 1156.0


def test_completed_session_marks_table_for_payment(client, tables):
    session = _start_session(client, tables[5])

    response = client.put(f"/sessions/{session['id']}/complete")

    assert response.status_code == 200
    assert response.json()["data"]["status"] == "Completed"
    assert _table_status(client, tables[5]) == "For Payment"

    response = client.put(f"/tables/{tables[5]}/status", json={"status": "Available"})
    assert response.status_code == 409


def test_session_tickets_list_items_and_flavors(client, menu, tables):
    session = _start_session(client, tables[1])
    client.post("/orders/tickets", json={
        "sessionId": session["id"],
        "items": [{"id": menu["3pcs Wings"], "price": 109, "quantity": 2, "flavors": ["Spicy BBQ"], "notes": "extra dip"}],
    })

    [ticket] = client.get(f"/orders/sessions/{session['id']}/tickets").json()["data"]

    assert ticket["table_number"] == 1
    [item] = ticket["items"]
    assert item["subtotal"] == 218.0
    assert item["notes"] == "extra dip"
    assert [f["name"] for f in item["flavors"]] == ["Spicy BBQ"]


def test_dine_in_ticket_cannot_be_marked_ready(client, menu, tables):
    session = _start_session(client, tables[1])
    created = client.post("/orders/tickets", json={
        "sessionId": session["id"],
        "items": [{"id": menu["3pcs Wings"], "price": 109, "quantity": 1}],
    }).json()["data"]

    response = client.put(f"/orders/tickets/{created['ticketId']}/status", json={"status": "Ready"})

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid status value"


def test_takeout_flow_records_a_single_payment(client, menu):
    response = client.post("/orders/takeout", json={
        "items": [{"menu_item_id": menu["Cheesy Nachos"], "price": 89, "quantity": 2}],
    })
    assert response.status_code == 201, response.text
    order = response.json()["data"]
    assert order["orderNumber"].startswith("TO")
    assert order["totalAmount"] == 178.0

    for status in ("Accepted", "Ready"):
        response = client.put(f"/orders/takeout/{order['id']}/status", json={"status": status})
        assert response.status_code == 200, response.text

    response = client.post(f"/orders/takeout/{order['id']}/payment", json={"payment_method": "GCash"})
    assert response.status_code == 200, response.text
    assert response.json()["data"]["amount_paid"] == 178.0

    response = client.put(f"/orders/takeout/{order['id']}/status", json={"status": "Completed"})
    assert response.status_code == 200

    [payment] = client.get("/orders/payments").json()["data"]
    assert payment["take_out_order_id"] == order["id"]
    assert payment["payment_method"] == "GCash"

    completed = client.get("/orders/completed").json()
    assert completed["count"] == 1
    assert client.get(f"/orders/takeout/{order['id']}").json()["data"]["status"] == "Completed"


def test_missing_takeout_order_is_not_found(client):
    response = client.get("/orders/takeout/12345")

    assert response.status_code == 404
    assert response.json()["success"] is False


def test_table_board_is_cached_until_a_table_changes(client, fake_redis, tables):
    board = client.get("/tables").json()["data"]
    assert len(board) == 5
    assert fake_redis.exists("tables:all")

    _start_session(client, tables[1])

    assert not fake_redis.exists("tables:all")
    board = client.get("/tables").json()["data"]
    assert board[0]["status"] == "Occupied"
    assert board[0]["active_session_id"] is not None


def test_health_reports_database_and_cache(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["database"] is True
    assert response.json()["cache"]["status"] == "available"


def test_menu_line_without_price_is_a_bad_request(client, menu, tables):
    session = _start_session(client, tables[1])

    response = client.post("/orders/tickets", json={
        "sessionId": session["id"],
        "items": [{"id": menu["24pcs Wings"], "quantity": 3}],
    })
    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Every item except unliwings needs a price"}

    response = client.post("/orders/takeout", json={"items": [{"menu_item_id": menu["12pcs Wings"]}]})
    assert response.status_code == 400

    assert client.get(f"/orders/sessions/{session['id']}/tickets").json()["data"] == []
    assert client.get("/orders/takeout").json()["data"] == []
