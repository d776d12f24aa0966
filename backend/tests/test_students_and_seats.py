from datetime import date, timedelta

from conftest import student_payload


def _register(client, **overrides):
    r = client.post("/students", json=student_payload(**overrides))
    assert r.status_code == 201, r.text
    return r.json()


def test_register_student_records_history_and_ledger(staff, branch, shift, seats):
    st = _register(staff, branch_id=branch["id"], shiftId=shift["id"], seatId=seats["2"]["id"])
    assert st["status"] == "active"
    assert st["seatNumber"] == "2"
    assert st["shiftTitle"] == "Morning"
    assert st["branchName"] == "Main Branch"
    assert st["amountPaid"] == 600
    assert st["dueAmount"] == 400
    assert len(st["membershipHistory"]) == 1
    assert st["membershipHistory"][0]["securityMoney"] == 100
    kinds = sorted((t["type"], t["method"], t["amount"]) for t in st["transactions"])
    assert kinds == [("due", None, 400), ("payment", "cash", 400), ("payment", "online", 200)]


def test_register_validation(staff, branch, shift, seats):
    bad = [
        {"name": ""},
        {"phone": "12345"},
        {"email": "not-an-email"},
        {"membershipEnd": (date.today() - timedelta(days=400)).isoformat()},
        {"totalFee": -1},
        {"cash": 900, "online": 200},
        {"seatId": seats["1"]["id"]},  # seat without shift
        {"shiftId": 9999},
    ]
    for override in bad:
        r = staff.post("/students", json=student_payload(branch["id"], **override))
        assert r.status_code == 400, override
    r = staff.post("/students", json=student_payload(branch["id"], branchId=777))
    assert r.status_code == 400
    assert r.json()["detail"] == "Invalid branch ID"


def test_seat_cannot_be_double_booked_in_same_shift(admin, staff, branch, shift, seats):
    _register(staff, branch_id=branch["id"], shiftId=shift["id"], seatId=seats["1"]["id"])
    r = staff.post("/students", json=student_payload(branch["id"], name="Second", shiftId=shift["id"], seatId=seats["1"]["id"]))
    assert r.status_code == 400
    assert "already booked" in r.json()["detail"]

    evening = admin.post("/shifts", json={"title": "Evening", "fee": 600, "branchId": branch["id"]}).json()
    _register(staff, branch_id=branch["id"], name="Second", shiftId=evening["id"], seatId=seats["1"]["id"])


def test_seat_listing_and_availability(admin, staff, branch, shift, seats):
    st = _register(staff, branch_id=branch["id"], shiftId=shift["id"], seatId=seats["2"]["id"])
    listing = staff.get("/seats", params={"branchId": branch["id"]}).json()
    assert [s["seatNumber"] for s in listing] == ["1", "2", "10"]
    seat2 = listing[1]["shifts"][0]
    assert seat2["isAssigned"] is True
    assert seat2["studentName"] == st["name"]
    assert listing[0]["shifts"][0]["isAssigned"] is False

    free = staff.get("/seats/available", params={"shiftId": shift["id"]}).json()
    assert [s["seatNumber"] for s in free] == ["1", "10"]

    r = admin.post("/seats", json={"seatNumbers": ["2", "11"], "branchId": branch["id"]})
    assert r.status_code == 201
    assert r.json()["skipped"] == ["2"]
    assert [s["seatNumber"] for s in r.json()["created"]] == ["11"]

    assert admin.delete(f"/seats/{seats['2']['id']}").status_code == 400
    assert admin.delete(f"/seats/{seats['10']['id']}").status_code == 200


def test_shift_schedule_and_delete_guard(admin, staff, branch, shift, seats):
    _register(staff, branch_id=branch["id"], shiftId=shift["id"], seatId=seats["10"]["id"])
    shifts = staff.get("/shifts").json()
    assert shifts[0]["studentCount"] == 1
    schedule = staff.get(f"/shifts/{shift['id']}/students").json()
    assert schedule["students"][0]["seatNumber"] == "10"
    assert admin.delete(f"/shifts/{shift['id']}").status_code == 400
    assert admin.post("/shifts", json={"title": "Bad", "startTime": "25:00"}).status_code == 400
    assert staff.get("/shifts/999/students").status_code == 404


def test_list_filters_search_and_sort(staff, branch, shift, seats):
    today = date.today()
    _register(staff, branch_id=branch["id"], name="Zed", phone="9000000001", registrationNumber="R-9",
              shiftId=shift["id"], seatId=seats["10"]["id"])
    _register(staff, branch_id=branch["id"], name="Amy", phone="9000000002", registrationNumber="R-2",
              shiftId=shift["id"], seatId=seats["2"]["id"])
    _register(staff, name="Old", phone="9000000003",
              membershipStart=(today - timedelta(days=90)).isoformat(),
              membershipEnd=(today - timedelta(days=60)).isoformat(), cash=0, online=0)

    allrows = staff.get("/students").json()["students"]
    assert len(allrows) == 3

    scoped = staff.get("/students", params={"branchId": branch["id"]}).json()["students"]
    assert {s["name"] for s in scoped} == {"Zed", "Amy"}

    by_seat = staff.get("/students", params={"branchId": branch["id"], "sort": "seatNumber"}).json()["students"]
    assert [s["seatNumber"] for s in by_seat] == ["2", "10"]
    by_seat_desc = staff.get("/students", params={"branchId": branch["id"], "sort": "seatNumber", "order": "desc"}).json()["students"]
    assert [s["seatNumber"] for s in by_seat_desc] == ["10", "2"]

    found = staff.get("/students", params={"search": "r-9"}).json()["students"]
    assert [s["name"] for s in found] == ["Zed"]

    recent = staff.get("/students", params={"fromDate": (today - timedelta(days=1)).isoformat()}).json()["students"]
    assert {s["name"] for s in recent} == {"Zed", "Amy"}

    assert staff.get("/students", params={"fromDate": "yesterday"}).status_code == 400
    assert staff.get("/students", params={"branchId": "abc"}).status_code == 400

    expired = staff.get("/students/expired").json()["students"]
    assert [s["name"] for s in expired] == ["Old"]
    assert expired[0]["status"] == "expired"
    assert len(staff.get("/students/active").json()["students"]) == 2

    assert staff.get("/students/stats/total").json() == {"count": 3}
    assert staff.get("/students/stats/active").json() == {"count": 2}
    assert staff.get("/students/stats/expired").json() == {"count": 1}
    assert staff.get("/students/stats/active", params={"branchId": branch["id"]}).json() == {"count": 2}
    assert staff.get("/students/stats/bogus").status_code == 404


def test_update_moves_seat(staff, branch, shift, seats):
    st = _register(staff, branch_id=branch["id"], shiftId=shift["id"], seatId=seats["1"]["id"])
    r = staff.put(f"/students/{st['id']}", json={"seatId": seats["10"]["id"], "remark": "prefers window"})
    assert r.status_code == 200
    assert r.json()["seatNumber"] == "10"
    assert r.json()["remark"] == "prefers window"
    free = staff.get("/seats/available", params={"shiftId": shift["id"]}).json()
    assert "1" in [s["seatNumber"] for s in free]
    assert staff.put(f"/students/{st['id']}", json={"phone": "abc"}).status_code == 400
    assert staff.put("/students/999", json={"remark": "x"}).status_code == 404


def test_renew_adds_history(staff, branch):
    today = date.today()
    st = _register(staff, branch_id=branch["id"],
                   membershipStart=(today - timedelta(days=60)).isoformat(),
                   membershipEnd=(today - timedelta(days=30)).isoformat())
    assert st["status"] == "expired"
    r = staff.post(f"/students/{st['id']}/renew", json={
        "membershipStart": today.isoformat(),
        "membershipEnd": (today + timedelta(days=30)).isoformat(),
        "totalFee": 900,
        "online": 900,
    })
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "active"
    assert body["dueAmount"] == 0
    assert len(body["membershipHistory"]) == 2


def test_delete_student_requires_admin_and_cascades(admin, staff, branch, shift, seats):
    st = _register(staff, branch_id=branch["id"], shiftId=shift["id"], seatId=seats["1"]["id"])
    assert staff.delete(f"/students/{st['id']}").status_code == 403
    assert admin.delete(f"/students/{st['id']}").status_code == 200
    assert staff.get(f"/students/{st['id']}").status_code == 404
    assert staff.get("/collections").json()["collections"] == []
    assert admin.delete(f"/seats/{seats['1']['id']}").status_code == 200


def test_update_shift(admin, staff, branch, shift, seats):
    _register(staff, branch_id=branch["id"], shiftId=shift["id"], seatId=seats["1"]["id"])
    r = admin.put(f"/shifts/{shift['id']}", json={"title": "Early Morning", "startTime": "05:30", "endTime": "11:30",
                                                  "fee": 850, "branchId": branch["id"]})
    assert r.status_code == 200
    body = r.json()
    assert body["title"] == "Early Morning"
    assert body["startTime"] == "05:30"
    assert body["fee"] == 850
    assert body["studentCount"] == 1

    assert admin.put(f"/shifts/{shift['id']}", json={"title": "Early", "startTime": "5pm"}).status_code == 400
    assert admin.put(f"/shifts/{shift['id']}", json={"title": "Early", "fee": -1}).status_code == 400
    assert admin.put(f"/shifts/{shift['id']}", json={"title": "Early", "branchId": 999}).status_code == 400
    assert staff.put(f"/shifts/{shift['id']}", json={"title": "Early"}).status_code == 403
    assert admin.put("/shifts/999", json={"title": "Early"}).status_code == 404
    assert staff.get("/shifts").json()[0]["title"] == "Early Morning"
