def _term(client, term_id="term-1", active=False):
    return client.post(
        "/api/terms",
        json={"id": term_id, "name": term_id, "start_date": "2026-01-05", "end_date": "2026-04-30", "is_active": active},
    )


def test_term_activation_is_exclusive(client):
    assert _term(client, "term-1", active=True).status_code == 201
    assert _term(client, "term-2").status_code == 201

    response = client.post("/api/terms/term-2/activate")
    assert response.status_code == 200

    active = {item["id"]: item["is_active"] for item in client.get("/api/terms").json()}
    assert active == {"term-1": False, "term-2": True}


def test_term_rejects_inverted_range(client):
    response = client.post(
        "/api/terms",
        json={"name": "Broken", "start_date": "2026-04-30", "end_date": "2026-01-05"},
    )
    assert response.status_code == 422


def test_duplicate_class_section_conflicts(client):
    _term(client)
    payload = {"term_id": "term-1", "grade": 8, "section": "A"}

    assert client.post("/api/classes", json=payload).status_code == 201
    assert client.post("/api/classes", json={**payload, "section": "a"}).status_code == 409
    assert client.post("/api/classes", json={**payload, "term_id": "missing"}).status_code == 404


def test_requirements_are_replaced_as_a_set(client):
    _term(client)
    client.post("/api/classes", json={"id": "8a", "term_id": "term-1", "grade": 8, "section": "A"})
    client.post("/api/teachers", json={"id": "t1", "name": "T1", "subject_ids": ["math", " math ", ""]})

    first = client.put(
        "/api/classes/8a/requirements",
        json=[{"subject_id": "math", "teacher_id": "t1", "periods_per_week": 5, "requires_double_period": True}],
    )
    assert first.status_code == 200
    second = client.put(
        "/api/classes/8a/requirements",
        json=[{"subject_id": "physics", "teacher_id": "t1", "periods_per_week": 3}],
    )
    assert second.status_code == 200

    stored = client.get("/api/classes/8a/requirements").json()
    assert [item["subject_id"] for item in stored] == ["physics"]
    assert client.get("/api/teachers").json()[0]["subject_ids"] == ["math"]


def test_requirements_reject_bad_input(client):
    _term(client)
    client.post("/api/classes", json={"id": "8a", "term_id": "term-1", "grade": 8, "section": "A"})
    client.post("/api/teachers", json={"id": "t1", "name": "T1"})

    duplicate = [
        {"subject_id": "math", "teacher_id": "t1", "periods_per_week": 2},
        {"subject_id": "math", "teacher_id": "t1", "periods_per_week": 2},
    ]
    assert client.put("/api/classes/8a/requirements", json=duplicate).status_code == 400

    lone_double = [{"subject_id": "math", "teacher_id": "t1", "periods_per_week": 1, "requires_double_period": True}]
    assert client.put("/api/classes/8a/requirements", json=lone_double).status_code == 422

    unknown = [{"subject_id": "math", "teacher_id": "nobody", "periods_per_week": 2}]
    assert client.put("/api/classes/8a/requirements", json=unknown).status_code == 404


def test_availability_is_normalized(client):
    _term(client)
    client.post("/api/teachers", json={"id": "t1", "name": "T1"})

    response = client.put(
        "/api/teachers/t1/availability",
        json={
            "term_id": "term-1",
            "blocked_slots": [
                {"day": "tuesday", "period": 3},
                {"day": "Monday", "period": 2},
                {"day": " monday ", "period": 2},
            ],
        },
    )

    assert response.status_code == 200
    assert response.json()["blocked_slots"] == [{"day": "Monday", "period": 2}, {"day": "Tuesday", "period": 3}]
