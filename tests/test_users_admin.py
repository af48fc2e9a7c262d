from datetime import datetime, timedelta

from bson import ObjectId

from conftest import PASSWORD, headers


def test_list_users_requires_teacher(client, student, teacher):
    assert client.get("/api/users", headers=headers(student)).status_code == 403
    res = client.get("/api/users", headers=headers(teacher))
    assert res.status_code == 200
    assert {u["username"] for u in res.json()} == {"sam", "tina"}
    assert all("password_hash" not in u for u in res.json())


def test_list_users_by_deck(client, db, teacher, student, make_deck):
    deck = make_deck(teacher)
    db["user"].update_one({"_id": student["_id"]}, {"$addToSet": {"deck_ids": str(deck["_id"])}})
    res = client.get("/api/users", params={"deck": str(deck["_id"])}, headers=headers(student))
    assert [u["username"] for u in res.json()] == ["sam"]


def test_admin_creates_user_in_class(client, db, admin, teacher, make_deck, make_team):
    deck = make_deck(teacher)
    team = make_team(teacher, decks=[deck])
    res = client.post("/api/users", headers=headers(admin), json={
        "username": "kim",
        "email": "kim@flashmat.com",
        "password": PASSWORD,
        "class_ids": [str(team["_id"])],
    })
    assert res.status_code == 201
    created = db["user"].find_one({"username": "kim"})
    assert str(deck["_id"]) in created["deck_ids"]
    assert str(created["_id"]) in db["team"].find_one({"_id": team["_id"]})["student_ids"]
    assert client.post("/api/users", headers=headers(teacher), json={
        "username": "x", "email": "x@flashmat.com", "password": PASSWORD,
    }).status_code == 403


def test_profile_update_rejects_unknown_fields(client, student):
    res = client.put("/api/users/profile", headers=headers(student), json={"role": "admin"})
    assert res.status_code == 400
    assert res.json()["detail"] == "Invalid updates"
    res = client.put("/api/users/profile", headers=headers(student), json={"email": "Sammy@Flashmat.com"})
    assert res.json()["email"] == "sammy@flashmat.com"


def test_delete_own_profile(client, db, teacher, student, make_team):
    team = make_team(teacher, students=[student])
    assert client.delete("/api/users/profile", headers=headers(student)).status_code == 200
    assert db["user"].find_one({"_id": student["_id"]}) is None
    assert db["team"].find_one({"_id": team["_id"]})["student_ids"] == []


def test_preferences_and_password(client, db, student):
    res = client.put("/api/users/settings", headers=headers(student), json={"theme": "dark"})
    assert res.json() == {"theme": "dark", "email_notifications": True}

    res = client.put("/api/users/password", headers=headers(student), json={
        "current_password": "wrong", "new_password": "another1",
    })
    assert res.status_code == 400
    res = client.put("/api/users/password", headers=headers(student), json={
        "current_password": PASSWORD, "new_password": "another1",
    })
    assert res.status_code == 200
    res = client.post("/api/auth/login", json={"email": "sam@flashmat.com", "password": "another1"})
    assert res.status_code == 200


def test_learning_stats(client, teacher, student, make_deck, make_team):
    deck = make_deck(teacher, name="Verbs", cards=2)
    make_team(teacher, students=[student], decks=[deck])
    card_id = deck["card_ids"][0]
    for _ in range(3):
        client.post(f"/api/cards/{card_id}/rate", headers=headers(student), json={"rating": 5})

    stats = client.get("/api/users/learning-stats", headers=headers(student)).json()
    assert stats["total_cards"] == 2
    assert stats["mastered_cards"] == 1
    assert stats["recent_decks"][0]["name"] == "Verbs"
    assert stats["recent_decks"][0]["mastery"] == 50
    assert stats["needs_review"][0]["id"] == str(deck["_id"])
    assert stats["study_streak"] == 0


def test_study_streak_endpoint(client, db, student):
    yesterday = datetime.utcnow() - timedelta(days=1)
    db["user"].update_one({"_id": student["_id"]}, {"$set": {"study_streak": 4, "last_studied": yesterday}})
    res = client.post("/api/users/study-streak", headers=headers(student))
    assert res.json()["study_streak"] == 5
    res = client.post("/api/users/study-streak", headers=headers(student))
    assert res.json()["study_streak"] == 5


def test_user_classes(client, teacher, student, admin, make_team):
    make_team(teacher, students=[student], name="Art")
    res = client.get("/api/users/classes", headers=headers(student))
    assert [t["name"] for t in res.json()] == ["Art"]
    other = {"user": str(teacher["_id"])}
    assert client.get("/api/users/classes", params=other, headers=headers(student)).status_code == 403
    assert client.get("/api/users/classes", params=other, headers=headers(admin)).status_code == 200


def test_user_progress_overview(client, teacher, student, make_user, make_deck, make_team):
    deck = make_deck(teacher, cards=1)
    make_team(teacher, students=[student], decks=[deck])
    client.post(f"/api/cards/{deck['card_ids'][0]}/rate", headers=headers(student), json={"rating": 5})

    res = client.get(f"/api/users/{student['_id']}/progress", headers=headers(student))
    assert res.status_code == 200
    assert res.json()["total_decks"] == 1
    assert res.json()["average_mastery"] == 100
    assert client.get(f"/api/users/{teacher['_id']}/progress", headers=headers(student)).status_code == 403


def test_get_user_details(client, teacher, student, make_deck, make_team):
    deck = make_deck(teacher)
    make_team(teacher, students=[student], decks=[deck])
    res = client.get(f"/api/users/{student['_id']}", headers=headers(teacher))
    assert res.status_code == 200
    assert [d["id"] for d in res.json()["decks"]] == [str(deck["_id"])]
    assert len(res.json()["classes"]) == 1
    assert client.get(f"/api/users/{ObjectId()}", headers=headers(teacher)).status_code == 404


def test_teacher_manages_only_students(client, teacher, student, make_user):
    colleague = make_user("carl", role="teacher")
    res = client.put(f"/api/users/{colleague['_id']}", headers=headers(teacher), json={"username": "x"})
    assert res.status_code == 403
    assert res.json()["detail"] == "Teachers can only edit student accounts"

    res = client.put(f"/api/users/{student['_id']}", headers=headers(teacher), json={"role": "teacher"})
    assert res.status_code == 403
    res = client.put(f"/api/users/{student['_id']}", headers=headers(teacher), json={"username": "samantha"})
    assert res.status_code == 200
    assert res.json()["username"] == "samantha"

    res = client.delete(f"/api/users/{colleague['_id']}", headers=headers(teacher))
    assert res.json()["detail"] == "Teachers can only delete student accounts"


def test_update_user_class_membership(client, db, admin, teacher, student, make_deck, make_team):
    deck = make_deck(teacher)
    first = make_team(teacher, students=[student], name="First")
    second = make_team(teacher, decks=[deck], name="Second")
    res = client.put(f"/api/users/{student['_id']}", headers=headers(admin), json={"class_ids": [str(second["_id"])]})
    assert res.status_code == 200
    assert res.json()["team_count"] == 1
    assert db["team"].find_one({"_id": first["_id"]})["student_ids"] == []
    assert str(student["_id"]) in db["team"].find_one({"_id": second["_id"]})["student_ids"]
    assert str(deck["_id"]) in db["user"].find_one({"_id": student["_id"]})["deck_ids"]


def test_delete_user_cascades(client, db, admin, teacher, student, make_team):
    team = make_team(teacher, students=[student])
    db["userprogress"].insert_one({"user_id": str(teacher["_id"]), "deck_id": "d"})
    assert client.delete(f"/api/users/{teacher['_id']}", headers=headers(admin)).status_code == 200
    assert db["team"].find_one({"_id": team["_id"]})["teacher_id"] is None
    assert db["userprogress"].count_documents({}) == 0


def test_admin_routes_require_admin(client, teacher):
    for path in ("/api/admin/stats", "/api/admin/users", "/api/admin/settings"):
        assert client.get(path, headers=headers(teacher)).status_code == 403


def test_admin_stats(client, db, admin, teacher, student, make_deck):
    make_deck(teacher, cards=3)
    db["user"].update_one({"_id": student["_id"]}, {"$set": {"last_studied": datetime.utcnow()}})
    stats = client.get("/api/admin/stats", headers=headers(admin)).json()
    assert stats["total_users"] == 3
    assert stats["students"] == 1
    assert stats["teachers"] == 1
    assert stats["total_decks"] == 1
    assert stats["total_cards"] == 3
    assert stats["active_users"] == 1


def test_admin_user_listing(client, db, admin, make_user):
    for i in range(12):
        make_user(f"pupil{i:02d}")
    db["user"].update_one({"username": "pupil03"}, {"$set": {"last_studied": datetime.utcnow()}})

    res = client.get("/api/admin/users", params={"role": "student", "page": 2}, headers=headers(admin)).json()
    assert res["total"] == 12
    assert res["pages"] == 2
    assert res["current_page"] == 2
    assert len(res["users"]) == 2

    res = client.get("/api/admin/users", params={"search": "PUPIL1"}, headers=headers(admin)).json()
    assert {u["username"] for u in res["users"]} == {"pupil10", "pupil11"}

    res = client.get("/api/admin/users", params={"status": "active"}, headers=headers(admin)).json()
    assert [u["username"] for u in res["users"]] == ["pupil03"]
    res = client.get("/api/admin/users", params={"status": "inactive", "role": "student"}, headers=headers(admin)).json()
    assert res["total"] == 11


def test_admin_updates_user(client, admin, student):
    url = f"/api/admin/users/{student['_id']}"
    assert client.put(url, headers=headers(admin), json={"password_hash": "x"}).status_code == 400
    assert client.put(url, headers=headers(admin), json={"role": "wizard"}).status_code == 400
    res = client.put(url, headers=headers(admin), json={"role": "teacher", "active": False})
    assert res.status_code == 200
    assert res.json()["role"] == "teacher"
    assert res.json()["active"] is False


def test_admin_delete_removes_created_decks(client, db, admin, teacher, make_deck):
    make_deck(teacher, cards=2)
    assert client.delete(f"/api/admin/users/{admin['_id']}", headers=headers(admin)).status_code == 400
    assert client.delete(f"/api/admin/users/{teacher['_id']}", headers=headers(admin)).status_code == 200
    assert db["deck"].count_documents({}) == 0
    assert db["card"].count_documents({}) == 0


def test_admin_settings(client, admin):
    settings = client.get("/api/admin/settings", headers=headers(admin)).json()
    assert settings["max_class_size"] == 30
    res = client.put("/api/admin/settings", headers=headers(admin), json={"max_class_size": 5, "maintenance_mode": True})
    assert res.json()["max_class_size"] == 5
    assert res.json()["maintenance_mode"] is True
    assert res.json()["max_decks_per_user"] == 50


def test_deck_assignment_diagnostic(client, admin, teacher, student, make_deck, make_team):
    deck = make_deck(teacher, name="Physics")
    make_team(teacher, students=[student], decks=[deck], name="Lab")
    res = client.get(f"/api/admin/decks/{deck['_id']}/assignments", headers=headers(admin)).json()
    assert res["deck"]["name"] == "Physics"
    assert [u["username"] for u in res["assigned_users"]] == ["sam"]
    assert [t["name"] for t in res["assigned_teams"]] == ["Lab"]


def test_class_size_enforced_when_creating_user(client, db, admin, teacher, student, make_team):
    db["settings"].insert_one({"_id": "system", "max_class_size": 1})
    team = make_team(teacher, students=[student])
    res = client.post("/api/users", headers=headers(admin), json={
        "username": "late",
        "email": "late@flashmat.com",
        "password": PASSWORD,
        "class_ids": [str(team["_id"])],
    })
    assert res.status_code == 400
    assert db["user"].find_one({"username": "late"}) is None
    assert db["team"].find_one({"_id": team["_id"]})["student_ids"] == [str(student["_id"])]


def test_class_size_enforced_when_updating_user(client, db, teacher, student, make_user, make_team):
    db["settings"].insert_one({"_id": "system", "max_class_size": 1})
    team = make_team(teacher, students=[student])
    newcomer = make_user("nova")
    res = client.put(f"/api/users/{newcomer['_id']}", headers=headers(teacher), json={"class_ids": [str(team["_id"])]})
    assert res.status_code == 400
    assert db["team"].find_one({"_id": team["_id"]})["student_ids"] == [str(student["_id"])]
    assert db["user"].find_one({"_id": newcomer["_id"]})["class_ids"] == []

    # students already in a full class can keep it in their list
    res = client.put(f"/api/users/{student['_id']}", headers=headers(teacher), json={"class_ids": [str(team["_id"])]})
    assert res.status_code == 200
