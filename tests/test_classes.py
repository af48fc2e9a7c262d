from conftest import headers


def test_student_cannot_create_class(client, student):
    res = client.post("/api/classes", headers=headers(student), json={"name": "Nope"})
    assert res.status_code == 403
    assert res.json()["detail"] == "Access denied. Required role: teacher or admin"


def test_create_class_links_members_and_decks(client, db, teacher, student, make_deck):
    deck = make_deck(teacher)
    res = client.post("/api/classes", headers=headers(teacher), json={
        "name": "Biology",
        "student_ids": [str(student["_id"]), "bogus"],
        "deck_ids": [str(deck["_id"])],
    })
    assert res.status_code == 201
    team = res.json()
    assert len(team["join_code"]) == 6
    assert team["teacher"]["username"] == "tina"
    assert [s["username"] for s in team["students"]] == ["sam"]
    assert [d["id"] for d in team["decks"]] == [str(deck["_id"])]

    learner = db["user"].find_one({"_id": student["_id"]})
    assert team["id"] in learner["class_ids"]
    assert str(deck["_id"]) in learner["deck_ids"]
    assert team["id"] in db["user"].find_one({"_id": teacher["_id"]})["class_ids"]


def test_class_size_limit(client, db, teacher, make_user):
    db["settings"].insert_one({"_id": "system", "max_class_size": 1})
    students = [str(make_user(name)["_id"]) for name in ("a1", "a2")]
    res = client.post("/api/classes", headers=headers(teacher), json={"name": "Big", "student_ids": students})
    assert res.status_code == 400


def test_list_classes_by_role(client, teacher, student, admin, make_team, make_user):
    make_team(teacher, students=[student], name="Mine")
    make_team(make_user("other", role="teacher"), name="Theirs")

    names = lambda user: sorted(t["name"] for t in client.get("/api/classes", headers=headers(user)).json())
    assert names(teacher) == ["Mine"]
    assert names(student) == ["Mine"]
    assert names(admin) == ["Mine", "Theirs"]


def test_list_classes_includes_stats(client, db, teacher, student, make_deck, make_team):
    deck = make_deck(teacher, cards=2)
    make_team(teacher, students=[student], decks=[deck])
    client.post(f"/api/cards/{deck['card_ids'][0]}/rate", headers=headers(student), json={"rating": 5})

    team = client.get("/api/classes", headers=headers(teacher)).json()[0]
    assert team["stats"]["active_student_count"] == 1
    assert team["stats"]["average_mastery"] == 50
    assert team["stats"]["total_students"] == 1


def test_list_classes_for_deck(client, teacher, student, make_deck, make_team):
    deck = make_deck(teacher)
    make_team(teacher, students=[student], decks=[deck], name="Has it")
    make_team(teacher, name="Empty")

    res = client.get("/api/classes", params={"deck": str(deck["_id"])}, headers=headers(teacher))
    flags = {t["name"]: t["has_deck"] for t in res.json()}
    assert flags == {"Has it": True, "Empty": False}

    res = client.get("/api/classes", params={"deck": str(deck["_id"])}, headers=headers(student))
    assert [t["name"] for t in res.json()] == ["Has it"]


def test_class_overview_stats(client, teacher, student, make_team):
    make_team(teacher, students=[student])
    res = client.get("/api/classes/stats", headers=headers(teacher))
    assert res.status_code == 200
    assert res.json()["teams_as_teacher"] == 1
    assert res.json()["teams_as_student"] == 0
    res = client.get("/api/classes/stats", headers=headers(student))
    assert res.json()["student_stats"][0]["student_count"] == 1


def test_get_class_membership_and_progress(client, teacher, student, make_user, make_deck, make_team):
    deck = make_deck(teacher, cards=1)
    team = make_team(teacher, students=[student], decks=[deck])
    client.post(f"/api/cards/{deck['card_ids'][0]}/rate", headers=headers(student), json={"rating": 4})

    res = client.get(f"/api/classes/{team['_id']}", headers=headers(make_user("outsider")))
    assert res.status_code == 403

    res = client.get(f"/api/classes/{team['_id']}", headers=headers(student))
    assert res.status_code == 200
    body = res.json()
    assert body["stats"]["active_students"] == 1
    assert body["student_progress"][0]["username"] == "sam"
    assert body["student_progress"][0]["progress"]["mastery_by_deck"] == {str(deck["_id"]): 75}


def test_update_class_membership_diff(client, db, teacher, student, make_user, make_deck, make_team):
    deck = make_deck(teacher)
    newcomer = make_user("nia")
    team = make_team(teacher, students=[student], decks=[deck])
    team_id = str(team["_id"])

    res = client.put(f"/api/classes/{team_id}", headers=headers(teacher), json={
        "name": "Renamed",
        "student_ids": [str(newcomer["_id"])],
    })
    assert res.status_code == 200
    assert res.json()["name"] == "Renamed"
    assert team_id not in db["user"].find_one({"_id": student["_id"]})["class_ids"]
    joined = db["user"].find_one({"_id": newcomer["_id"]})
    assert team_id in joined["class_ids"]
    assert str(deck["_id"]) in joined["deck_ids"]


def test_update_class_owner_only(client, teacher, make_user, make_team):
    team = make_team(teacher)
    other = make_user("otto", role="teacher")
    res = client.put(f"/api/classes/{team['_id']}", headers=headers(other), json={"name": "x"})
    assert res.status_code == 403


def test_delete_class(client, db, teacher, student, make_team):
    team = make_team(teacher, students=[student])
    team_id = str(team["_id"])
    assert client.delete(f"/api/classes/{team_id}", headers=headers(student)).status_code == 403
    assert client.delete(f"/api/classes/{team_id}", headers=headers(teacher)).status_code == 200
    assert db["team"].count_documents({}) == 0
    assert team_id not in db["user"].find_one({"_id": student["_id"]})["class_ids"]


def test_add_and_remove_student(client, db, teacher, student, make_deck, make_team):
    deck = make_deck(teacher)
    team = make_team(teacher, decks=[deck])
    team_id = str(team["_id"])

    res = client.post(f"/api/classes/{team_id}/students", headers=headers(teacher), json={"email": "nobody@flashmat.com"})
    assert res.status_code == 404

    res = client.post(f"/api/classes/{team_id}/students", headers=headers(teacher), json={"email": "SAM@flashmat.com"})
    assert res.status_code == 200
    assert [s["username"] for s in res.json()["students"]] == ["sam"]
    assert str(deck["_id"]) in db["user"].find_one({"_id": student["_id"]})["deck_ids"]

    res = client.post(f"/api/classes/{team_id}/students", headers=headers(teacher), json={"email": "sam@flashmat.com"})
    assert res.status_code == 400

    res = client.delete(f"/api/classes/{team_id}/students/{student['_id']}", headers=headers(teacher))
    assert res.status_code == 200
    assert db["team"].find_one({"_id": team["_id"]})["student_ids"] == []
    assert team_id not in db["user"].find_one({"_id": student["_id"]})["class_ids"]


def test_add_and_remove_decks(client, db, teacher, student, make_deck, make_team):
    deck = make_deck(teacher)
    team = make_team(teacher, students=[student])
    team_id = str(team["_id"])
    deck_id = str(deck["_id"])

    res = client.post(f"/api/classes/{team_id}/decks", headers=headers(teacher), json={"deck_ids": [deck_id]})
    assert res.status_code == 200
    assert [d["id"] for d in res.json()["decks"]] == [deck_id]
    assert deck_id in db["user"].find_one({"_id": student["_id"]})["deck_ids"]

    res = client.delete(f"/api/classes/{team_id}/decks/{deck_id}", headers=headers(teacher))
    assert res.status_code == 200
    assert db["team"].find_one({"_id": team["_id"]})["deck_ids"] == []
    # direct assignment survives removal from the team
    assert deck_id in db["user"].find_one({"_id": student["_id"]})["deck_ids"]
