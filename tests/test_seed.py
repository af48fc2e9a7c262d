import re

import mongomock

import seed
from utils import generate_join_code


def test_join_code_format():
    assert re.fullmatch(r"[A-Z0-9]{6}", generate_join_code())


def test_seed_populates_demo_data():
    db = mongomock.MongoClient()["seed_test"]
    seed.seed(db)
    assert db["user"].count_documents({"role": "teacher"}) == 2
    assert db["user"].count_documents({"role": "student"}) == 3
    assert db["user"].count_documents({"role": "admin"}) == 1
    assert db["deck"].count_documents({}) == 3
    assert db["card"].count_documents({}) == 7
    for team in db["team"].find():
        assert re.fullmatch(r"[A-Z0-9]{6}", team["join_code"])
        assert len(team["student_ids"]) == 2

    # running again is a no-op unless reset
    seed.seed(db)
    assert db["user"].count_documents({}) == 6
    seed.seed(db, reset=True)
    assert db["user"].count_documents({}) == 6
