import os

os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SECRET_KEY"] = "test-secret-key-for-the-flashmat-suite"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("DATABASE_NAME", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_token, hash_password
from database import create_document, get_db
from main import app
from schemas import Card, Deck, Team, User

PASSWORD = "secret123"


@pytest.fixture
def db():
    conn = mongomock.MongoClient()["flashmat_test"]
    app.dependency_overrides[get_db] = lambda: conn
    yield conn
    app.dependency_overrides.clear()


@pytest.fixture
def client(db):
    return TestClient(app)


@pytest.fixture
def make_user(db):
    def _make(username, role="student", password=PASSWORD, **extra):
        user = User(
            username=username,
            email=f"{username}@flashmat.com",
            password_hash=hash_password(password),
            role=role,
            **extra,
        )
        return create_document(db, "user", user)
    return _make


@pytest.fixture
def admin(make_user):
    return make_user("root", role="admin")


@pytest.fixture
def teacher(make_user):
    return make_user("tina", role="teacher")


@pytest.fixture
def student(make_user):
    return make_user("sam")


def headers(user):
    return {"Authorization": f"Bearer {create_token(user)}"}


@pytest.fixture
def make_deck(db):
    def _make(owner, name="Deck", cards=0):
        deck = create_document(db, "deck", Deck(name=name, creator_id=str(owner["_id"])))
        deck_id = str(deck["_id"])
        card_ids = []
        for i in range(cards):
            card = Card(deck_id=deck_id, question=f"Q{i}", answer=f"A{i}", creator_id=str(owner["_id"]))
            card_ids.append(str(create_document(db, "card", card)["_id"]))
        db["deck"].update_one({"_id": deck["_id"]}, {"$set": {"card_ids": card_ids}})
        db["user"].update_one({"_id": owner["_id"]}, {"$addToSet": {"created_deck_ids": deck_id}})
        return db["deck"].find_one({"_id": deck["_id"]})
    return _make


@pytest.fixture
def make_team(db):
    def _make(teacher, students=(), decks=(), name="Period 1"):
        student_ids = [str(s["_id"]) for s in students]
        deck_ids = [str(d["_id"]) for d in decks]
        team = create_document(db, "team", Team(
            name=name,
            teacher_id=str(teacher["_id"]),
            student_ids=student_ids,
            deck_ids=deck_ids,
            join_code="ABC123",
        ))
        team_id = str(team["_id"])
        db["user"].update_one({"_id": teacher["_id"]}, {"$addToSet": {"class_ids": team_id}})
        for s in students:
            db["user"].update_one({"_id": s["_id"]}, {"$addToSet": {"class_ids": team_id, "deck_ids": {"$each": deck_ids}}})
        return team
    return _make
