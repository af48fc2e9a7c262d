"""
Populate a local database with demo accounts, teams, decks and cards.

Run with ``python seed.py``; pass ``--reset`` to wipe the collections first.
Every account uses the password ``password123`` except the admin, which uses
ADMIN_PASSWORD.
"""
import argparse
import logging

import config
import database
from auth import hash_password
from database import create_document, ensure_indexes
from schemas import Card, Deck, Team, User
from utils import generate_join_code

logger = logging.getLogger("flashmat.seed")

DEMO_PASSWORD = "password123"

TEACHERS = [
    ("ms_rivera", "rivera@flashmat.com"),
    ("mr_okafor", "okafor@flashmat.com"),
]

STUDENTS = [
    ("alex", "alex@flashmat.com"),
    ("bea", "bea@flashmat.com"),
    ("chen", "chen@flashmat.com"),
]

DECKS = {
    "ms_rivera": [
        ("Spanish Basics", "Everyday vocabulary", "Languages", [
            ("Hello", "Hola", "text", []),
            ("Thank you", "Gracias", "text", []),
            ("Which word means 'cat'?", "gato", "multipleChoice", ["perro", "gato", "casa"]),
        ]),
    ],
    "mr_okafor": [
        ("Algebra I", "Linear equations", "Math", [
            ("Solve $2x + 3 = 7$", "$x = 2$", "math", []),
            ("Slope of $y = 3x - 1$", "3", "math", []),
        ]),
        ("World Capitals", None, "Geography", [
            ("Capital of Kenya", "Nairobi", "text", []),
            ("Capital of Canada", "Ottawa", "multipleChoice", ["Toronto", "Ottawa", "Vancouver"]),
        ]),
    ],
}

# team name, teacher, students, deck names
TEAMS = [
    ("Spanish 101", "ms_rivera", ["alex", "bea"], ["Spanish Basics"]),
    ("Math Period 2", "mr_okafor", ["bea", "chen"], ["Algebra I"]),
    ("Geography Club", "mr_okafor", ["alex", "chen"], ["World Capitals"]),
]

COLLECTIONS = ["user", "deck", "card", "team", "assignment", "userprogress", "settings"]


def _user(db, username, email, role, password):
    user = User(username=username, email=email, password_hash=hash_password(password), role=role)
    return create_document(db, "user", user)


def seed(db, reset: bool = False):
    if reset:
        for name in COLLECTIONS:
            db[name].delete_many({})
        logger.info("Cleared %d collections", len(COLLECTIONS))
    if db["user"].find_one({"email": TEACHERS[0][1]}):
        logger.info("Demo data already present; use --reset to recreate it")
        return

    ensure_indexes(db)
    if not db["user"].find_one({"email": config.ADMIN_EMAIL}):
        _user(db, config.ADMIN_USERNAME, config.ADMIN_EMAIL, "admin", config.ADMIN_PASSWORD)

    users = {}
    for username, email in TEACHERS:
        users[username] = _user(db, username, email, "teacher", DEMO_PASSWORD)
    for username, email in STUDENTS:
        users[username] = _user(db, username, email, "student", DEMO_PASSWORD)

    decks = {}
    for owner, owned in DECKS.items():
        creator_id = str(users[owner]["_id"])
        for name, description, subject, cards in owned:
            deck = create_document(db, "deck", Deck(name=name, description=description, subject=subject, creator_id=creator_id))
            deck_id = str(deck["_id"])
            card_ids = []
            for question, answer, card_type, options in cards:
                card = Card(deck_id=deck_id, question=question, answer=answer, type=card_type, options=options, creator_id=creator_id)
                card_ids.append(str(create_document(db, "card", card)["_id"]))
            db["deck"].update_one({"_id": deck["_id"]}, {"$set": {"card_ids": card_ids}})
            db["user"].update_one({"_id": users[owner]["_id"]}, {"$addToSet": {"created_deck_ids": deck_id}})
            decks[name] = deck_id

    for name, teacher, students, deck_names in TEAMS:
        student_ids = [str(users[s]["_id"]) for s in students]
        deck_ids = [decks[d] for d in deck_names]
        team = Team(
            name=name,
            teacher_id=str(users[teacher]["_id"]),
            student_ids=student_ids,
            deck_ids=deck_ids,
            join_code=generate_join_code(),
        )
        team_id = str(create_document(db, "team", team)["_id"])
        db["user"].update_one({"_id": users[teacher]["_id"]}, {"$addToSet": {"class_ids": team_id}})
        for s in students:
            db["user"].update_one(
                {"_id": users[s]["_id"]},
                {"$addToSet": {"class_ids": team_id, "deck_ids": {"$each": deck_ids}}},
            )

    logger.info(
        "Seeded %d users, %d decks and %d teams",
        len(users), len(decks), len(TEAMS),
    )


if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    parser = argparse.ArgumentParser(description="Seed the FlashMat database with demo data")
    parser.add_argument("--reset", action="store_true", help="delete existing data first")
    args = parser.parse_args()
    if database.db is None:
        raise SystemExit("DATABASE_URL and DATABASE_NAME must be set")
    seed(database.db, reset=args.reset)
