"""
Ownership and membership checks shared by the deck, card, class and user
handlers. Everything here takes already-loaded documents; ``can_view_deck``
is the only check that needs to look at teams.
"""
from typing import Optional

from fastapi import HTTPException


def uid(user: dict) -> str:
    return str(user["_id"])


def is_admin(user: dict) -> bool:
    return user.get("role") == "admin"


def is_deck_owner(user: dict, deck: dict) -> bool:
    return is_admin(user) or deck.get("creator_id") == uid(user)


def can_view_deck(db, user: dict, deck: dict) -> bool:
    if is_deck_owner(user, deck):
        return True
    deck_id = str(deck["_id"])
    if deck_id in (user.get("deck_ids") or []):
        return True
    team = db["team"].find_one({
        "deck_ids": deck_id,
        "$or": [{"teacher_id": uid(user)}, {"student_ids": uid(user)}],
    })
    return team is not None


def is_team_owner(user: dict, team: dict) -> bool:
    return is_admin(user) or (team.get("teacher_id") is not None and team.get("teacher_id") == uid(user))


def is_team_member(user: dict, team: dict) -> bool:
    return is_team_owner(user, team) or uid(user) in (team.get("student_ids") or [])


def can_view_user(user: dict, target_id: str) -> bool:
    return user.get("role") in ("admin", "teacher") or uid(user) == target_id


def can_manage_user(user: dict, target: dict) -> bool:
    return is_admin(user) or (user.get("role") == "teacher" and target.get("role") == "student")


def manage_user_denied(user: dict, action: str) -> HTTPException:
    if user.get("role") == "teacher":
        return HTTPException(status_code=403, detail=f"Teachers can only {action} student accounts")
    return HTTPException(status_code=403, detail=f"Access denied. Only administrators can {action} users.")


def ensure(condition: bool, detail: str = "Not authorized", status_code: int = 403) -> None:
    if not condition:
        raise HTTPException(status_code=status_code, detail=detail)


def load_or_404(db, collection: str, _id, label: Optional[str] = None) -> dict:
    doc = db[collection].find_one({"_id": _id})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label or collection.capitalize()} not found")
    return doc
