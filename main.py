import logging
import re
from datetime import datetime, timedelta
from typing import Optional, List, Literal, Any, Dict

from fastapi import FastAPI, HTTPException, Depends, Body, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, EmailStr, Field, ValidationError

import config
import database
import mastery
from auth import (
    create_token,
    get_current_user,
    hash_password,
    permissions_for,
    require_role,
    verify_password,
)
from database import create_document, ensure_indexes, get_db, get_documents
from permissions import (
    can_manage_user,
    can_view_deck,
    can_view_user,
    ensure,
    is_admin,
    is_deck_owner,
    is_team_member,
    is_team_owner,
    load_or_404,
    manage_user_denied,
    uid,
)
from schemas import (
    Assignment,
    CardType,
    AssignmentStatus,
    Deck,
    Card,
    Preferences,
    Requirements,
    Role,
    SystemSettings,
    Team,
    TeamSettings,
    User,
)
from utils import as_utc, brief, generate_join_code, naive_utc, oid, oids, serialize_doc, to_json, unique_ids, utcnow

logging.basicConfig(
    level=config.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("flashmat")

app = FastAPI(title="FlashMat API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if config.CLIENT_URL == "*" else [config.CLIENT_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------
# Request models
# ----------------------
class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=config.MIN_PASSWORD_LENGTH)
    role: Role = "student"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileIn(BaseModel):
    avatar: Optional[str] = None
    bio: Optional[str] = None
    preferences: Optional[Preferences] = None


class ProfileUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    profile: Optional[ProfileIn] = None


class AccountUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    role: Optional[Role] = None
    active: Optional[bool] = None


class UserCreate(BaseModel):
    username: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=config.MIN_PASSWORD_LENGTH)
    role: Role = "student"
    class_ids: List[str] = Field(default_factory=list)


class UserUpdate(BaseModel):
    username: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    role: Optional[Role] = None
    active: Optional[bool] = None
    profile: Optional[ProfileIn] = None
    class_ids: Optional[List[str]] = None
    deck_ids: Optional[List[str]] = None


class PreferencesUpdate(BaseModel):
    theme: Optional[Literal["light", "dark"]] = None
    email_notifications: Optional[bool] = None


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=config.MIN_PASSWORD_LENGTH)


class DeckCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    subject: Optional[str] = None


class DeckUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    subject: Optional[str] = None


class StudySessionIn(BaseModel):
    mastery_percentage: Optional[float] = Field(None, ge=0, le=100)
    average_rating: Optional[float] = Field(None, ge=0, le=5)
    time_spent: int = Field(0, ge=0, description="Seconds")


class CardImageIn(BaseModel):
    url: Optional[str] = None
    filename: Optional[str] = None


class CardCreate(BaseModel):
    deck_id: str
    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)
    type: CardType = "text"
    options: List[str] = Field(default_factory=list)
    question_image: Optional[CardImageIn] = None


class CardUpdate(BaseModel):
    question: Optional[str] = Field(None, min_length=1)
    answer: Optional[str] = Field(None, min_length=1)
    type: Optional[CardType] = None
    options: Optional[List[str]] = None
    question_image: Optional[CardImageIn] = None


class RatingIn(BaseModel):
    rating: Any = None


class TeamCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    privacy: Literal["private", "public"] = "private"
    student_ids: List[str] = Field(default_factory=list)
    deck_ids: List[str] = Field(default_factory=list)
    settings: Optional[TeamSettings] = None


class TeamUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    privacy: Optional[Literal["private", "public"]] = None
    settings: Optional[TeamSettings] = None
    student_ids: Optional[List[str]] = None
    deck_ids: Optional[List[str]] = None


class AddStudentRequest(BaseModel):
    email: EmailStr


class TeamDecksIn(BaseModel):
    deck_ids: List[str] = Field(default_factory=list)
    deck_id: Optional[str] = None


class AssignmentCreate(BaseModel):
    deck_id: str
    title: Optional[str] = None
    due_date: datetime
    points: int = Field(100, ge=0)
    requirements: Requirements = Field(default_factory=Requirements)


class AssignmentUpdate(BaseModel):
    title: Optional[str] = None
    due_date: Optional[datetime] = None
    points: Optional[int] = Field(None, ge=0)
    requirements: Optional[Requirements] = None
    status: Optional[AssignmentStatus] = None


class SubmissionCreate(BaseModel):
    mastery_achieved: float = Field(..., ge=0, le=100)
    cards_completed: int = Field(0, ge=0)


class GradeRequest(BaseModel):
    grade: Optional[float] = Field(None, ge=0, le=100)
    feedback: Optional[str] = None


class SettingsUpdate(BaseModel):
    allow_new_registrations: Optional[bool] = None
    maintenance_mode: Optional[bool] = None
    max_class_size: Optional[int] = Field(None, ge=1)
    max_decks_per_user: Optional[int] = Field(None, ge=1)
    max_cards_per_deck: Optional[int] = Field(None, ge=1)


# ----------------------
# Helpers
# ----------------------
def get_settings(db) -> Dict[str, Any]:
    defaults = SystemSettings(
        allow_new_registrations=config.ALLOW_REGISTRATIONS,
        maintenance_mode=config.MAINTENANCE_MODE,
        max_class_size=config.MAX_CLASS_SIZE,
        max_decks_per_user=config.MAX_DECKS_PER_USER,
        max_cards_per_deck=config.MAX_CARDS_PER_DECK,
    ).model_dump()
    stored = db["settings"].find_one({"_id": "system"}) or {}
    return {k: stored.get(k, v) for k, v in defaults.items()}


def auth_user(user: dict) -> Dict[str, Any]:
    return {
        "id": str(user["_id"]),
        "username": user.get("username"),
        "email": user.get("email"),
        "role": user.get("role"),
        "permissions": permissions_for(user.get("role", "student")),
    }


def check_unique_user(db, username: Optional[str], email: Optional[str], exclude=None):
    if email:
        q = {"email": email}
        if exclude is not None:
            q["_id"] = {"$ne": exclude}
        if db["user"].find_one(q):
            raise HTTPException(status_code=400, detail="Email already exists")
    if username:
        q = {"username": username}
        if exclude is not None:
            q["_id"] = {"$ne": exclude}
        if db["user"].find_one(q):
            raise HTTPException(status_code=400, detail="Username already exists")


def profile_set(profile: Optional[ProfileIn]) -> Dict[str, Any]:
    data = {}
    if profile is None:
        return data
    if profile.avatar is not None:
        data["profile.avatar"] = profile.avatar
    if profile.bio is not None:
        data["profile.bio"] = profile.bio
    if profile.preferences is not None:
        data["profile.preferences"] = profile.preferences.model_dump()
    return data


def user_with_classes(db, user: dict) -> Dict[str, Any]:
    out = serialize_doc(user)
    teams = db["team"].find({"_id": {"$in": oids(user.get("class_ids"))}})
    out["classes"] = [brief(t, "name", "description") for t in teams]
    return out


def team_sources(db, user: dict):
    """Ids of teams the user belongs to (enrolled or teaching) and the decks those teams hold."""
    user_id = uid(user)
    enrolled = user.get("class_ids") or []
    teams = list(db["team"].find({"$or": [
        {"_id": {"$in": oids(enrolled)}},
        {"teacher_id": user_id},
        {"student_ids": user_id},
    ]}))
    team_ids = unique_ids(enrolled, [t["_id"] for t in teams])
    team_deck_ids = unique_ids(*[t.get("deck_ids") for t in teams])
    return team_ids, team_deck_ids


def accessible_deck_ids(db, user: dict) -> List[str]:
    _, team_deck_ids = team_sources(db, user)
    return unique_ids(user.get("deck_ids"), user.get("created_deck_ids"), team_deck_ids)


def user_counts(db, user: dict) -> Dict[str, int]:
    team_ids, team_deck_ids = team_sources(db, user)
    all_decks = unique_ids(user.get("deck_ids"), user.get("created_deck_ids"), team_deck_ids)
    return {
        "team_count": len(team_ids),
        "deck_count": len(all_decks),
        "assigned_deck_count": len(user.get("deck_ids") or []),
        "created_deck_count": len(user.get("created_deck_ids") or []),
        "team_deck_count": len(team_deck_ids),
    }


def existing_ids(db, collection: str, ids: List[str]) -> List[str]:
    found = {str(d["_id"]) for d in db[collection].find({"_id": {"$in": oids(ids)}}, {"_id": 1})}
    return [i for i in unique_ids(ids) if i in found]


def assign_decks(db, user_ids: List[str], deck_ids: List[str]):
    if user_ids and deck_ids:
        db["user"].update_many(
            {"_id": {"$in": oids(user_ids)}},
            {"$addToSet": {"deck_ids": {"$each": list(deck_ids)}}},
        )


def save_progress(db, progress: dict):
    progress["updated_at"] = utcnow()
    db["userprogress"].replace_one(
        {"user_id": progress["user_id"], "deck_id": progress["deck_id"]},
        {k: v for k, v in progress.items() if k != "_id"},
        upsert=True,
    )


def load_progress(db, user_id: str, deck_id: str) -> dict:
    return db["userprogress"].find_one({"user_id": user_id, "deck_id": deck_id}) or mastery.empty_progress(user_id, deck_id)


def bump_streak(db, user: dict) -> int:
    streak = mastery.update_study_streak(user, utcnow())
    db["user"].update_one(
        {"_id": user["_id"]},
        {"$set": {"study_streak": user["study_streak"], "last_studied": user["last_studied"]}},
    )
    return streak


def delete_deck_cascade(db, deck: dict):
    """Remove a deck and every reference to it. These are separate, non-atomic writes."""
    deck_id = str(deck["_id"])
    db["card"].delete_many({"deck_id": deck_id})
    db["user"].update_many({"deck_ids": deck_id}, {"$pull": {"deck_ids": deck_id}})
    db["user"].update_many({"created_deck_ids": deck_id}, {"$pull": {"created_deck_ids": deck_id}})
    for a in db["assignment"].find({"deck_id": deck_id}, {"_id": 1}):
        db["team"].update_many({"assignment_ids": str(a["_id"])}, {"$pull": {"assignment_ids": str(a["_id"])}})
    db["assignment"].delete_many({"deck_id": deck_id})
    db["team"].update_many({"deck_ids": deck_id}, {"$pull": {"deck_ids": deck_id}})
    db["userprogress"].delete_many({"deck_id": deck_id})
    db["deck"].delete_one({"_id": deck["_id"]})


def delete_user_cascade(db, target: dict, delete_decks: bool = False):
    target_id = str(target["_id"])
    db["team"].update_many({"student_ids": target_id}, {"$pull": {"student_ids": target_id}})
    db["team"].update_many({"teacher_id": target_id}, {"$set": {"teacher_id": None}})
    db["assignment"].update_many(
        {"submissions.student_id": target_id},
        {"$pull": {"submissions": {"student_id": target_id}}},
    )
    db["userprogress"].delete_many({"user_id": target_id})
    if delete_decks:
        for deck in list(db["deck"].find({"creator_id": target_id})):
            delete_deck_cascade(db, deck)
    db["user"].delete_one({"_id": target["_id"]})


def check_class_size(db, size: int):
    limit = get_settings(db)["max_class_size"]
    if size > limit:
        raise HTTPException(status_code=400, detail=f"Class size limit of {limit} students reached")


def check_room_to_join(db, team_ids: List[str], user_id: Optional[str] = None):
    for t in db["team"].find({"_id": {"$in": oids(team_ids)}}):
        students = t.get("student_ids") or []
        if user_id not in students:
            check_class_size(db, len(students) + 1)


def populate_team(db, team: dict) -> Dict[str, Any]:
    out = serialize_doc(team)
    teacher = db["user"].find_one({"_id": oid(team["teacher_id"])}) if team.get("teacher_id") else None
    out["teacher"] = brief(teacher, "username", "email") if teacher else None
    out["students"] = [brief(s, "username", "email") for s in db["user"].find({"_id": {"$in": oids(team.get("student_ids"))}})]
    out["decks"] = [brief(d, "name", "description") for d in db["deck"].find({"_id": {"$in": oids(team.get("deck_ids"))}})]
    return out


def team_progress_entries(db, team: dict) -> List[dict]:
    students = team.get("student_ids") or []
    decks = team.get("deck_ids") or []
    if not students or not decks:
        return []
    return list(db["userprogress"].find({"user_id": {"$in": students}, "deck_id": {"$in": decks}}))


def clean_card_fields(card_type: str, answer: str, options: List[str], image: Optional[CardImageIn]):
    options = [o.strip() for o in options or [] if o and o.strip()]
    if card_type == "multipleChoice":
        if len(options) < 2:
            raise HTTPException(status_code=400, detail="Multiple choice cards need at least two options")
        if answer.strip() not in options:
            raise HTTPException(status_code=400, detail="Answer must be one of the options")
    # image metadata is only kept when both parts are present
    question_image = None
    if image is not None and image.url and image.filename:
        question_image = {"url": image.url, "filename": image.filename}
    return options, question_image


def assignment_out(db, assignment: dict, viewer: Optional[dict] = None) -> Dict[str, Any]:
    out = serialize_doc(assignment)
    deck = db["deck"].find_one({"_id": oid(assignment["deck_id"])}) if assignment.get("deck_id") else None
    out["deck"] = brief(deck, "name") if deck else None
    subs = assignment.get("submissions") or []
    names = {
        str(u["_id"]): u.get("username")
        for u in db["user"].find({"_id": {"$in": oids([s.get("student_id") for s in subs])}}, {"username": 1})
    }
    for s in out.get("submissions") or []:
        s["username"] = names.get(s.get("student_id"))
    if viewer is not None and viewer.get("role") == "student":
        mine = mastery.find_submission(assignment, uid(viewer))
        out["submissions"] = [s for s in out.get("submissions") or [] if s.get("student_id") == uid(viewer)]
        out["completed"] = mastery.submission_completed(assignment.get("requirements") or {}, mine)
    return out


def student_assignment_progress(assignments: List[dict], student_id: str) -> Dict[str, Any]:
    rows = []
    for a in assignments:
        sub = mastery.find_submission(a, student_id)
        rows.append({
            "assignment_id": str(a["_id"]),
            "deck_id": a.get("deck_id"),
            "title": a.get("title"),
            "due_date": a.get("due_date"),
            "submitted": sub is not None,
            "completed": mastery.submission_completed(a.get("requirements") or {}, sub),
            "mastery_achieved": sub.get("mastery_achieved") if sub else None,
            "grade": sub.get("grade") if sub else None,
            "feedback": sub.get("feedback") if sub else None,
            "submitted_at": sub.get("submitted_at") if sub else None,
        })
    submitted = [r for r in rows if r["submitted"]]
    last = [as_utc(r["submitted_at"]) for r in submitted if r["submitted_at"]]
    return to_json({
        "progress": rows,
        "stats": {
            "total_assignments": len(rows),
            "completed_assignments": sum(1 for r in rows if r["completed"]),
            "average_mastery": (
                sum(r["mastery_achieved"] or 0 for r in submitted) / len(submitted) if submitted else 0
            ),
            "last_submitted": max(last) if last else None,
        },
    })


# ----------------------
# Startup: seed admin
# ----------------------
@app.on_event("startup")
def seed_admin():
    # If DB is not configured, skip seeding so the app can start
    if database.db is None:
        return
    try:
        ensure_indexes(database.db)
        existing = database.db["user"].find_one({"email": config.ADMIN_EMAIL})
        if not existing:
            admin = User(
                username=config.ADMIN_USERNAME,
                email=config.ADMIN_EMAIL,
                password_hash=hash_password(config.ADMIN_PASSWORD),
                role="admin",
            )
            create_document(database.db, "user", admin)
            logger.info("Seeded admin account %s", config.ADMIN_EMAIL)
    except Exception as e:
        # don't crash startup on seeding error
        logger.error("Startup seeding failed: %s", e)


# ----------------------
# Basic routes
# ----------------------
@app.get("/")
def root():
    return {"message": "FlashMat API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if config.DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if database.db is not None:
            response["collections"] = database.db.list_collection_names()
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"⚠️ Connected but error: {str(e)[:80]}"
    return response


@app.get("/health")
def health():
    return {"status": "ok", "timestamp": utcnow().isoformat()}


# ----------------------
# Auth endpoints
# ----------------------
@app.post("/api/auth/register", status_code=201)
def register(payload: RegisterRequest, db=Depends(get_db)):
    if not get_settings(db)["allow_new_registrations"]:
        raise HTTPException(status_code=403, detail="Registrations are currently closed")
    if payload.role == "admin":
        raise HTTPException(status_code=400, detail="Cannot self-register as admin")
    username = payload.username.strip()
    email = payload.email.lower()
    check_unique_user(db, username, email)
    user = User(
        username=username,
        email=email,
        password_hash=hash_password(payload.password),
        role=payload.role,
    )
    doc = create_document(db, "user", user)
    logger.info("Registered %s user %s", payload.role, username)
    return {"token": create_token(doc), "user": auth_user(doc)}


@app.post("/api/auth/login")
def login(payload: LoginRequest, db=Depends(get_db)):
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not verify_password(payload.password, user.get("password_hash")):
        logger.info("Login failed for %s: %s", payload.email, "user not found" if not user else "invalid password")
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.get("active", True):
        raise HTTPException(status_code=403, detail="Account disabled")
    if user.get("role") != "admin" and get_settings(db)["maintenance_mode"]:
        raise HTTPException(status_code=503, detail="System is in maintenance mode")
    out = serialize_doc(user)
    out["permissions"] = permissions_for(user.get("role", "student"))
    return {"token": create_token(user), "user": out}


@app.get("/api/auth/me")
def me(current=Depends(get_current_user), db=Depends(get_db)):
    return user_with_classes(db, current)


@app.put("/api/auth/profile")
def update_me(update: ProfileUpdate, current=Depends(get_current_user), db=Depends(get_db)):
    data = {}
    if update.username is not None:
        data["username"] = update.username.strip()
    if update.email is not None:
        data["email"] = update.email.lower()
    check_unique_user(db, data.get("username"), data.get("email"), exclude=current["_id"])
    data.update(profile_set(update.profile))
    if data:
        data["updated_at"] = utcnow()
        db["user"].update_one({"_id": current["_id"]}, {"$set": data})
    refreshed = db["user"].find_one({"_id": current["_id"]})
    return serialize_doc(refreshed)


@app.get("/api/auth/verify")
def verify(current=Depends(get_current_user)):
    return {"valid": True, "user": auth_user(current)}


# ----------------------
# User endpoints
# ----------------------
@app.get("/api/users")
def list_users(deck: Optional[str] = None, current=Depends(get_current_user), db=Depends(get_db)):
    q = {}
    if deck:
        # any role may look up who holds a deck
        q = {"deck_ids": deck}
    else:
        require_role(current, ["teacher", "admin"])
    users = []
    for u in db["user"].find(q).sort("username", 1):
        out = serialize_doc(u)
        counts = user_counts(db, u)
        out["team_count"] = counts["team_count"]
        out["deck_count"] = counts["deck_count"]
        users.append(out)
    return users


@app.post("/api/users", status_code=201)
def create_user(body: UserCreate, current=Depends(get_current_user), db=Depends(get_db)):
    require_role(current, ["admin"])
    username = body.username.strip()
    email = body.email.lower()
    check_unique_user(db, username, email)
    class_ids = existing_ids(db, "team", body.class_ids)
    check_room_to_join(db, class_ids)
    user = User(
        username=username,
        email=email,
        password_hash=hash_password(body.password),
        role=body.role,
        class_ids=class_ids,
    )
    doc = create_document(db, "user", user)
    user_id = str(doc["_id"])
    if class_ids:
        db["team"].update_many({"_id": {"$in": oids(class_ids)}}, {"$addToSet": {"student_ids": user_id}})
        team_decks = unique_ids(*[t.get("deck_ids") for t in db["team"].find({"_id": {"$in": oids(class_ids)}})])
        assign_decks(db, [user_id], team_decks)
    logger.info("Admin %s created user %s (%s)", current.get("username"), username, body.role)
    return user_with_classes(db, db["user"].find_one({"_id": doc["_id"]}))


@app.get("/api/users/profile")
def get_profile(current=Depends(get_current_user), db=Depends(get_db)):
    return user_with_classes(db, current)


@app.put("/api/users/profile")
def update_profile(body: Dict[str, Any] = Body(...), current=Depends(get_current_user), db=Depends(get_db)):
    if not set(body).issubset({"username", "email"}):
        raise HTTPException(status_code=400, detail="Invalid updates")
    try:
        update = ProfileUpdate(**body)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid updates")
    return update_me(update, current, db)


@app.delete("/api/users/profile")
def delete_profile(current=Depends(get_current_user), db=Depends(get_db)):
    logger.info("User %s deleted their account", current.get("username"))
    delete_user_cascade(db, current)
    return {"message": "User deleted successfully"}


@app.put("/api/users/settings")
def update_preferences(body: PreferencesUpdate, current=Depends(get_current_user), db=Depends(get_db)):
    data = {f"profile.preferences.{k}": v for k, v in body.model_dump().items() if v is not None}
    if data:
        data["updated_at"] = utcnow()
        db["user"].update_one({"_id": current["_id"]}, {"$set": data})
    refreshed = db["user"].find_one({"_id": current["_id"]})
    return (refreshed.get("profile") or {}).get("preferences") or Preferences().model_dump()


@app.put("/api/users/password")
def change_password(body: PasswordChange, current=Depends(get_current_user), db=Depends(get_db)):
    if not verify_password(body.current_password, current.get("password_hash")):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    db["user"].update_one(
        {"_id": current["_id"]},
        {"$set": {"password_hash": hash_password(body.new_password), "updated_at": utcnow()}},
    )
    return {"message": "Password updated successfully"}


@app.get("/api/users/learning-stats")
def learning_stats(current=Depends(get_current_user), db=Depends(get_db)):
    user_id = uid(current)
    deck_ids = accessible_deck_ids(db, current)
    decks = {str(d["_id"]): d for d in db["deck"].find({"_id": {"$in": oids(deck_ids)}})}
    entries = list(db["userprogress"].find({"user_id": user_id, "deck_id": {"$in": list(decks)}}))

    total_cards = sum(len(d.get("card_ids") or []) for d in decks.values())
    mastered_cards = 0
    for e in entries:
        in_deck = set(decks[e["deck_id"]].get("card_ids") or [])
        mastered_cards += sum(1 for cp in e.get("card_progress") or [] if cp.get("mastered") and cp.get("card_id") in in_deck)

    studied = [e for e in entries if (e.get("stats") or {}).get("last_studied")]
    studied.sort(key=lambda e: as_utc(e["stats"]["last_studied"]), reverse=True)
    recent = [
        {
            "id": e["deck_id"],
            "name": decks[e["deck_id"]].get("name"),
            "last_studied": e["stats"]["last_studied"],
            "mastery": e["stats"].get("mastery_percentage") or 0,
        }
        for e in studied[:5]
    ]
    needs_review = [
        {"id": e["deck_id"], "name": decks[e["deck_id"]].get("name"), "mastery": e["stats"].get("mastery_percentage") or 0}
        for e in studied
        if (e["stats"].get("mastery_percentage") or 0) < config.NEEDS_REVIEW_BELOW
    ]
    return to_json({
        "total_cards": total_cards,
        "mastered_cards": mastered_cards,
        "study_streak": current.get("study_streak") or 0,
        "achievement_points": current.get("achievement_points") or 0,
        "recent_decks": recent,
        "needs_review": needs_review,
        "achievements": current.get("achievements") or [],
    })


@app.post("/api/users/study-streak")
def study_streak(current=Depends(get_current_user), db=Depends(get_db)):
    streak = bump_streak(db, current)
    return to_json({"study_streak": streak, "last_studied": current.get("last_studied")})


@app.get("/api/users/classes")
def user_classes(user: Optional[str] = None, current=Depends(get_current_user), db=Depends(get_db)):
    user_id = user or uid(current)
    if user_id != uid(current) and not is_admin(current):
        raise HTTPException(status_code=403, detail="Not authorized to view other users' teams")
    target = load_or_404(db, "user", oid(user_id))
    return [serialize_doc(t) for t in db["team"].find({"_id": {"$in": oids(target.get("class_ids"))}})]


@app.get("/api/users/{user_id}/progress")
def user_progress(user_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    if not can_view_user(current, user_id):
        raise HTTPException(status_code=403, detail="Not authorized to view this user's progress")
    target = load_or_404(db, "user", oid(user_id))
    deck_ids = unique_ids(target.get("deck_ids"), target.get("created_deck_ids"))
    entries = list(db["userprogress"].find({"user_id": user_id, "deck_id": {"$in": deck_ids}}))
    logger.debug("Progress for %s: %d of %d decks studied", user_id, len(entries), len(deck_ids))
    return to_json(mastery.user_progress_overview(user_id, deck_ids, entries))


@app.get("/api/users/{user_id}")
def get_user(user_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    if not can_view_user(current, user_id):
        raise HTTPException(status_code=403, detail="Not authorized to view this user's details")
    target = load_or_404(db, "user", oid(user_id))
    out = user_with_classes(db, target)
    for key, out_key in (("deck_ids", "decks"), ("created_deck_ids", "created_decks")):
        wanted = target.get(key) or []
        found = [brief(d, "name", "description") for d in db["deck"].find({"_id": {"$in": oids(wanted)}})]
        if len(found) != len(wanted):
            missing = set(wanted) - {d["id"] for d in found}
            logger.warning("User %s references %d missing decks: %s", user_id, len(missing), sorted(missing))
        out[out_key] = found
    return out


@app.put("/api/users/{user_id}")
def update_user(user_id: str, body: UserUpdate, current=Depends(get_current_user), db=Depends(get_db)):
    target = load_or_404(db, "user", oid(user_id))
    if not can_manage_user(current, target):
        raise manage_user_denied(current, "edit")
    if body.role is not None and body.role != target.get("role") and not is_admin(current):
        raise HTTPException(status_code=403, detail="Only administrators can change roles")

    data = {}
    if body.username is not None:
        data["username"] = body.username.strip()
    if body.email is not None:
        data["email"] = body.email.lower()
    check_unique_user(db, data.get("username"), data.get("email"), exclude=target["_id"])
    if body.role is not None:
        data["role"] = body.role
    if body.active is not None:
        data["active"] = body.active
    data.update(profile_set(body.profile))

    added_teams: List[str] = []
    if body.class_ids is not None:
        new_ids = existing_ids(db, "team", body.class_ids)
        old_ids = target.get("class_ids") or []
        added_teams = [t for t in new_ids if t not in old_ids]
        removed_teams = [t for t in old_ids if t not in new_ids]
        check_room_to_join(db, added_teams, user_id)
        logger.info(
            "Team changes for %s: %d added, %d removed",
            target.get("username"), len(added_teams), len(removed_teams),
        )
        if removed_teams:
            db["team"].update_many({"_id": {"$in": oids(removed_teams)}}, {"$pull": {"student_ids": user_id}})
        if added_teams:
            db["team"].update_many({"_id": {"$in": oids(added_teams)}}, {"$addToSet": {"student_ids": user_id}})
        data["class_ids"] = new_ids
    if body.deck_ids is not None:
        data["deck_ids"] = existing_ids(db, "deck", body.deck_ids)

    data["updated_at"] = utcnow()
    db["user"].update_one({"_id": target["_id"]}, {"$set": data})

    if added_teams:
        team_decks = unique_ids(*[t.get("deck_ids") for t in db["team"].find({"_id": {"$in": oids(added_teams)}})])
        assign_decks(db, [user_id], team_decks)

    refreshed = db["user"].find_one({"_id": target["_id"]})
    out = get_user(user_id, current, db)
    out.update(user_counts(db, refreshed))
    return out


@app.delete("/api/users/{user_id}")
def delete_user(user_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    target = load_or_404(db, "user", oid(user_id))
    if not can_manage_user(current, target):
        raise manage_user_denied(current, "delete")
    logger.info(
        "User deletion: %s (%s) deleted %s (%s)",
        current.get("username"), current.get("role"), target.get("username"), target.get("role"),
    )
    delete_user_cascade(db, target)
    return {"message": "User deleted successfully"}


# ----------------------
# Deck endpoints
# ----------------------
@app.get("/api/decks")
def list_decks(current=Depends(get_current_user), db=Depends(get_db)):
    q = {}
    if not is_admin(current):
        q = {"$or": [
            {"creator_id": uid(current)},
            {"_id": {"$in": oids(accessible_deck_ids(db, current))}},
        ]}
    decks = []
    for d in db["deck"].find(q).sort("created_at", -1):
        out = serialize_doc(d)
        out["card_count"] = len(d.get("card_ids") or [])
        decks.append(out)
    return decks


@app.post("/api/decks", status_code=201)
def create_deck(body: DeckCreate, current=Depends(get_current_user), db=Depends(get_db)):
    if not is_admin(current):
        limit = get_settings(db)["max_decks_per_user"]
        if db["deck"].count_documents({"creator_id": uid(current)}) >= limit:
            raise HTTPException(status_code=400, detail=f"Deck limit of {limit} reached")
    deck = Deck(
        name=body.name.strip(),
        description=body.description,
        subject=body.subject,
        creator_id=uid(current),
    )
    doc = create_document(db, "deck", deck)
    db["user"].update_one({"_id": current["_id"]}, {"$addToSet": {"created_deck_ids": str(doc["_id"])}})
    out = serialize_doc(doc)
    out["creator"] = brief(current, "username")
    return out


@app.get("/api/decks/{deck_id}")
def get_deck(deck_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    deck = load_or_404(db, "deck", oid(deck_id))
    ensure(can_view_deck(db, current, deck), "Not authorized to view this deck")
    out = serialize_doc(deck)
    creator = db["user"].find_one({"_id": oid(deck["creator_id"])}) if deck.get("creator_id") else None
    out["creator"] = brief(creator, "username") if creator else None
    out["cards"] = [serialize_doc(c) for c in db["card"].find({"deck_id": deck_id}).sort("created_at", 1)]
    out["stats"] = to_json(load_progress(db, uid(current), deck_id)["stats"])
    return out


@app.put("/api/decks/{deck_id}")
def update_deck(deck_id: str, body: DeckUpdate, current=Depends(get_current_user), db=Depends(get_db)):
    deck = load_or_404(db, "deck", oid(deck_id))
    ensure(is_deck_owner(current, deck))
    data = {k: v for k, v in body.model_dump().items() if v is not None}
    if data:
        data["updated_at"] = utcnow()
        db["deck"].update_one({"_id": deck["_id"]}, {"$set": data})
    return serialize_doc(db["deck"].find_one({"_id": deck["_id"]}))


@app.get("/api/decks/{deck_id}/stats")
def get_deck_stats(deck_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    deck = load_or_404(db, "deck", oid(deck_id))
    ensure(can_view_deck(db, current, deck), "Not authorized to view this deck")
    progress = load_progress(db, uid(current), deck_id)
    return {"deck_id": deck_id, "stats": to_json(progress["stats"]), "card_progress": to_json(progress["card_progress"])}


@app.put("/api/decks/{deck_id}/stats")
def record_study_session(deck_id: str, body: StudySessionIn, current=Depends(get_current_user), db=Depends(get_db)):
    deck = load_or_404(db, "deck", oid(deck_id))
    ensure(can_view_deck(db, current, deck), "Not authorized to study this deck")
    now = utcnow()
    progress = load_progress(db, uid(current), deck_id)
    computed = mastery.deck_mastery(progress.get("card_progress") or [], len(deck.get("card_ids") or []))
    mastery_pct = body.mastery_percentage if body.mastery_percentage is not None else computed["mastery_percentage"]
    average = body.average_rating if body.average_rating is not None else computed["average_rating"]
    mastery.log_daily_mastery(
        progress.setdefault("stats", {}),
        mastery_pct,
        average,
        len(progress.get("card_progress") or []),
        now,
        time_spent=body.time_spent,
    )
    save_progress(db, progress)
    bump_streak(db, current)
    logger.info("Study session for deck %s by %s: mastery=%s avg=%s", deck_id, current.get("username"), mastery_pct, average)
    return {"deck_id": deck_id, "stats": to_json(progress["stats"])}


@app.delete("/api/decks/{deck_id}")
def delete_deck(deck_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    deck = load_or_404(db, "deck", oid(deck_id))
    ensure(is_deck_owner(current, deck))
    logger.info("Deck %s (%s) deleted by %s", deck_id, deck.get("name"), current.get("username"))
    delete_deck_cascade(db, deck)
    return {"message": "Deck and associated cards deleted successfully"}


# ----------------------
# Card endpoints
# ----------------------
@app.get("/api/cards/deck/{deck_id}")
def list_cards(deck_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    deck = load_or_404(db, "deck", oid(deck_id))
    ensure(can_view_deck(db, current, deck), "Not authorized to view this deck")
    return [serialize_doc(c) for c in db["card"].find({"deck_id": deck_id}).sort("created_at", 1)]


@app.post("/api/cards", status_code=201)
def create_card(body: CardCreate, current=Depends(get_current_user), db=Depends(get_db)):
    deck = load_or_404(db, "deck", oid(body.deck_id))
    ensure(is_deck_owner(current, deck))
    limit = get_settings(db)["max_cards_per_deck"]
    if len(deck.get("card_ids") or []) >= limit:
        raise HTTPException(status_code=400, detail=f"Card limit of {limit} per deck reached")
    options, image = clean_card_fields(body.type, body.answer, body.options, body.question_image)
    card = Card(
        deck_id=body.deck_id,
        question=body.question,
        answer=body.answer.strip(),
        type=body.type,
        options=options,
        question_image=image,
        creator_id=uid(current),
    )
    doc = create_document(db, "card", card)
    db["deck"].update_one(
        {"_id": deck["_id"]},
        {"$push": {"card_ids": str(doc["_id"])}, "$set": {"updated_at": utcnow()}},
    )
    return serialize_doc(doc)


@app.get("/api/cards/{card_id}")
def get_card(card_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    card = load_or_404(db, "card", oid(card_id))
    deck = load_or_404(db, "deck", oid(card["deck_id"]))
    ensure(can_view_deck(db, current, deck), "Not authorized to view this card")
    out = serialize_doc(card)
    out["deck"] = brief(deck, "name")
    return out


@app.put("/api/cards/{card_id}")
def update_card(card_id: str, body: CardUpdate, current=Depends(get_current_user), db=Depends(get_db)):
    card = load_or_404(db, "card", oid(card_id))
    deck = load_or_404(db, "deck", oid(card["deck_id"]))
    ensure(is_deck_owner(current, deck))
    merged = {**card, **body.model_dump(exclude_unset=True, exclude_none=True)}
    image = body.question_image if "question_image" in body.model_fields_set else CardImageIn(**(card.get("question_image") or {}))
    options, question_image = clean_card_fields(merged["type"], merged["answer"], merged.get("options") or [], image)
    data = {
        "question": merged["question"],
        "answer": merged["answer"].strip(),
        "type": merged["type"],
        "options": options,
        "question_image": question_image,
        "updated_at": utcnow(),
    }
    db["card"].update_one({"_id": card["_id"]}, {"$set": data})
    out = serialize_doc(db["card"].find_one({"_id": card["_id"]}))
    out["deck"] = brief(deck, "name")
    return out


@app.post("/api/cards/{card_id}/rate")
def rate_card(card_id: str, body: RatingIn, current=Depends(get_current_user), db=Depends(get_db)):
    card = load_or_404(db, "card", oid(card_id))
    if not mastery.is_valid_rating(body.rating):
        raise HTTPException(status_code=400, detail="Invalid rating value")
    deck = load_or_404(db, "deck", oid(card["deck_id"]))
    ensure(can_view_deck(db, current, deck), "Not authorized to study this deck")
    now = utcnow()
    deck_id = str(deck["_id"])
    progress = load_progress(db, uid(current), deck_id)
    entry = mastery.apply_card_rating(progress, card_id, body.rating, now)
    in_deck = set(deck.get("card_ids") or [])
    figures = mastery.deck_mastery(
        [cp for cp in progress["card_progress"] if cp.get("card_id") in in_deck],
        len(in_deck),
    )
    stats = progress.setdefault("stats", {})
    stats.update(figures)
    stats["last_studied"] = now
    save_progress(db, progress)
    return to_json({
        "message": "Rating saved successfully",
        "mastered": entry["mastered"],
        "card_progress": entry,
        "stats": {k: v for k, v in stats.items() if k != "study_sessions"},
    })


@app.delete("/api/cards/{card_id}")
def delete_card(card_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    card = load_or_404(db, "card", oid(card_id))
    deck = db["deck"].find_one({"_id": oid(card["deck_id"])})
    ensure(is_deck_owner(current, deck) if deck else is_admin(current))
    if deck:
        db["deck"].update_one({"_id": deck["_id"]}, {"$pull": {"card_ids": card_id}, "$set": {"updated_at": utcnow()}})
    db["userprogress"].update_many({"deck_id": card["deck_id"]}, {"$pull": {"card_progress": {"card_id": card_id}}})
    db["card"].delete_one({"_id": card["_id"]})
    return {"message": "Card deleted successfully"}


# ----------------------
# Class (team) endpoints
# ----------------------
@app.get("/api/classes")
def list_classes(deck: Optional[str] = None, current=Depends(get_current_user), db=Depends(get_db)):
    user_id = uid(current)
    role = current.get("role")
    if deck:
        if role in ("teacher", "admin"):
            # every team they teach, flagged with whether it already holds the deck
            teams = []
            for t in db["team"].find({"teacher_id": user_id}):
                out = populate_team(db, t)
                out["has_deck"] = deck in (t.get("deck_ids") or [])
                teams.append(out)
            return teams
        return [populate_team(db, t) for t in db["team"].find({"student_ids": user_id, "deck_ids": deck})]

    if role == "admin":
        q = {}
    elif role == "teacher":
        q = {"$or": [{"teacher_id": user_id}, {"student_ids": user_id}]}
    else:
        q = {"student_ids": user_id}

    teams = []
    for t in db["team"].find(q).sort("created_at", -1):
        out = populate_team(db, t)
        stats = mastery.class_stats(t.get("student_ids") or [], t.get("deck_ids") or [], team_progress_entries(db, t))
        stats["last_updated"] = utcnow()
        out["stats"] = to_json(stats)
        teams.append(out)
    return teams


@app.get("/api/classes/stats")
def class_overview(current=Depends(get_current_user), db=Depends(get_db)):
    user_id = uid(current)

    def summary(t):
        return {
            "id": str(t["_id"]),
            "name": t.get("name"),
            "deck_count": len(t.get("deck_ids") or []),
            "student_count": len(t.get("student_ids") or []),
        }

    teaching = [summary(t) for t in get_documents(db, "team", {"teacher_id": user_id})]
    attending = [summary(t) for t in get_documents(db, "team", {"student_ids": user_id})]
    return {
        "teams_as_teacher": len(teaching),
        "teams_as_student": len(attending),
        "total_teams": len(teaching) + len(attending),
        "teacher_stats": teaching,
        "student_stats": attending,
    }


@app.get("/api/classes/{class_id}")
def get_class(class_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    team = load_or_404(db, "team", oid(class_id), "Team")
    ensure(is_team_member(current, team), "Access denied")
    out = populate_team(db, team)
    stats = mastery.class_stats(team.get("student_ids") or [], team.get("deck_ids") or [], team_progress_entries(db, team))
    students = {s["id"]: s for s in out["students"]}
    out["student_progress"] = to_json([
        {
            "student_id": d["student_id"],
            "username": students.get(d["student_id"], {}).get("username"),
            "email": students.get(d["student_id"], {}).get("email"),
            "progress": {k: d[k] for k in ("average_mastery", "last_studied", "completed_decks", "total_decks", "mastery_by_deck")},
        }
        for d in stats["student_details"]
    ])
    out["stats"] = to_json({
        "total_students": stats["total_students"],
        "active_students": stats["active_student_count"],
        "average_mastery": stats["average_mastery"],
        "total_decks": stats["deck_count"],
        "last_updated": utcnow(),
    })
    return out


@app.post("/api/classes", status_code=201)
def create_class(body: TeamCreate, current=Depends(get_current_user), db=Depends(get_db)):
    require_role(current, ["teacher", "admin"])
    student_ids = existing_ids(db, "user", body.student_ids)
    deck_ids = existing_ids(db, "deck", body.deck_ids)
    check_class_size(db, len(student_ids))
    team = Team(
        name=body.name.strip(),
        description=body.description,
        privacy=body.privacy,
        teacher_id=uid(current),
        student_ids=student_ids,
        deck_ids=deck_ids,
        join_code=generate_join_code(),
        settings=body.settings or TeamSettings(),
    )
    doc = create_document(db, "team", team)
    team_id = str(doc["_id"])
    if student_ids:
        db["user"].update_many({"_id": {"$in": oids(student_ids)}}, {"$addToSet": {"class_ids": team_id}})
        assign_decks(db, student_ids, deck_ids)
    db["user"].update_one({"_id": current["_id"]}, {"$addToSet": {"class_ids": team_id}})
    logger.info("Team %s created by %s with %d students and %d decks", team.name, current.get("username"), len(student_ids), len(deck_ids))
    return populate_team(db, doc)


@app.put("/api/classes/{class_id}")
def update_class(class_id: str, body: TeamUpdate, current=Depends(get_current_user), db=Depends(get_db)):
    require_role(current, ["teacher", "admin"])
    team = load_or_404(db, "team", oid(class_id), "Team")
    ensure(is_team_owner(current, team), "Not authorized to modify this team")

    data = {}
    for field in ("name", "description", "privacy"):
        value = getattr(body, field)
        if value is not None:
            data[field] = value.strip() if field == "name" else value
    if body.settings is not None:
        data["settings"] = body.settings.model_dump()

    old_students = team.get("student_ids") or []
    students = old_students
    new_members: List[str] = []
    if body.student_ids is not None:
        students = existing_ids(db, "user", body.student_ids)
        check_class_size(db, len(students))
        removed = [s for s in old_students if s not in students]
        new_members = [s for s in students if s not in old_students]
        if removed:
            db["user"].update_many({"_id": {"$in": oids(removed)}}, {"$pull": {"class_ids": class_id}})
        if new_members:
            db["user"].update_many({"_id": {"$in": oids(new_members)}}, {"$addToSet": {"class_ids": class_id}})
        data["student_ids"] = students

    old_decks = team.get("deck_ids") or []
    decks = old_decks
    if body.deck_ids is not None:
        decks = existing_ids(db, "deck", body.deck_ids)
        added = [d for d in decks if d not in old_decks]
        logger.info(
            "Team %s deck changes: %d added, %d removed",
            team.get("name"), len(added), len([d for d in old_decks if d not in decks]),
        )
        assign_decks(db, [s for s in students if s not in new_members], added)
        data["deck_ids"] = decks
    assign_decks(db, new_members, decks)

    data["updated_at"] = utcnow()
    db["team"].update_one({"_id": team["_id"]}, {"$set": data})
    return populate_team(db, db["team"].find_one({"_id": team["_id"]}))


@app.delete("/api/classes/{class_id}")
def delete_class(class_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    require_role(current, ["teacher", "admin"])
    team = load_or_404(db, "team", oid(class_id), "Team")
    ensure(is_team_owner(current, team), "Not authorized to delete this team")
    db["user"].update_many({"class_ids": class_id}, {"$pull": {"class_ids": class_id}})
    db["assignment"].delete_many({"class_id": class_id})
    db["team"].delete_one({"_id": team["_id"]})
    logger.info("Team %s deleted by %s", team.get("name"), current.get("username"))
    return {"message": "Team deleted successfully"}


@app.post("/api/classes/{class_id}/students")
def add_student(class_id: str, body: AddStudentRequest, current=Depends(get_current_user), db=Depends(get_db)):
    team = load_or_404(db, "team", oid(class_id), "Class")
    ensure(is_team_owner(current, team), "Not authorized to modify this team")
    student = db["user"].find_one({"email": body.email.lower()})
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    student_id = uid(student)
    if student_id in (team.get("student_ids") or []):
        raise HTTPException(status_code=400, detail="Student already in class")
    check_class_size(db, len(team.get("student_ids") or []) + 1)
    db["team"].update_one({"_id": team["_id"]}, {"$addToSet": {"student_ids": student_id}})
    db["user"].update_one({"_id": student["_id"]}, {"$addToSet": {"class_ids": class_id}})
    assign_decks(db, [student_id], team.get("deck_ids") or [])
    return populate_team(db, db["team"].find_one({"_id": team["_id"]}))


@app.delete("/api/classes/{class_id}/students/{student_id}")
def remove_student(class_id: str, student_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    team = db["team"].find_one({"_id": oid(class_id)})
    student = db["user"].find_one({"_id": oid(student_id)})
    if not team or not student:
        raise HTTPException(status_code=404, detail="Class or student not found")
    ensure(is_team_owner(current, team), "Not authorized to modify this team")
    db["team"].update_one({"_id": team["_id"]}, {"$pull": {"student_ids": student_id}})
    db["user"].update_one({"_id": student["_id"]}, {"$pull": {"class_ids": class_id}})
    return {"message": "Student removed from class"}


@app.post("/api/classes/{class_id}/decks")
def add_class_decks(class_id: str, body: TeamDecksIn, current=Depends(get_current_user), db=Depends(get_db)):
    team = load_or_404(db, "team", oid(class_id), "Class")
    ensure(is_team_owner(current, team), "Not authorized to modify this team")
    wanted = body.deck_ids + ([body.deck_id] if body.deck_id else [])
    deck_ids = existing_ids(db, "deck", wanted)
    if not deck_ids:
        raise HTTPException(status_code=400, detail="No valid decks given")
    db["team"].update_one({"_id": team["_id"]}, {"$addToSet": {"deck_ids": {"$each": deck_ids}}})
    assign_decks(db, team.get("student_ids") or [], deck_ids)
    return populate_team(db, db["team"].find_one({"_id": team["_id"]}))


@app.delete("/api/classes/{class_id}/decks/{deck_id}")
def remove_class_deck(class_id: str, deck_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    team = load_or_404(db, "team", oid(class_id), "Class")
    ensure(is_team_owner(current, team), "Not authorized to modify this team")
    db["team"].update_one({"_id": team["_id"]}, {"$pull": {"deck_ids": deck_id}})
    return {"message": "Deck removed from class"}


# ----------------------
# Assignment endpoints
# ----------------------
@app.post("/api/classes/{class_id}/assignments", status_code=201)
def create_assignment(class_id: str, body: AssignmentCreate, current=Depends(get_current_user), db=Depends(get_db)):
    require_role(current, ["teacher", "admin"])
    team = load_or_404(db, "team", oid(class_id), "Class")
    ensure(is_team_owner(current, team), "Not your class")
    load_or_404(db, "deck", oid(body.deck_id))
    assignment = Assignment(
        class_id=class_id,
        deck_id=body.deck_id,
        title=body.title,
        due_date=body.due_date,
        points=body.points,
        requirements=body.requirements,
    )
    doc = create_document(db, "assignment", assignment)
    db["team"].update_one(
        {"_id": team["_id"]},
        {"$push": {"assignment_ids": str(doc["_id"])}, "$addToSet": {"deck_ids": body.deck_id}},
    )
    if body.deck_id not in (team.get("deck_ids") or []):
        assign_decks(db, team.get("student_ids") or [], [body.deck_id])
    return assignment_out(db, doc)


@app.get("/api/classes/{class_id}/assignments")
def list_class_assignments(class_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    team = load_or_404(db, "team", oid(class_id), "Class")
    ensure(is_team_member(current, team), "Access denied")
    viewer = None if is_team_owner(current, team) else current
    return [assignment_out(db, a, viewer) for a in db["assignment"].find({"class_id": class_id}).sort("due_date", 1)]


@app.get("/api/assignments")
def my_assignments(current=Depends(get_current_user), db=Depends(get_db)):
    if is_admin(current):
        q = {}
    else:
        user_id = uid(current)
        team_ids = [str(t["_id"]) for t in db["team"].find(
            {"$or": [{"teacher_id": user_id}, {"student_ids": user_id}]}, {"_id": 1}
        )]
        q = {"class_id": {"$in": team_ids}}
    return [assignment_out(db, a, current) for a in db["assignment"].find(q).sort("due_date", 1)]


@app.post("/api/assignments/{assignment_id}/submit")
def submit_assignment(assignment_id: str, body: SubmissionCreate, current=Depends(get_current_user), db=Depends(get_db)):
    assignment = load_or_404(db, "assignment", oid(assignment_id))
    team = load_or_404(db, "team", oid(assignment["class_id"]), "Class")
    student_id = uid(current)
    if student_id not in (team.get("student_ids") or []):
        raise HTTPException(status_code=403, detail="Not enrolled in this class")
    if assignment.get("status") == "archived":
        raise HTTPException(status_code=400, detail="Assignment is archived")
    now = utcnow()
    submission = {
        "student_id": student_id,
        "submitted_at": now,
        "mastery_achieved": body.mastery_achieved,
        "cards_completed": body.cards_completed,
        "grade": mastery.grade_submission(assignment.get("requirements") or {}, body.mastery_achieved, body.cards_completed),
        "feedback": None,
        "late": now > as_utc(assignment["due_date"]),
    }
    # one submission per student; resubmitting replaces the previous one
    submissions = [s for s in assignment.get("submissions") or [] if s.get("student_id") != student_id]
    submissions.append(submission)
    db["assignment"].update_one({"_id": assignment["_id"]}, {"$set": {"submissions": submissions, "updated_at": now}})
    bump_streak(db, current)
    out = to_json(submission)
    out["completed"] = mastery.submission_completed(assignment.get("requirements") or {}, submission)
    return out


def _owned_assignment(db, assignment_id: str, current: dict) -> dict:
    require_role(current, ["teacher", "admin"])
    assignment = load_or_404(db, "assignment", oid(assignment_id))
    team = db["team"].find_one({"_id": oid(assignment["class_id"])})
    ensure(is_team_owner(current, team) if team else is_admin(current), "Not your class")
    return assignment


@app.put("/api/assignments/{assignment_id}")
def update_assignment(assignment_id: str, body: AssignmentUpdate, current=Depends(get_current_user), db=Depends(get_db)):
    assignment = _owned_assignment(db, assignment_id, current)
    data = body.model_dump(exclude_none=True)
    if data:
        data["updated_at"] = utcnow()
        db["assignment"].update_one({"_id": assignment["_id"]}, {"$set": data})
    return assignment_out(db, db["assignment"].find_one({"_id": assignment["_id"]}))


@app.delete("/api/assignments/{assignment_id}")
def delete_assignment(assignment_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    assignment = _owned_assignment(db, assignment_id, current)
    db["team"].update_one({"_id": oid(assignment["class_id"])}, {"$pull": {"assignment_ids": assignment_id}})
    db["assignment"].delete_one({"_id": assignment["_id"]})
    return {"message": "Assignment deleted successfully"}


@app.get("/api/assignments/{assignment_id}/stats")
def assignment_stats(assignment_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    assignment = _owned_assignment(db, assignment_id, current)
    subs = assignment.get("submissions") or []
    requirements = assignment.get("requirements") or {}
    return {
        "total_submissions": len(subs),
        "average_mastery": sum(s.get("mastery_achieved") or 0 for s in subs) / (len(subs) or 1),
        "completed": sum(1 for s in subs if mastery.submission_completed(requirements, s)),
        "passed": sum(1 for s in subs if (s.get("grade") or 0) >= config.MIN_GRADE_TO_PASS),
        "late": sum(1 for s in subs if s.get("late")),
    }


# ----------------------
# Progress endpoints
# ----------------------
def _owned_team(db, class_id: str, current: dict) -> dict:
    require_role(current, ["teacher", "admin"])
    team = load_or_404(db, "team", oid(class_id), "Class")
    ensure(is_team_owner(current, team), "Not your class")
    return team


@app.get("/api/progress/class/{class_id}/student/{student_id}")
def student_class_progress(class_id: str, student_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    team = _owned_team(db, class_id, current)
    if student_id not in (team.get("student_ids") or []):
        raise HTTPException(status_code=404, detail="Student not in class")
    assignments = list(db["assignment"].find({"class_id": class_id}).sort("due_date", 1))
    return student_assignment_progress(assignments, student_id)


@app.get("/api/progress/class/{class_id}")
def class_progress(class_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    team = _owned_team(db, class_id, current)
    assignments = list(db["assignment"].find({"class_id": class_id}).sort("due_date", 1))
    student_ids = team.get("student_ids") or []
    students = {str(s["_id"]): s for s in db["user"].find({"_id": {"$in": oids(student_ids)}})}
    rows = []
    for sid in student_ids:
        progress = student_assignment_progress(assignments, sid)
        student = students.get(sid) or {}
        rows.append({"student": {"id": sid, "username": student.get("username")}, "stats": progress["stats"]})
    return {
        "progress": rows,
        "class_stats": {
            "total_students": len(student_ids),
            "total_assignments": len(assignments),
            "average_completion": (
                sum(r["stats"]["completed_assignments"] for r in rows) / len(rows) if rows else 0
            ),
        },
    }


@app.put("/api/progress/student/{student_id}/assignment/{assignment_id}")
def grade_student(student_id: str, assignment_id: str, body: GradeRequest, current=Depends(get_current_user), db=Depends(get_db)):
    assignment = _owned_assignment(db, assignment_id, current)
    submissions = assignment.get("submissions") or []
    submission = mastery.find_submission(assignment, student_id)
    if submission is None:
        raise HTTPException(status_code=404, detail="Submission not found")
    if body.grade is not None:
        submission["grade"] = body.grade
    if body.feedback is not None:
        submission["feedback"] = body.feedback
    db["assignment"].update_one({"_id": assignment["_id"]}, {"$set": {"submissions": submissions, "updated_at": utcnow()}})
    return to_json(submission)


# ----------------------
# Admin endpoints
# ----------------------
@app.get("/api/admin/stats")
def admin_stats(current=Depends(get_current_user), db=Depends(get_db)):
    require_role(current, ["admin"])
    week_ago = naive_utc(utcnow() - timedelta(days=7))
    active = db["user"].count_documents({"last_studied": {"$gte": week_ago}})
    return {
        "total_users": db["user"].count_documents({}),
        "students": db["user"].count_documents({"role": "student"}),
        "teachers": db["user"].count_documents({"role": "teacher"}),
        "admins": db["user"].count_documents({"role": "admin"}),
        "total_classes": db["team"].count_documents({}),
        "total_decks": db["deck"].count_documents({}),
        "total_cards": db["card"].count_documents({}),
        "total_assignments": db["assignment"].count_documents({}),
        "active_users": active,
        "weekly_active_users": active,
    }


@app.get("/api/admin/users")
def admin_list_users(
    search: Optional[str] = None,
    role: Optional[Role] = None,
    status: Optional[Literal["active", "inactive"]] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current=Depends(get_current_user),
    db=Depends(get_db),
):
    require_role(current, ["admin"])
    q: Dict[str, Any] = {}
    if search:
        pattern = re.escape(search)
        q["$or"] = [
            {"username": {"$regex": pattern, "$options": "i"}},
            {"email": {"$regex": pattern, "$options": "i"}},
        ]
    if role:
        q["role"] = role
    cutoff = naive_utc(utcnow() - timedelta(days=30))
    if status == "active":
        q["last_studied"] = {"$gte": cutoff}
    elif status == "inactive":
        q.setdefault("$and", []).append({"$or": [{"last_studied": None}, {"last_studied": {"$lt": cutoff}}]})
    total = db["user"].count_documents(q)
    users = db["user"].find(q).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return {
        "users": [serialize_doc(u) for u in users],
        "total": total,
        "pages": -(-total // limit),
        "current_page": page,
    }


@app.put("/api/admin/users/{user_id}")
def admin_update_user(user_id: str, body: Dict[str, Any] = Body(...), current=Depends(get_current_user), db=Depends(get_db)):
    require_role(current, ["admin"])
    if not set(body).issubset({"username", "email", "role", "active"}):
        raise HTTPException(status_code=400, detail="Invalid updates")
    try:
        update = AccountUpdate(**body)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid updates")
    target = load_or_404(db, "user", oid(user_id))
    data = update.model_dump(exclude_none=True)
    if "email" in data:
        data["email"] = data["email"].lower()
    check_unique_user(db, data.get("username"), data.get("email"), exclude=target["_id"])
    if data:
        data["updated_at"] = utcnow()
        db["user"].update_one({"_id": target["_id"]}, {"$set": data})
    return serialize_doc(db["user"].find_one({"_id": target["_id"]}))


@app.delete("/api/admin/users/{user_id}")
def admin_delete_user(user_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    require_role(current, ["admin"])
    target = load_or_404(db, "user", oid(user_id))
    if target["_id"] == current["_id"]:
        raise HTTPException(status_code=400, detail="Cannot delete your own account here")
    logger.info("Admin %s deleted user %s and their decks", current.get("username"), target.get("username"))
    delete_user_cascade(db, target, delete_decks=True)
    return {"message": "User deleted successfully"}


@app.get("/api/admin/settings")
def admin_get_settings(current=Depends(get_current_user), db=Depends(get_db)):
    require_role(current, ["admin"])
    return get_settings(db)


@app.put("/api/admin/settings")
def admin_update_settings(body: SettingsUpdate, current=Depends(get_current_user), db=Depends(get_db)):
    require_role(current, ["admin"])
    data = body.model_dump(exclude_none=True)
    if data:
        db["settings"].update_one({"_id": "system"}, {"$set": data}, upsert=True)
        logger.info("System settings changed by %s: %s", current.get("username"), data)
    return get_settings(db)


@app.get("/api/admin/decks/{deck_id}/assignments")
def deck_assignments(deck_id: str, current=Depends(get_current_user), db=Depends(get_db)):
    require_role(current, ["admin"])
    deck = db["deck"].find_one({"_id": oid(deck_id)})
    return {
        "deck": {"id": deck_id, "name": deck.get("name"), "creator_id": deck.get("creator_id")} if deck else None,
        "assigned_users": [brief(u, "username", "email") for u in db["user"].find({"deck_ids": deck_id})],
        "assigned_teams": [brief(t, "name") for t in db["team"].find({"deck_ids": deck_id})],
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
