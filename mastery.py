"""
Study statistics: turning 1-5 self ratings into mastery figures.

All functions work on plain documents (dicts as stored in MongoDB) and never
touch the database, so handlers load, mutate and save around them.
"""
import math
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from schemas import UserProgress
from utils import as_utc

RATING_POINTS = {5: 1.0, 4: 0.75, 3: 0.5, 2: 0.25, 1: 0.0}
MASTERED_RATING = 4
RECENT_RATINGS = 3
MAX_STUDY_SESSIONS = 30


def round_half_up(value: float, digits: int = 0) -> float:
    # halves go up, never to the nearest even digit
    scale = 10 ** digits
    return math.floor(value * scale + 0.5) / scale


def rating_points(rating: Any) -> float:
    return RATING_POINTS.get(rating, 0.0)


def is_valid_rating(rating: Any) -> bool:
    return isinstance(rating, int) and not isinstance(rating, bool) and 1 <= rating <= 5


def card_is_mastered(recent_ratings: List[int]) -> bool:
    recent = recent_ratings[-RECENT_RATINGS:]
    return len(recent) >= RECENT_RATINGS and all(r >= MASTERED_RATING for r in recent)


def next_review_date(rating: int, now: datetime) -> datetime:
    # 1, 2, 4, 8 or 16 days
    return now + timedelta(days=2 ** (max(1, min(5, rating)) - 1))


def deck_mastery(card_progress: Iterable[Dict[str, Any]], total_cards: int) -> Dict[str, float]:
    """Mastery percentage and average rating from each card's latest rating.

    Unrated cards count as 0 towards both figures.
    """
    latest = [cp.get("last_rating") for cp in card_progress if cp.get("last_rating")]
    if total_cards <= 0:
        return {"mastery_percentage": 0, "average_rating": 0}
    points = sum(rating_points(r) for r in latest)
    mastery = min(100, int(round_half_up(points / total_cards * 100)))
    average = round_half_up(sum(latest) / total_cards, 1)
    return {"mastery_percentage": mastery, "average_rating": average}


def empty_progress(user_id: str, deck_id: str) -> Dict[str, Any]:
    return UserProgress(user_id=user_id, deck_id=deck_id).model_dump()


def apply_card_rating(progress: Dict[str, Any], card_id: str, rating: int, now: datetime) -> Dict[str, Any]:
    """Record a rating on the card's progress entry and return that entry."""
    entries = progress.setdefault("card_progress", [])
    entry = next((cp for cp in entries if cp.get("card_id") == card_id), None)
    if entry is None:
        entry = {"card_id": card_id, "recent_ratings": []}
        entries.append(entry)
    recent = (entry.get("recent_ratings") or []) + [rating]
    entry["recent_ratings"] = recent[-RECENT_RATINGS:]
    entry["last_rating"] = rating
    entry["mastery_level"] = rating_points(rating) * 100
    entry["mastered"] = card_is_mastered(entry["recent_ratings"])
    entry["last_studied"] = now
    entry["next_review"] = next_review_date(rating, now)
    return entry


def log_daily_mastery(
    stats: Dict[str, Any],
    mastery_percentage: float,
    average_rating: float,
    cards_studied: int,
    now: datetime,
    time_spent: int = 0,
) -> Dict[str, Any]:
    """Fold a study session into the per-day log, keeping at most 30 days."""
    sessions = [s for s in (stats.get("study_sessions") or []) if s and s.get("date")]
    today = now.date()
    existing = next((s for s in sessions if as_utc(s["date"]).date() == today), None)
    if existing is not None:
        existing["mastery_level"] = mastery_percentage
        existing["date"] = now
        existing["time_spent"] = (existing.get("time_spent") or 0) + time_spent
    else:
        sessions.append({
            "date": now,
            "mastery_level": mastery_percentage,
            "cards_studied": cards_studied,
            "time_spent": time_spent,
        })

    if len(sessions) > MAX_STUDY_SESSIONS:
        sessions.sort(key=lambda s: as_utc(s["date"]), reverse=True)
        sessions = sessions[:MAX_STUDY_SESSIONS]

    stats["study_sessions"] = sessions
    stats["mastery_percentage"] = mastery_percentage
    stats["average_rating"] = average_rating
    stats["last_studied"] = now
    return stats


def update_study_streak(user: Dict[str, Any], now: datetime) -> int:
    last = as_utc(user.get("last_studied"))
    streak = user.get("study_streak") or 0
    if last is not None and last.date() == now.date():
        return streak
    if last is not None and last.date() == (now - timedelta(days=1)).date():
        streak += 1
    else:
        streak = 1
    user["study_streak"] = streak
    user["last_studied"] = now
    return streak


def grade_submission(requirements: Dict[str, Any], mastery_achieved: float, cards_completed: int) -> float:
    minimum_mastery = requirements.get("minimum_mastery") or 0
    minimum_cards = requirements.get("minimum_cards") or 0
    mastery_score = mastery_achieved / minimum_mastery * 100 if minimum_mastery > 0 else 100
    cards_score = cards_completed / minimum_cards * 100 if minimum_cards > 0 else 100
    return round(min(100, (mastery_score + cards_score) / 2), 2)


def submission_completed(requirements: Dict[str, Any], submission: Optional[Dict[str, Any]]) -> bool:
    if not submission:
        return False
    return (
        (submission.get("mastery_achieved") or 0) >= (requirements.get("minimum_mastery") or 0)
        and (submission.get("cards_completed") or 0) >= (requirements.get("minimum_cards") or 0)
    )


def find_submission(assignment: Dict[str, Any], student_id: str) -> Optional[Dict[str, Any]]:
    return next((s for s in assignment.get("submissions") or [] if s.get("student_id") == student_id), None)


def _latest(dates: Iterable[Optional[datetime]]) -> Optional[datetime]:
    dates = [as_utc(d) for d in dates if d]
    return max(dates) if dates else None


def summarize_progress(entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Average mastery and last study date over a set of UserProgress documents."""
    values = [(e.get("stats") or {}).get("mastery_percentage") or 0 for e in entries]
    return {
        "average_mastery": sum(values) / len(values) if values else 0,
        "studied_decks": len(entries),
        "last_studied": _latest((e.get("stats") or {}).get("last_studied") for e in entries),
    }


def user_progress_overview(user_id: str, deck_ids: List[str], entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Averages over every accessible deck (unstudied = 0) and over studied decks only."""
    mastery_by_deck = {e["deck_id"]: (e.get("stats") or {}).get("mastery_percentage") or 0 for e in entries}
    total = sum(mastery_by_deck.get(d, 0) for d in deck_ids)
    summary = summarize_progress(entries)
    studied = [e for e in entries if (e.get("stats") or {}).get("last_studied")]
    studied.sort(key=lambda e: as_utc(e["stats"]["last_studied"]), reverse=True)
    return {
        "user_id": user_id,
        "total_decks": len(deck_ids),
        "studied_decks": len(entries),
        "average_mastery": total / len(deck_ids) if deck_ids else 0,
        "studied_decks_average": summary["average_mastery"],
        "recently_studied": [
            {
                "deck_id": e["deck_id"],
                "mastery_percentage": e["stats"].get("mastery_percentage") or 0,
                "last_studied": e["stats"]["last_studied"],
            }
            for e in studied[:5]
        ],
        "last_studied": summary["last_studied"],
    }


def class_stats(student_ids: List[str], deck_ids: List[str], entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Per-student and class-wide mastery for a team.

    ``entries`` are the UserProgress documents of the team's students on the
    team's decks. Class average only covers students with any activity.
    """
    by_student: Dict[str, List[Dict[str, Any]]] = {sid: [] for sid in student_ids}
    for e in entries:
        if e.get("user_id") in by_student and e.get("deck_id") in deck_ids:
            by_student[e["user_id"]].append(e)

    details = []
    for sid in student_ids:
        progress = by_student[sid]
        summary = summarize_progress(progress)
        details.append({
            "student_id": sid,
            "average_mastery": summary["average_mastery"],
            "completed_decks": len(progress),
            "total_decks": len(deck_ids),
            "last_studied": summary["last_studied"],
            "mastery_by_deck": {
                p["deck_id"]: (p.get("stats") or {}).get("mastery_percentage") or 0 for p in progress
            },
        })

    active = [d for d in details if d["completed_decks"] > 0]
    return {
        "average_mastery": sum(d["average_mastery"] for d in active) / len(active) if active else 0,
        "active_student_count": len(active),
        "deck_count": len(deck_ids),
        "total_students": len(student_ids),
        "student_details": details,
    }
