"""
Database Schemas for the Flashcard Learning API

Each Pydantic model corresponds to a MongoDB collection. The collection name is the lowercase
of the class name (e.g., User -> "user", Team -> "team", UserProgress -> "userprogress").
References between collections are stored as stringified ObjectIds.
"""
from typing import Optional, Literal, List
from pydantic import BaseModel, Field, EmailStr
from datetime import datetime

Role = Literal["student", "teacher", "admin"]
CardType = Literal["text", "multipleChoice", "math"]
AssignmentStatus = Literal["active", "completed", "archived"]


class Preferences(BaseModel):
    theme: Literal["light", "dark"] = "light"
    email_notifications: bool = True


class Profile(BaseModel):
    avatar: Optional[str] = None
    bio: Optional[str] = None
    preferences: Preferences = Field(default_factory=Preferences)


class Achievement(BaseModel):
    title: str
    description: Optional[str] = None
    points: int = 0
    earned_at: datetime = Field(default_factory=datetime.utcnow)


class User(BaseModel):
    username: str = Field(..., description="Unique display name")
    email: EmailStr = Field(..., description="Unique, lowercased email address")
    password_hash: str = Field(..., description="bcrypt password hash")
    role: Role = Field("student", description="User role")
    active: bool = Field(True, description="Disabled accounts cannot log in")
    class_ids: List[str] = Field(default_factory=list, description="Teams the user belongs to")
    deck_ids: List[str] = Field(default_factory=list, description="Decks assigned to the user")
    created_deck_ids: List[str] = Field(default_factory=list, description="Decks created by the user")
    study_streak: int = 0
    last_studied: Optional[datetime] = None
    achievement_points: int = 0
    achievements: List[Achievement] = Field(default_factory=list)
    profile: Profile = Field(default_factory=Profile)


class Deck(BaseModel):
    name: str
    description: Optional[str] = None
    subject: Optional[str] = None
    creator_id: str = Field(..., description="Creator user id")
    card_ids: List[str] = Field(default_factory=list)


class CardImage(BaseModel):
    url: str
    filename: str


class Card(BaseModel):
    deck_id: str = Field(..., description="Parent deck id")
    question: str
    answer: str
    type: CardType = "text"
    options: List[str] = Field(default_factory=list, description="Choices for multipleChoice cards")
    question_image: Optional[CardImage] = None
    creator_id: Optional[str] = None


class TeamSettings(BaseModel):
    allow_student_discussions: bool = True
    automatic_grading: bool = True


class Team(BaseModel):
    name: str
    description: Optional[str] = None
    teacher_id: Optional[str] = Field(None, description="Teacher user id; unset when the teacher is deleted")
    student_ids: List[str] = Field(default_factory=list)
    deck_ids: List[str] = Field(default_factory=list)
    assignment_ids: List[str] = Field(default_factory=list)
    join_code: str
    privacy: Literal["private", "public"] = "private"
    settings: TeamSettings = Field(default_factory=TeamSettings)


class Requirements(BaseModel):
    minimum_mastery: float = Field(80, ge=0, le=100)
    minimum_cards: int = Field(0, ge=0)


class Submission(BaseModel):
    student_id: str
    submitted_at: datetime
    mastery_achieved: float = 0
    cards_completed: int = 0
    grade: Optional[float] = None
    feedback: Optional[str] = None
    late: bool = False


class Assignment(BaseModel):
    class_id: str
    deck_id: str
    title: Optional[str] = None
    due_date: datetime
    points: int = 100
    requirements: Requirements = Field(default_factory=Requirements)
    submissions: List[Submission] = Field(default_factory=list)
    status: AssignmentStatus = "active"


class StudySession(BaseModel):
    date: datetime
    cards_studied: int = 0
    mastery_level: float = 0
    time_spent: int = 0


class CardProgress(BaseModel):
    card_id: str
    last_rating: int
    recent_ratings: List[int] = Field(default_factory=list, description="Up to the last 3 ratings")
    mastery_level: float = 0
    mastered: bool = False
    last_studied: datetime
    next_review: Optional[datetime] = None


class ProgressStats(BaseModel):
    mastery_percentage: float = 0
    average_rating: float = 0
    last_studied: Optional[datetime] = None
    study_sessions: List[StudySession] = Field(default_factory=list)


class UserProgress(BaseModel):
    user_id: str
    deck_id: str
    stats: ProgressStats = Field(default_factory=ProgressStats)
    card_progress: List[CardProgress] = Field(default_factory=list)


class SystemSettings(BaseModel):
    allow_new_registrations: bool = True
    maintenance_mode: bool = False
    max_class_size: int = Field(30, ge=1)
    max_decks_per_user: int = Field(50, ge=1)
    max_cards_per_deck: int = Field(100, ge=1)
