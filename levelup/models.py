"""
LevelUp Data Models

Enums mirror the string values stored in the database. Dataclasses are the
derived views handed back by the store modules.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Optional


class RecordStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    DEPRECATED = "deprecated"
    ARCHIVED = "archived"


class SkillType(str, Enum):
    TECHNICAL = "technical"
    SOFT = "soft"
    DOMAIN = "domain"
    TOOL = "tool"
    CERTIFICATION = "certification"
    LANGUAGE = "language"
    PROCESS = "process"
    OTHER = "other"


class RelationType(str, Enum):
    RELATED = "related"
    PREREQUISITE = "prerequisite"
    BROADER = "broader"
    NARROWER = "narrower"
    SYNONYM = "synonym"
    COMPLEMENTS = "complements"


class JobType(str, Enum):
    FULL_TIME = "full_time"
    PART_TIME = "part_time"
    CONTRACT = "contract"
    INTERNSHIP = "internship"
    TEMPORARY = "temporary"
    OTHER = "other"


class JobStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CLOSED = "closed"
    ARCHIVED = "archived"


class GigStatus(str, Enum):
    DRAFT = "draft"
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"
    ARCHIVED = "archived"


class ApplicationStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    WITHDRAWN = "withdrawn"
    REJECTED = "rejected"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class BadgeRarity(str, Enum):
    COMMON = "common"
    UNCOMMON = "uncommon"
    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"


class FeedVisibility(str, Enum):
    PRIVATE = "private"
    TEAM = "team"
    ORG = "org"
    PUBLIC = "public"


class FeedEventType(str, Enum):
    PROFILE_UPDATED = "profile_updated"
    SKILL_ADDED = "skill_added"
    SKILL_LEVELED_UP = "skill_leveled_up"
    SKILL_VERIFIED = "skill_verified"
    ENDORSEMENT_RECEIVED = "endorsement_received"
    BADGE_EARNED = "badge_earned"
    GIG_APPLIED = "gig_applied"
    GIG_ACCEPTED = "gig_accepted"
    GIG_COMPLETED = "gig_completed"
    JOB_APPLIED = "job_applied"
    NEW_JOB_POSTED = "new_job_posted"
    LEVEL_UP = "level_up"
    COINS_EARNED = "coins_earned"
    COURSE_COMPLETED = "course_completed"
    ADMIN_ADJUSTMENT = "admin_adjustment"


class XpSourceType(str, Enum):
    GIG = "gig"
    JOB = "job"
    JOB_APPLICATION = "job_application"
    LEARNING = "learning"
    ONBOARDING = "onboarding"
    BADGE = "badge"
    ENDORSEMENT = "endorsement"
    REFERRAL = "referral"
    QUEST = "quest"
    ADMIN = "admin"
    ADMIN_ADJUSTMENT = "admin_adjustment"
    IMPORT = "import"
    OTHER = "other"


class ReferralStatus(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"
    INTERVIEWING = "interviewing"
    HIRED = "hired"
    REJECTED = "rejected"


class PayoutStatus(str, Enum):
    PENDING_MATURITY = "pending_maturity"
    APPROVED = "approved"
    PAID = "paid"
    REJECTED = "rejected"


@dataclass
class RewardResult:
    """Outcome of a single ledger write."""
    user_id: str
    xp_awarded: int
    coins_awarded: int
    new_xp: int
    new_coins: int
    old_level: int
    new_level: int

    @property
    def leveled_up(self) -> bool:
        return self.new_level > self.old_level

    def to_dict(self) -> dict:
        return {**asdict(self), "leveled_up": self.leveled_up}


@dataclass
class MatchedSkill:
    skill_id: str
    skill_name: str
    required_level: int
    user_level: Optional[int]
    is_mandatory: bool
    status: str  # match | partial | missing


@dataclass
class MatchedOpportunity:
    id: str
    type: str  # job | gig
    title: str
    description: Optional[str]
    location: Optional[str]
    department: Optional[str]
    created_at: str
    match_score: int = 0
    total_points: int = 0
    max_points: int = 0
    job_type: Optional[str] = None
    xp_reward: Optional[int] = None
    coin_reward: Optional[int] = None
    commitment_hours: Optional[float] = None
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    matched_skills: List[MatchedSkill] = field(default_factory=list)
    missing_skills: List[MatchedSkill] = field(default_factory=list)
    gap_skills: List[MatchedSkill] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)
