"""
LEVELUP - Internal Talent Mobility Portal

Employees build a skills profile, earn XP and coins for applying to jobs,
joining gigs, finishing courses and referring candidates, and get matched
to open opportunities by skill fit.

Components:
- gamification.py: XP curve, levels and badges
- rewards.py: XP/coin ledger and manual admin adjustments
- matching.py: skill-fit scoring and mentor lookup
- applications.py / referrals.py / learning.py / onboarding.py: user flows
- admin_tables.py: generic CRUD, search and CSV export for admin screens
- auth.py: email/password login with argon2id hashes and JWT sessions
- witness.py: hash-chained audit trail for admin mutations
- db.py: SQLite schema and connection helper
- api_server.py: FastAPI server
"""

__version__ = "0.3.0"

# Lazy imports - only import what's needed when used
def __getattr__(name):
    if name == "calculate_level":
        from .gamification import calculate_level
        return calculate_level
    elif name == "level_summary":
        from .gamification import level_summary
        return level_summary
    elif name == "RewardLedger":
        from .rewards import RewardLedger
        return RewardLedger
    elif name == "RewardResult":
        from .models import RewardResult
        return RewardResult
    elif name == "MatchedOpportunity":
        from .models import MatchedOpportunity
        return MatchedOpportunity
    elif name == "get_matched_opportunities":
        from .matching import get_matched_opportunities
        return get_matched_opportunities
    elif name == "UserAuth":
        from .auth import UserAuth
        return UserAuth
    elif name == "AuditChain":
        from .witness import AuditChain
        return AuditChain
    elif name == "init_database":
        from .db import init_database
        return init_database
    elif name == "LevelUpError":
        from .errors import LevelUpError
        return LevelUpError
    raise AttributeError(f"module 'levelup' has no attribute {name!r}")
