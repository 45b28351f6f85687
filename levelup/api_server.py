"""
LevelUp API Server

FastAPI backend for the internal-mobility portal:
- Email/password accounts with JWT sessions (auth.py)
- Jobs, gigs, applications and skill matching
- XP / coins ledger with level progression
- Refer-a-friend links and the public careers page
- Courses, onboarding, social feed and home layout
- Generic admin table screens (Jinja2 + JSON + CSV)
- Audit chain for admin mutations, SQLite rate limiting

Run: uvicorn levelup.api_server:app --reload
"""
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel, Field

from levelup import (
    admin_tables,
    applications,
    content,
    learning,
    matching,
    onboarding,
    referrals,
    repository,
)
from levelup.auth import UserAuth
from levelup.config import (
    LEVELUP_VERSION,
    LOG_LEVEL,
    PUBLIC_BASE_URL,
    get_cors_origins,
    get_db_path,
)
from levelup.db import init_database
from levelup.errors import ConflictError, LevelUpError, NotFoundError, ValidationError
from levelup.gamification import level_summary
from levelup.observability import configure_observability, instrument_app
from levelup.rate_limit import RateLimiter
from levelup.rewards import RewardLedger
from levelup.witness import AuditChain

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# =============================================================================
# SETUP
# =============================================================================

DB_PATH = get_db_path()
init_database(DB_PATH)

TEMPLATE_DIR = Path(__file__).parent / "templates"

_auth = UserAuth(db_path=DB_PATH)
_audit = AuditChain(db_path=DB_PATH)
_rate = RateLimiter(db_path=DB_PATH)
_ledger = RewardLedger(db_path=DB_PATH, audit=_audit)

templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class RegisterRequest(BaseModel):
    email: str = Field(..., min_length=3, max_length=320)
    password: str = Field(..., min_length=8, max_length=256)
    display_name: str = Field("", max_length=200)

class LoginRequest(BaseModel):
    email: str
    password: str

class ReferralRequest(BaseModel):
    candidate_name: str = Field(..., min_length=1, max_length=200)
    candidate_email: Optional[str] = None
    candidate_phone: Optional[str] = None
    cv_url: Optional[str] = None
    ref: Optional[str] = None

class OnboardingSkill(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    level: int = 1

class OnboardingRequest(BaseModel):
    display_name: Optional[str] = None
    headline: Optional[str] = None
    bio: Optional[str] = None
    skills: List[OnboardingSkill] = []

class CreatePostRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=5000)
    post_type: str = "tip"
    image_url: Optional[str] = None

class CommentRequest(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)

class UpsertRowsRequest(BaseModel):
    rows: List[Dict[str, Any]]

class DeleteRowRequest(BaseModel):
    key: Union[str, int, Dict[str, Any]]

class StatusUpdate(BaseModel):
    status: str

class RewardUpdateRequest(BaseModel):
    amount: int
    kind: Literal["xp", "coins"]
    reason: str = Field("", max_length=500)

class CourseRequest(BaseModel):
    title: Optional[str] = None
    provider: Optional[str] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    duration_hours: Optional[float] = None
    skill_id: Optional[str] = None
    min_level_grant: Optional[int] = Field(None, ge=1, le=5)
    xp_reward: Optional[int] = Field(None, ge=0)

class WidgetItem(BaseModel):
    key: str
    label: Optional[str] = None
    is_visible: bool = True
    order_index: int = 0

class LayoutRequest(BaseModel):
    widgets: List[WidgetItem]

class QuestUpdate(BaseModel):
    xp_reward: Optional[int] = None
    coin_reward: Optional[int] = None
    is_active: Optional[bool] = None

class CreateJobRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=300)
    code: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    department: Optional[str] = None
    internal_xp: Optional[int] = None
    referral_coins: Optional[int] = None
    recruiter_email: Optional[str] = None
    is_hot: bool = False
    tags: List[str] = []

class ParsedJobSkill(BaseModel):
    name: str
    level: int = 1
    is_mandatory: bool = False

class ImportJobRequest(BaseModel):
    title: str
    description_summary: Optional[str] = None
    department: Optional[str] = None
    skills: List[ParsedJobSkill] = []

# =============================================================================
# AUTH DEPENDENCY
# =============================================================================

async def get_current_user(authorization: Optional[str] = Header(None)) -> dict:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization header")
    token = authorization[7:] if authorization.startswith("Bearer ") else authorization
    payload = _auth.verify_jwt(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user = _auth.get_user(payload["sub"])
    if not user:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user


async def require_admin(user: dict = Depends(get_current_user)) -> dict:
    if not _auth.is_admin(user):
        raise HTTPException(status_code=403, detail="Admin access required")
    return user

# =============================================================================
# APP
# =============================================================================

configure_observability()

app = FastAPI(
    title="LevelUp -- Internal Mobility Portal",
    description="Jobs, gigs, skills and rewards for employees",
    version=LEVELUP_VERSION,
    docs_url="/docs",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Requested-With"],
)

instrument_app(app)

_ERROR_STATUS = (
    (NotFoundError, 404),
    (ConflictError, 409),
    (ValidationError, 400),
)


@app.exception_handler(LevelUpError)
async def levelup_error_handler(request: Request, exc: LevelUpError):
    for exc_type, code in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            return JSONResponse(status_code=code, content={"detail": str(exc)})
    logger.error("unmapped domain error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"detail": str(exc)})


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    ip = request.client.host if request.client else "unknown"
    check = _rate.check_ip(ip)
    if not check["allowed"]:
        return JSONResponse(
            status_code=429,
            content={"detail": "Rate limit exceeded"},
            headers={"Retry-After": str(check["retry_after"])},
        )
    _rate.record(ip, "request")
    return await call_next(request)

# =============================================================================
# AUTH ENDPOINTS
# =============================================================================
# Plain def: argon2id hashing runs in the threadpool, off the event loop.

@app.post("/auth/register", status_code=201)
def register(req: RegisterRequest):
    user = _auth.register(req.email, req.password, req.display_name)
    return {"user": user}


@app.post("/auth/login")
def login(req: LoginRequest):
    result = _auth.authenticate(req.email, req.password)
    if not result.success:
        raise HTTPException(status_code=401, detail=result.error)
    return {"token": result.token, "expires_at": result.expires_at, "user": result.user}

# =============================================================================
# ME / LEVELS / WALLET
# =============================================================================

@app.get("/me")
async def me(user: dict = Depends(get_current_user)):
    return {**user, "level": level_summary(user["current_xp"]),
            "is_admin": _auth.is_admin(user)}


@app.get("/me/level")
async def my_level(user: dict = Depends(get_current_user)):
    return level_summary(user["current_xp"])


@app.get("/me/wallet")
async def my_wallet(user: dict = Depends(get_current_user)):
    return _ledger.wallet(user["id"])


@app.get("/me/applications")
async def my_applications(user: dict = Depends(get_current_user)):
    return applications.user_applications(DB_PATH, user["id"])


@app.get("/levels/{xp}")
async def levels(xp: int):
    return level_summary(xp)

# =============================================================================
# OPPORTUNITIES
# =============================================================================

@app.get("/jobs")
async def list_jobs(user: dict = Depends(get_current_user)):
    return repository.get_jobs(DB_PATH, status="published")


@app.get("/jobs/{job_id}")
async def get_job(job_id: str, user: dict = Depends(get_current_user)):
    return repository.get_job(DB_PATH, job_id)


@app.post("/jobs/{job_id}/apply")
async def apply_job(job_id: str, user: dict = Depends(get_current_user)):
    return applications.apply_for_job(DB_PATH, user["id"], job_id)


@app.get("/jobs/{job_id}/referral-link")
async def referral_link(job_id: str, user: dict = Depends(get_current_user)):
    repository.get_job(DB_PATH, job_id)
    return {"url": referrals.build_referral_link(PUBLIC_BASE_URL, job_id, user["id"])}


@app.get("/gigs")
async def list_gigs(user: dict = Depends(get_current_user)):
    return repository.get_gigs(DB_PATH)


@app.post("/gigs/{gig_id}/apply")
async def apply_gig(gig_id: str, user: dict = Depends(get_current_user)):
    return applications.apply_for_gig(DB_PATH, user["id"], gig_id)


@app.get("/opportunities")
async def opportunities(user: dict = Depends(get_current_user)):
    return repository.get_all_opportunities(DB_PATH)


@app.get("/matching")
async def matched_opportunities(user: dict = Depends(get_current_user)):
    result = matching.get_matched_opportunities(DB_PATH, user["id"])
    return {"jobs": [o.to_dict() for o in result["jobs"]],
            "gigs": [o.to_dict() for o in result["gigs"]]}


@app.get("/mentors")
async def mentors(skill_id: str, user: dict = Depends(get_current_user)):
    return matching.find_mentors(DB_PATH, skill_id, user["id"])

# =============================================================================
# PUBLIC CAREERS PAGE
# =============================================================================

@app.get("/careers/{job_id}")
async def careers_job(job_id: str):
    job = repository.get_job(DB_PATH, job_id)
    if job["status"] != "published":
        raise HTTPException(status_code=404, detail="Job not found")
    return {k: job[k] for k in ("id", "title", "description", "location", "department",
                                "job_type", "tags", "skills")}


@app.post("/careers/{job_id}", status_code=201)
async def careers_refer(job_id: str, req: ReferralRequest, request: Request,
                        ref: Optional[str] = None):
    ip = request.client.host if request.client else "unknown"
    rl = _rate.check_referral(ip)
    if not rl["allowed"]:
        raise HTTPException(status_code=429, detail="Referral rate limit exceeded",
                            headers={"Retry-After": str(rl["retry_after"])})
    result = referrals.submit_referral(
        DB_PATH, job_id, ref or req.ref, req.candidate_name,
        candidate_email=req.candidate_email, candidate_phone=req.candidate_phone,
        cv_url=req.cv_url,
    )
    _rate.record(ip, "referral")
    return result

# =============================================================================
# LEARNING / ONBOARDING
# =============================================================================

@app.get("/courses")
async def courses(user: dict = Depends(get_current_user)):
    return learning.list_courses(DB_PATH)


@app.post("/courses/{course_id}/complete")
async def complete_course(course_id: str, user: dict = Depends(get_current_user)):
    return learning.complete_course(DB_PATH, user["id"], course_id)


@app.post("/onboarding")
async def complete_onboarding(req: OnboardingRequest, user: dict = Depends(get_current_user)):
    return onboarding.complete_onboarding(DB_PATH, user["id"], req.model_dump())

# =============================================================================
# FEED / HOME / QUESTS
# =============================================================================

@app.get("/feed")
async def feed(post_type: Optional[str] = None, user: dict = Depends(get_current_user)):
    return content.list_posts(DB_PATH, post_type=post_type)


@app.post("/feed", status_code=201)
async def create_post(req: CreatePostRequest, user: dict = Depends(get_current_user)):
    rl = _rate.check_post(user["id"])
    if not rl["allowed"]:
        raise HTTPException(status_code=429, detail="Post rate limit exceeded",
                            headers={"Retry-After": str(rl["retry_after"])})
    post = content.create_post(DB_PATH, user["id"], req.content, req.post_type, req.image_url)
    _rate.record(user["id"], "post")
    return post


@app.get("/feed/{post_id}/comments")
async def post_comments(post_id: str, user: dict = Depends(get_current_user)):
    return content.list_comments(DB_PATH, post_id)


@app.post("/feed/{post_id}/comments", status_code=201)
async def comment(post_id: str, req: CommentRequest, user: dict = Depends(get_current_user)):
    return content.add_comment(DB_PATH, post_id, user["id"], req.content)


@app.post("/feed/{post_id}/like")
async def like(post_id: str, user: dict = Depends(get_current_user)):
    return {"likes_count": content.like_post(DB_PATH, post_id)}


@app.get("/home")
async def home(user: dict = Depends(get_current_user)):
    return content.get_home_data(DB_PATH)


@app.get("/quests")
async def quests(user: dict = Depends(get_current_user)):
    return [q for q in content.list_quests(DB_PATH) if q["is_active"]]

# =============================================================================
# ADMIN: GENERIC TABLES
# =============================================================================

@app.get("/admin/tables")
async def admin_tables_index(admin: dict = Depends(require_admin)):
    return [{"name": t, "label": admin_tables.TABLE_LABELS[t]} for t in admin_tables.ADMIN_TABLES]


@app.get("/admin/tables/{table}")
async def admin_table_data(table: str, page: int = 1, limit: int = 25, search: str = "",
                           admin: dict = Depends(require_admin)):
    result = admin_tables.fetch_table(DB_PATH, table, page=page, limit=limit, search=search)
    result["columns"] = admin_tables.display_columns(table, result["data"])
    return result


@app.get("/admin/tables/{table}/view", response_class=HTMLResponse)
async def admin_table_view(request: Request, table: str, page: int = 1, limit: int = 25,
                           search: str = "", admin: dict = Depends(require_admin)):
    result = admin_tables.fetch_table(DB_PATH, table, page=page, limit=limit, search=search)
    pages = max(1, -(-result["count"] // result["limit"]))
    return templates.TemplateResponse(request, "admin/table.html", {
        "table": table,
        "label": admin_tables.TABLE_LABELS[table],
        "tables": [(t, admin_tables.TABLE_LABELS[t]) for t in admin_tables.ADMIN_TABLES],
        "columns": admin_tables.display_columns(table, result["data"]),
        "rows": result["data"],
        "count": result["count"],
        "page": result["page"],
        "pages": pages,
        "limit": result["limit"],
        "search": search,
        "searchable": table in admin_tables.TABLE_SEARCH_COLUMNS,
        "error": result["error"],
    })


@app.get("/admin/tables/{table}/export.csv", response_class=PlainTextResponse)
async def admin_table_export(table: str, admin: dict = Depends(require_admin)):
    body = admin_tables.export_csv(DB_PATH, table)
    return PlainTextResponse(
        body, media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{table}.csv"'},
    )


@app.post("/admin/tables/{table}/rows")
async def admin_table_upsert(table: str, req: UpsertRowsRequest, admin: dict = Depends(require_admin)):
    result = admin_tables.upsert_rows(DB_PATH, table, req.rows)
    _audit.record("table_upsert", admin["id"],
                  {"rows": len(req.rows), "success": result["success"], "errors": result["errors"]},
                  target_table=table)
    return result


@app.post("/admin/tables/{table}/delete")
async def admin_table_delete(table: str, req: DeleteRowRequest, admin: dict = Depends(require_admin)):
    result = admin_tables.delete_row(DB_PATH, table, req.key)
    if result["success"]:
        target = req.key if not isinstance(req.key, dict) else None
        _audit.record("table_delete", admin["id"], {"key": req.key},
                      target_table=table, target_id=target)
    return result

# =============================================================================
# ADMIN: APPLICATIONS / REFERRALS / PAYOUTS
# =============================================================================

@app.get("/admin/applications")
async def admin_applications(admin: dict = Depends(require_admin)):
    return applications.list_internal_applications(DB_PATH)


@app.patch("/admin/applications/{application_id}")
async def admin_application_status(application_id: str, req: StatusUpdate,
                                   admin: dict = Depends(require_admin)):
    return applications.update_application_status(DB_PATH, application_id, req.status)


@app.post("/admin/gig-participants/{participant_id}/complete")
async def admin_complete_gig(participant_id: str, admin: dict = Depends(require_admin)):
    return applications.complete_gig(DB_PATH, participant_id)


@app.get("/admin/referrals")
async def admin_referrals(admin: dict = Depends(require_admin)):
    return referrals.list_referrals(DB_PATH)


@app.patch("/admin/referrals/{referral_id}")
async def admin_referral_status(referral_id: str, req: StatusUpdate,
                                admin: dict = Depends(require_admin)):
    return referrals.update_referral_status(DB_PATH, referral_id, req.status)


@app.post("/admin/referrals/{referral_id}/approve")
async def admin_referral_approve(referral_id: str, admin: dict = Depends(require_admin)):
    return referrals.approve_referral_success(DB_PATH, referral_id, admin["id"], audit=_audit)


@app.post("/admin/payouts/mature")
async def admin_mature_payouts(admin: dict = Depends(require_admin)):
    return referrals.mature_payouts(DB_PATH, audit=_audit)

# =============================================================================
# ADMIN: USERS
# =============================================================================

@app.get("/admin/users")
async def admin_users(admin: dict = Depends(require_admin)):
    return repository.get_users_list(DB_PATH)


@app.get("/admin/users/{user_id}")
async def admin_user_profile(user_id: str, admin: dict = Depends(require_admin)):
    return repository.get_user_full_profile(DB_PATH, user_id)


@app.post("/admin/users/{user_id}/reward")
async def admin_user_reward(user_id: str, req: RewardUpdateRequest,
                            admin: dict = Depends(require_admin)):
    return _ledger.manual_reward_update(user_id, req.amount, req.kind, req.reason, admin["id"])

# =============================================================================
# ADMIN: CONTENT
# =============================================================================

@app.get("/admin/courses")
async def admin_courses(admin: dict = Depends(require_admin)):
    return learning.list_courses(DB_PATH)


@app.post("/admin/courses", status_code=201)
async def admin_create_course(req: CourseRequest, admin: dict = Depends(require_admin)):
    return learning.create_course(DB_PATH, req.model_dump())


@app.patch("/admin/courses/{course_id}")
async def admin_update_course(course_id: str, req: CourseRequest, admin: dict = Depends(require_admin)):
    return learning.update_course(DB_PATH, course_id, req.model_dump(exclude_unset=True))


@app.delete("/admin/courses/{course_id}")
async def admin_delete_course(course_id: str, admin: dict = Depends(require_admin)):
    learning.delete_course(DB_PATH, course_id)
    return {"success": True}


@app.get("/admin/layout")
async def admin_layout(admin: dict = Depends(require_admin)):
    return content.get_widgets(DB_PATH)


@app.put("/admin/layout")
async def admin_update_layout(req: LayoutRequest, admin: dict = Depends(require_admin)):
    return content.update_layout(DB_PATH, [w.model_dump() for w in req.widgets])


@app.get("/admin/quests")
async def admin_quests(admin: dict = Depends(require_admin)):
    return content.list_quests(DB_PATH)


@app.patch("/admin/quests/{quest_id}")
async def admin_update_quest(quest_id: str, req: QuestUpdate, admin: dict = Depends(require_admin)):
    return content.update_quest(DB_PATH, quest_id, req.model_dump(exclude_unset=True))


@app.delete("/admin/posts/{post_id}")
async def admin_delete_post(post_id: str, admin: dict = Depends(require_admin)):
    content.delete_post(DB_PATH, post_id)
    _audit.record("post_deleted", admin["id"], {}, target_table="posts", target_id=post_id)
    return {"success": True}

# =============================================================================
# ADMIN: JOBS / OPPORTUNITIES
# =============================================================================

@app.post("/admin/jobs", status_code=201)
async def admin_create_job(req: CreateJobRequest, admin: dict = Depends(require_admin)):
    return repository.create_job(DB_PATH, created_by=admin["id"], **req.model_dump())


@app.post("/admin/jobs/import", status_code=201)
async def admin_import_job(req: ImportJobRequest, admin: dict = Depends(require_admin)):
    result = repository.create_job_with_skills(DB_PATH, req.model_dump())
    if not result["success"]:
        raise HTTPException(status_code=400, detail="; ".join(result["errors"]))
    return result


@app.patch("/admin/jobs/{job_id}/status")
async def admin_job_status(job_id: str, req: StatusUpdate, admin: dict = Depends(require_admin)):
    repository.update_job_status(DB_PATH, job_id, req.status)
    return {"success": True, "id": job_id, "status": req.status}


@app.delete("/admin/opportunities/{kind}/{opportunity_id}")
async def admin_delete_opportunity(kind: Literal["job", "gig"], opportunity_id: str,
                                   admin: dict = Depends(require_admin)):
    repository.delete_opportunity(DB_PATH, opportunity_id, kind)
    _audit.record("opportunity_deleted", admin["id"], {"kind": kind},
                  target_table=f"{kind}s", target_id=opportunity_id)
    return {"success": True}

# =============================================================================
# AUDIT
# =============================================================================

@app.get("/audit")
async def audit_entries(limit: int = 50, target_id: Optional[str] = None,
                        admin: dict = Depends(require_admin)):
    return _audit.list_entries(target_id=target_id, limit=limit)


@app.get("/audit/verify")
async def audit_verify(admin: dict = Depends(require_admin)):
    return {"valid": _audit.verify_chain()}

# =============================================================================
# HEALTH
# =============================================================================

@app.get("/health")
async def health():
    return {"status": "healthy", "platform": "LevelUp", "version": LEVELUP_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/", response_class=HTMLResponse)
async def root(request: Request):
    accept = request.headers.get("accept", "")
    if "text/html" in accept:
        return templates.TemplateResponse(request, "site/index.html", {
            "version": LEVELUP_VERSION,
            "home": content.get_home_data(DB_PATH),
        })
    return JSONResponse({
        "name": "LevelUp -- Internal Mobility Portal",
        "version": LEVELUP_VERSION,
        "docs": "/docs",
        "admin": "/admin/tables",
    })


def main() -> None:
    import uvicorn
    uvicorn.run(
        app,
        host=os.environ.get("LEVELUP_HOST", "127.0.0.1"),
        port=int(os.environ.get("LEVELUP_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
