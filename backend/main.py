import logging
from datetime import datetime
from typing import List, Optional

from fastapi import FastAPI, UploadFile, Form, Depends, Request, File, Header
from fastapi.exceptions import RequestValidationError
from fastapi.responses import RedirectResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import crud
import errors
import gamification
import models
from auth import TokenService, bearer_token, check_password, set_password
from config import Settings, load_settings
from database import make_engine, make_session_factory
from images import ImagePipeline
from oauth import FederatedLoginBroker
from schemas import (
    CommentOut,
    CommentRequest,
    LeaderboardEntry,
    LoginRequest,
    PublicProfile,
    RankOut,
    RegisterRequest,
    ReportOut,
    TokenOut,
    UpdateUserRequest,
    UserOut,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


# ── Dependencies ──

def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_current_user_id(request: Request, authorization: Optional[str] = Header(None)) -> int:
    return request.app.state.tokens.validate(bearer_token(authorization))


def get_current_user(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)) -> models.User:
    # A valid token can outlive its account
    user = crud.get_user(db, user_id)
    if user is None:
        raise errors.AuthenticationError("account no longer exists")
    return user


def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    if not user.is_admin:
        raise errors.AuthorizationError("admin required")
    return user


# ── Parsing helpers ──

def parse_coordinate(raw: Optional[str], name: str, bound: float) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise errors.ValidationError(f"invalid {name}")
    if not -bound <= value <= bound:
        raise errors.ValidationError(f"{name} must be within [-{bound:g}, {bound:g}]")
    return value


def parse_timestamp(raw: Optional[str], name: str) -> datetime:
    if not raw:
        raise errors.ValidationError("start and end required")
    try:
        return datetime.fromisoformat(raw.strip())
    except ValueError:
        raise errors.ValidationError(f"invalid {name}")


# ── Error translation ──

STATUS_BY_ERROR = [
    (errors.AuthenticationError, 401),
    (errors.AuthorizationError, 403),
    (errors.ValidationError, 400),
    (errors.NotFoundError, 404),
    (errors.DependencyError, 503),
    (errors.ConstraintError, 500),
]


def _describe(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "form"))
        parts.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return "; ".join(parts) or "invalid request"


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(errors.AppError)
    async def handle_app_error(request: Request, exc: errors.AppError):
        status = next((code for cls, code in STATUS_BY_ERROR if isinstance(exc, cls)), 500)
        if status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
        return JSONResponse(status_code=status, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _describe(exc)})

    @app.exception_handler(SQLAlchemyError)
    async def handle_database_error(request: Request, exc: SQLAlchemyError):
        logger.error(f"{request.method} {request.url.path} database failure: {exc}", exc_info=exc)
        return JSONResponse(status_code=503, content={"error": "database unavailable"})


# ══════════════════════════════════════
#   APP
# ══════════════════════════════════════

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)

    engine = make_engine(settings.database_url)
    models.Base.metadata.create_all(bind=engine)

    pipeline = ImagePipeline(settings.static_dir)
    pipeline.upload_dir.mkdir(parents=True, exist_ok=True)
    tokens = TokenService(settings.jwt_secret)

    app = FastAPI(title="Trash Trail API")
    app.state.settings = settings
    app.state.session_factory = make_session_factory(engine)
    app.state.tokens = tokens
    app.state.images = pipeline
    app.state.oauth = FederatedLoginBroker(settings, tokens)
    app.mount(f"/{pipeline.subdir}", StaticFiles(directory=pipeline.upload_dir), name=pipeline.subdir)

    register_error_handlers(app)
    register_routes(app)
    return app


def register_routes(app: FastAPI) -> None:

    @app.get("/health")
    def health():
        return {"status": "ok"}

    # ══════════════════════════════════════
    #   AUTH ROUTES
    # ══════════════════════════════════════

    @app.post("/users", response_model=UserOut, status_code=201)
    def register(req: RegisterRequest, request: Request, db: Session = Depends(get_db)):
        if crud.get_user_by_email(db, req.email):
            raise errors.ValidationError("Email already registered")

        admins = request.app.state.settings.admin_emails
        user = models.User(name=req.name, email=req.email, is_admin=req.email in admins)
        set_password(user, req.password)
        try:
            return crud.create_user(db, user)
        except errors.ConstraintError:
            # lost a race with a concurrent registration
            raise errors.ValidationError("Email already registered")

    @app.post("/login", response_model=TokenOut)
    def login(req: LoginRequest, request: Request, db: Session = Depends(get_db)):
        user = crud.get_user_by_email(db, req.email)
        # same answer for unknown email and wrong password
        if user is None or not check_password(user, req.password):
            raise errors.InvalidCredentialsError("invalid credentials")
        return TokenOut(token=request.app.state.tokens.issue(user.id))

    @app.get("/auth/google/login")
    def google_login(request: Request):
        return RedirectResponse(request.app.state.oauth.begin_login(), status_code=302)

    @app.get("/auth/google/callback", response_model=TokenOut)
    def google_callback(request: Request, code: str = "", db: Session = Depends(get_db)):
        if not code:
            raise errors.ValidationError("code required")
        token, user = request.app.state.oauth.complete_login(db, code)
        return TokenOut(token=token, user=UserOut.model_validate(user))

    # ══════════════════════════════════════
    #   USERS
    # ══════════════════════════════════════

    @app.get("/users", response_model=List[UserOut])
    def list_users(admin: models.User = Depends(require_admin), db: Session = Depends(get_db)):
        return crud.list_users(db)

    @app.get("/users/me", response_model=UserOut)
    def me(user: models.User = Depends(get_current_user)):
        return user

    @app.get("/users/{user_id}", response_model=PublicProfile)
    def get_user(user_id: int, db: Session = Depends(get_db)):
        user = crud.get_user(db, user_id)
        if user is None:
            raise errors.NotFoundError("User not found")
        return user

    @app.put("/users/{user_id}", response_model=UserOut)
    def update_user(
        user_id: int,
        req: UpdateUserRequest,
        user: models.User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        if user.id != user_id and not user.is_admin:
            raise errors.AuthorizationError("admin required")
        target = user if user.id == user_id else crud.get_user(db, user_id)
        if target is None:
            raise errors.NotFoundError(f"User #{user_id} not found")

        if req.email is not None and req.email != target.email:
            if crud.get_user_by_email(db, req.email):
                raise errors.ValidationError("Email already registered")
            target.email = req.email
        if req.name is not None:
            target.name = req.name
        if req.password is not None:
            set_password(target, req.password)

        try:
            return crud.update_user(db, target)
        except errors.ConstraintError:
            raise errors.ValidationError("Email already registered")

    @app.delete("/users/{user_id}")
    def delete_user(user_id: int, user: models.User = Depends(get_current_user), db: Session = Depends(get_db)):
        if user.id != user_id and not user.is_admin:
            raise errors.AuthorizationError("admin required")
        if not crud.delete_user(db, user_id):
            raise errors.NotFoundError(f"User #{user_id} not found")
        logger.info(f"[Users] User {user.id} deleted user {user_id}")
        return {"message": "deleted"}

    @app.get("/users/{user_id}/rank", response_model=RankOut)
    def user_rank(user_id: int, db: Session = Depends(get_db)):
        result = gamification.rank(db, user_id)
        if result is None:
            raise errors.NotFoundError("User has no rank")
        return RankOut(user_id=user_id, rank=result.rank, exp=result.exp)

    @app.get("/leaderboard", response_model=List[LeaderboardEntry])
    def get_leaderboard(limit: int = 10, db: Session = Depends(get_db)):
        entries = []
        for i, u in enumerate(gamification.leaderboard(db, limit)):
            # tied users share the rank of the first of them
            place = entries[-1].rank if entries and entries[-1].exp == u.exp else i + 1
            entries.append(LeaderboardEntry(rank=place, user=PublicProfile.model_validate(u), exp=u.exp))
        return entries

    # ══════════════════════════════════════
    #   TRASH POSTS
    # ══════════════════════════════════════

    @app.post("/trashposts", response_model=ReportOut, status_code=201)
    def create_trash_post(
        request: Request,
        latitude: Optional[str] = Form(None),
        longitude: Optional[str] = Form(None),
        description: str = Form(""),
        trail: str = Form(""),
        image: Optional[UploadFile] = File(None),
        user: models.User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        lat = parse_coordinate(latitude, "latitude", 90)
        lon = parse_coordinate(longitude, "longitude", 180)
        if not description.strip():
            raise errors.ValidationError("description required")

        pipeline: ImagePipeline = request.app.state.images
        image_path = ""
        if image is not None and image.filename:
            image_path = pipeline.ingest(image.file.read())

        post = models.Report(
            user_id=user.id,
            latitude=lat,
            longitude=lon,
            image_path=image_path,
            description=description,
            trail=trail,
        )
        try:
            crud.create_report(db, post)
        except Exception:
            pipeline.discard(image_path)
            raise
        return crud.get_report_view(db, post.id)

    @app.get("/trashposts", response_model=List[ReportOut])
    def get_trash_posts(start: Optional[str] = None, end: Optional[str] = None, db: Session = Depends(get_db)):
        return crud.get_reports_by_date_range(
            db, parse_timestamp(start, "start"), parse_timestamp(end, "end")
        )

    @app.get("/trashposts/{post_id}", response_model=ReportOut)
    def get_trash_post(post_id: int, db: Session = Depends(get_db)):
        post = crud.get_report_view(db, post_id)
        if post is None:
            raise errors.NotFoundError(f"Post #{post_id} not found")
        return post

    @app.delete("/trashposts/{post_id}")
    def delete_trash_post(post_id: int, admin: models.User = Depends(require_admin), db: Session = Depends(get_db)):
        if not crud.delete_report(db, post_id):
            raise errors.NotFoundError(f"Post #{post_id} not found")
        logger.info(f"[Reports] Admin {admin.id} deleted post {post_id}")
        return {"message": "deleted"}

    # ══════════════════════════════════════
    #   COMMENTS
    # ══════════════════════════════════════

    @app.post("/trashposts/{post_id}/comments", response_model=CommentOut, status_code=201)
    def create_comment(
        post_id: int,
        req: CommentRequest,
        user: models.User = Depends(get_current_user),
        db: Session = Depends(get_db),
    ):
        post = crud.get_report(db, post_id)
        if post is None:
            raise errors.NotFoundError(f"Post #{post_id} not found")
        owner_id = post.user_id

        comment = crud.create_comment(
            db, models.Comment(post_id=post_id, user_id=user.id, content=req.content)
        )
        out = CommentOut(
            id=comment.id,
            post_id=comment.post_id,
            user_id=comment.user_id,
            user=PublicProfile.model_validate(user),
            content=comment.content,
            created_at=comment.created_at,
        )
        gamification.award_comment_exp(db, user.id, owner_id)
        return out

    @app.get("/trashposts/{post_id}/comments", response_model=List[CommentOut])
    def get_comments(post_id: int, db: Session = Depends(get_db)):
        return crud.get_comments_for_report(db, post_id)


if __name__ == "__main__":
    import os
    import uvicorn
    port = int(os.getenv("PORT", 8080))
    uvicorn.run(create_app(), host="0.0.0.0", port=port)
