from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import logging
import os
import time
from typing import Any, Dict, List, Optional

from sqlmodel import Session

from .auth import login, register
from .comments import add_comment, comment_views, delete_comment, list_comments, toggle_comment_like, update_comment
from .config import Settings, configure_logging, load_settings
from .constants import (
    ASSETS_URL_PREFIX,
    INTERNAL_ERROR_MESSAGE,
    POST_TEXT_MAX_LENGTH,
    RATE_LIMIT_MESSAGE,
    validate_text,
)
from .db import init_db
from .dependencies import get_image_store, get_password_hasher, get_session, get_settings, get_token_issuer
from .errors import ApiError, Internal, RateLimited, ValidationFailed
from .images import ImageStore, Upload
from .passwords import PasswordHasher
from .posts import create_post, delete_post, get_post, list_posts, post_views, toggle_post_like, update_post
from .ratelimit import RateLimiter
from .schemas import (
    AuthResponse,
    CommentRequest,
    CommentView,
    LikeResult,
    LoginRequest,
    MessageResponse,
    PostTextRequest,
    PostView,
    ProfilePictureResponse,
    ProfileView,
    PublicUser,
    RegisterRequest,
    UpdateProfileRequest,
)
from .security import Identity, optional_identity, require_identity
from .tokens import TokenIssuer
from .users import find_users, load_user, profile_view, replace_profile_picture, update_profile

logger = logging.getLogger(__name__)

HTTP_ERROR_KINDS = {400: "ValidationError", 401: "Unauthenticated", 403: "Forbidden", 404: "NotFound"}


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    """Build the long-lived collaborators once and hang them on `app.state`."""
    settings: Settings = app_instance.state.settings
    logger.info("Starting socialhub (database: %s, uploads: %s)", settings.database_url.split('://')[0], settings.upload_dir)

    app_instance.state.engine = init_db(settings.database_url)
    app_instance.state.token_issuer = TokenIssuer.from_settings(settings)
    app_instance.state.password_hasher = PasswordHasher.from_settings(settings)
    app_instance.state.image_store = ImageStore.from_settings(settings)
    app_instance.state.rate_limiter = RateLimiter.from_settings(settings)
    app_instance.state._started = True
    try:
        yield
    finally:
        try:
            app_instance.state.engine.dispose()
        except Exception:
            logger.exception("Error disposing database engine")
        app_instance.state._started = False
        logger.info("Shutdown event completed")


def _uploads(files: Optional[List[UploadFile]]) -> List[Upload]:
    """Read multipart files; empty file fields sent by browsers are skipped."""
    uploads = []
    for f in files or []:
        if not f.filename:
            continue
        uploads.append(Upload(filename=f.filename, content_type=f.content_type, data=f.file.read()))
    return uploads


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    msg = str(first.get("msg") or "Invalid request")
    if msg.startswith("Value error, "):
        return msg[len("Value error, "):]
    loc = [str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path", "form")]
    if first.get("type") == "missing" and loc:
        return f"{loc[-1]} is required"
    return f"{loc[-1]}: {msg}" if loc else msg


def _install_error_handling(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def _api_error(request: Request, exc: ApiError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=exc.headers or None)

    @app.exception_handler(RequestValidationError)
    async def _request_validation(request: Request, exc: RequestValidationError):
        err = ValidationFailed(_validation_message(exc))
        logger.debug("Request validation failed on %s %s: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        content = {"message": str(exc.detail), "error": HTTP_ERROR_KINDS.get(exc.status_code, "HTTPError")}
        return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


def _install_middleware(app: FastAPI, settings: Settings) -> None:
    # Registration order is innermost first: the error guard ends up
    # outermost, then access logging, then rate limiting.

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        limiter: Optional[RateLimiter] = getattr(request.app.state, "rate_limiter", None)
        if limiter is not None:
            key = request.client.host if request.client else "unknown"
            allowed, retry_after = limiter.check(key)
            if not allowed:
                logger.warning("Rate limit exceeded for %s", key)
                err = RateLimited(RATE_LIMIT_MESSAGE, retry_after=retry_after)
                return JSONResponse(status_code=err.status_code, content=err.to_dict(), headers=err.headers)
        return await call_next(request)

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info("%s %s -> %s (%.1fms)", request.method, request.url.path, response.status_code, elapsed_ms)
        return response

    @app.middleware("http")
    async def error_guard(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.exception("Unhandled error on %s %s", request.method, request.url.path)
            err = Internal(INTERNAL_ERROR_MESSAGE)
            return JSONResponse(status_code=err.status_code, content=err.to_dict())

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials="*" not in settings.cors_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )


def _install_routes(app: FastAPI) -> None:

    @app.get("/", tags=["health"])
    def index() -> Dict[str, Any]:
        return {"message": "Welcome to the socialhub API"}

    @app.get("/health", tags=["health"])
    def health() -> Dict[str, Any]:
        return {"status": "ok"}

    # --- auth ---------------------------------------------------------

    @app.post("/auth/register", status_code=201, response_model=AuthResponse, tags=["auth"])
    def register_user(
        body: RegisterRequest,
        session: Session = Depends(get_session),
        hasher: PasswordHasher = Depends(get_password_hasher),
        issuer: TokenIssuer = Depends(get_token_issuer),
    ):
        user, token = register(session, hasher, issuer, body)
        return AuthResponse(message="User registered successfully", token=token, user=PublicUser.model_validate(user))

    @app.post("/auth/login", response_model=AuthResponse, response_model_exclude_none=True, tags=["auth"])
    def login_user(
        body: LoginRequest,
        session: Session = Depends(get_session),
        hasher: PasswordHasher = Depends(get_password_hasher),
        issuer: TokenIssuer = Depends(get_token_issuer),
    ):
        user, token = login(session, hasher, issuer, body)
        return AuthResponse(token=token, user=PublicUser.model_validate(user))

    # --- users --------------------------------------------------------

    @app.get("/users/me", response_model=ProfileView, tags=["users"])
    def my_profile(identity: Identity = Depends(require_identity), session: Session = Depends(get_session)):
        return profile_view(session, load_user(session, identity.id), viewer_id=identity.id)

    @app.put("/users/me", response_model=PublicUser, tags=["users"])
    def update_my_profile(
        body: UpdateProfileRequest,
        identity: Identity = Depends(require_identity),
        session: Session = Depends(get_session),
        hasher: PasswordHasher = Depends(get_password_hasher),
    ):
        return PublicUser.model_validate(update_profile(session, hasher, identity, body))

    @app.put("/users/me/profile-picture", response_model=ProfilePictureResponse, tags=["users"])
    def update_my_profile_picture(
        image: Optional[UploadFile] = File(None),
        identity: Identity = Depends(require_identity),
        session: Session = Depends(get_session),
        store: ImageStore = Depends(get_image_store),
    ):
        uploads = _uploads([image] if image is not None else [])
        user = replace_profile_picture(session, store, identity, uploads[0] if uploads else None)
        return ProfilePictureResponse(message="Profile picture updated", profile_picture=user.profile_picture)

    @app.get("/users/search", response_model=List[PublicUser], tags=["users"])
    def search(
        q: Optional[str] = None,
        identity: Identity = Depends(require_identity),
        session: Session = Depends(get_session),
    ):
        return [PublicUser.model_validate(u) for u in find_users(session, q)]

    @app.get("/users/{user_id}", response_model=ProfileView, tags=["users"])
    def user_profile(user_id: int, identity: Identity = Depends(require_identity), session: Session = Depends(get_session)):
        return profile_view(session, load_user(session, user_id), viewer_id=identity.id)

    @app.get("/users/{user_id}/posts", response_model=List[PostView], tags=["users"])
    def user_posts(user_id: int, identity: Identity = Depends(require_identity), session: Session = Depends(get_session)):
        load_user(session, user_id)
        return post_views(session, list_posts(session, user_id=user_id), viewer_id=identity.id)

    # --- posts --------------------------------------------------------

    @app.post("/posts", status_code=201, response_model=PostView, tags=["posts"])
    def new_post(
        text: Optional[str] = Form(None),
        images: Optional[List[UploadFile]] = File(None),
        identity: Identity = Depends(require_identity),
        session: Session = Depends(get_session),
        store: ImageStore = Depends(get_image_store),
        settings: Settings = Depends(get_settings),
    ):
        try:
            body = validate_text(text, POST_TEXT_MAX_LENGTH, "Text")
        except ValueError as e:
            raise ValidationFailed(str(e)) from None
        uploads = _uploads(images)
        if not uploads:
            raise ValidationFailed("Please upload at least one image")
        if len(uploads) > settings.max_images_per_post:
            raise ValidationFailed(f"Maximum {settings.max_images_per_post} images allowed")

        refs = store.save_all(uploads)
        try:
            post = create_post(session, identity, body, refs)
        except Exception:
            store.delete(refs)
            raise
        return post_views(session, [post], viewer_id=identity.id)[0]

    @app.get("/posts", response_model=List[PostView], tags=["posts"])
    def all_posts(
        identity: Optional[Identity] = Depends(optional_identity),
        session: Session = Depends(get_session),
    ):
        return post_views(session, list_posts(session), viewer_id=identity.id if identity else None)

    @app.get("/posts/{post_id}", response_model=PostView, tags=["posts"])
    def one_post(
        post_id: int,
        identity: Optional[Identity] = Depends(optional_identity),
        session: Session = Depends(get_session),
    ):
        post = get_post(session, post_id)
        return post_views(session, [post], viewer_id=identity.id if identity else None)[0]

    @app.put("/posts/{post_id}", response_model=PostView, tags=["posts"])
    def edit_post(
        post_id: int,
        body: PostTextRequest,
        identity: Identity = Depends(require_identity),
        session: Session = Depends(get_session),
    ):
        post = update_post(session, identity, post_id, body.text)
        return post_views(session, [post], viewer_id=identity.id)[0]

    @app.delete("/posts/{post_id}", response_model=MessageResponse, tags=["posts"])
    def remove_post(
        post_id: int,
        identity: Identity = Depends(require_identity),
        session: Session = Depends(get_session),
        store: ImageStore = Depends(get_image_store),
    ):
        images = delete_post(session, identity, post_id)
        removed = store.delete(images)
        logger.debug("Removed %d of %d image file(s) of post %s", removed, len(images), post_id)
        return MessageResponse(message="Post deleted successfully")

    @app.post("/posts/{post_id}/like", response_model=LikeResult, tags=["posts"])
    def like_post(post_id: int, identity: Identity = Depends(require_identity), session: Session = Depends(get_session)):
        return toggle_post_like(session, identity, post_id)

    # --- comments -----------------------------------------------------

    @app.post("/posts/{post_id}/comments", status_code=201, response_model=CommentView, tags=["comments"])
    def new_comment(
        post_id: int,
        body: CommentRequest,
        identity: Identity = Depends(require_identity),
        session: Session = Depends(get_session),
    ):
        comment = add_comment(session, identity, post_id, body.text)
        return comment_views(session, [comment])[0]

    @app.get("/posts/{post_id}/comments", response_model=List[CommentView], tags=["comments"])
    def post_comments(post_id: int, session: Session = Depends(get_session)):
        return comment_views(session, list_comments(session, post_id))

    @app.put("/posts/{post_id}/comments/{comment_id}", response_model=CommentView, tags=["comments"])
    def edit_comment(
        post_id: int,
        comment_id: int,
        body: CommentRequest,
        identity: Identity = Depends(require_identity),
        session: Session = Depends(get_session),
    ):
        comment = update_comment(session, identity, post_id, comment_id, body.text)
        return comment_views(session, [comment])[0]

    @app.delete("/posts/{post_id}/comments/{comment_id}", response_model=MessageResponse, tags=["comments"])
    def remove_comment(
        post_id: int,
        comment_id: int,
        identity: Identity = Depends(require_identity),
        session: Session = Depends(get_session),
    ):
        delete_comment(session, identity, post_id, comment_id)
        return MessageResponse(message="Comment deleted successfully")

    @app.post("/posts/{post_id}/comments/{comment_id}/like", response_model=LikeResult, tags=["comments"])
    def like_comment(
        post_id: int,
        comment_id: int,
        identity: Identity = Depends(require_identity),
        session: Session = Depends(get_session),
    ):
        return toggle_comment_like(session, identity, post_id, comment_id)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Assemble the application. Settings are loaded from the environment
    when not given."""
    if settings is None:
        settings = load_settings()
        configure_logging(settings)

    app = FastAPI(title="socialhub", description="Social media REST backend", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state._started = False

    _install_error_handling(app)
    _install_middleware(app, settings)
    _install_routes(app)

    os.makedirs(settings.upload_dir, exist_ok=True)
    app.mount(ASSETS_URL_PREFIX, StaticFiles(directory=settings.upload_dir), name="assets")
    return app


def main():
    import uvicorn

    settings = load_settings()
    configure_logging(settings)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
