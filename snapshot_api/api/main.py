"""
SnapShot Tags API Service.

FastAPI application exposing the tag save service, user profiles and push
token registration.

Authentication: endpoints under /users/me and /push read a bearer id token
from the Authorization header and resolve it with the identity provider.
Requests without a token are treated as signed out.
"""
# Load .env file if present (for local development)
from dotenv import load_dotenv
load_dotenv()

import base64
import binascii
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config import Settings
from ..services.blob_store import HttpBlobStore
from ..services.document_store import MongoDocumentStore
from ..services.errors import (
    BlobStoreError,
    IdentityError,
    NotAuthenticatedError,
    NotFoundError,
    StoreError,
)
from ..services.identity import HttpIdentityProvider, RequestIdentity
from ..services.models import Identity, SavedTag, Tag, User
from ..services.tag_repository import TagRepository
from ..services.token_registrar import NotificationTokenRegistrar
from ..services.user_service import UserProfileService

logger = logging.getLogger(__name__)

# Global instances
settings: Optional[Settings] = None
store: Optional[MongoDocumentStore] = None
identity_provider: Optional[HttpIdentityProvider] = None
blob_store: Optional[HttpBlobStore] = None
tags: Optional[TagRepository] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Connects the document store and the identity/blob clients on startup
    and closes them on shutdown.
    """
    global settings, store, identity_provider, blob_store, tags

    settings = Settings.from_env()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    store = MongoDocumentStore(settings.mongodb_url, settings.mongodb_database)
    store.connect()

    identity_provider = HttpIdentityProvider(
        api_key=settings.identity_api_key,
        api_url=settings.identity_api_url,
        timeout=settings.http_timeout,
    )
    identity_provider.connect()

    blob_store = None
    if settings.storage_bucket:
        blob_store = HttpBlobStore(
            bucket=settings.storage_bucket,
            api_url=settings.storage_api_url,
            timeout=settings.http_timeout,
        )
        blob_store.connect()
    else:
        logging.warning("STORAGE_BUCKET not set. Profile images will not be uploaded.")

    tags = TagRepository(
        store,
        unsave_policy=settings.unsave_policy,
        transactional=settings.transactional_saves,
    )

    yield

    # Cleanup
    if blob_store:
        await blob_store.close()
    await identity_provider.close()
    await store.close()


app = FastAPI(
    title="SnapShot Tags API",
    description="Tag saving, usage counts, user profiles and push token registration",
    version="1.0.0",
    lifespan=lifespan
)


# Error handling

@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(NotAuthenticatedError)
async def not_authenticated_handler(request: Request, exc: NotAuthenticatedError):
    return JSONResponse(status_code=401, content={"detail": str(exc) or "Not authenticated"})


@app.exception_handler(IdentityError)
async def identity_error_handler(request: Request, exc: IdentityError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "code": exc.code})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Operation failed, try again later"})


@app.exception_handler(BlobStoreError)
async def blob_store_error_handler(request: Request, exc: BlobStoreError):
    logger.error(f"{request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Upload failed, try again later"})


# Dependencies

async def request_identity(authorization: Optional[str] = Header(default=None)) -> RequestIdentity:
    """Resolve the bearer id token, if any, to an identity."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return RequestIdentity()

    token = authorization[len("bearer "):].strip()
    try:
        identity = await identity_provider.lookup(token)
    except IdentityError as e:
        raise HTTPException(status_code=401, detail=f"Invalid id token: {e.code}")
    return RequestIdentity(identity)


async def current_identity(source: RequestIdentity = Depends(request_identity)) -> Identity:
    if source.current_user is None:
        raise NotAuthenticatedError("Bearer id token required")
    return source.current_user


def user_service(source: RequestIdentity = Depends(request_identity)) -> UserProfileService:
    return UserProfileService(store, source, blob_store)


def token_registrar(source: RequestIdentity = Depends(request_identity)) -> NotificationTokenRegistrar:
    return NotificationTokenRegistrar(store, source)


# Request/Response Models

class CredentialsRequest(BaseModel):
    email: str
    password: str


class IdentityResponse(BaseModel):
    user_id: str
    email: str
    id_token: Optional[str] = None


class TagResponse(BaseModel):
    tag_id: str
    name: str
    tag_type: str
    description: str = ""
    use_count: int
    last_used: Optional[datetime] = None

    @classmethod
    def from_tag(cls, tag: Tag) -> "TagResponse":
        return cls(
            tag_id=tag.tag_id,
            name=tag.name,
            tag_type=tag.tag_type,
            description=tag.description,
            use_count=tag.use_count,
            last_used=tag.last_used,
        )


class UserResponse(BaseModel):
    user_id: str
    username: str
    email: str
    profile_pic_url: str
    bio: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            user_id=user.user_id,
            username=user.username,
            email=user.email,
            profile_pic_url=user.profile_pic_url,
            bio=user.bio,
        )


class CreateProfileRequest(BaseModel):
    """Request model for profile creation. ``profile_image`` is base64 JPEG."""
    username: str
    bio: str = ""
    profile_image: Optional[str] = None


class ProfileResponse(BaseModel):
    user: UserResponse
    partial: bool
    image_error: Optional[str] = None


class SavedStatusResponse(BaseModel):
    tag_id: str
    saved: bool


class SaveResponse(BaseModel):
    tag_id: str
    saved: bool
    newly_saved: bool


class SavedTagResponse(BaseModel):
    tag_id: str
    saved_at: Optional[datetime] = None

    @classmethod
    def from_saved(cls, saved: SavedTag) -> "SavedTagResponse":
        return cls(tag_id=saved.tag_id, saved_at=saved.saved_at)


class TokenRequest(BaseModel):
    token: str


class TokenResponse(BaseModel):
    status: str  # "registered" or "skipped"


class HealthResponse(BaseModel):
    status: str
    database: Optional[str]
    unsave_policy: Optional[str]
    transactional_saves: bool


# API Endpoints

@app.post("/api/v1/auth/signup", response_model=IdentityResponse)
async def sign_up(req: CredentialsRequest):
    """Create an account with the identity provider."""
    identity = await identity_provider.sign_up(req.email, req.password, remember=False)
    return IdentityResponse(user_id=identity.uid, email=identity.email, id_token=identity.id_token)


@app.post("/api/v1/auth/signin", response_model=IdentityResponse)
async def sign_in(req: CredentialsRequest):
    """Sign in and return an id token for the Authorization header."""
    identity = await identity_provider.sign_in(req.email, req.password, remember=False)
    return IdentityResponse(user_id=identity.uid, email=identity.email, id_token=identity.id_token)


@app.get("/api/v1/tags/trending", response_model=list[TagResponse])
async def trending_tags(limit: int = 10):
    """Most used tags first."""
    if limit < 1 or limit > 100:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 100")
    return [TagResponse.from_tag(t) for t in await tags.get_trending_tags(limit)]


@app.get("/api/v1/tags", response_model=list[TagResponse])
async def list_tags(type: Optional[str] = None, prefix: Optional[str] = None):
    """
    List tags by type and/or name prefix.

    Raises:
        HTTPException: 400 if neither filter is given
    """
    if prefix is not None:
        found = await tags.search_tags_by_name(prefix, tag_type=type)
    elif type is not None:
        found = await tags.get_tags_by_type(type)
    else:
        raise HTTPException(status_code=400, detail="Provide type and/or prefix")
    return [TagResponse.from_tag(t) for t in found]


@app.get("/api/v1/tags/{tag_id}", response_model=TagResponse)
async def get_tag(tag_id: str):
    return TagResponse.from_tag(await tags.get_tag_by_id(tag_id))


@app.post("/api/v1/tags/{tag_id}/use", status_code=202)
async def record_tag_use(tag_id: str):
    """
    Count a use of the tag and stamp lastUsed (fire-and-forget).

    The increment runs in the background; failures are logged only.
    """
    tags.schedule_use_count_increment(tag_id)
    return {"status": "accepted", "tag_id": tag_id}


@app.get("/api/v1/users/me", response_model=UserResponse)
async def get_me(users: UserProfileService = Depends(user_service)):
    user = await users.get_current_user()
    if user is None:
        raise NotAuthenticatedError("Bearer id token required")
    return UserResponse.from_user(user)


@app.post("/api/v1/users/me", response_model=ProfileResponse)
async def create_profile(req: CreateProfileRequest, users: UserProfileService = Depends(user_service)):
    """
    Create the caller's profile, optionally with a profile image.

    An image upload failure does not fail the request: the profile is
    stored without an image and ``partial`` is true.
    """
    image = None
    if req.profile_image:
        try:
            image = base64.b64decode(req.profile_image, validate=True)
        except (binascii.Error, ValueError):
            raise HTTPException(status_code=400, detail="profile_image must be base64")

    result = await users.create_profile(req.username, image=image, bio=req.bio)
    return ProfileResponse(
        user=UserResponse.from_user(result.user),
        partial=result.partial,
        image_error=result.image_error,
    )


@app.get("/api/v1/users/me/saved-tags", response_model=list[SavedTagResponse])
async def list_saved_tags(identity: Identity = Depends(current_identity)):
    saved = await tags.get_saved_tags_by_user(identity.uid)
    return [SavedTagResponse.from_saved(s) for s in saved]


@app.get("/api/v1/users/me/saved-tags/{tag_id}", response_model=SavedStatusResponse)
async def is_tag_saved(tag_id: str, identity: Identity = Depends(current_identity)):
    saved = await tags.is_tag_saved_by_user(identity.uid, tag_id)
    return SavedStatusResponse(tag_id=tag_id, saved=saved)


@app.put("/api/v1/users/me/saved-tags/{tag_id}", response_model=SaveResponse)
async def save_tag(tag_id: str, identity: Identity = Depends(current_identity)):
    """
    Save a tag for the caller. Idempotent; only the first save counts.

    Raises:
        404 if the tag does not exist
    """
    outcome = await tags.save_tag_for_user(identity.uid, tag_id)
    return SaveResponse(tag_id=tag_id, saved=True, newly_saved=outcome.newly_saved)


@app.delete("/api/v1/users/me/saved-tags/{tag_id}", response_model=SavedStatusResponse)
async def unsave_tag(tag_id: str, identity: Identity = Depends(current_identity)):
    await tags.unsave_tag_for_user(identity.uid, tag_id)
    return SavedStatusResponse(tag_id=tag_id, saved=False)


@app.get("/api/v1/users/{user_id}", response_model=UserResponse)
async def get_user(user_id: str, users: UserProfileService = Depends(user_service)):
    return UserResponse.from_user(await users.get_user_by_id(user_id))


@app.put("/api/v1/push/token", response_model=TokenResponse)
async def register_push_token(req: TokenRequest, registrar: NotificationTokenRegistrar = Depends(token_registrar)):
    """
    Register the caller's push token.

    Without a bearer token the registration is skipped, not rejected.
    """
    if not req.token:
        raise HTTPException(status_code=400, detail="token must not be empty")
    status = await registrar.register_token(req.token)
    return TokenResponse(status=status.value)


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(
        status="healthy",
        database=settings.mongodb_database if settings else None,
        unsave_policy=settings.unsave_policy.value if settings else None,
        transactional_saves=settings.transactional_saves if settings else False,
    )


@app.get("/")
async def root():
    """
    Root endpoint with API information.

    Returns:
        API info and available endpoints
    """
    return {
        "name": "SnapShot Tags API",
        "version": "1.0.0",
        "endpoints": {
            "signup": "POST /api/v1/auth/signup",
            "signin": "POST /api/v1/auth/signin",
            "get_tag": "GET /api/v1/tags/{tag_id}",
            "list_tags": "GET /api/v1/tags?type=&prefix=",
            "trending": "GET /api/v1/tags/trending",
            "record_use": "POST /api/v1/tags/{tag_id}/use",
            "me": "GET|POST /api/v1/users/me",
            "saved_tags": "GET /api/v1/users/me/saved-tags",
            "saved_tag": "GET|PUT|DELETE /api/v1/users/me/saved-tags/{tag_id}",
            "user": "GET /api/v1/users/{user_id}",
            "push_token": "PUT /api/v1/push/token",
            "health": "GET /health",
        },
    }
