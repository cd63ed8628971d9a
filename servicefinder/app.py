import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, UploadFile, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .core.auth import require_session
from .core.categories import ALL_CATEGORIES, Category
from .core.config import Config
from .core.listings import ALL_CITIES, ListingDirectory, ListingFilters, SortKey, listing_card, paginate
from .core.middleware import ALLOWED_METHODS, global_exception_handler, log_requests
from .core.session import Session
from .core.validation import (
    validate_email,
    validate_file,
    validate_identifier,
    validate_password,
    validate_phone,
    validate_rating,
    validate_sign_in_form,
    validate_sign_up_form,
)
from .directory import DirectoryController
from .services import listing_service, supabase_service

logger = logging.getLogger(__name__)

# Fetched once at startup and after every write
directory = ListingDirectory(lambda: supabase_service.get_all_listings())


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        Config.validate()
        directory.fetch()
        logger.info(f"Loaded {len(directory.listings)} listings at startup")
    except ValueError as e:
        logger.error(f"Configuration error, starting with an empty directory: {e}")

    yield

    logger.info("Shutting down directory API")


# Initialize FastAPI
app = FastAPI(title="ServiceFinder API", lifespan=lifespan)
app.state.directory = directory

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.allowed_origins(),
    allow_credentials=True,
    allow_methods=[m.strip() for m in ALLOWED_METHODS.split(",")],
    allow_headers=["*"],
)


@app.middleware("http")
async def _log_requests(request, call_next):
    return await log_requests(request, call_next)


@app.exception_handler(Exception)
async def _global_exception_handler(request, exc):
    return await global_exception_handler(request, exc)


def _form_errors(errors: dict) -> HTTPException:
    return listing_service.invalid_form(errors)


# ==================== LISTINGS ====================

@app.get("/listings")
async def list_listings(
    search: str = Query("", max_length=200),
    category: str = Query(ALL_CATEGORIES),
    city: str = Query(ALL_CITIES),
    min_rating: float = Query(0, ge=0, le=5),
    sort: SortKey = Query(SortKey.NEWEST),
    page: int = Query(1, ge=1),
    page_size: int = Query(Config.PAGE_SIZE, ge=1, le=100),
):
    """Search, filter, sort and page the in-memory listing collection."""
    filters = ListingFilters(search=search, category=category, city=city, min_rating=min_rating, sort=sort)
    result = paginate(directory.query(filters), page=page, page_size=page_size)
    return {
        "listings": [listing_card(item) for item in result["items"]],
        "pagination": result["pagination"],
        "error": directory.error,
    }


@app.get("/listings/top")
async def top_rated_listings(limit: int = Query(10, ge=1, le=50)):
    return {"listings": [listing_card(item) for item in supabase_service.get_top_rated_listings(limit)]}


@app.get("/categories")
async def categories():
    return {"categories": [c.value for c in Category], "cities": directory.cities()}


@app.get("/listings/{listing_id}")
async def get_listing(listing_id: str):
    validate_identifier(listing_id, "listing_id")
    return listing_card(supabase_service.get_listing(listing_id))


@app.get("/users/{user_id}/listings")
async def user_listings(user_id: str):
    validate_identifier(user_id, "user_id")
    return {"listings": [listing_card(item) for item in supabase_service.get_listings_by_user(user_id)]}


@app.post("/listings", status_code=201)
async def create_listing(
    name: str = Form(""),
    category: str = Form(""),
    description: str = Form(""),
    phone: str = Form(""),
    email: str = Form(""),
    city: str = Form(""),
    image: Optional[UploadFile] = File(None),
    session: Session = Depends(require_session),
):
    """Create a listing owned by the caller.

    - Validates the form locally (422 with a field error map)
    - Uploads the optional image, then writes the listing
    - Reloads the in-memory directory
    """
    form = {
        "name": name,
        "category": category,
        "description": description,
        "phone": phone,
        "email": email or (session.user or {}).get("email") or "",
        "city": city,
    }

    image_bytes = None
    image_name = ""
    image_type = None
    if image is not None and image.filename:
        validate_file(image)
        image_bytes = await image.read()
        image_name = image.filename
        image_type = image.content_type

    created = listing_service.publish_listing(
        form, session.user_id,
        image=image_bytes, image_name=image_name, image_type=image_type,
    )
    directory.refetch()
    return {"status": "success", "message": "Service added successfully!", **created}


@app.patch("/listings/{listing_id}")
async def edit_listing(
    listing_id: str,
    name: Optional[str] = Form(None),
    category: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    phone: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    city: Optional[str] = Form(None),
    session: Session = Depends(require_session),
):
    validate_identifier(listing_id, "listing_id")
    changes = {
        key: value for key, value in {
            "name": name,
            "category": category,
            "description": description,
            "phone": phone,
            "email": email,
            "city": city,
        }.items() if value is not None
    }
    updated = listing_service.edit_listing(listing_id, session.user_id, changes)
    directory.refetch()
    return listing_card(updated)


@app.delete("/listings/{listing_id}")
async def delete_listing(listing_id: str, session: Session = Depends(require_session)):
    validate_identifier(listing_id, "listing_id")
    listing_service.remove_listing(listing_id, session.user_id)
    directory.refetch()
    return {"status": "success", "id": listing_id}


@app.post("/listings/{listing_id}/rating")
async def rate_listing(
    listing_id: str,
    rating: int = Form(5),
    comment: str = Form(""),
    session: Session = Depends(require_session),
):
    validate_identifier(listing_id, "listing_id")
    if not validate_rating(rating):
        raise HTTPException(status_code=400, detail="Rating must be between 1 and 5")
    result = listing_service.rate_listing(
        listing_id, rating,
        user_id=session.user_id,
        user_name=session.display_name,
        comment=comment,
    )
    directory.refetch()
    return {"status": "success", "message": "Thank you for your rating!", **result}


@app.get("/listings/{listing_id}/contact")
async def contact_listing(listing_id: str, session: Session = Depends(require_session)):
    validate_identifier(listing_id, "listing_id")
    listing = directory.get(listing_id) or supabase_service.get_listing(listing_id)
    return {
        "id": listing.get("id"),
        "name": listing.get("name"),
        "phone": listing.get("phone"),
        "email": listing.get("email"),
    }


# ==================== AUTH ====================

@app.post("/auth/signup", status_code=201)
async def sign_up(
    display_name: str = Form(""),
    email: str = Form(""),
    phone: str = Form(""),
    password: str = Form(""),
    confirm_password: str = Form(""),
):
    form = {
        "display_name": display_name,
        "email": email,
        "phone": phone,
        "password": password,
        "confirm_password": confirm_password,
    }
    validation = validate_sign_up_form(form)
    if not validation.valid:
        raise _form_errors(validation.errors)
    return supabase_service.sign_up(email.strip(), password, display_name=display_name.strip(), phone=phone.strip())


@app.post("/auth/signin")
async def sign_in(email: str = Form(""), password: str = Form("")):
    validation = validate_sign_in_form({"email": email, "password": password})
    if not validation.valid:
        raise _form_errors(validation.errors)
    return supabase_service.sign_in(email.strip(), password)


@app.post("/auth/signout")
async def sign_out(session: Session = Depends(require_session)):
    supabase_service.sign_out(access_token=session.access_token)
    return {"status": "success"}


@app.post("/auth/password-reset")
async def password_reset(email: str = Form("")):
    if not validate_email(email):
        raise _form_errors({"email": "Please enter a valid email address"})
    supabase_service.send_password_reset(email.strip())
    return {"status": "success", "message": "Password reset email sent"}


@app.post("/auth/reauthenticate")
async def reauthenticate(password: str = Form(""), session: Session = Depends(require_session)):
    supabase_service.reauthenticate(session.user.get("email"), password)
    return {"status": "success"}


@app.patch("/auth/email")
async def change_email(
    new_email: str = Form(""),
    password: str = Form(""),
    session: Session = Depends(require_session),
):
    if not validate_email(new_email):
        raise _form_errors({"new_email": "Please enter a valid email address"})
    supabase_service.reauthenticate(session.user.get("email"), password)
    user = supabase_service.update_user_email(session.user_id, new_email.strip())
    try:
        supabase_service.update_user_profile(session.user_id, {"email": new_email.strip()})
    except HTTPException as e:
        logger.warning(f"Email changed but profile not updated for {session.user_id}: {e.detail}")
    return {"status": "success", "user": user}


@app.patch("/auth/password")
async def change_password(
    current_password: str = Form(""),
    new_password: str = Form(""),
    session: Session = Depends(require_session),
):
    check = validate_password(new_password)
    if not check.valid:
        raise _form_errors({"new_password": check.message})
    supabase_service.reauthenticate(session.user.get("email"), current_password)
    supabase_service.update_user_password(session.user_id, new_password)
    return {"status": "success"}


# ==================== PROFILE ====================

@app.get("/profile")
async def get_profile(session: Session = Depends(require_session)):
    session.profile = supabase_service.get_user_profile(session.user_id)
    return {"profile": session.profile, "display_name": session.display_name}


@app.patch("/profile")
async def update_profile(
    display_name: Optional[str] = Form(None),
    phone: Optional[str] = Form(None),
    photo_url: Optional[str] = Form(None),
    session: Session = Depends(require_session),
):
    errors = {}
    if display_name is not None and len(display_name.strip()) < 2:
        errors["display_name"] = "Name must be at least 2 characters"
    if phone and not validate_phone(phone):
        errors["phone"] = "Please enter a valid phone number"
    if errors:
        raise _form_errors(errors)

    changes = {
        key: value.strip() for key, value in {
            "display_name": display_name,
            "phone": phone,
            "photo_url": photo_url,
        }.items() if value is not None
    }
    profile = supabase_service.update_user_profile(session.user_id, changes)
    if "display_name" in changes:
        supabase_service.update_user_metadata(session.user_id, {"display_name": changes["display_name"]})
    return {"profile": profile}


@app.delete("/profile")
async def delete_profile(session: Session = Depends(require_session)):
    supabase_service.delete_user_profile(session.user_id)
    return {"status": "success"}


# ==================== LIVE SESSION ====================

@app.websocket("/ws/directory")
async def directory_socket(websocket: WebSocket):
    """Interactive browsing session: debounced search, filters, modals and
    auth-gated actions for one client."""
    await websocket.accept()
    controller = DirectoryController(directory, websocket.send_json)
    try:
        await controller.start()
        while True:
            message = await websocket.receive_json()
            if not isinstance(message, dict):
                await websocket.send_json({"type": "error", "message": "Messages must be JSON objects"})
                continue
            await controller.handle(message)
    except WebSocketDisconnect:
        logger.info("Directory client disconnected")
    finally:
        controller.close()


# ==================== SERVICE ====================

@app.get("/health")
async def health_check():
    """Basic health and dependency checks for the API."""
    health_start_time = time.time()

    try:
        Config.validate()
        supabase = supabase_service.get_client()
        supabase.table(Config.LISTINGS_TABLE).select('id').limit(1).execute()

        health_duration = time.time() - health_start_time

        return {
            "status": "healthy",
            "service": "servicefinder-api",
            "listings_loaded": len(directory.listings),
            "timestamp": datetime.now().isoformat(),
            "response_time_ms": round(health_duration * 1000, 2)
        }
    except Exception as e:
        health_duration = time.time() - health_start_time
        logger.error(f"Health check failed: {str(e)} - Duration: {health_duration:.1f}s")

        return {
            "status": "unhealthy",
            "service": "servicefinder-api",
            "timestamp": datetime.now().isoformat(),
            "error": str(e),
            "response_time_ms": round(health_duration * 1000, 2)
        }


@app.get("/")
async def root():
    """Return basic API information."""

    return {
        "service": "ServiceFinder API",
        "version": "1.0",
        "endpoints": {
            "listings": "/listings",
            "auth": "/auth",
            "profile": "/profile",
            "live": "/ws/directory",
            "health": "/health"
        },
        "timestamp": datetime.now().isoformat(),
        "description": "Directory of local service providers backed by Supabase"
    }
