import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

import httpx
from fastapi import HTTPException
from supabase import create_client, Client
from supabase_auth.errors import AuthRetryableError

from ..core.config import Config
from ..core.listings import search_listings as filter_by_term
from ..core.validation import validate_image_file, validate_rating


logger = logging.getLogger(__name__)

# Provider error code -> (status, user-facing message)
AUTH_ERRORS: Dict[str, Tuple[int, str]] = {
    'user_already_exists': (409, 'This email is already registered'),
    'email_exists': (409, 'This email is already registered'),
    'email_address_invalid': (400, 'Invalid email address'),
    'validation_failed': (400, 'Invalid email address'),
    'signup_disabled': (403, 'Operation not allowed'),
    'email_provider_disabled': (403, 'Operation not allowed'),
    'weak_password': (400, 'Password is too weak'),
    'user_banned': (403, 'This account has been disabled'),
    'user_not_found': (404, 'No account found with this email'),
    'invalid_credentials': (401, 'Incorrect password'),
    'over_request_rate_limit': (429, 'Too many attempts. Please try again later'),
    'over_email_send_rate_limit': (429, 'Too many attempts. Please try again later'),
    'reauthentication_needed': (401, 'Please log in again to perform this action'),
    'session_expired': (401, 'Please log in again to perform this action'),
}
DEFAULT_AUTH_ERROR = (400, 'An error occurred. Please try again')
NETWORK_ERROR = (503, 'Network error. Please check your connection')

AuthChangeCallback = Callable[[Optional[Dict[str, Any]], Optional[str]], None]


def get_client() -> Client:
    return create_client(Config.SUPABASE_URL, Config.SUPABASE_SERVICE_KEY)


def get_auth_client() -> Client:
    """Client acting on behalf of an end user (anon key, own auth state)."""
    return create_client(Config.SUPABASE_URL, Config.SUPABASE_ANON_KEY)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _rows(result) -> List[Dict[str, Any]]:
    return list(getattr(result, 'data', None) or [])


def auth_error(error: Exception) -> HTTPException:
    """Translate an identity-provider failure into a sanitized HTTPException."""
    if isinstance(error, (httpx.TransportError, AuthRetryableError)):
        status_code, message = NETWORK_ERROR
    else:
        status_code, message = AUTH_ERRORS.get(getattr(error, 'code', None) or '', DEFAULT_AUTH_ERROR)
    return HTTPException(status_code=status_code, detail=message)


def user_to_dict(user: Any) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    if isinstance(user, dict):
        data = user
    else:
        data = {
            'id': getattr(user, 'id', None),
            'email': getattr(user, 'email', None),
            'user_metadata': getattr(user, 'user_metadata', None),
        }
    metadata = data.get('user_metadata') or {}
    return {
        'id': str(data.get('id')),
        'email': data.get('email'),
        'display_name': metadata.get('display_name', ''),
    }


def _auth_payload(response) -> Dict[str, Any]:
    session = getattr(response, 'session', None)
    return {
        'user': user_to_dict(getattr(response, 'user', None)),
        'access_token': getattr(session, 'access_token', None),
        'refresh_token': getattr(session, 'refresh_token', None),
    }


# ==================== AUTH ====================

def sign_in(email: str, password: str, client: Optional[Client] = None) -> Dict[str, Any]:
    try:
        client = client or get_auth_client()
        response = client.auth.sign_in_with_password({'email': email, 'password': password})
        return _auth_payload(response)
    except Exception as e:
        logger.error(f"Sign in error: {e}")
        raise auth_error(e)


def sign_up(
    email: str,
    password: str,
    display_name: str = '',
    phone: str = '',
    photo_url: str = '',
    client: Optional[Client] = None,
) -> Dict[str, Any]:
    """Create the identity and its profile row."""
    try:
        client = client or get_auth_client()
        response = client.auth.sign_up({
            'email': email,
            'password': password,
            'options': {'data': {'display_name': display_name}},
        })
        payload = _auth_payload(response)
    except Exception as e:
        logger.error(f"Sign up error: {e}")
        raise auth_error(e)

    user = payload['user']
    if user is None:
        raise HTTPException(status_code=400, detail=DEFAULT_AUTH_ERROR[1])

    create_user_profile(user['id'], {
        'email': user['email'] or email,
        'display_name': display_name,
        'photo_url': photo_url,
        'phone': phone,
    })
    return payload


def sign_out(access_token: Optional[str] = None, client: Optional[Client] = None) -> None:
    try:
        if client is not None:
            client.auth.sign_out()
        elif access_token:
            get_client().auth.admin.sign_out(access_token)
    except Exception as e:
        logger.error(f"Logout error: {e}")
        raise HTTPException(status_code=500, detail="Failed to log out. Please try again.")


def send_password_reset(email: str) -> None:
    try:
        get_auth_client().auth.reset_password_for_email(email)
    except Exception as e:
        logger.error(f"Password reset error: {e}")
        raise HTTPException(status_code=500, detail="Failed to send password reset email")


def reauthenticate(email: Optional[str], password: str) -> None:
    """Confirm the current password before a sensitive change."""
    if not email:
        raise HTTPException(status_code=401, detail="No user is currently signed in")
    try:
        get_auth_client().auth.sign_in_with_password({'email': email, 'password': password})
    except Exception as e:
        logger.error(f"Re-authentication error: {e}")
        raise HTTPException(status_code=401, detail="Failed to re-authenticate. Please check your password.")


def get_user_from_token(access_token: str) -> Dict[str, Any]:
    try:
        response = get_client().auth.get_user(access_token)
    except Exception as e:
        logger.warning(f"Token verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = user_to_dict(getattr(response, 'user', None))
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user


def _update_auth_user(user_id: str, attributes: Dict[str, Any], failure: str) -> Dict[str, Any]:
    if not user_id:
        raise HTTPException(status_code=401, detail="No user is currently signed in")
    try:
        response = get_client().auth.admin.update_user_by_id(user_id, attributes)
        return user_to_dict(getattr(response, 'user', None)) or {}
    except Exception as e:
        logger.error(f"Update user error for {user_id}: {e}")
        raise HTTPException(status_code=400, detail=failure)


def update_user_metadata(user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    return _update_auth_user(user_id, {'user_metadata': data}, "Failed to update profile")


def update_user_email(user_id: str, new_email: str) -> Dict[str, Any]:
    return _update_auth_user(
        user_id, {'email': new_email},
        "Failed to update email. You may need to re-authenticate.",
    )


def update_user_password(user_id: str, new_password: str) -> Dict[str, Any]:
    return _update_auth_user(
        user_id, {'password': new_password},
        "Failed to update password. You may need to re-authenticate.",
    )


def on_auth_change(client: Client, callback: AuthChangeCallback):
    """Subscribe to identity changes of ``client``.

    ``callback`` receives the current user (or None) and access token on
    every change. The returned subscription exposes ``unsubscribe()``.
    """
    def _handler(event, session) -> None:
        user = user_to_dict(getattr(session, 'user', None)) if session else None
        logger.info(f"Auth state changed: {event}")
        callback(user, getattr(session, 'access_token', None) if session else None)

    return client.auth.on_auth_state_change(_handler)


# ==================== STORAGE ====================

def _infer_storage_path_from_url(url_or_path: str, bucket: str) -> str:
    if '://' not in url_or_path:
        return url_or_path.lstrip('/')
    parsed = urlparse(url_or_path)
    segments = [seg for seg in parsed.path.split('/') if seg]
    try:
        bucket_index = segments.index(bucket)
        relative_segments = segments[bucket_index + 1:]
        if not relative_segments:
            raise ValueError("No object path after bucket")
        return '/'.join(relative_segments)
    except ValueError:
        return parsed.path.lstrip('/')


def _upload_error(upload_result) -> Optional[str]:
    if isinstance(upload_result, dict):
        return upload_result.get('error') or upload_result.get('message')
    if getattr(upload_result, 'error', None):
        return str(upload_result.error)
    status_code = getattr(upload_result, 'status_code', None)
    if isinstance(status_code, int) and status_code >= 400:
        return f"HTTP {status_code}: {getattr(upload_result, 'text', None)}"
    return None


def upload_image(file_bytes: bytes, filename: str, content_type: Optional[str], folder: str = 'services') -> str:
    """Upload an image and return its public URL.

    Type and size are checked before anything is sent.
    """
    if not file_bytes:
        raise HTTPException(status_code=400, detail="No file provided")

    check = validate_image_file(content_type, len(file_bytes))
    if not check.valid:
        raise HTTPException(status_code=400, detail=check.message)

    file_path = f"{folder}/{int(time.time() * 1000)}_{uuid.uuid4().hex[:12]}_{filename}"
    try:
        bucket = get_client().storage.from_(Config.SUPABASE_BUCKET)
        upload_result = bucket.upload(
            path=file_path,
            file=file_bytes,
            file_options={
                "content-type": content_type,
                "cache-control": "3600",
            },
        )
        upload_error = _upload_error(upload_result)
        if upload_error:
            raise RuntimeError(f"Supabase upload error: {upload_error}")

        public_url = bucket.get_public_url(file_path)
        if not public_url or not isinstance(public_url, str):
            raise RuntimeError("Invalid public URL response from Supabase")
        return public_url
    except Exception as e:
        logger.error(f"Error uploading image: {e}")
        raise HTTPException(status_code=500, detail="Failed to upload image")


def upload_images(files: Iterable[Tuple[bytes, str, Optional[str]]], folder: str = 'services') -> List[str]:
    try:
        return [upload_image(data, name, content_type, folder) for data, name, content_type in files]
    except HTTPException as e:
        logger.error(f"Error uploading multiple images: {e.detail}")
        raise HTTPException(status_code=e.status_code, detail="Failed to upload one or more images")


def _is_not_found(error: Exception) -> bool:
    text = str(error).lower()
    return 'not found' in text or '404' in text


def delete_image(image_url: Optional[str]) -> None:
    if not image_url:
        return
    try:
        object_path = _infer_storage_path_from_url(image_url, Config.SUPABASE_BUCKET)
        get_client().storage.from_(Config.SUPABASE_BUCKET).remove([object_path])
    except Exception as e:
        if _is_not_found(e):
            logger.info(f"Image already gone: {image_url}")
            return
        logger.error(f"Error deleting image: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete image")


# ==================== LISTINGS ====================

def _select_listings(failure: str, **filters: Any) -> List[Dict[str, Any]]:
    try:
        query = get_client().table(Config.LISTINGS_TABLE).select('*')
        for column, value in filters.items():
            query = query.eq(column, value)
        result = query.order('created_at', desc=True).execute()
        return _rows(result)
    except Exception as e:
        logger.error(f"Error getting listings {filters}: {e}")
        raise HTTPException(status_code=500, detail=failure)


def get_all_listings() -> List[Dict[str, Any]]:
    return _select_listings("Failed to fetch services")


def get_listings_by_category(category: str) -> List[Dict[str, Any]]:
    return _select_listings("Failed to fetch services", category=category.lower())


def get_listings_by_user(user_id: str) -> List[Dict[str, Any]]:
    return _select_listings("Failed to fetch user services", user_id=user_id)


def get_listings_by_city(city: str) -> List[Dict[str, Any]]:
    return _select_listings("Failed to fetch services", city=city)


def get_top_rated_listings(limit: int = 10) -> List[Dict[str, Any]]:
    try:
        result = (
            get_client()
            .table(Config.LISTINGS_TABLE)
            .select('*')
            .order('rating', desc=True)
            .limit(limit)
            .execute()
        )
        return _rows(result)
    except Exception as e:
        logger.error(f"Error getting top rated listings: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch top rated services")


def get_listing(listing_id: str) -> Dict[str, Any]:
    if not listing_id:
        raise HTTPException(status_code=400, detail="Service ID is required")
    try:
        result = get_client().table(Config.LISTINGS_TABLE).select('*').eq('id', listing_id).execute()
    except Exception as e:
        logger.error(f"Error getting listing {listing_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch service")

    rows = _rows(result)
    if not rows:
        raise HTTPException(status_code=404, detail="Service not found")
    return rows[0]


def add_listing(data: Dict[str, Any], user_id: str) -> str:
    """Insert a listing owned by ``user_id`` and return its id."""
    if not user_id:
        raise HTTPException(status_code=400, detail="User ID is required")

    now = _now()
    record = {
        **data,
        'user_id': user_id,
        'rating': data.get('rating') or 5,
        'category': (data.get('category') or '').lower(),
        'reviews': data.get('reviews') or [],
        'created_at': now,
        'updated_at': now,
    }
    try:
        result = get_client().table(Config.LISTINGS_TABLE).insert(record).execute()
        rows = _rows(result)
        if not rows:
            raise RuntimeError("Insert returned no rows")
        return rows[0]['id']
    except Exception as e:
        logger.error(f"Error adding listing: {e}")
        raise HTTPException(status_code=500, detail="Failed to add service")


def update_listing(listing_id: str, data: Dict[str, Any]) -> List[Dict[str, Any]]:
    if not listing_id:
        raise HTTPException(status_code=400, detail="Service ID is required")

    changes = {k: v for k, v in data.items() if k not in ('id', 'user_id', 'created_at')}
    if 'category' in changes and changes['category']:
        changes['category'] = changes['category'].lower()
    changes['updated_at'] = _now()
    try:
        result = get_client().table(Config.LISTINGS_TABLE).update(changes).eq('id', listing_id).execute()
        return _rows(result)
    except Exception as e:
        logger.error(f"Error updating listing {listing_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update service")


def update_rating(listing_id: str, rating: float) -> None:
    if not listing_id:
        raise HTTPException(status_code=400, detail="Service ID is required")
    if not validate_rating(rating):
        raise HTTPException(status_code=400, detail="Rating must be between 1 and 5")
    try:
        get_client().table(Config.LISTINGS_TABLE).update({
            'rating': rating,
            'updated_at': _now(),
        }).eq('id', listing_id).execute()
    except Exception as e:
        logger.error(f"Error updating rating for {listing_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update rating")


def add_review(listing_id: str, user_id: str, user_name: str, rating: int, comment: str = '') -> List[Dict[str, Any]]:
    """Append a review record to a listing and return the updated reviews."""
    if not validate_rating(rating):
        raise HTTPException(status_code=400, detail="Rating must be between 1 and 5")

    listing = get_listing(listing_id)
    reviews = list(listing.get('reviews') or [])
    reviews.append({
        'user_id': user_id,
        'user_name': user_name,
        'rating': rating,
        'comment': comment,
        'created_at': _now(),
    })
    try:
        get_client().table(Config.LISTINGS_TABLE).update({
            'reviews': reviews,
            'updated_at': _now(),
        }).eq('id', listing_id).execute()
        return reviews
    except Exception as e:
        logger.error(f"Error adding review to {listing_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to submit review")


def delete_listing(listing_id: str) -> None:
    if not listing_id:
        raise HTTPException(status_code=400, detail="Service ID is required")
    try:
        get_client().table(Config.LISTINGS_TABLE).delete().eq('id', listing_id).execute()
    except Exception as e:
        logger.error(f"Error deleting listing {listing_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete service")


def search_listings(term: str) -> List[Dict[str, Any]]:
    # PostgREST has no full-text search; match over the whole collection
    try:
        return filter_by_term(get_all_listings(), term)
    except HTTPException:
        raise HTTPException(status_code=500, detail="Failed to search services")


# ==================== USER PROFILES ====================

def _find_profile(client: Client, uid: str) -> Optional[Dict[str, Any]]:
    result = client.table(Config.PROFILES_TABLE).select('*').eq('uid', uid).limit(1).execute()
    rows = _rows(result)
    return rows[0] if rows else None


def get_user_profile(uid: str) -> Optional[Dict[str, Any]]:
    if not uid:
        raise HTTPException(status_code=400, detail="User ID is required")
    try:
        return _find_profile(get_client(), uid)
    except Exception as e:
        logger.error(f"Error getting user profile {uid}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch user profile")


def create_user_profile(uid: str, data: Dict[str, Any]) -> str:
    if not uid:
        raise HTTPException(status_code=400, detail="User ID is required")
    now = _now()
    try:
        result = get_client().table(Config.PROFILES_TABLE).insert({
            'uid': uid,
            **data,
            'created_at': now,
            'updated_at': now,
        }).execute()
        rows = _rows(result)
        return rows[0]['id'] if rows else ''
    except Exception as e:
        logger.error(f"Error creating user profile {uid}: {e}")
        raise HTTPException(status_code=500, detail="Failed to create user profile")


def update_user_profile(uid: str, data: Dict[str, Any]) -> Dict[str, Any]:
    if not uid:
        raise HTTPException(status_code=400, detail="User ID is required")
    try:
        client = get_client()
        profile = _find_profile(client, uid)
        if profile is None:
            raise HTTPException(status_code=404, detail="User profile not found")

        changes = {k: v for k, v in data.items() if k not in ('id', 'uid', 'created_at')}
        changes['updated_at'] = _now()
        result = client.table(Config.PROFILES_TABLE).update(changes).eq('id', profile['id']).execute()
        rows = _rows(result)
        return rows[0] if rows else {**profile, **changes}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating user profile {uid}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update profile")


def delete_user_profile(uid: str) -> None:
    if not uid:
        raise HTTPException(status_code=400, detail="User ID is required")
    try:
        client = get_client()
        profile = _find_profile(client, uid)
        if profile is not None:
            client.table(Config.PROFILES_TABLE).delete().eq('id', profile['id']).execute()
    except Exception as e:
        logger.error(f"Error deleting user profile {uid}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete profile")
