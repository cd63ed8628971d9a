import logging
from typing import Any, Dict, Optional

from fastapi import HTTPException

from ..core.validation import sanitize_input, validate_service_form
from . import supabase_service


logger = logging.getLogger(__name__)

LISTING_FIELDS = ('name', 'category', 'description', 'phone', 'email', 'city')


def invalid_form(errors: Dict[str, str]) -> HTTPException:
    return HTTPException(status_code=422, detail={"message": "Please fix the highlighted fields", "errors": errors})


def clean_listing_form(form: Dict[str, Any]) -> Dict[str, Any]:
    return {key: sanitize_input(form.get(key)) for key in LISTING_FIELDS if form.get(key) is not None}


def publish_listing(
    form: Dict[str, Any],
    user_id: str,
    image: Optional[bytes] = None,
    image_name: str = '',
    image_type: Optional[str] = None,
) -> Dict[str, Any]:
    """Validate, upload the image, then create the listing that references it.

    The upload finishes before the record is written. If the record write
    fails the uploaded image is removed again.
    """
    validation = validate_service_form(form)
    if not validation.valid:
        raise invalid_form(validation.errors)

    data = clean_listing_form(form)
    image_url = ''
    if image:
        image_url = supabase_service.upload_image(image, image_name or 'image', image_type, folder='services')

    try:
        listing_id = supabase_service.add_listing({**data, 'image': image_url}, user_id)
    except HTTPException:
        if image_url:
            try:
                supabase_service.delete_image(image_url)
            except HTTPException as cleanup_error:
                logger.warning(f"Orphaned image {image_url} left after failed listing insert: {cleanup_error.detail}")
        raise

    logger.info(f"Listing {listing_id} created by {user_id}")
    return {'id': listing_id, 'image': image_url}


def rate_listing(listing_id: str, rating: int, user_id: str, user_name: str, comment: str = '') -> Dict[str, Any]:
    """Store the new rating and record it as a review."""
    supabase_service.update_rating(listing_id, rating)
    reviews = supabase_service.add_review(listing_id, user_id, user_name, rating, sanitize_input(comment))
    return {'id': listing_id, 'rating': rating, 'reviews': reviews}


def remove_listing(listing_id: str, user_id: str) -> None:
    listing = supabase_service.get_listing(listing_id)
    if listing.get('user_id') != user_id:
        raise HTTPException(status_code=403, detail="You don't have permission to modify this service")
    supabase_service.delete_listing(listing_id)
    if listing.get('image'):
        try:
            supabase_service.delete_image(listing['image'])
        except HTTPException as e:
            logger.warning(f"Listing {listing_id} deleted but image cleanup failed: {e.detail}")


def edit_listing(listing_id: str, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    listing = supabase_service.get_listing(listing_id)
    if listing.get('user_id') != user_id:
        raise HTTPException(status_code=403, detail="You don't have permission to modify this service")

    merged = {**listing, **changes}
    validation = validate_service_form(merged)
    if not validation.valid:
        raise invalid_form(validation.errors)

    rows = supabase_service.update_listing(listing_id, clean_listing_form(changes))
    return rows[0] if rows else {**listing, **changes}
