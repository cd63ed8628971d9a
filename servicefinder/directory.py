"""Interactive directory session.

One ``DirectoryController`` backs one connected client. It owns that
client's ``Session``, modal flags, browsing criteria and debounced search,
and turns incoming intents into outgoing events.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fastapi import HTTPException

from .core.config import Config
from .core.debounce import DebouncedSearch
from .core.listings import ListingBrowser, ListingDirectory, listing_card
from .core.session import ModalName, Modals, Session, require_auth
from .core.validation import validate_rating, validate_sign_in_form
from .services import listing_service, supabase_service


logger = logging.getLogger(__name__)

Send = Callable[[Dict[str, Any]], Awaitable[None]]

GENERIC_ERROR = "An error occurred. Please try again"
TEXT_CRITERIA = ("search", "category", "city")


def _filter_changes(message: Dict[str, Any]) -> Dict[str, Any]:
    """Criteria present in a ``filter`` message, checked and coerced."""
    changes: Dict[str, Any] = {}
    for key in TEXT_CRITERIA:
        if key in message:
            if not isinstance(message[key], str):
                raise HTTPException(status_code=400, detail=f"Invalid {key} filter")
            changes[key] = message[key]

    if "min_rating" in message:
        value = message["min_rating"]
        try:
            if isinstance(value, bool):
                raise ValueError(value)
            rating = float(value or 0)
        except (TypeError, ValueError):
            raise HTTPException(status_code=400, detail="Invalid minimum rating")
        if not 0 <= rating <= 5:
            raise HTTPException(status_code=400, detail="Invalid minimum rating")
        changes["min_rating"] = rating

    if "sort" in message:
        changes["sort"] = message["sort"]
    return changes


def _page_number(value: Any) -> int:
    if value is None or value == "":
        return 1
    if isinstance(value, bool):
        raise HTTPException(status_code=400, detail="Invalid page number")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid page number")


class DirectoryController:
    def __init__(
        self,
        directory: ListingDirectory,
        send: Send,
        page_size: int = Config.PAGE_SIZE,
        search_delay: float = Config.debounce_seconds(),
    ):
        self.directory = directory
        self._send = send
        self.session = Session()
        self.modals = Modals()
        self.browser = ListingBrowser(directory, page_size=page_size)
        self.search = DebouncedSearch(lambda: self.directory.listings, self._on_search_results, delay=search_delay)
        self._auth_client = None
        self._subscription = None
        self._tasks: List[asyncio.Task] = []
        self._reloading = False
        self._unsubscribe_reload = directory.subscribe(self._on_reload)

        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[None]]] = {
            "search": self._search,
            "filter": self._filter,
            "page": self._page,
            "contact": self._contact,
            "rate": self._rate,
            "submit_rating": self._submit_rating,
            "add_listing": self._add_listing,
            "close_modal": self._close_modal,
            "sign_in": self._sign_in,
            "sign_out": self._sign_out,
        }

    async def start(self) -> None:
        await self._emit_session()
        await self._emit_results()

    async def handle(self, message: Dict[str, Any]) -> None:
        kind = message.get("type")
        handler = self._handlers.get(kind) if isinstance(kind, str) else None
        if handler is None:
            await self._send({"type": "error", "message": f"Unknown message type: {kind}"})
            return
        try:
            await handler(message)
        except HTTPException as e:
            logger.error(f"{kind} failed ({e.status_code}): {e.detail}")
            await self._send({"type": "error", "action": kind, "message": e.detail})
        except Exception as e:
            logger.error(f"Unexpected error handling {kind}: {e}", exc_info=True)
            await self._send({"type": "error", "action": kind, "message": GENERIC_ERROR})

    def close(self) -> None:
        self.search.close()
        self.browser.close()
        self._unsubscribe_reload()
        for task in self._tasks:
            task.cancel()
        self._unsubscribe()
        self.session.clear()

    # -- events --

    async def _emit_results(self) -> None:
        await self._send({
            "type": "results",
            "filters": {
                "search": self.browser.filters.search,
                "category": self.browser.filters.category,
                "city": self.browser.filters.city,
                "min_rating": self.browser.filters.min_rating,
                "sort": self.browser.filters.sort.value,
            },
            "items": [listing_card(item) for item in self.browser.paginator.items],
            "pagination": self.browser.paginator.to_dict(),
        })

    async def _emit_modal(self, name: ModalName) -> None:
        event = {"type": "modal", "name": name.value, "open": self.modals.is_open(name)}
        if name == ModalName.RATE_LISTING and self.modals.selected_listing:
            event["listing_id"] = self.modals.selected_listing.get("id")
        await self._send(event)

    async def _emit_session(self) -> None:
        await self._send({"type": "session", **self.session.to_dict()})

    def _on_search_results(self, results: List[Dict[str, Any]]) -> None:
        event = {
            "type": "search_results",
            "term": self.search.term,
            "items": [listing_card(item) for item in results],
        }
        if self.search.error:
            event["error"] = self.search.error
        self._schedule(self._send(event))

    def _on_reload(self, listings: List[Dict[str, Any]]) -> None:
        # The browser has already reset to page 1; tell the client
        if not self._reloading:
            self._schedule(self._emit_results())

    def _schedule(self, coro: Awaitable[None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks = [t for t in self._tasks if not t.done()] + [task]

    # -- browsing --

    async def _search(self, message: Dict[str, Any]) -> None:
        term = message.get("term") or ""
        if not isinstance(term, str):
            raise HTTPException(status_code=400, detail="Invalid search term")
        if message.get("clear"):
            self.search.clear()
            return
        self.search.set_term(term)

    async def _filter(self, message: Dict[str, Any]) -> None:
        changes = _filter_changes(message)
        try:
            self.browser.update(**changes)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid sort option")
        await self._emit_results()

    async def _page(self, message: Dict[str, Any]) -> None:
        action = message.get("action")
        if action == "next":
            self.browser.paginator.next_page()
        elif action == "previous":
            self.browser.paginator.previous_page()
        else:
            self.browser.paginator.go_to(_page_number(message.get("page")))
        await self._emit_results()

    def _listing(self, message: Dict[str, Any]) -> Dict[str, Any]:
        listing = self.directory.get(message.get("listing_id") or "")
        if listing is None:
            raise HTTPException(status_code=404, detail="Service not found")
        return listing

    # -- gated actions --

    async def _gate(self) -> bool:
        if require_auth(self.session, self.modals):
            return True
        await self._emit_modal(ModalName.AUTH)
        return False

    async def _contact(self, message: Dict[str, Any]) -> None:
        if not await self._gate():
            return
        listing = self._listing(message)
        await self._send({
            "type": "contact",
            "listing_id": listing.get("id"),
            "name": listing.get("name"),
            "phone": listing.get("phone"),
            "email": listing.get("email"),
        })

    async def _rate(self, message: Dict[str, Any]) -> None:
        if not await self._gate():
            return
        self.modals.selected_listing = self._listing(message)
        self.modals.open(ModalName.RATE_LISTING)
        await self._emit_modal(ModalName.RATE_LISTING)

    async def _submit_rating(self, message: Dict[str, Any]) -> None:
        listing = self.modals.selected_listing
        if not self.modals.is_open(ModalName.RATE_LISTING) or listing is None:
            raise HTTPException(status_code=400, detail="No service selected for rating")
        if not await self._gate():
            return

        rating = message.get("rating", 5)
        if not validate_rating(rating):
            raise HTTPException(status_code=400, detail="Rating must be between 1 and 5")

        listing_service.rate_listing(
            listing["id"], rating,
            user_id=self.session.user_id,
            user_name=self.session.display_name,
            comment=message.get("comment") or "",
        )
        self.modals.close(ModalName.RATE_LISTING)
        await self._send({"type": "notice", "message": "Thank you for your rating!"})
        await self._emit_modal(ModalName.RATE_LISTING)
        self._reloading = True
        try:
            self.directory.refetch()
        finally:
            self._reloading = False
        await self._emit_results()

    async def _add_listing(self, message: Dict[str, Any]) -> None:
        if not await self._gate():
            return
        self.modals.open(ModalName.ADD_LISTING)
        await self._emit_modal(ModalName.ADD_LISTING)

    async def _close_modal(self, message: Dict[str, Any]) -> None:
        try:
            name = ModalName(message.get("name"))
        except ValueError:
            raise HTTPException(status_code=400, detail="Unknown modal")
        self.modals.close(name)
        await self._emit_modal(name)

    # -- identity --

    def _on_auth_change(self, user: Optional[Dict[str, Any]], access_token: Optional[str]) -> None:
        self.session.update(user, access_token)

    def _unsubscribe(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._auth_client = None

    async def _sign_in(self, message: Dict[str, Any]) -> None:
        form = {"email": message.get("email"), "password": message.get("password")}
        validation = validate_sign_in_form(form)
        if not validation.valid:
            await self._send({"type": "error", "action": "sign_in", "errors": validation.errors})
            return

        self._unsubscribe()
        self._auth_client = supabase_service.get_auth_client()
        self._subscription = supabase_service.on_auth_change(self._auth_client, self._on_auth_change)
        try:
            payload = supabase_service.sign_in(form["email"], form["password"], client=self._auth_client)
        except HTTPException:
            self._unsubscribe()
            raise

        self.session.update(payload["user"], payload["access_token"])
        try:
            self.session.profile = supabase_service.get_user_profile(self.session.user_id)
        except HTTPException as e:
            logger.error(f"Error fetching user profile: {e.detail}")

        self.modals.close(ModalName.AUTH)
        await self._emit_session()
        await self._emit_modal(ModalName.AUTH)

    async def _sign_out(self, message: Dict[str, Any]) -> None:
        if self._auth_client is not None:
            supabase_service.sign_out(client=self._auth_client)
        self._unsubscribe()
        self.session.clear()
        await self._emit_session()
