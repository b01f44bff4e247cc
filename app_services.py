"""
Service layer for external API calls and session state.
Handles Spoonacular lookups, instruction sanitizing and the per-session recipe finder.
"""

import logging
import threading
import time
import uuid
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional

import requests
from bs4 import BeautifulSoup, Comment

from app_models import (
    Credential, Inventory, Message, RecipeDetail, RecipeSummary, SearchStatus,
    APIError, DetailFetchFailedError, EmptyInventoryError, ExternalAPIError,
    InvalidCredentialError, MissingCredentialError, NetworkError, QuotaExceededError,
    SearchInProgressError, UpstreamError, EMPTY_RESULT_MESSAGE,
)

logger = logging.getLogger(__name__)

ALLOWED_INSTRUCTION_TAGS = {"p", "ol", "ul", "li", "b", "strong", "i", "em", "br", "span", "div"}
DROPPED_INSTRUCTION_TAGS = ["script", "style", "iframe", "object", "embed", "template"]


def sanitize_instructions(markup: Optional[str]) -> Optional[str]:
    """
    Reduce upstream instruction markup to plain formatting tags.

    Tags outside the allow-list are unwrapped (their text is kept), script-like
    tags are removed with their content and every attribute is stripped.

    Args:
        markup: Raw `instructions` value from Spoonacular

    Returns:
        Sanitized markup, or None when nothing is left
    """
    if not markup:
        return None

    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup.find_all(DROPPED_INSTRUCTION_TAGS):
        tag.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    for tag in soup.find_all(True):
        if tag.name in ALLOWED_INSTRUCTION_TAGS:
            tag.attrs = {}
        else:
            tag.unwrap()

    cleaned = str(soup).strip()
    return cleaned or None


class SpoonacularService:
    """Handle all Spoonacular API calls."""

    BASE_URL = "https://api.spoonacular.com"
    REQUEST_TIMEOUT = 10
    SEARCH_RESULT_COUNT = 12
    SEARCH_RANKING = 1  # maximize used ingredients

    def __init__(self, base_url: str = None, timeout: float = None):
        """Initialize Spoonacular service."""
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else self.REQUEST_TIMEOUT

    def _get(self, path: str, params: Dict[str, Any]) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            return requests.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.error(f"Spoonacular request to {path} failed: {str(e)}")
            raise NetworkError(f"Could not reach Spoonacular: {str(e)}")

    def search_recipes_by_ingredients(
        self,
        ingredients: str,
        api_key: str,
        number: int = SEARCH_RESULT_COUNT,
        ranking: int = SEARCH_RANKING,
    ) -> List[RecipeSummary]:
        """
        Search recipes by ingredients.

        Pantry staples are not ignored. The ingredient string is percent-encoded
        by requests, commas included.

        Args:
            ingredients: Comma-separated ingredient list
            api_key: Spoonacular API key of the session
            number: Number of recipes to return
            ranking: 1 = maximize used ingredients, 2 = minimize missing

        Returns:
            List of RecipeSummary, possibly empty

        Raises:
            InvalidCredentialError: On HTTP 401
            QuotaExceededError: On HTTP 402
            UpstreamError: On any other non-success status
            NetworkError: If no usable response arrived
        """
        params = {
            "apiKey": api_key,
            "ingredients": ingredients,
            "number": number,
            "ranking": ranking,
            "ignorePantry": "false",
        }
        response = self._get("/recipes/findByIngredients", params)

        if not response.ok:
            logger.warning(f"Spoonacular search returned {response.status_code} {response.reason}")
            if response.status_code == 401:
                raise InvalidCredentialError()
            if response.status_code == 402:
                raise QuotaExceededError()
            raise UpstreamError(response.status_code, response.reason)

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Spoonacular search returned invalid JSON: {str(e)}")
            raise NetworkError(f"Invalid response from Spoonacular: {str(e)}")

        if not isinstance(data, list):
            raise ExternalAPIError("Unexpected response from Spoonacular: expected a list of recipes")

        recipes = []
        for entry in data:
            try:
                recipes.append(RecipeSummary.from_spoonacular(entry))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed recipe entry: {str(e)}")

        logger.info(f"Spoonacular found {len(recipes)} recipes")
        return recipes

    def get_recipe_information(self, recipe_id: int, api_key: str) -> RecipeDetail:
        """
        Get detailed information for a recipe, without nutrition.

        Args:
            recipe_id: Spoonacular recipe ID
            api_key: Spoonacular API key of the session

        Returns:
            RecipeDetail with sanitized instructions

        Raises:
            ExternalAPIError: If the lookup fails for any reason
        """
        params = {
            "apiKey": api_key,
            "includeNutrition": "false",
        }
        response = self._get(f"/recipes/{recipe_id}/information", params)

        if not response.ok:
            logger.error(f"Spoonacular info error for recipe {recipe_id}: {response.status_code}")
            raise ExternalAPIError("Failed to load recipe details")

        try:
            detail = RecipeDetail.from_spoonacular(response.json(), recipe_id)
            detail.instructions = sanitize_instructions(detail.instructions)
        except (TypeError, ValueError) as e:
            logger.error(f"Spoonacular info payload for recipe {recipe_id} unusable: {str(e)}")
            raise ExternalAPIError(f"Invalid recipe details: {str(e)}")

        return detail


class RecipeFinder:
    """
    State container for one user session.

    Owns the inventory, the credential, the last search result and the selected
    recipe. Search moves through IDLE -> SEARCHING -> SUCCESS | FAILED; a second
    search while one is running is rejected.
    """

    def __init__(self, spoonacular_service: SpoonacularService, default_api_key: str = ""):
        self.spoonacular = spoonacular_service
        self.inventory = Inventory()
        self.credential = Credential()
        if default_api_key:
            self.credential.save(default_api_key)
        self.results: List[RecipeSummary] = []
        self.selected_recipe: Optional[RecipeDetail] = None
        self.status = SearchStatus.IDLE
        self.message: Optional[Message] = None
        self._lock = threading.Lock()

    @property
    def loading(self) -> bool:
        return self.status is SearchStatus.SEARCHING

    # --- inventory ---
    def add_item(self, raw: Any) -> bool:
        with self._lock:
            added = self.inventory.add_item(raw)
        if added:
            logger.info(f"Inventory now holds {len(self.inventory)} items")
        return added

    def remove_item(self, item: str) -> bool:
        with self._lock:
            return self.inventory.remove_item(item)

    # --- credential ---
    def save_credential(self, api_key: Any) -> bool:
        with self._lock:
            hidden = self.credential.save(api_key)
            if hidden:
                self.message = None
        return hidden

    def show_credential_form(self) -> None:
        with self._lock:
            self.credential.show_form()

    # --- search ---
    def _fail(self, error: APIError) -> None:
        self.status = SearchStatus.FAILED
        self.message = Message(error.message)

    def search(self) -> List[RecipeSummary]:
        """
        Run a findByIngredients search for the current inventory.

        Returns:
            The new result list (also stored on the finder)

        Raises:
            SearchInProgressError: If this session already has a search running
            EmptyInventoryError: If the inventory is empty
            MissingCredentialError: If no API key was entered
            ExternalAPIError: If Spoonacular rejected the request or was unreachable
        """
        with self._lock:
            if self.status is SearchStatus.SEARCHING:
                raise SearchInProgressError()
            self.status = SearchStatus.IDLE

            if not len(self.inventory):
                error = EmptyInventoryError()
                self._fail(error)
                raise error
            if not self.credential.is_set:
                error = MissingCredentialError()
                self._fail(error)
                self.credential.show_form()
                raise error

            ingredients = self.inventory.query_string()
            api_key = self.credential.api_key.strip()
            self.status = SearchStatus.SEARCHING
            self.message = None
            self.results = []

        logger.info(f"Searching recipes for {ingredients}")
        try:
            recipes = self.spoonacular.search_recipes_by_ingredients(ingredients, api_key)
        except APIError as e:
            with self._lock:
                self._fail(e)
            raise
        except Exception:
            with self._lock:
                self.status = SearchStatus.FAILED
                self.message = Message("Unexpected error while searching for recipes")
            raise

        with self._lock:
            self.results = recipes
            self.status = SearchStatus.SUCCESS
            if not recipes:
                self.message = Message(EMPTY_RESULT_MESSAGE, level="info")
        return recipes

    # --- detail ---
    def open_recipe(self, recipe_id: int) -> RecipeDetail:
        """
        Fetch one recipe and make it the selected recipe.

        Raises:
            DetailFetchFailedError: On any failure; the previous selection stays
        """
        try:
            detail = self.spoonacular.get_recipe_information(recipe_id, self.credential.api_key.strip())
        except ExternalAPIError as e:
            logger.warning(f"Could not open recipe {recipe_id}: {e.message}")
            raise DetailFetchFailedError(e.message)

        with self._lock:
            self.selected_recipe = detail
        return detail

    def close_recipe(self) -> None:
        with self._lock:
            self.selected_recipe = None

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot of the session state for JSON responses."""
        with self._lock:
            return {
                "inventory": self.inventory.to_dict(),
                "credential": self.credential.to_dict(),
                "status": self.status.value,
                "loading": self.loading,
                "message": self.message.to_dict() if self.message else None,
                "results": [r.to_dict() for r in self.results],
                "stats": {
                    "ingredients": len(self.inventory),
                    "recipes": len(self.results),
                },
                "selectedRecipe": self.selected_recipe.to_dict() if self.selected_recipe else None,
            }


class SessionStore:
    """
    In-memory map of session id to RecipeFinder. Nothing is persisted.

    Sessions idle for longer than `ttl` seconds are dropped, and when more than
    `max_sessions` are held the least recently used ones are evicted.
    """

    SESSION_TTL = 3600
    MAX_SESSIONS = 1000

    def __init__(
        self,
        finder_factory: Callable[[], RecipeFinder],
        ttl: float = SESSION_TTL,
        max_sessions: int = MAX_SESSIONS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = finder_factory
        self._sessions: "OrderedDict[str, RecipeFinder]" = OrderedDict()
        self._last_seen: Dict[str, float] = {}
        self.ttl = ttl
        self.max_sessions = max_sessions
        self._clock = clock
        self._lock = threading.Lock()

    @staticmethod
    def new_session_id() -> str:
        return uuid.uuid4().hex

    def _drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._last_seen.pop(session_id, None)

    def _prune(self, now: float) -> None:
        # Oldest access first, so expiry stops at the first live session.
        for session_id in list(self._sessions):
            if now - self._last_seen[session_id] <= self.ttl:
                break
            self._drop(session_id)
            logger.info(f"Expired idle session {session_id[:8]}")
        while len(self._sessions) > self.max_sessions:
            session_id = next(iter(self._sessions))
            self._drop(session_id)
            logger.info(f"Evicted session {session_id[:8]} to stay under {self.max_sessions}")

    def get(self, session_id: str) -> RecipeFinder:
        """Return the finder for a session, creating it on first use."""
        with self._lock:
            now = self._clock()
            self._prune(now)
            finder = self._sessions.get(session_id)
            if finder is None:
                finder = self._factory()
                self._sessions[session_id] = finder
                logger.info(f"Started session {session_id[:8]}")
            else:
                self._sessions.move_to_end(session_id)
            self._last_seen[session_id] = now
            self._prune(now)
            return finder

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._last_seen.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
