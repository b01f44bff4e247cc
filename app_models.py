"""
Data models and validation for the Use It Up recipe finder.
Holds the session state types, Spoonacular payload parsing and the error taxonomy.
"""

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any


class APIError(Exception):
    """Base exception for API errors."""
    kind = "api_error"

    def __init__(self, message: str, status_code: int = 500):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ValidationError(APIError):
    """Raised when a request body is missing a field or has the wrong type."""
    kind = "validation_error"

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message, 400)


class DuplicateItemError(APIError):
    kind = "duplicate_item"

    def __init__(self, item: str):
        self.item = item
        super().__init__("This item is already in your inventory!", 409)


class EmptyInventoryError(APIError):
    kind = "empty_inventory"

    def __init__(self):
        super().__init__("Please add at least one ingredient to your inventory!", 400)


class MissingCredentialError(APIError):
    kind = "missing_credential"

    def __init__(self):
        super().__init__("Please enter your Spoonacular API key!", 400)


class SearchInProgressError(APIError):
    kind = "search_in_progress"

    def __init__(self):
        super().__init__("A recipe search is already running. Please wait for it to finish.", 409)


class ExternalAPIError(APIError):
    """Exception for Spoonacular failures."""
    kind = "external_api_error"

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message, status_code)


class InvalidCredentialError(ExternalAPIError):
    kind = "invalid_credential"

    def __init__(self):
        super().__init__("Invalid API key. Please check your Spoonacular API key.", 401)


class QuotaExceededError(ExternalAPIError):
    kind = "quota_exceeded"

    def __init__(self):
        super().__init__("API quota exceeded. Please check your Spoonacular account.", 402)


class UpstreamError(ExternalAPIError):
    """Any other non-success status from Spoonacular."""
    kind = "upstream_error"

    def __init__(self, upstream_status: int, reason: str = ""):
        self.upstream_status = upstream_status
        self.reason = reason or ""
        super().__init__(f"Error: {upstream_status} - {self.reason}")


class NetworkError(ExternalAPIError):
    """The request never produced a usable response (connection, timeout, bad JSON)."""
    kind = "network_error"


class DetailFetchFailedError(ExternalAPIError):
    kind = "detail_fetch_failed"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Error loading recipe details: {reason}")


class SearchStatus(enum.Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class Message:
    """The single visible message of the search panel."""
    text: str
    level: str = "error"

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "level": self.level}


EMPTY_RESULT_MESSAGE = "No recipes found with these ingredients. Try adding more items!"


@dataclass
class Inventory:
    """Ordered list of distinct, trimmed, lower-cased ingredient names."""
    items: List[str] = field(default_factory=list)

    @staticmethod
    def normalize(raw: Any) -> str:
        return str(raw or "").strip().lower()

    def add_item(self, raw: Any) -> bool:
        """
        Add an ingredient to the inventory.

        Args:
            raw: Ingredient as typed by the user

        Returns:
            True if the item was appended, False if the input was blank

        Raises:
            DuplicateItemError: If the normalized item is already present
        """
        item = self.normalize(raw)
        if not item:
            return False
        if item in self.items:
            raise DuplicateItemError(item)
        self.items.append(item)
        return True

    def remove_item(self, item: str) -> bool:
        """Remove the exact matching entry. Returns False if it was not there."""
        if item not in self.items:
            return False
        self.items.remove(item)
        return True

    def query_string(self) -> str:
        """Comma-joined ingredient list as Spoonacular expects it."""
        return ",".join(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __contains__(self, item: str) -> bool:
        return item in self.items

    def to_dict(self) -> Dict[str, Any]:
        return {"items": list(self.items), "count": len(self.items)}


@dataclass
class Credential:
    """User supplied Spoonacular API key, kept in memory only."""
    api_key: str = ""
    form_visible: bool = True

    @property
    def is_set(self) -> bool:
        return bool(self.api_key.strip())

    def save(self, api_key: Any) -> bool:
        """
        Store the key and hide the entry form when it is non-empty.

        Returns:
            True if the form was hidden
        """
        self.api_key = str(api_key or "")
        if self.is_set:
            self.form_visible = False
            return True
        return False

    def show_form(self) -> None:
        self.form_visible = True

    def to_dict(self) -> Dict[str, Any]:
        # Never echo the key back.
        return {"isSet": self.is_set, "formVisible": self.form_visible}


def _ingredient_names(entries: Any) -> List[str]:
    if not isinstance(entries, list):
        return []
    return [str(i.get("name") or "") for i in entries if isinstance(i, dict)]


@dataclass
class RecipeSummary:
    """One entry of a findByIngredients result."""
    id: int
    title: str
    image: str
    used_ingredient_count: int = 0
    missed_ingredient_count: int = 0
    used_ingredients: List[str] = field(default_factory=list)
    missed_ingredients: List[str] = field(default_factory=list)

    @property
    def total_ingredient_count(self) -> int:
        return self.used_ingredient_count + self.missed_ingredient_count

    @property
    def match_label(self) -> str:
        return f"{self.used_ingredient_count}/{self.total_ingredient_count} Match"

    @staticmethod
    def from_spoonacular(data: Dict[str, Any]) -> "RecipeSummary":
        """
        Build a summary from a raw findByIngredients entry.

        Args:
            data: One object of the Spoonacular response array

        Returns:
            RecipeSummary

        Raises:
            ValueError: If the entry is not an object or has no id
        """
        if not isinstance(data, dict) or data.get("id") is None:
            raise ValueError("recipe summary without id")
        return RecipeSummary(
            id=int(data["id"]),
            title=data.get("title") or "",
            image=data.get("image") or "",
            used_ingredient_count=int(data.get("usedIngredientCount") or 0),
            missed_ingredient_count=int(data.get("missedIngredientCount") or 0),
            used_ingredients=_ingredient_names(data.get("usedIngredients")),
            missed_ingredients=_ingredient_names(data.get("missedIngredients")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "id": self.id,
            "title": self.title,
            "image": self.image,
            "usedIngredientCount": self.used_ingredient_count,
            "missedIngredientCount": self.missed_ingredient_count,
            "totalIngredientCount": self.total_ingredient_count,
            "matchLabel": self.match_label,
            "usedIngredients": self.used_ingredients,
            "missedIngredients": self.missed_ingredients,
        }


INSTRUCTIONS_FALLBACK = "<p>Instructions not available.</p>"


@dataclass
class RecipeDetail:
    """Full record of one recipe, fetched when the user opens it."""
    id: int
    title: str
    image: str
    ready_in_minutes: Optional[int] = None
    servings: Optional[int] = None
    ingredients: List[str] = field(default_factory=list)
    instructions: Optional[str] = None

    @property
    def ingredient_count(self) -> int:
        return len(self.ingredients)

    @property
    def instructions_html(self) -> str:
        return self.instructions or INSTRUCTIONS_FALLBACK

    @staticmethod
    def from_spoonacular(data: Dict[str, Any], recipe_id: int = None) -> "RecipeDetail":
        """
        Build a detail record from the recipe information endpoint.

        Instructions are stored as received; callers sanitize them first.

        Args:
            data: Raw Spoonacular recipe information object
            recipe_id: Id used for the lookup, used when the body has none

        Returns:
            RecipeDetail

        Raises:
            ValueError: If the payload is not an object
        """
        if not isinstance(data, dict):
            raise ValueError("recipe information is not an object")
        instructions = data.get("instructions")
        return RecipeDetail(
            id=int(data.get("id") if data.get("id") is not None else recipe_id),
            title=data.get("title") or "",
            image=data.get("image") or "",
            ready_in_minutes=data.get("readyInMinutes"),
            servings=data.get("servings"),
            ingredients=[
                i.get("original", "")
                for i in data.get("extendedIngredients") or []
                if isinstance(i, dict)
            ],
            instructions=instructions if isinstance(instructions, str) and instructions else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response."""
        return {
            "id": self.id,
            "title": self.title,
            "image": self.image,
            "readyInMinutes": self.ready_in_minutes,
            "servings": self.servings,
            "ingredientCount": self.ingredient_count,
            "ingredients": self.ingredients,
            "instructions": self.instructions_html,
        }
