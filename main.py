"""Flask app entrypoint for Use It Up.

This file wires up the Flask app, per-browser session state and the JSON
endpoints used by the frontend: inventory, credential, recipe search and
recipe detail.
"""

import os
import logging
from datetime import datetime
from flask import Flask, request, jsonify, session
from flask_cors import CORS
from dotenv import load_dotenv
from app_models import APIError, ValidationError, MissingCredentialError
from app_services import SpoonacularService, RecipeFinder, SessionStore

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)
app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev_secret")
# Cross-site front ends need SESSION_COOKIE_SAMESITE=None and SESSION_COOKIE_SECURE=true
app.config["SESSION_COOKIE_SAMESITE"] = os.getenv("SESSION_COOKIE_SAMESITE", "Lax")
app.config["SESSION_COOKIE_SECURE"] = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"

# CORS configuration - session state rides on the cookie, so origins must be explicit
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
    if origin.strip()
]
CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
cors_config = {
    "origins": CORS_ORIGINS,
    "methods": CORS_METHODS,
    "allow_headers": ["Content-Type"],
    "supports_credentials": True,
    "max_age": 3600,
}
CORS(app, resources={r"/api/*": cors_config})

# Initialize services
SPOONACULAR_API_KEY = os.getenv("SPOONACULAR_API_KEY", "")
SPOONACULAR_BASE_URL = os.getenv("SPOONACULAR_BASE_URL", SpoonacularService.BASE_URL)
SPOONACULAR_TIMEOUT = float(os.getenv("SPOONACULAR_TIMEOUT", SpoonacularService.REQUEST_TIMEOUT))

SESSION_TTL = float(os.getenv("SESSION_TTL", SessionStore.SESSION_TTL))
MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", SessionStore.MAX_SESSIONS))

spoonacular_service = SpoonacularService(SPOONACULAR_BASE_URL, SPOONACULAR_TIMEOUT)
session_store = SessionStore(
    lambda: RecipeFinder(spoonacular_service, SPOONACULAR_API_KEY),
    ttl=SESSION_TTL,
    max_sessions=MAX_SESSIONS,
)

start_time = datetime.now()


def get_finder() -> RecipeFinder:
    """Return the state container of the calling browser session."""
    session_id = session.get("sid")
    if not session_id:
        session_id = SessionStore.new_session_id()
        session["sid"] = session_id
    return session_store.get(session_id)


def get_json_field(name):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be JSON", name)
    if name not in data:
        raise ValidationError(f"{name} is required", name)
    value = data[name]
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{name} must be a string", name)
    return value or ""


def state_response(finder, status_code=200, **extra):
    body = {"success": True, **extra, "state": finder.to_dict()}
    return jsonify(body), status_code


# --- STATE ---
@app.route("/api/state", methods=["GET"])
def get_state():
    """Current inventory, credential visibility, results and selected recipe."""
    return state_response(get_finder())


# --- INVENTORY ENDPOINTS ---
@app.route("/api/inventory", methods=["POST"])
def add_inventory_item():
    """
    Add one ingredient.

    Request JSON:
    {"item": "Chicken"}

    201 when the item was added, 200 when the input was blank.
    """
    finder = get_finder()
    item = get_json_field("item")
    added = finder.add_item(item)
    return state_response(finder, 201 if added else 200, added=added)


@app.route("/api/inventory/<path:item>", methods=["DELETE"])
def remove_inventory_item(item):
    finder = get_finder()
    removed = finder.remove_item(item)
    return state_response(finder, removed=removed)


# --- CREDENTIAL ENDPOINTS ---
@app.route("/api/credential", methods=["PUT"])
def save_credential():
    """Store the Spoonacular API key for this session. The key is never echoed back."""
    finder = get_finder()
    api_key = get_json_field("apiKey")
    finder.save_credential(api_key)
    return state_response(finder)


@app.route("/api/credential/form", methods=["POST"])
def show_credential_form():
    finder = get_finder()
    finder.show_credential_form()
    return state_response(finder)


# --- RECIPE ENDPOINTS ---
@app.route("/api/recipes/search", methods=["POST"])
def search_recipes():
    """
    Search Spoonacular for recipes using the session inventory.

    Response (success):
    {
        "success": true,
        "recipe_count": 12,
        "state": {...}
    }
    """
    finder = get_finder()
    recipes = finder.search()
    logger.info(f"Successfully returned {len(recipes)} recipes")
    return state_response(finder, recipe_count=len(recipes))


@app.route("/api/recipes/<int:recipe_id>", methods=["GET"])
def open_recipe(recipe_id):
    finder = get_finder()
    finder.open_recipe(recipe_id)
    return state_response(finder)


@app.route("/api/recipes/selected", methods=["DELETE"])
def close_recipe():
    finder = get_finder()
    finder.close_recipe()
    return state_response(finder)


# --- UTILITY ENDPOINTS ---
@app.route("/health", methods=["GET"])
def health_check():
    """Health check endpoint for deployment monitoring."""
    uptime_seconds = (datetime.now() - start_time).total_seconds()
    return jsonify({
        "status": "ok",
        "uptime_seconds": int(uptime_seconds),
        "timestamp": datetime.now().isoformat()
    }), 200


@app.errorhandler(APIError)
def handle_api_error(e):
    """Translate service errors into JSON, with the session state attached."""
    if e.status_code >= 500:
        logger.error(f"{e.kind}: {e.message}")
    else:
        logger.warning(f"{e.kind}: {e.message}")

    body = {
        "success": False,
        "error": e.message,
        "type": e.kind,
        "state": get_finder().to_dict(),
    }
    if isinstance(e, ValidationError):
        body["field"] = e.field
    if isinstance(e, MissingCredentialError):
        body["showCredentialForm"] = True
    return jsonify(body), e.status_code


@app.errorhandler(404)
def handle_not_found(e):
    """Handle 404 errors."""
    return jsonify({
        "success": False,
        "error": "Endpoint not found"
    }), 404


@app.errorhandler(405)
def handle_method_not_allowed(e):
    return jsonify({
        "success": False,
        "error": "Method not allowed"
    }), 405


@app.errorhandler(500)
def handle_server_error(e):
    """Handle 500 errors."""
    logger.error(f"Server error: {str(e)}")
    return jsonify({
        "success": False,
        "error": "Internal server error",
        "type": "internal_error"
    }), 500


if __name__ == "__main__":
    port = int(os.getenv("PORT", 5001))
    debug = os.getenv("FLASK_ENV", "production") == "development"

    logger.info(f"Starting Flask app on port {port} (debug={debug})")
    logger.info(f"CORS allowed origins: {', '.join(CORS_ORIGINS) or 'none'}")
    logger.info(f"Default Spoonacular API key: {'configured' if SPOONACULAR_API_KEY else 'NOT SET'}")

    app.run(host="0.0.0.0", port=port, debug=debug)
