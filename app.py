from __future__ import annotations
from typing import Any, Dict, Tuple
from flask import Flask, Response, jsonify, request as http_request
import asyncio, logging
from concepts import Feedback, RestaurantMenu, UserAuthentication, UserTastePreferences, Sessioning, Requesting
from config import DEFAULT_CONFIG, AppConfig
from engine import Engine, SyncEvaluationError, UnknownActionError
from sync import make_syncs

logger = logging.getLogger(__name__)

# ====== Routes ======

# Called directly on the concept, no syncs involved. route -> why it is public
PASSTHROUGH_INCLUSIONS: Dict[str, str] = {
    "/api/Feedback/_getFeedback": "feedback is public",
    "/api/Feedback/_getAllUserRatings": "feedback is public",
    "/api/RestaurantMenu/_getMenuItems": "menu is public",
    "/api/RestaurantMenu/_getMenuItemDetails": "menu is public",
    "/api/RestaurantMenu/_getRecommendation": "recommendation is public",
    "/api/UserAuthentication/_getUsername": "usernames are public",
    "/api/UserTastePreferences/_getLikedDishes": "liked dishes are public",
    "/api/UserTastePreferences/_getDislikedDishes": "disliked dishes are public",
}

# Routed through Requesting.request and answered by syncs
PASSTHROUGH_EXCLUSIONS = [
    "/api/Feedback/submitFeedback",
    "/api/Feedback/updateFeedback",
    "/api/Feedback/deleteFeedback",
    "/api/RestaurantMenu/addMenuItem",
    "/api/RestaurantMenu/updateMenuItem",
    "/api/RestaurantMenu/removeMenuItem",
    "/api/UserAuthentication/register",
    "/api/UserAuthentication/authenticate",
    "/api/UserTastePreferences/addLikedDish",
    "/api/UserTastePreferences/removeLikedDish",
    "/api/UserTastePreferences/addDislikedDish",
    "/api/UserTastePreferences/removeDislikedDish",
    "/api/Sessioning/_getUser",
    "/api/logout",
    "/api/recommendation",
]

# ====== Build & Run ======

def build_engine(config: AppConfig = DEFAULT_CONFIG) -> Engine:
    eng = Engine(logging_level=config.logging_level, max_passes=config.max_passes)
    eng.register_concept(Feedback("Feedback"))
    eng.register_concept(RestaurantMenu("RestaurantMenu"))
    eng.register_concept(UserAuthentication("UserAuthentication"))
    eng.register_concept(UserTastePreferences("UserTastePreferences"))
    eng.register_concept(Sessioning("Sessioning"))
    eng.register_concept(Requesting("Requesting"))
    eng.register(make_syncs())
    return eng

def _error(message: str, status: int) -> Tuple[Response, int]:
    return jsonify({"error": message}), status

def make_app(eng: Engine, config: AppConfig = DEFAULT_CONFIG) -> Flask:
    app = Flask(__name__)
    base = config.base_url.rstrip("/")
    inclusions = {route.replace("/api", base, 1) for route in PASSTHROUGH_INCLUSIONS}
    exclusions = {route.replace("/api", base, 1) for route in PASSTHROUGH_EXCLUSIONS}
    requesting: Requesting = eng.concepts["Requesting"]

    async def passthrough(path: str, body: Dict[str, Any]) -> Response:
        _, concept, action = path.split("/", 2)
        if action.startswith("_"):
            return jsonify(await eng.query(concept, action, **body))
        fact = await eng.invoke(concept, action, body)
        return jsonify(fact.output)

    @app.errorhandler(UnknownActionError)
    def unknown_action(e: UnknownActionError):
        return _error(str(e), 404)

    @app.errorhandler(SyncEvaluationError)
    def sync_failed(e: SyncEvaluationError):
        logger.error("request aborted: %s", e)
        return _error("Internal error while handling the request.", 500)

    @app.get("/health")
    def health():
        return jsonify({"status": "ok"})

    @app.post(f"{base}/<path:route>")
    async def api(route: str):
        body = http_request.get_json(silent=True)
        if body is None:
            body = {}
        if not isinstance(body, dict):
            return _error("Request body must be a JSON object.", 400)
        path = "/" + route
        url = base + path
        if url in inclusions:
            try:
                return await passthrough(path, body)
            except TypeError as e:
                return _error(f"Bad arguments for {path}: {e}", 400)
        if url not in exclusions:
            logger.warning("unverified route %s handled by Requesting", url)
        flow = eng.start_flow()
        try:
            fact = await eng.invoke("Requesting", "request", {**body, "path": path}, flow=flow)
            out = await requesting._awaitResponse(fact.output["request"], config.response_timeout)
        except asyncio.TimeoutError:
            return _error(f"No response for {path} within {config.response_timeout}s.", 504)
        except Exception:
            # cascade aborted; the request fact opens the flow
            for f in eng.flow_log.get(flow, [])[:1]:
                requesting.discard(f.output["request"])
            raise
        return jsonify(out)

    return app
