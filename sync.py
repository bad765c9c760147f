# ====== Synchronizations ======
from __future__ import annotations
from typing import Any, Dict, Union

from engine import Sync, SyncFactory
from frames import ConceptRef, Frame, Frames, Var, actions, fresh

Requesting = ConceptRef("Requesting")
Feedback = ConceptRef("Feedback")
RestaurantMenu = ConceptRef("RestaurantMenu")
UserAuthentication = ConceptRef("UserAuthentication")
UserTastePreferences = ConceptRef("UserTastePreferences")
Sessioning = ConceptRef("Sessioning")

INVALID_USER = "Invalid user. Please ensure you are authenticated."

def _text(v: Any) -> bool:
    return isinstance(v, str) and v.strip() != ""

def _number(v: Any) -> bool:
    if isinstance(v, bool):
        return False
    if isinstance(v, (int, float)):
        return True
    return _text(v)

async def _user_known(frames: Frames, user: Var) -> Frames:
    """Frames whose ``user`` is a registered UserAuthentication user."""
    username, = fresh("username")
    checked = await frames.query(UserAuthentication._getUsername, {"user": user}, {"username": username})
    return checked.filter(lambda f: username in f)

async def _user_unknown(frames: Frames, user: Var) -> Frames:
    known = await _user_known(frames, user)
    seen = {f.facts for f in known}
    return frames.filter(lambda f: f.facts not in seen)

async def _with_preferences(frames: Frames, user: Var, liked: Var, disliked: Var) -> Frames:
    liked_dish, disliked_dish = fresh("likedDish", "dislikedDish")
    liked_by = (await frames.query(UserTastePreferences._getLikedDishes, {"user": user}, {"dishes": liked_dish})).collect(user, liked_dish)
    disliked_by = (await frames.query(UserTastePreferences._getDislikedDishes, {"user": user}, {"dishes": disliked_dish})).collect(user, disliked_dish)
    return frames.map(lambda f: f.bind_all({liked: liked_by.get(f[user], []), disliked: disliked_by.get(f[user], [])}))

def _respond_to_errors(path: str, ref) -> SyncFactory:
    """Route a concept's ``{error}`` output back to the request that caused it."""
    def factory(request: Var, error: Var) -> Sync:
        return Sync(
            when=actions((Requesting.request, {"path": path}, {"request": request}),
                         (ref, {}, {"error": error})),
            then=actions((Requesting.respond, {"request": request, "error": error})),
        )
    return factory

# ------ Feedback ------

def _feedback_fields_ok(author: Var, item: Var, rating: Var):
    return lambda f: _text(f.get(author)) and _text(f.get(item)) and _number(f.get(rating))

def SubmitFeedbackRequest(request: Var, author: Var, item: Var, rating: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/Feedback/submitFeedback", "author": author, "item": item, "rating": rating}, {"request": request})),
        where=lambda frames: frames.filter(_feedback_fields_ok(author, item, rating)),
        then=actions((Feedback.submitFeedback, {"author": author, "item": item, "rating": rating})),
    )

def SubmitFeedbackValidation(request: Var, author: Var, item: Var, rating: Var) -> Sync:
    ok = _feedback_fields_ok(author, item, rating)
    return Sync(
        when=actions((Requesting.request, {"path": "/Feedback/submitFeedback", "author": author, "item": item, "rating": rating}, {"request": request})),
        where=lambda frames: frames.filter(lambda f: not ok(f)),
        then=actions((Requesting.respond, {"request": request, "error": "Author, item, and rating are required to submit feedback."})),
    )

def SubmitFeedbackResponse(request: Var, feedback: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/Feedback/submitFeedback"}, {"request": request}),
                     (Feedback.submitFeedback, {}, {"feedback": feedback})),
        then=actions((Requesting.respond, {"request": request, "feedback": feedback})),
    )

async def _feedback_lookup(frames: Frames, author: Var, item: Var, exists: bool) -> Frames:
    feedback, error = fresh("feedback", "error")
    found = await frames.query(Feedback._getFeedback, {"author": author, "item": item}, {"feedback": feedback, "error": error})
    def has(f: Frame) -> bool:
        return f.get(feedback) is not None and error not in f
    return found.filter(has if exists else (lambda f: not has(f)))

# only the author's own existing feedback can be updated
def UpdateFeedbackRequest(request: Var, author: Var, item: Var, new_rating: Var) -> Sync:
    async def where(frames: Frames) -> Frames:
        return await _feedback_lookup(frames, author, item, exists=True)
    return Sync(
        when=actions((Requesting.request, {"path": "/Feedback/updateFeedback", "author": author, "item": item, "newRating": new_rating}, {"request": request})),
        where=where,
        then=actions((Feedback.updateFeedback, {"author": author, "item": item, "newRating": new_rating})),
    )

def UpdateFeedbackError(request: Var, author: Var, item: Var) -> Sync:
    async def where(frames: Frames) -> Frames:
        return await _feedback_lookup(frames, author, item, exists=False)
    return Sync(
        when=actions((Requesting.request, {"path": "/Feedback/updateFeedback", "author": author, "item": item}, {"request": request})),
        where=where,
        then=actions((Requesting.respond, {"request": request, "error": "Existing feedback not found for the specified author and item."})),
    )

def UpdateFeedbackResponse(request: Var, updated_feedback: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/Feedback/updateFeedback"}, {"request": request}),
                     (Feedback.updateFeedback, {}, {"feedback": updated_feedback})),
        then=actions((Requesting.respond, {"request": request, "updatedFeedback": updated_feedback})),
    )

def DeleteFeedbackRequest(request: Var, author: Var, item: Var) -> Sync:
    async def where(frames: Frames) -> Frames:
        return await _feedback_lookup(frames, author, item, exists=True)
    return Sync(
        when=actions((Requesting.request, {"path": "/Feedback/deleteFeedback", "author": author, "item": item}, {"request": request})),
        where=where,
        then=actions((Feedback.deleteFeedback, {"author": author, "item": item})),
    )

def DeleteFeedbackError(request: Var, author: Var, item: Var) -> Sync:
    async def where(frames: Frames) -> Frames:
        return await _feedback_lookup(frames, author, item, exists=False)
    return Sync(
        when=actions((Requesting.request, {"path": "/Feedback/deleteFeedback", "author": author, "item": item}, {"request": request})),
        where=where,
        then=actions((Requesting.respond, {"request": request, "error": "Existing feedback not found for the specified author and item."})),
    )

def DeleteFeedbackResponse(request: Var, successful: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/Feedback/deleteFeedback"}, {"request": request}),
                     (Feedback.deleteFeedback, {}, {"successful": successful})),
        then=actions((Requesting.respond, {"request": request, "successful": successful})),
    )

# ------ RestaurantMenu ------

def AddMenuItemRequest(request: Var, restaurant: Var, name: Var, description: Var, price: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/RestaurantMenu/addMenuItem", "restaurant": restaurant, "name": name, "description": description, "price": price}, {"request": request})),
        then=actions((RestaurantMenu.addMenuItem, {"restaurant": restaurant, "name": name, "description": description, "price": price})),
    )

def AddMenuItemResponse(request: Var, menu_item: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/RestaurantMenu/addMenuItem"}, {"request": request}),
                     (RestaurantMenu.addMenuItem, {}, {"menuItem": menu_item})),
        then=actions((Requesting.respond, {"request": request, "menuItem": menu_item})),
    )

def UpdateMenuItemRequest(request: Var, menu_item: Var, new_description: Var, new_price: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/RestaurantMenu/updateMenuItem", "menuItem": menu_item, "newDescription": new_description, "newPrice": new_price}, {"request": request})),
        then=actions((RestaurantMenu.updateMenuItem, {"menuItem": menu_item, "newDescription": new_description, "newPrice": new_price})),
    )

def UpdateMenuItemResponse(request: Var, menu_item: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/RestaurantMenu/updateMenuItem"}, {"request": request}),
                     (RestaurantMenu.updateMenuItem, {}, {"menuItem": menu_item})),
        then=actions((Requesting.respond, {"request": request, "menuItem": menu_item})),
    )

def RemoveMenuItemRequest(request: Var, menu_item: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/RestaurantMenu/removeMenuItem", "menuItem": menu_item}, {"request": request})),
        then=actions((RestaurantMenu.removeMenuItem, {"menuItem": menu_item})),
    )

def RemoveMenuItemResponse(request: Var, success: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/RestaurantMenu/removeMenuItem"}, {"request": request}),
                     (RestaurantMenu.removeMenuItem, {}, {"success": success})),
        then=actions((Requesting.respond, {"request": request, "success": success})),
    )

# ------ UserAuthentication / Sessioning ------

def RegisterRequest(request: Var, username: Var, password: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/UserAuthentication/register", "username": username, "password": password}, {"request": request})),
        where=lambda frames: frames.filter(lambda f: _text(f.get(username)) and _text(f.get(password))),
        then=actions((UserAuthentication.register, {"username": username, "password": password})),
    )

def RegisterValidation(request: Var, username: Var, password: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/UserAuthentication/register", "username": username, "password": password}, {"request": request})),
        where=lambda frames: frames.filter(lambda f: not (_text(f.get(username)) and _text(f.get(password)))),
        then=actions((Requesting.respond, {"request": request, "error": "Username and password are required to register."})),
    )

def RegisterResponse(request: Var, user: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/UserAuthentication/register"}, {"request": request}),
                     (UserAuthentication.register, {}, {"user": user})),
        then=actions((Requesting.respond, {"request": request, "user": user})),
    )

def AuthenticateRequest(request: Var, username: Var, password: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/UserAuthentication/authenticate", "username": username, "password": password}, {"request": request})),
        then=actions((UserAuthentication.authenticate, {"username": username, "password": password})),
    )

def AuthenticateSuccessCreatesSession(user: Var) -> Sync:
    return Sync(
        when=actions((UserAuthentication.authenticate, {}, {"user": user})),
        then=actions((Sessioning.create, {"user": user})),
    )

def AuthenticateResponse(request: Var, user: Var, session: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/UserAuthentication/authenticate"}, {"request": request}),
                     (UserAuthentication.authenticate, {}, {"user": user}),
                     (Sessioning.create, {"user": user}, {"session": session})),
        then=actions((Requesting.respond, {"request": request, "session": session, "user": user})),
    )

def LogoutRequest(request: Var, session: Var, user: Var) -> Sync:
    async def where(frames: Frames) -> Frames:
        found = await frames.query(Sessioning._getUser, {"session": session}, {"user": user})
        return found.filter(lambda f: user in f)
    return Sync(
        when=actions((Requesting.request, {"path": "/logout", "session": session}, {"request": request})),
        where=where,
        then=actions((Sessioning.delete, {"session": session})),
    )

def LogoutError(request: Var, session: Var) -> Sync:
    async def where(frames: Frames) -> Frames:
        error, = fresh("error")
        found = await frames.query(Sessioning._getUser, {"session": session}, {"error": error})
        return found.filter(lambda f: error in f)
    return Sync(
        when=actions((Requesting.request, {"path": "/logout", "session": session}, {"request": request})),
        where=where,
        then=actions((Requesting.respond, {"request": request, "error": "Session not found."})),
    )

def LogoutResponse(request: Var, session: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/logout", "session": session}, {"request": request}),
                     (Sessioning.delete, {}, {"session": session})),
        then=actions((Requesting.respond, {"request": request, "status": "logged_out"})),
    )

def SessionGetUserResponse(request: Var, session: Var) -> Sync:
    session_user, = fresh("sessionUser")
    async def where(frames: Frames) -> Frames:
        found = await frames.query(Sessioning._getUser, {"session": session}, {"user": session_user})
        return found.filter(lambda f: session_user in f)
    return Sync(
        when=actions((Requesting.request, {"path": "/Sessioning/_getUser", "session": session}, {"request": request})),
        where=where,
        then=actions((Requesting.respond, {"request": request, "user": session_user})),
    )

def SessionGetUserResponseError(request: Var, session: Var) -> Sync:
    session_error, = fresh("sessionError")
    async def where(frames: Frames) -> Frames:
        found = await frames.query(Sessioning._getUser, {"session": session}, {"error": session_error})
        return found.filter(lambda f: session_error in f)
    return Sync(
        when=actions((Requesting.request, {"path": "/Sessioning/_getUser", "session": session}, {"request": request})),
        where=where,
        then=actions((Requesting.respond, {"request": request, "error": session_error})),
    )

# ------ UserTastePreferences ------
# users must exist and give a dish before their preferences change

def _preference_syncs(action: str, label: str) -> Dict[str, SyncFactory]:
    path = f"/UserTastePreferences/{action}"
    ref = getattr(UserTastePreferences, action)
    def fields_ok(user: Var, dish: Var):
        return lambda f: _text(f.get(user)) and _text(f.get(dish))
    def Request(request: Var, user: Var, dish: Var) -> Sync:
        async def where(frames: Frames) -> Frames:
            return await _user_known(frames.filter(fields_ok(user, dish)), user)
        return Sync(
            when=actions((Requesting.request, {"path": path, "user": user, "dish": dish}, {"request": request})),
            where=where,
            then=actions((ref, {"user": user, "dish": dish})),
        )
    def ErrorInvalidUser(request: Var, user: Var, dish: Var) -> Sync:
        async def where(frames: Frames) -> Frames:
            return await _user_unknown(frames.filter(fields_ok(user, dish)), user)
        return Sync(
            when=actions((Requesting.request, {"path": path, "user": user, "dish": dish}, {"request": request})),
            where=where,
            then=actions((Requesting.respond, {"request": request, "error": INVALID_USER})),
        )
    def Validation(request: Var, user: Var, dish: Var) -> Sync:
        ok = fields_ok(user, dish)
        return Sync(
            when=actions((Requesting.request, {"path": path, "user": user, "dish": dish}, {"request": request})),
            where=lambda frames: frames.filter(lambda f: not ok(f)),
            then=actions((Requesting.respond, {"request": request, "error": f"User and dish are required to {label}."})),
        )
    def Response(request: Var, user: Var, dish: Var) -> Sync:
        return Sync(
            when=actions((Requesting.request, {"path": path, "user": user, "dish": dish}, {"request": request}),
                         (ref, {"user": user, "dish": dish}, {"user": user})),
            then=actions((Requesting.respond, {"request": request})),
        )
    stem = action[0].upper() + action[1:]
    return {
        f"{stem}Request": Request,
        f"{stem}ErrorInvalidUser": ErrorInvalidUser,
        f"{stem}Validation": Validation,
        f"{stem}Response": Response,
        f"{stem}ResponseError": _respond_to_errors(path, ref),
    }

# ------ Recommendation ------

def GetRecommendationRequest(request: Var, session: Var, restaurant: Var, user: Var, liked: Var, disliked: Var) -> Sync:
    async def where(frames: Frames) -> Frames:
        # only authenticated sessions get a recommendation
        authed = (await frames.query(Sessioning._getUser, {"session": session}, {"user": user})).filter(lambda f: user in f)
        return await _with_preferences(authed, user, liked, disliked)
    return Sync(
        when=actions((Requesting.request, {"path": "/recommendation", "session": session, "restaurant": restaurant}, {"request": request})),
        where=where,
        then=actions((RestaurantMenu.getRecommendation, {"restaurant": restaurant, "userLikedDishes": liked, "userDislikedDishes": disliked, "request": request})),
    )

def GetRecommendationErrorInvalidSession(request: Var, session: Var) -> Sync:
    async def where(frames: Frames) -> Frames:
        error, = fresh("error")
        found = await frames.query(Sessioning._getUser, {"session": session}, {"error": error})
        return found.filter(lambda f: error in f)
    return Sync(
        when=actions((Requesting.request, {"path": "/recommendation", "session": session}, {"request": request})),
        where=where,
        then=actions((Requesting.respond, {"request": request, "error": INVALID_USER})),
    )

def GetRecommendationRequestWithoutSession(request: Var, restaurant: Var, user: Var, liked: Var, disliked: Var) -> Sync:
    async def where(frames: Frames) -> Frames:
        session, = fresh("session")
        found = await frames.query(Requesting._getRequest, {"request": request}, {"session": session})
        # requests with a session belong to GetRecommendationRequest
        return await _with_preferences(found.filter(lambda f: session not in f), user, liked, disliked)
    return Sync(
        when=actions((Requesting.request, {"path": "/recommendation", "restaurant": restaurant, "user": user}, {"request": request})),
        where=where,
        then=actions((RestaurantMenu.getRecommendation, {"restaurant": restaurant, "userLikedDishes": liked, "userDislikedDishes": disliked, "request": request})),
    )

def GetRecommendationResponse(request: Var, recommendation: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/recommendation"}, {"request": request}),
                     (RestaurantMenu.getRecommendation, {"request": request}, {"recommendation": recommendation})),
        then=actions((Requesting.respond, {"request": request, "recommendation": recommendation})),
    )

def GetRecommendationResponseError(request: Var, error: Var) -> Sync:
    return Sync(
        when=actions((Requesting.request, {"path": "/recommendation"}, {"request": request}),
                     (RestaurantMenu.getRecommendation, {"request": request}, {"error": error})),
        then=actions((Requesting.respond, {"request": request, "error": error})),
    )

def make_syncs() -> Dict[str, Union[Sync, SyncFactory]]:
    syncs: Dict[str, Union[Sync, SyncFactory]] = {
        "SubmitFeedbackRequest": SubmitFeedbackRequest,
        "SubmitFeedbackValidation": SubmitFeedbackValidation,
        "SubmitFeedbackResponse": SubmitFeedbackResponse,
        "SubmitFeedbackResponseError": _respond_to_errors("/Feedback/submitFeedback", Feedback.submitFeedback),
        "UpdateFeedbackRequest": UpdateFeedbackRequest,
        "UpdateFeedbackError": UpdateFeedbackError,
        "UpdateFeedbackResponse": UpdateFeedbackResponse,
        "UpdateFeedbackResponseError": _respond_to_errors("/Feedback/updateFeedback", Feedback.updateFeedback),
        "DeleteFeedbackRequest": DeleteFeedbackRequest,
        "DeleteFeedbackError": DeleteFeedbackError,
        "DeleteFeedbackResponse": DeleteFeedbackResponse,
        "DeleteFeedbackResponseError": _respond_to_errors("/Feedback/deleteFeedback", Feedback.deleteFeedback),
        "AddMenuItemRequest": AddMenuItemRequest,
        "AddMenuItemResponse": AddMenuItemResponse,
        "AddMenuItemResponseError": _respond_to_errors("/RestaurantMenu/addMenuItem", RestaurantMenu.addMenuItem),
        "UpdateMenuItemRequest": UpdateMenuItemRequest,
        "UpdateMenuItemResponse": UpdateMenuItemResponse,
        "UpdateMenuItemResponseError": _respond_to_errors("/RestaurantMenu/updateMenuItem", RestaurantMenu.updateMenuItem),
        "RemoveMenuItemRequest": RemoveMenuItemRequest,
        "RemoveMenuItemResponse": RemoveMenuItemResponse,
        "RemoveMenuItemResponseError": _respond_to_errors("/RestaurantMenu/removeMenuItem", RestaurantMenu.removeMenuItem),
        "RegisterRequest": RegisterRequest,
        "RegisterValidation": RegisterValidation,
        "RegisterResponse": RegisterResponse,
        "RegisterResponseError": _respond_to_errors("/UserAuthentication/register", UserAuthentication.register),
        "AuthenticateRequest": AuthenticateRequest,
        "AuthenticateSuccessCreatesSession": AuthenticateSuccessCreatesSession,
        "AuthenticateResponse": AuthenticateResponse,
        "AuthenticateResponseError": _respond_to_errors("/UserAuthentication/authenticate", UserAuthentication.authenticate),
        "LogoutRequest": LogoutRequest,
        "LogoutError": LogoutError,
        "LogoutResponse": LogoutResponse,
        "SessionGetUserResponse": SessionGetUserResponse,
        "SessionGetUserResponseError": SessionGetUserResponseError,
        "GetRecommendationRequest": GetRecommendationRequest,
        "GetRecommendationErrorInvalidSession": GetRecommendationErrorInvalidSession,
        "GetRecommendationRequestWithoutSession": GetRecommendationRequestWithoutSession,
        "GetRecommendationResponse": GetRecommendationResponse,
        "GetRecommendationResponseError": GetRecommendationResponseError,
    }
    for action, label in (("addLikedDish", "add a liked dish"), ("removeLikedDish", "remove a liked dish"),
                          ("addDislikedDish", "add a disliked dish"), ("removeDislikedDish", "remove a disliked dish")):
        syncs.update(_preference_syncs(action, label))
    return syncs
