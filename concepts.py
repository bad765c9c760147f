from __future__ import annotations
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4
import asyncio, hmac, re

from engine import Concept

# ====== Concepts ======

def _is_number(x: Any) -> bool:
    return isinstance(x, (int, float)) and not isinstance(x, bool)

# 1) Feedback: 0-5 ratings of items by users
class Feedback(Concept):
    def __init__(self, name: str = "Feedback"):
        super().__init__(name)
        self._feedbacks: Dict[str, Dict[str, Any]] = {}
    def _find(self, author: str, item: str) -> Optional[Dict[str, Any]]:
        for doc in self._feedbacks.values():
            if doc["author"] == author and doc["target"] == item:
                return doc
        return None
    def submitFeedback(self, author: str, item: str, rating: Any) -> Dict[str, Any]:
        if not _is_number(rating) or rating < 0 or rating > 5:
            return {"error": "Rating must be an integer between 0 and 5."}
        # resubmitting for the same item updates the existing rating
        if self._find(author, item) is not None:
            return self.updateFeedback(author=author, item=item, newRating=rating)
        fid = str(uuid4())
        self._feedbacks[fid] = {"_id": fid, "author": author, "target": item, "rating": rating}
        return {"feedback": fid}
    def updateFeedback(self, author: str, item: str, newRating: Any) -> Dict[str, Any]:
        if not _is_number(newRating) or newRating < 0 or newRating > 5:
            return {"error": "New rating must be an integer between 0 and 5."}
        doc = self._find(author, item)
        if doc is None:
            return {"error": f"No feedback found for item {item} from user {author} to update."}
        doc["rating"] = newRating
        return {"feedback": doc["_id"]}
    def deleteFeedback(self, author: str, item: str) -> Dict[str, Any]:
        doc = self._find(author, item)
        if doc is None:
            return {"error": f"No feedback found for item {item} from user {author} to delete."}
        del self._feedbacks[doc["_id"]]
        return {"successful": True}
    def _getFeedback(self, author: str, item: str) -> List[Dict[str, Any]]:
        doc = self._find(author, item)
        if doc is None:
            return [{"error": f"No feedback found for item {item} from user {author}."}]
        return [{"feedback": dict(doc)}]
    def _getAllUserRatings(self, author: str) -> List[Dict[str, Any]]:
        return [{"feedback": dict(doc)} for doc in self._feedbacks.values() if doc["author"] == author]

# 2) RestaurantMenu: dishes per restaurant, plus dish recommendation
_WORD = re.compile(r"[a-z0-9]+")

def _words(text: str) -> set:
    return set(_WORD.findall(text.lower()))

def recommend_dish(items: Sequence[Dict[str, Any]], liked: Sequence[str], disliked: Sequence[str]) -> Optional[str]:
    """Pick a dish name from ``items`` for a user's liked/disliked dishes.

    Disliked dishes are never picked. Remaining items are scored by word
    overlap with the liked dishes (an exact liked name scores highest);
    ties keep menu order, and with no preferences the first item wins."""
    disliked_names = {d.lower() for d in disliked}
    pool = [it for it in items if it["name"].lower() not in disliked_names]
    if not pool:
        return None
    liked_names = {d.lower() for d in liked}
    liked_words = set().union(*(_words(d) for d in liked)) if liked else set()
    disliked_words = set().union(*(_words(d) for d in disliked)) if disliked else set()
    def score(it: Dict[str, Any]) -> float:
        words = _words(it["name"]) | _words(it.get("description", ""))
        s = 10.0 if it["name"].lower() in liked_names else 0.0
        return s + len(words & liked_words) - 0.5*len(words & disliked_words)
    best = max(enumerate(pool), key=lambda p: (score(p[1]), -p[0]))
    return best[1]["name"]

class RestaurantMenu(Concept):
    def __init__(self, name: str = "RestaurantMenu"):
        super().__init__(name)
        self._items: Dict[str, Dict[str, Any]] = {}
    def addMenuItem(self, restaurant: str, name: str, description: str, price: Any) -> Dict[str, Any]:
        for it in self._items.values():
            if it["restaurant"] == restaurant and it["name"] == name:
                return {"error": f"Menu item '{name}' already exists for restaurant '{restaurant}'."}
        mid = str(uuid4())
        self._items[mid] = {"_id": mid, "restaurant": restaurant, "name": name, "description": description, "price": price}
        return {"menuItem": mid}
    def updateMenuItem(self, menuItem: str, newDescription: Optional[str] = None, newPrice: Any = None) -> Dict[str, Any]:
        it = self._items.get(menuItem)
        if it is None:
            return {"error": f"No menu item found with ID '{menuItem}' to update."}
        if newDescription is not None:
            it["description"] = newDescription
        if newPrice is not None:
            it["price"] = newPrice
        return {"menuItem": menuItem}
    def removeMenuItem(self, menuItem: str) -> Dict[str, Any]:
        if self._items.pop(menuItem, None) is None:
            return {"error": f"No menu item found with ID '{menuItem}' to delete."}
        return {"success": True}
    def getRecommendation(self, restaurant: str, userLikedDishes: Sequence[str] = (), userDislikedDishes: Sequence[str] = (), request: Any = None) -> Dict[str, Any]:
        items = [it for it in self._items.values() if it["restaurant"] == restaurant]
        if not items:
            return {"error": f"No menu items found for restaurant '{restaurant}'."}
        pick = recommend_dish(items, list(userLikedDishes or []), list(userDislikedDishes or []))
        if pick is None:
            return {"error": "Every dish on this menu is on the user's disliked list."}
        return {"recommendation": pick}
    def _getMenuItems(self, restaurant: str) -> List[Dict[str, Any]]:
        return [{"menuItem": mid} for mid, it in self._items.items() if it["restaurant"] == restaurant]
    def _getMenuItemDetails(self, menuItem: str) -> List[Dict[str, Any]]:
        it = self._items.get(menuItem)
        if it is None:
            return []
        return [{"name": it["name"], "description": it["description"], "price": it["price"]}]
    def _getRecommendation(self, restaurant: str, userLikedDishes: Sequence[str] = (), userDislikedDishes: Sequence[str] = ()) -> List[Dict[str, Any]]:
        return [self.getRecommendation(restaurant, userLikedDishes, userDislikedDishes)]

# 3) UserAuthentication: username/password registry
class UserAuthentication(Concept):
    def __init__(self, name: str = "UserAuthentication"):
        super().__init__(name)
        self._users: Dict[str, Dict[str, Any]] = {}
    def _byName(self, username: str) -> Optional[Dict[str, Any]]:
        for u in self._users.values():
            if u["username"] == username:
                return u
        return None
    def register(self, username: str, password: str) -> Dict[str, Any]:
        if self._byName(username) is not None:
            return {"error": "Username already exists."}
        uid = str(uuid4())
        self._users[uid] = {"_id": uid, "username": username, "password": password}
        return {"user": uid}
    def authenticate(self, username: str, password: str) -> Dict[str, Any]:
        u = self._byName(username)
        if u is None or not hmac.compare_digest(str(password).encode(), u["password"].encode()):
            return {"error": "Invalid username or password."}
        return {"user": u["_id"]}
    def _getUsername(self, user: str) -> Dict[str, Any]:
        u = self._users.get(user)
        if u is None:
            return {"error": "User not found."}
        return {"username": u["username"]}

# 4) UserTastePreferences: liked / disliked dishes per user
class UserTastePreferences(Concept):
    def __init__(self, name: str = "UserTastePreferences"):
        super().__init__(name)
        self._users: Dict[str, Dict[str, List[str]]] = {}
    def _add(self, user: str, dish: str, into: str, out_of: str) -> Dict[str, Any]:
        doc = self._users.setdefault(user, {"likedDishes": [], "dislikedDishes": []})
        if dish not in doc[into]:
            doc[into].append(dish)
        if dish in doc[out_of]:
            doc[out_of].remove(dish)
        return {"user": user}
    def _remove(self, user: str, dish: str, key: str, label: str) -> Dict[str, Any]:
        doc = self._users.get(user)
        if doc is None:
            return {"error": f"User with ID '{user}' does not exist."}
        if dish not in doc[key]:
            return {"error": f"Dish '{dish}' is not in the {label} dishes for user '{user}'."}
        doc[key].remove(dish)
        return {"user": user}
    def addLikedDish(self, user: str, dish: str) -> Dict[str, Any]:
        return self._add(user, dish, "likedDishes", "dislikedDishes")
    def removeLikedDish(self, user: str, dish: str) -> Dict[str, Any]:
        return self._remove(user, dish, "likedDishes", "liked")
    def addDislikedDish(self, user: str, dish: str) -> Dict[str, Any]:
        return self._add(user, dish, "dislikedDishes", "likedDishes")
    def removeDislikedDish(self, user: str, dish: str) -> Dict[str, Any]:
        return self._remove(user, dish, "dislikedDishes", "disliked")
    def _dishes(self, user: str, key: str) -> List[Dict[str, Any]]:
        doc = self._users.get(user)
        if doc is None:
            return [{"error": f"User with ID '{user}' does not exist."}]
        return [{"dishes": d} for d in doc[key]]
    def _getLikedDishes(self, user: str) -> List[Dict[str, Any]]:
        return self._dishes(user, "likedDishes")
    def _getDislikedDishes(self, user: str) -> List[Dict[str, Any]]:
        return self._dishes(user, "dislikedDishes")

# 5) Sessioning: session token -> user
class Sessioning(Concept):
    def __init__(self, name: str = "Sessioning"):
        super().__init__(name)
        self._sessions: Dict[str, str] = {}
    def create(self, user: str) -> Dict[str, Any]:
        sid = str(uuid4())
        self._sessions[sid] = user
        return {"session": sid}
    def delete(self, session: str) -> Dict[str, Any]:
        if self._sessions.pop(session, None) is None:
            return {"error": "Session not found."}
        return {"session": session}
    def _getUser(self, session: str) -> Dict[str, Any]:
        user = self._sessions.get(session)
        if user is None:
            return {"error": "Session not found."}
        return {"user": user}

# 6) Requesting (bootstrap): inbound request / outbound respond
class Requesting(Concept):
    def __init__(self, name: str = "Requesting"):
        super().__init__(name)
        self._req: Dict[str, Dict[str, Any]] = {}
        self._pending: Dict[str, "asyncio.Future[Dict[str, Any]]"] = {}
    def request(self, path: str, **params: Any) -> Dict[str, Any]:
        rid = str(uuid4())
        self._req[rid] = {"path": path, "params": params}
        self._pending[rid] = asyncio.get_running_loop().create_future()
        return {"request": rid}
    def respond(self, request: str, **fields: Any) -> Dict[str, Any]:
        fut = self._pending.get(request)
        if fut is None:
            return {"error": f"Unknown request '{request}'."}
        if fut.done():
            return {"error": f"Request '{request}' already has a response."}
        fut.set_result(fields)
        return {"request": request}
    def discard(self, request: str) -> Dict[str, Any]:
        """Forget a request; a later respond for it fails."""
        fut = self._pending.pop(request, None)
        self._req.pop(request, None)
        if fut is None:
            return {"error": f"Unknown request '{request}'."}
        if not fut.done():
            fut.cancel()
        return {"request": request}
    def _getRequest(self, request: str) -> List[Dict[str, Any]]:
        req = self._req.get(request)
        if req is None:
            return []
        return [{**req["params"], "path": req["path"]}]
    async def _awaitResponse(self, request: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        fut = self._pending.get(request)
        if fut is None:
            return {"error": f"Unknown request '{request}'."}
        try:
            return dict(await asyncio.wait_for(asyncio.shield(fut), timeout))
        finally:
            self.discard(request)
