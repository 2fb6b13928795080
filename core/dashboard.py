import logging
import time
from typing import Optional

from aiohttp import web

from .knowledge import CATEGORIES, PRIORITIES, STATUSES, KnowledgeService

log = logging.getLogger(__name__)

MAX_LIST_LIMIT = 100
EDITABLE_FIELDS = ("title", "content", "category", "priority", "status", "tags")
ALLOWED_VALUES = {"category": CATEGORIES, "priority": PRIORITIES, "status": STATUSES}


def _error(message: str, status: int) -> web.Response:
    return web.json_response({"error": message}, status=status)


def _limit(raw, default: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return max(1, min(MAX_LIST_LIMIT, value))


class DashboardServer:
    """JSON API over the idea store for the web dashboard."""

    def __init__(self, knowledge: KnowledgeService, *, host: str = "127.0.0.1", port: int = 3000) -> None:
        self.knowledge = knowledge
        self.host = host
        self.port = int(port)
        self.started_at = time.time()
        self.app = web.Application(middlewares=[self._cors_middleware, self._availability_middleware])
        self.app.add_routes(
            [
                web.get("/api/health", self.health),
                web.get("/api/ideas", self.list_ideas),
                web.get("/api/ideas/stats", self.stats),
                web.post("/api/ideas/search", self.search),
                web.get("/api/ideas/{idea_id}", self.get_idea),
                web.patch("/api/ideas/{idea_id}", self.update_idea),
                web.delete("/api/ideas/{idea_id}", self.delete_idea),
            ]
        )
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        log.info("dashboard listening on http://%s:%s", self.host, self.port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            log.info("dashboard stopped")

    @web.middleware
    async def _cors_middleware(self, request: web.Request, handler):
        if request.method == "OPTIONS":
            response = web.Response(status=204)
        else:
            response = await handler(request)
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,DELETE,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    @web.middleware
    async def _availability_middleware(self, request: web.Request, handler):
        if request.path.startswith("/api/ideas") and not self.knowledge.enabled:
            return _error("idea storage is not enabled", 503)
        return await handler(request)

    async def health(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "status": "ok",
                "ideasEnabled": self.knowledge.enabled,
                "uptime": round(time.time() - self.started_at, 1),
            }
        )

    async def list_ideas(self, request: web.Request) -> web.Response:
        user_id = request.query.get("userId")
        if not user_id:
            return _error("userId is required", 400)
        ideas = self.knowledge.list_user_ideas(user_id, _limit(request.query.get("limit"), 50))
        return web.json_response({"ideas": [idea.to_dict() for idea in ideas], "count": len(ideas)})

    async def stats(self, request: web.Request) -> web.Response:
        user_id = request.query.get("userId")
        if not user_id:
            return _error("userId is required", 400)
        return web.json_response(self.knowledge.stats(user_id))

    async def search(self, request: web.Request) -> web.Response:
        try:
            payload = await request.json()
        except ValueError:
            return _error("invalid JSON body", 400)
        if not isinstance(payload, dict):
            return _error("invalid JSON body", 400)
        query = str(payload.get("query") or "").strip()
        user_id = str(payload.get("userId") or "").strip()
        if not query or not user_id:
            return _error("query and userId are required", 400)
        results = await self.knowledge.safe_search(query, user_id, _limit(payload.get("limit"), 10))
        return web.json_response({"results": [result.to_dict() for result in results]})

    async def delete_idea(self, request: web.Request) -> web.Response:
        user_id = request.query.get("userId")
        if not user_id:
            return _error("userId is required", 400)
        idea_id = request.match_info["idea_id"]
        if not self.knowledge.delete(idea_id, user_id):
            return _error("idea not found", 404)
        return web.json_response({"ok": True, "id": idea_id})

    async def get_idea(self, request: web.Request) -> web.Response:
        user_id = request.query.get("userId")
        if not user_id:
            return _error("userId is required", 400)
        idea = self.knowledge.get(request.match_info["idea_id"])
        if idea is None or idea.user_id != user_id:
            return _error("idea not found", 404)
        return web.json_response(idea.to_dict())

    async def update_idea(self, request: web.Request) -> web.Response:
        user_id = request.query.get("userId")
        if not user_id:
            return _error("userId is required", 400)
        try:
            payload = await request.json()
        except ValueError:
            return _error("invalid JSON body", 400)
        if not isinstance(payload, dict):
            return _error("invalid JSON body", 400)
        changes = {key: payload[key] for key in EDITABLE_FIELDS if payload.get(key)}
        if not changes:
            return _error(f"nothing to update, expected one of: {', '.join(EDITABLE_FIELDS)}", 400)
        for key, allowed in ALLOWED_VALUES.items():
            if key in changes and changes[key] not in allowed:
                return _error(f"invalid {key}: {changes[key]}", 400)
        tags = changes.get("tags")
        if tags is not None and not (isinstance(tags, list) and all(isinstance(tag, str) for tag in tags)):
            return _error("tags must be a list of strings", 400)
        idea = await self.knowledge.update(request.match_info["idea_id"], user_id, **changes)
        if idea is None:
            return _error("idea not found", 404)
        return web.json_response(idea.to_dict())
