from __future__ import annotations
from typing import Any, Dict, Optional, Tuple
import inspect
import logging

from flask import Flask, jsonify, request

import passthrough
from catalog import SpotifyClient
from concepts import Friending, MusicDiscovery, Playlist, Requesting, Review, Session, UserAuthentication
from config import Config, EngineConfig
from engine import Engine, EngineError
from sync import make_syncs

logger = logging.getLogger(__name__)

# ====== Build & Run ======

def build_engine(config: Optional[EngineConfig] = None, catalog: Optional[SpotifyClient] = None) -> Engine:
    eng = Engine(config)
    eng.register_concept(UserAuthentication())
    eng.register_concept(Session())
    eng.register_concept(Playlist())
    eng.register_concept(Friending())
    eng.register_concept(Review())
    eng.register_concept(MusicDiscovery(client=catalog))
    eng.register_concept(Requesting())
    for s in make_syncs():
        eng.register_sync(s)
    return eng


def _route_kind(eng: Engine, route: str) -> Tuple[str, Optional[str], Optional[str]]:
    """Classify "/Concept/name" as ("passthrough" | "unverified" | "request", concept, name)."""
    parts = route.strip("/").split("/")
    if len(parts) == 2 and parts[0] in eng.concepts:
        concept, name = parts
        target = eng.concepts[concept]
        if target.has_action(name) or target.has_query(name):
            if route in passthrough.inclusions:
                return "passthrough", concept, name
            if route not in passthrough.exclusions:
                return "unverified", concept, name
    return "request", None, None


def _bad_arguments(eng: Engine, concept: str, name: str, body: Dict[str, Any]) -> Optional[str]:
    """Check a passthrough body against the target's signature; a mismatch is the caller's fault."""
    try:
        inspect.signature(getattr(eng.concepts[concept], name)).bind(**body)
    except TypeError as e:
        return str(e)
    return None


def make_app(eng: Engine, base_url: Optional[str] = None) -> Flask:
    app = Flask(__name__)
    base = (base_url if base_url is not None else Config.server.BASE_URL).rstrip("/")

    @app.errorhandler(EngineError)
    def engine_failure(e: EngineError):
        logger.error(f"Request failed: {e}")
        return jsonify({"error": "Internal server error"}), 500

    @app.post(f"{base}/<path:route>")
    async def api(route: str):
        route = "/" + route
        body: Dict[str, Any] = request.get_json(silent=True) or {}
        kind, concept, name = _route_kind(eng, route)
        if kind == "unverified":
            logger.warning(f"Passthrough of unverified route {route}; list it in inclusions or exclusions")
        if kind in ("passthrough", "unverified"):
            problem = _bad_arguments(eng, concept, name, body)
            if problem:
                return jsonify({"error": f"Invalid arguments for {route}: {problem}"}), 400
            if name.startswith("_"):
                return jsonify(await eng.query(concept, name, **body))
            event = await eng.invoke(concept, name, body)
            return jsonify(event.output)
        # Everything else is a Requesting.request; syncs are responsible for answering it
        event = await eng.invoke("Requesting", "request", {**body, "path": route})
        if event.is_error:
            return jsonify(event.output), 400
        rows = await eng.query("Requesting", "_getResponse", request=event.output["request"])
        if not rows:
            return jsonify({"error": "Request was not answered"}), 504
        response = rows[0]["response"]
        return jsonify(response), (400 if "error" in response else 200)

    return app
