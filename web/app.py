from __future__ import annotations

import atexit
import logging
import uuid
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from automation.messages import MAX_GROUP_SIZE, NavigationAction
from site_agent.runtime import AutomationManager

app = Flask(__name__)
logging.basicConfig(level=logging.INFO)
log = logging.getLogger("autobook")

_automation_manager: AutomationManager | None = None

_UNAVAILABLE = "automation not available"


def _get_automation_manager() -> AutomationManager:
    global _automation_manager
    if _automation_manager is None:
        manager = AutomationManager()
        manager.start()
        _automation_manager = manager
    return _automation_manager


@atexit.register
def _shutdown_automation_manager() -> None:  # pragma: no cover - shutdown hook
    manager = _automation_manager
    if manager is None:
        return
    try:
        manager.shutdown()
    except Exception as exc:
        log.debug("Automation manager shutdown failed: %s", exc)


@app.errorhandler(404)
def not_found(error: Exception):  # pragma: no cover - simple JSON handler
    return jsonify({"error": f"resource not found: {request.path}"}), 404


@app.errorhandler(Exception)
def handle_exception(error: Exception):  # pragma: no cover - defensive handler
    correlation_id = str(uuid.uuid4())[:8]
    log.exception("[%s] Unhandled exception: %s", correlation_id, error)
    return jsonify({"error": "internal server error", "correlation_id": correlation_id}), 500


def _json_body() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _parse_group_size(data: Dict[str, Any]) -> Optional[int]:
    """Group size from ``groupSize`` or from the selected entries of ``companions``."""

    if data.get("groupSize") not in (None, ""):
        size = int(data["groupSize"])
    elif isinstance(data.get("companions"), list):
        selected = [item for item in data["companions"] if not isinstance(item, dict) or item.get("selected", True)]
        if not selected:
            return None
        size = len(selected)
    else:
        return None
    if size < 1:
        raise ValueError("groupSize must be positive")
    return min(size, MAX_GROUP_SIZE)


def _sent(ok: bool, **extra: Any):
    if not ok:
        return jsonify({"error": _UNAVAILABLE}), 503
    return jsonify({"status": "sent", **extra})


@app.get("/healthz")
def healthz():
    return "ok"


@app.post("/api/login")
def login():
    data = _json_body()
    username = str(data.get("username") or "").strip()
    password = str(data.get("password") or "")
    if not username or not password:
        return jsonify({"error": "username and password are required"}), 400
    return _sent(_get_automation_manager().login(username, password))


@app.post("/api/navigate")
def navigate():
    data = _json_body()
    try:
        action = NavigationAction(str(data.get("action") or ""))
    except ValueError:
        return jsonify({"error": f"unknown action: {data.get('action')!r}"}), 400
    extra = data.get("data")
    if extra is not None and not isinstance(extra, dict):
        return jsonify({"error": "data must be an object"}), 400
    return _sent(_get_automation_manager().navigate(action, extra or {}), action=action.value)


@app.post("/api/navigate/sequence")
def navigate_sequence():
    data = _json_body()
    permit_type = str(data.get("permitType") or "men").strip().lower()
    if permit_type not in {"men", "women"}:
        return jsonify({"error": "permitType must be 'men' or 'women'"}), 400
    group_number = data.get("groupNumber", 1)
    try:
        group_number = int(group_number)
    except (TypeError, ValueError):
        return jsonify({"error": "groupNumber must be an integer"}), 400
    if not 1 <= group_number <= MAX_GROUP_SIZE:
        return jsonify({"error": f"groupNumber must be between 1 and {MAX_GROUP_SIZE}"}), 400
    manager = _get_automation_manager()
    return _sent(manager.navigate_sequence(permit_type, group_number), permitType=permit_type)


@app.post("/api/scanning/start")
def start_scanning():
    data = _json_body()
    retry_delay = data.get("retryDelay")
    try:
        retry_delay = float(retry_delay) if retry_delay not in (None, "") else None
        group_size = _parse_group_size(data)
    except (TypeError, ValueError) as exc:
        return jsonify({"error": str(exc)}), 400
    manager = _get_automation_manager()
    return _sent(manager.start_scanning(retry_delay, group_size), groupSize=group_size)


@app.post("/api/scanning/stop")
def stop_scanning():
    return _sent(_get_automation_manager().stop_scanning())


@app.get("/api/status")
def status():
    return jsonify(_get_automation_manager().status_snapshot())


if __name__ == "__main__":  # pragma: no cover - manual run helper
    app.run(host="0.0.0.0", port=5000)
