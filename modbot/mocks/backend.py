"""
MockBackend - In-memory stand-in for the moderation API.

Provides just enough behaviour for the bot to run without network access.
Data lives in memory and is lost on restart.
"""

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from loguru import logger

from modbot.services.errors import ValidationError


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class MockCase:
    id: str
    player_id: str
    priority: str = "MEDIUM"
    status: str = "OPEN"
    event: dict[str, Any] = field(default_factory=dict)
    assigned_moderator_id: str | None = None
    history: list[dict[str, Any]] = field(default_factory=list)
    created_at: str = field(default_factory=_timestamp)
    updated_at: str = field(default_factory=_timestamp)

    def to_dict(self, include_event: bool = True, include_history: bool = True) -> dict:
        data: dict[str, Any] = {
            "id": self.id,
            "playerId": self.player_id,
            "priority": self.priority,
            "status": self.status,
            "assignedModeratorId": self.assigned_moderator_id,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if include_event:
            data["event"] = self.event
        if include_history:
            data["history"] = list(self.history)
        return data


class MockBackend:
    """
    Routes (method, path) pairs to in-memory records.

    Supported routes:
        POST   /moderation/cases                 create a case
        GET    /moderation/cases/stats           aggregate counts
        GET    /moderation/cases/player/<id>     cases for a player
        POST   /moderation/cases/<id>            fetch a case
        PATCH  /moderation/cases/<id>            update a case
        POST   /moderation/action/<id>           apply a moderation action
        POST   /audit                            write an audit entry
        GET    /audit                            list audit entries
    """

    def __init__(self) -> None:
        self._cases: dict[str, MockCase] = {}
        self._audits: list[dict[str, Any]] = []
        self._counter = itertools.count(1000)
        self._requests = 0

    def reset(self) -> None:
        self._cases.clear()
        self._audits.clear()
        self._counter = itertools.count(1000)
        self._requests = 0

    def get_stats(self) -> dict[str, int]:
        return {
            "cases": len(self._cases),
            "audits": len(self._audits),
            "requests": self._requests,
        }

    async def handle_request(
        self,
        method: str,
        path: str,
        body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Dispatch a request and wrap the outcome in a success/error envelope."""
        self._requests += 1
        method = method.upper()
        segments = [s for s in path.split("?")[0].split("/") if s]
        params = params or {}

        try:
            if not segments:
                return self._ok({})
            if segments[0] == "moderation" and len(segments) > 1:
                if segments[1] == "cases":
                    return self._handle_cases(method, segments[2:], body, params)
                if segments[1] == "action" and len(segments) == 3:
                    return self._take_action(segments[2], body or {})
            if segments[0] == "audit":
                return self._handle_audit(method, body, params)
        except (KeyError, ValidationError) as e:
            logger.warning(f"Mock backend rejected {method} {path}: {e}")
            return self._error(str(e))

        logger.warning(f"Mock backend received unknown endpoint {method} {path}")
        return self._ok({})

    def _handle_cases(
        self,
        method: str,
        segments: list[str],
        body: Any,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        if not segments and method == "POST":
            return self._create_case(body or {})

        if len(segments) == 1:
            identifier = segments[0]
            if identifier == "stats" and method == "GET":
                return self._case_stats()
            if method == "POST":
                options = body or {}
                case = self._get_case(identifier)
                return self._ok(
                    {
                        "case": case.to_dict(
                            include_event=options.get("includeEvent", True),
                            include_history=options.get("includeHistory", True),
                        )
                    }
                )
            if method == "PATCH":
                return self._update_case(identifier, body or {})

        if len(segments) == 2 and segments[0] == "player" and method == "GET":
            return self._player_cases(segments[1], params)

        return self._error(f"Unsupported case route {method} /{'/'.join(segments)}")

    def _create_case(self, body: dict[str, Any]) -> dict[str, Any]:
        player_id = body.get("playerId")
        if not player_id:
            raise ValidationError("playerId", player_id, "Player ID is required")

        case_id = f"CASE-{next(self._counter)}"
        case = MockCase(
            id=case_id,
            player_id=str(player_id),
            priority=body.get("priority", "MEDIUM"),
            event=body.get("event", {}),
        )
        case.history.append({"action": "created", "timestamp": case.created_at})
        self._cases[case_id] = case
        return self._ok({"caseId": case_id, "case": case.to_dict()})

    def _get_case(self, case_id: str) -> MockCase:
        case = self._cases.get(case_id)
        if case is None:
            raise KeyError(f"Case {case_id} not found")
        return case

    def _update_case(self, case_id: str, body: dict[str, Any]) -> dict[str, Any]:
        case = self._get_case(case_id)
        if "status" in body:
            case.status = body["status"]
        if "priority" in body:
            case.priority = body["priority"]
        if "assignedModeratorId" in body:
            case.assigned_moderator_id = body["assignedModeratorId"]
        case.updated_at = _timestamp()
        case.history.append(
            {"action": "updated", "changes": dict(body), "timestamp": case.updated_at}
        )
        return self._ok({"case": case.to_dict()})

    def _player_cases(self, player_id: str, params: dict[str, Any]) -> dict[str, Any]:
        limit = int(params.get("limit", 10))
        offset = int(params.get("offset", 0))
        matches = [c for c in self._cases.values() if c.player_id == player_id]
        page = matches[offset : offset + limit]
        return self._ok(
            {
                "cases": [c.to_dict(include_history=False) for c in page],
                "total": len(matches),
                "hasMore": offset + limit < len(matches),
            }
        )

    def _case_stats(self) -> dict[str, Any]:
        by_priority: dict[str, int] = {}
        for case in self._cases.values():
            by_priority[case.priority] = by_priority.get(case.priority, 0) + 1
        open_cases = sum(1 for c in self._cases.values() if c.status == "OPEN")
        return self._ok(
            {
                "totalCases": len(self._cases),
                "openCases": open_cases,
                "closedCases": len(self._cases) - open_cases,
                "casesByPriority": by_priority,
            }
        )

    def _take_action(self, case_id: str, body: dict[str, Any]) -> dict[str, Any]:
        case = self._get_case(case_id)
        action = body.get("action")
        if not action:
            raise ValidationError("action", action, "Action is required")

        if action in ("BAN", "RESOLVE", "DISMISS"):
            case.status = "CLOSED"
        case.updated_at = _timestamp()
        case.history.append(
            {
                "action": action,
                "moderatorId": body.get("moderatorId"),
                "reason": body.get("reason"),
                "timestamp": case.updated_at,
            }
        )
        return self._ok({"caseId": case_id, "action": action, "status": case.status})

    def _handle_audit(
        self, method: str, body: Any, params: dict[str, Any]
    ) -> dict[str, Any]:
        if method == "POST":
            entry = {"id": f"AUDIT-{len(self._audits) + 1}", **(body or {})}
            entry.setdefault("timestamp", _timestamp())
            self._audits.append(entry)
            return self._ok({"entry": entry})

        limit = int(params.get("limit", 50))
        return self._ok({"entries": self._audits[-limit:], "total": len(self._audits)})

    @staticmethod
    def _ok(data: Any) -> dict[str, Any]:
        return {"success": True, "data": data}

    @staticmethod
    def _error(message: str) -> dict[str, Any]:
        return {"success": False, "error": message}
