"""Test doubles and workflow builders shared by the test modules."""

import json
from typing import Any, Callable, Dict, List, Optional

import httpx

GATEWAY_URL = "https://gateway.test"


class FakeGateway:
    """httpx.MockTransport handler with per-path canned responses."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self._routes: Dict[str, Callable[[httpx.Request], httpx.Response]] = {}

    def respond(self, path: str, status_code: int = 200, json_body: Any = None,
                text: Optional[str] = None) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if text is not None:
                return httpx.Response(status_code, text=text)
            return httpx.Response(status_code, json=json_body if json_body is not None else {})
        self._routes[path] = handler

    def fail(self, path: str, exc: Exception) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise exc
        self._routes[path] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self._routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404, text=f"no route for {request.url.path}")
        return handler(request)

    def calls(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def body(self, path: str, index: int = 0) -> Dict[str, Any]:
        return json.loads(self.calls(path)[index].content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class FakeJobQueue:
    """Captures enqueued jobs without running them."""

    def __init__(self):
        self.enqueued: List[tuple] = []

    async def enqueue(self, queue_name: str, payload: Dict[str, Any]) -> str:
        self.enqueued.append((queue_name, payload))
        return f"job-{len(self.enqueued)}"


def trigger_node(node_id: str = "trigger", event: str = "deal.created") -> Dict[str, Any]:
    return {"id": node_id, "type": "trigger_event", "position": {"x": 0, "y": 0},
            "data": {"event": event}}


def schedule_node(node_id: str = "schedule", cron: str = "0 9 * * 1", **data) -> Dict[str, Any]:
    return {"id": node_id, "type": "trigger_schedule", "position": {"x": 0, "y": 0},
            "data": {"cron": cron, **data}}


def action_node(node_id: str, node_type: str, **data) -> Dict[str, Any]:
    return {"id": node_id, "type": node_type, "position": {"x": 0, "y": 0}, "data": data}


def edge(source: str, target: str) -> Dict[str, Any]:
    return {"id": f"{source}-{target}", "source": source, "target": target}


def chain(*nodes: Dict[str, Any]) -> Dict[str, Any]:
    """Workflow whose nodes run one after another in the given order."""
    ids = [n["id"] for n in nodes]
    return {"nodes": list(nodes), "edges": [edge(a, b) for a, b in zip(ids, ids[1:])]}
