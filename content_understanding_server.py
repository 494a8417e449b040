import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from aiohttp import web
from loguru import logger
from multidict import CIMultiDict

BASE_PATH = "/contentunderstanding"


def _error(status: int, code: str, message: str) -> web.Response:
    return web.json_response({"error": {"code": code, "message": message}}, status=status)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ContentUnderstandingServer:
    """In-process fake of the Content Understanding REST service.

    Every operation reports ``Running`` for ``running_polls`` status
    requests before it finishes. Inputs whose URL contains ``invalid``
    make analysis fail. All requests are recorded in ``requests``.
    """

    def __init__(
        self,
        api_key: str = "test-key",
        running_polls: int = 1,
        page_size: int = 2,
        retry_after: Optional[int] = None,
        relative_locations: bool = False,
        path_prefix: str = "",
    ):
        self.api_key = api_key
        self.running_polls = running_polls
        self.page_size = page_size
        self.retry_after = retry_after
        self.relative_locations = relative_locations
        # Serves the API below an extra path, as a gateway in front of it would.
        self.base_path = path_prefix.rstrip("/") + BASE_PATH
        self.analyzers: Dict[str, Dict[str, Any]] = {}
        self.operations: Dict[str, Dict[str, Any]] = {}
        self.defaults: Dict[str, str] = {}
        self.requests: List[Tuple[str, str]] = []
        self.request_bodies: List[Tuple[str, str, bytes, CIMultiDict]] = []
        self._ids = itertools.count(1)
        self.runner: Optional[web.AppRunner] = None
        self.logger = logger

        self.app = web.Application(middlewares=[self.record, self.authenticate])
        self.app.router.add_get(self.base_path + "/analyzers", self.handle_list)
        self.app.router.add_get(
            self.base_path + "/analyzers/{analyzer_id}/operations/{operation_id}",
            self.handle_operation_status,
        )
        self.app.router.add_route(
            "*", self.base_path + "/analyzers/{target}", self.handle_analyzer
        )
        self.app.router.add_get(
            self.base_path + "/analyzerResults/{operation_id}/files/{path:.+}",
            self.handle_result_file,
        )
        self.app.router.add_route(
            "*", self.base_path + "/analyzerResults/{operation_id}", self.handle_result
        )
        self.app.router.add_route("*", self.base_path + "/defaults", self.handle_defaults)

    # Middlewares

    @web.middleware
    async def record(self, request: web.Request, handler):
        body = await request.read()
        self.requests.append((request.method, request.path))
        self.request_bodies.append(
            (request.method, request.path_qs, body, CIMultiDict(request.headers))
        )
        return await handler(request)

    @web.middleware
    async def authenticate(self, request: web.Request, handler):
        key = request.headers.get("Ocp-Apim-Subscription-Key")
        bearer = request.headers.get("Authorization", "")
        if key != self.api_key and not bearer.startswith("Bearer "):
            self.logger.info(f"Rejecting unauthenticated {request.method} {request.path}")
            return _error(401, "Unauthorized", "Access denied due to invalid subscription key.")
        return await handler(request)

    # Helpers

    def count(self, method: str, path_prefix: str = "") -> int:
        return sum(
            1
            for recorded_method, path in self.requests
            if recorded_method == method and path.startswith(self.base_path + path_prefix)
        )

    def _location(self, path: str) -> str:
        return path if self.relative_locations else self.base_path + path

    def _accepted(self, body: Any, location: str, status: int = 202) -> web.Response:
        headers = {"Operation-Location": self._location(location)}
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return web.json_response(body, status=status, headers=headers)

    def _start_operation(
        self, result: Optional[Dict[str, Any]], error: Optional[Dict[str, Any]] = None
    ) -> str:
        operation_id = f"op{next(self._ids)}"
        self.operations[operation_id] = {
            "remaining": self.running_polls,
            "result": result,
            "error": error,
            "deleted": False,
        }
        return operation_id

    def _operation_body(self, operation_id: str) -> Dict[str, Any]:
        operation = self.operations[operation_id]
        if operation["remaining"] > 0:
            operation["remaining"] -= 1
            return {"id": operation_id, "status": "Running"}
        if operation["error"] is not None:
            return {"id": operation_id, "status": "Failed", "error": operation["error"]}
        return {
            "id": operation_id,
            "status": "Succeeded",
            "result": operation["result"],
            "usage": {"documentPages": 1, "tokens": {"gpt-4.1-input": 120}},
        }

    def _status_response(self, body: Dict[str, Any]) -> web.Response:
        headers = {}
        if self.retry_after is not None and body["status"] == "Running":
            headers["Retry-After"] = str(self.retry_after)
        return web.json_response(body, headers=headers)

    @staticmethod
    def _analyze_result(analyzer_id: str, mime_type: str):
        if mime_type.startswith(("video/", "audio/")) or "video" in analyzer_id:
            contents = [
                {
                    "kind": "audioVisual",
                    "mimeType": mime_type,
                    "markdown": "# Video: 00:00.000 => 00:02.000",
                    "startTimeMs": 0,
                    "endTimeMs": 2000,
                    "keyFrames": [{"frameTimeMs": 0}, {"frameTimeMs": 1000}],
                    "transcriptPhrases": [],
                }
            ]
        else:
            contents = [
                {
                    "kind": "document",
                    "mimeType": mime_type,
                    "markdown": "# Invoice",
                    "startPageNumber": 1,
                    "endPageNumber": 1,
                    "fields": {
                        "CustomerName": {
                            "type": "string",
                            "valueString": "Contoso",
                            "confidence": 0.93,
                        },
                        "TotalAmount": {"type": "number", "valueNumber": 110.0},
                    },
                }
            ]
        return {
            "analyzerId": analyzer_id,
            "apiVersion": "2025-11-01",
            "createdAt": _now(),
            "contents": contents,
        }

    # Handlers

    async def handle_list(self, request: web.Request) -> web.Response:
        skip = int(request.query.get("skip", "0"))
        analyzers = list(self.analyzers.values())
        page = analyzers[skip : skip + self.page_size]
        body: Dict[str, Any] = {"value": page}
        if skip + self.page_size < len(analyzers):
            body["nextLink"] = self._location(f"/analyzers?skip={skip + self.page_size}")
        return web.json_response(body)

    async def handle_operation_status(self, request: web.Request) -> web.Response:
        operation_id = request.match_info["operation_id"]
        if operation_id not in self.operations:
            return _error(404, "NotFound", f"Operation {operation_id} not found.")
        body = self._operation_body(operation_id)
        if body["status"] == "Succeeded":
            self.analyzers[body["result"]["analyzerId"]] = body["result"]
        return self._status_response(body)

    async def handle_analyzer(self, request: web.Request) -> web.Response:
        analyzer_id, _, action = request.match_info["target"].partition(":")
        if action:
            if request.method != "POST":
                return _error(405, "MethodNotAllowed", f"{request.method} not allowed.")
            if action == "analyze":
                return await self._analyze(request, analyzer_id)
            if action == "analyzeBinary":
                return await self._analyze_binary(request, analyzer_id)
            if action == "copy":
                return await self._copy(request, analyzer_id)
            if action == "grantCopyAuthorization":
                return await self._grant_copy_authorization(request, analyzer_id)
            return _error(404, "NotFound", f"Unknown action {action}.")

        if request.method == "PUT":
            return await self._create_or_replace(request, analyzer_id)
        if analyzer_id not in self.analyzers:
            return _error(404, "ModelNotFound", f"Analyzer {analyzer_id} not found.")
        if request.method == "GET":
            return web.json_response(self.analyzers[analyzer_id])
        if request.method == "PATCH":
            if request.content_type != "application/merge-patch+json":
                return _error(415, "UnsupportedMediaType", request.content_type)
            patch = await request.json()
            analyzer = self.analyzers[analyzer_id]
            for key, value in patch.items():
                if value is None:
                    analyzer.pop(key, None)
                else:
                    analyzer[key] = value
            analyzer["lastModifiedAt"] = _now()
            return web.json_response(analyzer)
        if request.method == "DELETE":
            del self.analyzers[analyzer_id]
            return web.Response(status=204)
        return _error(405, "MethodNotAllowed", f"{request.method} not allowed.")

    async def _create_or_replace(self, request: web.Request, analyzer_id: str):
        exists = analyzer_id in self.analyzers
        if exists and request.query.get("allowReplace") != "true":
            return _error(409, "Conflict", f"Analyzer {analyzer_id} already exists.")
        definition = await request.json()
        created = {
            **definition,
            "analyzerId": analyzer_id,
            "status": "creating",
            "createdAt": _now(),
            "lastModifiedAt": _now(),
        }
        operation_id = self._start_operation({**created, "status": "ready"})
        self.logger.info(f"Creating analyzer {analyzer_id} ({operation_id})")
        return self._accepted(
            created,
            f"/analyzers/{analyzer_id}/operations/{operation_id}",
            status=200 if exists else 201,
        )

    async def _analyze(self, request: web.Request, analyzer_id: str):
        body = await request.json()
        inputs = body.get("inputs") or []
        if not inputs:
            return _error(400, "InvalidRequest", "At least one input is required.")
        error = None
        if any("invalid" in (item.get("url") or "") for item in inputs):
            error = {"code": "InvalidInput", "message": "bad url"}
        mime_type = inputs[0].get("mimeType") or "application/pdf"
        operation_id = self._start_operation(
            self._analyze_result(analyzer_id, mime_type), error
        )
        return self._accepted({}, f"/analyzerResults/{operation_id}")

    async def _analyze_binary(self, request: web.Request, analyzer_id: str):
        data = await request.read()
        if not data:
            return _error(400, "InvalidRequest", "Request body is empty.")
        operation_id = self._start_operation(
            self._analyze_result(analyzer_id, request.content_type)
        )
        return self._accepted({}, f"/analyzerResults/{operation_id}")

    async def _copy(self, request: web.Request, analyzer_id: str):
        body = await request.json()
        source = self.analyzers.get(body.get("sourceAnalyzerId", ""))
        if source is None:
            return _error(404, "ModelNotFound", "Source analyzer not found.")
        copied = {**source, "analyzerId": analyzer_id, "status": "ready"}
        operation_id = self._start_operation(copied)
        return self._accepted({}, f"/analyzers/{analyzer_id}/operations/{operation_id}")

    async def _grant_copy_authorization(self, request: web.Request, analyzer_id: str):
        body = await request.json()
        expires = datetime.now(timezone.utc) + timedelta(hours=1)
        return web.json_response(
            {
                "source": f"/analyzers/{analyzer_id}",
                "targetAzureResourceId": body["targetAzureResourceId"],
                "expiresAt": expires.isoformat(),
            }
        )

    async def handle_result(self, request: web.Request) -> web.Response:
        operation_id = request.match_info["operation_id"]
        operation = self.operations.get(operation_id)
        if operation is None or operation["deleted"]:
            return _error(404, "NotFound", f"Result {operation_id} not found.")
        if request.method == "DELETE":
            operation["deleted"] = True
            return web.Response(status=204)
        if request.method != "GET":
            return _error(405, "MethodNotAllowed", f"{request.method} not allowed.")
        return self._status_response(self._operation_body(operation_id))

    async def handle_result_file(self, request: web.Request) -> web.Response:
        operation_id = request.match_info["operation_id"]
        if operation_id not in self.operations:
            return _error(404, "NotFound", f"Result {operation_id} not found.")
        path = request.match_info["path"]
        return web.Response(
            body=f"file:{path}".encode("utf-8"), content_type="application/octet-stream"
        )

    async def handle_defaults(self, request: web.Request) -> web.Response:
        if request.method == "PATCH":
            patch = await request.json()
            for name, deployment in (patch.get("modelDeployments") or {}).items():
                if deployment is None:
                    self.defaults.pop(name, None)
                else:
                    self.defaults[name] = deployment
        elif request.method != "GET":
            return _error(405, "MethodNotAllowed", f"{request.method} not allowed.")
        return web.json_response({"modelDeployments": self.defaults})

    async def start(self, port: int = 8080):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
