"""Expected success statuses per (method, path template).

The service reuses one path for several verbs with different success
codes, so a status is only meaningful together with its method and
route. Paths here are relative to the service root
(``{endpoint}/contentunderstanding``).
"""

from typing import Dict, FrozenSet, Optional, Union

from yarl import URL

from content_understanding_client.transport import DEFAULT_BASE_PATH, RawResponse

RESPONSE_MAP: Dict[str, FrozenSet[int]] = {
    "GET /analyzers/{analyzerId}/operations/{operationId}": frozenset({200}),
    "GET /analyzers/{analyzerId}": frozenset({200}),
    "PUT /analyzers/{analyzerId}": frozenset({200, 201}),
    "PATCH /analyzers/{analyzerId}": frozenset({200}),
    "DELETE /analyzers/{analyzerId}": frozenset({204}),
    "GET /analyzers": frozenset({200}),
    "GET /analyzers/{analyzerId}:analyze": frozenset({200, 202}),
    "POST /analyzers/{analyzerId}:analyze": frozenset({202}),
    "GET /analyzers/{analyzerId}:analyzeBinary": frozenset({200, 202}),
    "POST /analyzers/{analyzerId}:analyzeBinary": frozenset({202}),
    "GET /analyzerResults/{operationId}": frozenset({200}),
    "DELETE /analyzerResults/{operationId}": frozenset({204}),
    "GET /analyzerResults/{operationId}/files/{+path}": frozenset({200}),
    "GET /analyzers/{analyzerId}:copy": frozenset({200, 202}),
    "POST /analyzers/{analyzerId}:copy": frozenset({202}),
    "POST /analyzers/{analyzerId}:grantCopyAuthorization": frozenset({200}),
    "GET /defaults": frozenset({200}),
    "PATCH /defaults": frozenset({200}),
}


def _segment_matches(template_part: str, path_part: str) -> bool:
    if template_part.startswith("{") and "}" in template_part:
        # "{analyzerId}:analyze" matches any non-empty id followed by ":analyze"
        suffix = template_part[template_part.index("}") + 1 :]
        if not path_part.endswith(suffix):
            return False
        return len(path_part) > len(suffix)
    return template_part == path_part


def _template_matches(template: str, path: str) -> bool:
    template_parts = template.split("/")
    path_parts = path.split("/")
    if template_parts[-1].startswith("{+"):
        # Reserved expansion: the last placeholder may contain slashes.
        fixed = len(template_parts) - 1
        if len(path_parts) <= fixed:
            return False
        path_parts = path_parts[:fixed] + ["/".join(path_parts[fixed:])]
    if len(template_parts) != len(path_parts):
        return False
    return all(
        _segment_matches(template_part, path_part)
        for template_part, path_part in zip(template_parts, path_parts)
    )


def match_route(method: str, path: str) -> Optional[str]:
    """Returns the routing key for ``method path``, or None.

    An exact key wins; otherwise the longest matching template does.
    """
    method = method.upper()
    exact = f"{method} {path}"
    if exact in RESPONSE_MAP:
        return exact

    matched_key = None
    matched_len = -1
    for key in RESPONSE_MAP:
        key_method, template = key.split(" ", 1)
        if key_method != method:
            continue
        if _template_matches(template, path) and len(template) > matched_len:
            matched_key = key
            matched_len = len(template)
    return matched_key


def is_unexpected(method: str, path: str, status: Union[int, str]) -> bool:
    """True unless ``status`` is an expected success for the matched route.

    An unmatched route is always unexpected.
    """
    key = match_route(method, path)
    if key is None:
        return True
    return int(status) not in RESPONSE_MAP[key]


def service_path(url: str, base_path: str = DEFAULT_BASE_PATH) -> str:
    """Service-relative path of ``url``, without query string."""
    path = URL(url).path
    base_path = base_path.rstrip("/")
    if base_path and (path == base_path or path.startswith(base_path + "/")):
        path = path[len(base_path) :]
    return path or "/"


def is_unexpected_response(
    response: RawResponse, base_path: str = DEFAULT_BASE_PATH
) -> bool:
    url = response.headers.get("x-ms-original-url") or response.url
    return is_unexpected(response.method, service_path(url, base_path), response.status)
