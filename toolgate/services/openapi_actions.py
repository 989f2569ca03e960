"""Compile OpenAPI documents into function signatures and HTTP request builders."""

import base64
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union
from urllib.parse import quote

import httpx
import yaml

from toolgate.infra.config import config
from toolgate.infra.errors import ActionValidationError, ConfigurationError, ToolInvocationError
from toolgate.models.action import ActionMetadata, AuthorizationType, AuthType

logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "post", "put", "patch", "delete", "head", "options")
PARAMETER_LOCATIONS = ("path", "query", "header", "cookie")
MAX_FUNCTION_NAME_LENGTH = 64


@dataclass
class FunctionSignature:
    """Model-facing description of one operation."""
    name: str
    description: str
    parameters: Dict[str, Any]


@dataclass
class OpenAPIValidationResult:
    status: bool
    message: str
    spec: Optional[Dict[str, Any]] = None
    server_url: Optional[str] = None


@dataclass
class PreparedRequest:
    method: str
    url: str
    params: Dict[str, Any] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    json_body: Optional[Dict[str, Any]] = None
    form_body: Optional[Dict[str, Any]] = None


def parse_openapi_document(raw_spec: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Parse a raw OpenAPI document (JSON or YAML).

    Raises:
        ActionValidationError: If the document is not a mapping
    """
    if isinstance(raw_spec, dict):
        return raw_spec
    if not raw_spec or not raw_spec.strip():
        raise ActionValidationError("OpenAPI document is empty")

    try:
        document = json.loads(raw_spec)
    except json.JSONDecodeError:
        try:
            document = yaml.safe_load(raw_spec)
        except yaml.YAMLError as e:
            raise ActionValidationError(f"OpenAPI document is neither JSON nor YAML: {e}")

    if not isinstance(document, dict):
        raise ActionValidationError("OpenAPI document must be a mapping")
    return document


def validate_and_parse_openapi_spec(raw_spec: Union[str, Dict[str, Any]]) -> OpenAPIValidationResult:
    """
    Parse an action set's OpenAPI document and extract its server URL.

    Returns:
        OpenAPIValidationResult with spec and server_url set when valid
    """
    try:
        spec = parse_openapi_document(raw_spec)
    except ActionValidationError as e:
        return OpenAPIValidationResult(False, e.message)

    servers = spec.get("servers")
    if not isinstance(servers, list) or not servers or not isinstance(servers[0], dict):
        return OpenAPIValidationResult(False, "Could not find a valid URL in `servers`")
    server_url = servers[0].get("url")
    if not server_url or not isinstance(server_url, str):
        return OpenAPIValidationResult(False, "Could not find a valid URL in `servers`")

    paths = spec.get("paths")
    if not isinstance(paths, dict) or not paths:
        return OpenAPIValidationResult(False, "No paths found in the OpenAPI spec")

    return OpenAPIValidationResult(True, "OpenAPI spec is valid", spec, server_url.rstrip("/"))


def sanitize_function_name(name: str) -> str:
    sanitized = re.sub(r"[^a-zA-Z0-9_-]", "_", name).strip("_")
    return sanitized[:MAX_FUNCTION_NAME_LENGTH] or "operation"


def resolve_refs(node: Any, spec: Dict[str, Any], seen: Tuple[str, ...] = ()) -> Any:
    """Inline local "#/..." $refs. Cycles resolve to an empty object."""
    if isinstance(node, list):
        return [resolve_refs(item, spec, seen) for item in node]
    if not isinstance(node, dict):
        return node

    ref = node.get("$ref")
    if isinstance(ref, str) and ref.startswith("#/"):
        if ref in seen:
            return {}
        target: Any = spec
        for part in ref[2:].split("/"):
            part = part.replace("~1", "/").replace("~0", "~")
            target = target.get(part, {}) if isinstance(target, dict) else {}
        return resolve_refs(target, spec, seen + (ref,))

    return {key: resolve_refs(value, spec, seen) for key, value in node.items()}


class ActionRequest:
    """Builds and sends the HTTP request for one OpenAPI operation."""

    def __init__(
        self,
        domain: str,
        path: str,
        method: str,
        operation: str,
        content_type: str = "application/json",
        param_locations: Optional[Dict[str, str]] = None,
    ):
        self.domain = domain.rstrip("/")
        self.path = path
        self.method = method.upper()
        self.operation = operation
        self.content_type = content_type
        self.param_locations = param_locations or {}

    def __repr__(self) -> str:
        return f"ActionRequest({self.method} {self.domain}{self.path} as {self.operation})"

    def prepare(
        self,
        args: Optional[Dict[str, Any]],
        metadata: Optional[ActionMetadata] = None,
        access_token: Optional[str] = None,
    ) -> PreparedRequest:
        """
        Place arguments by parameter location and apply authentication.

        Arguments without a declared location go to the query string for GET,
        DELETE and HEAD requests and to the body otherwise.
        """
        args = dict(args or {})
        path = self.path
        request = PreparedRequest(method=self.method, url="")
        body: Dict[str, Any] = {}

        for name, value in args.items():
            location = self.param_locations.get(name)
            if location == "path":
                path = path.replace(f"{{{name}}}", quote(str(value), safe=""))
            elif location == "query":
                request.params[name] = value
            elif location == "header":
                request.headers[name] = str(value)
            elif location == "cookie":
                request.cookies[name] = str(value)
            elif self.method in ("GET", "DELETE", "HEAD"):
                request.params[name] = value
            else:
                body[name] = value

        request.url = f"{self.domain}{path}"
        if body:
            if self.content_type == "application/x-www-form-urlencoded":
                request.form_body = body
            else:
                request.json_body = body

        if metadata is not None:
            self._apply_auth(request, metadata, access_token)
        return request

    def _apply_auth(self, request: PreparedRequest, metadata: ActionMetadata, access_token: Optional[str]) -> None:
        auth = metadata.auth
        if auth.type == AuthType.SERVICE_HTTP:
            if not metadata.api_key:
                raise ConfigurationError(f"Action '{self.operation}' requires an API key but none is configured")
            if auth.authorization_type == AuthorizationType.BASIC:
                encoded = base64.b64encode(metadata.api_key.encode("utf-8")).decode("ascii")
                request.headers["Authorization"] = f"Basic {encoded}"
            elif auth.authorization_type == AuthorizationType.CUSTOM:
                header = auth.custom_auth_header or "X-API-Key"
                request.headers[header] = metadata.api_key
            else:
                request.headers["Authorization"] = f"Bearer {metadata.api_key}"
        elif auth.type == AuthType.OAUTH:
            if not access_token:
                raise ConfigurationError(f"Action '{self.operation}' requires an OAuth access token")
            request.headers["Authorization"] = f"Bearer {access_token}"

    async def execute(
        self,
        args: Optional[Dict[str, Any]],
        metadata: Optional[ActionMetadata] = None,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Send the request and return the response body as text.

        Raises:
            ToolInvocationError: On HTTP errors or non-2xx responses
        """
        prepared = self.prepare(args, metadata, access_token)
        async with httpx.AsyncClient(timeout=timeout or config.ACTION_REQUEST_TIMEOUT) as client:
            try:
                response = await client.request(
                    prepared.method,
                    prepared.url,
                    params=prepared.params or None,
                    headers=prepared.headers or None,
                    cookies=prepared.cookies or None,
                    json=prepared.json_body,
                    data=prepared.form_body,
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise ToolInvocationError(
                    self.operation,
                    f"Action request failed with status {e.response.status_code}: {e.response.text[:500]}",
                )
            except httpx.HTTPError as e:
                raise ToolInvocationError(self.operation, f"Action request failed: {e}")

        content_type = response.headers.get("content-type", "")
        if "application/json" in content_type:
            return json.dumps(response.json())
        return response.text


def _expect_mapping(value: Any, where: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ActionValidationError(f"{where} must be a mapping, got {type(value).__name__}")
    return value


def _expect_list(value: Any, where: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ActionValidationError(f"{where} must be a list, got {type(value).__name__}")
    return value


def _request_body_schema(operation: Dict[str, Any], where: str) -> Tuple[Dict[str, Any], str]:
    request_body = _expect_mapping(operation.get("requestBody"), f"{where} requestBody")
    content = _expect_mapping(request_body.get("content"), f"{where} requestBody content")
    for content_type in ("application/json", "application/x-www-form-urlencoded"):
        if content_type in content:
            media = _expect_mapping(content[content_type], f"{where} requestBody {content_type}")
            return _expect_mapping(media.get("schema"), f"{where} requestBody schema"), content_type
    return {}, "application/json"


def openapi_to_functions(
    spec: Dict[str, Any],
    server_url: Optional[str] = None,
) -> Tuple[List[FunctionSignature], Dict[str, ActionRequest]]:
    """
    Turn every operation of an OpenAPI document into a function signature and
    a request builder keyed by function name.

    Args:
        spec: Parsed OpenAPI document
        server_url: Base URL; defaults to servers[0].url

    Returns:
        (function_signatures, request_builders)

    Raises:
        ActionValidationError: If an operation node has the wrong shape
    """
    base_url = server_url or spec["servers"][0]["url"]
    signatures: List[FunctionSignature] = []
    builders: Dict[str, ActionRequest] = {}

    for path, path_item in _expect_mapping(spec.get("paths"), "paths").items():
        if not isinstance(path_item, dict):
            continue
        path_item = resolve_refs(path_item, spec)
        shared_params = _expect_list(path_item.get("parameters"), f"{path} parameters")

        for method in HTTP_METHODS:
            operation = path_item.get(method)
            if not isinstance(operation, dict):
                continue

            where = f"{method.upper()} {path}"
            raw_name = str(operation.get("operationId") or f"{method}_{path}")
            name = sanitize_function_name(raw_name)
            if name in builders:
                logger.warning(f"Duplicate operation name '{name}' in OpenAPI spec; keeping the first")
                continue

            properties: Dict[str, Any] = {}
            required: List[str] = []
            locations: Dict[str, str] = {}

            for param in shared_params + _expect_list(operation.get("parameters"), f"{where} parameters"):
                if not isinstance(param, dict) or param.get("in") not in PARAMETER_LOCATIONS:
                    continue
                param_name = param.get("name")
                if not param_name:
                    continue
                schema = _expect_mapping(param.get("schema"), f"{where} parameter {param_name}")
                schema = dict(schema or {"type": "string"})
                if param.get("description") and "description" not in schema:
                    schema["description"] = param["description"]
                properties[param_name] = schema
                locations[param_name] = param["in"]
                if param.get("required") or param["in"] == "path":
                    required.append(param_name)

            body_schema, content_type = _request_body_schema(operation, where)
            properties.update(_expect_mapping(body_schema.get("properties"), f"{where} requestBody properties"))
            required.extend(_expect_list(body_schema.get("required"), f"{where} requestBody required"))

            parameters: Dict[str, Any] = {"type": "object", "properties": properties}
            if required:
                parameters["required"] = sorted(set(required), key=required.index)

            description = operation.get("description") or operation.get("summary") or ""
            signatures.append(FunctionSignature(name=name, description=description, parameters=parameters))
            builders[name] = ActionRequest(
                domain=base_url,
                path=path,
                method=method,
                operation=name,
                content_type=content_type,
                param_locations=locations,
            )

    return signatures, builders
