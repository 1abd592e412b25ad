from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import dataclass
from typing import Any, Callable

from ._version import __version__
from .client import SkillStudioError, SkillStudioHTTPError
from .config import INSTALL_METHODS, load_config, merge_env
from .service import SkillStudio

logger = logging.getLogger(__name__)

MCP_PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "skillstudio-mcp"

_REPO_PROPS: dict[str, Any] = {
    "owner": {"type": "string", "description": "GitHub owner (user or organization)."},
    "repo": {"type": "string", "description": "GitHub repository name."},
}


def _json_dumps(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def _require_str(arguments: dict[str, Any], key: str) -> str:
    value = arguments.get(key)
    if not isinstance(value, str) or not value.strip():
        raise SkillStudioError(f"`{key}` must be a non-empty string.")
    return value.strip()


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    properties: dict[str, Any]
    required: tuple[str, ...]
    handler: Callable[[dict[str, Any]], Any]

    def descriptor(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": {
                "type": "object",
                "properties": self.properties,
                "required": list(self.required),
                "additionalProperties": False,
            },
        }


class StdioMCPServer:
    def __init__(self, studio: SkillStudio) -> None:
        self.studio = studio
        self._tools: dict[str, Tool] = {t.name: t for t in self._build_tools()}

    def _build_tools(self) -> list[Tool]:
        s = self.studio
        return [
            Tool(
                "build_catalog",
                "Sync every configured repository and rebuild the skill index.",
                {"sync": {"type": "boolean", "default": True, "description": "Fetch before indexing."}},
                (),
                self._build_catalog,
            ),
            Tool(
                "fetch_repo",
                "Clone or update one repository, then rebuild the index.",
                dict(_REPO_PROPS),
                ("owner", "repo"),
                lambda a: s.fetch_repo(_require_str(a, "owner"), _require_str(a, "repo")).to_dict(),
            ),
            Tool(
                "get_all_skills",
                "List indexed skills with installed, favorite and fetched flags.",
                {},
                (),
                lambda a: [v.to_dict() for v in s.get_all_skills()],
            ),
            Tool(
                "get_all_repos",
                "List configured repositories with fetch state and skill counts.",
                {},
                (),
                lambda a: [v.to_dict() for v in s.get_all_repos()],
            ),
            Tool(
                "get_skill_content",
                "Return the raw manifest of an indexed skill.",
                {"skill_id": {"type": "string", "description": "Skill id in form owner/repo/name."}},
                ("skill_id",),
                lambda a: s.get_skill_content(_require_str(a, "skill_id")),
            ),
            Tool(
                "get_repo_readme",
                "Return the README of a fetched repository.",
                dict(_REPO_PROPS),
                ("owner", "repo"),
                lambda a: s.get_repo_readme(_require_str(a, "owner"), _require_str(a, "repo")),
            ),
            Tool(
                "install_skill",
                "Install a skill into the local skills directory.",
                {
                    **_REPO_PROPS,
                    "skill_name": {"type": "string"},
                    "skill_path": {"type": "string", "description": "Skill folder within the skills path, or '.'."},
                    "skills_path": {"type": "string", "description": "Repository skills path, or '.'."},
                    "method": {"type": "string", "enum": list(INSTALL_METHODS)},
                },
                ("owner", "repo", "skill_name", "skill_path", "skills_path"),
                lambda a: s.install_skill(
                    _require_str(a, "owner"),
                    _require_str(a, "repo"),
                    _require_str(a, "skill_name"),
                    _require_str(a, "skill_path"),
                    _require_str(a, "skills_path"),
                    method=a.get("method"),
                ),
            ),
            Tool(
                "uninstall_skill",
                "Remove an installed skill by folder name.",
                {"skill_name": {"type": "string"}},
                ("skill_name",),
                lambda a: {"removed": s.uninstall_skill(_require_str(a, "skill_name"))},
            ),
            Tool(
                "get_installed_skills",
                "List installed skill folder names.",
                {},
                (),
                lambda a: s.get_installed_skills().names(),
            ),
            Tool(
                "get_favorites",
                "Return favorite skill ids and repository keys.",
                {},
                (),
                lambda a: s.get_favorites().to_dict(),
            ),
            Tool(
                "toggle_favorite_skill",
                "Add or remove a skill from favorites.",
                {"skill_id": {"type": "string"}},
                ("skill_id",),
                lambda a: s.toggle_favorite_skill(_require_str(a, "skill_id")).to_dict(),
            ),
            Tool(
                "toggle_favorite_repo",
                "Add or remove a repository from favorites.",
                {"repo_key": {"type": "string", "description": "Repository key in form owner/repo."}},
                ("repo_key",),
                lambda a: s.toggle_favorite_repo(_require_str(a, "repo_key")).to_dict(),
            ),
            Tool(
                "get_custom_repos",
                "List user-added repositories.",
                {},
                (),
                lambda a: [r.to_dict() for r in s.get_custom_repos()],
            ),
            Tool(
                "add_custom_repo",
                "Add a repository to the catalog and fetch it.",
                dict(_REPO_PROPS),
                ("owner", "repo"),
                lambda a: s.add_custom_repo(_require_str(a, "owner"), _require_str(a, "repo")).to_dict(),
            ),
            Tool(
                "remove_custom_repo",
                "Remove a user-added repository and re-index.",
                dict(_REPO_PROPS),
                ("owner", "repo"),
                lambda a: {"removed": s.remove_custom_repo(_require_str(a, "owner"), _require_str(a, "repo"))},
            ),
            Tool(
                "get_settings",
                "Return the current settings.",
                {},
                (),
                lambda a: s.get_settings(),
            ),
            Tool(
                "save_settings",
                "Update settings.",
                {"installMethod": {"type": "string", "enum": list(INSTALL_METHODS)}},
                ("installMethod",),
                lambda a: s.save_settings(install_method=_require_str(a, "installMethod")),
            ),
        ]

    def _build_catalog(self, arguments: dict[str, Any]) -> dict[str, Any]:
        report = self.studio.build_catalog(sync=bool(arguments.get("sync", True)))
        return {
            "skillCount": len(report.index.records),
            "failures": [{"repo": o.source.key, "message": o.sync.message} for o in report.failures if o.sync],
        }

    def _result_payload(self, value: Any, *, is_error: bool = False) -> dict[str, Any]:
        if isinstance(value, (dict, list)):
            text = json.dumps(value, indent=2, ensure_ascii=False)
            payload: dict[str, Any] = {"content": [{"type": "text", "text": text}]}
            if isinstance(value, dict):
                payload["structuredContent"] = value
        else:
            payload = {"content": [{"type": "text", "text": "" if value is None else str(value)}]}
        if is_error:
            payload["isError"] = True
        return payload

    def _call_tool(self, name: str, arguments: Any) -> dict[str, Any]:
        tool = self._tools.get(name)
        if tool is None:
            return self._result_payload(f"Unknown tool: {name}", is_error=True)
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            return self._result_payload("Tool arguments must be an object.", is_error=True)

        try:
            return self._result_payload(tool.handler(arguments))
        except SkillStudioHTTPError as exc:
            return self._result_payload(f"HTTP {exc.status_code}: {exc.body}", is_error=True)
        except SkillStudioError as exc:
            return self._result_payload(str(exc), is_error=True)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Tool %s failed", name)
            return self._result_payload(f"Unexpected error: {exc}", is_error=True)

    def _make_response(self, request_id: Any, result: Any) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    def _make_error(self, request_id: Any, code: int, message: str) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}

    def _handle(self, message: dict[str, Any]) -> dict[str, Any] | None:
        request_id = message.get("id")
        method = message.get("method")
        params = message.get("params")

        if not isinstance(method, str):
            if request_id is None:
                return None
            return self._make_error(request_id, -32600, "Invalid request: missing method.")

        # Notifications get no reply.
        if request_id is None:
            return None

        if method == "ping":
            return self._make_response(request_id, {})

        if method == "initialize":
            return self._make_response(
                request_id,
                {
                    "protocolVersion": MCP_PROTOCOL_VERSION,
                    "capabilities": {"tools": {"listChanged": False}},
                    "serverInfo": {"name": SERVER_NAME, "version": __version__},
                },
            )

        if method == "tools/list":
            return self._make_response(request_id, {"tools": [t.descriptor() for t in self._tools.values()]})

        if method == "tools/call":
            if not isinstance(params, dict):
                return self._make_error(request_id, -32602, "Invalid params for tools/call.")
            name = params.get("name")
            if not isinstance(name, str):
                return self._make_error(request_id, -32602, "tools/call requires a string `name`.")
            return self._make_response(request_id, self._call_tool(name, params.get("arguments")))

        return self._make_error(request_id, -32601, f"Method not found: {method}")

    @staticmethod
    def _read_message() -> dict[str, Any] | None:
        headers: dict[str, str] = {}
        while True:
            line = sys.stdin.buffer.readline()
            if not line:
                return None
            stripped = line.strip()
            if not stripped:
                break
            if b":" not in line:
                continue
            key, value = line.decode("utf-8", errors="replace").split(":", 1)
            headers[key.strip().lower()] = value.strip()

        try:
            length = int(headers.get("content-length", ""))
        except ValueError:
            return None
        if length <= 0:
            return None

        body = sys.stdin.buffer.read(length)
        if not body:
            return None
        try:
            parsed = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        return parsed if isinstance(parsed, dict) else None

    @staticmethod
    def _write_message(payload: dict[str, Any]) -> None:
        body = _json_dumps(payload).encode("utf-8")
        header = f"Content-Length: {len(body)}\r\n\r\n".encode("ascii")
        sys.stdout.buffer.write(header)
        sys.stdout.buffer.write(body)
        sys.stdout.buffer.flush()

    def run(self) -> None:
        while True:
            message = self._read_message()
            if message is None:
                break
            response = self._handle(message)
            if response is not None:
                self._write_message(response)


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="skillstudio-mcp", description="SkillStudio MCP server (stdio).")
    parser.add_argument("--config", default=None, help="Config file path. Defaults to the CLI config.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging on stderr")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    cfg = merge_env(load_config(args.config))
    with SkillStudio(cfg, config_file=args.config) as studio:
        StdioMCPServer(studio).run()
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
