"""formpost core - config loading, variable resolution, auth, form specs."""

import base64
import mimetypes
import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import dotenv_values

from formpost.connection import DEFAULT_SPOOL_MAX_SIZE, DEFAULT_TIMEOUT, open_connection
from formpost.errors import InvalidArgument
from formpost.request import DEFAULT_USER_AGENT, MultipartRequest

GLOBAL_DIR = Path.home() / ".formpost"
GLOBAL_CONFIG = GLOBAL_DIR / "config.yaml"

CWD_CONFIG_CANDIDATES = [
    ".formpost.yaml",
    ".formpost.yml",
    "formpost.yaml",
    "formpost.yml",
]

DEFAULT_FILE_MIME = "application/octet-stream"
DEFAULT_TEXT_MIME = "text/plain"


def resolve_path(
    candidates: list[Path],
    default: Path | None = None,
) -> Path | None:
    """Return the first existing path from candidates, else default."""
    for p in candidates:
        if p.exists():
            return p.resolve()
    return default


def resolve_config_path(config_file: str | None) -> Path | None:
    """Find the config file to use.

    Resolution order:
      1. Explicit -c flag (hard — no fallthrough if missing)
      2. .formpost.yaml (variants) in CWD
      3. ~/.formpost/config.yaml
    """
    if config_file:
        return resolve_path([Path(config_file)])
    return resolve_path([Path(c) for c in CWD_CONFIG_CANDIDATES] + [GLOBAL_CONFIG])


def load_config(config_path: str | Path | None) -> dict:
    """Load YAML config file. Returns an empty defaults section if not found.

    Stores '_config_dir' so a relative env_file resolves next to the config.
    """
    if config_path is None:
        return {"defaults": {}, "_config_dir": None}
    path = Path(config_path)
    if not path.exists():
        return {"defaults": {}, "_config_dir": None}
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return {
        "defaults": data.get("defaults") or {},
        "_config_dir": path.resolve().parent,
    }


def load_env(env_file: str | None, base_dir: str | Path = ".") -> dict[str, str]:
    """Load .env file and merge it over os.environ."""
    env = dict(os.environ)
    if env_file:
        dotenv_path = Path(base_dir) / env_file
        if dotenv_path.exists():
            dotenv_vars = dotenv_values(str(dotenv_path))
            env.update({k: v for k, v in dotenv_vars.items() if v is not None})
    return env


def resolve_value(value: str | None, env: dict[str, str]) -> str | None:
    """Resolve $VAR and ${VAR} references in a string value.

    Unknown variables are left as written.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        return value

    def _replace(m: re.Match) -> str:
        var_name = m.group(1) or m.group(2)
        return env.get(var_name, os.environ.get(var_name, m.group(0)))

    return re.sub(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)", _replace, value)


def build_auth_headers(
    auth_config: dict | None,
    env: dict[str, str],
) -> dict[str, str]:
    """Build authentication headers from auth config.

    Supports:
    - bearer: Authorization: Bearer <token>
    - api-key: custom header with token
    - basic: Authorization: Basic <b64>
    """
    if not auth_config:
        return {}

    auth_type = auth_config.get("type", "").lower()

    if auth_type == "bearer":
        token = resolve_value(auth_config.get("token", ""), env) or ""
        return {"Authorization": f"Bearer {token}"}

    if auth_type == "api-key":
        token = resolve_value(auth_config.get("token", ""), env) or ""
        header = auth_config.get("header", "X-API-Key")
        return {header: token}

    if auth_type == "basic":
        username = resolve_value(auth_config.get("username", ""), env) or ""
        password = resolve_value(auth_config.get("password", ""), env) or ""
        credentials = base64.b64encode(f"{username}:{password}".encode()).decode()
        return {"Authorization": f"Basic {credentials}"}

    return {}


def resolve_url(url: str, defaults: dict, env: dict[str, str]) -> str:
    """Join a relative URL onto the configured base_url."""
    if url.startswith(("http://", "https://")):
        return url
    base_url = resolve_value(defaults.get("base_url"), env) or ""
    if base_url and url and not url.startswith("/"):
        url = "/" + url
    return base_url.rstrip("/") + url if base_url else url


def build_request(
    defaults: dict,
    env: dict[str, str],
    timeout: float | None = None,
) -> MultipartRequest:
    """Create a MultipartRequest configured from the config defaults.

    Header order: config headers, then auth headers.
    """
    spool_max_size = int(defaults.get("spool_max_size") or DEFAULT_SPOOL_MAX_SIZE)

    def _factory(url, timeout=DEFAULT_TIMEOUT):
        return open_connection(url, timeout=timeout, spool_max_size=spool_max_size)

    request = MultipartRequest(
        user_agent=resolve_value(defaults.get("user_agent"), env) or DEFAULT_USER_AGENT,
        timeout=timeout or defaults.get("timeout") or DEFAULT_TIMEOUT,
        response_encoding=defaults.get("response_encoding") or "utf-8",
        connection_factory=_factory,
    )
    for name, value in (defaults.get("headers") or {}).items():
        request.set_header(name, resolve_value(str(value), env))
    for name, value in build_auth_headers(defaults.get("auth"), env).items():
        request.set_header(name, value)
    return request


# ── Form parsing ─────────────────────────────────────────────────────────


def parse_form_fields(form_specs: tuple[str, ...] | list[str]) -> list[dict[str, Any]]:
    """Parse KEY=VALUE and KEY=@FILE[;type=MIME][;filename=NAME] form specs.

    Returns one dict per spec, in order:
      - text fields: {"name", "value"}
      - file fields: {"name", "path", "mime_type", "file_name"}
    Specs without '=' are ignored.
    """
    parsed: list[dict[str, Any]] = []

    for spec in form_specs:
        if "=" not in spec:
            continue
        key, value = spec.split("=", 1)
        key = key.strip()
        if not value.startswith("@"):
            parsed.append({"name": key, "value": value})
            continue

        path_part, *options = value[1:].split(";")
        filepath = Path(path_part)
        mime = None
        file_name = filepath.name
        for opt in options:
            if "=" not in opt:
                continue
            opt_key, opt_value = opt.split("=", 1)
            opt_key = opt_key.strip().lower()
            if opt_key == "type":
                mime = opt_value.strip()
            elif opt_key == "filename":
                file_name = opt_value.strip()
        if not mime:
            mime = mimetypes.guess_type(str(filepath))[0] or DEFAULT_FILE_MIME
        parsed.append(
            {"name": key, "path": filepath, "mime_type": mime, "file_name": file_name},
        )

    return parsed


def apply_form_fields(request: MultipartRequest, parsed: list[dict[str, Any]]) -> None:
    """Add parsed form specs to a request, opening files as they are added."""
    for field in parsed:
        if "path" in field:
            request.add_file(field["name"], field["mime_type"], field["file_name"], field["path"])
        elif "value" in field:
            request.add_field(field["name"], DEFAULT_TEXT_MIME, field["value"])
        else:
            raise InvalidArgument(f"Malformed form field: {field!r}")
