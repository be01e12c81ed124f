"""formpost CLI - send multipart/form-data POST requests."""

import sys

import click

TOOL_HELP = """\
formpost — multipart/form-data POST client.

Builds a multipart body from form fields and files, POSTs it to URL and
prints the response text.

\b
USAGE
─────
  formpost URL -F KEY=VALUE -F KEY=@FILE [options]

  formpost http://localhost:3000/upload -F title=Report -F file=@report.pdf
  formpost /upload -F "image=@photo.bin;type=image/png;filename=cat.png"

  If a .formpost.yaml config exists with a base_url, relative paths work.

\b
FORM FIELDS (-F/--form)
───────────────────────
  KEY=VALUE                         text/plain field
  KEY=@PATH                         file field, streamed from disk
  KEY=@PATH;type=MIME               explicit mime type
  KEY=@PATH;filename=NAME           explicit filename

  Fields are sent in the order given. File mime types are guessed from
  the extension, falling back to application/octet-stream.

\b
HEADERS
───────
  -H 'Name: Value' sets a header, -U Name removes one. Host,
  Content-Type, Content-Length and Method are fixed and cannot be set.
  Defaults: Connection: Keep-Alive, User-Agent: formpost/<version>.

\b
OUTPUT FORMAT
─────────────
    STATUS: 200
    TIME: 45ms
    BODY:
    <response text, line breaks removed>

  --verbose adds response headers.
  --raw outputs only the response text.

\b
CONFIG FILE FORMAT (.formpost.yaml)
───────────────────────────────────
  Config resolution order:
    1. -c/--config flag (explicit path)
    2. .formpost.yaml / .formpost.yml / formpost.yaml / formpost.yml in CWD
    3. ~/.formpost/config.yaml (global)

  \b
  defaults:
    base_url: ${API_BASE_URL}       # env var resolved at runtime
    env_file: .env                  # load .env file
    timeout: 30                     # seconds
    user_agent: my-uploader/1.0
    response_encoding: utf-8
    spool_max_size: 8388608         # bytes buffered in memory
    headers:
      X-Request-Source: cli
    auth:
      type: bearer                  # bearer | api-key | basic
      token: ${API_TOKEN}
"""


@click.command(
    cls=click.Command,
    help=TOOL_HELP,
    context_settings={"max_content_width": 88},
)
@click.argument("url", required=False)
@click.option(
    "-F",
    "--form",
    "form_fields",
    multiple=True,
    help="Form field as KEY=VALUE or KEY=@FILE[;type=MIME][;filename=NAME]. Repeatable.",
)
@click.option(
    "-H",
    "--header",
    multiple=True,
    help="HTTP header as 'Name: Value'. Repeatable.",
)
@click.option(
    "-U",
    "--unset-header",
    "unset_headers",
    multiple=True,
    help="Remove a default or configured header by name. Repeatable.",
)
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    help="Config file path. Default: .formpost.yaml in CWD, then ~/.formpost/config.yaml.",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Connect/read timeout in seconds. Default: 30.",
)
@click.option(
    "--verbose",
    is_flag=True,
    default=False,
    help="Include response headers in output.",
)
@click.option(
    "--raw",
    is_flag=True,
    default=False,
    help="Output the response text only.",
)
def main(url, form_fields, header, unset_headers, config_file, timeout, verbose, raw):
    """POST multipart/form-data and print the response."""
    from formpost.core import (
        apply_form_fields,
        build_request,
        load_config,
        load_env,
        parse_form_fields,
        resolve_config_path,
        resolve_url,
    )
    from formpost.errors import FormPostError

    if not url:
        ctx = click.get_current_context()
        click.echo(ctx.get_help())
        ctx.exit(1)

    # --- Load config ---
    config_path = resolve_config_path(config_file)
    config = load_config(config_path)
    defaults = config.get("defaults", {})
    env = load_env(defaults.get("env_file"), config.get("_config_dir") or ".")

    try:
        request = build_request(defaults, env, timeout=timeout)
        for name, value in _parse_headers(header).items():
            request.set_header(name, value)
        for name in unset_headers:
            request.unset_header(name)
        apply_form_fields(request, parse_form_fields(form_fields))
    except (FormPostError, OSError) as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(1)

    result = request.execute(resolve_url(url, defaults, env))
    if result.error:
        click.echo(f"ERROR: {result.error}", err=True)
        sys.exit(1)
    if result.send_error:
        click.echo(f"WARNING: {result.send_error}", err=True)

    click.echo(format_output(result, verbose=verbose, raw=raw))


# ── Helpers ──────────────────────────────────────────────────────────────


def _parse_headers(header_tuples):
    """Parse -H 'Name: Value' tuples into a dict."""
    headers = {}
    for h in header_tuples:
        if ":" in h:
            k, v = h.split(":", 1)
            headers[k.strip()] = v.strip()
    return headers


def format_output(result, verbose: bool = False, raw: bool = False) -> str:
    """Format a PostResult for CLI output."""
    if result.error:
        return f"ERROR: {result.error}"

    if raw:
        return result.text

    lines: list[str] = [
        f"STATUS: {result.status_code}",
        f"TIME: {int(result.elapsed_ms)}ms",
    ]

    if verbose and result.headers:
        lines.append("HEADERS:")
        for key, value in result.headers.items():
            lines.append(f"  {key}: {value}")

    lines.append("BODY:")
    lines.append(result.text)
    return "\n".join(lines)


if __name__ == "__main__":
    main()
