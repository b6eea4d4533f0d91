# tenant_plexus/cli/utils_cli.py
import requests
import typer
import json
from typing import Optional, Dict, Any, Union, List


def parse_json_option(raw: Optional[str], option_name: str) -> Optional[Dict[str, Any]]:
    """Decode a JSON object passed on the command line, exiting with an error if it is malformed."""
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        typer.secho(f"Error: Invalid JSON string provided for {option_name}: {raw}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(value, dict):
        typer.secho(f"Error: {option_name} must be a JSON object.", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return value


def _mask_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a request payload with credential values hidden for console output."""
    masked = dict(payload)
    if isinstance(masked.get("credentials"), dict):
        masked["credentials"] = {
            key: ("********" if key in ("password", "service_role_key") else value)
            for key, value in masked["credentials"].items()
        }
    if isinstance(masked.get("management"), dict):
        masked["management"] = {**masked["management"], "access_token": "********"}
    return masked


def make_api_request(
    method: str,
    endpoint: str,
    json_payload: Optional[Dict[str, Any]] = None,
    params_payload: Optional[Dict[str, Any]] = None,
    expected_status: Union[int, List[int]] = 200,
    expect_json_response: bool = True,
    timeout: float = 30
) -> Any:
    """
    Makes an HTTP request to the admin API and echoes request and response.

    Sends the admin API key when one is configured. Any unexpected status,
    connection failure or undecodable body ends the command with exit code 1.
    """
    from .config import PLEXUS_CLI_API_BASE_URL, PLEXUS_CLI_ADMIN_API_KEY

    full_url = f"{PLEXUS_CLI_API_BASE_URL}{endpoint}"
    headers: Dict[str, str] = {}

    if PLEXUS_CLI_ADMIN_API_KEY:
        headers["X-Admin-API-Key"] = PLEXUS_CLI_ADMIN_API_KEY
    elif "/admin/" in endpoint:
        typer.secho(
            "CLI: Warning - ADMIN_API_KEY not set in .env for CLI. Admin API calls might fail.",
            fg=typer.colors.YELLOW
        )

    typer.echo(f"CLI: {method.upper()} {full_url}")
    if json_payload:
        typer.echo(f"CLI: JSON Payload: {json.dumps(_mask_payload(json_payload), indent=2)}")
    if params_payload:
        typer.echo(f"CLI: Query Params: {params_payload}")

    try:
        response = requests.request(
            method,
            full_url,
            json=json_payload,
            params=params_payload,
            headers=headers,
            timeout=timeout
        )
    except requests.exceptions.ConnectionError as e:
        typer.secho(
            f"CLI: Connection Error - Could not connect to API at {full_url}. Is the server running? Error: {e}",
            fg=typer.colors.RED
        )
        raise typer.Exit(code=1)
    except requests.exceptions.RequestException as e:
        typer.secho(f"CLI: Request Error - {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    typer.echo(f"CLI: Response Status: {response.status_code}")
    expected_statuses = [expected_status] if isinstance(expected_status, int) else expected_status

    if response.status_code not in expected_statuses:
        err_msg = f"CLI: API Error - Expected status {expected_status}, got {response.status_code}."
        try:
            err_data = response.json()
            err_msg += f" Detail: {err_data.get('detail', response.text)}"
        except (json.JSONDecodeError, AttributeError):
            err_msg += f" Raw response: {response.text}"
        typer.secho(err_msg, fg=typer.colors.RED)
        raise typer.Exit(code=1)

    if not response.content and response.status_code == 204:
        typer.secho(f"CLI: Success (Status {response.status_code}, No Content).", fg=typer.colors.GREEN)
        return None

    if not expect_json_response:
        typer.secho(f"CLI: Success (Status {response.status_code}). Raw text: {response.text[:200]}", fg=typer.colors.GREEN)
        return response.text

    try:
        data = response.json()
    except json.JSONDecodeError:
        typer.secho(f"CLI: Error - Could not decode JSON response. Raw text: {response.text}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(typer.style("CLI: Response JSON:", fg=typer.colors.CYAN))
    typer.echo(json.dumps(data, indent=2))
    return data
