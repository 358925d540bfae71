"""Token response CLI commands."""

from __future__ import annotations

from typing import TextIO

import click

from fedbroker.cli.config import error_result, json_option, output_result


@click.group()
def token() -> None:
    """Work with token endpoint responses."""
    pass


@token.command("extract")
@click.argument("response_file", type=click.File("r"), default="-")
@click.option(
    "--name",
    "-n",
    default="access_token",
    show_default=True,
    help="Name of the field to extract",
)
@json_option
def token_extract(response_file: TextIO, name: str, output_json: bool) -> None:
    """Extract a field from a token endpoint response.

    RESPONSE_FILE holds the raw response body, JSON or form-encoded
    (default: standard input).

    Examples:

        echo '{"access_token": "abc"}' | fedbroker token extract

        fedbroker token extract response.txt --name id_token
    """
    from fedbroker.broker.errors import ExtractionError
    from fedbroker.broker.tokens import extract_token

    body = response_file.read().strip()
    try:
        value = extract_token(body, name)
    except ExtractionError as e:
        error_result(str(e), output_json)

    if output_json:
        output_result({"name": name, "value": value}, as_json=True)
        return

    if value is None:
        error_result(f"No '{name}' in response")
    click.echo(value)
