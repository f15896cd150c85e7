"""WeChat SDK bridge CLI.

Usage:
    wcf-bridge serve                            # HTTP API on 127.0.0.1:10010
    wcf-bridge serve --sdk-host 10.0.0.5        # SDK on another machine
    wcf-bridge serve --webhook http://x/hook    # forward events (repeatable)
    wcf-bridge health                           # Check a running bridge
    wcf-bridge routes                           # List HTTP routes
    wcf-bridge mock-sdk                         # Fake SDK for local testing

Options not given on the command line fall back to ``WCF_BRIDGE_*``
environment variables (see wcf_bridge.config).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import sys

import click
import httpx

from .config import ENV_PREFIX, BridgeConfig

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"

LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]

SAMPLE_CARD_XML = (
    '<msg><appmsg appid="" sdkver="0">'
    "<title>Bridge demo</title><des>A card message</des>"
    "<type>5</type><url>https://example.com/article</url>"
    "</appmsg><fromusername>wxid_abc</fromusername></msg>"
)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@click.group()
@click.version_option(package_name="wcf-bridge")
def main() -> None:
    """WeChat SDK bridge - HTTP API and event forwarding for the WeChat SDK."""


@main.command()
@click.option("--host", default=None, help="Host to bind to [env: WCF_BRIDGE_HOST]")
@click.option("--port", type=int, default=None, help="Port to bind to [env: WCF_BRIDGE_PORT]")
@click.option("--sdk-host", default=None, help="SDK host [env: WCF_BRIDGE_SDK_HOST]")
@click.option("--sdk-port", type=int, default=None, help="SDK command port")
@click.option("--event-port", type=int, default=None, help="SDK event port (default sdk-port+1)")
@click.option("--webhook", "webhooks", multiple=True, help="Webhook URL (repeatable)")
@click.option("--push-url", default=None, help="WebSocket push-channel URL")
@click.option("--command-timeout", type=float, default=None, help="Command timeout in seconds")
@click.option("--image-dir", default=None, help="Directory for downloaded images")
@click.option("--receive-pyq", is_flag=True, help="Also receive moments events")
@click.option("--require-sdk", is_flag=True, help="Exit if the SDK is unreachable")
@click.option("--log-level", type=click.Choice(LOG_LEVELS, case_sensitive=False), default=None)
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")
def serve(
    host: str | None,
    port: int | None,
    sdk_host: str | None,
    sdk_port: int | None,
    event_port: int | None,
    webhooks: tuple[str, ...],
    push_url: str | None,
    command_timeout: float | None,
    image_dir: str | None,
    receive_pyq: bool,
    require_sdk: bool,
    log_level: str | None,
    reload: bool,
) -> None:
    """Run the HTTP API and event forwarding."""
    import uvicorn

    try:
        base = BridgeConfig.from_env()
    except ValueError as e:
        raise click.UsageError(str(e)) from e

    config = base.with_overrides(
        host=host,
        port=port,
        sdk_host=sdk_host,
        sdk_port=sdk_port,
        event_port=event_port,
        webhook_urls=tuple(webhooks) or None,
        push_url=push_url,
        command_timeout=command_timeout,
        image_dir=image_dir,
        receive_pyq=receive_pyq or None,
        require_sdk=require_sdk or None,
        log_level=log_level,
    )
    configure_logging(config.log_level)

    # The app factory reads its settings from the environment
    _export_config(config)

    click.echo(f"Starting WeChat SDK bridge on http://{config.host}:{config.port}", err=True)
    click.echo(
        f"  SDK: {config.sdk_host}:{config.sdk_port} (events :{config.resolved_event_port})",
        err=True,
    )
    for url in config.webhook_urls:
        click.echo(f"  Webhook: {url}", err=True)
    if config.push_url:
        click.echo(f"  Push channel: {config.push_url}", err=True)
    click.echo("Press Ctrl+C to stop", err=True)

    uvicorn.run(
        "wcf_bridge.app:create_app",
        factory=True,
        host=config.host,
        port=config.port,
        reload=reload,
        log_level=config.log_level.lower(),
    )


def _export_config(config: BridgeConfig) -> None:
    values = {
        "SDK_HOST": config.sdk_host,
        "SDK_PORT": str(config.sdk_port),
        "HOST": config.host,
        "PORT": str(config.port),
        "WEBHOOK_URLS": ",".join(config.webhook_urls),
        "COMMAND_TIMEOUT": str(config.command_timeout),
        "IMAGE_DIR": config.image_dir,
        "RECEIVE_PYQ": "1" if config.receive_pyq else "0",
        "REQUIRE_SDK": "1" if config.require_sdk else "0",
        "LOG_LEVEL": config.log_level,
    }
    if config.event_port is not None:
        values["EVENT_PORT"] = str(config.event_port)
    if config.push_url:
        values["PUSH_URL"] = config.push_url
    for name, value in values.items():
        os.environ[f"{ENV_PREFIX}{name}"] = value


@main.command()
@click.option("--url", default="http://127.0.0.1:10010", help="Bridge URL")
@click.option(
    "--format",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
)
def health(url: str, output_format: str) -> None:
    """Check a running bridge."""

    async def check() -> None:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{url}/health")
        except httpx.HTTPError:
            click.echo(f"Cannot connect to bridge at {url}", err=True)
            sys.exit(1)

        if response.status_code != 200:
            click.echo(f"Bridge returned {response.status_code}", err=True)
            sys.exit(1)

        data = response.json()
        if output_format == FORMAT_JSON:
            click.echo(json.dumps(data, indent=2))
            return

        session = data.get("session", {})
        click.echo(f"Status:        {data.get('status')}")
        click.echo(f"SDK session:   {session.get('state')}")
        click.echo(f"Last activity: {session.get('last_activity')}")
        click.echo(f"Events:        {data.get('listener', {}).get('received', 0)} received")
        for name, stats in data.get("sinks", {}).items():
            click.echo(
                f"  {name}: {stats['delivered']} delivered, "
                f"{stats['failed']} failed, {stats['dropped']} dropped"
            )
        if data.get("status") != "ok":
            sys.exit(2)

    asyncio.run(check())


@main.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
)
def routes(output_format: str) -> None:
    """List the HTTP routes and the SDK command behind each."""
    from .routes import ROUTE_SPECS

    rows = [
        {
            "method": spec.method,
            "path": spec.path,
            "command": spec.kind.value if spec.kind else "",
            "summary": spec.summary,
        }
        for spec in ROUTE_SPECS
    ]

    if output_format == FORMAT_JSON:
        click.echo(json.dumps(rows, indent=2))
        return

    click.echo(f"{'METHOD':<7} {'PATH':<26} {'COMMAND':<26} SUMMARY")
    click.echo("-" * 90)
    for row in rows:
        click.echo(f"{row['method']:<7} {row['path']:<26} {row['command']:<26} {row['summary']}")


@main.command("mock-sdk")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", type=int, default=10086, help="Command port (events on port+1)")
@click.option(
    "--demo-interval",
    type=float,
    default=0.0,
    help="Emit sample events every N seconds (0 disables)",
)
@click.option("--log-level", type=click.Choice(LOG_LEVELS, case_sensitive=False), default="INFO")
def mock_sdk(host: str, port: int, demo_interval: float, log_level: str) -> None:
    """Run a fake SDK that answers every command with canned data."""
    from .transport.mock import MockSdk

    configure_logging(log_level)

    async def run() -> None:
        async with MockSdk(host, command_port=port, event_port=port + 1) as sdk:
            click.echo(
                f"Mock SDK on {host}:{sdk.command_port} (events :{sdk.event_port})", err=True
            )
            click.echo("Press Ctrl+C to stop", err=True)
            counter = 0
            while True:
                if demo_interval <= 0:
                    await asyncio.Event().wait()
                await asyncio.sleep(demo_interval)
                counter += 1
                await sdk.emit(
                    {
                        "id": counter,
                        "type": 1,
                        "sender": "wxid_abc",
                        "roomid": "",
                        "content": f"demo message {counter}",
                    }
                )
                if counter % 5 == 0:
                    await sdk.emit(
                        {
                            "id": counter * 1000,
                            "type": 49,
                            "sender": "wxid_abc",
                            "roomid": "",
                            "content": SAMPLE_CARD_XML,
                        }
                    )

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        click.echo("\nShutting down", err=True)


if __name__ == "__main__":
    main()
