# pyright: reportUnusedCallResult=false
"""proxyfleet control server command."""

from typing import Annotated, Literal

from cyclopts import App, Parameter

app = App(name="serve", help="Run the proxyfleet control server", help_on_error=True)

UvicornLogLevel = Literal["critical", "error", "warning", "info", "debug", "trace"]


@app.default
def serve(
    *,
    host: Annotated[
        str | None,
        Parameter(help="Bind socket to this host. Defaults to server.host."),
    ] = None,
    port: Annotated[
        int | None,
        Parameter(help="Bind socket to this port. Defaults to server.port."),
    ] = None,
    echo_output: Annotated[
        bool | None,
        Parameter(help="Echo captured instance output to the console."),
    ] = None,
    log_level: Annotated[
        UvicornLogLevel,
        Parameter(help="uvicorn log level."),
    ] = "info",
    access_log: Annotated[
        bool,
        Parameter(help="Enable access log."),
    ] = True,
) -> None:
    """Run the control server using uvicorn.

    Supervised instances are stopped when the server shuts down.
    """
    import uvicorn  # noqa: PLC0415

    from proxyfleet.cli._context import current_context  # noqa: PLC0415
    from proxyfleet.server import create_app  # noqa: PLC0415
    from proxyfleet.supervisor import ConsoleEventSink  # noqa: PLC0415

    ctx = current_context()
    config = ctx.config

    effective_host = host if host is not None else config.server.host
    effective_port = port if port is not None else config.server.port
    show_output = echo_output if echo_output is not None else config.server.echo_output

    console = ctx.console()
    sink = None if ctx.quiet else ConsoleEventSink(console, show_output=show_output)
    server_app = create_app(config, console_sink=sink)

    console.print(
        f"Starting proxyfleet on [bold]{effective_host}:{effective_port}[/bold]"
        f" (registry: {ctx.registry_path})"
    )
    uvicorn.run(
        server_app,
        host=effective_host,
        port=effective_port,
        log_level=log_level,
        access_log=access_log,
    )
