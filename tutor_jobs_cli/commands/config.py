"""Configuration Commands - CLI settings management"""

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

from ..utils.config_manager import config
from ..utils.formatting import print_error, print_info, print_success

console = Console()
app = typer.Typer(name="config", help="CLI configuration management")


@app.command("set")
def set_config(
    key: str = typer.Argument(..., help="Configuration key (e.g., 'api.base_url')"),
    value: str = typer.Argument(..., help="Configuration value"),
):
    """⚙️ Set a configuration value"""
    if key == "api.base_url" and not value.startswith(("http://", "https://")):
        print_error("API base URL must start with http:// or https://")
        raise typer.Exit(1)

    if key.endswith((".timeout", ".default_limit")):
        if not value.isdigit():
            print_error(f"{key} must be numeric")
            raise typer.Exit(1)
        parsed: str | int = int(value)
    else:
        parsed = value

    try:
        config.set(key, parsed)
    except OSError as e:
        print_error(f"Failed to set configuration: {e}")
        raise typer.Exit(1) from None

    print_success(f"Set {key} = {value}")
    if key == "api.base_url":
        print_info("Test connection with: tutor-jobs status")


@app.command("get")
def get_config(key: str = typer.Argument(..., help="Configuration key")):
    """📋 Get a configuration value"""
    value = config.get(key)
    if value is None:
        console.print(f"[yellow]Key '{key}' not found[/yellow]")
    else:
        console.print(f"[cyan]{key}[/cyan] = [yellow]{value}[/yellow]")


@app.command("show")
def show_all_config():
    """📊 Show all configuration settings"""
    console.print(
        Panel(
            f"[dim]Configuration is stored in {config.config_file}[/dim]",
            title="Configuration",
            border_style="blue",
        )
    )
    console.print(yaml.dump(config.load_config(), default_flow_style=False))


@app.command("reset")
def reset_config(
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """🔄 Reset configuration to defaults"""
    if not yes and not Confirm.ask("Reset ALL configuration to defaults?"):
        console.print("Configuration reset cancelled.")
        return

    config.reset()
    print_success("Configuration reset to defaults")


@app.command("dev-mode")
def setup_dev_mode(
    user_id: str = typer.Argument(..., help="User ID for dev authentication"),
    workspace_id: str = typer.Argument(..., help="Workspace ID for dev authentication"),
):
    """🔧 Configure dev mode authentication headers"""
    config.set("api.headers.X-User-ID", user_id)
    config.set("api.headers.X-Workspace-ID", workspace_id)

    print_success("Dev mode configured:")
    console.print(f"  User ID: [cyan]{user_id}[/cyan]")
    console.print(f"  Workspace ID: [cyan]{workspace_id}[/cyan]")
    console.print("💡 [dim]Make sure your server is running with AUTH_MODE=dev.[/dim]")
