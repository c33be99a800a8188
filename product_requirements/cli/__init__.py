"""
Command Line Interface for Product Requirements Management.
"""

from typing import List, Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..auth import issue_token
from ..config import get_settings
from ..db.base import create_schema, get_engine, get_session_local
from ..db.seed import seed_reference_data
from ..errors import ServiceError
from ..logging_config import configure_logging
from ..schemas.enums import Role, SearchKind, SortBy
from ..schemas.search import SearchParams
from ..schemas.users import UserCreate
from ..services.search import SearchService
from ..services.users import UserService

app = typer.Typer(help="Product Requirements Management - requirements service tooling")
console = Console()


@app.callback()
def setup(log_level: str = typer.Option("WARNING", help="Log level for CLI commands")):
    configure_logging(log_level, get_settings().log_format)


@app.command()
def init(
    admin_username: str = typer.Option("admin", help="Username of the initial administrator"),
    admin_email: str = typer.Option("admin@example.com", help="Email of the initial administrator"),
    force: bool = typer.Option(False, "--force", help="Run even if users already exist"),
):
    """Create tables, seed reference data and the first administrator."""
    rprint(Panel.fit("🏗️ Initializing Product Requirements Management", style="bold blue"))
    create_schema(get_engine())

    db = get_session_local()()
    try:
        users = UserService(db)
        if users.count() and not force:
            console.print("❌ Installation is not empty; use --force to re-run")
            raise typer.Exit(code=1)

        created = seed_reference_data(db)
        for group, count in created.items():
            console.print(f"✅ {group.replace('_', ' ')}: {count} created")

        if users.get_by_username(admin_username) is None:
            admin = users.create(
                UserCreate(username=admin_username, email=admin_email, role=Role.ADMINISTRATOR)
            )
            console.print(f"✅ Administrator '{admin.username}' created ({admin.id})")
        else:
            console.print(f"ℹ️ Administrator '{admin_username}' already exists")
    except ServiceError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1)
    finally:
        db.close()


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    reload: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the API server."""
    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    console.print(f"🚀 Serving on http://{host}:{port}")
    uvicorn.run(
        "product_requirements.api:app",
        host=host,
        port=port,
        reload=reload,
        workers=1 if reload else settings.api_workers,
    )


@app.command()
def create_user(
    username: str = typer.Argument(..., help="Login name"),
    email: str = typer.Argument(..., help="Email address"),
    role: Role = typer.Option(Role.USER, help="Administrator, User or Commenter"),
):
    """Create a user."""
    db = get_session_local()()
    try:
        user = UserService(db).create(UserCreate(username=username, email=email, role=role))
        console.print(f"✅ Created {user.role} '{user.username}' ({user.id})")
    except ServiceError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1)
    finally:
        db.close()


@app.command("issue-token")
def issue_token_cmd(
    username: str = typer.Argument(..., help="User to issue the token for"),
    expires_minutes: Optional[int] = typer.Option(None, help="Token lifetime in minutes"),
):
    """Print a bearer token for a user."""
    db = get_session_local()()
    try:
        user = UserService(db).get_by_username(username)
        if user is None:
            console.print(f"❌ Unknown user '{username}'")
            raise typer.Exit(code=1)
        console.print(issue_token(user.id, Role(user.role), expires_minutes), soft_wrap=True)
    finally:
        db.close()


@app.command()
def search(
    query: str = typer.Argument("", help="Search terms; empty lists everything"),
    entity_type: Optional[List[SearchKind]] = typer.Option(
        None, "--type", help="Restrict to an entity kind (repeatable)"
    ),
    sort_by: SortBy = typer.Option(SortBy.RELEVANCE, help="Result ordering"),
    limit: int = typer.Option(20, help="Maximum results"),
):
    """Search entities and comments."""
    db = get_session_local()()
    try:
        response = SearchService(db).search(
            SearchParams(query=query, entity_types=entity_type or None, sort_by=sort_by, limit=limit)
        )
    except ServiceError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1)
    finally:
        db.close()

    table = Table(
        title=f"Search: {query or '(all)'} ({response['total']} match(es))",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("Reference", style="cyan")
    table.add_column("Type")
    table.add_column("Title")
    table.add_column("Status", style="green")
    table.add_column("Score", justify="right")
    for result in response["results"]:
        table.add_row(
            result["reference_id"] or result["id"][:8],
            result["entity_type"],
            (result["title"] or "")[:60],
            result["status"] or "",
            f"{result['score']:.2f}",
        )
    console.print(table)


@app.command()
def version():
    """Show version information."""
    from .. import __version__

    rprint(Panel.fit(f"Product Requirements Management v{__version__}", style="bold green"))


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
