"""
Command Line Interface for the Artifact Approval engine.
"""

from typing import Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..db.base import get_session_local, init_database
from ..enums import ArtifactType, RiskLevel
from ..errors import ApprovalError
from ..logging_config import configure_logging
from ..projects import ProjectService
from ..services import ApprovalService

app = typer.Typer(help="Artifact Approval - human review for AI-produced artifacts")
console = Console()

RISK_STYLES = {
    "low": "green",
    "medium": "yellow",
    "high": "red",
    "critical": "bold red",
}


@app.callback()
def main(
    log_format: Optional[str] = typer.Option(None, help="Log format: json or console"),
):
    """Configure logging before any command runs."""
    settings = get_settings()
    configure_logging(settings.log_level, log_format or settings.log_format)


@app.command("init-db")
def init_db():
    """Create all database tables."""
    init_database()
    console.print("✅ Database initialized")


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    reload: bool = typer.Option(False, help="Reload on code changes (development)"),
):
    """Run the HTTP API."""
    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    rprint(Panel.fit(f"Starting Artifact Approval on http://{host}:{port}", style="bold blue"))
    uvicorn.run("artifact_approval.api:app", host=host, port=port, reload=reload)


@app.command("create-project")
def create_project(
    name: str = typer.Argument(..., help="Project name"),
    description: Optional[str] = typer.Option(None, help="Project description"),
):
    """Create a project that artifacts can belong to."""
    db = get_session_local()()
    try:
        project = ProjectService(db).create(name, description)
        console.print(f"✅ Created project [cyan]{project.id}[/cyan] ({project.name})")
    finally:
        db.close()


@app.command()
def queue(
    project_id: Optional[str] = typer.Option(None, help="Only this project"),
    risk_level: Optional[RiskLevel] = typer.Option(None, help="Only this risk level"),
    type: Optional[ArtifactType] = typer.Option(None, "--type", help="Only this artifact type"),
    page: int = typer.Option(1, help="Page number"),
    limit: Optional[int] = typer.Option(None, help="Page size"),
):
    """Show the review queue, riskiest first."""
    db = get_session_local()()
    try:
        result = ApprovalService(db).get_review_queue(
            page=page, limit=limit, project_id=project_id, type=type, risk_level=risk_level
        )
    except ApprovalError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1)
    finally:
        db.close()

    if not result.data:
        console.print("Review queue is empty")
        return

    table = Table(
        title=f"Review Queue (page {result.page}/{result.total_pages}, {result.total} total)",
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("ID", style="yellow")
    table.add_column("Title")
    table.add_column("Type")
    table.add_column("Risk")
    table.add_column("State", style="magenta")
    table.add_column("Submitted")

    for artifact in result.data:
        style = RISK_STYLES.get(artifact.risk_level, "white")
        table.add_row(
            artifact.id,
            artifact.title,
            artifact.type,
            f"[{style}]{artifact.risk_level}[/{style}] ({artifact.risk_score})",
            artifact.state,
            artifact.submitted_at.isoformat() if artifact.submitted_at else "-",
        )

    console.print(table)


@app.command()
def show(artifact_id: str = typer.Argument(..., help="Artifact ID")):
    """Show an artifact and its approval workflow."""
    db = get_session_local()()
    try:
        artifact = ApprovalService(db).find_by_id(artifact_id)
        data = artifact.to_dict()
    except ApprovalError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1)
    finally:
        db.close()

    workflow = data["workflow"] or {}
    lines = [
        f"[bold]{data['title']}[/bold] (v{data['version']})",
        f"State: {data['state']}",
        f"Type: {data['type']}   Source: {data['source_agent']}",
        f"Risk: {data['risk_level']} ({data['risk_score']})",
        f"Approvals: {workflow.get('current_approvals', 0)}/{workflow.get('required_approvals', '?')}",
    ]
    if workflow.get("requires_admin") or workflow.get("requires_lead"):
        needs = [r for r in ("admin", "lead") if workflow.get(f"requires_{r}")]
        lines.append(f"Requires: {', '.join(needs)}")
    if workflow.get("auto_approved"):
        lines.append(f"Auto-approved: {workflow.get('auto_approve_reason')}")
    if data["previous_version_id"]:
        lines.append(f"Previous version: {data['previous_version_id']}")

    rprint(Panel("\n".join(lines), title=data["id"], expand=False))


@app.command()
def history(
    artifact_id: str = typer.Argument(..., help="Artifact ID"),
    limit: int = typer.Option(50, help="Maximum entries to show"),
):
    """Show an artifact's history, newest first."""
    db = get_session_local()()
    try:
        entries = [h.to_dict() for h in ApprovalService(db).get_history(artifact_id, limit=limit)]
    except ApprovalError as e:
        console.print(f"❌ {e.message}")
        raise typer.Exit(code=1)
    finally:
        db.close()

    table = Table(title=f"History for {artifact_id}", show_header=True, header_style="bold magenta")
    table.add_column("When", style="cyan")
    table.add_column("Action", style="green")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Actor")
    table.add_column("Comment")

    for entry in entries:
        table.add_row(
            entry["action_at"] or "-",
            entry["action"],
            entry["from_state"] or "-",
            entry["to_state"],
            entry["actor_id"] or "-",
            entry["comment"] or "",
        )

    console.print(table)


if __name__ == "__main__":
    app()
