"""CLI for the forum ranking and voting engine."""

import json
from pathlib import Path

import click

from forumrank.api.forum import ForumEngine
from forumrank.core.db import get_connection, init_db
from forumrank.core.errors import ForumError
from forumrank.core.logger import setup_logging
from forumrank.core.models import ItemType, VoteDirection
from forumrank.core.projections import get_projection_hash, replay_all
from forumrank.core.settings import get_settings
from forumrank.core.store import SqliteStore

db_path_option = click.option(
    "--db-path",
    type=click.Path(),
    default=None,
    help="Path to SQLite database file (defaults to FORUMRANK_DB_PATH)",
)


def _resolve(db_path: str | None) -> Path:
    return Path(db_path) if db_path else get_settings().db_path


def _open_engine(db_path: str | None) -> ForumEngine | None:
    path = _resolve(db_path)
    if not path.exists():
        click.echo(f"Database not found: {path}")
        click.echo("Run 'init-db' first")
        return None
    return ForumEngine(SqliteStore(get_connection(path)))


@click.group()
def cli() -> None:
    """Forum ranking and vote integrity CLI."""
    setup_logging(get_settings().log_level)


@cli.command("init-db")
@db_path_option
@click.option("--force", is_flag=True, help="Drop existing database if it exists")
def init_db_cmd(db_path: str | None, force: bool) -> None:
    """Initialize the database schema."""
    path = _resolve(db_path)

    if path.exists():
        if force:
            path.unlink()
            click.echo(f"Removed existing database: {path}")
        else:
            click.echo(f"Database already exists: {path}")
            click.echo("Use --force to recreate")
            return

    conn = init_db(path)
    conn.close()
    click.echo(f"Initialized database: {path}")


@cli.command("add-user")
@click.argument("user_id")
@click.option("--karma", default=1, help="Starting karma")
@db_path_option
def add_user(user_id: str, karma: int, db_path: str | None) -> None:
    """Create a user profile."""
    engine = _open_engine(db_path)
    if engine is None:
        return
    profile = engine.create_profile(user_id, karma=karma)
    click.echo(f"User {profile.id} (karma {profile.karma})")


@cli.command("submit")
@click.argument("author_id")
@click.option(
    "--type",
    "item_type",
    type=click.Choice([t.value for t in ItemType]),
    default=ItemType.STORY.value,
    help="Kind of item",
)
@click.option("--title", default=None)
@click.option("--url", default=None)
@click.option("--text", default=None)
@click.option("--parent", "parent_id", type=int, default=None, help="Parent item id")
@click.option("--ip", default="127.0.0.1")
@db_path_option
def submit(
    author_id: str,
    item_type: str,
    title: str | None,
    url: str | None,
    text: str | None,
    parent_id: int | None,
    ip: str,
    db_path: str | None,
) -> None:
    """Submit a story, comment, poll or poll option."""
    engine = _open_engine(db_path)
    if engine is None:
        return
    try:
        item = engine.submit_item(
            author_id, item_type, ip, url=url, title=title, text=text, parent_id=parent_id
        )
    except ForumError as e:
        raise click.ClickException(str(e)) from e
    click.echo(f"Created {item.type.value} {item.id}")


@cli.command("vote")
@click.argument("voter_id")
@click.argument("item_id", type=int)
@click.option(
    "--dir",
    "direction",
    type=click.Choice([d.value for d in VoteDirection]),
    default=VoteDirection.UP.value,
)
@click.option("--ip", default="127.0.0.1")
@db_path_option
def vote(voter_id: str, item_id: int, direction: str, ip: str, db_path: str | None) -> None:
    """Cast a vote."""
    engine = _open_engine(db_path)
    if engine is None:
        return
    result = engine.submit_vote(voter_id, item_id, direction, ip)
    if result.accepted:
        click.echo(f"Accepted: item {item_id} now at {result.score}")
    else:
        click.echo(f"Rejected: {result.reason}")


@cli.command("frontpage")
@click.option("--viewer", default=None, help="View as this user")
@click.option("--limit", default=30, help="Number of stories to show")
@click.option(
    "--sort",
    type=click.Choice(["frontpage", "newest", "best"]),
    default="frontpage",
    help="Ranking algorithm",
)
@db_path_option
def frontpage(viewer: str | None, limit: int, sort: str, db_path: str | None) -> None:
    """Show the ranked front page."""
    engine = _open_engine(db_path)
    if engine is None:
        return

    if sort == "frontpage":
        stories = engine.frontpage(viewer)
    else:
        stories = engine.stories(viewer, sort)
    if stories is None:
        click.echo("Get back to work! (noprocrast is on)")
        return

    click.echo(f"{'#':>4} {'Id':>6} {'Score':>6} {'Rank':>10}  Title")
    click.echo("-" * 72)
    for n, story in enumerate(stories[:limit], start=1):
        click.echo(
            f"{n:>4} {story.id:>6} {story.score:>6} {engine.rank(story):>10.4f}  "
            f"{story.title or '-'}"
        )


@cli.command("thread")
@click.argument("item_id", type=int)
@click.option("--viewer", default=None, help="View as this user")
@db_path_option
def thread(item_id: int, viewer: str | None, db_path: str | None) -> None:
    """Show the comment tree under an item."""
    engine = _open_engine(db_path)
    if engine is None:
        return

    root = engine.store.get_item(item_id)
    if root is None:
        raise click.ClickException(f"No such item: {item_id}")

    click.echo(f"{root.id} [{root.score}] {root.title or root.text or ''}")
    for comment, depth in engine.order_comments_for_display(root, viewer):
        text = (comment.text or "").replace("\n", " ")[:60]
        click.echo(f"{'  ' * (depth + 1)}{comment.id} [{comment.score}] {comment.by}: {text}")


@cli.command("replay")
@db_path_option
def replay(db_path: str | None) -> None:
    """Replay events to rebuild projections."""
    path = _resolve(db_path)

    if not path.exists():
        click.echo(f"Database not found: {path}")
        return

    conn = get_connection(path)

    hash_before = get_projection_hash(conn)
    event_count = replay_all(conn, get_settings().vote_window)
    hash_after = get_projection_hash(conn)

    click.echo(f"Replayed {event_count} events")
    click.echo(f"Hash before: {hash_before[:16]}...")
    click.echo(f"Hash after:  {hash_after[:16]}...")

    if hash_before == hash_after:
        click.echo("Projections unchanged (deterministic)")
    else:
        click.echo("Projections rebuilt")

    conn.close()


@cli.command("events")
@db_path_option
@click.option("--limit", default=20, help="Number of events to show")
@click.option("--event-type", type=str, help="Filter by event type")
def events(db_path: str | None, limit: int, event_type: str | None) -> None:
    """Show recent events from the log."""
    path = _resolve(db_path)

    if not path.exists():
        click.echo(f"Database not found: {path}")
        return

    conn = get_connection(path)

    query = "SELECT seq, event_type, time, actor_id, item_id, status, payload_json FROM events"
    params: list = []

    if event_type:
        query += " WHERE event_type = ?"
        params.append(event_type)

    query += " ORDER BY seq DESC LIMIT ?"
    params.append(limit)

    rows = conn.execute(query, params).fetchall()

    click.echo(
        f"{'Seq':>6} {'Type':<16} {'Time':>11} "
        f"{'Actor':<12} {'Item':>6} {'Status':<10} {'Details':<30}"
    )
    click.echo("-" * 100)

    for row in reversed(rows):
        actor_id = row["actor_id"]
        actor = actor_id[:10] + ".." if actor_id and len(actor_id) > 12 else (actor_id or "-")
        status = row["status"] or "-"
        item = row["item_id"] if row["item_id"] is not None else "-"

        details = ""
        if row["event_type"] == "vote":
            try:
                payload = json.loads(row["payload_json"])
                details = payload.get("direction", "?")
                if payload.get("reason"):
                    details += f" ({payload['reason']})"
                elif payload.get("is_sockpuppet"):
                    details += " (sockpuppet)"
            except (json.JSONDecodeError, KeyError):
                details = "-"

        click.echo(
            f"{row['seq']:>6} {row['event_type']:<16} {row['time']:>11} "
            f"{actor:<12} {item:>6} {status:<10} {details:<30}"
        )

    conn.close()


if __name__ == "__main__":
    cli()
