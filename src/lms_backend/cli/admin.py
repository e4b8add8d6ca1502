import asyncio
from functools import wraps

import click
from fastapi import HTTPException

from lms_backend.database import get_db
from lms_backend.permissions.escalation import escalation_service
from lms_backend.permissions.management import create_global_admin


def handle_api_exceptions(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except HTTPException as e:
            click.echo(f"[{click.style(e.status_code,fg='red')}] {e.detail}", err=True)
            raise SystemExit(1)
    return wrapper

@click.command()
@click.option("--user-id", "-u", "user_id", required=True)
@click.option("--password", "-p", "password", prompt="Escalation password", hide_input=True, confirmation_prompt=True)
@click.option("--role", "-r", "roles", multiple=True, default=["system-admin"], show_default=True)
@click.option("--session-timeout", type=int, default=15, show_default=True, help="Minutes of inactivity")
@handle_api_exceptions
def create(user_id, password, roles, session_timeout):
    """Make an existing user a global administrator."""

    with next(get_db()) as db:
        record = asyncio.run(create_global_admin(
            db, user_id, password, list(roles), session_timeout=session_timeout
        ))
        click.echo(f"Global administrator {record.id} created with roles: {', '.join(roles)}")

@click.command()
@handle_api_exceptions
def cleanup_sessions():
    """Delete revoked and expired admin escalation sessions."""

    with next(get_db()) as db:
        removed = escalation_service.cleanup_expired_sessions(db)
        click.echo(f"Removed {removed} admin sessions")

@click.group()
def admin():
    pass

admin.add_command(create,"create")
admin.add_command(cleanup_sessions,"cleanup-sessions")
