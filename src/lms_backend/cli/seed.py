import click

from lms_backend.database import get_db, get_engine
from lms_backend.model import metadata
from lms_backend.permissions.role_setup import (
    seed_access_rights,
    seed_master_department,
    seed_role_definitions,
)

@click.command()
@click.option("--create-tables", is_flag=True, default=False, help="Create missing tables first")
def roles(create_tables):
    """Seed the built-in role definitions and the access-right catalogue."""

    if create_tables:
        metadata.create_all(get_engine())

    with next(get_db()) as db:
        created, updated = seed_role_definitions(db)
        rights = seed_access_rights(db)

    click.echo(f"Role definitions: {created} created, {updated} updated")
    click.echo(f"Access rights: {rights} created")

@click.command()
@click.option("--create-tables", is_flag=True, default=False, help="Create missing tables first")
def master(create_tables):
    """Create the master department if it does not exist."""

    if create_tables:
        metadata.create_all(get_engine())

    with next(get_db()) as db:
        department = seed_master_department(db)
        click.echo(f"Master department: {department.id} ({department.code})")

@click.group()
def seed():
    pass

seed.add_command(roles,"roles")
seed.add_command(master,"master")
