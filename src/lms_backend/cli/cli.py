import logging

import click

from .seed import seed
from .admin import admin

@click.group()
@click.option("--verbose", "-v", is_flag=True, default=False)
def cli(verbose):
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)

cli.add_command(seed,"seed")
cli.add_command(admin,"admin")

if __name__ == '__main__':
    cli()
