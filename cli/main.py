import click
from flask.cli import FlaskGroup


def _create_app():
    from webapp import create_app

    return create_app()


@click.group(cls=FlaskGroup, create_app=_create_app)
def main() -> None:
    """Storage governance management commands."""


if __name__ == '__main__':
    main()
