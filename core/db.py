from flask_sqlalchemy import SQLAlchemy

# Shared database instance for the file registry

db = SQLAlchemy(session_options={"expire_on_commit": False})


def init_db(app, *, create_tables: bool = False) -> None:
    """Bind :data:`db` to *app* and optionally create missing tables."""

    db.init_app(app)
    if create_tables:
        import core.models  # noqa: F401  register models on the metadata

        with app.app_context():
            db.create_all()


__all__ = ["db", "init_db"]
