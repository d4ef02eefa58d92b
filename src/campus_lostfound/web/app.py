"""
Django application initialization.
"""

import os
from pathlib import Path


def get_wsgi_application(config_path: str | None = None, state_db_path: str | None = None):
    """
    Get the Django WSGI application configured with our settings.

    Args:
        config_path: Path to config.yaml (optional)
        state_db_path: Path to state.db (optional, overrides config)
    """
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "campus_lostfound.web.settings")
    _export_paths(config_path, state_db_path)

    from django.core.wsgi import get_wsgi_application as django_wsgi

    return django_wsgi()


def _export_paths(config_path: str | None, state_db_path: str | None) -> None:
    """Expose config and state paths to the settings module via the environment."""
    # os.environ requires strings, so convert Path objects
    if config_path:
        from ..config import load_config

        config = load_config(Path(config_path))
        os.environ["LOSTFOUND_CONFIG"] = str(config_path)
        os.environ.setdefault("LOSTFOUND_DB_PATH", str(config.state_db_path))
        os.environ.setdefault("LOSTFOUND_UPLOAD_DIR", str(config.storage.upload_dir))
    if state_db_path:
        os.environ["LOSTFOUND_DB_PATH"] = str(state_db_path)


def run_server(
    host: str = "127.0.0.1",
    port: int = 8000,
    config_path: str | None = None,
    state_db_path: str | None = None,
):
    """
    Run the Django development server.

    Args:
        host: Host to bind to
        port: Port to listen on
        config_path: Path to config.yaml
        state_db_path: Path to state.db (overrides config)
    """
    os.environ.setdefault("DJANGO_SETTINGS_MODULE", "campus_lostfound.web.settings")
    _export_paths(config_path, state_db_path)

    import django

    django.setup()

    from django.core.management import execute_from_command_line

    print(f"\nStarting lost & found API at http://{host}:{port}/api/")
    print(f"State DB: {os.environ.get('LOSTFOUND_DB_PATH', 'data/state.db')}")
    print("\nPress Ctrl+C to stop.\n")

    execute_from_command_line(["manage.py", "runserver", f"{host}:{port}", "--noreload"])
