# fleet_engine/api/dependencies.py
from fastapi import Request


def get_container(request: Request):
    """Container attached by `create_app`; the default one is built on first use."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        from fleet_engine.container import build_container

        container = build_container()
        request.app.state.container = container
    return container
