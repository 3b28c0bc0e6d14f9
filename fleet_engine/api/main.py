from fastapi import FastAPI

from fleet_engine.api.routes.nodes import router as nodes_router
from fleet_engine.api.routes.roles import router as roles_router


def create_app(container=None) -> FastAPI:
    app = FastAPI(title="Fleet Engine API")
    app.state.container = container

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(nodes_router)
    app.include_router(roles_router)
    return app


app = create_app()
