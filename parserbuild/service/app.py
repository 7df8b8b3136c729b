"""FastAPI application entrypoint for parserbuild service mode."""

from __future__ import annotations

from typing import Any, Callable, Dict, List

from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..config import ConfigError, Settings, load_catalog, load_settings
from ..matrix import ALL, plan_matrix


class MatrixRequest(BaseModel):
    language: str = ALL
    platforms: str = ALL


class MatrixResponse(BaseModel):
    matrix: List[Dict[str, Any]]
    count: int


class LanguageEntry(BaseModel):
    name: str
    repo: str
    ref: str


class LanguagesResponse(BaseModel):
    languages: List[LanguageEntry]


class HealthResponse(BaseModel):
    status: str


def _default_settings() -> Settings:
    return load_settings()


def create_app(
    settings_factory: Callable[[], Settings] = _default_settings,
) -> FastAPI:
    """Create the FastAPI application exposing catalog and matrix operations."""

    app = FastAPI(title="parserbuild", version="0.1.0")

    def get_settings() -> Settings:
        # Re-read per request so catalog edits are picked up without a restart.
        return settings_factory()

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/languages", response_model=LanguagesResponse)
    def languages(settings: Settings = Depends(get_settings)) -> LanguagesResponse:
        catalog = load_catalog(settings.catalog)
        return LanguagesResponse(
            languages=[
                LanguageEntry(name=spec.name, repo=spec.repo, ref=spec.ref)
                for spec in catalog.values()
            ]
        )

    @app.post("/matrix", response_model=MatrixResponse)
    def matrix(
        payload: MatrixRequest,
        settings: Settings = Depends(get_settings),
    ) -> MatrixResponse:
        catalog = load_catalog(settings.catalog)
        cells = plan_matrix(payload.language, catalog, payload.platforms)
        return MatrixResponse(matrix=[cell.to_dict() for cell in cells], count=len(cells))

    @app.exception_handler(ValueError)
    async def value_error_handler(_: Any, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(ConfigError)
    async def config_error_handler(_: Any, exc: ConfigError) -> JSONResponse:
        return JSONResponse(status_code=500, content={"detail": str(exc)})

    return app


def run_service(host: str = "127.0.0.1", port: int = 8000) -> None:  # pragma: no cover - integration path
    import uvicorn

    uvicorn.run(create_app(), host=host, port=port)
