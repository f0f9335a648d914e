"""FastAPI application serving board sessions for one or more projects."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from ..config import load_board_config
from ..session import BoardSession
from ..store import FileTaskStoreAdapter
from .board_api import create_board_router


def create_app(
    project_dir: Optional[Path] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        project_dir: Default project directory.
        enable_cors: Whether to enable CORS.

    Returns:
        Configured FastAPI app.
    """
    app = FastAPI(
        title="Kanban Board",
        description="Board engine API: containers, moves and reordering",
        version="0.1.0",
    )

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.state.default_project_dir = project_dir
    # One session per project directory; sessions never share state.
    app.state.sessions = {}

    def _get_project_dir(project_dir_param: Optional[str] = None) -> Path:
        if project_dir_param:
            return Path(project_dir_param)
        if app.state.default_project_dir:
            return Path(app.state.default_project_dir)
        return Path.cwd()

    def _get_session(project_dir_param: Optional[str] = None) -> BoardSession:
        root = _get_project_dir(project_dir_param).resolve()
        key = str(root)
        session = app.state.sessions.get(key)
        if session is None:
            config, err = load_board_config(root)
            if err:
                logger.warning("Using default board config for {}: {}", root, err)
            session = BoardSession(FileTaskStoreAdapter.for_project(root), config)
            app.state.sessions[key] = session
        return session

    @app.get("/")
    async def root():
        return {"name": "Kanban Board", "version": "0.1.0", "status": "running"}

    app.include_router(create_board_router(_get_session))
    return app
