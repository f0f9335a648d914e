"""Board API endpoints.

This module provides a FastAPI router over a :class:`BoardSession`: loading a
board for a mode and filter context, reading the snapshot and stats, and the
move / reorder mutations.  It is mounted under ``/api/board`` by
:func:`kanban_board.server.app.create_app`.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Query
from loguru import logger
from pydantic import BaseModel, Field

from ..modes import FilterContext, parse_mode
from ..session import BoardSession


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

class LoadBoardRequest(BaseModel):
    mode: str = "universal"
    project_id: Optional[str] = None
    company_id: Optional[str] = None
    contact_id: Optional[str] = None
    milestone_id: Optional[str] = None
    show_completed: Optional[bool] = None
    search_query: Optional[str] = None
    status_filter: Optional[str] = None
    filters: dict[str, str] = Field(default_factory=dict)


class MoveRequest(BaseModel):
    task_id: str
    from_container_id: str
    to_container_id: str
    to_index: int = Field(ge=0)
    wait: bool = True


class ReorderRequest(BaseModel):
    container_id: str
    task_ids: list[str]
    wait: bool = True


class ReorderContainersRequest(BaseModel):
    container_ids: list[str]
    wait: bool = True


class BoardResponse(BaseModel):
    mode: Optional[str] = None
    loading: bool = False
    error: Optional[str] = None
    containers: list[dict[str, Any]] = Field(default_factory=list)
    tasks_by_container: dict[str, list[dict[str, Any]]] = Field(default_factory=dict)
    totals: dict[str, int] = Field(default_factory=dict)
    stats: dict[str, int] = Field(default_factory=dict)


class StatsResponse(BaseModel):
    total: int
    completed: int
    pending: int
    overdue: int


class MutationResponse(BaseModel):
    board: BoardResponse
    persisted: Optional[bool] = None
    reloaded: bool = False
    failures: list[str] = Field(default_factory=list)


def board_response(session: BoardSession) -> BoardResponse:
    snapshot = session.snapshot().to_dict()
    return BoardResponse(
        mode=session.mode.name if session.mode else None,
        loading=session.loading,
        error=session.error,
        **snapshot,
    )


# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------

def create_board_router(get_session: Any) -> APIRouter:
    """Create the board API router.

    Parameters
    ----------
    get_session:
        A callable ``(project_dir_param: str | None) -> BoardSession`` that
        resolves the session for the current request's project directory.
    """
    router = APIRouter(prefix="/api/board", tags=["board"])

    def _loaded_session(project_dir: Optional[str]) -> BoardSession:
        session = get_session(project_dir)
        if session.mode is None:
            raise HTTPException(status_code=409, detail="Board not loaded; POST /api/board/load first")
        return session

    @router.post("/load", response_model=BoardResponse)
    async def load_board(
        body: LoadBoardRequest,
        project_dir: Optional[str] = Query(None),
    ) -> BoardResponse:
        session = get_session(project_dir)
        try:
            mode = parse_mode(body.mode, body.project_id)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        show_completed = body.show_completed
        if show_completed is None:
            show_completed = session.config.show_completed
        filters = FilterContext(
            company_id=body.company_id,
            project_id=body.project_id,
            contact_id=body.contact_id,
            milestone_id=body.milestone_id,
            show_completed=show_completed,
            search_query=body.search_query,
            status_filter=body.status_filter,
            extra=tuple(sorted(body.filters.items())),
        )
        await session.load(mode, filters)
        return board_response(session)

    @router.post("/reload", response_model=BoardResponse)
    async def reload_board(project_dir: Optional[str] = Query(None)) -> BoardResponse:
        session = _loaded_session(project_dir)
        await session.load_data()
        return board_response(session)

    @router.get("", response_model=BoardResponse)
    async def get_board(project_dir: Optional[str] = Query(None)) -> BoardResponse:
        return board_response(_loaded_session(project_dir))

    @router.get("/stats", response_model=StatsResponse)
    async def get_stats(project_dir: Optional[str] = Query(None)) -> StatsResponse:
        session = _loaded_session(project_dir)
        return StatsResponse(**session.stats.to_dict())

    @router.post("/clear-error", response_model=BoardResponse)
    async def clear_error(project_dir: Optional[str] = Query(None)) -> BoardResponse:
        session = get_session(project_dir)
        session.clear_error()
        return board_response(session)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @router.post("/move", response_model=MutationResponse)
    async def move_task(
        body: MoveRequest,
        project_dir: Optional[str] = Query(None),
    ) -> MutationResponse:
        session = _loaded_session(project_dir)
        if session.find_task(body.task_id) is None:
            raise HTTPException(status_code=404, detail=f"Task {body.task_id} not found")
        try:
            pending = session.move_task(
                body.task_id, body.from_container_id, body.to_container_id, body.to_index,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if not body.wait:
            return MutationResponse(board=board_response(session))
        outcome = await pending
        failures = [str(r.error) for r in outcome.results + outcome.cascade_results if not r.ok]
        if failures:
            logger.info("Move of {} finished with {} failed store call(s)", body.task_id, len(failures))
        return MutationResponse(
            board=board_response(session),
            persisted=outcome.ok,
            reloaded=outcome.reloaded,
            failures=failures,
        )

    @router.post("/reorder", response_model=MutationResponse)
    async def reorder_tasks(
        body: ReorderRequest,
        project_dir: Optional[str] = Query(None),
    ) -> MutationResponse:
        session = _loaded_session(project_dir)
        try:
            pending = session.reorder_tasks(body.container_id, body.task_ids)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if not body.wait:
            return MutationResponse(board=board_response(session))
        outcome = await pending
        return MutationResponse(
            board=board_response(session),
            persisted=outcome.ok,
            failures=[str(r.error) for r in outcome.results if not r.ok],
        )

    @router.post("/containers/reorder", response_model=MutationResponse)
    async def reorder_containers(
        body: ReorderContainersRequest,
        project_dir: Optional[str] = Query(None),
    ) -> MutationResponse:
        session = _loaded_session(project_dir)
        try:
            pending = session.reorder_containers(body.container_ids)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if not body.wait:
            return MutationResponse(board=board_response(session))
        outcome = await pending
        return MutationResponse(
            board=board_response(session),
            persisted=outcome.ok,
            failures=[str(r.error) for r in outcome.results if not r.ok],
        )

    return router
