"""
FastAPI server for todo_sync.

Exposes the local task API and the sync controls: trigger a cycle, read the
sync status, re-enqueue terminally failed queue items.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
import uvicorn

from todo_sync import __version__
from todo_sync.config import get_settings
from todo_sync.database import Database
from todo_sync.models import Task
from todo_sync.services.task_service import TaskService
from todo_sync.sync.engine import SyncEngine
from todo_sync.utils.datetime import now_utc
from todo_sync.utils.logging import setup_logging


logger = logging.getLogger(__name__)


class TaskCreateRequest(BaseModel):
    """Request model for creating a new task."""
    title: str = Field(..., min_length=1, max_length=500)
    description: Optional[str] = None
    completed: bool = False


class TaskUpdateRequest(BaseModel):
    """Request model for updating an existing task."""
    title: Optional[str] = Field(None, min_length=1, max_length=500)
    description: Optional[str] = None
    completed: Optional[bool] = None


class TaskResponse(BaseModel):
    """Response model for task data."""
    id: str
    title: str
    description: str
    completed: bool
    is_deleted: bool
    created_at: datetime
    updated_at: datetime
    sync_status: str
    server_id: Optional[str] = None
    last_synced_at: Optional[datetime] = None

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            title=task.title,
            description=task.description,
            completed=task.completed,
            is_deleted=task.is_deleted,
            created_at=task.created_at,
            updated_at=task.updated_at,
            sync_status=task.sync_status.value,
            server_id=task.server_id,
            last_synced_at=task.last_synced_at,
        )


class SyncStatusResponse(BaseModel):
    """Response model for the sync status endpoint."""
    pending_count: int
    failed_count: int
    last_synced_at: Optional[datetime] = None
    is_online: bool


class HealthResponse(BaseModel):
    status: str = "ok"
    timestamp: datetime
    version: str


# Lazily created singletons; tests replace them through dependency_overrides
_database: Optional[Database] = None
_task_service: Optional[TaskService] = None
_sync_engine: Optional[SyncEngine] = None


def get_database() -> Database:
    global _database
    if _database is None:
        _database = Database(get_settings().get_db_path())
    return _database


def get_task_service() -> TaskService:
    global _task_service
    if _task_service is None:
        _task_service = TaskService(get_database())
    return _task_service


def get_sync_engine() -> SyncEngine:
    global _sync_engine
    if _sync_engine is None:
        _sync_engine = SyncEngine.from_settings(get_settings(), db=get_database())
    return _sync_engine


async def reset_services() -> None:
    """Drop cached services (closing the remote client)."""
    global _database, _task_service, _sync_engine
    if _sync_engine is not None:
        await _sync_engine.aclose()
    _database = _task_service = _sync_engine = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting todo_sync API")
    yield
    await reset_services()
    logger.info("Stopped todo_sync API")


app = FastAPI(
    title="todo_sync API",
    description="Offline-first task API with queued synchronization",
    version=__version__,
    lifespan=lifespan,
)


# ============================================================================
# Health
# ============================================================================

@app.get("/api/health", response_model=HealthResponse)
async def health():
    """Local liveness check."""
    return HealthResponse(timestamp=now_utc(), version=__version__)


# ============================================================================
# Tasks
# ============================================================================

@app.get("/api/tasks", response_model=List[TaskResponse])
async def list_tasks(tasks: TaskService = Depends(get_task_service)):
    return [TaskResponse.from_task(task) for task in tasks.get_all_tasks()]


@app.get("/api/tasks/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, tasks: TaskService = Depends(get_task_service)):
    task = tasks.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return TaskResponse.from_task(task)


@app.post("/api/tasks", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(request: TaskCreateRequest, tasks: TaskService = Depends(get_task_service)):
    try:
        task = tasks.create_task(request.title, request.description or "", request.completed)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return TaskResponse.from_task(task)


@app.put("/api/tasks/{task_id}", response_model=TaskResponse)
async def update_task(task_id: str, request: TaskUpdateRequest,
                      tasks: TaskService = Depends(get_task_service)):
    updates = request.model_dump(exclude_unset=True, exclude_none=True)
    try:
        task = tasks.update_task(task_id, **updates)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if task is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return TaskResponse.from_task(task)


@app.delete("/api/tasks/{task_id}")
async def delete_task(task_id: str, tasks: TaskService = Depends(get_task_service)):
    if not tasks.delete_task(task_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return {"id": task_id, "deleted": True}


# ============================================================================
# Sync
# ============================================================================

@app.post("/api/sync")
async def trigger_sync(engine: SyncEngine = Depends(get_sync_engine)):
    """Run one sync cycle; 503 when the remote is unreachable."""
    result = await engine.sync()
    if result.offline:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=result.to_dict())
    return result.to_dict()


@app.get("/api/sync/status", response_model=SyncStatusResponse)
async def sync_status(engine: SyncEngine = Depends(get_sync_engine)):
    summary = await engine.status_with_connectivity()
    return SyncStatusResponse(**summary.__dict__)


@app.post("/api/sync/queue/{item_id}/retry")
async def retry_failed_item(item_id: str, engine: SyncEngine = Depends(get_sync_engine)):
    """Re-enqueue a terminally failed queue item."""
    item = engine.queue.requeue_failed(item_id)
    if item is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No failed queue item with that id")
    return {"id": item.id, "task_id": item.task_id, "status": item.status.value}


def start_server(host: str = "127.0.0.1", port: int = 8000, reload: bool = False) -> None:
    """Start the API server with uvicorn."""
    setup_logging(get_settings().log_level)
    uvicorn.run("todo_sync.web.server:app", host=host, port=port, reload=reload)
