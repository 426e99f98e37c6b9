from typing import Any, Dict, List, Optional

from fastapi import Body, Depends, FastAPI, Query, Request, Response
from fastapi import WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .database import get_db, init_db
from .errors import NotFoundError, StorageError, ValidationError
from .events import connection_registry
from .models import FileEventResponse, FilterParameters, SavedResponse, TestStatusResponse
from .services import history
from .services.ingestion import submit_file_event, submit_test_status

app = FastAPI(title="DevPulse API", version="1.0.0")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Create missing tables before accepting traffic"""
    await init_db()
    logger.info("DevPulse API ready")


@app.on_event("shutdown")
async def shutdown_event():
    """Let in-flight broadcasts finish"""
    await connection_registry.drain()


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    logger.warning(f"Rejected {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    error = exc.errors()[0]
    location = ".".join(str(part) for part in error.get("loc", ()))
    message = f"Invalid request ({location}: {error.get('msg')})"
    logger.warning(f"Rejected {request.method} {request.url.path}: {message}")
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(
        status_code=404,
        content={"message": exc.message, "parameters": exc.parameters},
    )


# ---------------- WebSocket observers ---------------- #

@app.websocket("/")
@app.websocket("/ws")
async def ws_observer(websocket: WebSocket):
    await websocket.accept()
    await connection_registry.register(websocket)
    try:
        # Observers only listen; reading keeps the socket alive until the client leaves
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await connection_registry.unregister(websocket)


# ---------------- File events ---------------- #

@app.post("/update")
async def post_update(data: Dict[str, Any] = Body(...)):
    await submit_file_event(data)
    return Response(status_code=200)


@app.get("/events", response_model=List[FileEventResponse])
async def get_events(db: AsyncSession = Depends(get_db)):
    return await history.list_file_events(db)


# ---------------- Test status ---------------- #

@app.post("/test-status", response_model=SavedResponse)
async def post_test_status(data: Dict[str, Any] = Body(...)):
    record_id = await submit_test_status(data)
    return SavedResponse(message="Test status saved successfully", id=record_id)


@app.get("/test-status", response_model=List[TestStatusResponse])
async def get_test_status(db: AsyncSession = Depends(get_db)):
    return await history.list_test_status(db)


@app.get("/latest-test-results", response_model=Optional[TestStatusResponse])
async def get_latest_test_results(db: AsyncSession = Depends(get_db)):
    record = await history.latest_test_status(db)
    if record is None:
        return Response(status_code=204)
    return record


@app.get("/latest-test-results-by-user", response_model=List[TestStatusResponse])
async def get_latest_test_results_by_user(db: AsyncSession = Depends(get_db)):
    return await history.latest_per_user(db)


@app.get("/filtered-test-results", response_model=List[TestStatusResponse])
async def get_filtered_test_results(
    username: Optional[str] = Query(default=None, description="Exact user name"),
    date: Optional[str] = Query(default=None, description="Day of the report, YYYY-MM-DD"),
    total_tests: Optional[int] = Query(default=None, alias="totalTests"),
    failed: Optional[int] = Query(default=None),
    passed: Optional[int] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    filters = FilterParameters(
        username=username,
        date=date,
        total_tests=total_tests,
        failed=failed,
        passed=passed,
    )
    return await history.filtered_latest_per_user(db, filters)


@app.get("/health")
async def health_check():
    return {"status": "ok", "observers": connection_registry.count}
