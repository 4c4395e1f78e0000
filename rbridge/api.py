"""
FastAPI backend for the R bridge.

Exposes the dataset catalog, R code execution, file upload, the canned
exploratory analyses and the Ask pipeline. Every R call goes through one
AsyncRBridge, so requests are executed one at a time in arrival order while
the event loop stays responsive.
"""

import io
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import polars as pl
from fastapi import Depends, FastAPI, File, HTTPException, Request, Response, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from rbridge.analyses import get_analysis, list_analyses
from rbridge.bridge import AsyncRBridge
from rbridge.call_llm import get_provider_info
from rbridge.engine import ExecutionOptions
from rbridge.errors import DatasetNotFoundError, InitializationError
from rbridge.flow import run_ask

logger = logging.getLogger(__name__)

# --- Data Models ---

class UploadedData(BaseModel):
    data: List[Dict[str, Any]]
    name: str = "uploaded"

class ExecuteRequest(BaseModel):
    code: str
    dataset_name: Optional[str] = None
    uploaded_data: Optional[UploadedData] = None
    plot_width: Optional[int] = None
    plot_height: Optional[int] = None
    plot_resolution: Optional[int] = None

class ExecuteResponse(BaseModel):
    success: bool
    output: Optional[str] = None
    plot: Optional[str] = None
    error: Optional[str] = None

class DatasetEntry(BaseModel):
    value: str
    label: str

class DatasetResponse(BaseModel):
    rows: List[Dict[str, Any]]
    summary: str

class AnalysisRequest(BaseModel):
    dataset_name: Optional[str] = None

class AskRequest(BaseModel):
    message: str
    dataset_name: Optional[str] = None

# --- Session Management ---

# In-memory store for per-browser state (last upload + Ask history)
# Structure: { session_id: { "upload": {"data": rows, "name": str} | None, "history": [] } }
session_store: Dict[str, Dict[str, Any]] = {}

def get_session_id(request: Request, response: Response) -> str:
    """
    Retrieve or create a session ID via cookie.
    """
    session_id = request.cookies.get("session_id")
    if not session_id:
        session_id = str(uuid.uuid4())
        response.set_cookie(key="session_id", value=session_id, httponly=True)

    if session_id not in session_store:
        session_store[session_id] = {"upload": None, "history": []}

    return session_id


def _uploaded_for(session_data: Dict[str, Any], explicit: Optional[UploadedData]) -> Optional[Dict[str, Any]]:
    if explicit is not None:
        return explicit.model_dump()
    return session_data.get("upload")


def _parse_upload(filename: str, content: bytes) -> pl.DataFrame:
    if filename.endswith(".csv"):
        # Try UTF-8 first, fall back to latin-1
        try:
            return pl.read_csv(io.BytesIO(content))
        except Exception:
            return pl.read_csv(io.BytesIO(content), encoding="latin-1")
    if filename.endswith(".json"):
        # Polars expects NDJSON by default
        json_data = json.loads(content.decode("utf-8"))
        if isinstance(json_data, list):
            return pl.DataFrame(json_data)
        if isinstance(json_data, dict):
            # Columnar {"col1": [...], "col2": [...]} or a single record
            if all(isinstance(v, list) for v in json_data.values()):
                return pl.DataFrame(json_data)
            return pl.DataFrame([json_data])
        raise ValueError("JSON must be an array of records or an object")
    raise HTTPException(status_code=400, detail="Unsupported file type. Use .csv or .json")

# --- App Setup ---

def create_app(bridge: Optional[AsyncRBridge] = None) -> FastAPI:
    """Build the API around an AsyncRBridge (the process-wide bridge by default)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "bridge", None) is None:
            from rbridge.factory import get_bridge
            app.state.bridge = AsyncRBridge(get_bridge())
        r_bridge: AsyncRBridge = app.state.bridge
        try:
            # Start R on the bridge's worker thread, where every later call runs.
            await r_bridge.initialize()
            logger.info("[API] R session ready")
        except InitializationError as e:
            logger.error(f"[API] R unavailable, R endpoints will return 503: {e}")
        yield
        r_bridge.close()

    app = FastAPI(title="R Analysis Bridge API", lifespan=lifespan)
    app.state.bridge = bridge

    # Allow CORS for local React development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://localhost:5173"],  # React/Vite defaults
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DatasetNotFoundError)
    async def dataset_not_found(request: Request, exc: DatasetNotFoundError):
        return JSONResponse(status_code=404, content={"detail": exc.message})

    @app.exception_handler(InitializationError)
    async def initialization_failed(request: Request, exc: InitializationError):
        return JSONResponse(status_code=503, content={"detail": exc.message})

    def get_bridge(request: Request) -> AsyncRBridge:
        return request.app.state.bridge

    @app.get("/")
    def health_check(request: Request):
        r_bridge = request.app.state.bridge
        return {
            "status": "running",
            "backend": "FastAPI",
            "r_ready": bool(r_bridge and r_bridge.bridge.session.initialized),
        }

    @app.get("/llm")
    def llm_info():
        """Get information about the current LLM provider configuration."""
        return get_provider_info()

    @app.get("/datasets", response_model=List[DatasetEntry])
    async def list_datasets(r_bridge: AsyncRBridge = Depends(get_bridge)):
        return await r_bridge.list_datasets()

    @app.get("/datasets/{name}", response_model=DatasetResponse)
    async def fetch_dataset(name: str, r_bridge: AsyncRBridge = Depends(get_bridge)):
        return await r_bridge.fetch_dataset(name)

    @app.post("/execute", response_model=ExecuteResponse, response_model_exclude_none=True)
    async def execute(
        req: ExecuteRequest,
        session_id: str = Depends(get_session_id),
        r_bridge: AsyncRBridge = Depends(get_bridge),
    ):
        options = ExecutionOptions(
            plot_width=req.plot_width,
            plot_height=req.plot_height,
            plot_resolution=req.plot_resolution,
        )
        uploaded = _uploaded_for(session_store[session_id], req.uploaded_data)
        return await r_bridge.execute_r_code(req.code, req.dataset_name, uploaded, options)

    @app.post("/upload")
    def upload_file(file: UploadFile = File(...), session_id: str = Depends(get_session_id)):
        filename = file.filename
        if not filename:
            raise HTTPException(status_code=400, detail="No filename provided")

        content = file.file.read()
        if not content:
            raise HTTPException(status_code=400, detail="Empty file")

        try:
            df = _parse_upload(filename, content)
        except HTTPException:
            raise
        except json.JSONDecodeError as e:
            raise HTTPException(status_code=400, detail=f"Invalid JSON: {str(e)}")
        except Exception as e:
            raise HTTPException(status_code=400, detail=f"Error parsing file: {str(e)}")

        session_store[session_id]["upload"] = {"data": df.to_dicts(), "name": filename}
        logger.info(f"[API] Upload '{filename}': {df.height} rows x {df.width} columns")

        return {
            "filename": filename,
            "rows": df.height,
            "columns": df.width,
            "column_names": df.columns,
        }

    @app.delete("/upload")
    def delete_upload(session_id: str = Depends(get_session_id)):
        session_store[session_id]["upload"] = None
        return {"status": "ok"}

    @app.get("/analyses")
    def analyses():
        return list_analyses()

    @app.post("/analyses/{key}", response_model=ExecuteResponse, response_model_exclude_none=True)
    async def run_analysis(
        key: str,
        req: AnalysisRequest,
        session_id: str = Depends(get_session_id),
        r_bridge: AsyncRBridge = Depends(get_bridge),
    ):
        try:
            analysis = get_analysis(key)
        except KeyError:
            raise HTTPException(status_code=404, detail=f"Unknown analysis: {key}")
        uploaded = _uploaded_for(session_store[session_id], None)
        return await r_bridge.execute_r_code(analysis.code, req.dataset_name, uploaded)

    @app.post("/ask")
    async def ask(
        req: AskRequest,
        session_id: str = Depends(get_session_id),
        r_bridge: AsyncRBridge = Depends(get_bridge),
    ):
        session_data = session_store[session_id]
        try:
            result = await run_in_threadpool(
                run_ask,
                req.message,
                r_bridge.blocking(),
                req.dataset_name,
                session_data.get("upload"),
                session_data["history"],
            )
        except (DatasetNotFoundError, InitializationError):
            raise
        except Exception as e:
            logger.exception("[API] Ask pipeline failed")
            raise HTTPException(status_code=500, detail=str(e))

        session_data["history"] = result["chat_history"]
        return {"response": result["response"]}

    @app.post("/clear")
    def clear_session(session_id: str = Depends(get_session_id)):
        session_store[session_id] = {"upload": None, "history": []}
        return {"status": "ok"}

    return app


app = create_app()
