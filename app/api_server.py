"""FastAPI entrypoint exposing the SmartPick query-resolution pipeline."""

from __future__ import annotations

from pathlib import Path

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from smartpick_assistant.service import ShoppingAssistantService


class ResolveRequest(BaseModel):
    query: str = ""
    image_data_url: str | None = None
    image_name: str = ""
    strict_mode: bool | None = None


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)


app = FastAPI(title="SmartPick Shopping Assistant", version="2.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

service = ShoppingAssistantService()


@app.get("/api/health")
def health() -> dict:
    return {
        "status": "ok",
        "app": "smartpick-assistant",
        "stats": service.stats(),
    }


@app.post("/api/resolve")
def resolve(request: ResolveRequest) -> dict:
    try:
        return service.resolve(
            query=request.query,
            image_data_url=request.image_data_url,
            image_name=request.image_name,
            strict_mode=request.strict_mode,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/search")
def search(request: SearchRequest) -> dict:
    try:
        return service.search_by_text(query=request.query)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post("/api/image-match")
async def image_match(
    image: UploadFile = File(...),
    query: str = Form(default=""),
    strict_mode: bool | None = Form(default=None),
) -> dict:
    if not image.filename:
        raise HTTPException(status_code=400, detail="Missing image filename.")

    payload = await image.read()
    if not payload:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")

    try:
        return await run_in_threadpool(
            service.search_by_image,
            image_bytes=payload,
            filename=image.filename,
            content_type=image.content_type or "",
            query=query,
            strict_mode=strict_mode,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
