"""Detection routes: ad-hoc detect, operator scripture search, transcript intake."""

import logging

from fastapi import APIRouter, HTTPException

from versecue.models.schemas import DetectRequest, FragmentRequest, ScriptureSearchRequest
import versecue.routes._state as _state

logger = logging.getLogger("versecue.api.detect")

detect_router = APIRouter(prefix="/api", tags=["detection"])


def _require_pipeline():
    if not _state._pipeline:
        raise HTTPException(503, "Pipeline not initialized")
    return _state._pipeline


@detect_router.post("/detect")
async def detect(req: DetectRequest):
    """Run both detection passes on text and return merged candidates.

    Nothing is queued. Returns 400 for blank text.
    """
    if not req.text.strip():
        raise HTTPException(400, "Text is required")
    candidates = await _require_pipeline().detect(req.text, use_llm=req.use_llm)
    return {"candidates": candidates}


@detect_router.post("/search-scripture")
async def search_scripture(req: ScriptureSearchRequest):
    """Operator search by topic, quote or loose reference.

    Literal citations in the query are returned first. Model results below
    the search floor are dropped. Returns 400 for blank query.
    """
    if not req.query.strip():
        raise HTTPException(400, "Query is required")
    results = await _require_pipeline().search(req.query.strip())
    return {"results": results}


@detect_router.post("/transcript")
async def add_transcript(req: FragmentRequest):
    """Push one speech fragment. Final fragments go through detection."""
    if not _state._aggregator:
        raise HTTPException(503, "Transcript not initialized")
    fragment = await _state._aggregator.add_fragment(req.text, is_final=req.is_final)
    if fragment is None:
        raise HTTPException(400, "Text is required")
    return {
        "accepted": True,
        "is_final": fragment.is_final,
        "stats": _state._queue.stats if _state._queue else None,
    }


@detect_router.get("/transcript")
async def get_transcript():
    if not _state._aggregator:
        raise HTTPException(503, "Transcript not initialized")
    return {
        "final_text": _state._aggregator.final_text,
        "interim_text": _state._aggregator.interim_text,
        "fragments": len(_state._aggregator.fragments),
    }


@detect_router.delete("/transcript")
async def clear_transcript():
    if not _state._aggregator:
        raise HTTPException(503, "Transcript not initialized")
    _state._aggregator.clear()
    return {"cleared": True}
