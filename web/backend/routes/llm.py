"""Direct model endpoints used by the editor's block previews.

`POST /api/llm` runs one prompt through the Model Caller and reports latency,
token usage and an estimated cost. `POST /api/sentiment` classifies a text as
positive, negative or neutral.
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, HTTPException

from blockflow.conditions import SentimentClassifierProtocol
from blockflow.errors import ModelCallError
from blockflow.providers import ModelCaller, ModelOptions, estimate_cost, get_provider

from ..models import LLMRequest, LLMResponse, SentimentRequest, SentimentResponse
from ..services.executor import get_model_caller, get_sentiment_classifier

logger = logging.getLogger(__name__)
router = APIRouter(tags=["llm"])


@router.post("/llm", response_model=LLMResponse)
async def call_llm(request: LLMRequest, model_caller: ModelCaller = Depends(get_model_caller)):
    """Run a single prompt against the selected model."""
    if not request.model or not request.prompt:
        raise HTTPException(status_code=400, detail="Missing model or prompt")

    options = ModelOptions(
        temperature=request.temperature if request.temperature is not None else 0.7,
        max_tokens=request.maxTokens if request.maxTokens is not None else 1024,
        top_p=request.topP if request.topP is not None else 1.0,
    )

    started = time.perf_counter()
    try:
        get_provider(request.model)
        response = await model_caller.call(request.prompt, request.model, options)
    except ModelCallError as e:
        logger.warning(f"LLM call via '{request.model}' failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    latency_ms = int(round((time.perf_counter() - started) * 1000))

    return LLMResponse(
        output=response.text,
        latencyMs=latency_ms,
        tokens=response.token_count,
        cost=estimate_cost(request.prompt, response.text, request.model),
    )


@router.post("/sentiment", response_model=SentimentResponse)
async def analyze_sentiment(
    request: SentimentRequest,
    classifier: SentimentClassifierProtocol = Depends(get_sentiment_classifier),
):
    """Classify the sentiment of a text."""
    text = request.text
    if not text:
        raise HTTPException(status_code=400, detail="Text is required")

    try:
        sentiment = await classifier.classify(text)
    except ModelCallError as e:
        logger.warning(f"Sentiment analysis failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to analyze sentiment")

    preview = text[:100] + ("..." if len(text) > 100 else "")
    return SentimentResponse(sentiment=sentiment, text=preview)
