"""
FastAPI server for the encrypted maximum-similarity computation.

Endpoints:
- GET /health - Store and engine status
- POST /search/max - Encrypted approximate maximum similarity for an encrypted query

The server holds only public material. It returns the encrypted maximum;
decryption and the threshold decision happen on the key holders' side.
"""
import base64
import binascii
from pathlib import Path
from typing import Any, Union

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from blindmatch import __version__
from blindmatch.engine.base import HomomorphicEngine
from blindmatch.server.compute import SimilarityEvaluator, StreamingMaxComputation
from blindmatch.server.reducer import DepthBudgetStrategy, DepthPlanner
from blindmatch.server.store import EncryptedStoreReader
from blindmatch.shared.errors import (
    DepthBudgetError,
    DepthBudgetExceededError,
    EmptyDatabaseError,
    RecordDecodeError,
    StoreError,
)
from blindmatch.shared.utils import Timer


class MaxSearchRequest(BaseModel):
    """Request for the encrypted maximum similarity."""
    encrypted_query_b64: str = Field(..., description="Base64-encoded serialized ciphertext")


class MaxSearchResponse(BaseModel):
    """Response with the encrypted maximum."""
    encrypted_max_b64: str = Field(..., description="Base64-encoded serialized ciphertext")
    vectors_processed: int
    num_batches: int
    final_level: int
    depth_budget: int
    truncated: bool
    server_time_ms: float


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    engine: str
    store_available: bool
    depth_budget: int
    slot_count: int
    batch_size: int


def serialize_encrypted(engine: HomomorphicEngine, ciphertext: Any) -> str:
    """Serialize a ciphertext to a base64 string."""
    return base64.b64encode(engine.serialize(ciphertext)).decode("utf-8")


def deserialize_encrypted(engine: HomomorphicEngine, b64_str: str) -> Any:
    """Deserialize a ciphertext from a base64 string."""
    try:
        data = base64.b64decode(b64_str, validate=True)
    except binascii.Error as e:
        raise RecordDecodeError(f"Invalid base64 payload: {e}") from e
    return engine.deserialize(data)


def create_app(
    computation: StreamingMaxComputation,
    store_path: Union[str, Path],
) -> FastAPI:
    """
    Create the API around one streaming computation and one encrypted store.

    Args:
        computation: Server-side streaming computation (engine + config)
        store_path: Encrypted store to search

    Returns:
        FastAPI app
    """
    engine = computation.engine
    config = computation.config
    store_path = Path(store_path)
    strategy = DepthBudgetStrategy.from_config(config)

    app = FastAPI(
        title="blindmatch",
        description="Encrypted near-duplicate search over an encrypted biometric store",
        version=__version__,
    )
    app.state.computation = computation
    app.state.store_path = store_path

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint."""
        return HealthResponse(
            status="healthy",
            engine=engine.name,
            store_available=store_path.exists(),
            depth_budget=engine.depth_budget,
            slot_count=engine.slot_count,
            batch_size=config.batch_size,
        )

    @app.post("/search/max", response_model=MaxSearchResponse)
    def search_max(request: MaxSearchRequest):
        """
        Stream the whole store and return the encrypted approximate maximum.

        The store is preflighted against the depth budget before any
        ciphertext is touched.
        """
        try:
            encrypted_query = deserialize_encrypted(engine, request.encrypted_query_b64)
        except RecordDecodeError as e:
            raise HTTPException(status_code=400, detail=f"Failed to deserialize query: {e}")

        with Timer() as t:
            try:
                num_records = EncryptedStoreReader(store_path, engine).count_records()
                planner = DepthPlanner(
                    strategy, config.inter_batch, score_level=SimilarityEvaluator.LEVEL_COST
                )
                planner.preflight(num_records, config.batch_size)
                result = computation.run(store_path, encrypted_query)
            except EmptyDatabaseError as e:
                raise HTTPException(status_code=409, detail=str(e))
            except (DepthBudgetError, DepthBudgetExceededError) as e:
                raise HTTPException(status_code=422, detail=str(e))
            except StoreError as e:
                raise HTTPException(status_code=503, detail=str(e))

        return MaxSearchResponse(
            encrypted_max_b64=serialize_encrypted(engine, result.encrypted_max),
            vectors_processed=result.vectors_processed,
            num_batches=result.num_batches,
            final_level=result.final_level,
            depth_budget=engine.depth_budget,
            truncated=result.truncated,
            server_time_ms=t.elapsed_ms,
        )

    return app


def run_server(app: FastAPI, host: str = "127.0.0.1", port: int = 8000):
    """Run the server directly."""
    import uvicorn
    uvicorn.run(app, host=host, port=port)
