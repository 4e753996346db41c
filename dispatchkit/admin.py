from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel

from dispatchkit.errors import AlreadyResolved, CourierBusy, DispatchError, InvalidInput, NotFound
from dispatchkit.runtime.coordinator import DispatchCoordinator
from dispatchkit.utils.logging import get_logger
from dispatchkit.utils.metrics import MetricsManager
from dispatchkit.utils.tracing import init_tracer

logger = get_logger("AdminAPI")

STATUS_BY_ERROR = {
    NotFound: 404,
    AlreadyResolved: 409,
    CourierBusy: 409,
    InvalidInput: 400,
}


class AcceptRequest(BaseModel):
    courier_id: str


def _http_error(error: DispatchError) -> HTTPException:
    status = STATUS_BY_ERROR.get(type(error), 400)
    return HTTPException(status_code=status, detail=error.message)


def create_admin_app(coordinator: DispatchCoordinator) -> FastAPI:
    """
    Creates the FastAPI admin application for a running engine.

    Args:
        coordinator: The DispatchCoordinator to inspect and drive.
    """
    init_tracer("dispatchkit")
    app = FastAPI(title="dispatchkit Admin API", version="0.1.0")

    @app.get("/health")
    async def health_check() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/metrics")
    async def metrics() -> Response:
        """Prometheus exposition of the engine counters."""
        return Response(content=MetricsManager().exposition(), media_type=CONTENT_TYPE_LATEST)

    @app.get("/couriers/{courier_id}/offers")
    async def courier_offers(courier_id: str) -> List[Dict[str, Any]]:
        """Open broadcasts the courier may still accept."""
        return await coordinator.pending_offers(courier_id)

    @app.get("/couriers/{courier_id}/current")
    async def courier_current(courier_id: str) -> Dict[str, Any]:
        job = await coordinator.current_job(courier_id)
        if job is None:
            raise HTTPException(status_code=404, detail="assignment not found")
        return job

    @app.post("/assignments/{assignment_id}/accept")
    async def accept_assignment(assignment_id: str, req: AcceptRequest) -> Dict[str, Any]:
        try:
            assignment = await coordinator.resolve_acceptance(assignment_id, req.courier_id)
        except DispatchError as e:
            raise _http_error(e)
        return {
            "message": "order accepted",
            "assignmentId": assignment.id,
            "acceptedAt": assignment.accepted_at.isoformat() if assignment.accepted_at else None,
        }

    return app
