"""FastAPI dependencies shared by the route modules."""

from fastapi import HTTPException, Request

from src.fulfillment.service import FulfillmentService


def get_fulfillment_service(request: Request) -> FulfillmentService:
    """Return the service opened by the application lifespan.

    Raises:
        HTTPException: 503 if the application has not finished starting.
    """
    service = getattr(request.app.state, "fulfillment_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Fulfillment service not ready")
    return service
