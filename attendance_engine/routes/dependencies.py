# attendance_engine/routes/dependencies.py
from fastapi import HTTPException, Request, status

from attendance_engine.services.engine import AttendanceEngine


def get_engine(request: Request) -> AttendanceEngine:
    """The engine instance built by the application lifespan."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Engine not initialized"
        )
    return engine
