# custody/api/deps.py
from bson import ObjectId
from fastapi import HTTPException, Request, status

from custody.core.lifecycle import LifecycleCoordinator


def get_coordinator(request: Request) -> LifecycleCoordinator:
    return request.app.state.coordinator


def validate_object_id(value: str, label: str) -> str:
    if not ObjectId.is_valid(value):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {label} ID format.")
    return value
