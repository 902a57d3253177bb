from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List, Optional
from dealership.database import get_db
from dealership.events import event_bus
from dealership.events.bus import CONVERSATION_DELETED
from dealership.models.models import User, Vehicle, VehicleStatus
from dealership.models.schemas import VehicleCreate, VehicleUpdate, VehicleResponse
from dealership.utils.dependencies import require_admin
from dealership.websocket import store
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_vehicle_or_404(db: Session, vehicle_id: int) -> Vehicle:
    vehicle = db.get(Vehicle, vehicle_id)
    if not vehicle:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Vehicle not found"
        )
    return vehicle


@router.get("/vehicles", response_model=List[VehicleResponse])
def list_vehicles(
    vehicle_status: Optional[VehicleStatus] = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db)
):
    """List vehicles on the lot, newest first. Public."""
    query = db.query(Vehicle)
    if vehicle_status is not None:
        query = query.filter(Vehicle.status == vehicle_status)
    return query.order_by(Vehicle.created_at.desc(), Vehicle.id.desc()).offset(skip).limit(limit).all()


@router.get("/vehicles/{vehicle_id}", response_model=VehicleResponse)
def get_vehicle(vehicle_id: int, db: Session = Depends(get_db)):
    return _get_vehicle_or_404(db, vehicle_id)


@router.post("/vehicles", response_model=VehicleResponse, status_code=status.HTTP_201_CREATED)
def create_vehicle(
    vehicle: VehicleCreate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    new_vehicle = Vehicle(**vehicle.model_dump())
    db.add(new_vehicle)
    db.commit()
    db.refresh(new_vehicle)
    logger.info(f"Admin {current_user.id} listed vehicle {new_vehicle.id}")
    return new_vehicle


@router.put("/vehicles/{vehicle_id}", response_model=VehicleResponse)
def update_vehicle(
    vehicle_id: int,
    vehicle_update: VehicleUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Update only the fields present in the request."""
    vehicle = _get_vehicle_or_404(db, vehicle_id)
    for field, value in vehicle_update.model_dump(exclude_unset=True).items():
        setattr(vehicle, field, value)
    db.commit()
    db.refresh(vehicle)
    return vehicle


@router.delete("/vehicles/{vehicle_id}")
async def delete_vehicle(
    vehicle_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Remove a listing together with every conversation held about it."""
    vehicle = _get_vehicle_or_404(db, vehicle_id)
    # A conversation key names its listing; no conversation outlives it
    keys = store.delete_listing_conversations(vehicle_id)
    db.delete(vehicle)
    db.commit()
    logger.info(f"Admin {current_user.id} deleted vehicle {vehicle_id} and {len(keys)} conversation(s)")

    for key in keys:
        await event_bus.emit(CONVERSATION_DELETED, key)
    return {"status": "success", "message": "Vehicle deleted"}
