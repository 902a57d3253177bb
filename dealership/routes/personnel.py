from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List
from dealership.database import get_db
from dealership.models.models import User, Personnel
from dealership.models.schemas import PersonnelCreate, PersonnelUpdate, PersonnelResponse
from dealership.utils.dependencies import require_admin

router = APIRouter()


def _get_personnel_or_404(db: Session, personnel_id: int) -> Personnel:
    person = db.get(Personnel, personnel_id)
    if not person:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Personnel record not found"
        )
    return person


@router.get("/personnel", response_model=List[PersonnelResponse])
def list_personnel(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return db.query(Personnel).order_by(Personnel.name).all()


@router.post("/personnel", response_model=PersonnelResponse, status_code=status.HTTP_201_CREATED)
def create_personnel(
    person: PersonnelCreate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    new_person = Personnel(**person.model_dump())
    db.add(new_person)
    db.commit()
    db.refresh(new_person)
    return new_person


@router.put("/personnel/{personnel_id}", response_model=PersonnelResponse)
def update_personnel(
    personnel_id: int,
    update: PersonnelUpdate,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    person = _get_personnel_or_404(db, personnel_id)
    for field, value in update.model_dump(exclude_unset=True).items():
        setattr(person, field, value)
    db.commit()
    db.refresh(person)
    return person


@router.delete("/personnel/{personnel_id}")
def delete_personnel(
    personnel_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    person = _get_personnel_or_404(db, personnel_id)
    db.delete(person)
    db.commit()
    return {"status": "success", "message": "Personnel record deleted"}
