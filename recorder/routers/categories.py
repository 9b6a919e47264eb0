# recorder/routers/categories.py
from typing import Optional
from fastapi import APIRouter, HTTPException, Depends
from pydantic import BaseModel
from sqlmodel import Session
from ..db import get_session
from ..models import User
from ..security import require_user
from ..services import categories as svc

router = APIRouter(prefix="/categories", tags=["categories"])

class CategoryCreate(BaseModel):
    name: str = ""
    color: Optional[str] = None

class CategoryColor(BaseModel):
    color: str

@router.get("")
def list_categories(user: User = Depends(require_user), db: Session = Depends(get_session)):
    return [svc.category_payload(c) for c in svc.list_categories(db, user.id)]

@router.get("/palette")
def palette():
    return {"colors": svc.COLOR_PALETTE, "default": svc.COLOR_PALETTE[0]}

@router.post("")
def create_category(body: CategoryCreate, user: User = Depends(require_user), db: Session = Depends(get_session)):
    category, error = svc.create_category(db, user.id, body.name, body.color)
    if error == svc.DUPLICATE_NAME_ERROR:
        raise HTTPException(status_code=409, detail=error)
    if error:
        raise HTTPException(status_code=400, detail=error)
    return svc.category_payload(category)

@router.patch("/{category_id}")
def update_category_color(category_id: int, body: CategoryColor, user: User = Depends(require_user), db: Session = Depends(get_session)):
    category = svc.get_category(db, user.id, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    return svc.category_payload(svc.update_color(db, category, body.color))

@router.delete("/{category_id}")
def delete_category(category_id: int, user: User = Depends(require_user), db: Session = Depends(get_session)):
    category = svc.get_category(db, user.id, category_id)
    if not category:
        raise HTTPException(status_code=404, detail="Category not found")
    detached = svc.delete_category(db, category)
    return {"success": True, "meetings_uncategorized": detached}
