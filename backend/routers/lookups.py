"""
Lookups router - clients, sites and technicians for the report dropdowns
Read-only: the directories are maintained outside the report flow.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from models import Client, Site, Technician

router = APIRouter()


@router.get("/clients")
async def list_clients(include_inactive: bool = False, db: Session = Depends(get_db)):
    query = db.query(Client)
    if not include_inactive:
        query = query.filter(Client.active == True)
    clients = query.order_by(Client.name).all()
    return [
        {"id": c.id, "name": c.name, "city": c.city, "active": c.active}
        for c in clients
    ]


@router.get("/clients/{client_id}/sites")
async def list_sites(client_id: int, include_inactive: bool = False, db: Session = Depends(get_db)):
    """Sites are scoped to one client"""
    client = db.query(Client).filter(Client.id == client_id).first()
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")

    query = db.query(Site).filter(Site.client_id == client_id)
    if not include_inactive:
        query = query.filter(Site.active == True)
    sites = query.order_by(Site.name).all()
    return [
        {"id": s.id, "client_id": s.client_id, "name": s.name, "address": s.address, "city": s.city}
        for s in sites
    ]


@router.get("/technicians")
async def list_technicians(db: Session = Depends(get_db)):
    technicians = db.query(Technician).filter(
        Technician.active == True
    ).order_by(Technician.full_name).all()
    return [
        {"id": t.id, "full_name": t.full_name, "email": t.email, "role": t.role}
        for t in technicians
    ]
