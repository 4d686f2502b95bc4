from fastapi import APIRouter

from riskhub.routers import disease_tables

api_router = APIRouter()
api_router.include_router(disease_tables.admin_router)
api_router.include_router(disease_tables.router)
