# vaultshare/app/api/v1/router.py
from fastapi import APIRouter

from vaultshare.app.api.v1.endpoints import admin, auth, files

api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(files.router, prefix="/files", tags=["files"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
