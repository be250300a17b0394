"""filetrack - FastAPI application serving the sprint JSON API."""

from fastapi import FastAPI

from . import api_v1, health

app = FastAPI(title="filetrack")

app.include_router(health.router)
app.include_router(api_v1.router)
