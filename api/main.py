"""Minimal FastAPI demo app tracking visitors with functionary."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, FastAPI
from pydantic import BaseModel

from functionary.client import Functionary
from functionary.core.config import FunctionarySettings
from functionary.entities import Customer
from functionary.integrations.fastapi import FunctionaryDependency, build_hub, functionary_lifespan

settings = FunctionarySettings()
# Composition root: one hub per app so every request batches into the same queues.
hub = build_hub(settings)
app = FastAPI(title="Functionary demo", version="0.1.0", lifespan=functionary_lifespan(hub))
get_functionary = FunctionaryDependency(hub, settings)

FunctionaryDep = Annotated[Functionary, Depends(get_functionary)]


class LoginIn(BaseModel):
    """Login form for the demo customer."""

    customer_id: str
    email: str | None = None
    organization_id: str | None = None


class TrackIn(BaseModel):
    """Named state to record against the logged-in customer."""

    name: str
    properties: dict[str, str | int | float | bool | None] = {}


@app.get("/")
def index() -> dict[str, object]:
    return {"status": "ok", "stubbed": settings.stubbed}


@app.post("/login")
def login(body: LoginIn, functionary: FunctionaryDep) -> dict[str, object]:
    """Identify the customer and keep them in context through cookies."""
    customer = Customer(functionary)
    properties = {"email": body.email} if body.email else None
    customer.identify([body.customer_id], properties=properties, set_to_context=True)
    if body.organization_id:
        customer.join([body.organization_id])
    return {"customer": body.customer_id}


@app.post("/track")
def track(body: TrackIn, functionary: FunctionaryDep) -> dict[str, object]:
    Customer(functionary).track(body.name, body.properties or None)
    return {
        "tracked": body.name,
        "customer": functionary.context.get_entity_context("customer"),
    }


@app.post("/logout")
def logout(functionary: FunctionaryDep) -> dict[str, object]:
    functionary.reset_context()
    return {"customer": None}


@app.post("/flush")
async def flush(functionary: FunctionaryDep) -> dict[str, object]:
    """Send pending batches now instead of waiting for the trailing timer."""
    await functionary.aflush()
    return {
        "identify": [result.status_code for result in hub.identify.last_results],
        "state": [result.status_code for result in hub.state.last_results],
    }
