"""REST endpoints for the live analysis configuration.

A rejected update answers 422 and leaves the published configuration, and
every fingerprint derived from it, untouched.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Body, HTTPException

from compass_analytics.domain.configuration import PRESETS, ConfigurationHandle
from compass_analytics.foundation.errors import ConfigurationError

logger = logging.getLogger(__name__)


def create_configuration_router(configuration: ConfigurationHandle) -> APIRouter:
    """Factory that wires the configuration endpoints to a handle."""

    router = APIRouter(prefix="/api/configuration", tags=["configuration"])

    def _apply(action, *args) -> dict[str, Any]:
        try:
            updated = action(*args)
        except ConfigurationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        return updated.model_dump(mode="json")

    @router.get("")
    async def get_configuration() -> dict[str, Any]:
        return configuration.current.model_dump(mode="json")

    @router.patch("")
    async def patch_configuration(changes: dict[str, Any] = Body(...)) -> dict[str, Any]:
        """Deep-merge a partial document into the live configuration."""
        return _apply(configuration.update, changes)

    @router.put("")
    async def replace_configuration(document: dict[str, Any] = Body(...)) -> dict[str, Any]:
        """Replace the configuration with a full document."""
        return _apply(configuration.import_json, json.dumps(document))

    @router.post("/preset/{name}")
    async def apply_preset(name: str) -> dict[str, Any]:
        if name not in PRESETS:
            raise HTTPException(status_code=404, detail=f"Unknown preset {name!r}")
        return _apply(configuration.apply_preset, name)

    @router.post("/reset")
    async def reset_configuration() -> dict[str, Any]:
        return _apply(configuration.reset_to_defaults)

    @router.get("/presets")
    async def list_presets() -> dict[str, Any]:
        return {"presets": sorted(PRESETS)}

    return router
