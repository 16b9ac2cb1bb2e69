# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""API routers for RAVENGRID."""

from dashboard.routers.cot import router as cot_router
from dashboard.routers.picture import router as picture_router

__all__ = ["cot_router", "picture_router"]
