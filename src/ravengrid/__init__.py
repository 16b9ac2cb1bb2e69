# Created by Matthew Valancy
# Copyright 2026 Valpatel Software LLC
# Licensed under AGPL-3.0 — see LICENSE for details.
"""RavenGrid — tactical core for the RAVENGRID dashboard.

tactical/  geometry, entity model, symbology and the live picture
comms/     CoT codec, live event channel, snapshot client, dispatch gateway

The FastAPI surface lives in the separate ``dashboard`` package.
"""

__version__ = "0.1.0"
