"""invest_pilot.api: FastAPI surface for dashboard front ends."""
