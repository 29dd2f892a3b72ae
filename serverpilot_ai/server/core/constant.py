"""Constant values shared by the HTTP layer."""

PROJECT_NAME = "ServerPilot-AI"
API_V1_STR = "/api/v1"
SSE_KEEP_ALIVE_SECONDS = 15.0
