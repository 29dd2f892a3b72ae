"""
ServerPilot-AI Server Package.

This package contains the web server implementation for the ServerPilot-AI service.
It includes the API definition, configuration, exception handlers and the service layer.

Subpackages:
    api: FastAPI route definitions and endpoint logic.
    core: Configuration and constants.
    exception_handlers: Translation of domain errors into HTTP responses.
    schemas: Pydantic schemas for API request/response validation.
    services: Wiring of the session, chat backend and plan engine.
"""
