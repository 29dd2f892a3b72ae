"""
Workspace Dependency.

Provides a singleton instance of the WorkspaceService for API endpoints.
"""

from typing import Annotated

from fastapi import Depends

from serverpilot_ai.server.services.workspace import WorkspaceService, get_workspace

WorkspaceDep = Annotated[WorkspaceService, Depends(get_workspace)]
