"""
Execution Service Dependency.

Provides the singleton ``ExecutionService`` to API endpoints.
"""

from typing import Annotated

from fastapi import Depends

from questforge_ai.server.services.execution import (
    ExecutionService,
    get_execution_service,
)

ExecutionServiceDep = Annotated[ExecutionService, Depends(get_execution_service)]
