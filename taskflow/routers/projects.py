"""Project router."""
from typing import List

from fastapi import APIRouter, Depends, Response, status

from taskflow.routers import get_repository
from taskflow.schemas.project import ProjectCreate, ProjectResponse
from taskflow.services.async_repository import AsyncRepository

router = APIRouter(prefix="/projects", tags=["Projects"])


@router.get("", response_model=List[ProjectResponse])
async def list_projects(repository: AsyncRepository = Depends(get_repository)):
    return await repository.find_all_projects()


@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(project: ProjectCreate, repository: AsyncRepository = Depends(get_repository)):
    return await repository.add_project(project.name, project.description)


@router.delete("/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(name: str, repository: AsyncRepository = Depends(get_repository)):
    """Delete a project; refused while tasks still reference it."""
    await repository.delete_project(name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
