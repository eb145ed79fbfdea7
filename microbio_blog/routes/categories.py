from typing import Annotated, List
from fastapi import APIRouter, Depends, Path
from motor.motor_asyncio import AsyncIOMotorDatabase

from microbio_blog.core.deps import get_database
from microbio_blog.core.errors import NotFoundError
from microbio_blog.crud.category import CategoryRepository, to_category
from microbio_blog.models.category import Category
from microbio_blog.models.common import ApiResponse

router = APIRouter()


@router.get("", response_model=ApiResponse[List[Category]])
async def get_categories_route(
    db: Annotated[AsyncIOMotorDatabase, Depends(get_database)]
):
    """Active categories, alphabetically."""
    categories = await CategoryRepository(db).list_active()
    return ApiResponse(message="Categories retrieved successfully", data=categories)


@router.get("/{reference}", response_model=ApiResponse[Category])
async def get_category_route(
    reference: Annotated[str, Path(...)],
    db: Annotated[AsyncIOMotorDatabase, Depends(get_database)]
):
    """Category by ID or slug."""
    category = await CategoryRepository(db).resolve(reference)
    if category is None:
        raise NotFoundError("Category not found")
    return ApiResponse(message="Category retrieved successfully", data=to_category(category))
