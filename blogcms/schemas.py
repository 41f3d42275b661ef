from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime

from blogcms.config import settings


# --- Author profile ---

class UserBase(BaseModel):
    username: str = Field(min_length=1, max_length=50)
    email: str = Field(max_length=255)
    display_name: str | None = Field(None, max_length=150)
    avatar: str | None = Field(None, max_length=255)
    bio: str | None = None


class UserCreate(UserBase):
    pass


class UserResponse(UserBase):
    id: int
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AuthorSummary(BaseModel):
    id: int
    username: str
    display_name: str | None = None
    avatar: str | None = None
    bio: str | None = None


# --- Category ---

class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=50)
    color: str = Field(settings.DEFAULT_CATEGORY_COLOR, min_length=1, max_length=20)
    description: str | None = Field(None, max_length=200)


class CategoryUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=50)
    color: str | None = Field(None, min_length=1, max_length=20)
    description: str | None = Field(None, max_length=200)


class CategoryResponse(BaseModel):
    id: int
    name: str
    color: str
    description: str | None = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class CategorySummary(BaseModel):
    id: int
    name: str
    color: str


# --- Comment ---

class CommentCreate(BaseModel):
    content: str = Field(min_length=1, max_length=2000)


class CommentResponse(BaseModel):
    id: int
    content: str
    post_id: int
    author: AuthorSummary | None = None
    created_at: datetime


# --- Post ---

class PostCreate(BaseModel):
    title: str = Field(min_length=1, max_length=100)
    content: str = Field(min_length=1)
    excerpt: str | None = Field(None, max_length=200)
    category_id: int
    tags: list[str] = []
    featured_image: str | None = Field(None, max_length=255)
    is_published: bool = False


class PostUpdate(BaseModel):
    # author, view_count, slug, timestamps and comments are not editable here
    title: str | None = Field(None, min_length=1, max_length=100)
    content: str | None = Field(None, min_length=1)
    excerpt: str | None = Field(None, max_length=200)
    category_id: int | None = None
    tags: list[str] | None = None
    featured_image: str | None = Field(None, max_length=255)
    is_published: bool | None = None


class PostResponse(BaseModel):
    id: int
    title: str
    slug: str
    excerpt: str | None
    tags: list[str] = []
    featured_image: str | None = None
    is_published: bool
    view_count: int
    created_at: datetime
    updated_at: datetime
    category_id: int
    author_id: int
    category: CategorySummary | None = None
    author: AuthorSummary | None = None


class PostDetail(PostResponse):
    content: str
    comments: list[CommentResponse] = []


# --- Pagination ---

class PaginatedResponse(BaseModel):
    # Services fill ``items``; over HTTP the page is sent as ``data``.
    items: list = Field(alias="data")  # Post dicts in list-view shape
    total: int
    page: int
    page_size: int
    pages: int
    model_config = ConfigDict(populate_by_name=True)
