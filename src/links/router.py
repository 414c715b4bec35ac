from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from auth.exceptions import LoginRequired
from auth.schemas import Principal
from auth.users import current_active_user, current_user
from config import LINKS_REQUIRE_AUTH
from links.exceptions import InvalidUrl, TitleFetchError
from links.schemas import LinkCreate, LinkRead
from links.service import LinkRegistry, get_link_registry


router = APIRouter(prefix="/links", tags=["links"])


@router.get("", response_model=list[LinkRead])
@router.get("/", response_model=list[LinkRead], include_in_schema=False)
async def list_links(
    user: Principal = Depends(current_active_user),
    registry: LinkRegistry = Depends(get_link_registry),
):
    """
    List every shortened link with its visit count.
    """
    return await registry.list_all()


@router.post("", response_model=LinkRead)
@router.post("/", response_model=LinkRead, include_in_schema=False)
async def create_link(
    data: LinkCreate,
    request: Request,
    user: Optional[Principal] = Depends(current_user),
    registry: LinkRegistry = Depends(get_link_registry),
):
    """
    Shorten a URL. Submitting a URL that is already shortened returns the
    existing link. If authenticated, a new link is owned by the user.
    """
    if LINKS_REQUIRE_AUTH and user is None:
        raise LoginRequired()

    try:
        return await registry.create_or_get(
            data.url, request.headers.get("origin"), user
        )
    except (InvalidUrl, TitleFetchError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
