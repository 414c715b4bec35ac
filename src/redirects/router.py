from fastapi import APIRouter, Depends, status
from fastapi.responses import RedirectResponse

from redirects.engine import RedirectEngine, get_redirect_engine


router = APIRouter(tags=["redirects"])


# Include this router last: every other route must win over the catch-all.
@router.get("/{code:path}", include_in_schema=False)
async def follow_short_code(
    code: str,
    engine: RedirectEngine = Depends(get_redirect_engine),
):
    """
    Redirect to the url behind a short code. Unknown codes go to the home page.
    """
    url = await engine.visit(code)
    if url is None:
        return RedirectResponse("/", status_code=status.HTTP_302_FOUND)
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)
