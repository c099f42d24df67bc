"""Route table: GET /hello is the only registered route."""
from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

HELLO_MESSAGE = "Hello world"

router = APIRouter()


def render_greeting() -> str:
    return HELLO_MESSAGE


@router.get("/hello", response_class=PlainTextResponse)
async def hello():
    """Return the fixed greeting as text/plain; the request is not inspected."""
    return PlainTextResponse(render_greeting())
