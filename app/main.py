import uvicorn

from app.core.app_factory import create_app
from app.core.config import settings

app = create_app(settings)


def run() -> None:
    """Serve the app with uvicorn (``user-auth-api`` console script)."""
    uvicorn.run(app, host=settings.app.host, port=settings.app.port)
