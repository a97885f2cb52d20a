from fastapi import FastAPI

from caterflow.app.api.v1.router import router as v1_router
from caterflow.app.core.config import get_settings
from caterflow.app.core.logging import setup_logging

settings = get_settings()
setup_logging(settings.LOG_LEVEL)

app = FastAPI(title="Caterflow", version="0.1.0")
app.include_router(v1_router, prefix="/v1")
