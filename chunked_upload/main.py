import logging
import uvicorn
from fastapi import FastAPI
from chunked_upload.api.endpoints.upload import router as upload_router
from chunked_upload.core.config import settings
from chunked_upload.core.database import init_db

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

init_db()

app = FastAPI(
    title="Chunked Upload Service",
    version="1.0.0",
    openapi_url=None if settings.ENV == "production" else f"/openapi.json",
    docs_url=None if settings.ENV == "production" else f"/docs",
    redoc_url=None if settings.ENV == "production" else f"/redoc"
)

@app.get("/health")
async def health_check():
    return {"status": "healthy"}

app.include_router(upload_router, prefix="/upload", tags=["upload"])


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=settings.SERVICE_PORT)
