import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tablequery.core.config import settings
from tablequery.core.errors import QueryExecutionError
from tablequery.core.http_logging import install_request_logging

logging.getLogger("tablequery").setLevel(settings.LOG_LEVEL)

app = FastAPI(title=settings.APP_NAME, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
install_request_logging(app)


@app.exception_handler(QueryExecutionError)
async def query_execution_error(request: Request, exc: QueryExecutionError):
    return JSONResponse(status_code=400, content={"detail": exc.detail})


@app.get("/health")
def health():
    return {"status": "ok"}
