from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables from .env file
load_dotenv()

from substudio.config import (
    ALLOWED_ORIGIN,
    CSRF_EXEMPT_ROUTES,
    CSRF_PROTECTION_ENABLED,
    LOG_LEVEL,
)
from substudio.middleware import CsrfProtectionMiddleware
from substudio.routers import csrf_router
from substudio.utils.logging_utils import setup_logger

setup_logger(log_level=LOG_LEVEL)

app = FastAPI(title="Subtitle Studio API")

# CSRF protection for state-changing /api/ requests
app.add_middleware(
    CsrfProtectionMiddleware,
    enabled=CSRF_PROTECTION_ENABLED,
    exempt_routes=CSRF_EXEMPT_ROUTES,
)

# CORS configuration (outermost, so preflight requests never reach the CSRF check)
app.add_middleware(CORSMiddleware,
    allow_origins=[ALLOWED_ORIGIN],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(csrf_router)


@app.get("/")
async def root():
    return {"message": "Welcome to the Subtitle Studio API. Use GET /api/csrf to obtain a CSRF token before state-changing requests."}

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="::", port=8000)
