from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from marketplace.api.deps import market
from marketplace.api.v1.api import api_router
from marketplace.core.config import settings
from marketplace.core.exceptions import MarketplaceError, Unauthenticated
from marketplace.core.logging import configure_logging
from marketplace.db.mongo import close_mongo_connection, connect_to_mongo, mongodb
from marketplace.repositories.user_repo import UserRepository
from marketplace.services.seed import seed_demo_data


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    await connect_to_mongo()
    if settings.SEED_DEMO_DATA:
        await seed_demo_data(mongodb.store)
        market.set_active_users(await UserRepository(mongodb.store).count_active())
    yield
    await close_mongo_connection()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "code": exc.code},
        headers=headers
    )


@app.get("/")
async def root():
    return {"message": "Welcome to the Receivables Marketplace API"}

app.include_router(api_router, prefix=settings.API_V1_STR)


# Development server entry point
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "marketplace.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
