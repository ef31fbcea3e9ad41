from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routers import student_routers, proctoring_routers, ws_routers
from contextlib import asynccontextmanager
from .config import CORS_ORIGINS, MEDIA_ROOT
from .db import create_db_and_tables
from .security import auth_backend, app_users
from .services.session_service import sessions


from fastapi.staticfiles import StaticFiles
import os


@asynccontextmanager
async def lifespan(app: FastAPI):
    # run once when app starts. Make DB and media folder.
    await create_db_and_tables()
    os.makedirs(MEDIA_ROOT, exist_ok=True)
    yield
    # release cameras, timers and listeners of attempts still running
    await sessions.close_all()

app = FastAPI(lifespan=lifespan)


app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,  # which sites can call this API
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# snapshots are served from here; proctoring logs store paths relative to the bucket
os.makedirs(MEDIA_ROOT, exist_ok=True)
app.mount("/media", StaticFiles(directory=MEDIA_ROOT), name="media")


app.include_router(student_routers.router, prefix="/api", tags=["Student"])
app.include_router(proctoring_routers.router, prefix="/api")
app.include_router(ws_routers.router)

# token endpoint for the dashboards
app.include_router(app_users.get_auth_router(auth_backend), prefix="/auth/jwt", tags=["auth"])
