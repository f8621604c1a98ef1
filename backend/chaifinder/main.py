from __future__ import annotations

from contextlib import asynccontextmanager

import socketio
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chaifinder.api import feed, notifications, ops, social
from chaifinder.domain.feed.service import reset_feeds
from chaifinder.domain.notifications.controller import NotificationCenter, set_center
from chaifinder.domain.social.sockets import SocialNamespace, set_namespace
from chaifinder.infra.redis import redis_client
from chaifinder.obs import init as obs_init
from chaifinder.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	center = NotificationCenter()
	set_center(center)
	app.state.notifications = center
	try:
		yield
	finally:
		await center.close()
		set_center(None)
		reset_feeds()
		await redis_client.aclose()


app = FastAPI(title="Chai Finder Social Core", lifespan=lifespan)

allow_origins = ["http://localhost:3000", "http://127.0.0.1:3000"] if settings.is_dev() else ["https://app.chaifinder.example"]

app.add_middleware(
	CORSMiddleware,
	allow_origins=allow_origins,
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

# Use the same allowed origins for Socket.IO as for the REST API
sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins=allow_origins)
social_namespace = SocialNamespace()
sio.register_namespace(social_namespace)
set_namespace(social_namespace)
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)
obs_init(app)

app.include_router(social.router, tags=["social"])
app.include_router(feed.router, tags=["feed"])
app.include_router(notifications.router, tags=["notifications"])
app.include_router(ops.router)
