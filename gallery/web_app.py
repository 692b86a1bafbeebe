"""aiohttp application exposing the user resource."""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from aiohttp import hdrs, web

from . import users
from .blob_store import BlobStore
from .config import Config
from .database import close_pool, init_database
from .utils import (
    ArchiveWriteError,
    CleanupError,
    DatabaseError,
    DownloadError,
    UserNotFound,
    ValidationError,
)

logger = logging.getLogger(__name__)

CONFIG_KEY = web.AppKey("config", Config)
STORE_KEY = web.AppKey("store", BlobStore)
ARCHIVE_FILENAME = "user.zip"
PICTURE_FIELDS = ("pictures",)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except UserNotFound as exc:
        return web.json_response({"error": str(exc)}, status=404)
    except ValidationError as exc:
        return web.json_response({"errors": exc.errors}, status=422)
    except DownloadError as exc:
        logger.error("Picture download failed: %s", exc)
        return web.json_response({"error": str(exc)}, status=502)
    except (ArchiveWriteError, CleanupError, DatabaseError) as exc:
        logger.exception("Request %s %s failed", request.method, request.path)
        return web.json_response({"error": str(exc)}, status=500)


def _field_name(key: str) -> str:
    # user[name] -> name, user[pictures][] -> pictures
    if key.endswith("[]"):
        key = key[:-2]
    if key.startswith("user[") and key.endswith("]"):
        key = key[5:-1]
    return key


async def _read_payload(request: web.Request) -> Tuple[Dict[str, Any], List[users.Upload]]:
    if request.content_type == "application/json":
        try:
            body = await request.json()
        except json.JSONDecodeError as exc:
            raise web.HTTPBadRequest(text="Malformed JSON body.") from exc
        if not isinstance(body, dict):
            raise web.HTTPBadRequest(text="Expected a JSON object.")
        nested = body.get("user", body)
        if not isinstance(nested, dict):
            raise web.HTTPBadRequest(text="Expected user to be an object.")
        return nested, []

    form = await request.post()
    params: Dict[str, Any] = {}
    uploads: List[users.Upload] = []
    for key, value in form.items():
        name = _field_name(key)
        if isinstance(value, web.FileField):
            if name in PICTURE_FIELDS:
                uploads.append(
                    users.Upload(
                        filename=value.filename,
                        data=value.file.read(),
                        content_type=value.content_type,
                    )
                )
            continue
        params[name] = value
    return params, uploads


def _user_id(request: web.Request) -> int:
    return int(request.match_info["user_id"])


async def index(request: web.Request) -> web.Response:
    config = request.app[CONFIG_KEY]
    records = users.list_users(config.db_path)
    return web.json_response({"users": [user.to_dict() for user in records]})


async def show(request: web.Request) -> web.Response:
    config = request.app[CONFIG_KEY]
    user = users.find_user(_user_id(request), config.db_path)
    return web.json_response(user.to_dict())


async def show_zip(request: web.Request) -> web.Response:
    config = request.app[CONFIG_KEY]
    user = users.find_user(_user_id(request), config.db_path)
    data = await users.export_pictures(user, request.app[STORE_KEY], config)
    return web.Response(
        body=data,
        content_type="application/zip",
        headers={
            hdrs.CONTENT_DISPOSITION: f'attachment; filename="{ARCHIVE_FILENAME}"'
        },
    )


async def create(request: web.Request) -> web.Response:
    config = request.app[CONFIG_KEY]
    params, uploads = await _read_payload(request)
    user = await users.create_user(
        params, uploads, request.app[STORE_KEY], config.db_path)
    return web.json_response(
        user.to_dict(),
        status=201,
        headers={hdrs.LOCATION: f"/users/{user.id}"},
    )


async def update(request: web.Request) -> web.Response:
    config = request.app[CONFIG_KEY]
    user_id = _user_id(request)
    params, uploads = await _read_payload(request)
    user = await users.update_user(
        user_id, params, uploads, request.app[STORE_KEY], config.db_path)
    return web.json_response(user.to_dict())


async def destroy(request: web.Request) -> web.Response:
    config = request.app[CONFIG_KEY]
    users.destroy_user(_user_id(request), request.app[STORE_KEY], config.db_path)
    return web.Response(status=204)


async def health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


def create_app(config: Optional[Config] = None) -> web.Application:
    config = config or Config.get_instance()
    init_database(config.db_path)
    app = web.Application(
        client_max_size=config.max_upload_size,
        middlewares=[error_middleware],
    )
    app[CONFIG_KEY] = config
    app[STORE_KEY] = BlobStore(config.storage_dir)

    async def _close_database(app: web.Application) -> None:
        close_pool(app[CONFIG_KEY].db_path)

    app.on_cleanup.append(_close_database)

    app.router.add_get("/health", health)
    app.router.add_get("/users", index)
    app.router.add_post("/users", create)
    app.router.add_get(r"/users/{user_id:\d+}", show)
    app.router.add_get(r"/users/{user_id:\d+}/pictures.zip", show_zip)
    app.router.add_patch(r"/users/{user_id:\d+}", update)
    app.router.add_put(r"/users/{user_id:\d+}", update)
    app.router.add_delete(r"/users/{user_id:\d+}", destroy)
    return app


def run(config: Optional[Config] = None, host: str = "0.0.0.0", port: int = 8080) -> None:
    app = create_app(config)
    web.run_app(app, host=host, port=port)
