import time
from fastapi import FastAPI, Depends, HTTPException, Header
from typing import Optional

app = FastAPI(title="Audiobookshelf Discord Presence")
service = None  # PresenceService, set when the service starts


def get_token(x_token: Optional[str] = Header(None, alias="X-Token")):
    if service is not None and service.settings.http_server_token and x_token != service.settings.http_server_token:
        raise HTTPException(status_code=401, detail="Invalid token")


@app.get("/healthz")
def healthz():
    if service is None or not service.last_successful_tick:
        return {"status": "starting"}

    age = time.time() - service.last_successful_tick
    # Lenient: three missed ticks before reporting a lag
    if age > service.settings.poll_interval_seconds * 3 + 60:
        return {"status": "lagging", "last_tick_age": age}

    return {"status": "ok", "connection": service.connection_state.value}


@app.get("/status", dependencies=[Depends(get_token)])
def status():
    if service is None:
        return {"status": "not_ready"}

    ctx = service.ctx
    return {
        "connection": service.connection_state.value,
        "tracked_book": ctx.tracked_book.title if ctx.tracked_book else None,
        "is_playing": ctx.playback.is_playing,
        "position": ctx.playback.position,
        "has_presence": ctx.has_presence,
        "cached_covers": len(service.cache),
        "last_tick": service.last_tick_at,
        "last_successful_tick": service.last_successful_tick,
        "config": {
            "interval": service.settings.poll_interval_seconds,
            "show_chapters": service.settings.show_chapters,
            "use_abs_cover": service.settings.use_abs_cover
        }
    }
