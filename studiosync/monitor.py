"""Observer-side monitor: attach to a relay, count pushes, optionally write a report."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import websockets

from .logs import configure_logging
from .models import EVENT_GAME_UPDATE, EVENT_PING, EVENT_PONG, EVENT_REQUEST_UPDATE

logger = logging.getLogger("studiosync.monitor")


def summarize_update(data: Any) -> Dict[str, Any]:
    payload = data if isinstance(data, Mapping) else {}
    metadata = payload.get("metadata")
    metadata = metadata if isinstance(metadata, Mapping) else {}
    return {
        "objects": int(metadata.get("objectCount") or 0),
        "scripts": int(metadata.get("scriptCount") or 0),
        "placeName": str(metadata.get("placeName") or ""),
        "lastUpdate": payload.get("lastUpdate"),
        "initial": bool(payload.get("message")),
    }


class ObserverMonitor:
    def __init__(
        self,
        uri: str,
        *,
        request_interval: Optional[float] = None,
        ping_interval: float = 20.0,
    ) -> None:
        self.uri = uri
        self.request_interval = request_interval
        self.ping_interval = max(1.0, float(ping_interval))
        self.stop_requested = False
        self.update_count = 0
        self.pong_count = 0
        self.reconnects = 0
        self.last_summary: Optional[Dict[str, Any]] = None

    def handle_frame(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.warning("FRAME_UNPARSEABLE size=%s", len(raw))
            return
        if not isinstance(frame, Mapping):
            return
        event = frame.get("event")
        if event == EVENT_GAME_UPDATE:
            self.update_count += 1
            self.last_summary = summarize_update(frame.get("data"))
            logger.info(
                "GAME_UPDATE objects=%s scripts=%s initial=%s",
                self.last_summary["objects"],
                self.last_summary["scripts"],
                self.last_summary["initial"],
            )
        elif event == EVENT_PONG:
            self.pong_count += 1

    def report(self) -> Dict[str, Any]:
        return {
            "uri": self.uri,
            "update_count": self.update_count,
            "pong_count": self.pong_count,
            "reconnects": self.reconnects,
            "last_update": self.last_summary,
        }

    async def run(self) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        while not self.stop_requested:
            try:
                async with websockets.connect(self.uri, open_timeout=5, ping_interval=20, ping_timeout=20) as ws:
                    last_ping = loop.time()
                    last_request = loop.time()
                    while not self.stop_requested:
                        now = loop.time()
                        if now - last_ping >= self.ping_interval:
                            await ws.send(json.dumps({"event": EVENT_PING}))
                            last_ping = now
                        if self.request_interval and now - last_request >= self.request_interval:
                            await ws.send(json.dumps({"event": EVENT_REQUEST_UPDATE}))
                            last_request = now
                        try:
                            raw = await asyncio.wait_for(ws.recv(), timeout=1)
                        except asyncio.TimeoutError:
                            continue
                        self.handle_frame(raw if isinstance(raw, str) else raw.decode("utf-8", errors="replace"))
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if self.stop_requested:
                    break
                self.reconnects += 1
                logger.warning("MONITOR_RECONNECT attempt=%s error=%r", self.reconnects, exc)
                await asyncio.sleep(0.5)
        return self.report()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Watch game-update pushes from a sync relay.")
    parser.add_argument("--uri", type=str, default="ws://127.0.0.1:3001/ws")
    parser.add_argument("--request-interval", type=float, default=None)
    parser.add_argument("--ping-interval", type=float, default=20.0)
    parser.add_argument("--output", type=str, default=None, help="write a JSON report on exit")
    parser.add_argument("--log-level", type=str, default="info")
    return parser


async def _run(args: argparse.Namespace) -> Dict[str, Any]:
    monitor = ObserverMonitor(
        args.uri,
        request_interval=args.request_interval,
        ping_interval=args.ping_interval,
    )

    def _stop(*_args: Any) -> None:
        monitor.stop_requested = True

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _stop)
        except (NotImplementedError, RuntimeError):
            signal.signal(sig, _stop)
    return await monitor.run()


def main() -> None:
    args = _build_parser().parse_args()
    configure_logging(args.log_level)
    result = asyncio.run(_run(args))
    if args.output:
        Path(args.output).write_text(
            json.dumps(result, ensure_ascii=True, sort_keys=True, indent=2) + "\n",
            encoding="utf-8",
        )


if __name__ == "__main__":
    main()
