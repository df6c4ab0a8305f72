from __future__ import annotations

"""
Demo service: run the orientation stream and one ranking cycle, log both as JSON lines.

Stands in for the overlay layer: it subscribes to orientation events and
ranked points and logs, for each heading change, which points fall inside
the camera's horizontal field of view.

Examples:
  # Synthetic device turning in place, demo points from the config
  python -m ranking.service --config config/params.yaml --seed-demo-points

  # Replay a recorded sensor CSV against an existing points database
  python -m ranking.service --sensor-csv data/sensors/demo.csv \
      --db sqlite:///data/points.db --lat 45.9237 --lon 6.8694
"""

import argparse
import time
from typing import Dict, List, Optional

from common.config import load_config
from common.errors import QueryStorageFailure
from common.logging_setup import get_logger, setup_logging
from common.types import BearingResult, LatLon, LocationFix, OrientationSample, Point
from common.utils import iso_now_ms
from orientation.fusion import SensorFusionEngine
from orientation.sources import IteratorSensorProvider, RawCSVSource, RawSyntheticSource
from points.store import PointStore
from ranking.bearing import visible_in_fov
from ranking.tracker import PointTracker


log = get_logger("ranking.service")


def _demo_points(cfg: Dict) -> List[Point]:
    out = []
    for p in cfg.get("demo", {}).get("points", []) or []:
        out.append(Point(
            name=str(p["name"]),
            lat=float(p["lat"]),
            lon=float(p["lon"]),
            alt_m=int(p.get("alt_m", 0)),
            description=str(p.get("description", "")),
        ))
    return out


def _sensor_provider(cfg: Dict, csv_path: Optional[str], duration_s: float) -> IteratorSensorProvider:
    s = cfg.get("demo", {}).get("sensor", {})
    if csv_path or s.get("source") == "csv":
        src = RawCSVSource(csv_path or s.get("csv_path", "data/sensors/demo.csv"), realtime=True)
        return IteratorSensorProvider(src.samples, name="csv")
    synth = RawSyntheticSource(
        rate_hz=int(s.get("rate_hz", 50)),
        heading_deg=float(s.get("heading_deg", 0.0)),
        yaw_rate_dps=float(s.get("yaw_rate_dps", 15.0)),
        realtime=True,
    )
    return IteratorSensorProvider(lambda: synth.samples(duration_s), name="synthetic")


def main() -> None:
    ap = argparse.ArgumentParser(description="Points-of-interest overlay engine demo")
    ap.add_argument("--config", default="config/params.yaml")
    ap.add_argument("--db", default=None, help="SQLAlchemy URL (overrides config points.db_url)")
    ap.add_argument("--lat", type=float, default=None, help="Observer latitude (overrides config)")
    ap.add_argument("--lon", type=float, default=None, help="Observer longitude (overrides config)")
    ap.add_argument("--alt", type=float, default=None, help="Observer altitude m (overrides config)")
    ap.add_argument("--sensor-csv", default=None, help="Replay raw sensors from CSV instead of synthetic")
    ap.add_argument("--duration", type=float, default=None, help="Seconds to run (overrides config)")
    ap.add_argument("--fov", type=float, default=60.0, help="Horizontal field of view (deg)")
    ap.add_argument("--seed-demo-points", action="store_true", help="Insert config demo.points before running")
    args = ap.parse_args()

    P = load_config(args.config)
    setup_logging(P.get("logging", {}).get("level", "INFO"))

    demo = P.get("demo", {})
    obs_cfg = demo.get("observer", {})
    lat = args.lat if args.lat is not None else float(obs_cfg.get("lat", 0.0))
    lon = args.lon if args.lon is not None else float(obs_cfg.get("lon", 0.0))
    alt = args.alt if args.alt is not None else float(obs_cfg.get("alt_m", 0.0))
    duration = float(args.duration if args.duration is not None else demo.get("duration_s", 5.0))

    try:
        store = PointStore(args.db or P["points"].get("db_url", "sqlite://")).open()
    except QueryStorageFailure as e:
        log.error("Cannot open point store", extra={"extra": {"error": str(e)}})
        raise SystemExit(1)
    tracker = PointTracker.from_config(store, P)
    engine = SensorFusionEngine.from_config(_sensor_provider(P, args.sensor_csv, duration), P)

    visible: Dict[str, List[BearingResult]] = {"ranked": []}

    def on_ranking(observer: LatLon, ranked: List[BearingResult]) -> None:
        visible["ranked"] = ranked
        log.info("Ranked points", extra={"extra": {
            "observer": [observer.lat, observer.lon],
            "points": [{"name": r.point.name, "bearing": round(r.bearing_deg, 1),
                        "distance_m": round(r.distance_m)} for r in ranked],
        }})

    def on_orientation(o: OrientationSample) -> None:
        in_view = visible_in_fov(visible["ranked"], o.azimuth, args.fov)
        log.info("Orientation", extra={"extra": {
            "azimuth": round(o.azimuth, 1), "pitch": round(o.pitch_deg, 1), "roll": round(o.roll_deg, 1),
            "in_view": [r.point.name for r in in_view],
        }})

    tracker.subscribe_ranking(on_ranking)
    engine.subscribe(on_orientation)
    engine.subscribe_errors(lambda e: log.error("Sensor unavailable", extra={"extra": {"error": str(e)}}))

    try:
        if args.seed_demo_points:
            res = store.insert_batch(_demo_points(P))
            log.info("Seeded demo points", extra={"extra": {"inserted": res.inserted, "failed": len(res.failed)}})

        tracker.on_location(LocationFix(ts=iso_now_ms(), lat=lat, lon=lon, alt_m=alt, provider="cli"))
        tracker.wait_idle(timeout=10.0)

        if engine.start():
            time.sleep(duration)
    except KeyboardInterrupt:
        pass
    finally:
        engine.stop()
        tracker.close()
        store.close()

    log.info("Service finished", extra={"extra": {"sample_rate_hz": round(engine.sample_rate_hz, 1)}})


if __name__ == "__main__":
    main()
