"""Face booth CLI: collect labeled face samples from a webcam, then recognize them.

    python face_booth.py collect alice        # 30 samples of alice -> data/face_store.json
    python face_booth.py recognize            # label faces live
    python face_booth.py list | delete alice | export out.json
"""

from __future__ import annotations

import argparse
import sys

from pathlib import Path
from typing import Optional

import cv2

from facebooth.config import BoothConfig
from facebooth.errors import EmptyStoreError, FaceBoothError, NotFoundError
from facebooth.store import JsonFileBackend, LabelStore
from facebooth.store.label_store import dump_store
from facebooth.utils.log import get_logger
from facebooth.video.acquisition import AcquisitionLoop, LoopMode, TickResult

logger = get_logger(__name__)

WINDOW_NAME = "facebooth"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Webcam face sample collection and recognition")
    parser.add_argument("--config", "-c", help="JSON config file (captureIntervalMs/requiredSamples/matchThreshold ...)")
    parser.add_argument("--store", "-s", help="label store JSON file (default data/face_store.json)")
    parser.add_argument("--camera", type=int, default=None, help="camera index (default 0)")
    parser.add_argument("--interval-ms", type=int, default=None, help="capture tick period in ms (default 100)")
    parser.add_argument("--samples", "-n", type=int, default=None, help="samples per label (default 30)")
    parser.add_argument("--threshold", "-t", type=float, default=None, help="max match distance (default 1.1)")
    parser.add_argument("--device", choices=["auto", "cpu", "gpu"], default=None, help="compute device")
    parser.add_argument("--det-size", type=int, default=None, help="InsightFace det_size (default 640)")
    parser.add_argument("--no-window", action="store_true", help="run without an OpenCV preview window")
    parser.add_argument("--max-ticks", type=int, default=None, help="stop after this many ticks")

    sub = parser.add_subparsers(dest="command", required=True)
    p_collect = sub.add_parser("collect", help="collect samples for one label")
    p_collect.add_argument("name", help="label (person name)")
    sub.add_parser("recognize", help="recognize faces against stored labels")
    sub.add_parser("list", help="list stored labels")
    p_delete = sub.add_parser("delete", help="delete one label")
    p_delete.add_argument("name")
    p_export = sub.add_parser("export", help="write all records to one JSON file")
    p_export.add_argument("output")
    return parser


def load_config(args: argparse.Namespace) -> BoothConfig:
    cfg = BoothConfig.load(args.config) if args.config else BoothConfig()
    return cfg.replace(
        store_path=args.store,
        camera_index=args.camera,
        capture_interval_ms=args.interval_ms,
        required_samples=args.samples,
        match_threshold=args.threshold,
        device=args.device,
        det_size=args.det_size,
    )


def open_store(cfg: BoothConfig) -> LabelStore:
    return LabelStore(JsonFileBackend(cfg.store_path), prefix=cfg.key_prefix)


def run_live(cfg: BoothConfig, store: LabelStore, command: str, name: Optional[str], args) -> int:
    # Heavy imports only for live modes.
    from facebooth.face.oracle import InsightFaceOracle
    from facebooth.utils.draw import OpenCVCanvas
    from facebooth.video.camera import CameraSource

    oracle = InsightFaceOracle(
        recognition_model=cfg.recognition_model,
        det_size=cfg.det_size,
        device=cfg.device,
    )
    canvas = None if args.no_window else OpenCVCanvas(cfg.display_size, unknown_label=cfg.unknown_label)

    with CameraSource(cfg.camera_index) as camera:
        loop = AcquisitionLoop(camera, oracle, store, config=cfg, canvas=canvas)
        if command == "collect":
            loop.start_collection(name)
        else:
            loop.start_recognition()

        def after_tick(result: TickResult) -> bool:
            if result.error is not None:
                logger.error(f"{result.error}")
                return False
            if command == "collect" and loop.mode == LoopMode.IDLE:
                return False
            if command == "recognize" and result.matches:
                logger.info(", ".join(str(m) for m in result.matches))
            if canvas is not None:
                img = canvas.latest()
                if img is not None:
                    cv2.imshow(WINDOW_NAME, img)
                if (cv2.waitKey(1) & 0xFF) == ord("q"):
                    return False
            return True

        try:
            ticks = loop.run(max_ticks=args.max_ticks, after_tick=after_tick)
        except KeyboardInterrupt:
            ticks = loop.tick_count
        finally:
            loop.stop_mode()
            if canvas is not None:
                cv2.destroyAllWindows()

        logger.info(f"{ticks} ticks")
        if loop.last_error is not None:
            return 1
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        cfg = load_config(args)
    except (OSError, ValueError) as e:
        logger.error(f"bad configuration: {e}")
        return 2
    store = open_store(cfg)

    try:
        if args.command == "list":
            for label in store.labels():
                print(label)
            return 0
        if args.command == "delete":
            store.delete(args.name)
            return 0
        if args.command == "export":
            Path(args.output).write_text(dump_store(store), encoding="utf-8")
            logger.info(f"exported {len(store)} labels -> {args.output}")
            return 0
        return run_live(cfg, store, args.command, getattr(args, "name", None), args)
    except (NotFoundError, EmptyStoreError) as e:
        logger.error(str(e))
        return 1
    except FaceBoothError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
