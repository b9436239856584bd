import argparse
import sys
from pathlib import Path

import uvicorn

from facewatch.config import (
    CAMERA_INDEX,
    DETECTION_INTERVAL_MS,
    DETECTOR_KIND,
    DEVICE,
    KNOWN_FACES_FILE,
)
from facewatch.exceptions import FaceWatchError
from facewatch.face_engine import FaceEngine
from facewatch.known_faces import load_known_faces
from facewatch.logger import setup_logger
from facewatch.reference_loader import ReferenceLoader
from facewatch.runtime import SUPPORTED_DETECTORS, FaceWatchRuntime
from facewatch.settings import DetectionSettings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Live face detection and recognition with spoken alerts"
    )
    parser.add_argument(
        "--known-faces",
        type=Path,
        default=Path(KNOWN_FACES_FILE) if KNOWN_FACES_FILE else None,
        help="JSON file with reference identities (defaults to the built-in list)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    web = subparsers.add_parser("web", help="Launch the web dashboard")
    web.add_argument("--host", default="0.0.0.0", help="Host interface")
    web.add_argument("--port", type=int, default=8000, help="Port")
    web.add_argument("--camera", type=int, default=CAMERA_INDEX, help="Webcam index")
    web.add_argument("--detector", choices=SUPPORTED_DETECTORS, default=DETECTOR_KIND, help="Detector backend")

    watch = subparsers.add_parser("watch", help="Run detection in a local OpenCV window")
    watch.add_argument("--camera", type=int, default=CAMERA_INDEX, help="Webcam index")
    watch.add_argument("--detector", choices=SUPPORTED_DETECTORS, default=DETECTOR_KIND, help="Detector backend")
    watch.add_argument("--confidence", type=float, default=None, help="Confidence threshold (0.10-0.90)")
    watch.add_argument("--interval-ms", type=int, default=DETECTION_INTERVAL_MS, help="Detection period in ms")
    watch.add_argument("--muted", action="store_true", help="Start with audio alerts muted")

    subparsers.add_parser("list-faces", help="List reference identities")
    subparsers.add_parser(
        "check-references",
        help="Load every reference portrait and report which identities can be recognized",
    )

    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    logger = setup_logger("main")

    try:
        known_faces = load_known_faces(args.known_faces)

        if args.command == "web":
            from facewatch.web_app import create_web_app

            runtime = FaceWatchRuntime(
                known_faces=known_faces,
                detector_kind=args.detector,
                camera_index=args.camera,
            )
            app = create_web_app(runtime=runtime)
            uvicorn.run(app, host=args.host, port=args.port, log_level="info")
            return 0

        if args.command == "watch":
            from facewatch.viewer import run_viewer

            settings = DetectionSettings(muted=args.muted)
            if args.confidence is not None:
                settings.set_confidence(args.confidence)
            runtime = FaceWatchRuntime(
                known_faces=known_faces,
                detector_kind=args.detector,
                camera_index=args.camera,
                settings=settings,
                interval_ms=args.interval_ms,
            )
            run_viewer(runtime)
            print("Watch session stopped.")
            return 0

        if args.command == "list-faces":
            print(f"{'ID':<20} {'Category':<10} {'Name'}")
            print("-" * 60)
            for face in known_faces:
                print(f"{face.id:<20} {face.category:<10} {face.name}")
            return 0

        if args.command == "check-references":
            engine = FaceEngine(device=DEVICE)
            labeled = ReferenceLoader(engine).load(known_faces)
            loaded = {item.label for item in labeled}
            for face in known_faces:
                status = "ok" if face.id in loaded else "skipped"
                print(f"{face.id:<20} {status}")
            print(f"{len(loaded)}/{len(known_faces)} reference faces loaded.")
            return 0 if loaded else 1

    except (FaceWatchError, ValueError) as exc:
        logger.error("Application error: %s", exc)
        print(f"Error: {exc}")
        return 1
    except KeyboardInterrupt:
        print("\nStopped by user.")
        return 1
    except Exception as exc:
        logger.exception("Unexpected failure")
        print(f"Unexpected error: {exc}")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
