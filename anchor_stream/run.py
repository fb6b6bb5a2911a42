import argparse
import signal
import sys

from .config import TRANSPORTS, StreamConfig, load_config
from .worker import DetectionWorker


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Stream camera frames and place labeled anchors")
    ap.add_argument("--config", required=True, help="Path to JSON/YAML config")

    ap.add_argument("--camera-name")
    ap.add_argument("--device")
    ap.add_argument("--fps", type=int)
    ap.add_argument("--width", type=int)
    ap.add_argument("--height", type=int)
    ap.add_argument("--calib")
    ap.add_argument("--out")
    ap.add_argument("--duration", type=float)
    ap.add_argument("--max-frames", type=int)
    ap.add_argument("--dry-run", action="store_true")
    ap.add_argument("--transport", choices=TRANSPORTS)
    ap.add_argument("--server-url")
    ap.add_argument("--stream-url")
    ap.add_argument("--interval", type=float, help="Minimum seconds between sends")
    ap.add_argument("--timeout", type=float, help="HTTP request timeout (sec)")
    ap.add_argument("--no-reconnect", action="store_true")
    ap.add_argument("--show-rays", action="store_true")
    ap.add_argument("--paused", action="store_true", help="Start with sending paused")

    return ap


def _apply_args(cfg: StreamConfig, args: argparse.Namespace) -> StreamConfig:
    device = args.device
    if isinstance(device, str) and device.isdigit():
        device = int(device)

    cfg.apply_overrides(
        camera_name=args.camera_name,
        device=device,
        fps=args.fps,
        width=args.width,
        height=args.height,
        calibration_path=args.calib,
        session_root=args.out,
        duration_sec=args.duration,
        max_frames=args.max_frames,
        dry_run=True if args.dry_run else None,
        transport=args.transport,
        server_url=args.server_url,
        stream_url=args.stream_url,
        send_interval_sec=args.interval,
        request_timeout_sec=args.timeout,
        auto_reconnect=False if args.no_reconnect else None,
        show_rays=True if args.show_rays else None,
        start_paused=True if args.paused else None,
    )
    return cfg


def main() -> int:
    ap = _build_parser()
    args = ap.parse_args()

    cfg = load_config(args.config)
    cfg = _apply_args(cfg, args)

    worker = DetectionWorker(cfg)

    def _handle_signal(_sig, _frame):
        worker.stop()

    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_signal)
    if hasattr(signal, "SIGHUP"):
        # SIGHUP doubles as the recenter request
        signal.signal(signal.SIGHUP, lambda _sig, _frame: worker.recenter())

    summary = worker.run()
    print(summary)
    return 0


if __name__ == "__main__":
    sys.exit(main())
