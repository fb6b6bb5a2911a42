from pathlib import Path

import cv2

from .anchor_types import CameraIntrinsics


def load_intrinsics(path: str) -> CameraIntrinsics:
    if not Path(path).exists():
        raise FileNotFoundError(f"Calibration not found: {path}")
    fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
    if not fs.isOpened():
        raise FileNotFoundError(f"Calibration could not be opened: {path}")
    K = fs.getNode("camera_matrix").mat()
    w = int(fs.getNode("image_width").real()); h = int(fs.getNode("image_height").real())
    fs.release()
    if K is None or K.shape != (3, 3):
        raise ValueError(f"camera_matrix missing or not 3x3 in {path}")
    return CameraIntrinsics(
        fx=float(K[0, 0]),
        fy=float(K[1, 1]),
        cx=float(K[0, 2]),
        cy=h - float(K[1, 2]),  # OpenCV measures cy from the top row
        width=w,
        height=h,
    )
