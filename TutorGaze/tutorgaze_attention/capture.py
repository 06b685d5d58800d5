import asyncio
import threading
from concurrent.futures import Executor
from typing import Optional

import cv2
import numpy as np


class CameraCapturer:
    """
    Wrapper around cv2.VideoCapture for the student's webcam.
    The device is opened lazily on the first grab so construction never blocks.
    """

    def __init__(self, camera_index: int = 0, width: int = 640, height: int = 480):
        self.camera_index = camera_index
        self.width = width
        self.height = height
        self._cap: Optional[cv2.VideoCapture] = None
        self._lock = threading.Lock()
        self._failures = 0

    def _open(self) -> Optional[cv2.VideoCapture]:
        if self._cap is not None and self._cap.isOpened():
            return self._cap
        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            cap.release()
            return None
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        print(f"[CameraCapturer] Opened camera {self.camera_index}")
        self._cap = cap
        return cap

    def grab(self) -> Optional[np.ndarray]:
        with self._lock:
            cap = self._open()
            if cap is None:
                self._failures += 1
                if self._failures == 1:
                    print(f"[CameraCapturer] Could not open camera {self.camera_index}")
                return None
            ok, frame = cap.read()
            if not ok or frame is None or frame.size == 0:
                self._failures += 1
                return None
            self._failures = 0
            return frame

    def close(self):
        with self._lock:
            if self._cap is not None:
                self._cap.release()
                self._cap = None


class AsyncFrameSource:
    """Runs blocking grabs on an executor so the sampling loop can await frames."""

    def __init__(self, capturer: CameraCapturer, executor: Executor | None = None):
        self.capturer = capturer
        self.executor = executor

    async def next_frame(self) -> Optional[np.ndarray]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, self.capturer.grab)

    def close(self):
        self.capturer.close()
